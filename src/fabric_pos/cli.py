"""Command-line entry points for Fabric POS.

The CLI only wires argparse and translates command-line arguments into the
command objects consumed by the business layer. Reports are rendered as plain
text on stdout; diagnostics go through the package logger.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import CashDirection
from .exceptions import ValidationError
from .inventory import ColorQuantity


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed.

    ``persists`` marks commands whose workbook changes are saved on success.
    """

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    persists: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="fabric-pos",
        description="Command-line tools for the Fabric POS workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as purchases and cash memos."""
    specs = {
        "add-fabric": register_add_fabric_command(subparsers),
        "purchase": register_purchase_command(subparsers),
        "sell": register_sell_command(subparsers),
        "cash-in": register_cash_entry_command(subparsers, CashDirection.IN),
        "cash-out": register_cash_entry_command(subparsers, CashDirection.OUT),
        "add-supplier": register_add_supplier_command(subparsers),
        "supplier-txn": register_supplier_transaction_command(subparsers),
        "pay": register_pay_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "quote": register_quote_command(subparsers),
        "cashbook": register_cashbook_command(subparsers),
        "monthly": register_monthly_command(subparsers),
        "profit": register_profit_command(subparsers),
        "dues": register_dues_command(subparsers),
        "summary": register_summary_command(subparsers),
        "memo": register_memo_command(subparsers),
        "suppliers": register_suppliers_command(subparsers),
        "period-profit": register_period_profit_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_fabric_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-fabric``."""
    name = "add-fabric"
    help_text = "Register a new fabric in the Fabrics sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--fabric-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--code", default=None)
        parser.add_argument("--unit", default="piece")
        parser.add_argument("--low-stock-threshold", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_fabric, persists=True)


def register_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchase``."""
    name = "purchase"
    help_text = "Record a purchased batch of fabric."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--fabric-id", required=True)
        parser.add_argument("--unit-cost", required=True)
        parser.add_argument("--quantity", default=None)
        parser.add_argument("--color", default=None, help="Single colour for the whole batch.")
        parser.add_argument(
            "--split",
            action="append",
            default=[],
            metavar="COLOR=QTY",
            help="Colour split; repeat for each colour. Overrides --quantity.",
        )
        parser.add_argument("--date", type=date.fromisoformat, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase, persists=True)


def register_sell_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sell``."""
    name = "sell"
    help_text = "Save a cash memo and deduct stock first-in, first-out."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--memo-number", required=True)
        parser.add_argument("--customer", required=True)
        parser.add_argument("--customer-id", default=None)
        parser.add_argument(
            "--line",
            action="append",
            required=True,
            metavar="FABRIC:QTY:PRICE[:COLOR]",
            help="Memo line; repeat for each fabric sold.",
        )
        parser.add_argument("--deposit", default="0")
        parser.add_argument("--date", type=date.fromisoformat, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sell, persists=True)


def register_cash_entry_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    direction: CashDirection,
) -> CommandSpec:
    """Register ``cash-in`` or ``cash-out``; both share one parser layout."""
    name = f"cash-{direction.value}"
    help_text = "Record money received." if direction is CashDirection.IN else "Record money paid out."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--description", required=True)
        parser.add_argument("--category", default=None)
        parser.add_argument("--reference", default=None)
        parser.add_argument("--date", type=date.fromisoformat, default=None)
        parser.set_defaults(command=name, direction=direction.value)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_cash_entry, persists=True)


def register_add_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-supplier``."""
    name = "add-supplier"
    help_text = "Register a supplier in the Suppliers sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_supplier, persists=True)


def register_supplier_transaction_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``supplier-txn``."""
    name = "supplier-txn"
    help_text = "Record a supplier invoice, a payment to a supplier, or both."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--invoice", required=True)
        parser.add_argument("--total", default="0")
        parser.add_argument("--paid", default="0")
        parser.add_argument("--details", default="")
        parser.add_argument("--date", type=date.fromisoformat, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_supplier_transaction,
        persists=True,
    )


def register_pay_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay``."""
    name = "pay"
    help_text = "Record a customer payment against a memo or their dues."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--amount", required=True)
        target = parser.add_mutually_exclusive_group(required=True)
        target.add_argument("--memo-id", default=None)
        target.add_argument("--customer-id", default=None)
        target.add_argument("--customer", default=None, help="Customer name when there is no id.")
        parser.add_argument("--date", type=date.fromisoformat, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay, persists=True)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display stock per fabric with colours and low-stock flags."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--low-only", action="store_true")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_quote_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``quote``."""
    name = "quote"
    help_text = "Price a sale line against FIFO stock without saving it."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--line", required=True, metavar="FABRIC:QTY:PRICE[:COLOR]")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_quote)


def register_cashbook_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``cashbook``."""
    name = "cashbook"
    help_text = "Display cashbook entries with running balances."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", default=None, help="Limit the detail view to YYYY-MM-DD.")
        parser.add_argument("--search", default=None, help="Filter entries by description.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_cashbook_report)


def register_monthly_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``monthly``."""
    name = "monthly"
    help_text = "Display cash in and out per month."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_monthly_report)


def register_profit_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``profit``."""
    name = "profit"
    help_text = "Display quantity sold and profit per fabric."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_profit_report)


def register_dues_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dues``."""
    name = "dues"
    help_text = "Display outstanding customer balances."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dues_report)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Display cash flow, receivables, and total assets."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary_report)


def register_memo_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``memo``."""
    name = "memo"
    help_text = "Display one saved cash memo with its lines."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--memo-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_memo_report)


def register_suppliers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``suppliers``."""
    name = "suppliers"
    help_text = "Display amounts invoiced, paid, and owed per supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_suppliers_report)


def register_period_profit_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``period-profit``."""
    name = "period-profit"
    help_text = "Display profit for the current week, month, and year."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="Reference day (YYYY-MM-DD).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_period_profit_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_decimal(raw: str, field_name: str) -> Decimal:
    """Parse a numeric CLI value.

    Raises:
        ValidationError: If ``raw`` is not a finite number.
    """
    try:
        value = Decimal(raw.strip())
    except ArithmeticError as exc:
        raise ValidationError(f"{field_name} must be a number, got {raw!r}") from exc
    if not value.is_finite():
        raise ValidationError(f"{field_name} must be a number, got {raw!r}")
    return value


def parse_color_split(raw: str) -> ColorQuantity:
    """Parse ``COLOR=QTY`` into a :class:`ColorQuantity`."""
    color, separator, quantity = raw.partition("=")
    if not separator or not color.strip():
        raise ValidationError(f"Colour split must look like COLOR=QTY, got {raw!r}")
    return ColorQuantity(color=color.strip(), quantity=parse_decimal(quantity, "Colour quantity"))


def parse_sale_line(raw: str) -> core_logic.SaleLineCommand:
    """Parse ``FABRIC:QTY:PRICE[:COLOR]`` into a sale line command."""
    parts = raw.split(":")
    if len(parts) not in (3, 4) or not parts[0].strip():
        raise ValidationError(f"Sale line must look like FABRIC:QTY:PRICE[:COLOR], got {raw!r}")
    color = parts[3].strip() if len(parts) == 4 and parts[3].strip() else None
    return core_logic.SaleLineCommand(
        fabric_id=parts[0].strip(),
        quantity=parse_decimal(parts[1], "Quantity"),
        price=parse_decimal(parts[2], "Price"),
        color=color,
    )


def translate_add_fabric(args: argparse.Namespace) -> Dict[str, object]:
    """Translate CLI args into an add-fabric request."""
    threshold = getattr(args, "low_stock_threshold", None)
    return {
        "fabric_id": args.fabric_id,
        "name": args.name,
        "code": args.code,
        "unit": args.unit,
        "low_stock_threshold": parse_decimal(threshold, "Low stock threshold") if threshold is not None else None,
    }


def translate_purchase(args: argparse.Namespace) -> core_logic.PurchaseCommand:
    """Translate CLI args into a purchase command object."""
    splits = tuple(parse_color_split(raw) for raw in args.split)
    quantity = parse_decimal(args.quantity, "Quantity") if args.quantity is not None and not splits else None
    return core_logic.PurchaseCommand(
        fabric_id=args.fabric_id,
        unit_cost=parse_decimal(args.unit_cost, "Unit cost"),
        quantity=quantity,
        colors=splits,
        color=args.color,
        purchase_date=args.date,
    )


def translate_sell(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a cash memo command object."""
    return core_logic.SaleCommand(
        memo_number=args.memo_number,
        customer_name=args.customer,
        customer_id=args.customer_id,
        lines=tuple(parse_sale_line(raw) for raw in args.line),
        deposit=parse_decimal(args.deposit, "Deposit"),
        memo_date=args.date,
    )


def translate_cash_entry(args: argparse.Namespace) -> core_logic.CashEntryCommand:
    """Translate CLI args into a cash entry command object."""
    return core_logic.CashEntryCommand(
        direction=CashDirection(args.direction),
        amount=parse_decimal(args.amount, "Amount"),
        description=args.description,
        category=args.category,
        reference=args.reference,
        entry_date=args.date,
    )


def translate_add_supplier(args: argparse.Namespace) -> Dict[str, object]:
    """Translate CLI args into an add-supplier request."""
    return {"supplier_id": args.supplier_id, "name": args.name, "phone": args.phone}


def translate_supplier_transaction(args: argparse.Namespace) -> core_logic.SupplierTransactionCommand:
    """Translate CLI args into a supplier transaction command object."""
    return core_logic.SupplierTransactionCommand(
        supplier_id=args.supplier_id,
        invoice_number=args.invoice,
        total_amount=parse_decimal(args.total, "Total amount"),
        paid_amount=parse_decimal(args.paid, "Paid amount"),
        details=args.details,
        transaction_date=args.date,
    )


def translate_pay(args: argparse.Namespace) -> core_logic.CustomerPaymentCommand:
    """Translate CLI args into a customer payment command object."""
    return core_logic.CustomerPaymentCommand(
        amount=parse_decimal(args.amount, "Amount"),
        memo_id=args.memo_id,
        customer_id=args.customer_id,
        customer_name=args.customer,
        payment_date=args.date,
    )


def run_add_fabric(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-fabric workflow in the BLL."""
    record = core_logic.add_fabric(context, **translate_add_fabric(args))
    print(f"Added fabric {record.fabric_id}: {record.name}")
    return 0


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase workflow via the BLL."""
    batch = core_logic.record_purchase(context, translate_purchase(args))
    print(f"Recorded batch {batch.batch_id}: {batch.quantity} @ {batch.unit_cost}")
    return 0


def run_sell(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the cash memo workflow via the BLL."""
    result = core_logic.record_sale(context, translate_sell(args))
    memo = result.memo
    print(f"Saved memo {memo.memo_number} for {memo.customer_name}")
    print(f"  Total: {memo.total}  Cost: {memo.total_cost}  Deposit: {memo.deposit}  Due: {memo.due}")
    return 0


def run_cash_entry(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the cash-in / cash-out workflow via the BLL."""
    entry = core_logic.record_cash_entry(context, translate_cash_entry(args))
    print(f"Recorded {entry.entry_id} on {entry.date}: +{entry.cash_in} -{entry.cash_out}")
    return 0


def run_add_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-supplier workflow in the BLL."""
    record = core_logic.add_supplier(context, **translate_add_supplier(args))
    print(f"Added supplier {record.supplier_id}: {record.name}")
    return 0


def run_supplier_transaction(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the supplier transaction workflow via the BLL."""
    record = core_logic.record_supplier_transaction(context, translate_supplier_transaction(args))
    print(
        f"Recorded {record.transaction_id} for {record.supplier_id}: "
        f"total {record.total_amount}  paid {record.paid_amount}  due {record.due}"
    )
    return 0


def run_pay(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the customer payment workflow via the BLL."""
    payment = core_logic.record_customer_payment(context, translate_pay(args))
    print(f"Recorded payment {payment.payment_id} of {payment.amount} from {payment.customer_name}")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print quantity, average cost, and colours for each fabric."""
    for item in core_logic.stock_summary(context):
        if getattr(args, "low_only", False) and not item.is_low:
            continue
        colors = ", ".join(f"{split.color}={split.quantity}" for split in item.colors)
        flag = "  LOW" if item.is_low else ""
        print(
            f"{item.fabric.fabric_id:<12} {item.fabric.name:<24} "
            f"{item.quantity:>10} {item.fabric.unit:<6} avg {item.average_cost:.2f}{flag}"
        )
        if colors:
            print(f"{'':<12} {colors}")
    return 0


def run_quote(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the FIFO lots and cost a sale line would consume."""
    priced = core_logic.quote_sale_line(context, parse_sale_line(args.line))
    for lot in priced.allocation.consumed_lots:
        print(f"{lot.batch_id:<24} {lot.quantity:>10} @ {lot.unit_cost}")
    print(f"Total: {priced.total}  Cost: {priced.cost}  Profit: {priced.profit}")
    return 0


def run_cashbook_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the cashbook detail view grouped by day."""
    report = core_logic.cashbook_report(context, date=args.date, search_term=args.search)
    print(f"Opening balance: {report.opening_balance}")
    for day in report.sorted_dates:
        group = report.grouped_entries[day]
        print(day)
        for line in group.income:
            print(f"  + {line.amount:>12}  {line.balance:>12}  {line.entry.description}")
        for line in group.expense:
            print(f"  - {line.amount:>12}  {line.balance:>12}  {line.entry.description}")
    financials = report.financials
    print(
        f"Cash in: {financials.total_cash_in}  Cash out: {financials.total_cash_out}  "
        f"Available: {financials.available_cash}"
    )
    return 0


def run_monthly_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print cash totals per month, newest first."""
    for month in core_logic.cashbook_report(context).monthly_totals:
        print(f"{month.month}  in {month.cash_in:>12}  out {month.cash_out:>12}  net {month.balance:>12}")
    return 0


def run_profit_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print quantity sold and profit per fabric."""
    report = core_logic.calculate_inventory_profit(context)
    for row in report.fabrics:
        print(f"{row.fabric_id:<12} {row.name:<24} sold {row.quantity_sold:>10}  profit {row.profit:>12}")
    print(f"Total profit: {report.total_profit}")
    return 0


def run_dues_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print customers with an outstanding balance."""
    dues: List[tuple] = [(customer, due) for customer, due in core_logic.calculate_customer_dues(context).items() if due]
    for customer, due in sorted(dues, key=lambda pair: pair[1], reverse=True):
        print(f"{customer:<32} {due:>12}")
    return 0


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the financial summary."""
    summary = core_logic.calculate_financial_summary(context)
    print(f"Cash in:      {summary.cash_flow.total_cash_in}")
    print(f"Cash out:     {summary.cash_flow.total_cash_out}")
    print(f"Available:    {summary.available_cash}")
    print(f"Receivables:  {summary.total_receivables}")
    print(f"Total assets: {summary.total_assets}")
    return 0


def run_memo_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print a memo header followed by its lines."""
    memo = core_logic.get_memo(context, args.memo_id)
    print(f"Memo {memo.memo_number} ({memo.date}) for {memo.customer_name}")
    for line in core_logic.list_memo_lines(context, memo_id=memo.memo_id):
        color = f" [{line.color}]" if line.color else ""
        print(f"  {line.fabric_id:<12}{color} {line.quantity:>10} @ {line.price}  cost {line.cost}")
    outstanding = core_logic.memo_outstanding(context, memo)
    print(f"  Total: {memo.total}  Deposit: {memo.deposit}  Paid later: {memo.due - outstanding}  Due: {outstanding}")
    return 0


def run_suppliers_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print supplier balances and the overall totals."""
    report = core_logic.calculate_supplier_dues(context)
    for balance in report.suppliers:
        print(
            f"{balance.supplier.supplier_id:<12} {balance.supplier.name:<24} "
            f"total {balance.total_amount:>12}  paid {balance.paid_amount:>12}  due {balance.due:>12}"
        )
    print(f"Total: {report.total_amount}  Paid: {report.paid_amount}  Due: {report.due_amount}")
    return 0


def run_period_profit_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print profit for the week, month, and year to date."""
    report = core_logic.calculate_period_profit(context, today=args.as_of)
    print(f"This week:  {report.weekly}")
    print(f"This month: {report.monthly}")
    print(f"This year:  {report.yearly}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        spec = command_table[args.command]
        if spec.persists:
            core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and spec.persists:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)

"""Business logic layer for Fabric POS.

This module wires the pure allocator (:mod:`fabric_pos.inventory`) and the
cashbook aggregator (:mod:`fabric_pos.ledger`) to the workbook. It consumes
the Data Access Layer (DAL) for all I/O and makes sure every write passes the
domain rules first: a cash memo is either written completely (memo, lines,
stock deductions, deposit entry) or not at all.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, inventory, ledger, log
from .coercion import ZERO, parse_date, to_decimal
from .constants import CUSTOMER_PAYMENT_PREFIX, EXPECTED_SCHEMA_VERSION, CashDirection, EntryCategory
from .exceptions import (
    BusinessRuleViolation,
    InsufficientStockError,
    MissingReferenceError,
    ValidationError,
)
from .inventory import Allocation, Batch, ColorQuantity


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class PurchaseCommand:
    """User intent for adding a purchased batch of fabric.

    When ``colors`` is given the batch quantity is the sum of the colour
    splits and ``quantity`` is ignored.
    """

    fabric_id: str
    unit_cost: Decimal
    quantity: Optional[Decimal] = None
    colors: Tuple[ColorQuantity, ...] = ()
    color: Optional[str] = None
    purchase_date: Optional[date] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class SaleLineCommand:
    """One fabric line on a cash memo."""

    fabric_id: str
    quantity: Decimal
    price: Decimal
    color: Optional[str] = None


@dataclass(frozen=True)
class SaleCommand:
    """User intent for saving a cash memo."""

    memo_number: str
    customer_name: str
    lines: Tuple[SaleLineCommand, ...]
    deposit: Decimal = Decimal("0")
    customer_id: Optional[str] = None
    memo_date: Optional[date] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class CashEntryCommand:
    """User intent for a manual cash-in or cash-out entry."""

    direction: CashDirection
    amount: Decimal
    description: str
    entry_date: Optional[date] = None
    category: Optional[str] = None
    reference: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PricedLine:
    """A sale line priced against FIFO stock."""

    command: SaleLineCommand
    allocation: Allocation
    total: Decimal
    cost: Decimal

    @property
    def profit(self) -> Decimal:
        return self.total - self.cost


@dataclass(frozen=True)
class SaleResult:
    memo: data_manager.MemoRow
    lines: Tuple[data_manager.MemoLineRow, ...]
    updated_batches: Tuple[Batch, ...]
    cash_entry: Optional[data_manager.CashEntryRow]


@dataclass(frozen=True)
class FabricStock:
    """Stock summary for one fabric, as shown by the ``stock`` report."""

    fabric: data_manager.FabricRow
    quantity: Decimal
    average_cost: Decimal
    colors: Tuple[ColorQuantity, ...]
    is_low: bool


@dataclass(frozen=True)
class FabricProfit:
    fabric_id: str
    name: str
    quantity_sold: Decimal
    profit: Decimal


@dataclass(frozen=True)
class InventoryProfitReport:
    fabrics: Tuple[FabricProfit, ...]
    total_profit: Decimal


@dataclass(frozen=True)
class SupplierTransactionCommand:
    """A supplier invoice, a payment to the supplier, or both at once.

    An invoice raises ``total_amount``; a later settlement can be recorded as
    a transaction with only ``paid_amount``.
    """

    supplier_id: str
    invoice_number: str
    total_amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    details: str = ""
    transaction_date: Optional[date] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class CustomerPaymentCommand:
    """Money a customer pays against their dues after the sale.

    Either ``memo_id`` (the payment settles that memo) or a customer
    identifier (``customer_id`` or ``customer_name``) must be given.
    """

    amount: Decimal
    memo_id: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    payment_date: Optional[date] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class SupplierBalance:
    supplier: data_manager.SupplierRow
    total_amount: Decimal
    paid_amount: Decimal
    due: Decimal


@dataclass(frozen=True)
class SupplierDuesReport:
    """Per-supplier balances plus the totals across every supplier."""

    suppliers: Tuple[SupplierBalance, ...]
    total_amount: Decimal
    paid_amount: Decimal
    due_amount: Decimal


@dataclass(frozen=True)
class PeriodProfit:
    """Profit of the memos dated from the start of each period up to today."""

    weekly: Decimal
    monthly: Decimal
    yearly: Decimal


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    The business layer keeps one bucket per sheet family (fabrics, batches,
    cash entries, memos) so repeated reports do not rescan the workbook.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state.

    Missing buckets are ignored.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_fabrics_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "fabrics")
    if "all" not in bucket:
        all_fabrics = list(data_manager.iter_fabrics(context.workbook))
        bucket["all"] = all_fabrics
        bucket["by_id"] = {fabric.fabric_id: fabric for fabric in all_fabrics}
        log.debug("Populated fabrics cache with %d entries", len(all_fabrics))
    return bucket


def assemble_batches(
    batch_rows: Iterable[data_manager.BatchRow],
    color_rows: Iterable[data_manager.BatchColorRow],
) -> List[Batch]:
    """Join ``Batches`` rows with their ``BatchColors`` splits.

    Colour splits keep their sheet order. A batch without splits becomes an
    unpartitioned :class:`~fabric_pos.inventory.Batch`.

    Args:
        batch_rows (Iterable[BatchRow]): Rows from the ``Batches`` sheet.
        color_rows (Iterable[BatchColorRow]): Rows from the ``BatchColors``
            sheet, for any batch.

    Returns:
        list[Batch]: Domain batches in ``Batches`` sheet order.
    """

    splits: Dict[str, List[ColorQuantity]] = {}
    for row in color_rows:
        if row.batch_id not in splits:
            splits[row.batch_id] = []
        splits[row.batch_id].append(ColorQuantity(color=row.color, quantity=row.quantity))

    return [
        Batch(
            batch_id=row.batch_id,
            purchase_date=row.purchase_date,
            unit_cost=row.unit_cost,
            quantity=row.quantity,
            colors=tuple(splits.get(row.batch_id, ())),
            color=row.color,
            fabric_id=row.fabric_id,
        )
        for row in batch_rows
    ]


def _ensure_batches_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the batch cache bucket on demand.

    Returns:
        dict[str, Any]: Bucket containing ``all`` batches and ``by_fabric``
            lists, both in sheet order.
    """

    bucket = _get_cache_bucket(context, "batches")
    if "all" not in bucket:
        all_batches = assemble_batches(
            data_manager.iter_batches(context.workbook),
            data_manager.iter_batch_colors(context.workbook),
        )
        by_fabric: Dict[str, List[Batch]] = {}
        for batch in all_batches:
            by_fabric.setdefault(batch.fabric_id or "", []).append(batch)
        bucket["all"] = all_batches
        bucket["by_fabric"] = by_fabric
        log.debug("Populated batches cache with %d entries", len(all_batches))
    return bucket


def _ensure_cash_entries_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "cash_entries")
    if "all" not in bucket:
        bucket["all"] = list(data_manager.iter_cash_entries(context.workbook))
        log.debug("Populated cash entries cache with %d entries", len(bucket["all"]))
    return bucket


def _ensure_memos_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "memos")
    if "all" not in bucket:
        all_memos = list(data_manager.iter_memos(context.workbook))
        bucket["all"] = all_memos
        bucket["by_id"] = {memo.memo_id: memo for memo in all_memos}
        bucket["lines"] = list(data_manager.iter_memo_lines(context.workbook))
        log.debug(
            "Populated memos cache with %d memos and %d lines",
            len(all_memos),
            len(bucket["lines"]),
        )
    return bucket


def _ensure_suppliers_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "suppliers")
    if "all" not in bucket:
        suppliers = list(data_manager.iter_suppliers(context.workbook))
        bucket["all"] = suppliers
        bucket["by_id"] = {supplier.supplier_id: supplier for supplier in suppliers}
        bucket["transactions"] = list(data_manager.iter_supplier_transactions(context.workbook))
        log.debug("Populated suppliers cache with %d suppliers", len(suppliers))
    return bucket


def _ensure_customer_payments_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "customer_payments")
    if "all" not in bucket:
        bucket["all"] = list(data_manager.iter_customer_payments(context.workbook))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def list_fabrics(context: RuntimeContext) -> List[data_manager.FabricRow]:
    """Return cached fabric rows in sheet order."""
    return list(_ensure_fabrics_cache(context)["all"])


def get_fabric(context: RuntimeContext, fabric_id: str) -> data_manager.FabricRow:
    """Resolve a fabric record by its identifier.

    Raises:
        MissingReferenceError: If ``fabric_id`` is absent from the workbook.
    """
    cache = _ensure_fabrics_cache(context)
    try:
        return cache["by_id"][fabric_id]
    except KeyError as exc:
        log.warning("Fabric lookup failed for id '%s'", fabric_id)
        raise MissingReferenceError(f"Unknown fabric id: {fabric_id}") from exc


def list_batches(context: RuntimeContext, *, fabric_id: Optional[str] = None) -> List[Batch]:
    """Return batches in sheet order, optionally limited to one fabric."""
    cache = _ensure_batches_cache(context)
    if fabric_id is None:
        return list(cache["all"])
    return list(cache["by_fabric"].get(fabric_id, []))


def list_cash_entries(context: RuntimeContext) -> List[data_manager.CashEntryRow]:
    return list(_ensure_cash_entries_cache(context)["all"])


def list_memos(context: RuntimeContext) -> List[data_manager.MemoRow]:
    return list(_ensure_memos_cache(context)["all"])


def get_memo(context: RuntimeContext, memo_id: str) -> data_manager.MemoRow:
    cache = _ensure_memos_cache(context)
    try:
        return cache["by_id"][memo_id]
    except KeyError as exc:
        log.warning("Memo lookup failed for id '%s'", memo_id)
        raise MissingReferenceError(f"Unknown memo id: {memo_id}") from exc


def list_memo_lines(context: RuntimeContext, *, memo_id: Optional[str] = None) -> List[data_manager.MemoLineRow]:
    lines = _ensure_memos_cache(context)["lines"]
    if memo_id is None:
        return list(lines)
    return [line for line in lines if line.memo_id == memo_id]


def list_suppliers(context: RuntimeContext) -> List[data_manager.SupplierRow]:
    return list(_ensure_suppliers_cache(context)["all"])


def get_supplier(context: RuntimeContext, supplier_id: str) -> data_manager.SupplierRow:
    """Resolve a supplier record by its identifier.

    Raises:
        MissingReferenceError: If ``supplier_id`` is absent from the workbook.
    """
    cache = _ensure_suppliers_cache(context)
    try:
        return cache["by_id"][supplier_id]
    except KeyError as exc:
        log.warning("Supplier lookup failed for id '%s'", supplier_id)
        raise MissingReferenceError(f"Unknown supplier id: {supplier_id}") from exc


def list_supplier_transactions(
    context: RuntimeContext,
    *,
    supplier_id: Optional[str] = None,
) -> List[data_manager.SupplierTransactionRow]:
    transactions = _ensure_suppliers_cache(context)["transactions"]
    if supplier_id is None:
        return list(transactions)
    return [txn for txn in transactions if txn.supplier_id == supplier_id]


def list_customer_payments(context: RuntimeContext) -> List[data_manager.CustomerPaymentRow]:
    return list(_ensure_customer_payments_cache(context)["all"])


def generate_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier of the form ``{prefix}{YYYYMMDDHHMMSSffffff}``.

    Caller supplied timestamps allow deterministic identifiers during testing.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def require_nonnegative_money(amount: Decimal) -> Decimal:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValidationError: If ``amount`` is less than zero or not a number.
    """
    parsed = to_decimal(amount, default=Decimal("NaN"))
    if not parsed.is_finite() or parsed < ZERO:
        log.error("Monetary value validation failed: %s", amount)
        raise ValidationError("Amount must be zero or positive")
    return parsed


def require_positive_money(amount: Decimal) -> Decimal:
    parsed = require_nonnegative_money(amount)
    if parsed == ZERO:
        log.error("Monetary value validation failed: %s", amount)
        raise ValidationError("Amount must be greater than zero")
    return parsed


def add_fabric(
    context: RuntimeContext,
    *,
    fabric_id: str,
    name: str,
    code: Optional[str] = None,
    unit: str = "piece",
    low_stock_threshold: Optional[Decimal] = None,
) -> data_manager.FabricRow:
    """Register a new fabric in the ``Fabrics`` sheet.

    Raises:
        BusinessRuleViolation: If ``fabric_id`` already exists.
        ValidationError: If the name is blank or the threshold is negative.
    """
    if fabric_id in _ensure_fabrics_cache(context)["by_id"]:
        log.warning("Attempted to add duplicate fabric '%s'", fabric_id)
        raise BusinessRuleViolation(f"Fabric '{fabric_id}' already exists")
    if not name or not name.strip():
        log.error("Fabric name validation failed for '%s'", fabric_id)
        raise ValidationError("Fabric name is required")
    threshold = (
        require_nonnegative_money(low_stock_threshold)
        if low_stock_threshold is not None
        else context.settings.low_stock_threshold
    )

    record = data_manager.FabricRow(
        fabric_id=fabric_id,
        name=name.strip(),
        code=code,
        unit=unit or "piece",
        low_stock_threshold=threshold,
    )
    data_manager.append_fabric(context.workbook, record)
    _invalidate_cache(context, "fabrics")
    log.info("Added fabric '%s' (%s)", record.fabric_id, record.name)
    return record


def record_purchase(context: RuntimeContext, command: PurchaseCommand) -> Batch:
    """Validate and append a purchased batch.

    Colour splits are written to ``BatchColors`` and the aggregate quantity is
    their sum, so the batch starts out consistent with its splits.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (PurchaseCommand): Structured purchase intent.

    Returns:
        Batch: The new batch as the allocator will see it.

    Raises:
        MissingReferenceError: If the fabric is unknown.
        ValidationError: If quantities or the unit cost are invalid, or a
            colour appears twice (names compare case-insensitively).
    """
    get_fabric(context, command.fabric_id)
    unit_cost = require_nonnegative_money(command.unit_cost)

    if command.colors:
        colors: List[ColorQuantity] = []
        seen: Set[str] = set()
        for split in command.colors:
            if not split.color or not split.color.strip():
                log.error("Colour name missing in purchase for fabric '%s'", command.fabric_id)
                raise ValidationError("Every colour split needs a colour name")
            key = split.color.strip().lower()
            if key in seen:
                log.error("Duplicate colour '%s' in purchase for fabric '%s'", split.color, command.fabric_id)
                raise ValidationError(f"Colour '{split.color.strip()}' is listed more than once")
            seen.add(key)
            colors.append(ColorQuantity(color=split.color.strip(), quantity=inventory.require_positive_quantity(split.quantity)))
        quantity = sum((split.quantity for split in colors), ZERO)
    else:
        colors = []
        quantity = inventory.require_positive_quantity(command.quantity)

    timestamp = _resolve_timestamp(command.timestamp)
    batch = Batch(
        batch_id=generate_id("B", when=timestamp),
        purchase_date=command.purchase_date or timestamp.date(),
        unit_cost=unit_cost,
        quantity=quantity,
        colors=tuple(colors),
        color=command.color.strip() if command.color and not colors else None,
        fabric_id=command.fabric_id,
    )
    data_manager.append_batch(
        context.workbook,
        data_manager.BatchRow(
            batch_id=batch.batch_id,
            fabric_id=command.fabric_id,
            purchase_date=batch.purchase_date,
            unit_cost=batch.unit_cost,
            quantity=batch.quantity,
            color=batch.color,
        ),
    )
    for split in batch.colors:
        data_manager.append_batch_color(
            context.workbook,
            data_manager.BatchColorRow(batch_id=batch.batch_id, color=split.color, quantity=split.quantity),
        )
    _invalidate_cache(context, "batches")
    log.info(
        "Recorded purchase batch '%s' for fabric '%s' (quantity=%s, unit_cost=%s)",
        batch.batch_id,
        command.fabric_id,
        batch.quantity,
        batch.unit_cost,
    )
    return batch


def merge_batches(current: Sequence[Batch], updated: Iterable[Batch]) -> List[Batch]:
    """Replace batches in ``current`` by id with their ``updated`` copies.

    Order follows ``current``; batches the allocator did not return (because
    a colour filter excluded them) are kept as they were.
    """
    replacements = {batch.batch_id: batch for batch in updated}
    return [replacements.get(batch.batch_id, batch) for batch in current]


def price_line(batches: Sequence[Batch], line: SaleLineCommand) -> PricedLine:
    """Allocate stock for ``line`` and compute its revenue and FIFO cost.

    Raises:
        ValidationError: If quantity or price are not positive.
        InsufficientStockError: If the batches cannot cover the quantity.
    """
    quantity = inventory.require_positive_quantity(line.quantity)
    price = require_positive_money(line.price)
    allocation = inventory.allocate(batches, quantity, line.color)
    return PricedLine(command=line, allocation=allocation, total=quantity * price, cost=allocation.total_cost)


def quote_sale_line(context: RuntimeContext, line: SaleLineCommand) -> PricedLine:
    """Price a sale line against current stock without writing anything."""
    get_fabric(context, line.fabric_id)
    return price_line(list_batches(context, fabric_id=line.fabric_id), line)


def _persist_batch_changes(context: RuntimeContext, before: Batch, after: Batch) -> None:
    if after.quantity != before.quantity:
        data_manager.update_batch_quantity(context.workbook, after.batch_id, after.quantity)
    for old, new in zip(before.colors, after.colors):
        if old.quantity != new.quantity:
            data_manager.update_batch_color_quantity(context.workbook, after.batch_id, new.color, new.quantity)


def record_sale(context: RuntimeContext, command: SaleCommand) -> SaleResult:
    """Validate, price, and save a cash memo.

    Each line is allocated FIFO against a working copy of its fabric's
    batches, so two lines for the same fabric see each other's deductions.
    All validation and allocation happens before the first write: if any line
    is short of stock the whole memo is rejected and the workbook is left
    untouched. On success the memo, its lines, the reduced batches, and (for a
    positive deposit) a ``Sales`` cash-in entry are appended.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (SaleCommand): Structured memo intent.

    Returns:
        SaleResult: The persisted memo, its lines, the batches that changed,
            and the deposit entry if one was written.

    Raises:
        ValidationError: If the memo has no lines, no customer, invalid line
            values, or a deposit outside ``0..grand total``.
        MissingReferenceError: If a line references an unknown fabric.
        InsufficientStockError: If any line cannot be covered by stock.
    """
    if not command.lines:
        log.error("Memo '%s' rejected: no lines", command.memo_number)
        raise ValidationError("A cash memo needs at least one line")
    if not command.customer_name or not command.customer_name.strip():
        log.error("Memo '%s' rejected: customer missing", command.memo_number)
        raise ValidationError("A cash memo needs a customer")

    snapshot: Dict[str, Batch] = {}
    working: Dict[str, List[Batch]] = {}
    priced: List[PricedLine] = []
    for line in command.lines:
        get_fabric(context, line.fabric_id)
        if line.fabric_id not in working:
            current = list_batches(context, fabric_id=line.fabric_id)
            snapshot.update({batch.batch_id: batch for batch in current})
            working[line.fabric_id] = current
        try:
            priced_line = price_line(working[line.fabric_id], line)
        except InsufficientStockError:
            log.warning(
                "Memo '%s' rejected: insufficient stock for fabric '%s'",
                command.memo_number,
                line.fabric_id,
            )
            raise
        working[line.fabric_id] = merge_batches(working[line.fabric_id], priced_line.allocation.updated_batches)
        priced.append(priced_line)

    grand_total = sum((line.total for line in priced), ZERO)
    total_cost = sum((line.cost for line in priced), ZERO)
    deposit = require_nonnegative_money(command.deposit)
    if deposit > grand_total:
        log.error("Memo '%s' rejected: deposit %s exceeds total %s", command.memo_number, deposit, grand_total)
        raise ValidationError("Deposit cannot exceed the memo total")

    timestamp = _resolve_timestamp(command.timestamp)
    memo_date = (command.memo_date or timestamp.date()).isoformat()
    memo = data_manager.MemoRow(
        memo_id=generate_id("M", when=timestamp),
        memo_number=command.memo_number,
        customer_id=command.customer_id,
        customer_name=command.customer_name.strip(),
        date=memo_date,
        total=grand_total,
        total_cost=total_cost,
        deposit=deposit,
        created_at=timestamp.isoformat(),
    )
    lines = tuple(
        data_manager.MemoLineRow(
            memo_id=memo.memo_id,
            fabric_id=line.command.fabric_id,
            color=line.command.color,
            quantity=line.allocation.quantity,
            price=line.command.price,
            total=line.total,
            cost=line.cost,
            profit=line.profit,
        )
        for line in priced
    )

    data_manager.append_memo(context.workbook, memo)
    for line_row in lines:
        data_manager.append_memo_line(context.workbook, line_row)

    changed: List[Batch] = []
    for batches in working.values():
        for batch in batches:
            before = snapshot[batch.batch_id]
            if batch != before:
                _persist_batch_changes(context, before, batch)
                changed.append(batch)

    cash_entry = None
    if deposit > ZERO:
        cash_entry = data_manager.CashEntryRow(
            entry_id=generate_id("C", when=timestamp),
            date=memo_date,
            description=f"Cash Memo: {command.memo_number} - {memo.customer_name}",
            cash_in=deposit,
            cash_out=ZERO,
            category=EntryCategory.SALES.value,
            reference=memo.memo_id,
            created_at=timestamp.isoformat(),
        )
        data_manager.append_cash_entry(context.workbook, cash_entry)

    _invalidate_cache(context, "memos", "batches", "cash_entries")
    log.info(
        "Recorded memo '%s' (%s) for '%s' (total=%s, cost=%s, deposit=%s)",
        memo.memo_id,
        memo.memo_number,
        memo.customer_name,
        grand_total,
        total_cost,
        deposit,
    )
    return SaleResult(memo=memo, lines=lines, updated_batches=tuple(changed), cash_entry=cash_entry)


def record_cash_entry(context: RuntimeContext, command: CashEntryCommand) -> data_manager.CashEntryRow:
    """Append a manual cash-in or cash-out entry to the cashbook.

    Raises:
        ValidationError: If the amount is not positive or the description is
            blank.
    """
    amount = require_positive_money(command.amount)
    if not command.description or not command.description.strip():
        log.error("Cash entry rejected: description missing")
        raise ValidationError("A cash entry needs a description")
    direction = CashDirection(command.direction)

    timestamp = _resolve_timestamp(command.timestamp)
    default_category = EntryCategory.OTHER if direction is CashDirection.IN else EntryCategory.EXPENSE
    entry = data_manager.CashEntryRow(
        entry_id=generate_id("C", when=timestamp),
        date=(command.entry_date or timestamp.date()).isoformat(),
        description=command.description.strip(),
        cash_in=amount if direction is CashDirection.IN else ZERO,
        cash_out=amount if direction is CashDirection.OUT else ZERO,
        category=command.category or default_category.value,
        reference=command.reference,
        created_at=timestamp.isoformat(),
    )
    data_manager.append_cash_entry(context.workbook, entry)
    _invalidate_cache(context, "cash_entries")
    log.info(
        "Recorded cash %s entry '%s' (amount=%s)",
        direction.value,
        entry.entry_id,
        amount,
    )
    return entry


def add_supplier(
    context: RuntimeContext,
    *,
    supplier_id: str,
    name: str,
    phone: Optional[str] = None,
) -> data_manager.SupplierRow:
    """Register a supplier in the ``Suppliers`` sheet.

    Raises:
        BusinessRuleViolation: If ``supplier_id`` already exists.
        ValidationError: If the name is blank.
    """
    if supplier_id in _ensure_suppliers_cache(context)["by_id"]:
        log.warning("Attempted to add duplicate supplier '%s'", supplier_id)
        raise BusinessRuleViolation(f"Supplier '{supplier_id}' already exists")
    if not name or not name.strip():
        log.error("Supplier name validation failed for '%s'", supplier_id)
        raise ValidationError("Supplier name is required")

    record = data_manager.SupplierRow(
        supplier_id=supplier_id,
        name=name.strip(),
        phone=phone.strip() if phone and phone.strip() else None,
    )
    data_manager.append_supplier(context.workbook, record)
    _invalidate_cache(context, "suppliers")
    log.info("Added supplier '%s' (%s)", record.supplier_id, record.name)
    return record


def record_supplier_transaction(
    context: RuntimeContext,
    command: SupplierTransactionCommand,
) -> data_manager.SupplierTransactionRow:
    """Append a supplier invoice and/or payment.

    The transaction's due is ``total_amount - paid_amount``; a payment-only
    transaction therefore reduces what is owed to the supplier.

    Raises:
        MissingReferenceError: If the supplier is unknown.
        ValidationError: If the invoice number is blank, an amount is
            negative, or both amounts are zero.
    """
    get_supplier(context, command.supplier_id)
    if not command.invoice_number or not str(command.invoice_number).strip():
        log.error("Supplier transaction rejected: invoice number missing")
        raise ValidationError("Invoice number is required")
    total_amount = require_nonnegative_money(command.total_amount)
    paid_amount = require_nonnegative_money(command.paid_amount)
    if total_amount == ZERO and paid_amount == ZERO:
        log.error("Supplier transaction rejected: no amounts for '%s'", command.supplier_id)
        raise ValidationError("A supplier transaction needs a total or a paid amount")

    timestamp = _resolve_timestamp(command.timestamp)
    record = data_manager.SupplierTransactionRow(
        transaction_id=generate_id("S", when=timestamp),
        supplier_id=command.supplier_id,
        date=(command.transaction_date or timestamp.date()).isoformat(),
        invoice_number=str(command.invoice_number).strip(),
        details=(command.details or "").strip(),
        total_amount=total_amount,
        paid_amount=paid_amount,
        created_at=timestamp.isoformat(),
    )
    data_manager.append_supplier_transaction(context.workbook, record)
    _invalidate_cache(context, "suppliers")
    log.info(
        "Recorded supplier transaction '%s' for '%s' (total=%s, paid=%s)",
        record.transaction_id,
        record.supplier_id,
        total_amount,
        paid_amount,
    )
    return record


def _customer_key(customer_id: Optional[str], customer_name: Optional[str]) -> str:
    return customer_id or customer_name or ""


def memo_outstanding(context: RuntimeContext, memo: data_manager.MemoRow) -> Decimal:
    """What is still open on ``memo`` after its deposit and later payments."""
    paid = sum(
        (payment.amount for payment in list_customer_payments(context) if payment.memo_id == memo.memo_id),
        ZERO,
    )
    return memo.due - paid


def record_customer_payment(
    context: RuntimeContext,
    command: CustomerPaymentCommand,
) -> data_manager.CustomerPaymentRow:
    """Record money a customer pays against their dues after the sale.

    With ``memo_id`` the payment settles that memo and may not exceed what
    is still open on it; otherwise it may not exceed the customer's total
    due. The payment is also posted to the cashbook as a ``Sales`` cash-in
    entry whose reference is the payment id.

    Raises:
        ValidationError: If the amount is not positive or no customer is
            given.
        MissingReferenceError: If the memo is unknown, or the customer has no
            memos.
        BusinessRuleViolation: If the amount exceeds the outstanding due.
    """
    amount = require_positive_money(command.amount)

    memo: Optional[data_manager.MemoRow] = None
    if command.memo_id:
        memo = get_memo(context, command.memo_id)
        customer_id, customer_name = memo.customer_id, memo.customer_name
        outstanding = memo_outstanding(context, memo)
    else:
        customer_id = command.customer_id.strip() if command.customer_id else None
        customer_name = command.customer_name.strip() if command.customer_name else ""
        key = _customer_key(customer_id, customer_name)
        if not key:
            log.error("Customer payment rejected: no customer given")
            raise ValidationError("A customer payment needs a memo or a customer")
        dues = calculate_customer_dues(context)
        if key not in dues:
            log.warning("Customer payment rejected: no memos for customer '%s'", key)
            raise MissingReferenceError(f"No memos found for customer: {key}")
        outstanding = dues[key]
        if not customer_name:
            customer_name = next(
                (m.customer_name for m in reversed(list_memos(context)) if m.customer_id == customer_id),
                "",
            )

    if amount > outstanding:
        log.error(
            "Customer payment rejected: amount %s exceeds outstanding %s for '%s'",
            amount,
            outstanding,
            _customer_key(customer_id, customer_name),
        )
        raise BusinessRuleViolation(f"Payment of {amount} exceeds the outstanding due of {outstanding}")

    timestamp = _resolve_timestamp(command.timestamp)
    payment = data_manager.CustomerPaymentRow(
        payment_id=generate_id("P", when=timestamp),
        customer_id=customer_id,
        customer_name=customer_name,
        memo_id=memo.memo_id if memo is not None else None,
        date=(command.payment_date or timestamp.date()).isoformat(),
        amount=amount,
        created_at=timestamp.isoformat(),
    )
    label = memo.memo_number if memo is not None else customer_name
    cash_entry = data_manager.CashEntryRow(
        entry_id=generate_id("C", when=timestamp),
        date=payment.date,
        description=f"{CUSTOMER_PAYMENT_PREFIX} - {label}",
        cash_in=amount,
        cash_out=ZERO,
        category=EntryCategory.SALES.value,
        reference=payment.payment_id,
        created_at=payment.created_at,
    )
    data_manager.append_customer_payment(context.workbook, payment)
    data_manager.append_cash_entry(context.workbook, cash_entry)
    _invalidate_cache(context, "customer_payments", "cash_entries")
    log.info(
        "Recorded customer payment '%s' from '%s' (amount=%s, memo=%s)",
        payment.payment_id,
        payment.customer_name,
        amount,
        payment.memo_id,
    )
    return payment


def to_ledger_entry(row: data_manager.CashEntryRow) -> ledger.LedgerEntry:
    return ledger.LedgerEntry(
        date=row.date,
        cash_in=row.cash_in,
        cash_out=row.cash_out,
        description=row.description,
        reference=row.reference,
        created_at=row.created_at,
        entry_id=row.entry_id,
        category=row.category,
    )


def cashbook_entries(context: RuntimeContext) -> List[ledger.LedgerEntry]:
    """Return every cashbook entry, including memo deposits posted by ``record_sale``."""
    return [to_ledger_entry(row) for row in list_cash_entries(context)]


def cashbook_report(
    context: RuntimeContext,
    *,
    date: Optional[object] = None,
    search_term: Optional[str] = None,
) -> ledger.LedgerReport:
    """Aggregate the cashbook for display; see :func:`fabric_pos.ledger.aggregate`."""
    return ledger.aggregate(cashbook_entries(context), date=date, search_term=search_term)


def calculate_financial_summary(context: RuntimeContext) -> ledger.FinancialSummary:
    """Cash flow and receivables across memos and manual entries.

    Memo deposits are derived from the memos themselves, so the deposit
    entries ``record_sale`` posts to the cashbook are left out here to avoid
    counting them twice. Later customer payments stay in the cashbook as cash
    in and reduce the receivables.
    """
    memos = list_memos(context)
    memo_ids = {memo.memo_id for memo in memos}
    manual = [entry for entry in cashbook_entries(context) if entry.reference not in memo_ids]
    return ledger.financial_summary(memos, manual, list_customer_payments(context))


def calculate_inventory(context: RuntimeContext) -> Dict[str, Decimal]:
    """Compute on-hand quantity per fabric from the batch sheets.

    Every known fabric appears in the result, with zero when it has no stock.
    """
    totals: Dict[str, Decimal] = {fabric.fabric_id: ZERO for fabric in list_fabrics(context)}
    for fabric_id, batches in _ensure_batches_cache(context)["by_fabric"].items():
        totals[fabric_id] = totals.get(fabric_id, ZERO) + inventory.total_quantity(batches)
    log.debug("Calculated inventory balances for %d fabrics", len(totals))
    return totals


def _threshold_for(context: RuntimeContext, fabric: data_manager.FabricRow) -> Decimal:
    if fabric.low_stock_threshold > ZERO:
        return fabric.low_stock_threshold
    return context.settings.low_stock_threshold


def stock_summary(context: RuntimeContext) -> List[FabricStock]:
    """Per-fabric quantity, weighted average cost, colours, and low-stock flag."""
    summary: List[FabricStock] = []
    for fabric in list_fabrics(context):
        batches = list_batches(context, fabric_id=fabric.fabric_id)
        summary.append(
            FabricStock(
                fabric=fabric,
                quantity=inventory.total_quantity(batches),
                average_cost=inventory.weighted_average_cost(batches),
                colors=tuple(inventory.available_colors(batches)),
                is_low=inventory.is_low_stock(batches, _threshold_for(context, fabric)),
            )
        )
    return summary


def low_stock_fabrics(context: RuntimeContext) -> List[data_manager.FabricRow]:
    return [item.fabric for item in stock_summary(context) if item.is_low]


def calculate_inventory_profit(context: RuntimeContext) -> InventoryProfitReport:
    """Sum quantity sold and profit per fabric from the memo lines."""
    sold: Dict[str, Decimal] = {}
    profit: Dict[str, Decimal] = {}
    for line in list_memo_lines(context):
        sold[line.fabric_id] = sold.get(line.fabric_id, ZERO) + line.quantity
        profit[line.fabric_id] = profit.get(line.fabric_id, ZERO) + line.profit

    rows = tuple(
        FabricProfit(
            fabric_id=fabric.fabric_id,
            name=fabric.name,
            quantity_sold=sold.get(fabric.fabric_id, ZERO),
            profit=profit.get(fabric.fabric_id, ZERO),
        )
        for fabric in list_fabrics(context)
    )
    total = sum((row.profit for row in rows), ZERO)
    log.debug("Calculated inventory profit across %d fabrics: %s", len(rows), total)
    return InventoryProfitReport(fabrics=rows, total_profit=total)


def calculate_customer_dues(context: RuntimeContext) -> Dict[str, Decimal]:
    """Outstanding balance per customer: memo totals minus deposits and payments.

    Customers are keyed by ``customer_id`` when the memo has one, otherwise by
    name. A customer who has settled everything stays listed at zero.
    """
    dues: Dict[str, Decimal] = {}
    for memo in list_memos(context):
        key = _customer_key(memo.customer_id, memo.customer_name)
        dues[key] = dues.get(key, ZERO) + memo.due
    for payment in list_customer_payments(context):
        key = _customer_key(payment.customer_id, payment.customer_name)
        dues[key] = dues.get(key, ZERO) - payment.amount
    return dues


def calculate_supplier_dues(context: RuntimeContext) -> SupplierDuesReport:
    """Total invoiced, paid, and still owed per supplier and overall."""
    totals: Dict[str, Decimal] = {}
    paid: Dict[str, Decimal] = {}
    for transaction in list_supplier_transactions(context):
        totals[transaction.supplier_id] = totals.get(transaction.supplier_id, ZERO) + transaction.total_amount
        paid[transaction.supplier_id] = paid.get(transaction.supplier_id, ZERO) + transaction.paid_amount

    balances = tuple(
        SupplierBalance(
            supplier=supplier,
            total_amount=totals.get(supplier.supplier_id, ZERO),
            paid_amount=paid.get(supplier.supplier_id, ZERO),
            due=totals.get(supplier.supplier_id, ZERO) - paid.get(supplier.supplier_id, ZERO),
        )
        for supplier in list_suppliers(context)
    )
    total_amount = sum((balance.total_amount for balance in balances), ZERO)
    paid_amount = sum((balance.paid_amount for balance in balances), ZERO)
    return SupplierDuesReport(
        suppliers=balances,
        total_amount=total_amount,
        paid_amount=paid_amount,
        due_amount=total_amount - paid_amount,
    )


def _profit_between(memos: Iterable[data_manager.MemoRow], start: date, end: date) -> Decimal:
    total = ZERO
    for memo in memos:
        memo_date = parse_date(memo.date)
        if memo_date is not None and start <= memo_date <= end:
            total += memo.total - memo.total_cost
    return total


def period_profit(memos: Sequence[data_manager.MemoRow], today: date) -> PeriodProfit:
    """Profit of the memos dated this week, this month, and this year.

    Weeks start on Sunday. Every period runs up to and including ``today``;
    memos dated later, or without a readable date, are not counted.
    """
    week_start = today - timedelta(days=(today.weekday() + 1) % 7)
    return PeriodProfit(
        weekly=_profit_between(memos, week_start, today),
        monthly=_profit_between(memos, today.replace(day=1), today),
        yearly=_profit_between(memos, today.replace(month=1, day=1), today),
    )


def calculate_period_profit(context: RuntimeContext, *, today: Optional[date] = None) -> PeriodProfit:
    today = today or _resolve_timestamp(None).date()
    report = period_profit(list_memos(context), today)
    log.debug("Calculated period profit as of %s: %s", today, report)
    return report


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to disk."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook and
            an empty cache.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)

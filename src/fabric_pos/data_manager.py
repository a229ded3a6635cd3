"""Data access layer for Fabric POS.

This module provides low-level helpers that read from and write to the
``fabric_master.xlsx`` workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and persisting the Excel file.
3. Sheet operations: loading structured records and appending or updating
   individual rows.

Dates are stored as ISO ``YYYY-MM-DD`` text and timestamps as ISO text so that
Excel never reinterprets them. Numeric columns hold numbers and are read back
as :class:`~decimal.Decimal`.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
import openpyxl

from . import log
from .coercion import normalize_date, parse_date, to_decimal
from .constants import SheetName


CONFIG_FILE_NAME = "config.ini"
DEFAULT_LOW_STOCK_THRESHOLD = "10"
FABRICS_SHEET = SheetName.FABRICS.value
BATCHES_SHEET = SheetName.BATCHES.value
BATCH_COLORS_SHEET = SheetName.BATCH_COLORS.value
CASH_ENTRIES_SHEET = SheetName.CASH_ENTRIES.value
MEMOS_SHEET = SheetName.MEMOS.value
MEMO_LINES_SHEET = SheetName.MEMO_LINES.value
SUPPLIERS_SHEET = SheetName.SUPPLIERS.value
SUPPLIER_TRANSACTIONS_SHEET = SheetName.SUPPLIER_TRANSACTIONS.value
CUSTOMER_PAYMENTS_SHEET = SheetName.CUSTOMER_PAYMENTS.value


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    low_stock_threshold: Decimal


@dataclass(frozen=True)
class FabricRow:
    """In-memory view of a row from the ``Fabrics`` sheet."""

    fabric_id: str
    name: str
    code: Optional[str]
    unit: str
    low_stock_threshold: Decimal


@dataclass(frozen=True)
class BatchRow:
    """In-memory view of a row from the ``Batches`` sheet."""

    batch_id: str
    fabric_id: str
    purchase_date: Optional[date]
    unit_cost: Decimal
    quantity: Decimal
    color: Optional[str]


@dataclass(frozen=True)
class BatchColorRow:
    """One colour split of a batch, from the ``BatchColors`` sheet."""

    batch_id: str
    color: str
    quantity: Decimal


@dataclass(frozen=True)
class CashEntryRow:
    """In-memory view of a row from the ``CashEntries`` sheet."""

    entry_id: str
    date: Optional[str]
    description: str
    cash_in: Decimal
    cash_out: Decimal
    category: Optional[str]
    reference: Optional[str]
    created_at: Optional[str]


@dataclass(frozen=True)
class MemoRow:
    """In-memory view of a row from the ``Memos`` sheet."""

    memo_id: str
    memo_number: str
    customer_id: Optional[str]
    customer_name: str
    date: Optional[str]
    total: Decimal
    total_cost: Decimal
    deposit: Decimal
    created_at: Optional[str]

    @property
    def due(self) -> Decimal:
        return self.total - self.deposit


@dataclass(frozen=True)
class MemoLineRow:
    """In-memory view of a row from the ``MemoLines`` sheet."""

    memo_id: str
    fabric_id: str
    color: Optional[str]
    quantity: Decimal
    price: Decimal
    total: Decimal
    cost: Decimal
    profit: Decimal


@dataclass(frozen=True)
class SupplierRow:
    """In-memory view of a row from the ``Suppliers`` sheet."""

    supplier_id: str
    name: str
    phone: Optional[str]


@dataclass(frozen=True)
class SupplierTransactionRow:
    """A supplier invoice and/or payment from ``SupplierTransactions``."""

    transaction_id: str
    supplier_id: str
    date: Optional[str]
    invoice_number: str
    details: str
    total_amount: Decimal
    paid_amount: Decimal
    created_at: Optional[str]

    @property
    def due(self) -> Decimal:
        return self.total_amount - self.paid_amount


@dataclass(frozen=True)
class CustomerPaymentRow:
    """Money received from a customer after the sale, from ``CustomerPayments``."""

    payment_id: str
    customer_id: Optional[str]
    customer_name: str
    memo_id: Optional[str]
    date: Optional[str]
    amount: Decimal
    created_at: Optional[str]


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are expanded against ``base_path`` when
    provided, or against the current working directory as a fallback.
    ``[Defaults] LowStockThreshold`` is optional.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    threshold_raw = parser.get("Defaults", "LowStockThreshold", fallback=DEFAULT_LOW_STOCK_THRESHOLD)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        low_stock_threshold=to_decimal(threshold_raw, default=Decimal(DEFAULT_LOW_STOCK_THRESHOLD)),
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_sheet(workbook: Workbook, sheet_name: str) -> Iterable[tuple]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_fabrics(workbook: Workbook) -> Iterable[FabricRow]:
    """Iterate over fabric records stored on the ``Fabrics`` worksheet."""

    for raw in _iter_sheet(workbook, FABRICS_SHEET):
        yield deserialize_fabric(raw)


def iter_batches(workbook: Workbook) -> Iterable[BatchRow]:
    """Iterate over the ``Batches`` worksheet in sheet order."""

    for raw in _iter_sheet(workbook, BATCHES_SHEET):
        yield deserialize_batch(raw)


def iter_batch_colors(workbook: Workbook) -> Iterable[BatchColorRow]:
    for raw in _iter_sheet(workbook, BATCH_COLORS_SHEET):
        yield deserialize_batch_color(raw)


def iter_cash_entries(workbook: Workbook) -> Iterable[CashEntryRow]:
    """Stream cashbook entries from the ``CashEntries`` worksheet."""

    for raw in _iter_sheet(workbook, CASH_ENTRIES_SHEET):
        yield deserialize_cash_entry(raw)


def iter_memos(workbook: Workbook) -> Iterable[MemoRow]:
    for raw in _iter_sheet(workbook, MEMOS_SHEET):
        yield deserialize_memo(raw)


def iter_memo_lines(workbook: Workbook) -> Iterable[MemoLineRow]:
    for raw in _iter_sheet(workbook, MEMO_LINES_SHEET):
        yield deserialize_memo_line(raw)


def iter_suppliers(workbook: Workbook) -> Iterable[SupplierRow]:
    for raw in _iter_sheet(workbook, SUPPLIERS_SHEET):
        yield deserialize_supplier(raw)


def iter_supplier_transactions(workbook: Workbook) -> Iterable[SupplierTransactionRow]:
    """Stream supplier invoices and payments in sheet order."""

    for raw in _iter_sheet(workbook, SUPPLIER_TRANSACTIONS_SHEET):
        yield deserialize_supplier_transaction(raw)


def iter_customer_payments(workbook: Workbook) -> Iterable[CustomerPaymentRow]:
    for raw in _iter_sheet(workbook, CUSTOMER_PAYMENTS_SHEET):
        yield deserialize_customer_payment(raw)


def append_fabric(workbook: Workbook, record: FabricRow) -> None:
    workbook[FABRICS_SHEET].append(serialize_fabric(record))


def append_batch(workbook: Workbook, record: BatchRow) -> None:
    workbook[BATCHES_SHEET].append(serialize_batch(record))


def append_batch_color(workbook: Workbook, record: BatchColorRow) -> None:
    workbook[BATCH_COLORS_SHEET].append(serialize_batch_color(record))


def append_cash_entry(workbook: Workbook, record: CashEntryRow) -> None:
    workbook[CASH_ENTRIES_SHEET].append(serialize_cash_entry(record))


def append_memo(workbook: Workbook, record: MemoRow) -> None:
    workbook[MEMOS_SHEET].append(serialize_memo(record))


def append_memo_line(workbook: Workbook, record: MemoLineRow) -> None:
    workbook[MEMO_LINES_SHEET].append(serialize_memo_line(record))


def append_supplier(workbook: Workbook, record: SupplierRow) -> None:
    workbook[SUPPLIERS_SHEET].append(serialize_supplier(record))


def append_supplier_transaction(workbook: Workbook, record: SupplierTransactionRow) -> None:
    workbook[SUPPLIER_TRANSACTIONS_SHEET].append(serialize_supplier_transaction(record))


def append_customer_payment(workbook: Workbook, record: CustomerPaymentRow) -> None:
    workbook[CUSTOMER_PAYMENTS_SHEET].append(serialize_customer_payment(record))


def _header_map(sheet: Worksheet) -> Dict[Any, int]:
    """Map header titles to their 1-based column index."""

    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def locate_row_matching(workbook: Workbook, sheet_name: str, criteria: Mapping[str, object]) -> Optional[int]:
    """Find the first row whose columns equal every value in ``criteria``.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        criteria (Mapping[str, object]): Header title to expected value.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If a criteria column is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    for column in criteria:
        if column not in header_map:
            raise KeyError(f"Unknown column: {column}")

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if all(row[header_map[column] - 1] == value for column, value in criteria.items()):
            return row_idx

    return None


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a single key column."""

    return locate_row_matching(workbook, sheet_name, {key_column: key_value})


def _update_cells(workbook: Workbook, sheet_name: str, row_index: int, field_values: Mapping[str, Any]) -> None:
    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    for field_name, value in field_values.items():
        if field_name not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {field_name}")
        sheet.cell(row=row_index, column=header_map[field_name], value=value)


def update_batch_quantity(workbook: Workbook, batch_id: str, quantity: Decimal) -> None:
    """Overwrite the aggregate ``Quantity`` cell of a batch.

    Raises:
        KeyError: If the batch cannot be found.
    """

    row_index = locate_row(workbook, BATCHES_SHEET, "BatchID", batch_id)
    if row_index is None:
        raise KeyError(f"Batch not found: {batch_id}")
    _update_cells(workbook, BATCHES_SHEET, row_index, {"Quantity": quantity})


def update_batch_color_quantity(workbook: Workbook, batch_id: str, color: str, quantity: Decimal) -> None:
    """Overwrite the quantity of one colour split; appends the split if absent."""

    row_index = locate_row_matching(workbook, BATCH_COLORS_SHEET, {"BatchID": batch_id, "Color": color})
    if row_index is None:
        log.debug("Adding missing colour row '%s' to batch '%s'", color, batch_id)
        append_batch_color(workbook, BatchColorRow(batch_id=batch_id, color=color, quantity=quantity))
        return
    _update_cells(workbook, BATCH_COLORS_SHEET, row_index, {"Quantity": quantity})


def serialize_fabric(record: FabricRow) -> list[object]:
    return [record.fabric_id, record.name, record.code, record.unit, record.low_stock_threshold]


def serialize_batch(record: BatchRow) -> list[object]:
    """Convert a batch dataclass into ``[BatchID, FabricID, PurchaseDate,
    UnitCost, Quantity, Color]``."""

    return [
        record.batch_id,
        record.fabric_id,
        record.purchase_date.isoformat() if record.purchase_date else None,
        record.unit_cost,
        record.quantity,
        record.color,
    ]


def serialize_batch_color(record: BatchColorRow) -> list[object]:
    return [record.batch_id, record.color, record.quantity]


def serialize_cash_entry(record: CashEntryRow) -> list[object]:
    return [
        record.entry_id,
        record.date,
        record.description,
        record.cash_in,
        record.cash_out,
        record.category,
        record.reference,
        record.created_at,
    ]


def serialize_memo(record: MemoRow) -> list[object]:
    return [
        record.memo_id,
        record.memo_number,
        record.customer_id,
        record.customer_name,
        record.date,
        record.total,
        record.total_cost,
        record.deposit,
        record.created_at,
    ]


def serialize_memo_line(record: MemoLineRow) -> list[object]:
    return [
        record.memo_id,
        record.fabric_id,
        record.color,
        record.quantity,
        record.price,
        record.total,
        record.cost,
        record.profit,
    ]


def serialize_supplier(record: SupplierRow) -> list[object]:
    return [record.supplier_id, record.name, record.phone]


def serialize_supplier_transaction(record: SupplierTransactionRow) -> list[object]:
    return [
        record.transaction_id,
        record.supplier_id,
        record.date,
        record.invoice_number,
        record.details,
        record.total_amount,
        record.paid_amount,
        record.created_at,
    ]


def serialize_customer_payment(record: CustomerPaymentRow) -> list[object]:
    return [
        record.payment_id,
        record.customer_id,
        record.customer_name,
        record.memo_id,
        record.date,
        record.amount,
        record.created_at,
    ]


def _text(value: object) -> Optional[str]:
    return str(value) if value is not None else None


def _timestamp(value: object) -> Optional[str]:
    # openpyxl may hand back datetime objects for cells edited by hand in Excel.
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def deserialize_fabric(raw_row: Sequence[object]) -> FabricRow:
    """Convert a raw worksheet row into a strongly typed fabric record.

    Identifier and name fields are coerced to ``str`` so numeric-looking codes
    typed into Excel do not surface as integers.
    """

    fabric_id, name, code, unit, threshold = (list(raw_row) + [None] * 5)[:5]
    return FabricRow(
        fabric_id=str(fabric_id),
        name=str(name) if name is not None else "",
        code=_text(code),
        unit=str(unit) if unit else "piece",
        low_stock_threshold=to_decimal(threshold),
    )


def deserialize_batch(raw_row: Sequence[object]) -> BatchRow:
    batch_id, fabric_id, purchase_date, unit_cost, quantity, color = (list(raw_row) + [None] * 6)[:6]
    return BatchRow(
        batch_id=str(batch_id),
        fabric_id=str(fabric_id),
        purchase_date=parse_date(purchase_date),
        unit_cost=to_decimal(unit_cost),
        quantity=to_decimal(quantity),
        color=_text(color),
    )


def deserialize_batch_color(raw_row: Sequence[object]) -> BatchColorRow:
    batch_id, color, quantity = (list(raw_row) + [None] * 3)[:3]
    return BatchColorRow(batch_id=str(batch_id), color=str(color) if color is not None else "", quantity=to_decimal(quantity))


def deserialize_cash_entry(raw_row: Sequence[object]) -> CashEntryRow:
    """Convert a raw worksheet row into a cashbook entry.

    Unparseable amounts become zero and unparseable dates become ``None`` so a
    hand-edited sheet cannot break the cashbook reports.
    """

    entry_id, entry_date, description, cash_in, cash_out, category, reference, created_at = (
        list(raw_row) + [None] * 8
    )[:8]
    return CashEntryRow(
        entry_id=str(entry_id),
        date=normalize_date(entry_date),
        description=str(description) if description is not None else "",
        cash_in=to_decimal(cash_in),
        cash_out=to_decimal(cash_out),
        category=_text(category),
        reference=_text(reference),
        created_at=_timestamp(created_at),
    )


def deserialize_memo(raw_row: Sequence[object]) -> MemoRow:
    memo_id, memo_number, customer_id, customer_name, memo_date, total, total_cost, deposit, created_at = (
        list(raw_row) + [None] * 9
    )[:9]
    return MemoRow(
        memo_id=str(memo_id),
        memo_number=str(memo_number) if memo_number is not None else "",
        customer_id=_text(customer_id),
        customer_name=str(customer_name) if customer_name is not None else "",
        date=normalize_date(memo_date),
        total=to_decimal(total),
        total_cost=to_decimal(total_cost),
        deposit=to_decimal(deposit),
        created_at=_timestamp(created_at),
    )


def deserialize_memo_line(raw_row: Sequence[object]) -> MemoLineRow:
    memo_id, fabric_id, color, quantity, price, total, cost, profit = (list(raw_row) + [None] * 8)[:8]
    return MemoLineRow(
        memo_id=str(memo_id),
        fabric_id=str(fabric_id),
        color=_text(color),
        quantity=to_decimal(quantity),
        price=to_decimal(price),
        total=to_decimal(total),
        cost=to_decimal(cost),
        profit=to_decimal(profit),
    )


def deserialize_supplier(raw_row: Sequence[object]) -> SupplierRow:
    supplier_id, name, phone = (list(raw_row) + [None] * 3)[:3]
    return SupplierRow(
        supplier_id=str(supplier_id),
        name=str(name) if name is not None else "",
        phone=_text(phone),
    )


def deserialize_supplier_transaction(raw_row: Sequence[object]) -> SupplierTransactionRow:
    """Convert a raw worksheet row into a supplier transaction.

    Invoice numbers typed into Excel may come back as integers; they are kept
    as text. Blank amounts count as zero.
    """

    transaction_id, supplier_id, txn_date, invoice_number, details, total_amount, paid_amount, created_at = (
        list(raw_row) + [None] * 8
    )[:8]
    return SupplierTransactionRow(
        transaction_id=str(transaction_id),
        supplier_id=str(supplier_id),
        date=normalize_date(txn_date),
        invoice_number=str(invoice_number) if invoice_number is not None else "",
        details=str(details) if details is not None else "",
        total_amount=to_decimal(total_amount),
        paid_amount=to_decimal(paid_amount),
        created_at=_timestamp(created_at),
    )


def deserialize_customer_payment(raw_row: Sequence[object]) -> CustomerPaymentRow:
    payment_id, customer_id, customer_name, memo_id, payment_date, amount, created_at = (
        list(raw_row) + [None] * 7
    )[:7]
    return CustomerPaymentRow(
        payment_id=str(payment_id),
        customer_id=_text(customer_id),
        customer_name=str(customer_name) if customer_name is not None else "",
        memo_id=_text(memo_id),
        date=normalize_date(payment_date),
        amount=to_decimal(amount),
        created_at=_timestamp(created_at),
    )

"""Cashbook aggregation: daily and monthly totals and running balances.

The functions here turn a flat list of cash-in / cash-out entries into the
figures shown on the cashbook screen. They are pure and lenient: an entry with
a missing or malformed date is left out of the per-day views, an amount that
cannot be parsed counts as zero, and nothing in this module raises for bad
data. Input entries are never modified; every derived record is new.

Two different "balance" figures are produced and they must not be confused:

* :attr:`DailyTotal.balance` is the net movement of a single day.
* :attr:`LedgerLine.balance` is the cumulative cash position right after the
  entry, starting from the opening balance and accumulated in chronological
  order (dates ascending, ``created_at`` ascending within a date).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from . import log
from .coercion import ZERO, normalize_date, normalize_timestamp, parse_timestamp, to_decimal
from .constants import CUSTOMER_PAYMENT_PREFIX, EntryCategory


@dataclass(frozen=True)
class LedgerEntry:
    """A single cash movement as stored by the cashbook."""

    date: Optional[str]
    cash_in: Decimal = ZERO
    cash_out: Decimal = ZERO
    description: str = ""
    reference: Optional[str] = None
    created_at: Optional[str] = None
    entry_id: Optional[str] = None
    category: Optional[str] = None

    @property
    def net(self) -> Decimal:
        return to_decimal(self.cash_in) - to_decimal(self.cash_out)


@dataclass(frozen=True)
class LedgerLine:
    """An entry as shown in the detail view, with its cumulative balance."""

    entry: LedgerEntry
    amount: Decimal
    balance: Decimal


@dataclass(frozen=True)
class DayGroup:
    income: Tuple[LedgerLine, ...] = ()
    expense: Tuple[LedgerLine, ...] = ()


@dataclass(frozen=True)
class DailyTotal:
    """Per-day totals; ``balance`` is the day's net, not a running figure."""

    date: str
    cash_in: Decimal
    cash_out: Decimal
    balance: Decimal
    entries: Tuple[LedgerEntry, ...]


@dataclass(frozen=True)
class MonthlyTotal:
    month: str
    cash_in: Decimal
    cash_out: Decimal
    balance: Decimal


@dataclass(frozen=True)
class Financials:
    total_cash_in: Decimal
    total_cash_out: Decimal
    available_cash: Decimal


@dataclass(frozen=True)
class LedgerReport:
    """Everything the cashbook screen needs, computed in one pass."""

    opening_balance: Decimal
    daily_totals: Tuple[DailyTotal, ...]
    financials: Financials
    monthly_totals: Tuple[MonthlyTotal, ...]
    grouped_entries: Dict[str, DayGroup] = field(default_factory=dict)
    sorted_dates: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CashBookDay:
    """A day of the combined cash book with the cumulative closing balance."""

    date: str
    cash_in: Decimal
    cash_out: Decimal
    balance: Decimal
    entries: Tuple[LedgerEntry, ...]


@dataclass(frozen=True)
class CashFlowStatement:
    total_cash_in: Decimal
    total_cash_out: Decimal
    closing_balance: Decimal
    daily_breakdown: Tuple[CashBookDay, ...]


@dataclass(frozen=True)
class FinancialSummary:
    cash_flow: CashFlowStatement
    total_receivables: Decimal
    available_cash: Decimal
    total_assets: Decimal


EntryLike = Union[LedgerEntry, Mapping[str, Any]]


@dataclass(frozen=True)
class _Row:
    position: int
    entry: LedgerEntry
    date: Optional[str]
    cash_in: Decimal
    cash_out: Decimal
    created_key: Optional[datetime]

    @property
    def net(self) -> Decimal:
        return self.cash_in - self.cash_out


_ENTRY_KEYS: Mapping[str, Tuple[str, ...]] = {
    "date": ("date",),
    "cash_in": ("cash_in", "cashIn"),
    "cash_out": ("cash_out", "cashOut"),
    "description": ("description",),
    "reference": ("reference", "transactionId", "transaction_id"),
    "created_at": ("created_at", "createdAt"),
    "entry_id": ("entry_id", "id"),
    "category": ("category",),
}


def _read(source: Any, *names: str) -> Any:
    """Fetch the first present attribute or mapping key among ``names``."""

    for name in names:
        if isinstance(source, Mapping):
            if name in source and source[name] is not None:
                return source[name]
        else:
            value = getattr(source, name, None)
            if value is not None:
                return value
    return None


def coerce_entry(raw: EntryLike) -> LedgerEntry:
    """Build a :class:`LedgerEntry` from a mapping or pass an entry through.

    Mappings may use either ``snake_case`` or the ``camelCase`` keys of the
    stored documents (``cashIn``, ``createdAt``). Amounts are converted with
    :func:`~fabric_pos.coercion.to_decimal`; unparseable amounts become zero.
    """

    if isinstance(raw, LedgerEntry):
        return raw
    values = {key: _read(raw, *names) for key, names in _ENTRY_KEYS.items()}
    created_at = values["created_at"]
    return LedgerEntry(
        date=normalize_date(values["date"]),
        cash_in=to_decimal(values["cash_in"]),
        cash_out=to_decimal(values["cash_out"]),
        description=str(values["description"]) if values["description"] is not None else "",
        reference=str(values["reference"]) if values["reference"] is not None else None,
        created_at=normalize_timestamp(created_at) if created_at is not None else None,
        entry_id=str(values["entry_id"]) if values["entry_id"] is not None else None,
        category=str(values["category"]) if values["category"] is not None else None,
    )


def _rows(entries: Iterable[EntryLike]) -> List[_Row]:
    rows: List[_Row] = []
    for position, raw in enumerate(entries):
        entry = coerce_entry(raw)
        date_key = normalize_date(entry.date)
        if date_key is None:
            log.debug("Ledger entry %s has no usable date; skipped from grouping", entry.entry_id or position)
        rows.append(
            _Row(
                position=position,
                entry=entry,
                date=date_key,
                cash_in=to_decimal(entry.cash_in),
                cash_out=to_decimal(entry.cash_out),
                created_key=parse_timestamp(entry.created_at),
            )
        )
    return rows


def calculate_opening_balance(rows: Sequence[_Row], cutoff: Optional[str]) -> Decimal:
    if cutoff is None:
        return ZERO
    return sum((row.net for row in rows if row.date is not None and row.date < cutoff), ZERO)


def calculate_financials(rows: Sequence[_Row]) -> Financials:
    total_in = sum((row.cash_in for row in rows), ZERO)
    total_out = sum((row.cash_out for row in rows), ZERO)
    return Financials(total_cash_in=total_in, total_cash_out=total_out, available_cash=total_in - total_out)


def calculate_daily_totals(rows: Sequence[_Row]) -> List[DailyTotal]:
    """Group dated rows per day, newest day first."""

    buckets: Dict[str, List[_Row]] = {}
    for row in rows:
        if row.date is None:
            continue
        if row.date not in buckets:
            buckets[row.date] = []
        buckets[row.date].append(row)

    totals: List[DailyTotal] = []
    for day in sorted(buckets, reverse=True):
        day_rows = buckets[day]
        cash_in = sum((row.cash_in for row in day_rows), ZERO)
        cash_out = sum((row.cash_out for row in day_rows), ZERO)
        totals.append(
            DailyTotal(
                date=day,
                cash_in=cash_in,
                cash_out=cash_out,
                balance=cash_in - cash_out,
                entries=tuple(row.entry for row in day_rows),
            )
        )
    return totals


def calculate_monthly_totals(rows: Sequence[_Row]) -> List[MonthlyTotal]:
    """Group dated rows per ``YYYY-MM`` month, newest month first."""

    sums: Dict[str, Tuple[Decimal, Decimal]] = {}
    for row in rows:
        if row.date is None:
            continue
        month = row.date[:7]
        cash_in, cash_out = sums.get(month, (ZERO, ZERO))
        sums[month] = (cash_in + row.cash_in, cash_out + row.cash_out)
    return [
        MonthlyTotal(month=month, cash_in=cash_in, cash_out=cash_out, balance=cash_in - cash_out)
        for month, (cash_in, cash_out) in sorted(sums.items(), reverse=True)
    ]


def _filter_rows(rows: Sequence[_Row], date_filter: Optional[str], search_term: Optional[str]) -> List[_Row]:
    needle = search_term.lower() if search_term else None
    selected: List[_Row] = []
    for row in rows:
        if row.date is None:
            continue
        if date_filter is not None and row.date != date_filter:
            continue
        if needle is not None and needle not in (row.entry.description or "").lower():
            continue
        selected.append(row)
    return selected


_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def _creation_order(row: _Row) -> Tuple[bool, datetime, int]:
    # Rows without a creation time go first, then by instant, then input order.
    return (row.created_key is not None, row.created_key or _EARLIEST, row.position)


def _running_balances(rows: Sequence[_Row], opening_balance: Decimal) -> Dict[int, Decimal]:
    """Cumulative balance after each row, keyed by row position.

    Dates are walked oldest first no matter how the report is later displayed;
    within a date, rows are ordered by ``created_at`` and then input order.
    Each row contributes once even when it has both cash in and cash out.
    """

    by_date: Dict[str, List[_Row]] = {}
    for row in rows:
        if row.date not in by_date:
            by_date[row.date] = []
        by_date[row.date].append(row)

    running = opening_balance
    balances: Dict[int, Decimal] = {}
    for day in sorted(by_date):
        for row in sorted(by_date[day], key=_creation_order):
            running += row.net
            balances[row.position] = running
    return balances


def group_entries(
    rows: Sequence[_Row],
    opening_balance: Decimal,
) -> Tuple[Dict[str, DayGroup], Tuple[str, ...]]:
    """Split rows into per-day income and expense lines with running balances.

    Every date among ``rows`` is listed, even when none of its entries moves
    cash; such a day simply has empty income and expense lines.
    """

    movers = [row for row in rows if row.cash_in > ZERO or row.cash_out > ZERO]
    balances = _running_balances(movers, opening_balance)

    income: Dict[str, List[LedgerLine]] = {row.date: [] for row in rows}
    expense: Dict[str, List[LedgerLine]] = {row.date: [] for row in rows}
    for row in movers:
        balance = balances[row.position]
        if row.cash_in > ZERO:
            income[row.date].append(LedgerLine(entry=row.entry, amount=row.cash_in, balance=balance))
        if row.cash_out > ZERO:
            expense[row.date].append(LedgerLine(entry=row.entry, amount=row.cash_out, balance=balance))

    dates = tuple(sorted(income, reverse=True))
    grouped = {day: DayGroup(income=tuple(income[day]), expense=tuple(expense[day])) for day in dates}
    return grouped, dates


def aggregate(
    entries: Iterable[EntryLike],
    date: object = None,
    search_term: Optional[str] = None,
) -> LedgerReport:
    """Compute the full cashbook report for ``entries``.

    Args:
        entries (Iterable[LedgerEntry | Mapping]): Manual cash entries plus any
            customer-payment entries, in any order.
        date (object): Optional reporting date. Entries strictly before it form
            the opening balance, and the detail view is limited to it.
        search_term (str | None): Optional case-insensitive filter on the entry
            description, applied to the detail view only.

    Returns:
        LedgerReport: Opening balance, per-day and per-month totals (newest
            first), whole-book financials, and the filtered detail view with
            running balances.
    """

    rows = _rows(entries)
    cutoff = normalize_date(date) if date not in (None, "") else None
    if date not in (None, "") and cutoff is None:
        log.warning("Ignoring malformed cashbook date filter: %r", date)

    opening_balance = calculate_opening_balance(rows, cutoff)
    filtered = _filter_rows(rows, cutoff, search_term)
    grouped, sorted_dates = group_entries(filtered, opening_balance)

    report = LedgerReport(
        opening_balance=opening_balance,
        daily_totals=tuple(calculate_daily_totals(rows)),
        financials=calculate_financials(rows),
        monthly_totals=tuple(calculate_monthly_totals(rows)),
        grouped_entries=grouped,
        sorted_dates=sorted_dates,
    )
    log.debug(
        "Aggregated %d ledger entries into %d days (%d shown)",
        len(rows),
        len(report.daily_totals),
        len(sorted_dates),
    )
    return report


def customer_payment_entries(memos: Iterable[Any]) -> List[LedgerEntry]:
    """Turn cash-memo deposits into cash-in ledger entries.

    ``memos`` may hold memo records or plain mappings; only ``date``,
    ``memo_number`` (or ``memoNumber``), ``deposit``, ``memo_id`` (or ``id``)
    and ``created_at`` are read.
    """

    entries: List[LedgerEntry] = []
    for memo in memos:
        memo_number = _read(memo, "memo_number", "memoNumber")
        memo_id = _read(memo, "memo_id", "id")
        created_at = _read(memo, "created_at", "createdAt")
        entries.append(
            LedgerEntry(
                date=normalize_date(_read(memo, "date")),
                cash_in=to_decimal(_read(memo, "deposit")),
                cash_out=ZERO,
                description=f"{CUSTOMER_PAYMENT_PREFIX} - {memo_number or ''}",
                reference=str(memo_id) if memo_id is not None else None,
                created_at=normalize_timestamp(created_at) if created_at is not None else None,
                category=EntryCategory.SALES.value,
            )
        )
    return entries


def daily_cash_book(memos: Iterable[Any], cash_entries: Iterable[EntryLike]) -> List[CashBookDay]:
    """Combine memo payments and manual entries into a dated cash book.

    Days are returned oldest first and each carries the cumulative closing
    balance. Entries inside a day are ordered by description.
    """

    combined: List[EntryLike] = [*customer_payment_entries(memos), *cash_entries]
    buckets: Dict[str, List[_Row]] = {}
    for row in _rows(combined):
        if row.date is None:
            continue
        if row.date not in buckets:
            buckets[row.date] = []
        buckets[row.date].append(row)

    running = ZERO
    days: List[CashBookDay] = []
    for day in sorted(buckets):
        day_rows = buckets[day]
        cash_in = sum((row.cash_in for row in day_rows), ZERO)
        cash_out = sum((row.cash_out for row in day_rows), ZERO)
        running += cash_in - cash_out
        ordered = sorted(day_rows, key=lambda row: (row.entry.description or "").lower())
        days.append(
            CashBookDay(
                date=day,
                cash_in=cash_in,
                cash_out=cash_out,
                balance=running,
                entries=tuple(row.entry for row in ordered),
            )
        )
    return days


def cash_flow_statement(memos: Iterable[Any], cash_entries: Iterable[EntryLike]) -> CashFlowStatement:
    days = daily_cash_book(memos, cash_entries)
    return CashFlowStatement(
        total_cash_in=sum((day.cash_in for day in days), ZERO),
        total_cash_out=sum((day.cash_out for day in days), ZERO),
        closing_balance=days[-1].balance if days else ZERO,
        daily_breakdown=tuple(days),
    )


def financial_summary(
    memos: Sequence[Any],
    cash_entries: Iterable[EntryLike],
    payments: Iterable[Any] = (),
) -> FinancialSummary:
    """Cash flow plus receivables: what customers still owe on their memos.

    ``payments`` are amounts customers paid against their dues after the sale
    (records or mappings with an ``amount``); they reduce the receivables. The
    cash they brought in is expected among ``cash_entries``.
    """

    cash_flow = cash_flow_statement(memos, cash_entries)
    owed = sum(
        (to_decimal(_read(memo, "total")) - to_decimal(_read(memo, "deposit")) for memo in memos),
        ZERO,
    )
    receivables = owed - sum((to_decimal(_read(payment, "amount")) for payment in payments), ZERO)
    return FinancialSummary(
        cash_flow=cash_flow,
        total_receivables=receivables,
        available_cash=cash_flow.closing_balance,
        total_assets=cash_flow.closing_balance + receivables,
    )


__all__ = [
    "CashBookDay",
    "CashFlowStatement",
    "DailyTotal",
    "DayGroup",
    "FinancialSummary",
    "Financials",
    "LedgerEntry",
    "LedgerLine",
    "LedgerReport",
    "MonthlyTotal",
    "aggregate",
    "cash_flow_statement",
    "coerce_entry",
    "customer_payment_entries",
    "daily_cash_book",
    "financial_summary",
]

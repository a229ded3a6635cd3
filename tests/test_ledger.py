"""Unit tests for cashbook aggregation and the cash flow reports."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from fabric_pos import ledger
from fabric_pos.coercion import parse_timestamp
from fabric_pos.ledger import LedgerEntry


def _entry(day, cash_in="0", cash_out="0", description="", created_at=None, **extra):
    return LedgerEntry(
        date=day,
        cash_in=Decimal(cash_in),
        cash_out=Decimal(cash_out),
        description=description,
        created_at=created_at,
        **extra,
    )


def _balances(report, day):
    group = report.grouped_entries[day]
    return [line.balance for line in group.income], [line.balance for line in group.expense]


# ---------------------------------------------------------------------------
# Running balances
# ---------------------------------------------------------------------------


def test_running_balance_follows_dates_not_input_order():
    """Entries supplied newest first still accumulate oldest first."""

    entries = [
        _entry("2025-01-02", "100", description="later"),
        _entry("2025-01-01", "50", description="earlier"),
    ]

    report = ledger.aggregate(entries)

    assert report.sorted_dates == ("2025-01-02", "2025-01-01")
    assert _balances(report, "2025-01-01") == ([Decimal("50")], [])
    assert _balances(report, "2025-01-02") == ([Decimal("150")], [])


def test_daily_net_differs_from_cumulative_balance():
    """A day's balance is its net, while line balances carry prior days."""

    entries = [
        _entry("2025-01-01", "100", created_at="2025-01-01T09:00:00"),
        _entry("2025-01-02", cash_out="30", created_at="2025-01-02T10:00:00"),
        _entry("2025-01-02", "100", created_at="2025-01-02T09:00:00"),
    ]

    report = ledger.aggregate(entries)

    day_two = report.daily_totals[0]
    assert day_two.date == "2025-01-02"
    assert day_two.balance == Decimal("70")
    assert _balances(report, "2025-01-02") == ([Decimal("200")], [Decimal("170")])


def test_created_at_orders_entries_within_a_day():
    """Within a date, earlier creation times are applied first."""

    entries = [
        _entry("2025-03-01", cash_out="40", created_at="2025-03-01T12:00:00"),
        _entry("2025-03-01", "100", created_at="2025-03-01T08:00:00"),
    ]

    report = ledger.aggregate(entries)

    assert _balances(report, "2025-03-01") == ([Decimal("100")], [Decimal("60")])


def test_created_at_compares_instants_across_utc_offsets():
    """A +05:00 timestamp at 10:00 is earlier than 06:00Z on the same day."""

    entries = [
        _entry("2025-01-01", "100", created_at="2025-01-01T06:00:00Z"),
        _entry("2025-01-01", cash_out="30", created_at="2025-01-01T10:00:00+05:00"),
    ]

    report = ledger.aggregate(entries)

    assert _balances(report, "2025-01-01") == ([Decimal("70")], [Decimal("-30")])


def test_numeric_created_at_is_read_as_epoch_milliseconds():
    """Stored numeric creation times order numerically, not as text."""

    entries = [
        {"date": "2025-01-01", "cashIn": "100", "createdAt": 1000},
        {"date": "2025-01-01", "cashOut": "30", "createdAt": 999},
    ]

    report = ledger.aggregate(entries)

    assert _balances(report, "2025-01-01") == ([Decimal("70")], [Decimal("-30")])


def test_missing_created_at_sorts_before_timestamped_entries():
    """Entries without a creation time are applied first within their day."""

    entries = [
        _entry("2025-01-01", "100", created_at="2025-01-01T08:00:00Z"),
        _entry("2025-01-01", cash_out="30"),
    ]

    report = ledger.aggregate(entries)

    assert _balances(report, "2025-01-01") == ([Decimal("70")], [Decimal("-30")])


def test_entry_with_both_directions_counts_once():
    """An entry holding cash in and cash out moves the balance by its net only."""

    entries = [
        _entry("2025-01-01", "50", "20", description="swap"),
        _entry("2025-01-02", "10"),
    ]

    report = ledger.aggregate(entries)

    income, expense = _balances(report, "2025-01-01")
    assert income == [Decimal("30")]
    assert expense == [Decimal("30")]
    assert _balances(report, "2025-01-02") == ([Decimal("40")], [])


def test_zero_amount_entries_keep_their_date_with_empty_lines():
    """A day holding only zero entries is listed without income or expense lines."""

    report = ledger.aggregate([_entry("2025-01-01", description="note"), _entry("2025-01-02", "10")])

    assert report.sorted_dates == ("2025-01-02", "2025-01-01")
    assert report.grouped_entries["2025-01-01"] == ledger.DayGroup(income=(), expense=())
    assert _balances(report, "2025-01-02") == ([Decimal("10")], [])


def test_aggregate_is_repeatable():
    """Aggregating the same entries twice gives equal reports."""

    entries = [_entry("2025-01-01", "10"), _entry("2025-01-05", cash_out="3")]

    assert ledger.aggregate(entries) == ledger.aggregate(entries)


# ---------------------------------------------------------------------------
# Date filter and search
# ---------------------------------------------------------------------------


def test_date_filter_sets_opening_balance_and_limits_detail():
    """Entries before the reporting date form the opening balance."""

    entries = [
        _entry("2025-01-01", "100"),
        _entry("2025-01-02", cash_out="30"),
        _entry("2025-01-03", "5"),
    ]

    report = ledger.aggregate(entries, date="2025-01-02")

    assert report.opening_balance == Decimal("100")
    assert report.sorted_dates == ("2025-01-02",)
    assert _balances(report, "2025-01-02") == ([], [Decimal("70")])
    assert report.financials.available_cash == Decimal("75")


def test_malformed_date_filter_is_ignored_with_warning(caplog):
    """A bad date filter behaves like no filter at all."""

    entries = [_entry("2025-01-01", "10"), _entry("2025-01-02", "20")]

    with caplog.at_level("WARNING", logger="fabric_pos"):
        report = ledger.aggregate(entries, date="not-a-date")

    assert report.opening_balance == Decimal("0")
    assert report.sorted_dates == ("2025-01-02", "2025-01-01")
    assert any("malformed" in record.getMessage() for record in caplog.records)


def test_search_term_filters_detail_but_not_totals():
    """Search narrows the listed entries while financials cover everything."""

    entries = [
        _entry("2025-01-01", "100", description="Cash Memo: 12 - Rahim"),
        _entry("2025-01-01", cash_out="25", description="Shop rent"),
    ]

    report = ledger.aggregate(entries, search_term="RENT")

    group = report.grouped_entries["2025-01-01"]
    assert group.income == ()
    assert [line.entry.description for line in group.expense] == ["Shop rent"]
    assert report.financials.total_cash_in == Decimal("100")
    assert report.financials.total_cash_out == Decimal("25")


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------


def test_undated_entries_count_in_financials_only():
    """Entries without a usable date are skipped from per-day views."""

    entries = [
        _entry(None, "40"),
        {"date": "31/12/2024", "cashIn": "7"},
        _entry("2025-02-01", "10"),
    ]

    report = ledger.aggregate(entries)

    assert report.financials.total_cash_in == Decimal("57")
    assert [day.date for day in report.daily_totals] == ["2025-02-01"]
    assert [month.month for month in report.monthly_totals] == ["2025-02"]


def test_daily_and_monthly_totals_are_newest_first():
    """Per-day and per-month totals are listed in descending order."""

    entries = [
        _entry("2025-01-15", "10"),
        _entry("2025-02-01", "5", "2"),
        _entry("2025-01-20", cash_out="4"),
    ]

    report = ledger.aggregate(entries)

    assert [day.date for day in report.daily_totals] == ["2025-02-01", "2025-01-20", "2025-01-15"]
    assert [(m.month, m.cash_in, m.cash_out, m.balance) for m in report.monthly_totals] == [
        ("2025-02", Decimal("5"), Decimal("2"), Decimal("3")),
        ("2025-01", Decimal("10"), Decimal("4"), Decimal("6")),
    ]


def test_unparseable_amounts_count_as_zero():
    """Bad amounts do not break the report."""

    report = ledger.aggregate([{"date": "2025-01-01", "cash_in": "abc", "cash_out": "3"}])

    assert report.financials.total_cash_in == Decimal("0")
    assert report.financials.available_cash == Decimal("-3")


# ---------------------------------------------------------------------------
# Entry coercion
# ---------------------------------------------------------------------------


def test_coerce_entry_accepts_stored_document_keys():
    """camelCase keys from stored documents map onto ledger entries."""

    entry = ledger.coerce_entry(
        {
            "id": 7,
            "date": "2025-04-05T10:11:12",
            "cashIn": 12.5,
            "description": "Deposit",
            "transactionId": "M1",
            "createdAt": "2025-04-05T10:11:12",
        }
    )

    assert entry.entry_id == "7"
    assert entry.date == "2025-04-05"
    assert entry.cash_in == Decimal("12.5")
    assert entry.cash_out == Decimal("0")
    assert entry.reference == "M1"


def test_coerce_entry_passes_ledger_entries_through():
    """LedgerEntry inputs are returned as-is."""

    entry = _entry("2025-01-01", "1")
    assert ledger.coerce_entry(entry) is entry


# ---------------------------------------------------------------------------
# Cash book and financial summary
# ---------------------------------------------------------------------------


@pytest.fixture
def memos():
    return [
        {"memo_id": "M1", "memo_number": "101", "date": "2025-01-01", "total": "500", "deposit": "200"},
        {"memo_id": "M2", "memo_number": "102", "date": "2025-01-02", "total": "300", "deposit": "300"},
    ]


def test_customer_payment_entries_describe_each_memo(memos):
    """Each memo deposit becomes a Sales cash-in entry referencing the memo."""

    entries = ledger.customer_payment_entries(memos)

    assert [(e.description, e.cash_in, e.reference) for e in entries] == [
        ("Customer Payment - 101", Decimal("200"), "M1"),
        ("Customer Payment - 102", Decimal("300"), "M2"),
    ]
    assert {e.category for e in entries} == {"Sales"}


def test_daily_cash_book_accumulates_oldest_first(memos):
    """The cash book carries a cumulative balance from day to day."""

    cash_entries = [
        _entry("2025-01-02", cash_out="50", description="Tailor"),
        _entry("2025-01-01", cash_out="20", description="Bus fare"),
    ]

    days = ledger.daily_cash_book(memos, cash_entries)

    assert [(d.date, d.cash_in, d.cash_out, d.balance) for d in days] == [
        ("2025-01-01", Decimal("200"), Decimal("20"), Decimal("180")),
        ("2025-01-02", Decimal("300"), Decimal("50"), Decimal("430")),
    ]
    assert [e.description for e in days[0].entries] == ["Bus fare", "Customer Payment - 101"]


def test_cash_flow_statement_closes_on_last_day(memos):
    """The closing balance is the last day's cumulative balance."""

    statement = ledger.cash_flow_statement(memos, [_entry("2025-01-03", cash_out="100")])

    assert statement.total_cash_in == Decimal("500")
    assert statement.total_cash_out == Decimal("100")
    assert statement.closing_balance == Decimal("400")
    assert ledger.cash_flow_statement([], []).closing_balance == Decimal("0")


def test_financial_summary_adds_receivables_to_cash(memos):
    """Total assets are available cash plus what customers still owe."""

    summary = ledger.financial_summary(memos, [])

    assert summary.total_receivables == Decimal("300")
    assert summary.available_cash == Decimal("500")
    assert summary.total_assets == Decimal("800")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2025-01-01T10:00:00+05:00", datetime(2025, 1, 1, 5, 0, tzinfo=UTC)),
        ("2025-01-01T05:00:00Z", datetime(2025, 1, 1, 5, 0, tzinfo=UTC)),
        ("2025-01-01T05:00:00", datetime(2025, 1, 1, 5, 0, tzinfo=UTC)),
        (1735707600000, datetime(2025, 1, 1, 5, 0, tzinfo=UTC)),
        ("1735707600000", datetime(2025, 1, 1, 5, 0, tzinfo=UTC)),
        (date(2025, 1, 1), datetime(2025, 1, 1, tzinfo=UTC)),
        ("yesterday", None),
        (None, None),
        (True, None),
    ],
)
def test_parse_timestamp_normalizes_to_utc(raw, expected):
    """Offsets, Z suffixes, naive text and epoch milliseconds all become UTC instants."""

    assert parse_timestamp(raw) == expected

"""Enumerations shared across the Fabric POS modules.

Keeps sheet names, entry categories, and the workbook schema version in one
place so the data layer, the business layer, and the CLI agree on them.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

CUSTOMER_PAYMENT_PREFIX = "Customer Payment"


class EntryCategory(str, Enum):
    """Enumerate the cashbook categories written by the business layer."""

    SALES = "Sales"
    EXPENSE = "Expense"
    OTHER = "Other"


class CashDirection(str, Enum):
    """Direction of a manual cashbook entry."""

    IN = "in"
    OUT = "out"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    FABRICS = "Fabrics"
    BATCHES = "Batches"
    BATCH_COLORS = "BatchColors"
    CASH_ENTRIES = "CashEntries"
    MEMOS = "Memos"
    MEMO_LINES = "MemoLines"
    SUPPLIERS = "Suppliers"
    SUPPLIER_TRANSACTIONS = "SupplierTransactions"
    CUSTOMER_PAYMENTS = "CustomerPayments"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "CUSTOMER_PAYMENT_PREFIX",
    "EntryCategory",
    "CashDirection",
    "SheetName",
]

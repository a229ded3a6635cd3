"""Create the empty Fabric POS master workbook.

Installed as the ``fabric-pos-setup`` script; tests call
:func:`create_master_workbook` directly.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log
from .constants import SheetName

# Column order must match the serializers in ``data_manager``.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.FABRICS.value: [
        "FabricID",
        "FabricName",
        "FabricCode",
        "Unit",
        "LowStockThreshold",
    ],
    SheetName.BATCHES.value: [
        "BatchID",
        "FabricID",
        "PurchaseDate",
        "UnitCost",
        "Quantity",
        "Color",
    ],
    SheetName.BATCH_COLORS.value: [
        "BatchID",
        "Color",
        "Quantity",
    ],
    SheetName.CASH_ENTRIES.value: [
        "EntryID",
        "Date",
        "Description",
        "CashIn",
        "CashOut",
        "Category",
        "Reference",
        "CreatedAt",
    ],
    SheetName.MEMOS.value: [
        "MemoID",
        "MemoNumber",
        "CustomerID",
        "CustomerName",
        "Date",
        "Total",
        "TotalCost",
        "Deposit",
        "CreatedAt",
    ],
    SheetName.MEMO_LINES.value: [
        "MemoID",
        "FabricID",
        "Color",
        "Quantity",
        "Price",
        "Total",
        "Cost",
        "Profit",
    ],
    SheetName.SUPPLIERS.value: [
        "SupplierID",
        "SupplierName",
        "Phone",
    ],
    SheetName.SUPPLIER_TRANSACTIONS.value: [
        "TransactionID",
        "SupplierID",
        "Date",
        "InvoiceNumber",
        "Details",
        "TotalAmount",
        "PaidAmount",
        "CreatedAt",
    ],
    SheetName.CUSTOMER_PAYMENTS.value: [
        "PaymentID",
        "CustomerID",
        "CustomerName",
        "MemoID",
        "Date",
        "Amount",
        "CreatedAt",
    ],
}


HEADER_FONT = Font(bold=True)


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Write an empty master workbook with one header row per sheet.

    Raises ``FileExistsError`` when ``destination`` exists, unless
    ``overwrite`` is set.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Master workbook already exists: {destination}")

    workbook = openpyxl.Workbook()
    for worksheet in list(workbook.worksheets):
        workbook.remove(worksheet)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        worksheet.append(list(columns))
        for cell in worksheet[1]:
            cell.font = HEADER_FONT
            worksheet.column_dimensions[cell.column_letter].width = max(12, len(str(cell.value)) + 2)
        worksheet.freeze_panes = "A2"

    data_manager.save_workbook(workbook, destination)
    log.info("Created master workbook at %s with %d sheets", destination, len(sheet_columns))
    return destination


def run_from_config(config_path: Path | None = None, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``[System] DataFile`` in ``config.ini``."""

    config_path = data_manager.find_config_file(config_path)
    settings = data_manager.parse_settings(
        data_manager.read_config(config_path),
        base_path=config_path.expanduser().resolve().parent,
    )
    return create_master_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="fabric-pos-setup",
        description="Create an empty Fabric POS master workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config.ini (searched upward from the working directory by default).",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Replace the workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        output_path = run_from_config(args.config, overwrite=args.force)
    except FileExistsError as exc:
        print(f"[ERROR] {exc}")
        print("Run with --force to replace it; existing data will be lost.")
        return 1
    except (FileNotFoundError, KeyError) as exc:
        print(f"[ERROR] {exc}")
        return 1
    except OSError as exc:
        print(f"[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"[OK] Master workbook ready at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

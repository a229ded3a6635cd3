"""Shared pytest fixtures for Fabric POS tests."""

from __future__ import annotations

import argparse
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace
from typing import Callable
from unittest.mock import Mock

import pytest

from fabric_pos import cli, constants, core_logic, data_manager
from fabric_pos.inventory import Batch, ColorQuantity
from fabric_pos.setup_excel import create_master_workbook

CONFIG_TEMPLATE = """\
[System]
DataFile = {data_file}
ShopName = Test Fabrics
SchemaVersion = {schema_version}

[Defaults]
LowStockThreshold = {low_stock_threshold}
"""


@pytest.fixture
def master_workbook_path(tmp_path: Path) -> Path:
    path = tmp_path / "fabric_master.xlsx"
    create_master_workbook(path, overwrite=True)
    return path


@pytest.fixture
def config_factory(tmp_path_factory: pytest.TempPathFactory) -> Callable[..., SimpleNamespace]:
    """Write a config.ini next to a fresh workbook; each call gets its own folder."""

    def _create(
        *,
        make_relative: bool = False,
        schema_version: str = constants.EXPECTED_SCHEMA_VERSION,
        low_stock_threshold: str = "10",
    ) -> SimpleNamespace:
        folder = tmp_path_factory.mktemp("shop")
        workbook_path = folder / "fabric_master.xlsx"
        create_master_workbook(workbook_path, overwrite=True)
        config_path = folder / "config.ini"
        config_path.write_text(
            CONFIG_TEMPLATE.format(
                data_file=workbook_path.name if make_relative else workbook_path,
                schema_version=schema_version,
                low_stock_threshold=low_stock_threshold,
            )
        )
        return SimpleNamespace(config_path=config_path, workbook_path=workbook_path)

    return _create


@pytest.fixture
def config_file(config_factory) -> Path:
    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Context over a real workbook, loaded through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def context(tmp_path: Path) -> core_logic.RuntimeContext:
    """Context over a mock workbook, for tests that patch the data layer."""

    settings = data_manager.ConfigSettings(
        data_file=tmp_path / "fabric_master.xlsx",
        shop_name="Test Fabrics",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        low_stock_threshold=Decimal("10"),
    )
    return core_logic.RuntimeContext(settings=settings, workbook=Mock(name="workbook"))


@pytest.fixture
def make_batch() -> Callable[..., Batch]:
    """Build allocator batches; ``colors`` maps colour to quantity."""

    def _make(
        batch_id: str,
        purchase_date: str | None,
        unit_cost: str,
        quantity: str | None = None,
        *,
        colors: dict[str, str] | None = None,
        color: str | None = None,
        fabric_id: str | None = "F1",
    ) -> Batch:
        splits = tuple(ColorQuantity(name, Decimal(qty)) for name, qty in (colors or {}).items())
        total = Decimal(quantity) if quantity is not None else sum((split.quantity for split in splits), Decimal("0"))
        return Batch(
            batch_id=batch_id,
            purchase_date=date.fromisoformat(purchase_date) if purchase_date else None,
            unit_cost=Decimal(unit_cost),
            quantity=total,
            colors=splits,
            color=color,
            fabric_id=fabric_id,
        )

    return _make


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    return argparse.ArgumentParser(prog="fabric-pos")


@pytest.fixture
def subparsers_action(cli_parser: argparse.ArgumentParser):
    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_table_entry() -> tuple[str, cli.CommandSpec]:
    """A one-off command whose executor records that it ran."""

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        execute.__dict__["called"] = True
        return 0

    spec = cli.CommandSpec(
        name="stock-test",
        help_text="help",
        register=lambda action: action.add_parser("stock-test"),
        execute=execute,
    )
    return "stock-test", spec


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Make ``core_logic`` see ``moment`` as the current UTC time."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply

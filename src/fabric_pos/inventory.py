"""FIFO cost allocation and stock statistics for fabric batches.

Everything in this module is pure: functions receive batch snapshots, never
touch the workbook, and never mutate their arguments. :func:`allocate` is the
single entry point used when stock leaves the shop. It walks the batches in
purchase order, deducts the requested quantity, and hands back the consumed
lots together with the batch records the caller should persist.

Batches are frozen dataclasses, so "updating" a batch always means building a
new record with :func:`dataclasses.replace`. A rejected allocation therefore
leaves the caller's snapshot exactly as it was.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from . import log
from .coercion import ZERO, to_decimal
from .exceptions import InsufficientStockError, ValidationError


@dataclass(frozen=True)
class ColorQuantity:
    """Quantity of a single colour held inside a batch."""

    color: str
    quantity: Decimal


@dataclass(frozen=True)
class Batch:
    """A purchased lot of fabric, optionally split by colour."""

    batch_id: str
    purchase_date: Optional[date]
    unit_cost: Decimal
    quantity: Decimal
    colors: Tuple[ColorQuantity, ...] = ()
    color: Optional[str] = None
    fabric_id: Optional[str] = None

    @property
    def is_color_partitioned(self) -> bool:
        return bool(self.colors)

    def color_index(self, color: str) -> Optional[int]:
        """Return the position of ``color`` in :attr:`colors`, ignoring case."""

        wanted = color.strip().lower()
        for index, entry in enumerate(self.colors):
            if entry.color.strip().lower() == wanted:
                return index
        return None


@dataclass(frozen=True)
class ConsumedLot:
    """Portion of a batch used to fulfil an allocation."""

    batch_id: str
    quantity: Decimal
    unit_cost: Decimal
    color: Optional[str] = None

    @property
    def cost(self) -> Decimal:
        return self.quantity * self.unit_cost


@dataclass(frozen=True)
class Allocation:
    """Result of a successful FIFO allocation."""

    consumed_lots: Tuple[ConsumedLot, ...]
    updated_batches: Tuple[Batch, ...]
    total_cost: Decimal

    @property
    def quantity(self) -> Decimal:
        return sum((lot.quantity for lot in self.consumed_lots), ZERO)


@dataclass(frozen=True)
class ColorBatchView:
    """Per-batch view of a single colour, used by stock pickers."""

    batch_id: str
    purchase_date: Optional[date]
    quantity: Decimal
    unit_cost: Decimal


@dataclass(frozen=True)
class _Candidate:
    position: int
    batch: Batch
    effective_quantity: Decimal
    color_index: Optional[int]


def require_positive_quantity(quantity: object) -> Decimal:
    """Validate and normalize a requested quantity.

    Args:
        quantity (object): Caller-supplied amount, usually a ``Decimal`` or a
            numeric string from the CLI.

    Returns:
        Decimal: The normalized quantity.

    Raises:
        ValidationError: If the value is not numeric or is zero or negative.
    """

    parsed = to_decimal(quantity, default=Decimal("NaN"))
    if not parsed.is_finite() or parsed <= ZERO:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be greater than zero")
    return parsed


def fifo_order_key(batch: Batch, position: int) -> Tuple[date, int]:
    """Sort key that defines FIFO order for batches.

    Older purchase dates come first. Batches sharing a purchase date keep the
    order in which the caller supplied them. A missing purchase date is
    treated as the oldest possible date.
    """

    return (batch.purchase_date or date.min, position)


def fifo_sorted(batches: Iterable[Batch]) -> List[Batch]:
    """Return ``batches`` as a new list in FIFO consumption order."""

    indexed = list(enumerate(batches))
    indexed.sort(key=lambda pair: fifo_order_key(pair[1], pair[0]))
    return [batch for _, batch in indexed]


def _select_candidates(batches: Sequence[Batch], color: Optional[str]) -> List[_Candidate]:
    """Keep the batches relevant to ``color`` and compute their effective quantity.

    Colour-partitioned batches only match through their ``colors`` entries;
    batch-level ``color`` is consulted for batches without a partition.
    """

    candidates: List[_Candidate] = []
    for position, batch in enumerate(batches):
        if color is None:
            candidates.append(_Candidate(position, batch, batch.quantity, None))
            continue
        if batch.is_color_partitioned:
            index = batch.color_index(color)
            if index is not None:
                candidates.append(_Candidate(position, batch, batch.colors[index].quantity, index))
        elif batch.color and batch.color.strip().lower() == color.lower():
            candidates.append(_Candidate(position, batch, batch.quantity, None))
    return candidates


def _deduct_across_colors(colors: Tuple[ColorQuantity, ...], amount: Decimal) -> Tuple[ColorQuantity, ...]:
    # Colour entries are drained in their listed order.
    remaining = amount
    result: List[ColorQuantity] = []
    for entry in colors:
        take = min(remaining, entry.quantity) if remaining > ZERO and entry.quantity > ZERO else ZERO
        result.append(replace(entry, quantity=entry.quantity - take))
        remaining -= take
    return tuple(result)


def _with_remaining(candidate: _Candidate, used: Decimal) -> Batch:
    """Build the post-allocation copy of a candidate's batch."""

    batch = candidate.batch
    if candidate.color_index is not None:
        colors = list(batch.colors)
        entry = colors[candidate.color_index]
        colors[candidate.color_index] = replace(entry, quantity=entry.quantity - used)
        new_colors = tuple(colors)
        return replace(batch, colors=new_colors, quantity=sum((c.quantity for c in new_colors), ZERO))
    if batch.is_color_partitioned:
        new_colors = _deduct_across_colors(batch.colors, used)
        return replace(batch, colors=new_colors, quantity=sum((c.quantity for c in new_colors), ZERO))
    return replace(batch, quantity=batch.quantity - used)


def allocate(batches: Sequence[Batch], requested_quantity: object, color: Optional[str] = None) -> Allocation:
    """Deduct ``requested_quantity`` from ``batches`` first-in, first-out.

    The batches relevant to ``color`` are ordered with :func:`fifo_order_key`
    and drained oldest first. Every batch that took part in the allocation
    (whether consumed, partially consumed, or untouched) appears in
    ``updated_batches`` in FIFO order. Batches filtered out by ``color`` are
    not returned; merging them back is the caller's job. Fully consumed
    batches stay in the result with a quantity of zero.

    When the allocation draws from a colour-partitioned batch, the matching
    colour entry is reduced and the aggregate ``quantity`` is re-summed from
    the colour entries, so ``quantity == sum(colors)`` keeps holding. Without
    a colour filter, partitioned batches are drained across their colour
    entries in listed order.

    Args:
        batches (Sequence[Batch]): Snapshot of a fabric's batches. Never
            modified.
        requested_quantity (object): Positive quantity to sell.
        color (str | None): Optional colour filter, compared case-insensitively.

    Returns:
        Allocation: Consumed lots, the updated batch copies, and the total cost
            of goods sold.

    Raises:
        ValidationError: If ``requested_quantity`` is not a positive number.
        InsufficientStockError: If the relevant batches hold less than the
            requested quantity. No partial result is produced.
    """

    requested = require_positive_quantity(requested_quantity)
    wanted = color.strip() if color and color.strip() else None

    candidates = _select_candidates(batches, wanted)
    candidates.sort(key=lambda candidate: fifo_order_key(candidate.batch, candidate.position))

    remaining = requested
    consumed: List[ConsumedLot] = []
    updated: List[Batch] = []
    for candidate in candidates:
        if remaining <= ZERO or candidate.effective_quantity <= ZERO:
            updated.append(candidate.batch)
            continue
        used = min(remaining, candidate.effective_quantity)
        consumed.append(
            ConsumedLot(
                batch_id=candidate.batch.batch_id,
                quantity=used,
                unit_cost=candidate.batch.unit_cost,
                color=wanted,
            )
        )
        updated.append(_with_remaining(candidate, used))
        remaining -= used

    if remaining > ZERO:
        available = requested - remaining
        log.warning(
            "FIFO allocation rejected: requested=%s available=%s color=%s",
            requested,
            available,
            wanted,
        )
        raise InsufficientStockError(requested, available, wanted)

    total_cost = sum((lot.cost for lot in consumed), ZERO)
    log.debug(
        "Allocated %s units across %d lots (cost=%s, color=%s)",
        requested,
        len(consumed),
        total_cost,
        wanted,
    )
    return Allocation(
        consumed_lots=tuple(consumed),
        updated_batches=tuple(updated),
        total_cost=total_cost,
    )


def total_quantity(batches: Iterable[Batch]) -> Decimal:
    """Sum the aggregate quantity of every batch."""

    return sum((batch.quantity for batch in batches), ZERO)


def quantity_by_color(batches: Iterable[Batch]) -> Dict[str, Decimal]:
    """Total stock per colour across batches, in first-seen order.

    Partitioned batches contribute each colour entry; single-colour batches
    contribute their aggregate quantity under their batch-level colour.
    Batches without any colour information are ignored.
    """

    totals: Dict[str, Decimal] = {}
    for batch in batches:
        if batch.is_color_partitioned:
            pairs = [(entry.color, entry.quantity) for entry in batch.colors]
        elif batch.color:
            pairs = [(batch.color, batch.quantity)]
        else:
            continue
        for color, quantity in pairs:
            if not color:
                continue
            totals[color] = totals.get(color, ZERO) + quantity
    return totals


def available_colors(batches: Iterable[Batch]) -> List[ColorQuantity]:
    """Colours that still have stock, with their summed quantity."""

    return [
        ColorQuantity(color=color, quantity=quantity)
        for color, quantity in quantity_by_color(batches).items()
        if quantity > ZERO
    ]


def weighted_average_cost(batches: Iterable[Batch]) -> Decimal:
    """Quantity-weighted mean unit cost; zero when there is no stock."""

    total_value = ZERO
    total_qty = ZERO
    for batch in batches:
        total_value += batch.quantity * batch.unit_cost
        total_qty += batch.quantity
    if total_qty <= ZERO:
        return ZERO
    return total_value / total_qty


def is_low_stock(batches: Iterable[Batch], threshold: object) -> bool:
    return total_quantity(batches) <= to_decimal(threshold)


def batches_by_color(batches: Iterable[Batch], color: str) -> List[ColorBatchView]:
    """List the batches that carry ``color`` with that colour's quantity."""

    if not color or not color.strip():
        return []
    views: List[ColorBatchView] = []
    for batch in batches:
        if batch.is_color_partitioned:
            index = batch.color_index(color)
            if index is None:
                continue
            quantity = batch.colors[index].quantity
        elif batch.color and batch.color.strip().lower() == color.strip().lower():
            quantity = batch.quantity
        else:
            continue
        views.append(
            ColorBatchView(
                batch_id=batch.batch_id,
                purchase_date=batch.purchase_date,
                quantity=quantity,
                unit_cost=batch.unit_cost,
            )
        )
    return views


__all__ = [
    "Allocation",
    "Batch",
    "ColorBatchView",
    "ColorQuantity",
    "ConsumedLot",
    "allocate",
    "available_colors",
    "batches_by_color",
    "fifo_order_key",
    "fifo_sorted",
    "is_low_stock",
    "quantity_by_color",
    "require_positive_quantity",
    "total_quantity",
    "weighted_average_cost",
]

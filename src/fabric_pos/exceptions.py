"""Exception hierarchy shared by the allocator and the business layer."""

from __future__ import annotations

from decimal import Decimal


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced fabric, batch, or memo is unknown."""


class ValidationError(ValueError):
    """Raised when caller-supplied values are out of range or malformed."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a FIFO allocation cannot be covered by the available stock."""

    def __init__(self, requested: Decimal, available: Decimal, color: str | None = None) -> None:
        self.requested = requested
        self.available = available
        self.color = color
        label = f" of color '{color}'" if color else ""
        super().__init__(
            f"Insufficient stock{label}: requested {requested}, available {available}"
        )


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "ValidationError",
    "InsufficientStockError",
]

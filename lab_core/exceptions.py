# lab_core/exceptions.py
"""
Domain errors raised by services and pure rule modules.

All of them are ValueError subclasses so views can translate them into
DRF ValidationError the same way they do for workflow rule violations.
"""

from __future__ import annotations

from decimal import Decimal


class LabError(ValueError):
    """Base class for laboratory domain errors."""


class InsufficientStockError(LabError):
    def __init__(self, material: str, requested, available):
        self.material = material
        self.requested = Decimal(str(requested))
        self.available = Decimal(str(available))
        super().__init__(
            f"Insufficient stock for {material}: requested {self.requested}, "
            f"available {self.available}."
        )


class ExpiredMaterialError(LabError):
    def __init__(self, lot_number: str, expiry_date):
        self.lot_number = lot_number
        self.expiry_date = expiry_date
        super().__init__(f"LOT {lot_number} expired on {expiry_date} and cannot be used.")


class DuplicateLotError(LabError):
    def __init__(self, material: str, lot_number: str):
        self.material = material
        self.lot_number = lot_number
        super().__init__(f"LOT {lot_number} already exists for material {material}.")


class LotUnavailableError(LabError):
    """Pinned LOT cannot be drawn from (wrong material, recalled, depleted)."""


class TraceabilityViolation(LabError):
    """Deleting a record that MDR traceability still depends on."""


class WorksheetLocked(LabError):
    """Worksheet content cannot change in its current status."""

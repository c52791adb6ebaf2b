# lab_core/models/inventory.py

from __future__ import annotations

from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from .core import TimeStampedModel


QUANTITY = {"max_digits": 10, "decimal_places": 3}


# ============================================================
# Materials (catalogue of consumables)
# ============================================================
class MaterialType(models.TextChoices):
    CERAMIC = "CERAMIC", "Ceramic"
    METAL = "METAL", "Metal"
    RESIN = "RESIN", "Resin"
    COMPOSITE = "COMPOSITE", "Composite"
    PORCELAIN = "PORCELAIN", "Porcelain"
    ZIRCONIA = "ZIRCONIA", "Zirconia"
    TITANIUM = "TITANIUM", "Titanium"
    ALLOY = "ALLOY", "Alloy"
    ACRYLIC = "ACRYLIC", "Acrylic"
    WAX = "WAX", "Wax"
    OTHER = "OTHER", "Other"


class Material(TimeStampedModel):
    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=255)
    type = models.CharField(max_length=20, choices=MaterialType.choices)
    manufacturer = models.CharField(max_length=255)
    description = models.TextField(blank=True)

    biocompatible = models.BooleanField(default=True)
    iso10993_cert = models.CharField(max_length=100, blank=True)
    ce_marked = models.BooleanField(default=True)
    ce_number = models.CharField(max_length=50, blank=True)

    unit = models.CharField(max_length=20, default="gram")
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["code", "id"]

    def __str__(self):
        return f"{self.code} - {self.name}"


# ============================================================
# Material lots (received batches)
# ============================================================
class LotStatus(models.TextChoices):
    AVAILABLE = "AVAILABLE", "Available"
    DEPLETED = "DEPLETED", "Depleted"
    EXPIRED = "EXPIRED", "Expired"
    RECALLED = "RECALLED", "Recalled"


class MaterialLot(TimeStampedModel):
    material = models.ForeignKey(
        Material,
        on_delete=models.PROTECT,
        related_name="lots",
    )
    lot_number = models.CharField(max_length=100)
    arrival_date = models.DateTimeField(default=timezone.now)
    expiry_date = models.DateField(null=True, blank=True)
    supplier_name = models.CharField(max_length=255, blank=True)
    quantity_received = models.DecimalField(
        **QUANTITY, validators=[MinValueValidator(Decimal("0"))]
    )
    quantity_available = models.DecimalField(
        **QUANTITY, validators=[MinValueValidator(Decimal("0"))]
    )
    status = models.CharField(
        max_length=20,
        choices=LotStatus.choices,
        default=LotStatus.AVAILABLE,
    )
    notes = models.TextField(blank=True)

    class Meta:
        unique_together = ("material", "lot_number")
        ordering = ["arrival_date", "id"]
        indexes = [
            models.Index(fields=["material", "status", "arrival_date"]),
        ]

    def __str__(self):
        return f"{self.material.code} LOT {self.lot_number}"

    def is_expired(self, today=None) -> bool:
        if self.expiry_date is None:
            return False
        today = today or timezone.localdate()
        return self.expiry_date <= today


# ============================================================
# Worksheet material lines and the consumption ledger
# ============================================================
class WorksheetMaterial(TimeStampedModel):
    """
    Material planned for a worksheet.

    `material_lot` pins a specific lot; left empty, stock is drawn FIFO
    across lots when the worksheet enters production.
    """

    worksheet = models.ForeignKey(
        "lab_core.WorkSheet",
        on_delete=models.CASCADE,
        related_name="materials",
    )
    material = models.ForeignKey(
        Material,
        on_delete=models.PROTECT,
        related_name="worksheet_lines",
    )
    material_lot = models.ForeignKey(
        MaterialLot,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="pinned_lines",
    )
    quantity_planned = models.DecimalField(
        **QUANTITY, validators=[MinValueValidator(Decimal("0.001"))]
    )
    quantity_used = models.DecimalField(**QUANTITY, default=Decimal("0"))
    consumed_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.worksheet_id}: {self.material.code} x {self.quantity_planned}"

    @property
    def is_consumed(self) -> bool:
        return self.consumed_at is not None


class LotConsumption(models.Model):
    worksheet_material = models.ForeignKey(
        WorksheetMaterial,
        on_delete=models.PROTECT,
        related_name="consumptions",
    )
    lot = models.ForeignKey(
        MaterialLot,
        on_delete=models.PROTECT,
        related_name="consumptions",
    )
    quantity = models.DecimalField(**QUANTITY)
    consumed_at = models.DateTimeField(auto_now_add=True)
    reverted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["consumed_at", "id"]

    def __str__(self):
        return f"{self.lot} -{self.quantity}"

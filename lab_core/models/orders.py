# lab_core/models/orders.py

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from lab_core.dental.fdi import WORK_TYPES, is_valid_fdi
from lab_core.workflows.guards import WorkflowWriteGuardMixin

from .catalog import Dentist, Product
from .core import TimeStampedModel


# ============================================================
# Orders
# ============================================================
class OrderStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    IN_PRODUCTION = "IN_PRODUCTION", "In production"
    QC_PENDING = "QC_PENDING", "QC pending"
    QC_APPROVED = "QC_APPROVED", "QC approved"
    INVOICED = "INVOICED", "Invoiced"
    DELIVERED = "DELIVERED", "Delivered"
    CANCELLED = "CANCELLED", "Cancelled"


class OrderPriority(models.TextChoices):
    NORMAL = "NORMAL", "Normal"
    HIGH = "HIGH", "High"
    URGENT = "URGENT", "Urgent"


class Order(WorkflowWriteGuardMixin, TimeStampedModel):
    WORKFLOW_FIELD = "status"

    order_number = models.CharField(max_length=20, unique=True, editable=False)
    dentist = models.ForeignKey(
        Dentist,
        on_delete=models.PROTECT,
        related_name="orders",
    )
    order_date = models.DateTimeField(default=timezone.now)
    due_date = models.DateField(null=True, blank=True)
    status = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
        editable=False,
    )
    priority = models.CharField(
        max_length=10,
        choices=OrderPriority.choices,
        default=OrderPriority.NORMAL,
    )
    patient_name = models.CharField(max_length=255, blank=True)
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_orders",
    )

    class Meta:
        ordering = ["-order_date", "-id"]

    def __str__(self):
        return self.order_number

    @property
    def active_worksheet(self):
        return (
            self.worksheets.exclude(status__in=["VOIDED", "CANCELLED"])
            .order_by("-revision", "-id")
            .first()
        )


# ============================================================
# Worksheets (workflow-controlled)
# ============================================================
class WorksheetStatus(models.TextChoices):
    DRAFT = "DRAFT", "Draft"
    IN_PRODUCTION = "IN_PRODUCTION", "In production"
    QC_PENDING = "QC_PENDING", "QC pending"
    QC_APPROVED = "QC_APPROVED", "QC approved"
    QC_REJECTED = "QC_REJECTED", "QC rejected"
    DELIVERED = "DELIVERED", "Delivered"
    CANCELLED = "CANCELLED", "Cancelled"
    VOIDED = "VOIDED", "Voided"


class WorkSheet(WorkflowWriteGuardMixin, TimeStampedModel):
    WORKFLOW_FIELD = "status"

    worksheet_number = models.CharField(max_length=40, unique=True, editable=False)
    revision = models.PositiveIntegerField(default=0, editable=False)
    order = models.ForeignKey(
        Order,
        on_delete=models.PROTECT,
        related_name="worksheets",
    )
    dentist = models.ForeignKey(
        Dentist,
        on_delete=models.PROTECT,
        related_name="worksheets",
    )
    patient_name = models.CharField(max_length=255, blank=True)

    status = models.CharField(
        max_length=20,
        choices=WorksheetStatus.choices,
        default=WorksheetStatus.DRAFT,
        editable=False,
    )

    device_description = models.TextField(blank=True)
    intended_use = models.TextField(blank=True)
    manufacture_date = models.DateField(null=True, blank=True)
    technical_notes = models.TextField(blank=True)
    qc_notes = models.TextField(blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    void_reason = models.TextField(blank=True)
    voided_at = models.DateTimeField(null=True, blank=True)
    voided_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="voided_worksheets",
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_worksheets",
    )

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["status"]),
        ]

    def __str__(self):
        return self.worksheet_number

    def clean(self):
        if self.order_id and self.dentist_id and self.order.dentist_id != self.dentist_id:
            raise ValidationError("Worksheet dentist must match the order dentist.")


# ============================================================
# Worksheet lines: teeth and products
# ============================================================
class WorksheetTooth(models.Model):
    worksheet = models.ForeignKey(
        WorkSheet,
        on_delete=models.CASCADE,
        related_name="teeth",
    )
    tooth_number = models.CharField(max_length=2)
    work_type = models.CharField(
        max_length=20,
        choices=[(w, w.replace("_", " ").title()) for w in WORK_TYPES],
    )
    shade = models.CharField(max_length=20, blank=True)
    notes = models.TextField(blank=True)

    class Meta:
        unique_together = ("worksheet", "tooth_number")
        ordering = ["tooth_number"]

    def clean(self):
        if not is_valid_fdi(self.tooth_number):
            raise ValidationError({"tooth_number": f"Invalid FDI tooth number: {self.tooth_number}"})

    def __str__(self):
        return f"{self.tooth_number} {self.work_type}"


class WorksheetProduct(models.Model):
    worksheet = models.ForeignKey(
        WorkSheet,
        on_delete=models.CASCADE,
        related_name="products",
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="worksheet_lines",
    )
    quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    price_at_selection = models.DecimalField(max_digits=10, decimal_places=2)
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ["id"]

    def save(self, *args, **kwargs):
        if self.price_at_selection is None and self.product_id:
            self.price_at_selection = self.product.current_price
        return super().save(*args, **kwargs)

    @property
    def line_total(self) -> Decimal:
        return (self.price_at_selection or Decimal("0")) * self.quantity

    def __str__(self):
        return f"{self.product.code} x {self.quantity}"


# ============================================================
# Quality control (one record per worksheet)
# ============================================================
class QCResult(models.TextChoices):
    PENDING = "PENDING", "Pending"
    APPROVED = "APPROVED", "Approved"
    CONDITIONAL = "CONDITIONAL", "Conditional"
    REJECTED = "REJECTED", "Rejected"


class QualityControl(TimeStampedModel):
    worksheet = models.OneToOneField(
        WorkSheet,
        on_delete=models.CASCADE,
        related_name="quality_control",
    )
    inspector = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="qc_inspections",
    )
    inspection_date = models.DateTimeField(default=timezone.now)
    result = models.CharField(
        max_length=20,
        choices=QCResult.choices,
        default=QCResult.PENDING,
    )

    aesthetics = models.BooleanField(default=False)
    fit = models.BooleanField(default=False)
    occlusion = models.BooleanField(default=False)
    shade = models.BooleanField(default=False)
    margins = models.BooleanField(default=False)

    notes = models.TextField(blank=True)
    action_required = models.TextField(blank=True)

    emdn_code = models.CharField(max_length=100, default="Q010206 - Dental Prostheses")
    risk_class = models.CharField(max_length=20, default="Class IIa")
    annex_i_deviations = models.TextField(blank=True)
    document_version = models.CharField(max_length=20, default="1.0")

    class Meta:
        verbose_name = "quality control"

    def __str__(self):
        return f"QC {self.worksheet} {self.result}"

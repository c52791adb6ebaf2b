# lab_core/models/billing.py

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone

from .catalog import Dentist, Product
from .core import TimeStampedModel
from .orders import WorkSheet


MONEY = {"max_digits": 10, "decimal_places": 2}


class PaymentStatus(models.TextChoices):
    DRAFT = "DRAFT", "Draft"
    FINALIZED = "FINALIZED", "Finalized"
    SENT = "SENT", "Sent"
    VIEWED = "VIEWED", "Viewed"
    PAID = "PAID", "Paid"
    OVERDUE = "OVERDUE", "Overdue"
    CANCELLED = "CANCELLED", "Cancelled"


# ============================================================
# Invoices
# ============================================================
class Invoice(TimeStampedModel):
    # Drafts carry no number until finalized
    invoice_number = models.CharField(max_length=30, unique=True, null=True, blank=True, editable=False)
    dentist = models.ForeignKey(
        Dentist,
        on_delete=models.PROTECT,
        related_name="invoices",
    )
    worksheets = models.ManyToManyField(
        WorkSheet,
        related_name="invoices",
        blank=True,
    )

    invoice_date = models.DateField(default=timezone.localdate)
    due_date = models.DateField()

    subtotal = models.DecimalField(**MONEY, default=Decimal("0.00"))
    discount_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0.00"))
    discount_amount = models.DecimalField(**MONEY, default=Decimal("0.00"))
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("22.00"))
    tax_amount = models.DecimalField(**MONEY, default=Decimal("0.00"))
    total_amount = models.DecimalField(**MONEY, default=Decimal("0.00"))

    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.DRAFT,
    )
    is_draft = models.BooleanField(default=True)
    payment_reference = models.CharField(max_length=50, blank=True)
    payment_method = models.CharField(max_length=50, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    finalized_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_invoices",
    )

    class Meta:
        ordering = ["-invoice_date", "-id"]

    def __str__(self):
        return self.invoice_number or f"Draft invoice #{self.pk}"


class InvoiceLineItem(models.Model):
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.CASCADE,
        related_name="line_items",
    )
    worksheet = models.ForeignKey(
        WorkSheet,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="invoice_lines",
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    description = models.CharField(max_length=255)
    quantity = models.DecimalField(**MONEY, default=Decimal("1.00"))
    unit_price = models.DecimalField(**MONEY)
    total_price = models.DecimalField(**MONEY)
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["position", "id"]

    def __str__(self):
        return f"{self.description} x {self.quantity}"

# lab_core/models/catalog.py

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models, transaction
from django.utils import timezone

from .core import TimeStampedModel


# ============================================================
# Dentists (clinics ordering work)
# ============================================================
class Dentist(TimeStampedModel):
    clinic_name = models.CharField(max_length=255)
    dentist_name = models.CharField(max_length=255)
    license_number = models.CharField(max_length=100, blank=True)
    email = models.EmailField()
    phone = models.CharField(max_length=50)
    address = models.CharField(max_length=255)
    city = models.CharField(max_length=100)
    postal_code = models.CharField(max_length=20)
    country = models.CharField(max_length=100, default="Slovenia")
    tax_number = models.CharField(max_length=50, blank=True)
    payment_terms = models.PositiveIntegerField(default=30, help_text="Days until invoice is due.")
    notes = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["clinic_name", "dentist_name", "id"]

    def __str__(self):
        return f"{self.dentist_name} ({self.clinic_name})"


# ============================================================
# Products (price list)
# ============================================================
class ProductCategory(models.TextChoices):
    CROWN = "CROWN", "Crown"
    BRIDGE = "BRIDGE", "Bridge"
    FILLING = "FILLING", "Filling"
    IMPLANT = "IMPLANT", "Implant"
    DENTURE = "DENTURE", "Denture"
    INLAY = "INLAY", "Inlay"
    ONLAY = "ONLAY", "Onlay"
    VENEER = "VENEER", "Veneer"
    ORTHODONTICS = "ORTHODONTICS", "Orthodontics"
    OTHER = "OTHER", "Other"


class Product(TimeStampedModel):
    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=30, choices=ProductCategory.choices)
    current_price = models.DecimalField(max_digits=10, decimal_places=2)
    unit = models.CharField(max_length=30, default="piece")
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["code", "id"]

    def __str__(self):
        return f"{self.code} - {self.name}"

    def change_price(self, new_price, *, reason: str = "", user=None) -> "ProductPriceHistory":
        """
        Close the open price-history row and start a new one at `new_price`.
        """
        new_price = Decimal(str(new_price)).quantize(Decimal("0.01"))
        if new_price < 0:
            raise ValueError("Price cannot be negative.")

        now = timezone.now()
        with transaction.atomic():
            self.price_history.filter(effective_to__isnull=True).update(effective_to=now)
            entry = ProductPriceHistory.objects.create(
                product=self,
                price=new_price,
                effective_from=now,
                reason=reason,
                created_by=user if user and user.is_authenticated else None,
            )
            self.current_price = new_price
            self.save(update_fields=["current_price", "updated_at"])
        return entry


class ProductPriceHistory(models.Model):
    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name="price_history",
    )
    price = models.DecimalField(max_digits=10, decimal_places=2)
    effective_from = models.DateTimeField(default=timezone.now)
    effective_to = models.DateTimeField(null=True, blank=True)
    reason = models.CharField(max_length=255, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )

    class Meta:
        ordering = ["-effective_from", "-id"]
        verbose_name_plural = "product price history"

    def __str__(self):
        return f"{self.product.code} @ {self.price}"

# lab_core/models/documents.py

from __future__ import annotations

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models

from .billing import Invoice
from .orders import WorkSheet


class DocumentType(models.TextChoices):
    ANNEX_XIII = "ANNEX_XIII", "Annex XIII statement"
    INVOICE = "INVOICE", "Invoice"
    DELIVERY_NOTE = "DELIVERY_NOTE", "Delivery note"
    QC_REPORT = "QC_REPORT", "QC report"
    OTHER = "OTHER", "Other"


class Document(models.Model):
    type = models.CharField(max_length=20, choices=DocumentType.choices)
    document_number = models.CharField(max_length=60, unique=True)
    worksheet = models.ForeignKey(
        WorkSheet,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="documents",
    )
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="documents",
    )
    title = models.CharField(max_length=255, blank=True)
    file_name = models.CharField(max_length=255, blank=True)
    payload = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    generated_at = models.DateTimeField(auto_now=True)
    generated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    retention_until = models.DateField(null=True, blank=True)

    class Meta:
        ordering = ["-generated_at", "-id"]

    def __str__(self):
        return self.document_number

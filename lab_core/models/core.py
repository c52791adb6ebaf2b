# lab_core/models/core.py

from __future__ import annotations

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models, transaction


# ============================================================
# Base
# ============================================================
class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


# ============================================================
# User Roles
# ============================================================
class Role(models.TextChoices):
    ADMIN = "ADMIN", "Administrator"
    TECHNICIAN = "TECHNICIAN", "Technician"
    QC_INSPECTOR = "QC_INSPECTOR", "QC inspector"
    INVOICING = "INVOICING", "Invoicing"


class UserRole(TimeStampedModel):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="lab_roles",
    )
    role = models.CharField(max_length=50, choices=Role.choices)

    class Meta:
        unique_together = ("user", "role")
        ordering = ["user_id", "role"]

    def __str__(self):
        return f"{self.user.get_username()} - {self.role}"


# ============================================================
# Audit Log
# ============================================================
class AuditAction(models.TextChoices):
    CREATE = "CREATE", "Create"
    UPDATE = "UPDATE", "Update"
    DELETE = "DELETE", "Delete"
    STATUS_CHANGE = "STATUS_CHANGE", "Status change"
    QC_APPROVE = "QC_APPROVE", "QC approve"
    QC_REJECT = "QC_REJECT", "QC reject"
    MATERIAL_ASSIGN = "MATERIAL_ASSIGN", "Material assign"
    INVOICE_GENERATE = "INVOICE_GENERATE", "Invoice generate"
    DOCUMENT_GENERATE = "DOCUMENT_GENERATE", "Document generate"
    EMAIL_SEND = "EMAIL_SEND", "Email send"


class AuditLog(TimeStampedModel):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    action = models.CharField(max_length=50, choices=AuditAction.choices)
    entity_type = models.CharField(max_length=50, blank=True)
    entity_id = models.CharField(max_length=64, blank=True)
    details = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["entity_type", "entity_id"]),
        ]

    def __str__(self):
        return f"{self.action} {self.entity_type}:{self.entity_id}"


# ============================================================
# System configuration (key/value, counters)
# ============================================================
class SystemConfig(models.Model):
    key = models.CharField(max_length=100, unique=True)
    value = models.TextField(blank=True)
    description = models.CharField(max_length=255, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.key


# ============================================================
# Laboratory profile (single row)
# ============================================================
class LabConfiguration(TimeStampedModel):
    lab_name = models.CharField(max_length=255)
    address = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=100, blank=True)
    postal_code = models.CharField(max_length=20, blank=True)
    country = models.CharField(max_length=100, default="Slovenia")
    phone = models.CharField(max_length=50, blank=True)
    email = models.EmailField(blank=True)
    website = models.CharField(max_length=255, blank=True)
    tax_id = models.CharField(max_length=50, blank=True)
    registration_number = models.CharField(max_length=50, blank=True)

    responsible_person_name = models.CharField(max_length=255, blank=True)
    responsible_person_title = models.CharField(max_length=255, blank=True)
    responsible_person_license = models.CharField(max_length=100, blank=True)
    responsible_person_email = models.EmailField(blank=True)

    class Meta:
        verbose_name = "laboratory configuration"

    def __str__(self):
        return self.lab_name

    @classmethod
    def load(cls) -> "LabConfiguration | None":
        return cls.objects.order_by("id").first()


# ============================================================
# Bank accounts (exactly one primary)
# ============================================================
class BankAccount(TimeStampedModel):
    bank_name = models.CharField(max_length=255)
    iban = models.CharField(max_length=34)
    swift_bic = models.CharField(max_length=11, blank=True)
    account_holder = models.CharField(max_length=255, blank=True)
    account_type = models.CharField(max_length=50, default="PRIMARY")
    is_primary = models.BooleanField(default=False)
    display_order = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ["-is_primary", "display_order", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["is_primary"],
                condition=models.Q(is_primary=True),
                name="single_primary_bank_account",
            ),
        ]

    def save(self, *args, **kwargs):
        self.iban = (self.iban or "").replace(" ", "").upper()
        with transaction.atomic():
            if self.is_primary:
                (
                    BankAccount.objects.filter(is_primary=True)
                    .exclude(pk=self.pk)
                    .update(is_primary=False)
                )
            return super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.bank_name} {self.iban}"


# ============================================================
# Workflow Transition
# ============================================================
class WorkflowTransition(models.Model):
    kind = models.CharField(max_length=32)
    object_id = models.PositiveIntegerField()
    from_status = models.CharField(max_length=50)
    to_status = models.CharField(max_length=50)
    notes = models.TextField(blank=True)

    performed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="workflow_transitions",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["kind", "object_id"]),
        ]

    def __str__(self):
        return (
            f"{self.kind}:{self.object_id} "
            f"{self.from_status} -> {self.to_status}"
        )

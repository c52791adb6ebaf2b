# lab_core/mixins.py
from __future__ import annotations

from rest_framework.exceptions import ValidationError

from .audit import log_action
from .models import AuditAction


# ===============================================================
# Utilities
# ===============================================================
def _deny_if_payload_has(request, fields: list[str], message: str):
    """
    Reject requests that attempt to mutate server-controlled fields.
    Makes violations noisy and testable.
    """
    incoming = getattr(request, "data", {}) or {}
    present = [f for f in fields if f in incoming]
    if present:
        raise ValidationError({f: message for f in present})


def domain_error(exc: ValueError, field: str = "detail") -> ValidationError:
    """
    Wrap a rule/domain ValueError as a DRF 400.
    """
    return ValidationError({field: str(exc)})


# ===============================================================
# Audit logging
# ===============================================================
class AuditLogMixin:
    """
    Emits CREATE / UPDATE / DELETE audit records.
    Never breaks the request if logging fails.
    """

    def _log(self, action, instance, details=None, entity_id=None):
        log_action(
            action,
            instance,
            user=self.request.user,
            entity_id=entity_id,
            details=details or {},
        )

    def perform_create(self, serializer):
        instance = serializer.save()
        self._log(AuditAction.CREATE, instance, {"id": instance.pk})

    def perform_update(self, serializer):
        changed = sorted(serializer.validated_data.keys())
        instance = serializer.save()
        self._log(AuditAction.UPDATE, instance, {"id": instance.pk, "fields": changed})

    def perform_destroy(self, instance):
        obj_id = instance.pk
        super().perform_destroy(instance)
        self._log(AuditAction.DELETE, instance, {"id": obj_id}, entity_id=obj_id)

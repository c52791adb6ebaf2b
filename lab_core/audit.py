# lab_core/audit.py
from __future__ import annotations

import logging
from threading import local

from django.db import transaction

from lab_core.models import AuditLog

logger = logging.getLogger(__name__)


# ===============================================================
# Thread-local user storage (set by CurrentUserMiddleware)
# ===============================================================
_state = local()


def set_current_user(user):
    _state.user = user


def get_current_user():
    return getattr(_state, "user", None)


# ===============================================================
# Audit entry point
# ===============================================================
def _authenticated_or_none(user):
    if user is not None and getattr(user, "is_authenticated", False):
        return user
    return None


def log_action(
    action: str,
    instance=None,
    *,
    details: dict | None = None,
    user=None,
    entity_type: str | None = None,
    entity_id=None,
) -> AuditLog | None:
    """
    Write one AuditLog row.

    Falls back to the request user stored by the middleware. Never raises:
    a failed audit write is logged and the caller carries on.
    """
    if instance is not None:
        entity_type = entity_type or instance.__class__.__name__
        entity_id = entity_id if entity_id is not None else instance.pk

    try:
        with transaction.atomic():
            return AuditLog.objects.create(
                user=_authenticated_or_none(user or get_current_user()),
                action=action,
                entity_type=entity_type or "",
                entity_id="" if entity_id is None else str(entity_id),
                details=details or {},
            )
    except Exception:
        logger.exception("Audit log write failed for %s %s:%s", action, entity_type, entity_id)
        return None

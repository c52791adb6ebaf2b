# lab_core/signals.py
from __future__ import annotations

import logging

from django.conf import settings
from django.core.mail import send_mail
from django.db.models.signals import post_save
from django.dispatch import receiver

from lab_core.audit import log_action
from lab_core.models import AuditAction, WorkflowTransition

logger = logging.getLogger(__name__)


def _safe_username(user) -> str:
    if not user:
        return "system"
    try:
        return user.get_username()
    except Exception:
        return getattr(user, "username", "user")


# ===============================================================
# WORKFLOW TRANSITIONS
# ===============================================================
@receiver(post_save, sender=WorkflowTransition)
def audit_workflow_transition(sender, instance: WorkflowTransition, created: bool, **kwargs):
    """
    Every transition row (worksheet or order) gets:
    - an AuditLog STATUS_CHANGE entry
    - an optional e-mail to WORKFLOW_NOTIFY_EMAILS (feature-flagged)
    """
    if not created:
        return

    log_action(
        AuditAction.STATUS_CHANGE,
        user=instance.performed_by,
        entity_type=instance.kind,
        entity_id=instance.object_id,
        details={
            "from": instance.from_status,
            "to": instance.to_status,
            "notes": instance.notes,
            "transition_id": instance.pk,
        },
    )

    if not getattr(settings, "WORKFLOW_EMAIL_NOTIFICATIONS", False):
        return

    recipients = getattr(settings, "WORKFLOW_NOTIFY_EMAILS", None)
    if not recipients:
        return

    subject = (
        f"[DentLab] {instance.kind.upper()} {instance.object_id} "
        f"{instance.from_status} -> {instance.to_status}"
    )
    body = "\n".join(
        [
            "Workflow transition recorded.",
            "",
            f"Kind: {instance.kind}",
            f"Object ID: {instance.object_id}",
            f"From: {instance.from_status}",
            f"To: {instance.to_status}",
            f"By: {_safe_username(instance.performed_by)}",
            f"At: {instance.created_at}",
            f"Notes: {instance.notes or '-'}",
        ]
    )

    try:
        send_mail(
            subject=subject,
            message=body,
            from_email=getattr(settings, "DEFAULT_FROM_EMAIL", None),
            recipient_list=list(recipients),
            fail_silently=False,
        )
    except Exception:
        logger.exception("Workflow notification failed for %s", instance)

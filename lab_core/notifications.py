# lab_core/notifications.py
from __future__ import annotations

import logging
from typing import Iterable, List

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import send_mail

from lab_core.audit import log_action
from lab_core.models import AuditAction, Role, WorkSheet

logger = logging.getLogger(__name__)


def notifications_enabled() -> bool:
    return bool(getattr(settings, "WORKFLOW_EMAIL_NOTIFICATIONS", False))


def _clean(recipients: Iterable[str]) -> List[str]:
    return sorted({r.strip() for r in recipients if r and r.strip()})


def _send(subject: str, body: str, recipients: Iterable[str], *, worksheet: WorkSheet, kind: str) -> int:
    if not notifications_enabled():
        return 0

    to = _clean(recipients)
    if not to:
        logger.info("No recipients for %s notification on %s", kind, worksheet.worksheet_number)
        return 0

    try:
        sent = send_mail(
            subject=subject,
            message=body,
            from_email=getattr(settings, "DEFAULT_FROM_EMAIL", None),
            recipient_list=to,
            fail_silently=False,
        )
    except Exception:
        logger.exception("Failed to send %s notification for %s", kind, worksheet.worksheet_number)
        return 0

    log_action(
        AuditAction.EMAIL_SEND,
        worksheet,
        details={"kind": kind, "recipients": to},
    )
    return sent


# ===============================================================
# Workflow notifications
# ===============================================================
def notify_qc_inspectors(worksheet: WorkSheet) -> int:
    User = get_user_model()
    inspector_emails = User.objects.filter(
        lab_roles__role=Role.QC_INSPECTOR,
        is_active=True,
    ).exclude(email="").values_list("email", flat=True)

    recipients = list(inspector_emails) + list(getattr(settings, "QC_NOTIFY_EMAILS", []) or [])
    return _send(
        f"[DentLab] {worksheet.worksheet_number} ready for QC",
        "\n".join(
            [
                "A worksheet is waiting for quality control.",
                "",
                f"Worksheet: {worksheet.worksheet_number}",
                f"Dentist: {worksheet.dentist}",
                f"Patient: {worksheet.patient_name or '-'}",
            ]
        ),
        recipients,
        worksheet=worksheet,
        kind="notify-qc-inspector",
    )


def notify_technician(worksheet: WorkSheet, notes: str = "") -> int:
    creator = worksheet.created_by
    recipients = [creator.email] if creator and creator.email else []
    return _send(
        f"[DentLab] {worksheet.worksheet_number} rejected at QC",
        "\n".join(
            [
                "Quality control rejected this worksheet; rework is required.",
                "",
                f"Worksheet: {worksheet.worksheet_number}",
                f"Notes: {notes or '-'}",
            ]
        ),
        recipients,
        worksheet=worksheet,
        kind="notify-technician",
    )


def notify_dentist(worksheet: WorkSheet, reason: str = "") -> int:
    return _send(
        f"[DentLab] Work for {worksheet.patient_name or worksheet.worksheet_number} cancelled",
        "\n".join(
            [
                f"Dear {worksheet.dentist.dentist_name},",
                "",
                f"Worksheet {worksheet.worksheet_number} (order {worksheet.order.order_number}) was cancelled.",
                f"Reason: {reason or '-'}",
            ]
        ),
        [worksheet.dentist.email],
        worksheet=worksheet,
        kind="notify-dentist",
    )

# lab_core/quality.py
"""
Quality-control sign-off.

Checklist: aesthetics, fit, occlusion, shade, margins.

- APPROVED     all five checks pass
- CONDITIONAL  at least four pass, notes explain the deviation
- REJECTED     at least one check fails, action_required says what to fix

APPROVED and CONDITIONAL move the worksheet to QC_APPROVED; REJECTED moves it
to QC_REJECTED (order back to IN_PRODUCTION).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from lab_core.audit import log_action
from lab_core.models import AuditAction, QCResult, QualityControl, WorkSheet
from lab_core.workflows.executor import execute_transition

logger = logging.getLogger(__name__)

QC_CHECKS = ("aesthetics", "fit", "occlusion", "shade", "margins")

RESULT_TO_STATUS = {
    QCResult.APPROVED: "QC_APPROVED",
    QCResult.CONDITIONAL: "QC_APPROVED",
    QCResult.REJECTED: "QC_REJECTED",
}

MDR_DEFAULTS = {
    "emdn_code": "Q010206 - Dental Prostheses",
    "risk_class": "Class IIa",
    "document_version": "1.0",
}


def passed_checks(data: Dict[str, Any]) -> List[str]:
    return [c for c in QC_CHECKS if bool(data.get(c))]


def validate_inspection(data: Dict[str, Any]) -> None:
    """
    Raises ValueError when the checklist does not support the chosen result.
    """
    result = str(data.get("result") or "").strip().upper()
    if result not in RESULT_TO_STATUS:
        raise ValueError("Result must be APPROVED, CONDITIONAL or REJECTED.")

    passed = len(passed_checks(data))
    notes = str(data.get("notes") or "").strip()
    action_required = str(data.get("action_required") or "").strip()

    if result == QCResult.APPROVED and passed != len(QC_CHECKS):
        raise ValueError("All quality checks must pass to approve.")

    if result == QCResult.CONDITIONAL:
        if passed < len(QC_CHECKS) - 1:
            raise ValueError("Conditional approval allows at most one failed check.")
        if not notes:
            raise ValueError("Notes are required for conditional approval.")

    if result == QCResult.REJECTED:
        if passed == len(QC_CHECKS):
            raise ValueError("Rejection requires at least one failed check.")
        if not action_required:
            raise ValueError("Action required must be provided when rejecting.")

    for field in ("emdn_code", "risk_class", "document_version"):
        value = data.get(field, MDR_DEFAULTS[field])
        if not str(value or "").strip():
            raise ValueError(f"{field} is required.")


def submit_inspection(*, worksheet: WorkSheet, data: Dict[str, Any], user) -> QualityControl:
    """
    Record (or replace) the QC inspection of a QC_PENDING worksheet and move it on.
    """
    if worksheet.status != "QC_PENDING":
        raise ValidationError(
            {"status": f"Worksheet must be QC_PENDING for inspection (currently {worksheet.status})."}
        )

    try:
        validate_inspection(data)
    except ValueError as e:
        raise ValidationError({"result": str(e)})

    result = str(data["result"]).strip().upper()
    notes = str(data.get("notes") or "").strip()
    action_required = str(data.get("action_required") or "").strip()

    defaults = {
        "inspector": user,
        "inspection_date": timezone.now(),
        "result": result,
        "notes": notes,
        "action_required": action_required,
        "annex_i_deviations": str(data.get("annex_i_deviations") or ""),
    }
    for check in QC_CHECKS:
        defaults[check] = bool(data.get(check))
    for field, default in MDR_DEFAULTS.items():
        defaults[field] = str(data.get(field) or default).strip()

    transition_notes = notes
    if result == QCResult.REJECTED:
        transition_notes = action_required if not notes else f"{notes}\n{action_required}"

    with transaction.atomic():
        qc, _ = QualityControl.objects.update_or_create(worksheet=worksheet, defaults=defaults)
        execute_transition(
            worksheet=worksheet,
            new_status=RESULT_TO_STATUS[result],
            user=user,
            notes=transition_notes,
        )
        if result != QCResult.REJECTED and notes:
            WorkSheet.objects.filter(pk=worksheet.pk).update(qc_notes=notes)

    action = AuditAction.QC_REJECT if result == QCResult.REJECTED else AuditAction.QC_APPROVE
    log_action(
        action,
        worksheet,
        user=user,
        details={"result": result, "passed": passed_checks(defaults), "qc_id": qc.pk},
    )
    logger.info("QC %s for worksheet %s by %s", result, worksheet.worksheet_number, user)
    return qc

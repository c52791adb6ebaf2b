# lab_core/workflows/executor.py

from __future__ import annotations

import logging
from typing import List, Set

from django.db import transaction
from django.utils import timezone

from rest_framework.exceptions import PermissionDenied, ValidationError

from lab_core.exceptions import LabError
from lab_core.models import Order, UserRole, WorkSheet, WorkflowTransition
from lab_core.workflows import (
    CORRECTION_ACTIONS,
    allowed_next_states,
    normalize_role,
    normalize_status,
    order_status_for,
    required_roles,
    requires_notes,
    side_effects_on_enter,
    validate_correction,
    validate_transition,
)

logger = logging.getLogger(__name__)


# ===============================================================
# Roles
# ===============================================================
def user_roles(user) -> Set[str]:
    """
    Canonical workflow roles held by `user`. Superusers are always ADMIN.
    """
    if not user or not getattr(user, "is_authenticated", False):
        return set()
    if user.is_superuser:
        return {"ADMIN"}

    raw_roles = UserRole.objects.filter(user=user).values_list("role", flat=True)
    return {normalize_role(r) for r in raw_roles}


def require_any_role(user, required, message: str) -> None:
    required = {normalize_role(r) for r in (required or set())}
    if required and not user_roles(user).intersection(required):
        raise PermissionDenied(message)


# ===============================================================
# Order mirroring
# ===============================================================
def sync_order_status(*, order_id: int, target: str | None, user) -> str | None:
    """
    Move the parent order to `target`, recording an 'order' transition row.
    """
    if not target:
        return None

    order = Order.objects.select_for_update().get(pk=order_id)
    if order.status == target:
        return target

    Order.objects.filter(pk=order.pk).update(status=target, updated_at=timezone.now())
    WorkflowTransition.objects.create(
        kind="order",
        object_id=order.pk,
        from_status=order.status,
        to_status=target,
        performed_by=user if getattr(user, "is_authenticated", False) else None,
    )
    return target


# ===============================================================
# Side effects
# ===============================================================
def _run_side_effects(worksheet: WorkSheet, target: str, user, notes: str) -> List[str]:
    from lab_core.inventory.services import (
        consume_worksheet_materials,
        revert_worksheet_materials,
    )
    from lab_core import notifications

    effects = side_effects_on_enter(target)
    pk = worksheet.pk

    for effect in effects:
        if effect == "consume-materials":
            consume_worksheet_materials(worksheet, user=user)

        elif effect == "revert-materials":
            revert_worksheet_materials(worksheet, user=user)

        elif effect == "mark-order-complete":
            WorkSheet.objects.filter(pk=pk).update(completed_at=timezone.now())

        elif effect == "generate-annex-xiii":
            user_id = user.pk if getattr(user, "is_authenticated", False) else None
            transaction.on_commit(lambda: queue_annex_xiii(pk, user_id))

        elif effect == "notify-qc-inspector":
            transaction.on_commit(lambda: notifications.notify_qc_inspectors(WorkSheet.objects.get(pk=pk)))

        elif effect == "notify-technician":
            transaction.on_commit(lambda: notifications.notify_technician(WorkSheet.objects.get(pk=pk), notes))

        elif effect == "notify-dentist":
            transaction.on_commit(lambda: notifications.notify_dentist(WorkSheet.objects.get(pk=pk), notes))

        else:
            logger.warning("Unknown workflow side effect %r for %s", effect, target)

    return effects


def queue_annex_xiii(worksheet_id: int, user_id: int | None) -> None:
    """
    Hand Annex XIII generation to Celery. A broker outage must not undo a
    committed transition; the document can be regenerated from the API.
    """
    from lab_core.tasks import generate_annex_xiii_document

    try:
        generate_annex_xiii_document.delay(worksheet_id, user_id)
    except Exception:
        logger.exception("Could not queue Annex XIII generation for worksheet %s", worksheet_id)


# ===============================================================
# Transition
# ===============================================================
def execute_transition(*, worksheet: WorkSheet, new_status: str, user, notes: str = "") -> WorkSheet:
    """
    The only sanctioned way to move a worksheet along its workflow.

    Order of checks: terminal lock, no-op, legality, role, notes. The status
    update, the timeline row, side effects and the order mirror commit together.
    """
    target = normalize_status(new_status)
    notes = (notes or "").strip()

    try:
        with transaction.atomic():
            locked = WorkSheet.objects.select_for_update().get(pk=worksheet.pk)
            current = normalize_status(locked.status)

            # 1) Terminal state lock
            if not allowed_next_states(current):
                raise ValidationError(
                    {"status": f"Worksheet is in terminal state '{current}' and cannot be modified."}
                )

            # No-op transition
            if current == target:
                return locked

            # 2) Transition legality
            try:
                validate_transition(current, target)
            except ValueError as e:
                raise ValidationError({"status": str(e)})

            # 3) Role enforcement
            require_any_role(
                user,
                required_roles(current, target),
                f"You do not have the required role to move worksheet from {current} to {target}.",
            )

            # 4) Notes
            if requires_notes(target) and not notes:
                raise ValidationError({"notes": f"Notes are required when moving to {target}."})

            # 5) Apply transition + timeline + effects
            changes = {"status": target, "updated_at": timezone.now()}
            if target == "QC_REJECTED":
                changes["qc_notes"] = notes
            WorkSheet.objects.filter(pk=locked.pk).update(**changes)

            WorkflowTransition.objects.create(
                kind="worksheet",
                object_id=locked.pk,
                from_status=current,
                to_status=target,
                notes=notes,
                performed_by=user,
            )

            _run_side_effects(locked, target, user, notes)
            sync_order_status(order_id=locked.order_id, target=order_status_for(target), user=user)

    except LabError as e:
        # Stock problems while entering production, etc.
        raise ValidationError({"materials": str(e)})

    logger.info("Worksheet %s: %s -> %s by %s", worksheet.pk, current, target, user)
    worksheet.refresh_from_db()
    return worksheet


# ===============================================================
# Corrections: void / rollback
# ===============================================================
def _apply_correction(*, action: str, worksheet: WorkSheet, user, reason: str) -> WorkSheet:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError({"reason": f"A reason is required to {action} a worksheet."})

    try:
        with transaction.atomic():
            locked = WorkSheet.objects.select_for_update().get(pk=worksheet.pk)
            current = normalize_status(locked.status)

            try:
                target = validate_correction(action, current)
            except ValueError as e:
                raise ValidationError({"status": str(e)})

            require_any_role(
                user,
                CORRECTION_ACTIONS[action]["roles"],
                f"You do not have the required role to {action} worksheets.",
            )

            now = timezone.now()
            changes = {"status": target, "updated_at": now}
            if action == "void":
                changes.update(void_reason=reason, voided_at=now, voided_by=user)
            WorkSheet.objects.filter(pk=locked.pk).update(**changes)

            WorkflowTransition.objects.create(
                kind="worksheet",
                object_id=locked.pk,
                from_status=current,
                to_status=target,
                notes=reason,
                performed_by=user,
            )

            if action == "rollback":
                from lab_core.inventory.services import revert_worksheet_materials

                revert_worksheet_materials(locked, user=user)
                sync_order_status(order_id=locked.order_id, target=order_status_for(target), user=user)

    except LabError as e:
        raise ValidationError({"materials": str(e)})

    logger.warning("Worksheet %s %s by %s: %s", worksheet.pk, action, user, reason)
    worksheet.refresh_from_db()
    return worksheet


def void_worksheet(*, worksheet: WorkSheet, user, reason: str) -> WorkSheet:
    """
    QC_APPROVED / DELIVERED -> VOIDED. The record and its material trace are
    kept; a revision worksheet can then be opened on the same order.
    """
    return _apply_correction(action="void", worksheet=worksheet, user=user, reason=reason)


def rollback_worksheet(*, worksheet: WorkSheet, user, reason: str) -> WorkSheet:
    """
    IN_PRODUCTION -> DRAFT, returning consumed material to stock.
    """
    return _apply_correction(action="rollback", worksheet=worksheet, user=user, reason=reason)

# lab_core/services/worksheets.py
"""
Order intake and worksheet authoring.

Status never changes here; that is the executor's job. These services own
numbering, the one-active-worksheet-per-order rule and the edit rules:

- DRAFT                          free edits
- IN_PRODUCTION .. QC_APPROVED   header edits need a reason (>= 10 chars)
- DELIVERED / CANCELLED / VOIDED locked
- teeth, products, materials     DRAFT only
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from django.db import transaction
from django.utils import timezone

from lab_core.audit import log_action
from lab_core.dental.fdi import validate_tooth_selections
from lab_core.exceptions import ExpiredMaterialError, WorksheetLocked
from lab_core.models import (
    AuditAction,
    Dentist,
    Material,
    MaterialLot,
    Order,
    OrderPriority,
    Product,
    WorkSheet,
    WorksheetMaterial,
    WorksheetProduct,
    WorksheetTooth,
)
from lab_core.numbering import next_order_number, next_worksheet_revision

logger = logging.getLogger(__name__)

LOCKED_STATUSES = {"DELIVERED", "CANCELLED", "VOIDED"}
INACTIVE_STATUSES = {"CANCELLED", "VOIDED"}
MIN_EDIT_REASON = 10

EDITABLE_FIELDS = (
    "patient_name",
    "device_description",
    "intended_use",
    "manufacture_date",
    "technical_notes",
)


# ===============================================================
# Orders
# ===============================================================
def create_order(
    *,
    dentist: Dentist,
    user=None,
    patient_name: str = "",
    due_date: Optional[date] = None,
    priority: str = OrderPriority.NORMAL,
    notes: str = "",
    today: Optional[date] = None,
) -> Order:
    if not dentist.is_active:
        raise ValueError(f"Dentist {dentist} is inactive.")

    with transaction.atomic():
        order = Order.objects.create(
            order_number=next_order_number(today),
            dentist=dentist,
            due_date=due_date,
            priority=priority or OrderPriority.NORMAL,
            patient_name=patient_name or "",
            notes=notes or "",
            created_by=user if getattr(user, "is_authenticated", False) else None,
        )

    log_action(AuditAction.CREATE, order, user=user, details={"order_number": order.order_number})
    logger.info("Order %s created for dentist %s", order.order_number, dentist.pk)
    return order


# ===============================================================
# Worksheet creation
# ===============================================================
def create_worksheet(*, order: Order, user=None, **fields: Any) -> WorkSheet:
    """
    Open a worksheet on `order`. Refused while another worksheet on the order
    is still active; after a void the new one gets the next revision number.
    """
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown worksheet fields: {', '.join(sorted(unknown))}")

    with transaction.atomic():
        locked = Order.objects.select_for_update().get(pk=order.pk)
        active = locked.worksheets.exclude(status__in=INACTIVE_STATUSES).first()
        if active is not None:
            raise ValueError(
                f"Order {locked.order_number} already has an active worksheet ({active.worksheet_number})."
            )

        number, revision = next_worksheet_revision(locked)
        fields.setdefault("patient_name", locked.patient_name)
        worksheet = WorkSheet.objects.create(
            worksheet_number=number,
            revision=revision,
            order=locked,
            dentist=locked.dentist,
            created_by=user if getattr(user, "is_authenticated", False) else None,
            **fields,
        )

    log_action(
        AuditAction.CREATE,
        worksheet,
        user=user,
        details={"worksheet_number": number, "revision": revision, "order": locked.order_number},
    )
    return worksheet


# ===============================================================
# Edit rules
# ===============================================================
def require_draft(worksheet: WorkSheet, what: str = "content") -> None:
    if worksheet.status != "DRAFT":
        raise WorksheetLocked(
            f"Worksheet {worksheet.worksheet_number} {what} can only change in DRAFT "
            f"(currently {worksheet.status})."
        )


def validate_worksheet_edit(worksheet: WorkSheet, reason: str = "") -> None:
    """
    Raises WorksheetLocked in terminal statuses and ValueError when a
    non-DRAFT edit lacks a meaningful reason.
    """
    if worksheet.status in LOCKED_STATUSES:
        raise WorksheetLocked(
            f"Worksheet {worksheet.worksheet_number} is {worksheet.status} and cannot be edited."
        )
    if worksheet.status != "DRAFT" and len((reason or "").strip()) < MIN_EDIT_REASON:
        raise ValueError(
            f"An edit reason of at least {MIN_EDIT_REASON} characters is required "
            f"once a worksheet has left DRAFT."
        )


def update_worksheet(worksheet: WorkSheet, *, data: Dict[str, Any], user=None, reason: str = "") -> WorkSheet:
    validate_worksheet_edit(worksheet, reason)

    changes: Dict[str, Dict[str, Any]] = {}
    for field in EDITABLE_FIELDS:
        if field not in data:
            continue
        old = getattr(worksheet, field)
        new = data[field]
        if old != new:
            changes[field] = {"from": old, "to": new}
            setattr(worksheet, field, new)

    if not changes:
        return worksheet

    worksheet.save(update_fields=[*changes.keys(), "updated_at"])
    details: Dict[str, Any] = {"changes": changes}
    if worksheet.status != "DRAFT":
        details["reason"] = reason.strip()
    log_action(AuditAction.UPDATE, worksheet, user=user, details=details)
    return worksheet


# ===============================================================
# Teeth
# ===============================================================
def set_teeth(worksheet: WorkSheet, selections: Iterable[Dict[str, Any]], *, user=None) -> List[WorksheetTooth]:
    """
    Replace the tooth selection of a DRAFT worksheet.
    """
    require_draft(worksheet, "teeth")
    items = list(selections or [])
    validate_tooth_selections(items)

    with transaction.atomic():
        worksheet.teeth.all().delete()
        rows = [
            WorksheetTooth.objects.create(
                worksheet=worksheet,
                tooth_number=str(s["tooth_number"]).strip(),
                work_type=str(s["work_type"]).strip(),
                shade=str(s.get("shade") or "").strip(),
                notes=str(s.get("notes") or ""),
            )
            for s in items
        ]

    log_action(
        AuditAction.UPDATE,
        worksheet,
        user=user,
        details={"teeth": [r.tooth_number for r in rows]},
    )
    return rows


# ===============================================================
# Products
# ===============================================================
def add_product(
    worksheet: WorkSheet,
    *,
    product: Product,
    quantity: int = 1,
    notes: str = "",
    user=None,
) -> WorksheetProduct:
    require_draft(worksheet, "products")
    if not product.is_active:
        raise ValueError(f"Product {product.code} is inactive.")
    if int(quantity) < 1:
        raise ValueError("Quantity must be at least 1.")

    line = WorksheetProduct.objects.create(
        worksheet=worksheet,
        product=product,
        quantity=int(quantity),
        price_at_selection=product.current_price,
        notes=notes or "",
    )
    log_action(
        AuditAction.UPDATE,
        worksheet,
        user=user,
        details={"added_product": product.code, "quantity": line.quantity, "price": str(line.price_at_selection)},
    )
    return line


def remove_product(line: WorksheetProduct, *, user=None) -> None:
    worksheet = line.worksheet
    require_draft(worksheet, "products")
    code = line.product.code
    line.delete()
    log_action(AuditAction.UPDATE, worksheet, user=user, details={"removed_product": code})


# ===============================================================
# Materials
# ===============================================================
def add_material(
    worksheet: WorkSheet,
    *,
    material: Material,
    quantity_planned,
    material_lot: Optional[MaterialLot] = None,
    notes: str = "",
    user=None,
    today: Optional[date] = None,
) -> WorksheetMaterial:
    """
    Plan material for a DRAFT worksheet. Stock is only drawn when the worksheet
    enters production.
    """
    require_draft(worksheet, "materials")
    qty = Decimal(str(quantity_planned))
    if qty <= 0:
        raise ValueError("Planned quantity must be positive.")
    if not material.is_active:
        raise ValueError(f"Material {material.code} is inactive.")

    if material_lot is not None:
        if material_lot.material_id != material.pk:
            raise ValueError(f"LOT {material_lot.lot_number} does not belong to material {material.code}.")
        if material_lot.is_expired(today or timezone.localdate()):
            raise ExpiredMaterialError(material_lot.lot_number, material_lot.expiry_date)

    line = WorksheetMaterial.objects.create(
        worksheet=worksheet,
        material=material,
        material_lot=material_lot,
        quantity_planned=qty,
        notes=notes or "",
    )
    log_action(
        AuditAction.MATERIAL_ASSIGN,
        worksheet,
        user=user,
        details={
            "material": material.code,
            "quantity_planned": str(qty),
            "lot_number": material_lot.lot_number if material_lot else None,
        },
    )
    return line


def remove_material(line: WorksheetMaterial, *, user=None) -> None:
    worksheet = line.worksheet
    require_draft(worksheet, "materials")
    if line.consumptions.filter(reverted_at__isnull=True).exists():
        raise WorksheetLocked("Material lines with consumed LOT stock cannot be removed.")
    code = line.material.code
    with transaction.atomic():
        # Reverted draws returned their stock; the audit entry keeps their LOT numbers.
        reverted = list(line.consumptions.values_list("lot__lot_number", "quantity"))
        line.consumptions.all().delete()
        line.delete()
    log_action(
        AuditAction.UPDATE,
        worksheet,
        user=user,
        details={
            "removed_material": code,
            "reverted_lots": [{"lot_number": n, "quantity": str(q)} for n, q in reverted],
        },
    )

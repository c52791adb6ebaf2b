# lab_core/inventory/services.py
"""
Material stock operations.

Every write locks the affected MaterialLot rows (select_for_update) inside a
transaction, so concurrent consumption cannot drive a lot below zero.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Min, Max, Q, Sum
from django.utils import timezone

from lab_core.audit import log_action
from lab_core.exceptions import (
    DuplicateLotError,
    ExpiredMaterialError,
    InsufficientStockError,
    LotUnavailableError,
    TraceabilityViolation,
)
from lab_core.inventory.fifo import plan_consumption
from lab_core.models import (
    AuditAction,
    LotConsumption,
    LotStatus,
    Material,
    MaterialLot,
    WorkSheet,
    WorksheetMaterial,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _today(today: Optional[date] = None) -> date:
    return today or timezone.localdate()


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


# ===============================================================
# Stock arrival
# ===============================================================
def record_stock_arrival(
    *,
    material: Material,
    lot_number: str,
    quantity_received,
    expiry_date: Optional[date] = None,
    supplier_name: str = "",
    arrival_date=None,
    notes: str = "",
    user=None,
) -> MaterialLot:
    """
    Register a received LOT. quantity_available starts at quantity_received.
    """
    lot_number = (lot_number or "").strip()
    if not lot_number:
        raise ValueError("LOT number is required.")

    qty = _dec(quantity_received)
    if qty <= ZERO:
        raise ValueError("Received quantity must be greater than zero.")

    if expiry_date is not None and expiry_date <= _today():
        raise ExpiredMaterialError(lot_number, expiry_date)

    with transaction.atomic():
        if MaterialLot.objects.filter(material=material, lot_number=lot_number).exists():
            raise DuplicateLotError(material.code, lot_number)

        lot = MaterialLot.objects.create(
            material=material,
            lot_number=lot_number,
            arrival_date=arrival_date or timezone.now(),
            expiry_date=expiry_date,
            supplier_name=supplier_name,
            quantity_received=qty,
            quantity_available=qty,
            status=LotStatus.AVAILABLE,
            notes=notes,
        )

    log_action(
        AuditAction.CREATE,
        lot,
        user=user,
        details={"material": material.code, "lot_number": lot_number, "quantity": str(qty)},
    )
    logger.info("Stock arrival: %s LOT %s qty %s", material.code, lot_number, qty)
    return lot


# ===============================================================
# Consumption (FIFO)
# ===============================================================
def _apply_draw(line: WorksheetMaterial, lot: MaterialLot, qty: Decimal) -> LotConsumption:
    lot.quantity_available = _dec(lot.quantity_available) - qty
    update_fields = ["quantity_available", "updated_at"]

    if lot.quantity_available <= ZERO:
        lot.quantity_available = ZERO
        lot.status = LotStatus.DEPLETED
        update_fields.append("status")
        logger.warning("LOT %s is now depleted", lot.lot_number)

    lot.save(update_fields=update_fields)
    return LotConsumption.objects.create(worksheet_material=line, lot=lot, quantity=qty)


def _draw_from_pinned_lot(line: WorksheetMaterial, qty: Decimal, today: date) -> List[LotConsumption]:
    lot = MaterialLot.objects.select_for_update().get(pk=line.material_lot_id)

    if lot.material_id != line.material_id:
        raise LotUnavailableError(f"LOT {lot.lot_number} does not belong to material {line.material.code}.")
    if lot.is_expired(today) or lot.status == LotStatus.EXPIRED:
        raise ExpiredMaterialError(lot.lot_number, lot.expiry_date)
    if lot.status != LotStatus.AVAILABLE:
        raise LotUnavailableError(f"LOT {lot.lot_number} is {lot.status} and cannot be used.")
    if _dec(lot.quantity_available) < qty:
        raise InsufficientStockError(
            f"{line.material.code} LOT {lot.lot_number}", qty, lot.quantity_available
        )

    return [_apply_draw(line, lot, qty)]


def _draw_fifo(line: WorksheetMaterial, qty: Decimal, today: date) -> List[LotConsumption]:
    lots = list(
        MaterialLot.objects.select_for_update()
        .filter(material_id=line.material_id, status=LotStatus.AVAILABLE, quantity_available__gt=0)
        .filter(Q(expiry_date__isnull=True) | Q(expiry_date__gt=today))
        .order_by("arrival_date", "id")
    )
    plan = plan_consumption(lots, qty, today=today, material_label=line.material.code)
    return [_apply_draw(line, lot, take) for lot, take in plan]


def consume_material(
    line: WorksheetMaterial,
    *,
    user=None,
    today: Optional[date] = None,
) -> List[LotConsumption]:
    """
    Draw the planned quantity of one worksheet material line from stock.

    A pinned lot is used as-is; otherwise lots are drawn oldest arrival first.
    Already consumed lines are left alone.
    """
    if line.is_consumed:
        return []

    today = _today(today)
    qty = _dec(line.quantity_planned)

    with transaction.atomic():
        if line.material_lot_id:
            rows = _draw_from_pinned_lot(line, qty, today)
        else:
            rows = _draw_fifo(line, qty, today)

        line.quantity_used = sum((r.quantity for r in rows), ZERO)
        line.consumed_at = timezone.now()
        line.save(update_fields=["quantity_used", "consumed_at", "updated_at"])

    log_action(
        AuditAction.MATERIAL_ASSIGN,
        line.worksheet,
        user=user,
        details={
            "material": line.material.code,
            "quantity": str(qty),
            "lots": [{"lot_number": r.lot.lot_number, "quantity": str(r.quantity)} for r in rows],
        },
    )
    return rows


def consume_worksheet_materials(worksheet: WorkSheet, *, user=None, today: Optional[date] = None) -> List[LotConsumption]:
    """
    Consume every unconsumed material line of a worksheet, all or nothing.
    """
    rows: List[LotConsumption] = []
    with transaction.atomic():
        lines = (
            WorksheetMaterial.objects.select_related("material")
            .filter(worksheet=worksheet, consumed_at__isnull=True)
            .order_by("id")
        )
        for line in lines:
            rows.extend(consume_material(line, user=user, today=today))
    return rows


def revert_worksheet_materials(worksheet: WorkSheet, *, user=None, today: Optional[date] = None) -> Decimal:
    """
    Put consumed stock back into its lots. Returns the total quantity restored.

    A depleted lot that gets stock back becomes AVAILABLE again, or EXPIRED
    if its expiry date has passed meanwhile. RECALLED lots keep their status.
    """
    today = _today(today)
    restored = ZERO
    now = timezone.now()

    with transaction.atomic():
        consumptions = list(
            LotConsumption.objects.select_related("worksheet_material")
            .filter(worksheet_material__worksheet=worksheet, reverted_at__isnull=True)
            .order_by("id")
        )
        if not consumptions:
            return ZERO

        lot_ids = sorted({c.lot_id for c in consumptions})
        lots = {lot.pk: lot for lot in MaterialLot.objects.select_for_update().filter(pk__in=lot_ids)}

        for c in consumptions:
            lot = lots[c.lot_id]
            lot.quantity_available = _dec(lot.quantity_available) + _dec(c.quantity)
            if lot.status == LotStatus.DEPLETED and lot.quantity_available > ZERO:
                lot.status = LotStatus.EXPIRED if lot.is_expired(today) else LotStatus.AVAILABLE
            restored += _dec(c.quantity)
            c.reverted_at = now
            c.save(update_fields=["reverted_at"])

        for lot in lots.values():
            lot.save(update_fields=["quantity_available", "status", "updated_at"])

        line_ids = {c.worksheet_material_id for c in consumptions}
        WorksheetMaterial.objects.filter(pk__in=line_ids).update(
            quantity_used=ZERO,
            consumed_at=None,
            updated_at=now,
        )

    log_action(
        AuditAction.MATERIAL_ASSIGN,
        worksheet,
        user=user,
        details={"reverted": True, "quantity": str(restored)},
    )
    logger.info("Reverted %s material units for worksheet %s", restored, worksheet.pk)
    return restored


# ===============================================================
# Stock queries
# ===============================================================
def available_quantity(material: Material, today: Optional[date] = None) -> Decimal:
    today = _today(today)
    total = (
        MaterialLot.objects.filter(material=material, status=LotStatus.AVAILABLE)
        .filter(Q(expiry_date__isnull=True) | Q(expiry_date__gt=today))
        .aggregate(total=Sum("quantity_available"))["total"]
    )
    return total or ZERO


def available_materials(today: Optional[date] = None) -> List[Dict]:
    """
    Active materials with usable stock, plus their FIFO lots.
    """
    today = _today(today)
    out: List[Dict] = []

    for material in Material.objects.filter(is_active=True).order_by("code"):
        lots = list(
            material.lots.filter(status=LotStatus.AVAILABLE, quantity_available__gt=0)
            .filter(Q(expiry_date__isnull=True) | Q(expiry_date__gt=today))
            .order_by("arrival_date", "id")
        )
        if not lots:
            continue

        out.append(
            {
                "id": material.pk,
                "code": material.code,
                "name": material.name,
                "type": material.type,
                "unit": material.unit,
                "available": sum((lot.quantity_available for lot in lots), ZERO),
                "lots": [
                    {
                        "id": lot.pk,
                        "lot_number": lot.lot_number,
                        "quantity_available": lot.quantity_available,
                        "expiry_date": lot.expiry_date,
                        "arrival_date": lot.arrival_date,
                    }
                    for lot in lots
                ],
            }
        )
    return out


def expiry_severity(days_until_expiry: int) -> str:
    if days_until_expiry < 7:
        return "critical"
    if days_until_expiry < 30:
        return "warning"
    return "info"


def expiring_lots(days: Optional[int] = None, today: Optional[date] = None) -> List[Dict]:
    """
    AVAILABLE lots expiring within `days`, soonest first.
    """
    today = _today(today)
    days = settings.LAB_EXPIRY_WARNING_DAYS if days is None else int(days)
    horizon = today + timedelta(days=days)

    qs = (
        MaterialLot.objects.select_related("material")
        .filter(
            status=LotStatus.AVAILABLE,
            quantity_available__gt=0,
            expiry_date__isnull=False,
            expiry_date__gt=today,
            expiry_date__lte=horizon,
        )
        .order_by("expiry_date", "id")
    )

    out: List[Dict] = []
    for lot in qs:
        remaining = (lot.expiry_date - today).days
        out.append(
            {
                "lot_id": lot.pk,
                "lot_number": lot.lot_number,
                "material_code": lot.material.code,
                "material_name": lot.material.name,
                "expiry_date": lot.expiry_date,
                "days_until_expiry": remaining,
                "quantity_available": lot.quantity_available,
                "severity": expiry_severity(remaining),
            }
        )
    return out


def expired_lots(today: Optional[date] = None):
    today = _today(today)
    return (
        MaterialLot.objects.select_related("material")
        .filter(expiry_date__isnull=False, expiry_date__lte=today)
        .exclude(status__in=[LotStatus.DEPLETED, LotStatus.RECALLED])
        .order_by("expiry_date", "id")
    )


def depleted_lots():
    return MaterialLot.objects.select_related("material").filter(status=LotStatus.DEPLETED).order_by("-updated_at", "-id")


def low_stock_materials(threshold=None, today: Optional[date] = None) -> List[Dict]:
    """
    Active materials whose usable stock is below `threshold`, lowest percentage first.
    """
    threshold = _dec(settings.LAB_LOW_STOCK_THRESHOLD if threshold is None else threshold)
    if threshold <= ZERO:
        raise ValueError("Threshold must be greater than zero.")

    out: List[Dict] = []
    for material in Material.objects.filter(is_active=True).order_by("code"):
        available = available_quantity(material, today)
        if available >= threshold:
            continue
        out.append(
            {
                "material_id": material.pk,
                "code": material.code,
                "name": material.name,
                "unit": material.unit,
                "available": available,
                "threshold": threshold,
                "percentage": float((available / threshold * 100).quantize(Decimal("0.1"))),
            }
        )

    out.sort(key=lambda row: (row["percentage"], row["code"]))
    return out


def expire_lots(today: Optional[date] = None) -> int:
    """
    Flag AVAILABLE lots whose expiry date has passed. Returns the number flagged.
    """
    today = _today(today)
    with transaction.atomic():
        qs = MaterialLot.objects.select_for_update().filter(
            status=LotStatus.AVAILABLE,
            expiry_date__isnull=False,
            expiry_date__lte=today,
        )
        numbers = list(qs.values_list("lot_number", flat=True))
        updated = qs.update(status=LotStatus.EXPIRED, updated_at=timezone.now())

    if updated:
        logger.warning("Marked %d lot(s) as EXPIRED: %s", updated, ", ".join(numbers))
    return updated


def inventory_overview(today: Optional[date] = None) -> Dict:
    today = _today(today)
    counts = dict(
        MaterialLot.objects.values("status").annotate(n=Count("id")).values_list("status", "n")
    )
    return {
        "materials": Material.objects.filter(is_active=True).count(),
        "lots": {status: counts.get(status, 0) for status in LotStatus.values},
        "expiring_soon": len(expiring_lots(today=today)),
        "low_stock": len(low_stock_materials(today=today)),
    }


# ===============================================================
# Traceability (EU MDR)
# ===============================================================
def lot_traceability(lot: MaterialLot) -> Dict:
    """
    Forward trace: every worksheet, dentist and patient that received material from `lot`.
    """
    consumptions = (
        LotConsumption.objects.select_related(
            "worksheet_material__worksheet__dentist",
            "worksheet_material__worksheet__order",
        )
        .filter(lot=lot, reverted_at__isnull=True)
        .order_by("consumed_at", "id")
    )

    worksheets: List[Dict] = []
    patients = set()
    total = ZERO
    for c in consumptions:
        ws = c.worksheet_material.worksheet
        total += _dec(c.quantity)
        if ws.patient_name:
            patients.add(ws.patient_name)
        worksheets.append(
            {
                "worksheet_id": ws.pk,
                "worksheet_number": ws.worksheet_number,
                "order_number": ws.order.order_number,
                "status": ws.status,
                "dentist": ws.dentist.dentist_name,
                "clinic": ws.dentist.clinic_name,
                "patient_name": ws.patient_name,
                "quantity_used": c.quantity,
                "used_at": c.consumed_at,
            }
        )

    span = consumptions.aggregate(first=Min("consumed_at"), last=Max("consumed_at"))

    return {
        "lot": {
            "id": lot.pk,
            "lot_number": lot.lot_number,
            "material_code": lot.material.code,
            "material_name": lot.material.name,
            "status": lot.status,
            "expiry_date": lot.expiry_date,
            "quantity_received": lot.quantity_received,
            "quantity_available": lot.quantity_available,
        },
        "worksheets": worksheets,
        "summary": {
            "total_worksheets": len({w["worksheet_id"] for w in worksheets}),
            "total_quantity_used": total,
            "unique_patients": len(patients),
            "first_used_at": span["first"],
            "last_used_at": span["last"],
        },
    }


def worksheet_traceability(worksheet: WorkSheet) -> List[Dict]:
    """
    Reverse trace: materials and lots that went into a worksheet.
    """
    out: List[Dict] = []
    lines = (
        WorksheetMaterial.objects.select_related("material", "material_lot")
        .prefetch_related("consumptions__lot")
        .filter(worksheet=worksheet)
        .order_by("id")
    )
    for line in lines:
        lots = [
            {
                "lot_id": c.lot_id,
                "lot_number": c.lot.lot_number,
                "expiry_date": c.lot.expiry_date,
                "quantity": c.quantity,
            }
            for c in line.consumptions.all()
            if c.reverted_at is None
        ]
        out.append(
            {
                "line_id": line.pk,
                "material_code": line.material.code,
                "material_name": line.material.name,
                "manufacturer": line.material.manufacturer,
                "unit": line.material.unit,
                "ce_marked": line.material.ce_marked,
                "ce_number": line.material.ce_number,
                "biocompatible": line.material.biocompatible,
                "quantity_planned": line.quantity_planned,
                "quantity_used": line.quantity_used,
                "pinned_lot": line.material_lot.lot_number if line.material_lot_id else None,
                "lots": lots,
            }
        )
    return out


# ===============================================================
# Deletion guards
# ===============================================================
def delete_material(material: Material, *, user=None) -> None:
    used = (
        WorksheetMaterial.objects.filter(material=material).exists()
        or LotConsumption.objects.filter(lot__material=material).exists()
    )
    if used:
        raise TraceabilityViolation(
            f"Material {material.code} has been used in worksheets and cannot be deleted. "
            "Mark it inactive instead."
        )

    pk = material.pk
    with transaction.atomic():
        material.lots.all().delete()
        material.delete()
    log_action(AuditAction.DELETE, entity_type="Material", entity_id=pk, user=user, details={"code": material.code})


def delete_lot(lot: MaterialLot, *, user=None) -> None:
    used = lot.consumptions.exists() or lot.pinned_lines.exists()
    if used:
        raise TraceabilityViolation(
            f"LOT {lot.lot_number} has been used in worksheets and cannot be deleted. "
            "Mark it RECALLED instead."
        )

    pk = lot.pk
    lot.delete()
    log_action(AuditAction.DELETE, entity_type="MaterialLot", entity_id=pk, user=user, details={"lot_number": lot.lot_number})

# lab_core/documents/annex.py
"""
EU MDR Annex XIII manufacturer's statement for custom-made devices.

The statement is stored as a Document (type ANNEX_XIII, number
MDR-<worksheet number>) holding a JSON payload; the plain-text rendering is
produced on download from lab_core/annex_xiii.txt.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.template.loader import render_to_string
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from lab_core.audit import log_action
from lab_core.dental.fdi import format_tooth
from lab_core.models import (
    AuditAction,
    Document,
    DocumentType,
    LabConfiguration,
    QCResult,
    WorkSheet,
)
from lab_core.quality import MDR_DEFAULTS

logger = logging.getLogger(__name__)

ANNEX_STATUSES = {"QC_APPROVED", "DELIVERED"}


def document_number(worksheet: WorkSheet) -> str:
    return f"MDR-{worksheet.worksheet_number}"


def retention_date(generated: date, years: Optional[int] = None) -> date:
    years = settings.LAB_DOCUMENT_RETENTION_YEARS if years is None else years
    try:
        return generated.replace(year=generated.year + years)
    except ValueError:
        # 29 February
        return generated.replace(year=generated.year + years, day=28)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _user_label(user) -> str:
    if not user or not getattr(user, "is_authenticated", False):
        return "system"
    return user.get_full_name() or user.get_username()


# ===============================================================
# Payload
# ===============================================================
def _manufacturer(lab: LabConfiguration) -> Dict[str, Any]:
    return {
        "name": lab.lab_name,
        "address": lab.address,
        "city": lab.city,
        "postal_code": lab.postal_code,
        "country": lab.country,
        "phone": lab.phone,
        "email": lab.email,
        "website": lab.website,
        "tax_id": lab.tax_id,
        "registration_number": lab.registration_number,
        "responsible_person": {
            "name": lab.responsible_person_name,
            "title": lab.responsible_person_title,
            "license": lab.responsible_person_license,
            "email": lab.responsible_person_email,
        },
    }


def _materials(worksheet: WorkSheet) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    lines = (
        worksheet.materials.select_related("material", "material_lot")
        .prefetch_related("consumptions__lot")
        .order_by("id")
    )
    for line in lines:
        m = line.material
        base = {
            "code": m.code,
            "name": m.name,
            "manufacturer": m.manufacturer,
            "unit": m.unit,
            "ce_marked": m.ce_marked,
            "ce_number": m.ce_number,
            "biocompatible": m.biocompatible,
        }
        drawn = [c for c in line.consumptions.all() if c.reverted_at is None]
        if drawn:
            for c in drawn:
                rows.append(
                    {
                        **base,
                        "lot_number": c.lot.lot_number,
                        "expiry_date": _iso(c.lot.expiry_date),
                        "quantity_used": str(c.quantity),
                    }
                )
        else:
            lot = line.material_lot
            rows.append(
                {
                    **base,
                    "lot_number": lot.lot_number if lot else None,
                    "expiry_date": _iso(lot.expiry_date) if lot else None,
                    "quantity_used": str(line.quantity_used or line.quantity_planned),
                }
            )
    return rows


def _quality_control(worksheet: WorkSheet, lab: LabConfiguration) -> Optional[Dict[str, Any]]:
    qc = getattr(worksheet, "quality_control", None)
    if qc is None or qc.result not in (QCResult.APPROVED, QCResult.CONDITIONAL):
        return None
    return {
        # The statement is signed by the Annex XIII responsible person
        "inspector": lab.responsible_person_name or _user_label(qc.inspector),
        "inspection_date": _iso(qc.inspection_date),
        "result": qc.result,
        "notes": qc.notes,
        "emdn_code": qc.emdn_code or MDR_DEFAULTS["emdn_code"],
        "risk_class": qc.risk_class or MDR_DEFAULTS["risk_class"],
        "annex_i_deviations": qc.annex_i_deviations or None,
        "document_version": qc.document_version or MDR_DEFAULTS["document_version"],
    }


def build_annex_xiii(worksheet: WorkSheet, *, user=None, today: Optional[date] = None) -> Dict[str, Any]:
    """
    Assemble the statement payload. Raises ValidationError when the
    laboratory profile is missing.
    """
    lab = LabConfiguration.load()
    if lab is None:
        raise ValidationError({"lab": "Laboratory configuration is required before generating Annex XIII."})

    today = today or timezone.localdate()
    dentist = worksheet.dentist
    teeth = list(worksheet.teeth.order_by("tooth_number"))
    tooth_list = ", ".join(t.tooth_number for t in teeth) or "N/A"

    return {
        "document_number": document_number(worksheet),
        "worksheet_number": worksheet.worksheet_number,
        "order_number": worksheet.order.order_number,
        "generation_date": today.isoformat(),
        "retention_until": retention_date(today).isoformat(),
        "generated_by": _user_label(user),
        "manufacturer": _manufacturer(lab),
        "prescriber": {
            "name": dentist.dentist_name,
            "clinic": dentist.clinic_name,
            "license_number": dentist.license_number,
            "address": dentist.address,
            "city": dentist.city,
            "postal_code": dentist.postal_code,
            "email": dentist.email,
            "phone": dentist.phone,
        },
        "patient": worksheet.patient_name or "",
        "device": {
            "description": worksheet.device_description,
            "intended_use": worksheet.intended_use,
            "manufacture_date": _iso(worksheet.manufacture_date),
            "delivery_date": _iso(worksheet.completed_at),
        },
        "teeth": [
            {
                "tooth": t.tooth_number,
                "label": format_tooth(t.tooth_number),
                "work_type": t.work_type,
                "shade": t.shade,
            }
            for t in teeth
        ],
        "products": [
            {
                "code": p.product.code,
                "name": p.product.name,
                "quantity": p.quantity,
                "teeth": tooth_list,
            }
            for p in worksheet.products.select_related("product").order_by("id")
        ],
        "materials": _materials(worksheet),
        "quality_control": _quality_control(worksheet, lab),
    }


# ===============================================================
# Generation
# ===============================================================
def generate_annex_xiii(worksheet: WorkSheet, *, user=None, today: Optional[date] = None) -> Document:
    """
    Create or refresh the Annex XIII Document of a QC-approved or delivered worksheet.
    """
    worksheet.refresh_from_db()
    if worksheet.status not in ANNEX_STATUSES:
        raise ValidationError(
            {"status": f"Annex XIII requires a QC_APPROVED or DELIVERED worksheet (currently {worksheet.status})."}
        )

    payload = build_annex_xiii(worksheet, user=user, today=today)
    generated_by = user if getattr(user, "is_authenticated", False) else None

    with transaction.atomic():
        doc, created = Document.objects.update_or_create(
            document_number=payload["document_number"],
            defaults={
                "type": DocumentType.ANNEX_XIII,
                "worksheet": worksheet,
                "title": f"Annex XIII statement {worksheet.worksheet_number}",
                "file_name": f"{payload['document_number']}.txt",
                "payload": payload,
                "generated_by": generated_by,
                "retention_until": date.fromisoformat(payload["retention_until"]),
            },
        )

    log_action(
        AuditAction.DOCUMENT_GENERATE,
        doc,
        user=user,
        details={
            "type": DocumentType.ANNEX_XIII,
            "worksheet": worksheet.worksheet_number,
            "retention_until": payload["retention_until"],
            "created": created,
        },
    )
    logger.info(
        "Annex XIII %s %s for worksheet %s",
        doc.document_number,
        "created" if created else "refreshed",
        worksheet.worksheet_number,
    )
    return doc


def render_annex_text(document: Document) -> str:
    return render_to_string("lab_core/annex_xiii.txt", {"doc": document, "p": document.payload})

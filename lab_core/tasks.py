# lab_core/tasks.py
from __future__ import annotations

import logging

from celery import shared_task
from django.contrib.auth import get_user_model

from lab_core.models import WorkSheet

logger = logging.getLogger(__name__)


def _user(user_id: int | None):
    if not user_id:
        return None
    User = get_user_model()
    return User.objects.filter(id=user_id).first()


@shared_task
def generate_annex_xiii_document(worksheet_id: int, user_id: int | None = None) -> str | None:
    """
    Build (or refresh) the Annex XIII statement of a QC-approved worksheet.
    Returns the document number, or None when the worksheet is gone.
    """
    from lab_core.documents.annex import generate_annex_xiii

    worksheet = WorkSheet.objects.filter(pk=worksheet_id).first()
    if worksheet is None:
        logger.warning("Annex XIII requested for missing worksheet %s", worksheet_id)
        return None

    doc = generate_annex_xiii(worksheet, user=_user(user_id))
    return doc.document_number


@shared_task
def expire_material_lots() -> int:
    from lab_core.inventory.services import expire_lots

    count = expire_lots()
    if count:
        logger.info("Marked %s material lots as EXPIRED", count)
    return count


@shared_task
def mark_overdue_invoices() -> int:
    from lab_core.billing.services import mark_overdue_invoices as _mark

    count = _mark()
    if count:
        logger.info("Marked %s invoices as OVERDUE", count)
    return count

# lab_core/numbering.py
"""
Document numbering.

- Orders:     YYNNN            (per-year counter kept in SystemConfig)
- Worksheets: DN-<order>       first worksheet (revision 0)
              DN-<order>-R<n>  n-th replacement after a void, from R1
- Invoices:   RAC-YYYY-NNN     sequential over finalized invoices per year
"""

from __future__ import annotations

import re
from datetime import date
from typing import Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from lab_core.models import Invoice, Order, SystemConfig, WorkSheet

WORKSHEET_NUMBER_RE = re.compile(r"^DN-(\d+)(?:-R([1-9]\d*))?$")


# ===============================================================
# Orders
# ===============================================================
def order_counter_key(year: int) -> str:
    return f"next_order_number_{year}"


def next_order_number(today: Optional[date] = None) -> str:
    """
    Allocate the next order number for the year of `today`.

    The counter row is locked for the duration of the transaction.
    """
    today = today or timezone.localdate()
    key = order_counter_key(today.year)
    yy = today.strftime("%y")

    with transaction.atomic():
        cfg, _ = SystemConfig.objects.select_for_update().get_or_create(
            key=key,
            defaults={"value": "1", "description": f"Next order sequence for {today.year}"},
        )
        try:
            seq = int(cfg.value or 1)
        except ValueError:
            seq = 1

        number = f"{yy}{seq:03d}"
        while Order.objects.filter(order_number=number).exists():
            seq += 1
            number = f"{yy}{seq:03d}"

        cfg.value = str(seq + 1)
        cfg.save(update_fields=["value", "updated_at"])

    return number


# ===============================================================
# Worksheets
# ===============================================================
def worksheet_number(order_number: str, revision: int = 0) -> str:
    if revision <= 0:
        return f"DN-{order_number}"
    return f"DN-{order_number}-R{revision}"


def parse_worksheet_number(number: str) -> Tuple[str, int]:
    """
    'DN-25001' -> ('25001', 0); 'DN-25001-R1' -> ('25001', 1)
    """
    m = WORKSHEET_NUMBER_RE.match((number or "").strip())
    if not m:
        raise ValueError(f"Invalid worksheet number: {number}")
    return m.group(1), int(m.group(2) or 0)


def has_revision_suffix(number: str) -> bool:
    m = WORKSHEET_NUMBER_RE.match((number or "").strip())
    return bool(m and m.group(2))


def base_worksheet_number(number: str) -> str:
    order_number, _ = parse_worksheet_number(number)
    return worksheet_number(order_number)


def next_worksheet_revision(order: Order) -> Tuple[str, int]:
    """
    Number and revision for a new worksheet on `order`.
    """
    last = order.worksheets.order_by("-revision").values_list("revision", flat=True).first()
    revision = 0 if last is None else last + 1
    number = worksheet_number(order.order_number, revision)
    while WorkSheet.objects.filter(worksheet_number=number).exists():
        revision += 1
        number = worksheet_number(order.order_number, revision)
    return number, revision


# ===============================================================
# Invoices
# ===============================================================
def invoice_prefix(year: int) -> str:
    return f"{settings.LAB_INVOICE_PREFIX}{year}-"


def next_invoice_number(year: Optional[int] = None) -> str:
    """
    Next RAC-YYYY-NNN number. Callers hold a transaction around numbering + save.
    """
    year = year or timezone.localdate().year
    prefix = invoice_prefix(year)

    highest = 0
    numbers = (
        Invoice.objects.select_for_update()
        .filter(is_draft=False, invoice_number__startswith=prefix)
        .values_list("invoice_number", flat=True)
    )
    for number in numbers:
        tail = number[len(prefix):]
        if tail.isdigit():
            highest = max(highest, int(tail))

    return f"{prefix}{highest + 1:03d}"

# lab_core/billing/services.py
"""
Invoice lifecycle.

DRAFT      editable, no number, may be deleted
FINALIZED  numbered RAC-YYYY-NNN; worksheets DELIVERED, orders INVOICED
SENT / VIEWED / PAID / OVERDUE   payment tracking on finalized invoices
CANCELLED  worksheets and orders go back to QC_APPROVED
"""

from __future__ import annotations

import csv
import io
import logging
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from lab_core.audit import log_action
from lab_core.models import (
    AuditAction,
    BankAccount,
    Dentist,
    Invoice,
    InvoiceLineItem,
    PaymentStatus,
    Product,
    WorkSheet,
    WorkflowTransition,
)
from lab_core.numbering import next_invoice_number
from lab_core.workflows.executor import execute_transition, require_any_role, sync_order_status

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

INVOICE_ROLES = {"ADMIN", "INVOICING"}

# Statuses a finalized invoice may be moved to by payment tracking
PAYMENT_STATUSES = {
    PaymentStatus.FINALIZED,
    PaymentStatus.SENT,
    PaymentStatus.VIEWED,
    PaymentStatus.PAID,
    PaymentStatus.OVERDUE,
}


def _money(value) -> Decimal:
    value = value if isinstance(value, Decimal) else Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# ===============================================================
# Amounts
# ===============================================================
def calculate_invoice_amounts(
    line_totals: Iterable,
    tax_rate=None,
    discount_rate=0,
) -> Dict[str, Decimal]:
    """
    subtotal -> discount (on subtotal) -> tax (on discounted amount) -> total.
    Each amount is rounded half-up to cents.
    """
    tax_rate = settings.LAB_DEFAULT_TAX_RATE if tax_rate is None else tax_rate
    tax_rate = Decimal(str(tax_rate))
    discount_rate = Decimal(str(discount_rate or 0))

    if tax_rate < 0 or discount_rate < 0 or discount_rate > HUNDRED:
        raise ValueError("Tax rate must be >= 0 and discount rate between 0 and 100.")

    subtotal = _money(sum((Decimal(str(t)) for t in line_totals), Decimal("0")))
    discount_amount = _money(subtotal * discount_rate / HUNDRED)
    taxable = subtotal - discount_amount
    tax_amount = _money(taxable * tax_rate / HUNDRED)

    return {
        "subtotal": subtotal,
        "discount_rate": discount_rate,
        "discount_amount": discount_amount,
        "tax_rate": tax_rate,
        "tax_amount": tax_amount,
        "total_amount": _money(taxable + tax_amount),
    }


def recalculate_invoice(invoice: Invoice) -> Invoice:
    amounts = calculate_invoice_amounts(
        invoice.line_items.values_list("total_price", flat=True),
        tax_rate=invoice.tax_rate,
        discount_rate=invoice.discount_rate,
    )
    for field, value in amounts.items():
        setattr(invoice, field, value)
    invoice.save(update_fields=[*amounts.keys(), "updated_at"])
    return invoice


# ===============================================================
# Draft creation
# ===============================================================
def _require_draft(invoice: Invoice) -> None:
    if not invoice.is_draft:
        raise ValidationError({"invoice": "Only draft invoices can be changed."})


def _add_line(invoice: Invoice, *, description: str, quantity, unit_price, position: int,
              product: Optional[Product] = None, worksheet: Optional[WorkSheet] = None) -> InvoiceLineItem:
    quantity = _money(quantity)
    unit_price = _money(unit_price)
    if quantity <= 0:
        raise ValidationError({"quantity": "Quantity must be greater than zero."})
    if unit_price < 0:
        raise ValidationError({"unit_price": "Unit price cannot be negative."})
    if not (description or "").strip():
        raise ValidationError({"description": "Line description is required."})

    return InvoiceLineItem.objects.create(
        invoice=invoice,
        worksheet=worksheet,
        product=product,
        description=description.strip(),
        quantity=quantity,
        unit_price=unit_price,
        total_price=_money(quantity * unit_price),
        position=position,
    )


def create_invoice(
    *,
    worksheets: Iterable[WorkSheet] = (),
    dentist: Optional[Dentist] = None,
    custom_items: Optional[List[Dict[str, Any]]] = None,
    invoice_date: Optional[date] = None,
    tax_rate=None,
    discount_rate=0,
    notes: str = "",
    user=None,
) -> Invoice:
    """
    Create a DRAFT invoice from QC-approved worksheets of one dentist, plus
    optional custom lines ({"description", "quantity", "unit_price"}).
    """
    worksheets = list(worksheets)
    custom_items = list(custom_items or [])

    if not worksheets and not custom_items:
        raise ValidationError({"worksheets": "Select at least one worksheet or add a custom line."})

    not_ready = [ws.worksheet_number for ws in worksheets if ws.status != "QC_APPROVED"]
    if not_ready:
        raise ValidationError(
            {"worksheets": f"Only QC_APPROVED worksheets can be invoiced: {', '.join(not_ready)}"}
        )

    dentist_ids = {ws.dentist_id for ws in worksheets}
    if dentist is not None:
        dentist_ids.add(dentist.pk)
    if len(dentist_ids) != 1:
        raise ValidationError({"dentist": "All worksheets on an invoice must belong to one dentist."})
    dentist = dentist or worksheets[0].dentist

    already = sorted(
        set(
            Invoice.worksheets.through.objects.filter(worksheet__in=worksheets)
            .exclude(invoice__payment_status=PaymentStatus.CANCELLED)
            .values_list("worksheet__worksheet_number", flat=True)
        )
    )
    if already:
        raise ValidationError({"worksheets": f"Already invoiced: {', '.join(already)}"})

    invoice_date = invoice_date or timezone.localdate()
    tax_rate = settings.LAB_DEFAULT_TAX_RATE if tax_rate is None else tax_rate

    with transaction.atomic():
        invoice = Invoice.objects.create(
            dentist=dentist,
            invoice_date=invoice_date,
            due_date=invoice_date + timedelta(days=dentist.payment_terms),
            tax_rate=Decimal(str(tax_rate)),
            discount_rate=Decimal(str(discount_rate or 0)),
            notes=notes or "",
            created_by=user if getattr(user, "is_authenticated", False) else None,
        )
        invoice.worksheets.set(worksheets)

        position = 0
        for ws in worksheets:
            for line in ws.products.select_related("product"):
                position += 1
                _add_line(
                    invoice,
                    description=f"{line.product.name} ({ws.worksheet_number})",
                    quantity=line.quantity,
                    unit_price=line.price_at_selection,
                    position=position,
                    product=line.product,
                    worksheet=ws,
                )

        for item in custom_items:
            position += 1
            _add_line(
                invoice,
                description=item.get("description", ""),
                quantity=item.get("quantity", 1),
                unit_price=item.get("unit_price", 0),
                position=position,
            )

        recalculate_invoice(invoice)

    log_action(
        AuditAction.INVOICE_GENERATE,
        invoice,
        user=user,
        details={
            "dentist": dentist.pk,
            "worksheets": [ws.worksheet_number for ws in worksheets],
            "total": str(invoice.total_amount),
        },
    )
    logger.info("Draft invoice %s created for dentist %s", invoice.pk, dentist.pk)
    return invoice


def add_line_item(invoice: Invoice, *, description: str, quantity=1, unit_price=0,
                  product: Optional[Product] = None, user=None) -> InvoiceLineItem:
    _require_draft(invoice)
    position = (invoice.line_items.order_by("-position").values_list("position", flat=True).first() or 0) + 1
    with transaction.atomic():
        line = _add_line(
            invoice,
            description=description,
            quantity=quantity,
            unit_price=unit_price,
            position=position,
            product=product,
        )
        recalculate_invoice(invoice)
    log_action(AuditAction.UPDATE, invoice, user=user, details={"added_line": line.description})
    return line


def remove_line_item(line: InvoiceLineItem, *, user=None) -> Invoice:
    invoice = line.invoice
    _require_draft(invoice)
    with transaction.atomic():
        description = line.description
        line.delete()
        recalculate_invoice(invoice)
    log_action(AuditAction.UPDATE, invoice, user=user, details={"removed_line": description})
    return invoice


# ===============================================================
# Finalize / cancel
# ===============================================================
def finalize_invoice(invoice: Invoice, *, user) -> Invoice:
    """
    Number the invoice and deliver its worksheets.

    Worksheets go QC_APPROVED -> DELIVERED through the workflow executor (role
    checked there); their orders end up INVOICED.
    """
    require_any_role(user, INVOICE_ROLES, "You do not have the required role to finalize invoices.")

    with transaction.atomic():
        locked = Invoice.objects.select_for_update().get(pk=invoice.pk)
        if not locked.is_draft:
            raise ValidationError({"invoice": "Invoice is already finalized."})
        if not locked.line_items.exists():
            raise ValidationError({"invoice": "Cannot finalize an invoice without line items."})

        worksheets = list(WorkSheet.objects.select_for_update().filter(invoices=locked).order_by("id"))
        not_ready = [ws.worksheet_number for ws in worksheets if ws.status != "QC_APPROVED"]
        if not_ready:
            raise ValidationError(
                {"worksheets": f"Worksheets are no longer QC_APPROVED: {', '.join(not_ready)}"}
            )

        number = next_invoice_number(locked.invoice_date.year)
        locked.invoice_number = number
        locked.payment_reference = number
        locked.is_draft = False
        locked.payment_status = PaymentStatus.FINALIZED
        locked.finalized_at = timezone.now()
        locked.save(
            update_fields=[
                "invoice_number",
                "payment_reference",
                "is_draft",
                "payment_status",
                "finalized_at",
                "updated_at",
            ]
        )

        for ws in worksheets:
            execute_transition(
                worksheet=ws,
                new_status="DELIVERED",
                user=user,
                notes=f"Invoice {number}",
            )
            sync_order_status(order_id=ws.order_id, target="INVOICED", user=user)

    log_action(
        AuditAction.INVOICE_GENERATE,
        locked,
        user=user,
        details={"invoice_number": number, "total": str(locked.total_amount), "finalized": True},
    )
    logger.info("Invoice %s finalized by %s", number, user)
    invoice.refresh_from_db()
    return invoice


def _revert_delivered(ws: WorkSheet, *, user, reason: str) -> None:
    # DELIVERED is terminal in the workflow; cancellation is the one path back.
    if ws.status != "DELIVERED":
        return
    WorkSheet.objects.filter(pk=ws.pk).update(status="QC_APPROVED", completed_at=None, updated_at=timezone.now())
    WorkflowTransition.objects.create(
        kind="worksheet",
        object_id=ws.pk,
        from_status="DELIVERED",
        to_status="QC_APPROVED",
        notes=reason,
        performed_by=user if getattr(user, "is_authenticated", False) else None,
    )


def cancel_invoice(invoice: Invoice, *, user, reason: str = "") -> Invoice:
    require_any_role(user, INVOICE_ROLES, "You do not have the required role to cancel invoices.")

    with transaction.atomic():
        locked = Invoice.objects.select_for_update().get(pk=invoice.pk)
        if locked.payment_status == PaymentStatus.CANCELLED:
            raise ValidationError({"invoice": "Invoice is already cancelled."})

        label = locked.invoice_number or f"draft #{locked.pk}"
        note = f"Invoice {label} cancelled" + (f": {reason.strip()}" if (reason or "").strip() else "")

        for ws in locked.worksheets.select_related("order"):
            _revert_delivered(ws, user=user, reason=note)
            if ws.order.status in ("INVOICED", "DELIVERED"):
                sync_order_status(order_id=ws.order_id, target="QC_APPROVED", user=user)

        locked.payment_status = PaymentStatus.CANCELLED
        if reason:
            locked.notes = "\n".join(p for p in [locked.notes, f"Cancelled: {reason.strip()}"] if p)
        locked.save(update_fields=["payment_status", "notes", "updated_at"])

    log_action(AuditAction.UPDATE, locked, user=user, details={"cancelled": True, "reason": reason or ""})
    logger.warning("Invoice %s cancelled by %s", label, user)
    invoice.refresh_from_db()
    return invoice


# ===============================================================
# Payments
# ===============================================================
def update_payment(
    invoice: Invoice,
    *,
    status: str,
    user=None,
    payment_method: str = "",
    paid_at=None,
) -> Invoice:
    status = (status or "").strip().upper()
    if status not in PaymentStatus.values:
        raise ValidationError({"payment_status": f"Unknown payment status: {status}"})

    if invoice.payment_status == PaymentStatus.CANCELLED:
        raise ValidationError({"payment_status": "Cancelled invoices cannot change payment status."})
    if status == PaymentStatus.CANCELLED:
        raise ValidationError({"payment_status": "Use invoice cancellation instead."})
    if not invoice.is_draft and status == PaymentStatus.DRAFT:
        raise ValidationError({"payment_status": "A finalized invoice cannot be set back to DRAFT."})
    if invoice.is_draft and status in PAYMENT_STATUSES:
        raise ValidationError({"payment_status": "Finalize the invoice before recording payment."})

    previous = invoice.payment_status
    invoice.payment_status = status
    if payment_method:
        invoice.payment_method = payment_method
    if status == PaymentStatus.PAID:
        invoice.paid_at = paid_at or timezone.now()
    invoice.save(update_fields=["payment_status", "payment_method", "paid_at", "updated_at"])

    log_action(
        AuditAction.UPDATE,
        invoice,
        user=user,
        details={"payment_status": {"from": previous, "to": status}},
    )
    return invoice


def mark_as_sent(invoice: Invoice, *, user=None) -> Invoice:
    return update_payment(invoice, status=PaymentStatus.SENT, user=user)


def mark_overdue_invoices(today: Optional[date] = None) -> int:
    """
    Finalized, unpaid invoices past their due date become OVERDUE.
    """
    today = today or timezone.localdate()
    return Invoice.objects.filter(
        is_draft=False,
        due_date__lt=today,
        payment_status__in=[PaymentStatus.FINALIZED, PaymentStatus.SENT, PaymentStatus.VIEWED],
    ).update(payment_status=PaymentStatus.OVERDUE, updated_at=timezone.now())


# ===============================================================
# Deletion
# ===============================================================
def delete_invoice(invoice: Invoice, *, user=None) -> None:
    """
    Drafts and cancelled invoices may be deleted; finalized ones are kept.
    """
    if not invoice.is_draft and invoice.payment_status != PaymentStatus.CANCELLED:
        raise ValidationError({"invoice": "Only draft or cancelled invoices can be deleted."})

    label = invoice.invoice_number or f"draft #{invoice.pk}"
    pk = invoice.pk
    with transaction.atomic():
        invoice.line_items.all().delete()
        invoice.worksheets.clear()
        invoice.delete()

    log_action(AuditAction.DELETE, entity_type="Invoice", entity_id=pk, user=user, details={"invoice": label})
    logger.info("Invoice %s deleted by %s", label, user)


# ===============================================================
# Bank accounts
# ===============================================================
def set_primary_bank_account(account: BankAccount, *, user=None) -> BankAccount:
    account.is_primary = True
    account.is_active = True
    account.save()
    log_action(AuditAction.UPDATE, account, user=user, details={"is_primary": True})
    return account


def payment_instructions(invoice: Invoice) -> Dict[str, Any]:
    account = BankAccount.objects.filter(is_primary=True, is_active=True).first()
    return {
        "reference": invoice.payment_reference or invoice.invoice_number or "",
        "amount": str(invoice.total_amount),
        "due_date": invoice.due_date.isoformat() if invoice.due_date else None,
        "bank_name": account.bank_name if account else "",
        "iban": account.iban if account else "",
        "swift_bic": account.swift_bic if account else "",
    }


# ===============================================================
# Price list export
# ===============================================================
PRICE_LIST_HEADER = ["code", "name", "category", "unit", "price", "active"]


def price_list_csv(products: Optional[Iterable[Product]] = None) -> str:
    if products is None:
        products = Product.objects.order_by("category", "code")

    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(PRICE_LIST_HEADER)
    for p in products:
        writer.writerow(
            [
                p.code,
                p.name,
                p.category,
                p.unit,
                f"{p.current_price:.2f}",
                "yes" if p.is_active else "no",
            ]
        )
    return buf.getvalue()

# lab_core/tests/test_billing.py

import csv
import io
from datetime import date, timedelta
from decimal import Decimal

import pytest
from rest_framework.exceptions import ValidationError

from lab_core.billing.services import (
    calculate_invoice_amounts,
    cancel_invoice,
    create_invoice,
    finalize_invoice,
    mark_overdue_invoices,
    update_payment,
)
from lab_core.models import BankAccount, Invoice, WorkflowTransition, WorksheetProduct
from lab_core.workflows.executor import void_worksheet


def _approved_worksheet(worksheet_factory, product, *, order=None, quantity=2):
    ws = worksheet_factory(status="QC_APPROVED", order=order)
    WorksheetProduct.objects.create(
        worksheet=ws, product=product, quantity=quantity, price_at_selection=product.current_price
    )
    return ws


# ===============================================================
# Amounts
# ===============================================================
def test_discount_applies_before_tax():
    amounts = calculate_invoice_amounts(["240.00", "60.00"], tax_rate="22", discount_rate="10")
    assert amounts["subtotal"] == Decimal("300.00")
    assert amounts["discount_amount"] == Decimal("30.00")
    assert amounts["tax_amount"] == Decimal("59.40")
    assert amounts["total_amount"] == Decimal("329.40")


def test_amounts_round_half_up():
    amounts = calculate_invoice_amounts([Decimal("0.05")], tax_rate=Decimal("50"))
    assert amounts["tax_amount"] == Decimal("0.03")
    assert amounts["total_amount"] == Decimal("0.08")


def test_default_tax_rate_and_empty_lines(settings):
    settings.LAB_DEFAULT_TAX_RATE = Decimal("9.50")
    amounts = calculate_invoice_amounts([])
    assert amounts["tax_rate"] == Decimal("9.50")
    assert amounts["total_amount"] == Decimal("0.00")


@pytest.mark.parametrize("tax,discount", [("-1", "0"), ("22", "-5"), ("22", "101")])
def test_rates_out_of_range(tax, discount):
    with pytest.raises(ValueError):
        calculate_invoice_amounts(["10"], tax_rate=tax, discount_rate=discount)


# ===============================================================
# Draft creation
# ===============================================================
@pytest.mark.django_db
def test_create_invoice_from_worksheets(users, worksheet_factory, product):
    ws = _approved_worksheet(worksheet_factory, product)
    invoice = create_invoice(
        worksheets=[ws],
        custom_items=[{"description": "Express surcharge", "quantity": 1, "unit_price": "60.00"}],
        invoice_date=date(2025, 5, 10),
        tax_rate="22",
        user=users["invoicing"],
    )

    assert invoice.is_draft
    assert invoice.payment_status == "DRAFT"
    assert invoice.invoice_number is None
    assert invoice.due_date == date(2025, 6, 9)
    assert invoice.subtotal == Decimal("300.00")
    assert invoice.total_amount == Decimal("366.00")

    descriptions = list(invoice.line_items.order_by("position").values_list("description", flat=True))
    assert descriptions == [f"{product.name} ({ws.worksheet_number})", "Express surcharge"]


@pytest.mark.django_db
def test_create_invoice_rules(users, worksheet_factory, product, dentist_factory, order_factory):
    with pytest.raises(ValidationError):
        create_invoice(worksheets=[])

    draft = worksheet_factory()
    with pytest.raises(ValidationError) as exc:
        create_invoice(worksheets=[draft])
    assert "QC_APPROVED" in str(exc.value.detail)

    ws_a = _approved_worksheet(worksheet_factory, product)
    other_order = order_factory(dentist=dentist_factory())
    ws_b = _approved_worksheet(worksheet_factory, product, order=other_order)
    with pytest.raises(ValidationError) as exc:
        create_invoice(worksheets=[ws_a, ws_b])
    assert "dentist" in exc.value.detail

    create_invoice(worksheets=[ws_a])
    with pytest.raises(ValidationError) as exc:
        create_invoice(worksheets=[ws_a])
    assert "Already invoiced" in str(exc.value.detail)


@pytest.mark.django_db
def test_cancelled_invoice_frees_worksheets(users, worksheet_factory, product):
    ws = _approved_worksheet(worksheet_factory, product)
    first = create_invoice(worksheets=[ws])
    cancel_invoice(first, user=users["invoicing"], reason="Wrong discount")

    second = create_invoice(worksheets=[ws])
    assert second.pk != first.pk


# ===============================================================
# Finalize / cancel
# ===============================================================
@pytest.mark.django_db
def test_finalize_numbers_and_delivers(users, worksheet_factory, product):
    ws = _approved_worksheet(worksheet_factory, product)
    invoice = create_invoice(worksheets=[ws], invoice_date=date(2025, 3, 3))

    invoice = finalize_invoice(invoice, user=users["invoicing"])

    assert invoice.invoice_number == "RAC-2025-001"
    assert invoice.payment_reference == "RAC-2025-001"
    assert invoice.payment_status == "FINALIZED"
    assert invoice.is_draft is False
    assert invoice.finalized_at is not None

    ws.refresh_from_db()
    assert ws.status == "DELIVERED"
    assert ws.order.status == "INVOICED"

    with pytest.raises(ValidationError):
        finalize_invoice(invoice, user=users["invoicing"])


@pytest.mark.django_db
def test_cancel_finalized_reverts_delivery(users, worksheet_factory, product):
    ws = _approved_worksheet(worksheet_factory, product)
    invoice = finalize_invoice(create_invoice(worksheets=[ws]), user=users["admin"])

    invoice = cancel_invoice(invoice, user=users["invoicing"], reason="Duplicate")

    assert invoice.payment_status == "CANCELLED"
    assert invoice.notes.endswith("Cancelled: Duplicate")

    ws.refresh_from_db()
    assert ws.status == "QC_APPROVED"
    assert ws.order.status == "QC_APPROVED"
    assert WorkflowTransition.objects.filter(
        kind="worksheet", object_id=ws.pk, from_status="DELIVERED", to_status="QC_APPROVED"
    ).exists()

    with pytest.raises(ValidationError):
        cancel_invoice(invoice, user=users["invoicing"])


@pytest.mark.django_db
def test_finalize_refuses_worksheet_voided_after_draft(users, worksheet_factory, product):
    ws = _approved_worksheet(worksheet_factory, product)
    invoice = create_invoice(worksheets=[ws])
    void_worksheet(worksheet=ws, user=users["technician"], reason="Shade mismatch, remade")

    with pytest.raises(ValidationError) as exc:
        finalize_invoice(invoice, user=users["invoicing"])
    assert ws.worksheet_number in str(exc.value.detail["worksheets"])

    invoice.refresh_from_db()
    assert invoice.is_draft
    assert invoice.invoice_number is None
    ws.refresh_from_db()
    assert ws.status == "VOIDED"
    assert ws.order.status != "INVOICED"
    assert not Invoice.objects.exclude(invoice_number=None).exists()


# ===============================================================
# Payments
# ===============================================================
@pytest.mark.django_db
def test_payment_status_rules(users, worksheet_factory, product):
    ws = _approved_worksheet(worksheet_factory, product)
    invoice = create_invoice(worksheets=[ws])

    with pytest.raises(ValidationError):
        update_payment(invoice, status="PAID")

    invoice = finalize_invoice(invoice, user=users["invoicing"])
    for bad in ("DRAFT", "CANCELLED", "LOST"):
        with pytest.raises(ValidationError):
            update_payment(invoice, status=bad)

    invoice = update_payment(invoice, status="paid", payment_method="bank transfer")
    assert invoice.payment_status == "PAID"
    assert invoice.payment_method == "bank transfer"
    assert invoice.paid_at is not None


@pytest.mark.django_db
def test_overdue_marking(dentist):
    today = date(2025, 7, 1)
    due = Invoice.objects.create(
        dentist=dentist, due_date=today - timedelta(days=1), is_draft=False, payment_status="SENT"
    )
    paid = Invoice.objects.create(
        dentist=dentist, due_date=today - timedelta(days=1), is_draft=False, payment_status="PAID"
    )
    current = Invoice.objects.create(dentist=dentist, due_date=today, is_draft=False, payment_status="FINALIZED")
    draft = Invoice.objects.create(dentist=dentist, due_date=today - timedelta(days=9))

    assert mark_overdue_invoices(today) == 1

    statuses = dict(Invoice.objects.values_list("pk", "payment_status"))
    assert statuses[due.pk] == "OVERDUE"
    assert statuses[paid.pk] == "PAID"
    assert statuses[current.pk] == "FINALIZED"
    assert statuses[draft.pk] == "DRAFT"


# ===============================================================
# API
# ===============================================================
@pytest.mark.django_db
def test_invoice_api_lifecycle(login, users, worksheet_factory, product):
    ws = _approved_worksheet(worksheet_factory, product, quantity=1)
    client = login("billing")

    resp = client.post("/lab/invoices/", {"worksheets": [ws.pk], "tax_rate": "0"}, format="json")
    assert resp.status_code == 201, resp.content
    invoice_id = resp.data["id"]
    assert Decimal(resp.data["total_amount"]) == Decimal("120.00")

    resp = client.post(
        f"/lab/invoices/{invoice_id}/lines/",
        {"description": "Model scan", "quantity": "1", "unit_price": "15.00"},
        format="json",
    )
    assert resp.status_code == 201, resp.content
    line_id = resp.data["id"]

    resp = client.get(f"/lab/invoices/{invoice_id}/")
    assert Decimal(resp.data["total_amount"]) == Decimal("135.00")

    resp = client.delete(f"/lab/invoices/{invoice_id}/lines/{line_id}/")
    assert resp.status_code == 200
    assert Decimal(resp.data["total_amount"]) == Decimal("120.00")

    resp = client.post(f"/lab/invoices/{invoice_id}/finalize/", {}, format="json")
    assert resp.status_code == 200, resp.content
    assert resp.data["invoice_number"].startswith("RAC-")

    resp = client.post(f"/lab/invoices/{invoice_id}/send/", {}, format="json")
    assert resp.data["payment_status"] == "SENT"

    resp = client.post(f"/lab/invoices/{invoice_id}/payment/", {"payment_status": "PAID"}, format="json")
    assert resp.status_code == 200
    assert resp.data["payment_status"] == "PAID"

    # Finalized invoices are kept
    resp = client.delete(f"/lab/invoices/{invoice_id}/")
    assert resp.status_code == 400


@pytest.mark.django_db
def test_invoice_line_with_malformed_product_is_400(login, users, worksheet_factory, product):
    invoice = create_invoice(worksheets=[_approved_worksheet(worksheet_factory, product)])
    client = login("billing")

    resp = client.post(
        f"/lab/invoices/{invoice.pk}/lines/",
        {"description": "Scan", "unit_price": "10.00", "product": "scan"},
        format="json",
    )
    assert resp.status_code == 400
    assert "product" in resp.data

    resp = client.post(
        f"/lab/invoices/{invoice.pk}/lines/",
        {"description": "Extra crown", "unit_price": "10.00", "product": product.pk},
        format="json",
    )
    assert resp.status_code == 201, resp.content
    assert resp.data["product"] == product.pk


@pytest.mark.django_db
def test_invoice_writes_need_billing_role(login, users, worksheet_factory, product):
    ws = _approved_worksheet(worksheet_factory, product)
    resp = login("labtech").post("/lab/invoices/", {"worksheets": [ws.pk]}, format="json")
    assert resp.status_code == 403


@pytest.mark.django_db
def test_draft_invoice_can_be_deleted(login, users, worksheet_factory, product):
    ws = _approved_worksheet(worksheet_factory, product)
    invoice = create_invoice(worksheets=[ws])

    resp = login("billing").delete(f"/lab/invoices/{invoice.pk}/")
    assert resp.status_code == 204
    assert not Invoice.objects.filter(pk=invoice.pk).exists()


@pytest.mark.django_db
def test_payment_instructions_use_primary_account(login, users, worksheet_factory, product):
    BankAccount.objects.create(
        bank_name="NLB",
        iban="SI56 0201 0001 2345 678",
        swift_bic="LJBASI2X",
        account_holder="Zobotehnika",
        is_primary=True,
    )
    ws = _approved_worksheet(worksheet_factory, product)
    invoice = finalize_invoice(create_invoice(worksheets=[ws]), user=users["invoicing"])

    resp = login("billing").get(f"/lab/invoices/{invoice.pk}/payment-instructions/")
    assert resp.status_code == 200
    assert resp.data["reference"] == invoice.invoice_number
    assert resp.data["bank_name"] == "NLB"
    assert resp.data["amount"] == str(invoice.total_amount)


@pytest.mark.django_db
def test_price_list_export(login, users, product_factory):
    product_factory(code="CR-01", name="Zirconia crown", current_price=Decimal("120"))
    product_factory(code="BR-01", name="Bridge unit", category="BRIDGE", current_price=Decimal("95.5"))

    resp = login("labtech").get("/lab/products/export/")
    assert resp.status_code == 200
    assert resp["Content-Type"].startswith("text/csv")

    rows = list(csv.reader(io.StringIO(resp.content.decode("utf-8"))))
    assert rows[0] == ["code", "name", "category", "unit", "price", "active"]
    assert ["BR-01", "Bridge unit", "BRIDGE"] == rows[1][:3]
    assert rows[1][4] == "95.50"

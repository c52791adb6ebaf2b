# lab_core/tests/test_worksheet_edits.py

from decimal import Decimal

import pytest

from lab_core.models import AuditLog, LotConsumption, MaterialLot, WorkSheet, WorksheetMaterial
from lab_core.workflows.executor import execute_transition, rollback_worksheet


def _ws_url(ws, suffix=""):
    return f"/lab/worksheets/{ws.pk}/{suffix}"


# ===============================================================
# Header edits
# ===============================================================
@pytest.mark.django_db
def test_draft_edit_needs_no_reason(login, users, worksheet):
    resp = login("labtech").patch(_ws_url(worksheet), {"technical_notes": "Layered"}, format="json")
    assert resp.status_code == 200, resp.content
    assert resp.data["technical_notes"] == "Layered"


@pytest.mark.django_db
def test_edit_after_draft_requires_reason(login, users, worksheet_factory):
    ws = worksheet_factory(status="IN_PRODUCTION")
    client = login("labtech")

    resp = client.patch(_ws_url(ws), {"technical_notes": "x", "edit_reason": "short"}, format="json")
    assert resp.status_code == 400
    assert "edit_reason" in resp.data

    resp = client.patch(
        _ws_url(ws),
        {"technical_notes": "Margin adjusted", "edit_reason": "Dentist phoned about margin"},
        format="json",
    )
    assert resp.status_code == 200
    ws.refresh_from_db()
    assert ws.technical_notes == "Margin adjusted"

    entry = AuditLog.objects.filter(action="UPDATE", entity_type="WorkSheet", entity_id=str(ws.pk)).last()
    assert entry.details["reason"] == "Dentist phoned about margin"


@pytest.mark.django_db
def test_order_cannot_have_two_active_worksheets(login, users, worksheet):
    resp = login("labtech").post("/lab/worksheets/", {"order": worksheet.order_id}, format="json")
    assert resp.status_code == 400
    assert "order" in resp.data


@pytest.mark.django_db
def test_create_worksheet_via_api(login, users, order):
    resp = login("labtech").post(
        "/lab/worksheets/",
        {"order": order.pk, "device_description": "Bridge 14-16"},
        format="json",
    )
    assert resp.status_code == 201, resp.content
    assert resp.data["worksheet_number"] == f"DN-{order.order_number}"
    assert resp.data["status"] == "DRAFT"
    assert resp.data["patient_name"] == order.patient_name


# ===============================================================
# Teeth
# ===============================================================
@pytest.mark.django_db
def test_teeth_replaced_on_put(login, users, worksheet):
    client = login("labtech")
    resp = client.put(
        _ws_url(worksheet, "teeth/"),
        {"teeth": [{"tooth_number": "11", "work_type": "crown", "shade": "A2"}]},
        format="json",
    )
    assert resp.status_code == 200, resp.content
    assert resp.data[0]["name"] == "Upper Right Central Incisor"

    resp = client.put(
        _ws_url(worksheet, "teeth/"),
        {"teeth": [{"tooth_number": "21", "work_type": "veneer"}, {"tooth_number": "22", "work_type": "veneer"}]},
        format="json",
    )
    assert resp.status_code == 200
    assert sorted(worksheet.teeth.values_list("tooth_number", flat=True)) == ["21", "22"]


@pytest.mark.django_db
def test_invalid_teeth_rejected(login, users, worksheet):
    resp = login("labtech").put(
        _ws_url(worksheet, "teeth/"),
        {"teeth": [{"tooth_number": "19", "work_type": "crown"}]},
        format="json",
    )
    assert resp.status_code == 400
    assert "teeth" in resp.data
    assert worksheet.teeth.count() == 0


@pytest.mark.django_db
def test_teeth_locked_outside_draft(login, users, worksheet_factory):
    ws = worksheet_factory(status="IN_PRODUCTION")
    resp = login("labtech").put(
        _ws_url(ws, "teeth/"),
        {"teeth": [{"tooth_number": "11", "work_type": "crown"}]},
        format="json",
    )
    assert resp.status_code == 400
    assert "DRAFT" in str(resp.data["teeth"])


# ===============================================================
# Products and materials
# ===============================================================
@pytest.mark.django_db
def test_product_price_is_snapshotted(login, users, worksheet, product):
    client = login("labtech")
    resp = client.post(_ws_url(worksheet, "products/"), {"product": product.pk, "quantity": 2}, format="json")
    assert resp.status_code == 201, resp.content
    assert Decimal(resp.data["price_at_selection"]) == Decimal("120.00")
    assert Decimal(resp.data["line_total"]) == Decimal("240.00")

    line_id = resp.data["id"]
    resp = client.delete(_ws_url(worksheet, f"products/{line_id}/"))
    assert resp.status_code == 204
    assert worksheet.products.count() == 0


@pytest.mark.django_db
def test_inactive_product_refused(login, users, worksheet, product_factory):
    retired = product_factory(is_active=False)
    resp = login("labtech").post(_ws_url(worksheet, "products/"), {"product": retired.pk}, format="json")
    assert resp.status_code == 400
    assert "products" in resp.data


@pytest.mark.django_db
def test_malformed_line_ids_are_400(login, users, worksheet, material):
    client = login("labtech")

    resp = client.post(_ws_url(worksheet, "products/"), {"product": "crown"}, format="json")
    assert resp.status_code == 400
    assert "product" in resp.data

    resp = client.post(_ws_url(worksheet, "products/"), {"product": 999999, "quantity": "two"}, format="json")
    assert resp.status_code == 400
    assert set(resp.data) == {"product", "quantity"}

    resp = client.post(
        _ws_url(worksheet, "materials/"),
        {"material": material.pk, "material_lot": "LOT-1", "quantity_planned": "1"},
        format="json",
    )
    assert resp.status_code == 400
    assert "material_lot" in resp.data

    resp = client.post(_ws_url(worksheet, "materials/"), {"material": "zirconia", "quantity_planned": "x"}, format="json")
    assert resp.status_code == 400
    assert set(resp.data) == {"material", "quantity_planned"}
    assert worksheet.materials.count() == 0


@pytest.mark.django_db
def test_material_planning(login, users, worksheet, material, material_factory, lot_factory):
    client = login("labtech")

    resp = client.post(
        _ws_url(worksheet, "materials/"),
        {"material": material.pk, "quantity_planned": "2.5"},
        format="json",
    )
    assert resp.status_code == 201, resp.content
    assert resp.data["consumed_at"] is None

    resp = client.post(
        _ws_url(worksheet, "materials/"),
        {"material": material.pk, "quantity_planned": "0"},
        format="json",
    )
    assert resp.status_code == 400

    foreign_lot = lot_factory(material=material_factory())
    resp = client.post(
        _ws_url(worksheet, "materials/"),
        {"material": material.pk, "material_lot": foreign_lot.pk, "quantity_planned": "1"},
        format="json",
    )
    assert resp.status_code == 400
    assert "does not belong" in str(resp.data["materials"])


@pytest.mark.django_db
def test_material_with_consumed_stock_cannot_be_removed(login, users, worksheet, material, lot_factory):
    lot = lot_factory(material=material)
    line = WorksheetMaterial.objects.create(worksheet=worksheet, material=material, quantity_planned=Decimal("1"))
    LotConsumption.objects.create(worksheet_material=line, lot=lot, quantity=Decimal("1"))

    resp = login("labtech").delete(_ws_url(worksheet, f"materials/{line.pk}/"))
    assert resp.status_code == 400
    assert WorksheetMaterial.objects.filter(pk=line.pk).exists()


@pytest.mark.django_db
def test_material_removable_after_rollback(login, users, worksheet, material, lot_factory):
    lot = lot_factory(material=material, quantity="10")
    line = WorksheetMaterial.objects.create(worksheet=worksheet, material=material, quantity_planned=Decimal("3"))
    execute_transition(worksheet=worksheet, new_status="IN_PRODUCTION", user=users["technician"])
    assert MaterialLot.objects.get(pk=lot.pk).quantity_available == Decimal("7")

    rollback_worksheet(worksheet=worksheet, user=users["technician"], reason="Wrong material planned")
    worksheet.refresh_from_db()
    assert worksheet.status == "DRAFT"

    resp = login("labtech").delete(_ws_url(worksheet, f"materials/{line.pk}/"))
    assert resp.status_code == 204, resp.content
    assert not WorksheetMaterial.objects.filter(pk=line.pk).exists()
    assert not LotConsumption.objects.filter(lot=lot).exists()
    assert MaterialLot.objects.get(pk=lot.pk).quantity_available == Decimal("10")

    entry = AuditLog.objects.filter(entity_type="WorkSheet", details__removed_material=material.code).get()
    [reverted] = entry.details["reverted_lots"]
    assert reverted["lot_number"] == lot.lot_number
    assert Decimal(reverted["quantity"]) == Decimal("3")


@pytest.mark.django_db
def test_only_draft_worksheets_can_be_deleted(login, users, worksheet_factory):
    client = login("labtech")
    ws = worksheet_factory(status="QC_PENDING")
    resp = client.delete(_ws_url(ws))
    assert resp.status_code == 400

    WorkSheet.objects.filter(pk=ws.pk).update(status="CANCELLED")
    draft = worksheet_factory(order=ws.order)
    resp = client.delete(_ws_url(draft))
    assert resp.status_code == 204

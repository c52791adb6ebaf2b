# lab_core/tests/test_transition_api.py

from decimal import Decimal

import pytest

from lab_core.models import AuditLog, Document, MaterialLot, WorkflowTransition, WorksheetMaterial


def _url(ws, action="transition"):
    return f"/lab/workflows/worksheets/{ws.pk}/{action}/"


@pytest.mark.django_db
def test_full_happy_path_moves_order_along(login, users, worksheet, material, lot_factory):
    lot = lot_factory(material=material, quantity="10")
    WorksheetMaterial.objects.create(worksheet=worksheet, material=material, quantity_planned=Decimal("4"))

    client = login("labtech")
    resp = client.post(_url(worksheet), {"to_status": "IN_PRODUCTION"}, format="json")
    assert resp.status_code == 200, resp.content
    assert resp.data["previous"] == "DRAFT"
    assert resp.data["current"] == "IN_PRODUCTION"
    assert resp.data["order_status"] == "IN_PRODUCTION"

    lot.refresh_from_db()
    assert lot.quantity_available == Decimal("6")

    resp = client.post(_url(worksheet), {"to_status": "QC_PENDING"}, format="json")
    assert resp.status_code == 200
    assert resp.data["order_status"] == "QC_PENDING"

    client.logout()
    client = login("inspector")
    resp = client.post(_url(worksheet), {"status": "QC_APPROVED"}, format="json")
    assert resp.status_code == 200
    assert resp.data["order_status"] == "QC_APPROVED"

    rows = WorkflowTransition.objects.filter(kind="worksheet", object_id=worksheet.pk)
    assert list(rows.values_list("to_status", flat=True)) == ["IN_PRODUCTION", "QC_PENDING", "QC_APPROVED"]
    assert rows.last().performed_by == users["qc"]


@pytest.mark.django_db
def test_transition_requires_target(login, users, worksheet):
    resp = login("labtech").post(_url(worksheet), {}, format="json")
    assert resp.status_code == 400
    assert "to_status" in resp.data


@pytest.mark.django_db
def test_unauthenticated_gets_401_or_403(api_client, worksheet):
    resp = api_client.post(_url(worksheet), {"to_status": "IN_PRODUCTION"}, format="json")
    assert resp.status_code in (401, 403)


@pytest.mark.django_db
def test_illegal_edge_is_400(login, users, worksheet):
    resp = login("admin").post(_url(worksheet), {"to_status": "QC_APPROVED"}, format="json")
    assert resp.status_code == 400
    assert "Invalid worksheet transition" in str(resp.data["status"])


@pytest.mark.django_db
def test_wrong_role_is_403(login, users, worksheet):
    resp = login("inspector").post(_url(worksheet), {"to_status": "IN_PRODUCTION"}, format="json")
    assert resp.status_code == 403
    worksheet.refresh_from_db()
    assert worksheet.status == "DRAFT"


@pytest.mark.django_db
def test_user_without_roles_is_403(login, user_norole, worksheet):
    resp = login("visitor").post(_url(worksheet), {"to_status": "IN_PRODUCTION"}, format="json")
    assert resp.status_code == 403


@pytest.mark.django_db
def test_rejection_requires_notes_and_stores_them(login, users, worksheet_factory):
    ws = worksheet_factory(status="QC_PENDING")
    client = login("inspector")

    resp = client.post(_url(ws), {"to_status": "QC_REJECTED"}, format="json")
    assert resp.status_code == 400
    assert "notes" in resp.data

    resp = client.post(_url(ws), {"to_status": "QC_REJECTED", "notes": "Open margin on 21"}, format="json")
    assert resp.status_code == 200
    ws.refresh_from_db()
    assert ws.qc_notes == "Open margin on 21"
    assert ws.order.status == "IN_PRODUCTION"


@pytest.mark.django_db
def test_insufficient_stock_blocks_production(login, users, worksheet, material, lot_factory):
    lot_factory(material=material, quantity="2")
    WorksheetMaterial.objects.create(worksheet=worksheet, material=material, quantity_planned=Decimal("5"))

    resp = login("labtech").post(_url(worksheet), {"to_status": "IN_PRODUCTION"}, format="json")
    assert resp.status_code == 400
    assert "Insufficient stock" in str(resp.data["materials"])

    worksheet.refresh_from_db()
    assert worksheet.status == "DRAFT"
    assert not WorkflowTransition.objects.filter(kind="worksheet", object_id=worksheet.pk).exists()
    assert MaterialLot.objects.get(material=material).quantity_available == Decimal("2")


@pytest.mark.django_db
def test_noop_transition_returns_current_state(login, users, worksheet):
    resp = login("labtech").post(_url(worksheet), {"to_status": "DRAFT"}, format="json")
    assert resp.status_code == 200
    assert resp.data["current"] == "DRAFT"
    assert not WorkflowTransition.objects.filter(kind="worksheet", object_id=worksheet.pk).exists()


@pytest.mark.django_db
def test_transition_is_audited(login, users, worksheet):
    login("labtech").post(_url(worksheet), {"to_status": "IN_PRODUCTION"}, format="json")
    entry = AuditLog.objects.filter(action="STATUS_CHANGE", entity_type="worksheet").first()
    assert entry is not None
    assert entry.entity_id == str(worksheet.pk)
    assert entry.details["to"] == "IN_PRODUCTION"
    assert entry.user == users["technician"]


@pytest.mark.django_db
def test_allowed_endpoint_is_role_aware(login, users, worksheet_factory):
    ws = worksheet_factory(status="QC_APPROVED")

    resp = login("billing").get(_url(ws, "allowed"))
    assert resp.status_code == 200
    assert resp.data["current"] == "QC_APPROVED"
    assert resp.data["allowed"] == ["DELIVERED"]
    assert resp.data["roles"] == ["INVOICING"]
    assert resp.data["terminal"] is False


@pytest.mark.django_db
def test_definition_endpoint(login, users):
    resp = login("labtech").get("/lab/workflows/worksheets/definition/")
    assert resp.status_code == 200
    assert resp.data["transitions"]["DRAFT"] == ["CANCELLED", "IN_PRODUCTION"]


@pytest.mark.django_db
def test_qc_approval_queues_annex_after_commit(
    login, users, lab_config, worksheet_factory, django_capture_on_commit_callbacks
):
    ws = worksheet_factory(status="QC_PENDING")
    client = login("inspector")

    with django_capture_on_commit_callbacks(execute=True):
        resp = client.post(_url(ws), {"to_status": "QC_APPROVED"}, format="json")

    assert resp.status_code == 200
    doc = Document.objects.get(worksheet=ws)
    assert doc.document_number == f"MDR-{ws.worksheet_number}"
    assert doc.type == "ANNEX_XIII"


@pytest.mark.django_db
def test_timeline_lists_worksheet_and_order_rows(login, users, worksheet):
    client = login("labtech")
    client.post(_url(worksheet), {"to_status": "IN_PRODUCTION"}, format="json")

    resp = client.get(_url(worksheet, "timeline"))
    assert resp.status_code == 200
    assert [r["to_status"] for r in resp.data["timeline"]] == ["IN_PRODUCTION"]
    assert [r["to_status"] for r in resp.data["order_timeline"]] == ["IN_PRODUCTION"]
    assert resp.data["timeline"][0]["performed_by"]["username"] == "labtech"


@pytest.mark.django_db
def test_recalled_pinned_lot_blocks_production_with_400(login, users, worksheet, material, lot_factory):
    lot = lot_factory(material=material, quantity="10")
    WorksheetMaterial.objects.create(
        worksheet=worksheet, material=material, material_lot=lot, quantity_planned=Decimal("2")
    )
    lot.status = "RECALLED"
    lot.save(update_fields=["status"])

    resp = login("labtech").post(_url(worksheet), {"to_status": "IN_PRODUCTION"}, format="json")
    assert resp.status_code == 400
    assert "RECALLED" in str(resp.data["materials"])

    worksheet.refresh_from_db()
    assert worksheet.status == "DRAFT"
    assert MaterialLot.objects.get(pk=lot.pk).quantity_available == Decimal("10")


@pytest.mark.django_db
def test_depleted_pinned_lot_blocks_production_with_400(login, users, worksheet, material, lot_factory):
    lot = lot_factory(material=material, quantity="0", status="DEPLETED")
    WorksheetMaterial.objects.create(
        worksheet=worksheet, material=material, material_lot=lot, quantity_planned=Decimal("1")
    )

    resp = login("labtech").post(_url(worksheet), {"to_status": "IN_PRODUCTION"}, format="json")
    assert resp.status_code == 400
    assert "DEPLETED" in str(resp.data["materials"])
    assert not WorkflowTransition.objects.filter(object_id=worksheet.pk).exists()

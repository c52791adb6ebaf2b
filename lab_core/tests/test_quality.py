# lab_core/tests/test_quality.py

import pytest

from lab_core.models import QualityControl, WorkflowTransition
from lab_core.quality import QC_CHECKS, validate_inspection

ALL_PASS = {c: True for c in QC_CHECKS}


def _qc_url(ws):
    return f"/lab/worksheets/{ws.pk}/quality-control/"


# ===============================================================
# Checklist rules
# ===============================================================
def test_approval_needs_every_check():
    validate_inspection({"result": "APPROVED", **ALL_PASS})
    with pytest.raises(ValueError, match="All quality checks"):
        validate_inspection({"result": "APPROVED", **ALL_PASS, "shade": False})


def test_conditional_allows_one_failure_with_notes():
    data = {"result": "CONDITIONAL", **ALL_PASS, "margins": False}
    with pytest.raises(ValueError, match="Notes are required"):
        validate_inspection(data)
    validate_inspection({**data, "notes": "Margin slightly long, acceptable"})

    with pytest.raises(ValueError, match="at most one"):
        validate_inspection({**data, "fit": False, "notes": "n"})


def test_rejection_needs_failed_check_and_action():
    with pytest.raises(ValueError, match="at least one failed"):
        validate_inspection({"result": "REJECTED", **ALL_PASS, "action_required": "Redo"})
    with pytest.raises(ValueError, match="Action required"):
        validate_inspection({"result": "REJECTED", **ALL_PASS, "fit": False})
    validate_inspection({"result": "REJECTED", **ALL_PASS, "fit": False, "action_required": "Remake coping"})


def test_unknown_result_and_blank_mdr_fields():
    with pytest.raises(ValueError, match="Result must be"):
        validate_inspection({"result": "MAYBE"})
    with pytest.raises(ValueError, match="risk_class"):
        validate_inspection({"result": "APPROVED", **ALL_PASS, "risk_class": " "})


# ===============================================================
# API
# ===============================================================
@pytest.mark.django_db
def test_approved_inspection_moves_worksheet(login, users, worksheet_factory):
    ws = worksheet_factory(status="QC_PENDING")
    resp = login("inspector").post(_qc_url(ws), {"result": "APPROVED", **ALL_PASS}, format="json")

    assert resp.status_code == 201, resp.content
    assert resp.data["result"] == "APPROVED"
    assert resp.data["inspector"]["username"] == "inspector"
    assert resp.data["risk_class"] == "Class IIa"

    ws.refresh_from_db()
    assert ws.status == "QC_APPROVED"
    assert ws.order.status == "QC_APPROVED"


@pytest.mark.django_db
def test_rejected_inspection_returns_to_production(login, users, worksheet_factory):
    ws = worksheet_factory(status="QC_PENDING")
    payload = {"result": "REJECTED", **ALL_PASS, "occlusion": False, "action_required": "Adjust contacts"}
    resp = login("inspector").post(_qc_url(ws), payload, format="json")
    assert resp.status_code == 201, resp.content

    ws.refresh_from_db()
    assert ws.status == "QC_REJECTED"
    assert "Adjust contacts" in ws.qc_notes
    assert ws.order.status == "IN_PRODUCTION"

    row = WorkflowTransition.objects.get(kind="worksheet", object_id=ws.pk)
    assert row.to_status == "QC_REJECTED"


@pytest.mark.django_db
def test_form_encoded_checks_are_parsed(login, users, worksheet_factory):
    ws = worksheet_factory(status="QC_PENDING")
    payload = {"result": "APPROVED", **{c: "true" for c in QC_CHECKS}}
    resp = login("inspector").post(_qc_url(ws), payload)
    assert resp.status_code == 201, resp.content


@pytest.mark.django_db
def test_inspection_requires_qc_pending(login, users, worksheet):
    resp = login("inspector").post(_qc_url(worksheet), {"result": "APPROVED", **ALL_PASS}, format="json")
    assert resp.status_code == 400
    assert "status" in resp.data
    assert not QualityControl.objects.exists()


@pytest.mark.django_db
def test_invalid_checklist_is_400(login, users, worksheet_factory):
    ws = worksheet_factory(status="QC_PENDING")
    resp = login("inspector").post(
        _qc_url(ws), {"result": "APPROVED", **ALL_PASS, "fit": False}, format="json"
    )
    assert resp.status_code == 400
    assert "result" in resp.data
    ws.refresh_from_db()
    assert ws.status == "QC_PENDING"


@pytest.mark.django_db
def test_invoicing_cannot_inspect(login, users, worksheet_factory):
    ws = worksheet_factory(status="QC_PENDING")
    resp = login("billing").post(_qc_url(ws), {"result": "APPROVED", **ALL_PASS}, format="json")
    assert resp.status_code == 403


@pytest.mark.django_db
def test_get_inspection(login, users, worksheet_factory):
    ws = worksheet_factory(status="QC_PENDING")
    client = login("inspector")

    assert client.get(_qc_url(ws)).status_code == 404

    client.post(_qc_url(ws), {"result": "APPROVED", **ALL_PASS}, format="json")
    resp = client.get(_qc_url(ws))
    assert resp.status_code == 200
    assert resp.data["worksheet_number"] == ws.worksheet_number

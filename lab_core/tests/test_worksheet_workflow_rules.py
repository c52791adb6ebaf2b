# lab_core/tests/test_worksheet_workflow_rules.py

import pytest

from lab_core.workflows import (
    TERMINAL_STATUSES,
    WORKSHEET_STATUSES,
    allowed_for_roles,
    allowed_next_states,
    allowed_transitions,
    is_terminal,
    normalize_role,
    order_status_for,
    required_roles,
    requires_notes,
    side_effects_on_enter,
    validate_correction,
    validate_transition,
    validate_transition_with_role,
    workflow_definition,
)


def test_terminal_statuses():
    assert TERMINAL_STATUSES == {"DELIVERED", "CANCELLED", "VOIDED"}
    assert is_terminal("delivered")
    assert not is_terminal("QC_APPROVED")


@pytest.mark.parametrize(
    "current,target",
    [
        ("DRAFT", "IN_PRODUCTION"),
        ("IN_PRODUCTION", "QC_PENDING"),
        ("QC_PENDING", "QC_APPROVED"),
        ("QC_PENDING", "QC_REJECTED"),
        ("QC_REJECTED", "IN_PRODUCTION"),
        ("QC_APPROVED", "DELIVERED"),
        ("QC_APPROVED", "CANCELLED"),
    ],
)
def test_valid_transitions(current, target):
    validate_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        ("DRAFT", "QC_APPROVED"),
        ("DRAFT", "DELIVERED"),
        ("IN_PRODUCTION", "DRAFT"),
        ("QC_REJECTED", "QC_APPROVED"),
        ("DELIVERED", "QC_APPROVED"),
        ("CANCELLED", "DRAFT"),
        ("DRAFT", "VOIDED"),
    ],
)
def test_invalid_transitions(current, target):
    with pytest.raises(ValueError):
        validate_transition(current, target)


def test_unknown_status_rejected():
    with pytest.raises(ValueError, match="Unknown worksheet status"):
        validate_transition("DRAFT", "SHIPPED")


def test_role_aliases_normalize():
    assert normalize_role("lab tech") == "TECHNICIAN"
    assert normalize_role("Quality-Control") == "QC_INSPECTOR"
    assert normalize_role("billing") == "INVOICING"
    assert normalize_role("") == ""


def test_role_gating():
    validate_transition_with_role("QC_PENDING", "QC_APPROVED", "QC_INSPECTOR")
    validate_transition_with_role("QC_APPROVED", "DELIVERED", "INVOICING")

    with pytest.raises(ValueError, match="cannot perform"):
        validate_transition_with_role("DRAFT", "IN_PRODUCTION", "QC_INSPECTOR")
    with pytest.raises(ValueError, match="cannot perform"):
        validate_transition_with_role("QC_APPROVED", "CANCELLED", "TECHNICIAN")
    with pytest.raises(ValueError):
        validate_transition_with_role("DRAFT", "IN_PRODUCTION", None)


def test_allowed_transitions_shapes():
    full = allowed_transitions()
    assert set(full) == WORKSHEET_STATUSES
    assert full["DELIVERED"] == []

    assert allowed_transitions("QC_PENDING") == ["CANCELLED", "QC_APPROVED", "QC_REJECTED"]
    assert allowed_transitions("QC_PENDING", "QC_INSPECTOR") == ["QC_APPROVED", "QC_REJECTED"]
    assert allowed_next_states("VOIDED") == []


def test_allowed_for_roles_is_union():
    assert allowed_for_roles("QC_APPROVED", {"INVOICING"}) == ["DELIVERED"]
    assert allowed_for_roles("QC_APPROVED", {"INVOICING", "ADMIN"}) == ["CANCELLED", "DELIVERED"]
    assert allowed_for_roles("QC_APPROVED", set()) == []


def test_required_roles():
    assert required_roles("QC_APPROVED", "CANCELLED") == ["ADMIN"]
    with pytest.raises(ValueError):
        required_roles("DRAFT", "DELIVERED")


def test_notes_required_only_for_rejection():
    assert requires_notes("QC_REJECTED")
    assert not requires_notes("QC_APPROVED")


def test_side_effects_and_order_mirror():
    assert side_effects_on_enter("IN_PRODUCTION") == ["consume-materials"]
    assert "revert-materials" in side_effects_on_enter("QC_REJECTED")
    assert "generate-annex-xiii" in side_effects_on_enter("QC_APPROVED")
    assert side_effects_on_enter("VOIDED") == []

    assert order_status_for("QC_REJECTED") == "IN_PRODUCTION"
    assert order_status_for("CANCELLED") == "PENDING"
    assert order_status_for("VOIDED") is None


def test_corrections():
    assert validate_correction("void", "DELIVERED", "TECHNICIAN") == "VOIDED"
    assert validate_correction("rollback", "IN_PRODUCTION") == "DRAFT"

    with pytest.raises(ValueError, match="Cannot void"):
        validate_correction("void", "DRAFT")
    with pytest.raises(ValueError, match="cannot rollback"):
        validate_correction("rollback", "IN_PRODUCTION", "INVOICING")
    with pytest.raises(ValueError, match="Unknown correction"):
        validate_correction("undo", "DRAFT")


def test_definition_is_serializable():
    d = workflow_definition()
    assert d["kind"] == "worksheet"
    assert d["terminal"] == ["CANCELLED", "DELIVERED", "VOIDED"]
    assert d["corrections"]["void"]["to"] == "VOIDED"
    assert "VOIDED" not in d["side_effects"]

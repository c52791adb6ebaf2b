"""
Authoritative workflow rules for laboratory worksheets.

Defines:
- Status universe
- Allowed transitions (static adjacency list)
- Role requirements per transition
- Correction actions (void / rollback) outside the adjacency list
- Side effects fired on entering a status
- Introspection helpers used by the API
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Set


# ===============================================================
# ROLE NORMALIZATION
# ===============================================================
ROLES: Set[str] = {"ADMIN", "TECHNICIAN", "QC_INSPECTOR", "INVOICING"}

# Examples handled:
# - "Technician" / "lab tech" / "LAB-TECHNICIAN" -> TECHNICIAN
# - "QC" / "qa" / "Quality Control" -> QC_INSPECTOR
# - "billing" / "accounting" -> INVOICING
ROLE_ALIASES: Dict[str, str] = {
    "ADMIN": "ADMIN",
    "ADMINISTRATOR": "ADMIN",
    "SUPERUSER": "ADMIN",
    "LAB_MANAGER": "ADMIN",
    "TECHNICIAN": "TECHNICIAN",
    "TECH": "TECHNICIAN",
    "LAB_TECH": "TECHNICIAN",
    "LABTECH": "TECHNICIAN",
    "LAB_TECHNICIAN": "TECHNICIAN",
    "DENTAL_TECHNICIAN": "TECHNICIAN",
    "QC_INSPECTOR": "QC_INSPECTOR",
    "QC": "QC_INSPECTOR",
    "QA": "QC_INSPECTOR",
    "INSPECTOR": "QC_INSPECTOR",
    "QUALITY_CONTROL": "QC_INSPECTOR",
    "INVOICING": "INVOICING",
    "BILLING": "INVOICING",
    "ACCOUNTING": "INVOICING",
    "ACCOUNTANT": "INVOICING",
}


def normalize_role(role: Optional[str]) -> str:
    """
    Canonicalize role strings so that small formatting differences
    do not break permission logic.

    Steps:
    1) Uppercase and strip
    2) Convert whitespace and hyphens to underscores
    3) Collapse repeated underscores
    4) Apply alias mapping
    """
    r = (role or "").strip().upper()
    if not r:
        return r

    r = re.sub(r"[\s\-]+", "_", r)
    r = re.sub(r"_+", "_", r)

    return ROLE_ALIASES.get(r, r)


def normalize_status(status: Optional[str]) -> str:
    return (status or "").strip().upper()


# ===============================================================
# WORKSHEET WORKFLOW
# ===============================================================
WORKSHEET_STATUSES: Set[str] = {
    "DRAFT",
    "IN_PRODUCTION",
    "QC_PENDING",
    "QC_APPROVED",
    "QC_REJECTED",
    "DELIVERED",
    "CANCELLED",
    "VOIDED",
}

WORKSHEET_TRANSITIONS: Dict[str, Set[str]] = {
    "DRAFT": {"IN_PRODUCTION", "CANCELLED"},
    "IN_PRODUCTION": {"QC_PENDING", "CANCELLED"},
    "QC_PENDING": {"QC_APPROVED", "QC_REJECTED", "CANCELLED"},
    "QC_APPROVED": {"DELIVERED", "CANCELLED"},
    "QC_REJECTED": {"IN_PRODUCTION", "CANCELLED"},
    "DELIVERED": set(),  # terminal
    "CANCELLED": set(),  # terminal
    "VOIDED": set(),  # terminal
}

WORKSHEET_TRANSITION_ROLES: Dict[str, Dict[str, Set[str]]] = {
    "DRAFT": {
        "IN_PRODUCTION": {"ADMIN", "TECHNICIAN"},
        "CANCELLED": {"ADMIN", "TECHNICIAN"},
    },
    "IN_PRODUCTION": {
        "QC_PENDING": {"ADMIN", "TECHNICIAN"},
        "CANCELLED": {"ADMIN", "TECHNICIAN"},
    },
    "QC_PENDING": {
        "QC_APPROVED": {"ADMIN", "QC_INSPECTOR", "TECHNICIAN"},
        "QC_REJECTED": {"ADMIN", "QC_INSPECTOR", "TECHNICIAN"},
        "CANCELLED": {"ADMIN", "TECHNICIAN"},
    },
    "QC_APPROVED": {
        "DELIVERED": {"ADMIN", "INVOICING", "TECHNICIAN"},
        "CANCELLED": {"ADMIN"},
    },
    "QC_REJECTED": {
        "IN_PRODUCTION": {"ADMIN", "TECHNICIAN"},
        "CANCELLED": {"ADMIN", "TECHNICIAN"},
    },
}

TERMINAL_STATUSES: Set[str] = {s for s, nxt in WORKSHEET_TRANSITIONS.items() if not nxt}

# Target statuses that require explanatory notes
NOTES_REQUIRED: Set[str] = {"QC_REJECTED"}


# ===============================================================
# CORRECTIONS (outside the normal adjacency list)
# ===============================================================
CORRECTION_ACTIONS: Dict[str, Dict[str, Any]] = {
    "void": {
        "from": {"QC_APPROVED", "DELIVERED"},
        "to": "VOIDED",
        "roles": {"ADMIN", "TECHNICIAN"},
    },
    "rollback": {
        "from": {"IN_PRODUCTION"},
        "to": "DRAFT",
        "roles": {"ADMIN", "TECHNICIAN"},
    },
}


# ===============================================================
# SIDE EFFECTS (fired on entering a status)
# ===============================================================
SIDE_EFFECTS_ON_ENTER: Dict[str, List[str]] = {
    "IN_PRODUCTION": ["consume-materials"],
    "QC_PENDING": ["notify-qc-inspector"],
    "QC_APPROVED": ["generate-annex-xiii"],
    "QC_REJECTED": ["notify-technician", "revert-materials"],
    "DELIVERED": ["mark-order-complete"],
    "CANCELLED": ["revert-materials", "notify-dentist"],
    "VOIDED": [],
    "DRAFT": [],
}

# Order status mirrored from the worksheet status it just entered
ORDER_STATUS_ON_ENTER: Dict[str, str] = {
    "DRAFT": "PENDING",
    "IN_PRODUCTION": "IN_PRODUCTION",
    "QC_PENDING": "QC_PENDING",
    "QC_APPROVED": "QC_APPROVED",
    "QC_REJECTED": "IN_PRODUCTION",
    "DELIVERED": "DELIVERED",
    "CANCELLED": "PENDING",
}


# ===============================================================
# Public workflow API
# ===============================================================
def is_terminal(status: Optional[str]) -> bool:
    return normalize_status(status) in TERMINAL_STATUSES


def validate_transition(current: Optional[str], target: Optional[str]) -> None:
    """
    Raises ValueError if current -> target is not an edge of the worksheet workflow.
    """
    cur = normalize_status(current)
    tgt = normalize_status(target)

    if cur not in WORKSHEET_STATUSES:
        raise ValueError(f"Unknown worksheet status: {cur}")
    if tgt not in WORKSHEET_STATUSES:
        raise ValueError(f"Unknown worksheet status: {tgt}")

    if tgt not in WORKSHEET_TRANSITIONS.get(cur, set()):
        raise ValueError(f"Invalid worksheet transition: {cur} -> {tgt}")


def _role_allows(current: str, target: str, role: str) -> bool:
    allowed = WORKSHEET_TRANSITION_ROLES.get(current, {}).get(target, set())
    return normalize_role(role) in allowed


def validate_transition_with_role(
    current: Optional[str],
    target: Optional[str],
    role: Optional[str],
) -> None:
    """
    Raises ValueError if the transition is invalid OR not permitted for the role.
    """
    validate_transition(current, target)

    cur = normalize_status(current)
    tgt = normalize_status(target)
    if not _role_allows(cur, tgt, role or ""):
        raise ValueError(
            f"Role {normalize_role(role) or '<none>'} cannot perform worksheet transition: {cur} -> {tgt}"
        )


def allowed_next_states(current: Optional[str]) -> List[str]:
    """
    Canonical next states only, independent of role.
    """
    return sorted(WORKSHEET_TRANSITIONS.get(normalize_status(current), set()))


def allowed_transitions(
    current: Optional[str] = None,
    role: Optional[str] = None,
) -> Any:
    """
    1) allowed_transitions() -> full map {status: [next, ...]}
    2) allowed_transitions("QC_PENDING") -> role-independent next states
    3) allowed_transitions("QC_PENDING", "QC_INSPECTOR") -> role-aware next states
    """
    if current is None and role is None:
        return {state: sorted(nxt) for state, nxt in WORKSHEET_TRANSITIONS.items()}

    cur = normalize_status(current)
    nxt = allowed_next_states(cur)
    if role is None:
        return nxt

    return sorted(t for t in nxt if _role_allows(cur, t, role))


def allowed_for_roles(current: Optional[str], roles: Set[str]) -> List[str]:
    """
    Union of allowed transitions across every role a user holds.
    """
    out: Set[str] = set()
    for role in roles:
        out |= set(allowed_transitions(current, role))
    return sorted(out)


def required_roles(current: Optional[str], target: Optional[str]) -> List[str]:
    """
    Roles that can perform current -> target.
    """
    validate_transition(current, target)
    cur = normalize_status(current)
    tgt = normalize_status(target)
    return sorted(WORKSHEET_TRANSITION_ROLES.get(cur, {}).get(tgt, set()))


def requires_notes(target: Optional[str]) -> bool:
    return normalize_status(target) in NOTES_REQUIRED


def side_effects_on_enter(status: Optional[str]) -> List[str]:
    return list(SIDE_EFFECTS_ON_ENTER.get(normalize_status(status), []))


def order_status_for(worksheet_status: Optional[str]) -> Optional[str]:
    return ORDER_STATUS_ON_ENTER.get(normalize_status(worksheet_status))


def validate_correction(action: str, current: Optional[str], role: Optional[str] = None) -> str:
    """
    Validate a void / rollback request. Returns the target status.
    Raises ValueError when the action does not apply to `current` or `role`.
    """
    rule = CORRECTION_ACTIONS.get((action or "").strip().lower())
    if rule is None:
        raise ValueError(f"Unknown correction action: {action}")

    cur = normalize_status(current)
    if cur not in rule["from"]:
        allowed = ", ".join(sorted(rule["from"]))
        raise ValueError(f"Cannot {action} a worksheet in status {cur}. Allowed from: {allowed}")

    if role is not None and normalize_role(role) not in rule["roles"]:
        raise ValueError(f"Role {normalize_role(role) or '<none>'} cannot {action} worksheets.")

    return rule["to"]


def workflow_definition() -> Dict[str, Any]:
    """
    Stable JSON-serializable definition for UI.
    """
    return {
        "kind": "worksheet",
        "states": sorted(WORKSHEET_STATUSES),
        "terminal": sorted(TERMINAL_STATUSES),
        "transitions": allowed_transitions(),
        "roles": {
            cur: {tgt: sorted(roles) for tgt, roles in targets.items()}
            for cur, targets in WORKSHEET_TRANSITION_ROLES.items()
        },
        "notes_required": sorted(NOTES_REQUIRED),
        "corrections": {
            name: {
                "from": sorted(rule["from"]),
                "to": rule["to"],
                "roles": sorted(rule["roles"]),
            }
            for name, rule in CORRECTION_ACTIONS.items()
        },
        "side_effects": {k: v for k, v in SIDE_EFFECTS_ON_ENTER.items() if v},
    }


__all__ = [
    "ROLES",
    "ROLE_ALIASES",
    "WORKSHEET_STATUSES",
    "WORKSHEET_TRANSITIONS",
    "WORKSHEET_TRANSITION_ROLES",
    "TERMINAL_STATUSES",
    "CORRECTION_ACTIONS",
    "SIDE_EFFECTS_ON_ENTER",
    "normalize_role",
    "normalize_status",
    "is_terminal",
    "validate_transition",
    "validate_transition_with_role",
    "allowed_next_states",
    "allowed_transitions",
    "allowed_for_roles",
    "required_roles",
    "requires_notes",
    "side_effects_on_enter",
    "order_status_for",
    "validate_correction",
    "workflow_definition",
]

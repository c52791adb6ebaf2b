# lab_core/views_workflow_api.py

from __future__ import annotations

from django.shortcuts import get_object_or_404

from drf_spectacular.utils import extend_schema
from rest_framework.exceptions import NotAuthenticated, ValidationError
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from lab_core.models import WorkSheet, WorkflowTransition
from lab_core.serializers import WorkflowTransitionSerializer
from lab_core.workflows import allowed_for_roles, is_terminal, workflow_definition
from lab_core.workflows.executor import (
    execute_transition,
    rollback_worksheet,
    user_roles,
    void_worksheet,
)


# =============================================================
# Helpers
# =============================================================

def _require_auth(user) -> None:
    """
    Enforce authentication in a way that returns DRF's normal 401/403
    instead of Django login redirects (302) under session-based setups.
    """
    if not user or not getattr(user, "is_authenticated", False):
        raise NotAuthenticated("Authentication credentials were not provided.")


def _state(ws: WorkSheet) -> dict:
    return {
        "kind": "worksheet",
        "object_id": ws.pk,
        "worksheet_number": ws.worksheet_number,
        "current": ws.status,
        "order_status": ws.order.status,
    }


# =============================================================
# API: Workflow definition
# =============================================================

class WorkflowDefinitionView(APIView):
    """
    GET /lab/workflows/worksheets/definition/
    """
    permission_classes = [AllowAny]

    @extend_schema(tags=["Workflow"])
    def get(self, request):
        _require_auth(request.user)
        return Response(workflow_definition())


# =============================================================
# API: Allowed transitions
# =============================================================

class WorksheetAllowedView(APIView):
    """
    GET /lab/workflows/worksheets/<pk>/allowed/

    Returns the current state, role-aware next states and the roles considered.
    """
    # AllowAny + explicit auth check: 401 instead of a login redirect
    permission_classes = [AllowAny]

    @extend_schema(tags=["Workflow"])
    def get(self, request, pk: int):
        _require_auth(request.user)
        ws = get_object_or_404(WorkSheet.objects.select_related("order"), pk=pk)

        roles = user_roles(request.user)
        payload = _state(ws)
        payload.update(
            {
                "allowed": allowed_for_roles(ws.status, roles),
                "terminal": is_terminal(ws.status),
                "roles": sorted(roles),
            }
        )
        return Response(payload)


# =============================================================
# API: Execute workflow transition (AUTHORITATIVE)
# =============================================================

class WorksheetTransitionView(APIView):
    """
    POST /lab/workflows/worksheets/<pk>/transition/

    Body:
        { "to_status": "IN_PRODUCTION" }
        or
        { "status": "QC_REJECTED", "notes": "Margins open on 21" }

    This endpoint is the ONLY API-level entry point
    that mutates worksheet status.
    """
    permission_classes = [AllowAny]

    @extend_schema(tags=["Workflow"])
    def post(self, request, pk: int):
        _require_auth(request.user)
        ws = get_object_or_404(WorkSheet, pk=pk)

        payload = request.data or {}
        to_status = payload.get("to_status") or payload.get("status")
        if not to_status:
            raise ValidationError({"to_status": "This field is required."})

        previous = ws.status
        ws = execute_transition(
            worksheet=ws,
            new_status=str(to_status),
            user=request.user,
            notes=str(payload.get("notes") or payload.get("comment") or ""),
        )

        out = _state(ws)
        out["previous"] = previous
        return Response(out)


# =============================================================
# API: Corrections
# =============================================================

class _CorrectionView(APIView):
    permission_classes = [AllowAny]
    correction = None

    @extend_schema(tags=["Workflow"])
    def post(self, request, pk: int):
        _require_auth(request.user)
        ws = get_object_or_404(WorkSheet, pk=pk)

        reason = str((request.data or {}).get("reason") or "")
        previous = ws.status
        ws = type(self).correction(worksheet=ws, user=request.user, reason=reason)

        out = _state(ws)
        out["previous"] = previous
        return Response(out)


class WorksheetVoidView(_CorrectionView):
    """
    POST /lab/workflows/worksheets/<pk>/void/   { "reason": "..." }
    """
    correction = staticmethod(void_worksheet)


class WorksheetRollbackView(_CorrectionView):
    """
    POST /lab/workflows/worksheets/<pk>/rollback/   { "reason": "..." }
    """
    correction = staticmethod(rollback_worksheet)


# =============================================================
# API: Timeline
# =============================================================

class WorksheetTimelineView(APIView):
    """
    GET /lab/workflows/worksheets/<pk>/timeline/

    Worksheet transitions plus the mirrored order transitions, oldest first.
    """
    permission_classes = [AllowAny]

    @extend_schema(tags=["Workflow"])
    def get(self, request, pk: int):
        _require_auth(request.user)
        ws = get_object_or_404(WorkSheet.objects.select_related("order"), pk=pk)

        worksheet_rows = WorkflowTransition.objects.filter(kind="worksheet", object_id=ws.pk)
        order_rows = WorkflowTransition.objects.filter(kind="order", object_id=ws.order_id)

        payload = _state(ws)
        payload["timeline"] = WorkflowTransitionSerializer(
            worksheet_rows.select_related("performed_by"), many=True
        ).data
        payload["order_timeline"] = WorkflowTransitionSerializer(
            order_rows.select_related("performed_by"), many=True
        ).data
        return Response(payload)

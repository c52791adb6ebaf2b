# lab_core/views_quality.py
from __future__ import annotations

from django.shortcuts import get_object_or_404

from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.exceptions import NotAuthenticated, NotFound
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from lab_core.models import QualityControl, WorkSheet
from lab_core.quality import QC_CHECKS, submit_inspection
from lab_core.serializers import QualityControlSerializer
from lab_core.workflows.executor import require_any_role

QC_ROLES = {"ADMIN", "QC_INSPECTOR", "TECHNICIAN"}


class WorksheetQualityControlView(APIView):
    """
    GET  /lab/worksheets/<pk>/quality-control/   current inspection
    POST /lab/worksheets/<pk>/quality-control/   submit an inspection

    Body:
        {
          "result": "APPROVED" | "CONDITIONAL" | "REJECTED",
          "aesthetics": true, "fit": true, "occlusion": true, "shade": true, "margins": true,
          "notes": "...", "action_required": "...",
          "emdn_code": "...", "risk_class": "...", "document_version": "...",
          "annex_i_deviations": "..."
        }
    """
    permission_classes = [AllowAny]

    def _auth(self, request):
        if not request.user or not request.user.is_authenticated:
            raise NotAuthenticated("Authentication credentials were not provided.")

    @extend_schema(tags=["Quality control"], responses=QualityControlSerializer)
    def get(self, request, pk: int):
        self._auth(request)
        ws = get_object_or_404(WorkSheet, pk=pk)
        qc = QualityControl.objects.select_related("inspector", "worksheet").filter(worksheet=ws).first()
        if qc is None:
            raise NotFound("No quality-control inspection recorded for this worksheet.")
        return Response(QualityControlSerializer(qc).data)

    @extend_schema(tags=["Quality control"], responses=QualityControlSerializer)
    def post(self, request, pk: int):
        self._auth(request)
        require_any_role(request.user, QC_ROLES, "You do not have the required role to record QC inspections.")
        ws = get_object_or_404(WorkSheet, pk=pk)

        data = request.data.dict() if hasattr(request.data, "dict") else dict(request.data or {})
        for check in QC_CHECKS:
            data[check] = str(data.get(check, "")).strip().lower() in {"1", "true", "yes", "on"}

        qc = submit_inspection(worksheet=ws, data=data, user=request.user)
        return Response(QualityControlSerializer(qc).data, status=status.HTTP_201_CREATED)

# lab_core/views_teeth.py
from __future__ import annotations

from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from lab_core.dental import fdi


class DentalChartView(APIView):
    """
    GET /lab/teeth/chart/?dentition=permanent|primary|mixed
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(
        tags=["Teeth"],
        parameters=[OpenApiParameter("dentition", str, description="permanent (default), primary or mixed")],
    )
    def get(self, request):
        dentition = request.query_params.get("dentition") or "permanent"
        try:
            teeth = fdi.chart_layout(dentition)
        except ValueError as e:
            raise ValidationError({"dentition": str(e)})
        return Response(
            {
                "dentition": dentition,
                "canvas": fdi.CANVAS_CONFIG,
                "work_types": list(fdi.WORK_TYPES),
                "teeth": teeth,
            }
        )


class ToothDetailView(APIView):
    """
    GET /lab/teeth/<tooth>/
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Teeth"])
    def get(self, request, tooth: str):
        if not fdi.is_valid_fdi(tooth):
            raise NotFound(f"Invalid FDI tooth number: {tooth}")
        return Response(
            {
                "number": tooth,
                "label": fdi.format_tooth(tooth),
                "name": fdi.tooth_name(tooth),
                "quadrant": fdi.quadrant(tooth),
                "position": fdi.position(tooth),
                "type": fdi.tooth_type(tooth),
                "jaw": fdi.jaw(tooth),
                "side": fdi.side(tooth),
                "is_primary": fdi.is_primary(tooth),
                "is_wisdom_tooth": fdi.is_wisdom_tooth(tooth),
                "is_front_tooth": fdi.is_front_tooth(tooth),
                "adjacent": fdi.adjacent_teeth(tooth),
                "box": fdi.tooth_coordinates(tooth),
            }
        )


class ToothSelectionValidateView(APIView):
    """
    POST /lab/teeth/validate/   { "teeth": [{"tooth_number": "11", "work_type": "crown"}, ...] }
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Teeth"])
    def post(self, request):
        selections = request.data.get("teeth") if isinstance(request.data, dict) else request.data
        selections = selections or []
        if not isinstance(selections, list) or not all(isinstance(s, dict) for s in selections):
            raise ValidationError({"teeth": "Expected a list of {tooth_number, work_type} objects."})
        try:
            fdi.validate_tooth_selections(selections)
        except ValueError as e:
            return Response({"valid": False, "error": str(e)})
        return Response(
            {
                "valid": True,
                "by_quadrant": fdi.group_by_quadrant(s["tooth_number"] for s in selections),
            }
        )

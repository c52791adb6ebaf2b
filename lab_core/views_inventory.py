# lab_core/views_inventory.py
from __future__ import annotations

from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from lab_core.inventory.services import (
    available_materials,
    depleted_lots,
    expired_lots,
    expiring_lots,
    inventory_overview,
    lot_traceability,
    low_stock_materials,
)
from lab_core.models import MaterialLot
from lab_core.serializers import MaterialLotSerializer


def _int_param(request, name: str):
    raw = request.query_params.get(name)
    if raw in (None, ""):
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError({name: "Must be an integer."})
    if value < 0:
        raise ValidationError({name: "Must be zero or positive."})
    return value


class InventoryOverviewView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Inventory"])
    def get(self, request):
        return Response(inventory_overview())


class AvailableMaterialsView(APIView):
    """
    Active materials with usable stock (AVAILABLE, unexpired lots).
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Inventory"])
    def get(self, request):
        return Response(available_materials())


class ExpiringLotsView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        tags=["Inventory"],
        parameters=[OpenApiParameter("days", int, description="Look-ahead window (default 30)")],
    )
    def get(self, request):
        rows = expiring_lots(days=_int_param(request, "days"))
        summary = {"critical": 0, "warning": 0, "info": 0}
        for row in rows:
            summary[row["severity"]] += 1
        return Response({"count": len(rows), "summary": summary, "results": rows})


class ExpiredLotsView(APIView):
    """
    Lots past expiry that still hold stock, including ones the nightly scan
    has not flagged yet.
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Inventory"])
    def get(self, request):
        data = MaterialLotSerializer(expired_lots(), many=True).data
        return Response({"count": len(data), "results": data})


class DepletedLotsView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Inventory"])
    def get(self, request):
        data = MaterialLotSerializer(depleted_lots(), many=True).data
        return Response({"count": len(data), "results": data})


class LowStockView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        tags=["Inventory"],
        parameters=[OpenApiParameter("threshold", int, description="Stock threshold (default 20)")],
    )
    def get(self, request):
        try:
            rows = low_stock_materials(threshold=_int_param(request, "threshold"))
        except ValueError as e:
            raise ValidationError({"threshold": str(e)})
        return Response({"count": len(rows), "results": rows})


class LotTraceabilityView(APIView):
    """
    GET /lab/inventory/traceability/<lot_number>/

    Forward trace of every lot carrying this number (numbers are unique per material).
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Inventory"])
    def get(self, request, lot_number: str):
        lots = MaterialLot.objects.select_related("material").filter(lot_number=lot_number.strip())
        if not lots.exists():
            raise NotFound(f"LOT {lot_number} not found.")
        return Response({"lot_number": lot_number, "lots": [lot_traceability(lot) for lot in lots]})

# lab_core/views.py
from __future__ import annotations

from django.db import transaction
from django.http import HttpResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone

from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotAuthenticated, ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .billing.services import price_list_csv, set_primary_bank_account
from .exceptions import LabError
from .filters import (
    AuditLogFilter,
    DentistFilter,
    MaterialFilter,
    MaterialLotFilter,
    OrderFilter,
    ProductFilter,
    WorkSheetFilter,
)
from .inventory.services import (
    delete_lot,
    delete_material,
    lot_traceability,
    record_stock_arrival,
    worksheet_traceability,
)
from .mixins import AuditLogMixin, _deny_if_payload_has, domain_error
from .models import (
    AuditAction,
    AuditLog,
    BankAccount,
    Dentist,
    LabConfiguration,
    Material,
    MaterialLot,
    Order,
    Product,
    UserRole,
    WorkSheet,
    WorksheetMaterial,
    WorksheetProduct,
)
from .permissions import IsLabAdmin, IsRoleAllowedOrReadOnly
from .serializers import (
    AuditLogSerializer,
    BankAccountSerializer,
    DentistSerializer,
    LabConfigurationSerializer,
    MaterialLotSerializer,
    MaterialSerializer,
    OrderSerializer,
    PriceChangeSerializer,
    ProductPriceHistorySerializer,
    ProductSerializer,
    StockArrivalSerializer,
    UserRoleSerializer,
    WorkSheetSerializer,
    WorksheetMaterialInputSerializer,
    WorksheetMaterialSerializer,
    WorksheetProductInputSerializer,
    WorksheetProductSerializer,
    WorksheetToothSerializer,
)
from .services import worksheets as worksheet_services
from .audit import log_action
from .workflows.executor import user_roles


# ===============================================================
# Utilities
# ===============================================================
def _require_auth(request):
    user = getattr(request, "user", None)
    if not user or not user.is_authenticated:
        raise NotAuthenticated("Authentication credentials were not provided.")
    return user


# ===============================================================
# Health / identity
# ===============================================================
class HealthCheckView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(tags=["System"])
    def get(self, request):
        lab = LabConfiguration.load()
        payload = {"status": "ok", "service": "DentLab"}
        if lab:
            payload["laboratory"] = {"id": lab.id, "name": lab.lab_name}
        return Response(payload)


class WhoAmIView(APIView):
    """
    The authenticated user and their canonical lab roles.
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["System"])
    def get(self, request):
        user = request.user
        return Response(
            {
                "id": user.id,
                "username": user.username,
                "is_superuser": bool(getattr(user, "is_superuser", False)),
                "roles": sorted(user_roles(user)),
            }
        )


# ===============================================================
# Dentists
# ===============================================================
class DentistViewSet(AuditLogMixin, viewsets.ModelViewSet):
    queryset = Dentist.objects.all()
    serializer_class = DentistSerializer
    permission_classes = [IsRoleAllowedOrReadOnly]
    write_roles = {"ADMIN", "TECHNICIAN", "INVOICING"}
    filterset_class = DentistFilter

    def perform_destroy(self, instance):
        if instance.orders.exists() or instance.invoices.exists():
            raise ValidationError(
                {"dentist": "Dentist has orders or invoices. Mark it inactive instead."}
            )
        super().perform_destroy(instance)


# ===============================================================
# Products (price list)
# ===============================================================
class ProductViewSet(AuditLogMixin, viewsets.ModelViewSet):
    queryset = Product.objects.all()
    serializer_class = ProductSerializer
    permission_classes = [IsRoleAllowedOrReadOnly]
    write_roles = {"ADMIN", "INVOICING"}
    filterset_class = ProductFilter

    def perform_create(self, serializer):
        instance = serializer.save()
        instance.price_history.create(price=instance.current_price, reason="Initial price")
        self._log(AuditAction.CREATE, instance, {"id": instance.pk, "price": str(instance.current_price)})

    def perform_destroy(self, instance):
        if instance.worksheet_lines.exists():
            raise ValidationError({"product": "Product is used on worksheets. Mark it inactive instead."})
        super().perform_destroy(instance)

    @extend_schema(tags=["Products"], request=PriceChangeSerializer)
    @action(detail=True, methods=["post"], url_path="change-price")
    def change_price(self, request, pk=None):
        product = self.get_object()
        ser = PriceChangeSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        old_price = product.current_price
        try:
            entry = product.change_price(
                ser.validated_data["price"],
                reason=ser.validated_data.get("reason", ""),
                user=request.user,
            )
        except ValueError as e:
            raise domain_error(e, "price")

        log_action(
            AuditAction.UPDATE,
            product,
            user=request.user,
            details={"price": {"from": str(old_price), "to": str(entry.price)}},
        )
        return Response(ProductSerializer(product).data)

    @extend_schema(tags=["Products"])
    @action(detail=True, methods=["get"], url_path="price-history")
    def price_history(self, request, pk=None):
        product = self.get_object()
        return Response(ProductPriceHistorySerializer(product.price_history.all(), many=True).data)

    @extend_schema(tags=["Products"])
    @action(detail=False, methods=["get"], url_path="export")
    def export(self, request):
        qs = self.filter_queryset(self.get_queryset()).order_by("category", "code")
        response = HttpResponse(price_list_csv(qs), content_type="text/csv; charset=utf-8")
        stamp = timezone.localdate().isoformat()
        response["Content-Disposition"] = f'attachment; filename="price-list-{stamp}.csv"'
        return response


# ===============================================================
# Materials and lots
# ===============================================================
class MaterialViewSet(AuditLogMixin, viewsets.ModelViewSet):
    queryset = Material.objects.all()
    serializer_class = MaterialSerializer
    permission_classes = [IsRoleAllowedOrReadOnly]
    write_roles = {"ADMIN", "TECHNICIAN"}
    filterset_class = MaterialFilter

    def destroy(self, request, *args, **kwargs):
        material = self.get_object()
        try:
            delete_material(material, user=request.user)
        except LabError as e:
            raise domain_error(e, "material")
        return Response(status=status.HTTP_204_NO_CONTENT)


class MaterialLotViewSet(AuditLogMixin, viewsets.ModelViewSet):
    """
    Lots are created by stock arrival (POST) and never have their received
    quantity rewritten; status may be set to RECALLED.
    """
    queryset = MaterialLot.objects.select_related("material").all()
    serializer_class = MaterialLotSerializer
    permission_classes = [IsRoleAllowedOrReadOnly]
    write_roles = {"ADMIN", "TECHNICIAN"}
    filterset_class = MaterialLotFilter

    @extend_schema(tags=["Inventory"], request=StockArrivalSerializer)
    def create(self, request, *args, **kwargs):
        ser = StockArrivalSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = dict(ser.validated_data)
        try:
            lot = record_stock_arrival(user=request.user, **data)
        except LabError as e:
            raise domain_error(e, "lot_number")
        except ValueError as e:
            raise domain_error(e, "quantity_received")
        return Response(MaterialLotSerializer(lot).data, status=status.HTTP_201_CREATED)

    def perform_update(self, serializer):
        _deny_if_payload_has(
            self.request,
            ["quantity_available", "quantity_received", "material", "lot_number"],
            "This field cannot be modified.",
        )
        super().perform_update(serializer)

    def destroy(self, request, *args, **kwargs):
        lot = self.get_object()
        try:
            delete_lot(lot, user=request.user)
        except LabError as e:
            raise domain_error(e, "lot")
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(tags=["Inventory"])
    @action(detail=True, methods=["get"])
    def traceability(self, request, pk=None):
        return Response(lot_traceability(self.get_object()))


# ===============================================================
# Orders
# ===============================================================
class OrderViewSet(AuditLogMixin, viewsets.ModelViewSet):
    queryset = Order.objects.select_related("dentist", "created_by").all()
    serializer_class = OrderSerializer
    permission_classes = [IsRoleAllowedOrReadOnly]
    write_roles = {"ADMIN", "TECHNICIAN"}
    filterset_class = OrderFilter

    def perform_create(self, serializer):
        _deny_if_payload_has(
            self.request,
            ["order_number", "status", "created_by"],
            "This field is server-controlled.",
        )
        vd = serializer.validated_data
        try:
            order = worksheet_services.create_order(
                dentist=vd["dentist"],
                user=self.request.user,
                patient_name=vd.get("patient_name", ""),
                due_date=vd.get("due_date"),
                priority=vd.get("priority"),
                notes=vd.get("notes", ""),
            )
        except ValueError as e:
            raise domain_error(e, "dentist")
        serializer.instance = order

    def perform_update(self, serializer):
        _deny_if_payload_has(
            self.request,
            ["order_number", "status", "dentist"],
            "This field cannot be modified.",
        )
        super().perform_update(serializer)

    def perform_destroy(self, instance):
        if instance.worksheets.exists():
            raise ValidationError({"order": "Orders with worksheets cannot be deleted; cancel the worksheet instead."})
        super().perform_destroy(instance)


# ===============================================================
# Worksheets
# ===============================================================
class WorkSheetViewSet(viewsets.ModelViewSet):
    """
    Worksheet header CRUD plus DRAFT-only content (teeth, products, materials).

    Status is read-only here; use /lab/workflows/worksheets/<pk>/transition/.
    """
    queryset = (
        WorkSheet.objects.select_related("order", "dentist", "created_by", "voided_by")
        .prefetch_related("teeth", "products__product", "materials__material", "materials__material_lot")
        .all()
    )
    serializer_class = WorkSheetSerializer
    permission_classes = [IsRoleAllowedOrReadOnly]
    write_roles = {"ADMIN", "TECHNICIAN"}
    filterset_class = WorkSheetFilter

    def _worksheet_fields(self, data):
        return {f: data[f] for f in worksheet_services.EDITABLE_FIELDS if f in data}

    def perform_create(self, serializer):
        _deny_if_payload_has(
            self.request,
            ["status", "worksheet_number", "revision", "dentist"],
            "This field is server-controlled.",
        )
        order = serializer.validated_data.get("order")
        if order is None:
            raise ValidationError({"order": "This field is required."})
        try:
            ws = worksheet_services.create_worksheet(
                order=order,
                user=self.request.user,
                **self._worksheet_fields(serializer.validated_data),
            )
        except ValueError as e:
            raise domain_error(e, "order")
        serializer.instance = ws

    def perform_update(self, serializer):
        _deny_if_payload_has(
            self.request,
            ["status", "worksheet_number", "revision", "order", "dentist"],
            "This field cannot be modified.",
        )
        try:
            worksheet_services.update_worksheet(
                serializer.instance,
                data=self._worksheet_fields(serializer.validated_data),
                user=self.request.user,
                reason=str(self.request.data.get("edit_reason") or ""),
            )
        except ValueError as e:
            raise domain_error(e, "edit_reason")

    def perform_destroy(self, instance):
        if instance.status != "DRAFT":
            raise ValidationError({"status": "Only DRAFT worksheets can be deleted; cancel or void it instead."})
        if instance.materials.filter(consumptions__isnull=False).exists():
            raise ValidationError({"materials": "Worksheet has LOT history and cannot be deleted."})
        pk = instance.pk
        number = instance.worksheet_number
        instance.delete()
        log_action(
            AuditAction.DELETE,
            entity_type="WorkSheet",
            entity_id=pk,
            user=self.request.user,
            details={"worksheet_number": number},
        )

    # -----------------------------------------------------------
    # Teeth
    # -----------------------------------------------------------
    @extend_schema(tags=["Worksheets"])
    @action(detail=True, methods=["put"])
    def teeth(self, request, pk=None):
        ws = self.get_object()
        selections = request.data.get("teeth") if isinstance(request.data, dict) else request.data
        try:
            rows = worksheet_services.set_teeth(ws, selections or [], user=request.user)
        except ValueError as e:
            raise domain_error(e, "teeth")
        return Response(WorksheetToothSerializer(rows, many=True).data)

    # -----------------------------------------------------------
    # Products
    # -----------------------------------------------------------
    @extend_schema(tags=["Worksheets"], request=WorksheetProductInputSerializer)
    @action(detail=True, methods=["post"])
    def products(self, request, pk=None):
        ws = self.get_object()
        ser = WorksheetProductInputSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        try:
            line = worksheet_services.add_product(ws, user=request.user, **ser.validated_data)
        except ValueError as e:
            raise domain_error(e, "products")
        return Response(WorksheetProductSerializer(line).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Worksheets"])
    @action(detail=True, methods=["delete"], url_path=r"products/(?P<line_id>\d+)")
    def remove_product(self, request, pk=None, line_id=None):
        ws = self.get_object()
        line = get_object_or_404(WorksheetProduct, pk=line_id, worksheet=ws)
        try:
            worksheet_services.remove_product(line, user=request.user)
        except ValueError as e:
            raise domain_error(e, "products")
        return Response(status=status.HTTP_204_NO_CONTENT)

    # -----------------------------------------------------------
    # Materials
    # -----------------------------------------------------------
    @extend_schema(tags=["Worksheets"], request=WorksheetMaterialInputSerializer)
    @action(detail=True, methods=["post"])
    def materials(self, request, pk=None):
        ws = self.get_object()
        ser = WorksheetMaterialInputSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        try:
            line = worksheet_services.add_material(ws, user=request.user, **ser.validated_data)
        except (ValueError, ArithmeticError) as e:
            raise domain_error(e, "materials")
        return Response(WorksheetMaterialSerializer(line).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Worksheets"])
    @action(detail=True, methods=["delete"], url_path=r"materials/(?P<line_id>\d+)")
    def remove_material(self, request, pk=None, line_id=None):
        ws = self.get_object()
        line = get_object_or_404(WorksheetMaterial, pk=line_id, worksheet=ws)
        try:
            worksheet_services.remove_material(line, user=request.user)
        except ValueError as e:
            raise domain_error(e, "materials")
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(tags=["Worksheets"])
    @action(detail=True, methods=["get"])
    def traceability(self, request, pk=None):
        ws = self.get_object()
        return Response(
            {
                "worksheet_id": ws.pk,
                "worksheet_number": ws.worksheet_number,
                "materials": worksheet_traceability(ws),
            }
        )


# ===============================================================
# Roles
# ===============================================================
class UserRoleViewSet(AuditLogMixin, viewsets.ModelViewSet):
    queryset = UserRole.objects.select_related("user").all()
    serializer_class = UserRoleSerializer
    permission_classes = [IsLabAdmin]


# ===============================================================
# Audit logs (READ-ONLY)
# ===============================================================
class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.select_related("user").all()
    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated]
    filterset_class = AuditLogFilter


# ===============================================================
# Laboratory settings
# ===============================================================
class BankAccountViewSet(AuditLogMixin, viewsets.ModelViewSet):
    queryset = BankAccount.objects.all()
    serializer_class = BankAccountSerializer
    permission_classes = [IsLabAdmin]

    @extend_schema(tags=["Settings"])
    @action(detail=True, methods=["post"], url_path="set-primary")
    def set_primary(self, request, pk=None):
        account = set_primary_bank_account(self.get_object(), user=request.user)
        return Response(BankAccountSerializer(account).data)


class LabConfigurationView(APIView):
    """
    GET/PUT the single laboratory profile used on Annex XIII statements.
    """
    permission_classes = [IsLabAdmin]

    @extend_schema(tags=["Settings"], responses=LabConfigurationSerializer)
    def get(self, request):
        lab = LabConfiguration.load()
        if lab is None:
            return Response({"detail": "Laboratory is not configured."}, status=status.HTTP_404_NOT_FOUND)
        return Response(LabConfigurationSerializer(lab).data)

    @extend_schema(tags=["Settings"], request=LabConfigurationSerializer, responses=LabConfigurationSerializer)
    def put(self, request):
        _require_auth(request)
        lab = LabConfiguration.load()
        ser = LabConfigurationSerializer(lab, data=request.data, partial=lab is not None)
        ser.is_valid(raise_exception=True)
        with transaction.atomic():
            lab = ser.save()
        log_action(AuditAction.UPDATE, lab, user=request.user, details={"fields": sorted(ser.validated_data)})
        return Response(ser.data)

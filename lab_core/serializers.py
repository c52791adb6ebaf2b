from __future__ import annotations

from typing import Any, Dict, List

from django.contrib.auth import get_user_model
from rest_framework import serializers

from .models import (
    AuditLog,
    BankAccount,
    Dentist,
    Document,
    Invoice,
    InvoiceLineItem,
    LabConfiguration,
    Material,
    MaterialLot,
    Order,
    Product,
    ProductPriceHistory,
    QualityControl,
    UserRole,
    WorkSheet,
    WorksheetMaterial,
    WorksheetProduct,
    WorksheetTooth,
    WorkflowTransition,
)
from .dental.fdi import tooth_name
from .workflows import allowed_next_states

User = get_user_model()


# ===============================================================
# Helpers
# ===============================================================

class ImmutableFieldsMixin:
    """
    Blocks updates to selected fields if they appear in incoming validated data.
    """
    immutable_fields: tuple[str, ...] = ()

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        if self.instance is not None and self.immutable_fields:
            for field in self.immutable_fields:
                if field in attrs:
                    raise serializers.ValidationError(
                        {field: "This field is immutable."}
                    )
        return super().validate(attrs)


class UserSlimSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ("id", "username", "email")
        read_only_fields = fields


# ===============================================================
# Dentists / products
# ===============================================================

class DentistSerializer(serializers.ModelSerializer):
    class Meta:
        model = Dentist
        fields = (
            "id",
            "clinic_name",
            "dentist_name",
            "license_number",
            "email",
            "phone",
            "address",
            "city",
            "postal_code",
            "country",
            "tax_number",
            "payment_terms",
            "notes",
            "is_active",
            "created_at",
            "updated_at",
        )
        read_only_fields = ("id", "created_at", "updated_at")


class ProductPriceHistorySerializer(serializers.ModelSerializer):
    created_by = UserSlimSerializer(read_only=True)

    class Meta:
        model = ProductPriceHistory
        fields = ("id", "price", "effective_from", "effective_to", "reason", "created_by")
        read_only_fields = fields


class ProductSerializer(ImmutableFieldsMixin, serializers.ModelSerializer):
    # Price changes go through /products/<id>/change-price/ to keep history
    immutable_fields = ("current_price",)

    class Meta:
        model = Product
        fields = (
            "id",
            "code",
            "name",
            "description",
            "category",
            "current_price",
            "unit",
            "is_active",
            "created_at",
            "updated_at",
        )
        read_only_fields = ("id", "created_at", "updated_at")


class PriceChangeSerializer(serializers.Serializer):
    price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    reason = serializers.CharField(required=False, allow_blank=True, default="")


# ===============================================================
# Materials / lots
# ===============================================================

class MaterialSerializer(serializers.ModelSerializer):
    class Meta:
        model = Material
        fields = (
            "id",
            "code",
            "name",
            "type",
            "manufacturer",
            "description",
            "biocompatible",
            "iso10993_cert",
            "ce_marked",
            "ce_number",
            "unit",
            "is_active",
            "created_at",
            "updated_at",
        )
        read_only_fields = ("id", "created_at", "updated_at")


class MaterialLotSerializer(ImmutableFieldsMixin, serializers.ModelSerializer):
    material_code = serializers.CharField(source="material.code", read_only=True)
    material_name = serializers.CharField(source="material.name", read_only=True)

    immutable_fields = ("material", "lot_number", "quantity_received")

    class Meta:
        model = MaterialLot
        fields = (
            "id",
            "material",
            "material_code",
            "material_name",
            "lot_number",
            "arrival_date",
            "expiry_date",
            "supplier_name",
            "quantity_received",
            "quantity_available",
            "status",
            "notes",
            "created_at",
            "updated_at",
        )
        read_only_fields = (
            "id",
            "material_code",
            "material_name",
            "quantity_available",
            "created_at",
            "updated_at",
        )


class StockArrivalSerializer(serializers.Serializer):
    material = serializers.PrimaryKeyRelatedField(queryset=Material.objects.all())
    lot_number = serializers.CharField(max_length=100)
    quantity_received = serializers.DecimalField(max_digits=10, decimal_places=3)
    expiry_date = serializers.DateField(required=False, allow_null=True)
    supplier_name = serializers.CharField(required=False, allow_blank=True, default="")
    arrival_date = serializers.DateTimeField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class WorksheetProductInputSerializer(serializers.Serializer):
    product = serializers.PrimaryKeyRelatedField(queryset=Product.objects.all())
    quantity = serializers.IntegerField(required=False, default=1)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class WorksheetMaterialInputSerializer(serializers.Serializer):
    material = serializers.PrimaryKeyRelatedField(queryset=Material.objects.all())
    material_lot = serializers.PrimaryKeyRelatedField(
        queryset=MaterialLot.objects.all(), required=False, allow_null=True
    )
    quantity_planned = serializers.DecimalField(max_digits=10, decimal_places=3)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


# ===============================================================
# Orders
# ===============================================================

class OrderSerializer(ImmutableFieldsMixin, serializers.ModelSerializer):
    dentist_name = serializers.CharField(source="dentist.dentist_name", read_only=True)
    created_by = UserSlimSerializer(read_only=True)
    active_worksheet = serializers.SerializerMethodField()

    immutable_fields = ("dentist",)

    class Meta:
        model = Order
        fields = (
            "id",
            "order_number",
            "dentist",
            "dentist_name",
            "order_date",
            "due_date",
            "status",
            "priority",
            "patient_name",
            "notes",
            "active_worksheet",
            "created_by",
            "created_at",
            "updated_at",
        )
        read_only_fields = (
            "id",
            "order_number",
            "dentist_name",
            "order_date",
            "status",
            "active_worksheet",
            "created_by",
            "created_at",
            "updated_at",
        )

    def get_active_worksheet(self, obj: Order):
        ws = obj.active_worksheet
        return {"id": ws.pk, "worksheet_number": ws.worksheet_number, "status": ws.status} if ws else None


# ===============================================================
# Worksheets
# ===============================================================

class WorksheetToothSerializer(serializers.ModelSerializer):
    name = serializers.SerializerMethodField()

    class Meta:
        model = WorksheetTooth
        fields = ("id", "tooth_number", "name", "work_type", "shade", "notes")
        read_only_fields = ("id", "name")

    def get_name(self, obj: WorksheetTooth) -> str:
        try:
            return tooth_name(obj.tooth_number)
        except ValueError:
            return ""


class WorksheetProductSerializer(serializers.ModelSerializer):
    product_code = serializers.CharField(source="product.code", read_only=True)
    product_name = serializers.CharField(source="product.name", read_only=True)
    line_total = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = WorksheetProduct
        fields = (
            "id",
            "product",
            "product_code",
            "product_name",
            "quantity",
            "price_at_selection",
            "line_total",
            "notes",
        )
        read_only_fields = ("id", "product_code", "product_name", "price_at_selection", "line_total")


class WorksheetMaterialSerializer(serializers.ModelSerializer):
    material_code = serializers.CharField(source="material.code", read_only=True)
    material_name = serializers.CharField(source="material.name", read_only=True)
    lot_number = serializers.CharField(source="material_lot.lot_number", read_only=True, default=None)

    class Meta:
        model = WorksheetMaterial
        fields = (
            "id",
            "material",
            "material_code",
            "material_name",
            "material_lot",
            "lot_number",
            "quantity_planned",
            "quantity_used",
            "consumed_at",
            "notes",
        )
        read_only_fields = (
            "id",
            "material_code",
            "material_name",
            "lot_number",
            "quantity_used",
            "consumed_at",
        )


class WorkSheetSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source="order.order_number", read_only=True)
    dentist_name = serializers.CharField(source="dentist.dentist_name", read_only=True)
    teeth = WorksheetToothSerializer(many=True, read_only=True)
    products = WorksheetProductSerializer(many=True, read_only=True)
    materials = WorksheetMaterialSerializer(many=True, read_only=True)
    created_by = UserSlimSerializer(read_only=True)
    voided_by = UserSlimSerializer(read_only=True)

    allowed_next_states = serializers.SerializerMethodField()

    class Meta:
        model = WorkSheet
        fields = (
            "id",
            "worksheet_number",
            "revision",
            "order",
            "order_number",
            "dentist",
            "dentist_name",
            "patient_name",
            "status",
            "allowed_next_states",
            "device_description",
            "intended_use",
            "manufacture_date",
            "technical_notes",
            "qc_notes",
            "completed_at",
            "void_reason",
            "voided_at",
            "voided_by",
            "teeth",
            "products",
            "materials",
            "created_by",
            "created_at",
            "updated_at",
        )
        read_only_fields = (
            "id",
            "worksheet_number",
            "revision",
            "order_number",
            "dentist",
            "dentist_name",
            "status",
            "allowed_next_states",
            "qc_notes",
            "completed_at",
            "void_reason",
            "voided_at",
            "voided_by",
            "teeth",
            "products",
            "materials",
            "created_by",
            "created_at",
            "updated_at",
        )

    def get_allowed_next_states(self, obj: WorkSheet) -> List[str]:
        return allowed_next_states(obj.status)


class WorkflowTransitionSerializer(serializers.ModelSerializer):
    performed_by = UserSlimSerializer(read_only=True)

    class Meta:
        model = WorkflowTransition
        fields = ("id", "kind", "object_id", "from_status", "to_status", "notes", "performed_by", "created_at")
        read_only_fields = fields


# ===============================================================
# Quality control
# ===============================================================

class QualityControlSerializer(serializers.ModelSerializer):
    inspector = UserSlimSerializer(read_only=True)
    worksheet_number = serializers.CharField(source="worksheet.worksheet_number", read_only=True)

    class Meta:
        model = QualityControl
        fields = (
            "id",
            "worksheet",
            "worksheet_number",
            "inspector",
            "inspection_date",
            "result",
            "aesthetics",
            "fit",
            "occlusion",
            "shade",
            "margins",
            "notes",
            "action_required",
            "emdn_code",
            "risk_class",
            "annex_i_deviations",
            "document_version",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


# ===============================================================
# Billing
# ===============================================================

class InvoiceLineItemSerializer(serializers.ModelSerializer):
    worksheet_number = serializers.CharField(source="worksheet.worksheet_number", read_only=True, default=None)

    class Meta:
        model = InvoiceLineItem
        fields = (
            "id",
            "position",
            "worksheet",
            "worksheet_number",
            "product",
            "description",
            "quantity",
            "unit_price",
            "total_price",
        )
        read_only_fields = fields


class InvoiceSerializer(serializers.ModelSerializer):
    dentist_name = serializers.CharField(source="dentist.dentist_name", read_only=True)
    line_items = InvoiceLineItemSerializer(many=True, read_only=True)
    created_by = UserSlimSerializer(read_only=True)

    class Meta:
        model = Invoice
        fields = (
            "id",
            "invoice_number",
            "dentist",
            "dentist_name",
            "worksheets",
            "invoice_date",
            "due_date",
            "subtotal",
            "discount_rate",
            "discount_amount",
            "tax_rate",
            "tax_amount",
            "total_amount",
            "payment_status",
            "is_draft",
            "payment_reference",
            "payment_method",
            "paid_at",
            "finalized_at",
            "notes",
            "line_items",
            "created_by",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class CustomLineSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=255)
    quantity = serializers.DecimalField(max_digits=10, decimal_places=2, default=1)
    unit_price = serializers.DecimalField(max_digits=10, decimal_places=2)


class InvoiceLineInputSerializer(CustomLineSerializer):
    product = serializers.PrimaryKeyRelatedField(queryset=Product.objects.all(), required=False, allow_null=True)


class InvoiceCreateSerializer(serializers.Serializer):
    worksheets = serializers.PrimaryKeyRelatedField(queryset=WorkSheet.objects.all(), many=True, required=False)
    dentist = serializers.PrimaryKeyRelatedField(queryset=Dentist.objects.all(), required=False, allow_null=True)
    custom_items = CustomLineSerializer(many=True, required=False)
    invoice_date = serializers.DateField(required=False, allow_null=True)
    tax_rate = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, allow_null=True)
    discount_rate = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, default=0)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class PaymentUpdateSerializer(serializers.Serializer):
    payment_status = serializers.CharField()
    payment_method = serializers.CharField(required=False, allow_blank=True, default="")
    paid_at = serializers.DateTimeField(required=False, allow_null=True)


class BankAccountSerializer(serializers.ModelSerializer):
    class Meta:
        model = BankAccount
        fields = (
            "id",
            "bank_name",
            "iban",
            "swift_bic",
            "account_holder",
            "account_type",
            "is_primary",
            "display_order",
            "is_active",
            "notes",
            "created_at",
            "updated_at",
        )
        read_only_fields = ("id", "created_at", "updated_at")


class LabConfigurationSerializer(serializers.ModelSerializer):
    class Meta:
        model = LabConfiguration
        fields = (
            "id",
            "lab_name",
            "address",
            "city",
            "postal_code",
            "country",
            "phone",
            "email",
            "website",
            "tax_id",
            "registration_number",
            "responsible_person_name",
            "responsible_person_title",
            "responsible_person_license",
            "responsible_person_email",
            "updated_at",
        )
        read_only_fields = ("id", "updated_at")


# ===============================================================
# Documents
# ===============================================================

class DocumentSerializer(serializers.ModelSerializer):
    worksheet_number = serializers.CharField(source="worksheet.worksheet_number", read_only=True, default=None)
    generated_by = UserSlimSerializer(read_only=True)

    class Meta:
        model = Document
        fields = (
            "id",
            "type",
            "document_number",
            "worksheet",
            "worksheet_number",
            "invoice",
            "title",
            "file_name",
            "payload",
            "generated_at",
            "generated_by",
            "retention_until",
        )
        read_only_fields = fields


# ===============================================================
# UserRole / AuditLog
# ===============================================================

class UserRoleSerializer(serializers.ModelSerializer):
    user_username = serializers.CharField(source="user.username", read_only=True)

    class Meta:
        model = UserRole
        fields = (
            "id",
            "user",
            "user_username",
            "role",
            "created_at",
            "updated_at",
        )
        read_only_fields = (
            "id",
            "user_username",
            "created_at",
            "updated_at",
        )


class AuditLogSerializer(serializers.ModelSerializer):
    user_username = serializers.CharField(source="user.username", read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = (
            "id",
            "user",
            "user_username",
            "action",
            "entity_type",
            "entity_id",
            "details",
            "created_at",
        )
        read_only_fields = fields

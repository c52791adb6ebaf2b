# lab_core/filters.py
import django_filters as df

from .models import AuditLog, Dentist, Invoice, Material, MaterialLot, Order, Product, WorkSheet


class DentistFilter(df.FilterSet):
    clinic_name = df.CharFilter(field_name="clinic_name", lookup_expr="icontains")
    dentist_name = df.CharFilter(field_name="dentist_name", lookup_expr="icontains")
    city = df.CharFilter(field_name="city", lookup_expr="icontains")

    class Meta:
        model = Dentist
        fields = ["clinic_name", "dentist_name", "city", "is_active"]


class ProductFilter(df.FilterSet):
    name = df.CharFilter(field_name="name", lookup_expr="icontains")
    code = df.CharFilter(field_name="code", lookup_expr="icontains")

    class Meta:
        model = Product
        fields = ["name", "code", "category", "is_active"]


class MaterialFilter(df.FilterSet):
    name = df.CharFilter(field_name="name", lookup_expr="icontains")
    manufacturer = df.CharFilter(field_name="manufacturer", lookup_expr="icontains")

    class Meta:
        model = Material
        fields = ["name", "type", "manufacturer", "ce_marked", "biocompatible", "is_active"]


class MaterialLotFilter(df.FilterSet):
    material = df.NumberFilter(field_name="material_id")
    lot_number = df.CharFilter(field_name="lot_number", lookup_expr="icontains")
    expiry_date = df.DateFromToRangeFilter()

    class Meta:
        model = MaterialLot
        fields = ["material", "lot_number", "status", "expiry_date"]


class OrderFilter(df.FilterSet):
    dentist = df.NumberFilter(field_name="dentist_id")
    order_number = df.CharFilter(field_name="order_number", lookup_expr="icontains")
    patient_name = df.CharFilter(field_name="patient_name", lookup_expr="icontains")
    due_date = df.DateFromToRangeFilter()

    class Meta:
        model = Order
        fields = ["dentist", "order_number", "patient_name", "status", "priority", "due_date"]


class WorkSheetFilter(df.FilterSet):
    order = df.NumberFilter(field_name="order_id")
    dentist = df.NumberFilter(field_name="dentist_id")
    worksheet_number = df.CharFilter(field_name="worksheet_number", lookup_expr="icontains")
    patient_name = df.CharFilter(field_name="patient_name", lookup_expr="icontains")
    created_at = df.DateFromToRangeFilter()

    class Meta:
        model = WorkSheet
        fields = ["order", "dentist", "worksheet_number", "patient_name", "status", "created_at"]


class InvoiceFilter(df.FilterSet):
    dentist = df.NumberFilter(field_name="dentist_id")
    invoice_number = df.CharFilter(field_name="invoice_number", lookup_expr="icontains")
    invoice_date = df.DateFromToRangeFilter()
    due_date = df.DateFromToRangeFilter()

    class Meta:
        model = Invoice
        fields = ["dentist", "invoice_number", "payment_status", "is_draft", "invoice_date", "due_date"]


class AuditLogFilter(df.FilterSet):
    entity_type = df.CharFilter(field_name="entity_type", lookup_expr="iexact")
    created_at = df.DateFromToRangeFilter()

    class Meta:
        model = AuditLog
        fields = ["action", "entity_type", "entity_id", "user", "created_at"]

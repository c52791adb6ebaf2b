# lab_core/admin.py

from django.contrib import admin

from .models import (
    AuditLog,
    BankAccount,
    Dentist,
    Document,
    Invoice,
    InvoiceLineItem,
    LabConfiguration,
    LotConsumption,
    Material,
    MaterialLot,
    Order,
    Product,
    ProductPriceHistory,
    QualityControl,
    SystemConfig,
    UserRole,
    WorkflowTransition,
    WorkSheet,
    WorksheetMaterial,
    WorksheetProduct,
    WorksheetTooth,
)


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


# =============================================================
# Workflow transitions / audit (READ-ONLY)
# =============================================================

@admin.register(WorkflowTransition)
class WorkflowTransitionAdmin(ReadOnlyAdmin):
    list_display = ("kind", "object_id", "from_status", "to_status", "performed_by", "created_at")
    list_filter = ("kind", "from_status", "to_status")
    search_fields = ("object_id", "performed_by__username", "notes")
    ordering = ("-created_at",)


@admin.register(AuditLog)
class AuditLogAdmin(ReadOnlyAdmin):
    list_display = ("action", "entity_type", "entity_id", "user", "created_at")
    list_filter = ("action", "entity_type")
    search_fields = ("entity_id", "user__username")
    ordering = ("-created_at",)


@admin.register(LotConsumption)
class LotConsumptionAdmin(ReadOnlyAdmin):
    list_display = ("lot", "worksheet_material", "quantity", "consumed_at", "reverted_at")
    list_filter = ("reverted_at",)


# =============================================================
# Settings / roles
# =============================================================

@admin.register(UserRole)
class UserRoleAdmin(admin.ModelAdmin):
    list_display = ("user", "role", "created_at")
    list_filter = ("role",)
    search_fields = ("user__username",)


@admin.register(LabConfiguration)
class LabConfigurationAdmin(admin.ModelAdmin):
    list_display = ("lab_name", "city", "responsible_person_name")


@admin.register(BankAccount)
class BankAccountAdmin(admin.ModelAdmin):
    list_display = ("bank_name", "iban", "is_primary", "is_active")


admin.site.register(SystemConfig)


# =============================================================
# Catalog / inventory
# =============================================================

@admin.register(Dentist)
class DentistAdmin(admin.ModelAdmin):
    list_display = ("dentist_name", "clinic_name", "city", "payment_terms", "is_active")
    list_filter = ("is_active",)
    search_fields = ("dentist_name", "clinic_name", "email")


class PriceHistoryInline(admin.TabularInline):
    model = ProductPriceHistory
    extra = 0
    readonly_fields = ("price", "effective_from", "effective_to", "reason", "created_by")
    can_delete = False


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "category", "current_price", "is_active")
    list_filter = ("category", "is_active")
    search_fields = ("code", "name")
    inlines = [PriceHistoryInline]

    def get_readonly_fields(self, request, obj=None):
        # Price changes go through Product.change_price once the product exists.
        return ("current_price",) if obj else ()


@admin.register(Material)
class MaterialAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "type", "manufacturer", "is_active")
    list_filter = ("type", "is_active")
    search_fields = ("code", "name")


@admin.register(MaterialLot)
class MaterialLotAdmin(admin.ModelAdmin):
    list_display = ("lot_number", "material", "arrival_date", "expiry_date", "quantity_available", "status")
    list_filter = ("status", "material")
    search_fields = ("lot_number", "material__code")

    def get_readonly_fields(self, request, obj=None):
        # Stock moves only through arrivals and the consumption ledger.
        return ("material", "lot_number", "quantity_received", "quantity_available") if obj else ()


# =============================================================
# Orders / worksheets
# =============================================================

@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("order_number", "dentist", "status", "priority", "due_date")
    list_filter = ("status", "priority")
    search_fields = ("order_number", "patient_name")
    readonly_fields = ("order_number", "status")


class ToothInline(admin.TabularInline):
    model = WorksheetTooth
    extra = 0


class ProductLineInline(admin.TabularInline):
    model = WorksheetProduct
    extra = 0


class MaterialLineInline(admin.TabularInline):
    model = WorksheetMaterial
    extra = 0
    readonly_fields = ("quantity_used", "consumed_at")


@admin.register(WorkSheet)
class WorkSheetAdmin(admin.ModelAdmin):
    list_display = ("worksheet_number", "order", "dentist", "status", "created_at")
    list_filter = ("status",)
    search_fields = ("worksheet_number", "patient_name")
    # Status moves only through the workflow API.
    readonly_fields = ("worksheet_number", "revision", "status", "completed_at", "voided_at", "voided_by")
    inlines = [ToothInline, ProductLineInline, MaterialLineInline]


@admin.register(QualityControl)
class QualityControlAdmin(admin.ModelAdmin):
    list_display = ("worksheet", "result", "inspector", "inspection_date")
    list_filter = ("result",)


# =============================================================
# Billing / documents
# =============================================================

class InvoiceLineInline(admin.TabularInline):
    model = InvoiceLineItem
    extra = 0


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ("invoice_number", "dentist", "invoice_date", "total_amount", "payment_status", "is_draft")
    list_filter = ("payment_status", "is_draft")
    search_fields = ("invoice_number", "dentist__dentist_name")
    readonly_fields = (
        "invoice_number",
        "subtotal",
        "discount_amount",
        "tax_amount",
        "total_amount",
        "finalized_at",
    )
    inlines = [InvoiceLineInline]


@admin.register(Document)
class DocumentAdmin(ReadOnlyAdmin):
    list_display = ("document_number", "type", "worksheet", "generated_at", "retention_until")
    list_filter = ("type",)
    search_fields = ("document_number",)

# lab_core/urls.py

from django.urls import path, include
from rest_framework.routers import DefaultRouter

# -------------------------------------------------
# Core API ViewSets
# -------------------------------------------------
from .views import (
    AuditLogViewSet,
    BankAccountViewSet,
    DentistViewSet,
    HealthCheckView,
    LabConfigurationView,
    MaterialLotViewSet,
    MaterialViewSet,
    OrderViewSet,
    ProductViewSet,
    UserRoleViewSet,
    WhoAmIView,
    WorkSheetViewSet,
)
from .views_billing import InvoiceViewSet
from .views_documents import DocumentViewSet, GenerateAnnexView

# -------------------------------------------------
# Worksheet workflow
# -------------------------------------------------
from .views_workflow_api import (
    WorkflowDefinitionView,
    WorksheetAllowedView,
    WorksheetRollbackView,
    WorksheetTimelineView,
    WorksheetTransitionView,
    WorksheetVoidView,
)

# -------------------------------------------------
# Inventory, QC, dental chart
# -------------------------------------------------
from .views_inventory import (
    AvailableMaterialsView,
    DepletedLotsView,
    ExpiredLotsView,
    ExpiringLotsView,
    InventoryOverviewView,
    LotTraceabilityView,
    LowStockView,
)
from .views_quality import WorksheetQualityControlView
from .views_teeth import DentalChartView, ToothDetailView, ToothSelectionValidateView


app_name = "lab_core"

# -------------------------------------------------
# Router (CRUD APIs)
# -------------------------------------------------
router = DefaultRouter()
router.register(r"dentists", DentistViewSet, basename="dentist")
router.register(r"products", ProductViewSet, basename="product")
router.register(r"materials", MaterialViewSet, basename="material")
router.register(r"lots", MaterialLotViewSet, basename="lot")
router.register(r"orders", OrderViewSet, basename="order")
router.register(r"worksheets", WorkSheetViewSet, basename="worksheet")
router.register(r"invoices", InvoiceViewSet, basename="invoice")
router.register(r"documents", DocumentViewSet, basename="document")
router.register(r"bank-accounts", BankAccountViewSet, basename="bankaccount")
router.register(r"roles", UserRoleViewSet, basename="role")
router.register(r"audit-logs", AuditLogViewSet, basename="auditlog")


urlpatterns = [
    # ============================================================
    # System / identity / settings
    # ============================================================
    path("health/", HealthCheckView.as_view(), name="health_check"),
    path("whoami/", WhoAmIView.as_view(), name="whoami"),
    path("lab-config/", LabConfigurationView.as_view(), name="lab-config"),

    # ============================================================
    # Worksheet workflow
    # ============================================================
    path("workflows/worksheets/definition/", WorkflowDefinitionView.as_view(), name="workflow-definition"),
    path("workflows/worksheets/<int:pk>/allowed/", WorksheetAllowedView.as_view(), name="workflow-allowed"),
    path("workflows/worksheets/<int:pk>/transition/", WorksheetTransitionView.as_view(), name="workflow-transition"),
    path("workflows/worksheets/<int:pk>/void/", WorksheetVoidView.as_view(), name="workflow-void"),
    path("workflows/worksheets/<int:pk>/rollback/", WorksheetRollbackView.as_view(), name="workflow-rollback"),
    path("workflows/worksheets/<int:pk>/timeline/", WorksheetTimelineView.as_view(), name="workflow-timeline"),

    # ============================================================
    # Quality control / MDR documents
    # ============================================================
    path("worksheets/<int:pk>/quality-control/", WorksheetQualityControlView.as_view(), name="worksheet-qc"),
    path("worksheets/<int:pk>/annex-xiii/", GenerateAnnexView.as_view(), name="worksheet-annex-xiii"),

    # ============================================================
    # Inventory
    # ============================================================
    path("inventory/overview/", InventoryOverviewView.as_view(), name="inventory-overview"),
    path("inventory/available/", AvailableMaterialsView.as_view(), name="inventory-available"),
    path("inventory/expiring/", ExpiringLotsView.as_view(), name="inventory-expiring"),
    path("inventory/expired/", ExpiredLotsView.as_view(), name="inventory-expired"),
    path("inventory/depleted/", DepletedLotsView.as_view(), name="inventory-depleted"),
    path("inventory/low-stock/", LowStockView.as_view(), name="inventory-low-stock"),
    path("inventory/traceability/<str:lot_number>/", LotTraceabilityView.as_view(), name="inventory-traceability"),

    # ============================================================
    # Dental chart (FDI)
    # ============================================================
    path("teeth/chart/", DentalChartView.as_view(), name="teeth-chart"),
    path("teeth/validate/", ToothSelectionValidateView.as_view(), name="teeth-validate"),
    path("teeth/<str:tooth>/", ToothDetailView.as_view(), name="tooth-detail"),

    # ============================================================
    # Core CRUD API
    # ============================================================
    path("", include(router.urls)),
]

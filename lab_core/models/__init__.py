# lab_core/models/__init__.py

from .core import (
    TimeStampedModel,
    Role,
    UserRole,
    AuditAction,
    AuditLog,
    SystemConfig,
    LabConfiguration,
    BankAccount,
    WorkflowTransition,
)
from .catalog import Dentist, ProductCategory, Product, ProductPriceHistory
from .inventory import (
    MaterialType,
    Material,
    LotStatus,
    MaterialLot,
    WorksheetMaterial,
    LotConsumption,
)
from .orders import (
    OrderStatus,
    OrderPriority,
    Order,
    WorksheetStatus,
    WorkSheet,
    WorksheetTooth,
    WorksheetProduct,
    QCResult,
    QualityControl,
)
from .billing import PaymentStatus, Invoice, InvoiceLineItem
from .documents import DocumentType, Document

__all__ = [
    "TimeStampedModel",
    "Role",
    "UserRole",
    "AuditAction",
    "AuditLog",
    "SystemConfig",
    "LabConfiguration",
    "BankAccount",
    "WorkflowTransition",
    "Dentist",
    "ProductCategory",
    "Product",
    "ProductPriceHistory",
    "MaterialType",
    "Material",
    "LotStatus",
    "MaterialLot",
    "WorksheetMaterial",
    "LotConsumption",
    "OrderStatus",
    "OrderPriority",
    "Order",
    "WorksheetStatus",
    "WorkSheet",
    "WorksheetTooth",
    "WorksheetProduct",
    "QCResult",
    "QualityControl",
    "PaymentStatus",
    "Invoice",
    "InvoiceLineItem",
    "DocumentType",
    "Document",
]

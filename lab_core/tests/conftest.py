# lab_core/tests/conftest.py

from __future__ import annotations

import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Optional

import pytest
from django.contrib.auth import authenticate, get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from lab_core.models import (
    Dentist,
    LabConfiguration,
    Material,
    MaterialLot,
    Order,
    Product,
    UserRole,
    WorkSheet,
)


def _rand(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


class AuthAPIClient(APIClient):
    """
    Test client that uses force_authenticate for predictable DRF auth.
    """

    _user = None

    def login(self, username: str, password: str, **kwargs) -> bool:  # type: ignore[override]
        user = authenticate(username=username, password=password)
        if not user:
            return False
        self.force_authenticate(user=user)
        self._user = user
        return True

    def logout(self) -> None:  # type: ignore[override]
        # DO NOT call force_authenticate(user=None) here.
        # DRF's force_authenticate(user=None) calls self.logout() internally.
        super().logout()
        self.handler._force_user = None
        self.handler._force_token = None
        self._user = None


@pytest.fixture
def api_client() -> AuthAPIClient:
    return AuthAPIClient()


# ===============================================================
# Users with lab roles (password: pass123)
# ===============================================================
def _make_user(username: str, role: Optional[str] = None, email: str = ""):
    User = get_user_model()
    user, _ = User.objects.get_or_create(username=username, defaults={"email": email})
    user.set_password("pass123")
    user.save(update_fields=["password"])
    if role:
        UserRole.objects.get_or_create(user=user, role=role)
    return user


@pytest.fixture
def user_admin(db):
    return _make_user("admin", "ADMIN", "admin@lab.test")


@pytest.fixture
def user_technician(db):
    return _make_user("labtech", "TECHNICIAN", "tech@lab.test")


@pytest.fixture
def user_qc(db):
    return _make_user("inspector", "QC_INSPECTOR", "qc@lab.test")


@pytest.fixture
def user_invoicing(db):
    return _make_user("billing", "INVOICING", "billing@lab.test")


@pytest.fixture
def user_norole(db):
    return _make_user("visitor")


@pytest.fixture
def users(user_admin, user_technician, user_qc, user_invoicing):
    return {
        "admin": user_admin,
        "technician": user_technician,
        "qc": user_qc,
        "invoicing": user_invoicing,
    }


# ===============================================================
# Domain factories
# ===============================================================
@pytest.fixture
def dentist_factory(db) -> Callable[..., Dentist]:
    def _factory(**extra: Any) -> Dentist:
        kwargs = {
            "clinic_name": _rand("Clinic"),
            "dentist_name": "Dr. Ana Novak",
            "email": "ana@clinic.test",
            "phone": "+386 1 000 000",
            "address": "Trubarjeva 1",
            "city": "Ljubljana",
            "postal_code": "1000",
            "payment_terms": 30,
        }
        kwargs.update(extra)
        return Dentist.objects.create(**kwargs)

    return _factory


@pytest.fixture
def dentist(dentist_factory) -> Dentist:
    return dentist_factory()


@pytest.fixture
def product_factory(db) -> Callable[..., Product]:
    def _factory(**extra: Any) -> Product:
        kwargs = {
            "code": _rand("PRD"),
            "name": "Zirconia crown",
            "category": "CROWN",
            "current_price": Decimal("120.00"),
        }
        kwargs.update(extra)
        return Product.objects.create(**kwargs)

    return _factory


@pytest.fixture
def product(product_factory) -> Product:
    return product_factory()


@pytest.fixture
def material_factory(db) -> Callable[..., Material]:
    def _factory(**extra: Any) -> Material:
        kwargs = {
            "code": _rand("MAT"),
            "name": "Zirconia disc",
            "type": "CERAMIC",
            "manufacturer": "Ivoclar",
            "unit": "gram",
            "ce_number": "CE-0123",
        }
        kwargs.update(extra)
        return Material.objects.create(**kwargs)

    return _factory


@pytest.fixture
def material(material_factory) -> Material:
    return material_factory()


@pytest.fixture
def lot_factory(db) -> Callable[..., MaterialLot]:
    """
    Lots are created directly (not through stock arrival) so tests can
    place arrival/expiry dates anywhere, including the past.
    """

    def _factory(
        *,
        material: Material,
        quantity="100",
        days_ago: int = 0,
        expires_in: Optional[int] = 365,
        status: str = "AVAILABLE",
        **extra: Any,
    ) -> MaterialLot:
        qty = Decimal(str(quantity))
        expiry = None if expires_in is None else timezone.localdate() + timedelta(days=expires_in)
        kwargs = {
            "material": material,
            "lot_number": _rand("LOT"),
            "arrival_date": timezone.now() - timedelta(days=days_ago),
            "expiry_date": expiry,
            "quantity_received": qty,
            "quantity_available": qty,
            "status": status,
        }
        kwargs.update(extra)
        return MaterialLot.objects.create(**kwargs)

    return _factory


@pytest.fixture
def order_factory(db, dentist) -> Callable[..., Order]:
    from lab_core.services.worksheets import create_order

    def _factory(**extra: Any) -> Order:
        extra.setdefault("dentist", dentist)
        extra.setdefault("patient_name", "Janez Kranjski")
        return create_order(**extra)

    return _factory


@pytest.fixture
def order(order_factory) -> Order:
    return order_factory()


@pytest.fixture
def worksheet_factory(db, order_factory) -> Callable[..., WorkSheet]:
    """
    Worksheet placed directly in `status`, bypassing the workflow engine.
    """
    from lab_core.services.worksheets import create_worksheet

    def _factory(*, order: Optional[Order] = None, status: str = "DRAFT", **fields: Any) -> WorkSheet:
        ws = create_worksheet(order=order or order_factory(), **fields)
        if status != "DRAFT":
            WorkSheet.objects.filter(pk=ws.pk).update(status=status)
            ws.refresh_from_db()
        return ws

    return _factory


@pytest.fixture
def worksheet(worksheet_factory) -> WorkSheet:
    return worksheet_factory(
        device_description="Zirconia crown",
        intended_use="Single tooth restoration",
    )


@pytest.fixture
def lab_config(db) -> LabConfiguration:
    return LabConfiguration.objects.create(
        lab_name="Zobotehnika Test d.o.o.",
        address="Celovška 100",
        city="Ljubljana",
        postal_code="1000",
        tax_id="SI12345678",
        responsible_person_name="Marko Horvat",
        responsible_person_title="Dental technician",
        responsible_person_license="ZT-042",
    )


@pytest.fixture
def login(api_client):
    """
    login("admin") -> authenticated client for that fixture user.
    """

    def _login(username: str) -> AuthAPIClient:
        assert api_client.login(username=username, password="pass123") is True
        return api_client

    return _login

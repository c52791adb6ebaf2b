# lab_core/tests/test_write_guardrails.py

from datetime import timedelta
from decimal import Decimal

from django.contrib.auth.models import User
from django.core.exceptions import PermissionDenied
from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from lab_core.models import Dentist, Material, MaterialLot, Product, UserRole, WorkSheet
from lab_core.services.worksheets import create_order, create_worksheet


class WriteGuardrailTests(TestCase):
    """
    Server-controlled fields cannot be mutated after creation, either by
    validation (400) or permission (403), depending on the resource.
    """

    def setUp(self):
        self.client = APIClient()

        self.user = User.objects.create_user(username="labuser", password="pass")
        UserRole.objects.create(user=self.user, role="Technician")
        self.client.force_authenticate(user=self.user)

        self.dentist = Dentist.objects.create(
            clinic_name="Clinic A",
            dentist_name="Dr. A",
            email="a@clinic.test",
            phone="1",
            address="Street 1",
            city="Maribor",
            postal_code="2000",
        )
        self.other_dentist = Dentist.objects.create(
            clinic_name="Clinic B",
            dentist_name="Dr. B",
            email="b@clinic.test",
            phone="2",
            address="Street 2",
            city="Koper",
            postal_code="6000",
        )
        self.order = create_order(dentist=self.dentist, patient_name="P. One")
        self.worksheet = create_worksheet(order=self.order)

        self.material = Material.objects.create(code="ZR-1", name="Zirconia", type="ZIRCONIA", manufacturer="X")
        self.lot = MaterialLot.objects.create(
            material=self.material,
            lot_number="L-1",
            expiry_date=timezone.localdate() + timedelta(days=200),
            quantity_received=Decimal("50"),
            quantity_available=Decimal("50"),
        )

    # ---------------------------------------------------------
    # WORKSHEET GUARDRAILS
    # ---------------------------------------------------------
    def test_worksheet_status_cannot_be_patched(self):
        resp = self.client.patch(
            f"/lab/worksheets/{self.worksheet.id}/",
            {"status": "DELIVERED"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("status", resp.data)

        self.worksheet.refresh_from_db()
        self.assertEqual(self.worksheet.status, "DRAFT")

    def test_worksheet_number_cannot_be_patched(self):
        resp = self.client.patch(
            f"/lab/worksheets/{self.worksheet.id}/",
            {"worksheet_number": "DN-1"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("worksheet_number", resp.data)

    def test_model_save_guard_blocks_status_change(self):
        ws = WorkSheet.objects.get(pk=self.worksheet.pk)
        ws.status = "QC_APPROVED"
        with self.assertRaises(PermissionDenied):
            ws.save()

        ws.save(_workflow_bypass=True)
        ws.refresh_from_db()
        self.assertEqual(ws.status, "QC_APPROVED")

    def test_worksheet_create_rejects_server_fields(self):
        self.worksheet.delete()
        resp = self.client.post(
            "/lab/worksheets/",
            {"order": self.order.id, "status": "QC_APPROVED"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("status", resp.data)

    # ---------------------------------------------------------
    # ORDER GUARDRAILS
    # ---------------------------------------------------------
    def test_order_dentist_cannot_be_changed(self):
        resp = self.client.patch(
            f"/lab/orders/{self.order.id}/",
            {"dentist": self.other_dentist.id},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("dentist", resp.data)

    def test_order_status_cannot_be_patched(self):
        resp = self.client.patch(
            f"/lab/orders/{self.order.id}/",
            {"status": "INVOICED"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("status", resp.data)

    def test_order_notes_can_be_patched(self):
        resp = self.client.patch(
            f"/lab/orders/{self.order.id}/",
            {"notes": "Call before delivery"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["notes"], "Call before delivery")

    # ---------------------------------------------------------
    # STOCK GUARDRAILS
    # ---------------------------------------------------------
    def test_lot_quantity_cannot_be_rewritten(self):
        resp = self.client.patch(
            f"/lab/lots/{self.lot.id}/",
            {"quantity_available": "500"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("quantity_available", resp.data)

    def test_lot_can_be_recalled(self):
        resp = self.client.patch(
            f"/lab/lots/{self.lot.id}/",
            {"status": "RECALLED"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.lot.refresh_from_db()
        self.assertEqual(self.lot.status, "RECALLED")

    # ---------------------------------------------------------
    # ROLE GUARDRAILS
    # ---------------------------------------------------------
    def test_product_price_is_not_patchable(self):
        admin = User.objects.create_user(username="boss", password="pass")
        UserRole.objects.create(user=admin, role="ADMIN")
        product = Product.objects.create(code="CR-1", name="Crown", category="CROWN", current_price=Decimal("100"))
        self.client.force_authenticate(user=admin)

        resp = self.client.patch(f"/lab/products/{product.id}/", {"current_price": "1.00"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("current_price", resp.data)

    def test_technician_cannot_write_products(self):
        resp = self.client.post(
            "/lab/products/",
            {"code": "CR-2", "name": "Crown", "category": "CROWN", "current_price": "90.00"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)

    def test_inspector_cannot_edit_worksheets(self):
        inspector = User.objects.create_user(username="qc", password="pass")
        UserRole.objects.create(user=inspector, role="QC_INSPECTOR")
        self.client.force_authenticate(user=inspector)

        resp = self.client.patch(
            f"/lab/worksheets/{self.worksheet.id}/",
            {"technical_notes": "x"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)

    def test_audit_logs_are_read_only(self):
        resp = self.client.post("/lab/audit-logs/", {"action": "CREATE"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_405_METHOD_NOT_ALLOWED)

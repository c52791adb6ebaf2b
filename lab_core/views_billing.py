# lab_core/views_billing.py
from __future__ import annotations

from django.shortcuts import get_object_or_404

from drf_spectacular.utils import extend_schema
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from .billing import services as billing
from .filters import InvoiceFilter
from .mixins import domain_error
from .models import Invoice, InvoiceLineItem
from .permissions import IsRoleAllowedOrReadOnly
from .serializers import (
    InvoiceCreateSerializer,
    InvoiceLineInputSerializer,
    InvoiceLineItemSerializer,
    InvoiceSerializer,
    PaymentUpdateSerializer,
)


# ===============================================================
# Invoices
# ===============================================================
@extend_schema(tags=["Invoices"])
class InvoiceViewSet(
    mixins.CreateModelMixin,
    mixins.RetrieveModelMixin,
    mixins.ListModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    """
    Invoices are built by the billing service; there is no direct update.

    Lifecycle:
        POST   /lab/invoices/                      draft from QC-approved worksheets
        POST   /lab/invoices/<pk>/finalize/        number + deliver worksheets
        POST   /lab/invoices/<pk>/cancel/          revert worksheets to QC_APPROVED
        POST   /lab/invoices/<pk>/payment/         SENT / VIEWED / PAID / OVERDUE
    """
    queryset = (
        Invoice.objects.select_related("dentist", "created_by")
        .prefetch_related("line_items__worksheet", "worksheets")
        .all()
    )
    serializer_class = InvoiceSerializer
    permission_classes = [IsRoleAllowedOrReadOnly]
    write_roles = billing.INVOICE_ROLES
    filterset_class = InvoiceFilter

    def _respond(self, invoice, code=status.HTTP_200_OK):
        invoice = self.get_queryset().get(pk=invoice.pk)
        return Response(InvoiceSerializer(invoice).data, status=code)

    @extend_schema(request=InvoiceCreateSerializer, responses=InvoiceSerializer)
    def create(self, request, *args, **kwargs):
        ser = InvoiceCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        try:
            invoice = billing.create_invoice(
                worksheets=data.get("worksheets") or [],
                dentist=data.get("dentist"),
                custom_items=data.get("custom_items") or [],
                invoice_date=data.get("invoice_date"),
                tax_rate=data.get("tax_rate"),
                discount_rate=data.get("discount_rate") or 0,
                notes=data.get("notes") or "",
                user=request.user,
            )
        except ValueError as e:
            raise domain_error(e, "invoice")
        return self._respond(invoice, status.HTTP_201_CREATED)

    def perform_destroy(self, instance):
        billing.delete_invoice(instance, user=self.request.user)

    @action(detail=True, methods=["post"])
    def finalize(self, request, pk=None):
        invoice = billing.finalize_invoice(self.get_object(), user=request.user)
        return self._respond(invoice)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        invoice = billing.cancel_invoice(
            self.get_object(),
            user=request.user,
            reason=str((request.data or {}).get("reason") or ""),
        )
        return self._respond(invoice)

    @extend_schema(request=PaymentUpdateSerializer, responses=InvoiceSerializer)
    @action(detail=True, methods=["post"])
    def payment(self, request, pk=None):
        ser = PaymentUpdateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        invoice = billing.update_payment(
            self.get_object(),
            status=ser.validated_data["payment_status"],
            payment_method=ser.validated_data.get("payment_method") or "",
            paid_at=ser.validated_data.get("paid_at"),
            user=request.user,
        )
        return self._respond(invoice)

    @action(detail=True, methods=["post"])
    def send(self, request, pk=None):
        invoice = billing.mark_as_sent(self.get_object(), user=request.user)
        return self._respond(invoice)

    @extend_schema(request=InvoiceLineInputSerializer, responses=InvoiceLineItemSerializer)
    @action(detail=True, methods=["post"])
    def lines(self, request, pk=None):
        invoice = self.get_object()
        ser = InvoiceLineInputSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        try:
            line = billing.add_line_item(
                invoice,
                description=ser.validated_data["description"],
                quantity=ser.validated_data["quantity"],
                unit_price=ser.validated_data["unit_price"],
                product=ser.validated_data.get("product"),
                user=request.user,
            )
        except ValueError as e:
            raise domain_error(e, "lines")
        return Response(InvoiceLineItemSerializer(line).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["delete"], url_path=r"lines/(?P<line_id>\d+)")
    def remove_line(self, request, pk=None, line_id=None):
        invoice = self.get_object()
        line = get_object_or_404(InvoiceLineItem, pk=line_id, invoice=invoice)
        invoice = billing.remove_line_item(line, user=request.user)
        return self._respond(invoice)

    @action(detail=True, methods=["get"], url_path="payment-instructions")
    def payment_instructions(self, request, pk=None):
        return Response(billing.payment_instructions(self.get_object()))

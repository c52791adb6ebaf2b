# lab_core/views_documents.py
from __future__ import annotations

from django.http import HttpResponse
from django.shortcuts import get_object_or_404

from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .documents.annex import generate_annex_xiii, render_annex_text
from .models import Document, WorkSheet
from .serializers import DocumentSerializer
from .workflows.executor import require_any_role

DOCUMENT_ROLES = {"ADMIN", "QC_INSPECTOR", "TECHNICIAN"}


@extend_schema(tags=["Documents"])
class DocumentViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Document.objects.select_related("worksheet", "generated_by").all()
    serializer_class = DocumentSerializer
    permission_classes = [IsAuthenticated]
    filterset_fields = ["type", "worksheet"]

    @action(detail=True, methods=["get"])
    def download(self, request, pk=None):
        doc = self.get_object()
        response = HttpResponse(render_annex_text(doc), content_type="text/plain; charset=utf-8")
        response["Content-Disposition"] = f'attachment; filename="{doc.file_name or doc.document_number + ".txt"}"'
        return response


class GenerateAnnexView(APIView):
    """
    POST /lab/worksheets/<pk>/annex-xiii/

    Synchronous (re)generation; QC approval also queues it in the background.
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Documents"], responses=DocumentSerializer)
    def post(self, request, pk: int):
        require_any_role(request.user, DOCUMENT_ROLES, "You do not have the required role to generate documents.")
        ws = get_object_or_404(WorkSheet, pk=pk)
        doc = generate_annex_xiii(ws, user=request.user)
        return Response(DocumentSerializer(doc).data, status=status.HTTP_201_CREATED)

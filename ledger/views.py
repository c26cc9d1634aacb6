from datetime import datetime

from django.utils.dateparse import parse_date
from rest_framework import generics, status, viewsets
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.audit import create_audit_log_from_request
from common.pagination import LedgerHistoryPagination
from common.permissions import ReportingPasswordPermission
from core.views import OwnerScopedQuerysetMixin
from ledger import services
from ledger.models import BankBalanceEntry, DailyExpense
from ledger.serializers import (
    BankAdjustmentSerializer,
    BankBalanceEntrySerializer,
    DailyExpenseSerializer,
    ReconciliationReportSerializer,
)


def _balance_payload(owner):
    return {"balance": services.get_balance(owner)}


class BankBalanceView(APIView):
    permission_classes = [IsAuthenticated, ReportingPasswordPermission]

    def get(self, request):
        return Response(_balance_payload(request.user))


class BankBalanceAdjustView(APIView):
    permission_classes = [IsAuthenticated, ReportingPasswordPermission]

    def post(self, request):
        serializer = BankAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        before = services.get_balance(request.user)
        if data["type"] == BankBalanceEntry.EntryType.SET:
            entry = services.set_balance(request.user, data["balance"], data["notes"])
        else:
            entry = services.adjust_balance(request.user, data["amount"], data["type"], data["notes"])

        create_audit_log_from_request(
            request,
            action=f"bank_balance.{entry.entry_type}",
            entity="bank_balance_entry",
            entity_id=entry.id,
            before_snapshot={"balance": before},
            after_snapshot={"balance": entry.new_balance, "amount": entry.amount},
        )
        return Response(BankBalanceEntrySerializer(entry).data, status=status.HTTP_201_CREATED)


class BankBalanceHistoryView(generics.ListAPIView):
    serializer_class = BankBalanceEntrySerializer
    permission_classes = [IsAuthenticated, ReportingPasswordPermission]
    pagination_class = LedgerHistoryPagination

    def get_queryset(self):
        queryset = services.get_history(self.request.user)
        entry_type = self.request.query_params.get("type")
        if entry_type:
            queryset = queryset.filter(entry_type=entry_type)
        return queryset


class BankBalanceReconcileView(APIView):
    permission_classes = [IsAuthenticated, ReportingPasswordPermission]

    def get(self, request):
        report = services.reconcile(request.user)
        return Response(ReconciliationReportSerializer(report).data)


class DailyExpenseViewSet(OwnerScopedQuerysetMixin, viewsets.ModelViewSet):
    """Expense CRUD; every write goes through `ledger.services` so the bank history stays in step."""

    queryset = DailyExpense.objects.all()
    serializer_class = DailyExpenseSerializer
    permission_classes = [IsAuthenticated, ReportingPasswordPermission]

    def get_queryset(self):
        queryset = super().get_queryset().order_by("-date", "-timestamp")

        date = self.request.query_params.get("date")
        month = self.request.query_params.get("month")
        if date:
            try:
                parsed_date = parse_date(date)
            except ValueError:
                parsed_date = None
            if parsed_date is None:
                raise ValidationError({"date": "Date must use the YYYY-MM-DD format."})
            queryset = queryset.filter(date=parsed_date)
        if month:
            try:
                parsed = datetime.strptime(month, "%Y-%m").date()
            except ValueError:
                raise ValidationError({"month": "Month must use the YYYY-MM format."})
            queryset = queryset.filter(date__year=parsed.year, date__month=parsed.month)
        return queryset

    def _audit(self, *, action, instance_id, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=action,
            entity="daily_expense",
            entity_id=instance_id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )

    def perform_create(self, serializer):
        data = serializer.validated_data
        serializer.instance = services.add_expense(
            self.request.user,
            data["amount"],
            data["date"],
            data.get("notes", ""),
        )
        self._audit(action="daily_expense.create", instance_id=serializer.instance.id, after_snapshot=serializer.data)

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        data = serializer.validated_data
        serializer.instance = services.edit_expense(
            serializer.instance,
            amount=data.get("amount"),
            notes=data.get("notes"),
            date=data.get("date"),
        )
        self._audit(
            action="daily_expense.update",
            instance_id=serializer.instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=serializer.data,
        )

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        instance_id = instance.id
        services.delete_expense(instance)
        self._audit(action="daily_expense.delete", instance_id=instance_id, before_snapshot=before_snapshot)

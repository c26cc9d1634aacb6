from rest_framework import status, viewsets
from rest_framework.exceptions import NotFound
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.audit import create_audit_log_from_request
from common.permissions import ReportingPasswordPermission
from core.views import OwnerScopedQuerysetMixin
from shifts import services
from shifts.drafts import DraftStore
from shifts.models import ShiftRecord
from shifts.serializers import (
    DraftShiftSerializer,
    MachineAmountsSerializer,
    MachineSerializer,
    NotesSerializer,
    ShiftRecordSerializer,
    SnapshotUploadSerializer,
    StartShiftSerializer,
)


class DraftShiftAPIView(APIView):
    permission_classes = [IsAuthenticated]

    def draft_response(self, draft, status_code=status.HTTP_200_OK):
        return Response(DraftShiftSerializer(draft, context={"request": self.request}).data, status=status_code)

    def validated(self, serializer_class):
        serializer = serializer_class(data=self.request.data)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data


class DraftShiftView(DraftShiftAPIView):
    def get(self, request):
        draft = DraftStore.get(request.user)
        if draft is None:
            raise NotFound("No shift has been started.")
        return self.draft_response(draft)

    def delete(self, request):
        discarded = services.discard_shift(request.user)
        return Response({"discarded": discarded})


class StartShiftView(DraftShiftAPIView):
    def post(self, request):
        data = self.validated(StartShiftSerializer)
        draft = services.start_shift(request.user, data["employee_name"])
        return self.draft_response(draft, status.HTTP_201_CREATED)


class DraftMachinesView(DraftShiftAPIView):
    def post(self, request):
        data = self.validated(MachineSerializer)
        return self.draft_response(services.add_machine(request.user, data["label"]), status.HTTP_201_CREATED)

    def patch(self, request):
        data = self.validated(MachineAmountsSerializer)
        draft = services.set_machine_amounts(
            request.user,
            data["label"],
            amount_in=data.get("amount_in"),
            amount_out=data.get("amount_out"),
        )
        return self.draft_response(draft)


class DraftMachineDetailView(DraftShiftAPIView):
    def delete(self, request, label):
        return self.draft_response(services.remove_machine(request.user, label))


class DraftNotesView(DraftShiftAPIView):
    def patch(self, request):
        data = self.validated(NotesSerializer)
        return self.draft_response(services.set_notes(request.user, data["notes"]))


class DraftSnapshotView(DraftShiftAPIView):
    def post(self, request):
        data = self.validated(SnapshotUploadSerializer)
        draft = services.attach_snapshot(request.user, data["label"], data["image"])
        return self.draft_response(draft, status.HTTP_201_CREATED)


class FinalizeShiftView(DraftShiftAPIView):
    def post(self, request):
        return self.draft_response(services.begin_finalizing(request.user))


class ResumeShiftView(DraftShiftAPIView):
    def post(self, request):
        return self.draft_response(services.resume_editing(request.user))


class CloseShiftView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        record, created = services.close_shift(request.user)
        payload = ShiftRecordSerializer(record, context={"request": request}).data
        if not created:
            return Response(payload, status=status.HTTP_200_OK)

        create_audit_log_from_request(
            request,
            action="shift.close",
            entity="shift",
            entity_id=record.shift_id,
            after_snapshot={
                "total_in": record.total_in,
                "total_out": record.total_out,
                "profit_or_loss": record.profit_or_loss,
                "total_matched_amount": record.total_matched_amount,
                "net_impact": record.net_impact,
                "bank_entry": record.bank_entry_id,
            },
        )
        return Response(payload, status=status.HTTP_201_CREATED)


class ShiftRecordViewSet(OwnerScopedQuerysetMixin, viewsets.ReadOnlyModelViewSet):
    queryset = ShiftRecord.objects.prefetch_related("snapshots")
    serializer_class = ShiftRecordSerializer
    permission_classes = [IsAuthenticated, ReportingPasswordPermission]
    lookup_field = "shift_id"
    lookup_value_regex = "[^/]+"

    def get_queryset(self):
        queryset = super().get_queryset().order_by("-end_time")
        employee = (self.request.query_params.get("employee") or "").strip()
        if employee:
            queryset = queryset.filter(employee_name__iexact=employee)
        return queryset

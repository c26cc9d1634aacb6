from django.conf import settings
from django.db.models import Count, Q
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import create_audit_log_from_request
from common.exceptions import error_response
from common.utils import to_json_compatible
from core.views import OwnerScopedQuerysetMixin
from visits import services
from visits.models import Customer, Visit
from visits.serializers import CustomerSerializer, PayoutPhotoSerializer, RecordVisitSerializer, VisitSerializer
from visits.services import PHONE_RE


class CustomerViewSet(OwnerScopedQuerysetMixin, viewsets.ReadOnlyModelViewSet):
    queryset = Customer.objects.all()
    serializer_class = CustomerSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        queryset = super().get_queryset().annotate(visit_count=Count("visits")).order_by("name", "phone")
        search = (self.request.query_params.get("search") or "").strip()
        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(phone__startswith=search))
        return queryset

    @action(detail=False, methods=["get"], url_path=r"by-phone/(?P<phone>[^/.]+)")
    def by_phone(self, request, phone=None):
        if not PHONE_RE.match(phone or ""):
            raise ValidationError({"phone": "Phone number must be exactly 10 digits."})
        customer = self.get_queryset().filter(phone=phone).first()
        if customer is None:
            raise NotFound("No customer is registered with this phone number.")

        latest = services.latest_visit(request.user, phone)
        return Response(
            {
                "customer": self.get_serializer(customer).data,
                "latest_visit": VisitSerializer(latest, context=self.get_serializer_context()).data if latest else None,
            }
        )


class VisitViewSet(OwnerScopedQuerysetMixin, mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    """Visit log. Creating a visit runs the cooldown check; the log is never edited."""

    queryset = Visit.objects.all()
    serializer_class = VisitSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        queryset = super().get_queryset().order_by("-timestamp")
        phone = self.request.query_params.get("phone")
        if phone:
            queryset = queryset.filter(phone=phone)
        return queryset

    def get_serializer_class(self):
        if self.action == "create":
            return RecordVisitSerializer
        if self.action == "payout_photo":
            return PayoutPhotoSerializer
        return VisitSerializer

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = services.record_visit(
            request.user,
            data["phone"],
            data["name"],
            data["match_amount"],
            data["machine_number"],
            id_image=data.get("id_image"),
        )
        if not result.accepted:
            return error_response(
                code=result.reason,
                message=f"This phone number already received a match in the last {settings.VISIT_COOLDOWN_HOURS} hours.",
                errors={"prior_match": to_json_compatible(result.prior_match)},
                status_code=status.HTTP_409_CONFLICT,
            )

        context = self.get_serializer_context()
        payload = VisitSerializer(result.visit, context=context).data
        create_audit_log_from_request(
            request,
            action="visit.create",
            entity="visit",
            entity_id=result.visit.id,
            after_snapshot=payload,
        )
        return Response(
            {
                "visit": payload,
                "customer": CustomerSerializer(result.customer, context=context).data,
                "customer_created": result.customer_created,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path="payout-photo")
    def payout_photo(self, request, pk=None):
        visit = self.get_object()
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        visit = services.attach_payout_photo(visit, serializer.validated_data["image"])
        payload = VisitSerializer(visit, context=self.get_serializer_context()).data
        create_audit_log_from_request(
            request,
            action="visit.payout_photo",
            entity="visit",
            entity_id=visit.id,
            after_snapshot={"payout_photo_url": payload["payout_photo_url"]},
        )
        return Response(payload)

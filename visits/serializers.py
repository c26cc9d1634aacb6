from rest_framework import serializers

from common.storage import image_url
from visits.models import Customer, Visit


class _ImageUrlMixin:
    def _url(self, field_file):
        name = field_file.name if field_file else ""
        return image_url(name, self.context.get("request"))


class CustomerSerializer(_ImageUrlMixin, serializers.ModelSerializer):
    id_image_url = serializers.SerializerMethodField()
    visit_count = serializers.IntegerField(read_only=True, required=False)

    class Meta:
        model = Customer
        fields = ["id", "phone", "name", "id_image_url", "created_at", "visit_count"]
        read_only_fields = fields

    def get_id_image_url(self, obj):
        return self._url(obj.id_image)


class VisitSerializer(_ImageUrlMixin, serializers.ModelSerializer):
    id_image_url = serializers.SerializerMethodField()
    payout_photo_url = serializers.SerializerMethodField()

    class Meta:
        model = Visit
        fields = [
            "id",
            "customer",
            "phone",
            "name",
            "match_amount",
            "machine_number",
            "id_image_url",
            "payout_photo_url",
            "timestamp",
            "last_used",
        ]
        read_only_fields = fields

    def get_id_image_url(self, obj):
        return self._url(obj.id_image)

    def get_payout_photo_url(self, obj):
        return self._url(obj.payout_photo)


class RecordVisitSerializer(serializers.Serializer):
    phone = serializers.CharField(max_length=10)
    name = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    match_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, default=0)
    machine_number = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    id_image = serializers.ImageField(required=False, allow_null=True)


class PayoutPhotoSerializer(serializers.Serializer):
    image = serializers.ImageField()

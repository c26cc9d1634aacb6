from rest_framework import serializers

from common.storage import image_url
from shifts.models import DraftShift, MachineSnapshot, ShiftRecord


class DraftShiftSerializer(serializers.ModelSerializer):
    machines = serializers.SerializerMethodField()

    class Meta:
        model = DraftShift
        fields = ["shift_id", "employee_name", "start_time", "phase", "notes", "machines", "updated_at"]
        read_only_fields = fields

    def get_machines(self, obj):
        request = self.context.get("request")
        return {
            label: {
                "in": machine.get("in", ""),
                "out": machine.get("out", ""),
                "images": [
                    {"url": image_url(image.get("name"), request), "taken_at": image.get("taken_at")}
                    for image in machine.get("images", [])
                ],
            }
            for label, machine in sorted(obj.machines.items())
        }


class StartShiftSerializer(serializers.Serializer):
    employee_name = serializers.CharField(max_length=255)


class MachineSerializer(serializers.Serializer):
    label = serializers.CharField(max_length=64)


class MachineAmountsSerializer(serializers.Serializer):
    """Amounts stay free text while the shift is open; `$1,200` and blanks are accepted."""

    label = serializers.CharField(max_length=64)
    amount_in = serializers.CharField(required=False, allow_blank=True, max_length=32)
    amount_out = serializers.CharField(required=False, allow_blank=True, max_length=32)


class NotesSerializer(serializers.Serializer):
    notes = serializers.CharField(allow_blank=True)


class SnapshotUploadSerializer(serializers.Serializer):
    label = serializers.CharField(max_length=64)
    image = serializers.ImageField()


class MachineSnapshotSerializer(serializers.ModelSerializer):
    image_url = serializers.SerializerMethodField()

    class Meta:
        model = MachineSnapshot
        fields = ["id", "machine_label", "image_url", "taken_at"]
        read_only_fields = fields

    def get_image_url(self, obj):
        return image_url(obj.image.name if obj.image else "", self.context.get("request"))


class ShiftRecordSerializer(serializers.ModelSerializer):
    snapshots = MachineSnapshotSerializer(many=True, read_only=True)

    class Meta:
        model = ShiftRecord
        fields = [
            "id",
            "shift_id",
            "employee_name",
            "start_time",
            "end_time",
            "machines",
            "total_in",
            "total_out",
            "profit_or_loss",
            "total_matched_amount",
            "carry_forward",
            "net_impact",
            "notes",
            "bank_entry",
            "snapshots",
            "created_at",
        ]
        read_only_fields = fields

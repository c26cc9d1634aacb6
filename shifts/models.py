import uuid

from django.db import models
from django.utils import timezone

from core.models import User


class DraftShift(models.Model):
    """In-progress shift for one signed-in user. No row means no shift has been started."""

    class Phase(models.TextChoices):
        ACTIVE = "active", "Active"
        FINALIZING = "finalizing", "Finalizing"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name="draft_shift")
    employee_name = models.CharField(max_length=255)
    shift_id = models.CharField(max_length=160)
    start_time = models.DateTimeField()
    # label -> {"in": raw text, "out": raw text, "images": [{"name": storage name, "taken_at": iso}]}
    machines = models.JSONField(default=dict, blank=True)
    notes = models.TextField(blank=True)
    phase = models.CharField(max_length=16, choices=Phase.choices, default=Phase.ACTIVE)
    updated_at = models.DateTimeField(auto_now=True)


class ShiftRecord(models.Model):
    """Closed shift. Written once by `shifts.services.close_shift` and never changed."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(User, on_delete=models.CASCADE, related_name="shift_records")
    shift_id = models.CharField(max_length=160)
    employee_name = models.CharField(max_length=255)
    start_time = models.DateTimeField()
    end_time = models.DateTimeField()
    machines = models.JSONField(default=dict)
    total_in = models.DecimalField(max_digits=14, decimal_places=2)
    total_out = models.DecimalField(max_digits=14, decimal_places=2)
    profit_or_loss = models.DecimalField(max_digits=14, decimal_places=2)
    total_matched_amount = models.DecimalField(max_digits=14, decimal_places=2)
    carry_forward = models.DecimalField(max_digits=14, decimal_places=2)
    net_impact = models.DecimalField(max_digits=14, decimal_places=2)
    notes = models.TextField(blank=True)
    bank_entry = models.OneToOneField(
        "ledger.BankBalanceEntry",
        on_delete=models.RESTRICT,
        null=True,
        blank=True,
        related_name="shift_record",
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["owner", "shift_id"], name="uniq_shift_record_owner_shift_id"),
        ]
        indexes = [
            models.Index(fields=["owner", "end_time"], name="shifts_record_owner_end_idx"),
            models.Index(fields=["owner", "employee_name"], name="shifts_record_owner_emp_idx"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Closed shift records are immutable.")
        super().save(*args, **kwargs)


class MachineSnapshot(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    shift = models.ForeignKey(ShiftRecord, on_delete=models.CASCADE, related_name="snapshots")
    machine_label = models.CharField(max_length=64)
    image = models.ImageField(upload_to="shifts/snapshots/")
    taken_at = models.DateTimeField()

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["shift", "machine_label"], name="uniq_snapshot_per_machine"),
        ]

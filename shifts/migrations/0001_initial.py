import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("ledger", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="DraftShift",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("employee_name", models.CharField(max_length=255)),
                ("shift_id", models.CharField(max_length=160)),
                ("start_time", models.DateTimeField()),
                ("machines", models.JSONField(blank=True, default=dict)),
                ("notes", models.TextField(blank=True)),
                (
                    "phase",
                    models.CharField(
                        choices=[("active", "Active"), ("finalizing", "Finalizing")],
                        default="active",
                        max_length=16,
                    ),
                ),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="draft_shift",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="ShiftRecord",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("shift_id", models.CharField(max_length=160)),
                ("employee_name", models.CharField(max_length=255)),
                ("start_time", models.DateTimeField()),
                ("end_time", models.DateTimeField()),
                ("machines", models.JSONField(default=dict)),
                ("total_in", models.DecimalField(decimal_places=2, max_digits=14)),
                ("total_out", models.DecimalField(decimal_places=2, max_digits=14)),
                ("profit_or_loss", models.DecimalField(decimal_places=2, max_digits=14)),
                ("total_matched_amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("carry_forward", models.DecimalField(decimal_places=2, max_digits=14)),
                ("net_impact", models.DecimalField(decimal_places=2, max_digits=14)),
                ("notes", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "bank_entry",
                    models.OneToOneField(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.RESTRICT,
                        related_name="shift_record",
                        to="ledger.bankbalanceentry",
                    ),
                ),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="shift_records",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["owner", "end_time"], name="shifts_record_owner_end_idx"),
                    models.Index(fields=["owner", "employee_name"], name="shifts_record_owner_emp_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("owner", "shift_id"), name="uniq_shift_record_owner_shift_id"),
                ],
            },
        ),
        migrations.CreateModel(
            name="MachineSnapshot",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("machine_label", models.CharField(max_length=64)),
                ("image", models.ImageField(upload_to="shifts/snapshots/")),
                ("taken_at", models.DateTimeField()),
                (
                    "shift",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="snapshots",
                        to="shifts.shiftrecord",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("shift", "machine_label"), name="uniq_snapshot_per_machine"),
                ],
            },
        ),
    ]

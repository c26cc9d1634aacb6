import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("phone", models.CharField(max_length=10)),
                ("name", models.CharField(max_length=255)),
                ("id_image", models.ImageField(blank=True, upload_to="customers/ids/")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="customers",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["owner", "name"], name="visits_customer_owner_name_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("owner", "phone"), name="uniq_customer_owner_phone"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Visit",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("phone", models.CharField(max_length=10)),
                ("name", models.CharField(max_length=255)),
                ("match_amount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("machine_number", models.CharField(blank=True, max_length=32)),
                ("id_image", models.ImageField(blank=True, upload_to="customers/ids/")),
                ("payout_photo", models.ImageField(blank=True, upload_to="visits/payouts/")),
                ("timestamp", models.DateTimeField(default=django.utils.timezone.now)),
                ("last_used", models.DateField()),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="visits",
                        to="visits.customer",
                    ),
                ),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="visits",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["owner", "phone", "timestamp"], name="visits_owner_phone_ts_idx"),
                    models.Index(fields=["owner", "timestamp"], name="visits_owner_ts_idx"),
                ],
            },
        ),
    ]

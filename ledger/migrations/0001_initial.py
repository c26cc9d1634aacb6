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
            name="BankAccount",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("balance", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("last_sequence", models.PositiveBigIntegerField(default=0)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "owner",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bank_account",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="BankBalanceEntry",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("sequence", models.PositiveBigIntegerField()),
                ("timestamp", models.DateTimeField(default=django.utils.timezone.now)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("new_balance", models.DecimalField(decimal_places=2, max_digits=14)),
                (
                    "entry_type",
                    models.CharField(
                        choices=[
                            ("set", "Set"),
                            ("add", "Add"),
                            ("expense", "Expense"),
                            ("expenseEdit", "Expense Edit"),
                            ("deleteExpense", "Delete Expense"),
                        ],
                        max_length=16,
                    ),
                ),
                ("notes", models.TextField(blank=True)),
                ("source_ref_type", models.CharField(blank=True, max_length=32, null=True)),
                ("source_ref_id", models.CharField(blank=True, max_length=128, null=True)),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bank_entries",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["owner", "timestamp"], name="ledger_entry_owner_ts_idx"),
                    models.Index(fields=["source_ref_type", "source_ref_id"], name="ledger_entry_source_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("owner", "sequence"), name="uniq_bank_entry_owner_sequence"),
                    models.UniqueConstraint(
                        condition=models.Q(("source_ref_type", "shift")),
                        fields=("owner", "source_ref_type", "source_ref_id"),
                        name="uniq_bank_entry_per_shift",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="DailyExpense",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("notes", models.TextField(blank=True)),
                ("date", models.DateField()),
                ("timestamp", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="daily_expenses",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["owner", "date"], name="ledger_expense_owner_date_idx"),
                ],
            },
        ),
    ]

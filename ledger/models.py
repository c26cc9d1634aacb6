import uuid

from django.db import models
from django.utils import timezone

from core.models import User


class BankAccount(models.Model):
    """Cached running balance for one owner. Only `ledger.services` writes to it."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.OneToOneField(User, on_delete=models.CASCADE, related_name="bank_account")
    balance = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    last_sequence = models.PositiveBigIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)


class BankBalanceEntry(models.Model):
    class EntryType(models.TextChoices):
        SET = "set", "Set"
        ADD = "add", "Add"
        EXPENSE = "expense", "Expense"
        EXPENSE_EDIT = "expenseEdit", "Expense Edit"
        DELETE_EXPENSE = "deleteExpense", "Delete Expense"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(User, on_delete=models.CASCADE, related_name="bank_entries")
    sequence = models.PositiveBigIntegerField()
    timestamp = models.DateTimeField(default=timezone.now)
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    new_balance = models.DecimalField(max_digits=14, decimal_places=2)
    entry_type = models.CharField(max_length=16, choices=EntryType.choices)
    notes = models.TextField(blank=True)
    source_ref_type = models.CharField(max_length=32, null=True, blank=True)
    source_ref_id = models.CharField(max_length=128, null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["owner", "timestamp"], name="ledger_entry_owner_ts_idx"),
            models.Index(fields=["source_ref_type", "source_ref_id"], name="ledger_entry_source_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=["owner", "sequence"], name="uniq_bank_entry_owner_sequence"),
            models.UniqueConstraint(
                fields=["owner", "source_ref_type", "source_ref_id"],
                condition=models.Q(source_ref_type="shift"),
                name="uniq_bank_entry_per_shift",
            ),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Bank balance history entries are append-only.")
        super().save(*args, **kwargs)


class DailyExpense(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(User, on_delete=models.CASCADE, related_name="daily_expenses")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    notes = models.TextField(blank=True)
    date = models.DateField()
    timestamp = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["owner", "date"], name="ledger_expense_owner_date_idx"),
        ]

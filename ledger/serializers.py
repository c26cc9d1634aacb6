from rest_framework import serializers

from ledger.models import BankBalanceEntry, DailyExpense


class BankBalanceEntrySerializer(serializers.ModelSerializer):
    type = serializers.CharField(source="entry_type", read_only=True)

    class Meta:
        model = BankBalanceEntry
        fields = ["id", "sequence", "timestamp", "amount", "new_balance", "type", "notes", "source_ref_type", "source_ref_id"]
        read_only_fields = fields


class BankAdjustmentSerializer(serializers.Serializer):
    """Manual balance change: `set` overrides the balance, `add` applies a signed amount."""

    type = serializers.ChoiceField(choices=[BankBalanceEntry.EntryType.SET, BankBalanceEntry.EntryType.ADD])
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)
    balance = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if attrs["type"] == BankBalanceEntry.EntryType.SET:
            if attrs.get("balance") is None:
                raise serializers.ValidationError({"balance": "Balance is required when setting the balance."})
        elif attrs.get("amount") is None:
            raise serializers.ValidationError({"amount": "Amount is required when adding to the balance."})
        elif attrs["amount"] == 0:
            raise serializers.ValidationError({"amount": "Amount must not be zero."})
        return attrs


class DailyExpenseSerializer(serializers.ModelSerializer):
    class Meta:
        model = DailyExpense
        fields = ["id", "amount", "notes", "date", "timestamp", "updated_at"]
        read_only_fields = ["id", "timestamp", "updated_at"]

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Expense amount must be greater than zero.")
        return value


class ReconciliationReportSerializer(serializers.Serializer):
    cached_balance = serializers.DecimalField(max_digits=14, decimal_places=2)
    replayed_balance = serializers.DecimalField(max_digits=14, decimal_places=2)
    entry_count = serializers.IntegerField()
    consistent = serializers.BooleanField()
    broken_entries = serializers.ListField(child=serializers.DictField())

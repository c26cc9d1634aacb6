import logging
from dataclasses import dataclass, field
from decimal import Decimal

from django.db import transaction

from common.exceptions import ServiceError
from common.utils import ZERO, to_money
from ledger.models import BankAccount, BankBalanceEntry, DailyExpense

logger = logging.getLogger(__name__)

EntryType = BankBalanceEntry.EntryType


@dataclass
class ReconciliationReport:
    cached_balance: Decimal
    replayed_balance: Decimal
    entry_count: int
    broken_entries: list = field(default_factory=list)

    @property
    def consistent(self):
        return not self.broken_entries and self.cached_balance == self.replayed_balance


def get_account(owner):
    account, _ = BankAccount.objects.get_or_create(owner=owner)
    return account


def get_balance(owner):
    account = BankAccount.objects.filter(owner=owner).only("balance").first()
    return account.balance if account else ZERO


def _locked_account(owner):
    get_account(owner)
    return BankAccount.objects.select_for_update().get(owner=owner)


def _append(account, delta, entry_type, notes, source_ref_type, source_ref_id):
    new_balance = to_money(account.balance + delta)
    account.balance = new_balance
    account.last_sequence += 1
    account.save(update_fields=["balance", "last_sequence", "updated_at"])

    entry = BankBalanceEntry.objects.create(
        owner_id=account.owner_id,
        sequence=account.last_sequence,
        amount=delta,
        new_balance=new_balance,
        entry_type=entry_type,
        notes=notes or "",
        source_ref_type=source_ref_type,
        source_ref_id=str(source_ref_id) if source_ref_id is not None else None,
    )
    logger.info(
        "bank_balance_adjusted",
        extra={
            "owner_id": account.owner_id,
            "entry_type": entry_type,
            "amount": delta,
            "new_balance": new_balance,
        },
    )
    return entry


def adjust_balance(owner, delta, entry_type, notes="", *, source_ref_type=None, source_ref_id=None):
    """Apply a signed delta to the cached balance and append the matching history entry.

    The cached value and the history row are written in the same transaction,
    with the account row locked, so `new_balance` is always a running sum.
    """
    if entry_type not in EntryType.values:
        raise ServiceError(details={"type": [f"Unknown entry type '{entry_type}'."]})

    with transaction.atomic():
        account = _locked_account(owner)
        return _append(account, to_money(delta), entry_type, notes, source_ref_type, source_ref_id)


def set_balance(owner, target, notes=""):
    """Manual override of the balance, recorded as the delta that reaches `target`."""
    with transaction.atomic():
        account = _locked_account(owner)
        delta = to_money(Decimal(target) - account.balance)
        return _append(account, delta, EntryType.SET, notes, None, None)


def get_history(owner):
    return BankBalanceEntry.objects.filter(owner=owner).order_by("-sequence")


def replay_history(owner):
    """Yield `(entry, running_balance)` pairs, oldest first, summing deltas from zero."""
    running = ZERO
    for entry in BankBalanceEntry.objects.filter(owner=owner).order_by("sequence").iterator():
        running = to_money(running + entry.amount)
        yield entry, running


def reconcile(owner):
    """Replay the full history and compare against the cached balance. Detection only, nothing is repaired."""
    running = ZERO
    broken = []
    count = 0
    for entry, running in replay_history(owner):
        count += 1
        if entry.new_balance != running:
            broken.append(
                {
                    "id": str(entry.id),
                    "sequence": entry.sequence,
                    "expected_balance": str(running),
                    "recorded_balance": str(entry.new_balance),
                }
            )

    report = ReconciliationReport(
        cached_balance=get_balance(owner),
        replayed_balance=running,
        entry_count=count,
        broken_entries=broken,
    )
    if not report.consistent:
        logger.warning(
            "bank_ledger_divergence cached=%s replayed=%s broken=%s",
            report.cached_balance,
            report.replayed_balance,
            len(broken),
            extra={"owner_id": getattr(owner, "id", owner)},
        )
    return report


def _validate_expense_amount(amount):
    amount = to_money(amount)
    if amount <= 0:
        raise ServiceError(details={"amount": ["Expense amount must be greater than zero."]})
    return amount


def _expense_note(expense):
    if expense.notes:
        return f"{expense.date.isoformat()}: {expense.notes}"
    return expense.date.isoformat()


def add_expense(owner, amount, date, notes=""):
    amount = _validate_expense_amount(amount)
    with transaction.atomic():
        expense = DailyExpense.objects.create(owner=owner, amount=amount, date=date, notes=(notes or "").strip())
        adjust_balance(
            owner,
            -amount,
            EntryType.EXPENSE,
            _expense_note(expense),
            source_ref_type="expense",
            source_ref_id=expense.id,
        )
    return expense


def edit_expense(expense, *, amount=None, notes=None, date=None):
    """Update an expense; the balance gets the old amount back and the new amount taken out."""
    with transaction.atomic():
        expense = DailyExpense.objects.select_for_update().get(pk=expense.pk)
        old_amount = expense.amount
        new_amount = _validate_expense_amount(amount) if amount is not None else old_amount

        expense.amount = new_amount
        if notes is not None:
            expense.notes = notes.strip()
        if date is not None:
            expense.date = date
        expense.save(update_fields=["amount", "notes", "date", "updated_at"])

        if new_amount != old_amount:
            adjust_balance(
                expense.owner,
                old_amount - new_amount,
                EntryType.EXPENSE_EDIT,
                f"{_expense_note(expense)} ({old_amount} -> {new_amount})",
                source_ref_type="expense",
                source_ref_id=expense.id,
            )
    return expense


def delete_expense(expense):
    with transaction.atomic():
        expense = DailyExpense.objects.select_for_update().get(pk=expense.pk)
        adjust_balance(
            expense.owner,
            expense.amount,
            EntryType.DELETE_EXPENSE,
            _expense_note(expense),
            source_ref_type="expense",
            source_ref_id=expense.id,
        )
        expense.delete()

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from common.exceptions import ServiceError
from common.storage import discard_image, store_image
from common.utils import ZERO, parse_amount, to_money
from ledger.services import EntryType, adjust_balance
from shifts.drafts import DraftStore
from shifts.models import DraftShift, MachineSnapshot, ShiftRecord
from visits.services import visits_between

logger = logging.getLogger(__name__)

SHIFT_SOURCE = "shift"
MAX_LABEL_LENGTH = 64


class ShiftCloseError(ServiceError):
    default_code = "shift_close_failed"
    default_message = "The shift could not be closed."


@dataclass
class ShiftTotals:
    total_in: Decimal = ZERO
    total_out: Decimal = ZERO
    machines: dict = field(default_factory=dict)

    @property
    def profit_or_loss(self):
        return self.total_in - self.total_out

    @property
    def has_data(self):
        return any(amounts["in"] > 0 or amounts["out"] > 0 for amounts in self.machines.values())


def summarize_machines(machines):
    """Coerce each machine's raw in/out text and total them. Order of labels does not matter."""
    totals = ShiftTotals()
    for label, entry in machines.items():
        amount_in = parse_amount(entry.get("in"))
        amount_out = parse_amount(entry.get("out"))
        totals.machines[label] = {"in": amount_in, "out": amount_out}
        totals.total_in += amount_in
        totals.total_out += amount_out
    return totals


def _clean_label(label):
    label = (label or "").strip()
    if not label:
        raise ServiceError(details={"label": ["Machine label is required."]})
    if len(label) > MAX_LABEL_LENGTH:
        raise ServiceError(details={"label": [f"Machine label must be at most {MAX_LABEL_LENGTH} characters."]})
    return label


def _machine(draft, label):
    machine = draft.machines.get(label)
    if machine is None:
        raise ServiceError("unknown_machine", details={"label": [f"Machine '{label}' is not part of this shift."]})
    return machine


def _save_machines(draft):
    draft.save(update_fields=["machines", "updated_at"])
    return draft


def start_shift(user, employee_name, now=None):
    return DraftStore.start(user, employee_name, now or timezone.now())


def add_machine(user, label):
    label = _clean_label(label)
    with transaction.atomic():
        draft = DraftStore.require(user)
        if label in draft.machines:
            raise ServiceError("duplicate_machine", details={"label": [f"Machine '{label}' is already added."]})
        draft.machines[label] = {"in": "", "out": "", "images": []}
        return _save_machines(draft)


def remove_machine(user, label):
    label = _clean_label(label)
    with transaction.atomic():
        draft = DraftStore.require(user)
        machine = _machine(draft, label)
        del draft.machines[label]
        _save_machines(draft)
    for image in machine.get("images", []):
        discard_image(image.get("name"))
    return draft


def set_machine_amounts(user, label, amount_in=None, amount_out=None):
    """Store the raw text as typed; it is only coerced to money when the shift closes."""
    label = _clean_label(label)
    with transaction.atomic():
        draft = DraftStore.require(user)
        machine = _machine(draft, label)
        if amount_in is not None:
            machine["in"] = str(amount_in)
        if amount_out is not None:
            machine["out"] = str(amount_out)
        return _save_machines(draft)


def set_notes(user, notes):
    with transaction.atomic():
        draft = DraftStore.require(user)
        draft.notes = (notes or "").strip()
        draft.save(update_fields=["notes", "updated_at"])
        return draft


def attach_snapshot(user, label, image, now=None):
    """Upload the one allowed photo for a machine and record it on the draft."""
    label = _clean_label(label)
    now = now or timezone.now()
    with transaction.atomic():
        draft = DraftStore.require(user)
        machine = _machine(draft, label)
        if machine.get("images"):
            raise ServiceError("snapshot_exists", details={"label": [f"Machine '{label}' already has a snapshot."]})

        stored = store_image(image, f"shifts/drafts/{draft.shift_id}")
        try:
            machine["images"] = [{"name": stored, "taken_at": now.isoformat()}]
            _save_machines(draft)
        except Exception:
            discard_image(stored)
            raise
    return draft


def begin_finalizing(user):
    with transaction.atomic():
        draft = DraftStore.require(user)
        if draft.phase != DraftShift.Phase.FINALIZING:
            draft.phase = DraftShift.Phase.FINALIZING
            draft.save(update_fields=["phase", "updated_at"])
        return draft


def resume_editing(user):
    with transaction.atomic():
        draft = DraftStore.require(user)
        if draft.phase != DraftShift.Phase.ACTIVE:
            draft.phase = DraftShift.Phase.ACTIVE
            draft.save(update_fields=["phase", "updated_at"])
        return draft


def discard_shift(user):
    """Drop the draft from any phase. Returns False when no shift was started."""
    draft = DraftStore.get(user)
    if draft is None:
        return False
    images = [image.get("name") for machine in draft.machines.values() for image in machine.get("images", [])]
    DraftStore.clear(user)
    for name in images:
        discard_image(name)
    logger.info("shift_discarded", extra={"user_id": user.id, "shift_id": draft.shift_id})
    return True


def _missing_snapshots(draft, totals):
    return sorted(
        label
        for label, amounts in totals.machines.items()
        if (amounts["in"] > 0 or amounts["out"] > 0) and not draft.machines[label].get("images")
    )


def close_shift(user, now=None):
    """Finalize the user's draft into a `ShiftRecord` and credit its net impact to the bank ledger.

    Totals, the ledger entry, the record and its snapshots are written and the
    draft is cleared in one transaction. Any failure leaves the draft in place
    for a retry. Closing a draft whose shift id was already recorded returns the
    existing record without crediting the ledger again.

    Returns `(record, created)`; `created` is False for such a replay.
    """
    now = now or timezone.now()
    with transaction.atomic():
        draft = DraftStore.get(user, for_update=True)
        if draft is None:
            raise ShiftCloseError("no_active_shift", message="No shift has been started.")

        existing = ShiftRecord.objects.filter(owner=user, shift_id=draft.shift_id).first()
        if existing is not None:
            draft.delete()
            logger.info("shift_close_replayed", extra={"user_id": user.id, "shift_id": draft.shift_id})
            return existing, False

        if draft.phase != DraftShift.Phase.FINALIZING:
            raise ShiftCloseError("shift_not_finalizing", message="Review the shift before closing it.")

        totals = summarize_machines(draft.machines)
        if not totals.has_data:
            raise ShiftCloseError("missing_data", message="Enter an in or out amount for at least one machine.")

        if settings.SHIFT_SNAPSHOTS_REQUIRED:
            missing = _missing_snapshots(draft, totals)
            if missing:
                raise ShiftCloseError(
                    "snapshots_required",
                    details={"machines": missing},
                    message="Every machine with amounts needs a snapshot.",
                )

        matched = visits_between(user, draft.start_time, now).aggregate(total=Sum("match_amount"))["total"] or ZERO
        total_matched = to_money(matched)
        profit_or_loss = to_money(totals.profit_or_loss)
        net_impact = to_money(profit_or_loss - total_matched)

        entry = adjust_balance(
            user,
            net_impact,
            EntryType.ADD,
            f"Shift {draft.employee_name} ({draft.shift_id})",
            source_ref_type=SHIFT_SOURCE,
            source_ref_id=draft.shift_id,
        )
        record = ShiftRecord.objects.create(
            owner=user,
            shift_id=draft.shift_id,
            employee_name=draft.employee_name,
            start_time=draft.start_time,
            end_time=now,
            machines={label: {"in": str(amounts["in"]), "out": str(amounts["out"])} for label, amounts in totals.machines.items()},
            total_in=to_money(totals.total_in),
            total_out=to_money(totals.total_out),
            profit_or_loss=profit_or_loss,
            total_matched_amount=total_matched,
            carry_forward=to_money(totals.total_out),
            net_impact=net_impact,
            notes=draft.notes,
            bank_entry=entry,
            created_at=now,
        )
        MachineSnapshot.objects.bulk_create(
            [
                MachineSnapshot(
                    shift=record,
                    machine_label=label,
                    image=image["name"],
                    taken_at=parse_datetime(image["taken_at"]) or now,
                )
                for label, machine in sorted(draft.machines.items())
                for image in machine.get("images", [])[:1]
            ]
        )
        draft.delete()

    logger.info(
        "shift_closed",
        extra={
            "owner_id": user.id,
            "shift_id": record.shift_id,
            "amount": net_impact,
            "new_balance": entry.new_balance,
        },
    )
    return record, True

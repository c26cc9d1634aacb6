import shutil
import tempfile
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from decimal import Decimal
from io import BytesIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.files.uploadedfile import SimpleUploadedFile
from django.db import DatabaseError
from django.test import TestCase, override_settings
from PIL import Image
from rest_framework.test import APIClient

from common.exceptions import ServiceError
from core.models import AuditLog
from ledger.models import BankBalanceEntry
from ledger.services import get_balance, reconcile, set_balance
from shifts import services
from shifts.drafts import DraftStore
from shifts.models import DraftShift, ShiftRecord
from shifts.services import ShiftCloseError
from visits.services import record_visit

T = datetime(2024, 5, 3, 9, 0, tzinfo=dt_timezone.utc)


def make_image(name="machine.png"):
    buffer = BytesIO()
    Image.new("RGB", (4, 4), "black").save(buffer, format="PNG")
    return SimpleUploadedFile(name, buffer.getvalue(), content_type="image/png")


class ShiftTotalsTests(TestCase):
    def test_totals_do_not_depend_on_label_order(self):
        machines = {
            "1": {"in": "100", "out": "40"},
            "7": {"in": "$1,250.50", "out": ""},
            "12": {"in": "abc", "out": "15.25"},
        }
        reversed_machines = dict(reversed(list(machines.items())))

        totals = services.summarize_machines(machines)
        reversed_totals = services.summarize_machines(reversed_machines)

        self.assertEqual(totals.total_in, Decimal("1350.50"))
        self.assertEqual(totals.total_out, Decimal("55.25"))
        self.assertEqual(totals.profit_or_loss, Decimal("1295.25"))
        self.assertEqual(
            (totals.total_in, totals.total_out, totals.profit_or_loss),
            (reversed_totals.total_in, reversed_totals.total_out, reversed_totals.profit_or_loss),
        )

    def test_negative_amounts_are_clamped_to_zero(self):
        totals = services.summarize_machines({"1": {"in": "-50", "out": "-5"}})

        self.assertEqual(totals.total_in, Decimal("0.00"))
        self.assertEqual(totals.total_out, Decimal("0.00"))
        self.assertFalse(totals.has_data)

    def test_out_of_range_amounts_are_treated_as_zero(self):
        totals = services.summarize_machines({"1": {"in": "1e30", "out": "5"}, "2": {"in": "20", "out": "9" * 20}})

        self.assertEqual(totals.total_in, Decimal("20.00"))
        self.assertEqual(totals.total_out, Decimal("5.00"))


class DraftStoreTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="draft-owner", password="pass1234")

    def test_start_generates_shift_id_from_name_and_epoch_millis(self):
        draft = DraftStore.start(self.user, "  Mary  Ann ", T)

        self.assertEqual(draft.employee_name, "Mary  Ann")
        self.assertEqual(draft.shift_id, f"Mary_Ann_{int(T.timestamp() * 1000)}")
        self.assertEqual(draft.phase, DraftShift.Phase.ACTIVE)
        self.assertEqual(draft.machines, {})

    def test_only_one_draft_per_user(self):
        DraftStore.start(self.user, "Alice", T)

        with self.assertRaises(ServiceError) as ctx:
            DraftStore.start(self.user, "Bob", T + timedelta(minutes=1))

        self.assertEqual(ctx.exception.code, "shift_already_active")
        self.assertEqual(DraftStore.get(self.user).employee_name, "Alice")

    def test_blank_employee_name_is_rejected(self):
        with self.assertRaises(ServiceError) as ctx:
            DraftStore.start(self.user, "   ", T)

        self.assertIn("employee_name", ctx.exception.details)
        self.assertIsNone(DraftStore.get(self.user))


class DraftMutationTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="mutation-owner", password="pass1234")

    def test_mutations_require_a_started_shift(self):
        with self.assertRaises(ServiceError) as ctx:
            services.add_machine(self.user, "3")

        self.assertEqual(ctx.exception.code, "no_active_shift")

    def test_machine_rules(self):
        services.start_shift(self.user, "Alice", T)
        services.add_machine(self.user, "3")

        with self.assertRaises(ServiceError) as duplicate:
            services.add_machine(self.user, " 3 ")
        with self.assertRaises(ServiceError) as unknown:
            services.remove_machine(self.user, "9")
        with self.assertRaises(ServiceError) as blank:
            services.add_machine(self.user, "  ")

        self.assertEqual(duplicate.exception.code, "duplicate_machine")
        self.assertEqual(unknown.exception.code, "unknown_machine")
        self.assertIn("label", blank.exception.details)

        services.set_machine_amounts(self.user, "3", amount_in="$100", amount_out="40")
        draft = services.set_notes(self.user, "  busy night ")
        self.assertEqual(draft.machines["3"]["in"], "$100")
        self.assertEqual(draft.notes, "busy night")

        draft = services.remove_machine(self.user, "3")
        self.assertEqual(draft.machines, {})

    def test_discard_is_a_no_op_when_nothing_was_started(self):
        self.assertFalse(services.discard_shift(self.user))
        self.assertIsNone(DraftStore.get(self.user))

    def test_discard_clears_active_and_finalizing_drafts(self):
        for finalize in (False, True):
            with self.subTest(finalize=finalize):
                services.start_shift(self.user, "Alice", T)
                services.add_machine(self.user, "3")
                services.set_machine_amounts(self.user, "3", amount_in="100")
                if finalize:
                    services.begin_finalizing(self.user)

                self.assertTrue(services.discard_shift(self.user))

                fresh = services.start_shift(self.user, "Alice", T + timedelta(hours=1))
                self.assertEqual(fresh.machines, {})
                self.assertEqual(fresh.notes, "")
                services.discard_shift(self.user)

    def test_finalizing_can_be_resumed(self):
        services.start_shift(self.user, "Alice", T)

        self.assertEqual(services.begin_finalizing(self.user).phase, DraftShift.Phase.FINALIZING)
        self.assertEqual(services.begin_finalizing(self.user).phase, DraftShift.Phase.FINALIZING)
        self.assertEqual(services.resume_editing(self.user).phase, DraftShift.Phase.ACTIVE)

    def test_second_snapshot_for_a_machine_is_rejected(self):
        media_root = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, media_root, ignore_errors=True)
        services.start_shift(self.user, "Alice", T)
        services.add_machine(self.user, "3")

        with self.settings(MEDIA_ROOT=media_root):
            draft = services.attach_snapshot(self.user, "3", make_image())
            with patch("shifts.services.store_image") as store:
                with self.assertRaises(ServiceError) as ctx:
                    services.attach_snapshot(self.user, "3", make_image())

        self.assertEqual(ctx.exception.code, "snapshot_exists")
        store.assert_not_called()
        self.assertEqual(len(draft.machines["3"]["images"]), 1)


@override_settings(SHIFT_SNAPSHOTS_REQUIRED=False)
class CloseShiftTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="close-owner", password="pass1234")

    def _ready_shift(self, machines, start=T):
        services.start_shift(self.user, "Alice", start)
        for label, (amount_in, amount_out) in machines.items():
            services.add_machine(self.user, label)
            services.set_machine_amounts(self.user, label, amount_in=amount_in, amount_out=amount_out)
        return services.begin_finalizing(self.user)

    def test_close_without_matching_visits(self):
        self._ready_shift({"3": ("100", "40")})

        record, _ = services.close_shift(self.user, now=T + timedelta(hours=8))

        self.assertEqual(record.total_in, Decimal("100.00"))
        self.assertEqual(record.total_out, Decimal("40.00"))
        self.assertEqual(record.profit_or_loss, Decimal("60.00"))
        self.assertEqual(record.total_matched_amount, Decimal("0.00"))
        self.assertEqual(record.carry_forward, Decimal("40.00"))
        self.assertEqual(record.net_impact, Decimal("60.00"))
        self.assertEqual(record.end_time, T + timedelta(hours=8))
        self.assertEqual(record.machines, {"3": {"in": "100.00", "out": "40.00"}})

        entry = record.bank_entry
        self.assertEqual(entry.entry_type, BankBalanceEntry.EntryType.ADD)
        self.assertEqual(entry.amount, Decimal("60.00"))
        self.assertEqual(get_balance(self.user), Decimal("60.00"))
        self.assertIsNone(DraftStore.get(self.user))

    def test_oversized_amount_does_not_block_close(self):
        self._ready_shift({"3": ("1e30", "40"), "4": ("100", "")})

        record, created = services.close_shift(self.user, now=T + timedelta(hours=8))

        self.assertTrue(created)
        self.assertEqual(record.total_in, Decimal("100.00"))
        self.assertEqual(record.total_out, Decimal("40.00"))
        self.assertEqual(record.machines["3"], {"in": "0.00", "out": "40.00"})
        self.assertEqual(get_balance(self.user), Decimal("60.00"))

    def test_visits_inside_the_window_reduce_net_impact(self):
        set_balance(self.user, Decimal("500.00"))
        self._ready_shift({"3": ("100", "40")})
        record_visit(self.user, "5551234567", "Jane Doe", Decimal("20"), "3", now=T + timedelta(hours=1))
        record_visit(self.user, "5559876543", "John Roe", Decimal("7"), "3", now=T + timedelta(hours=8))
        record_visit(self.user, "5550000000", "Early Bird", Decimal("50"), "3", now=T - timedelta(seconds=1))

        record, _ = services.close_shift(self.user, now=T + timedelta(hours=8))

        self.assertEqual(record.total_matched_amount, Decimal("27.00"))
        self.assertEqual(record.net_impact, Decimal("33.00"))
        self.assertEqual(get_balance(self.user), Decimal("533.00"))
        self.assertTrue(reconcile(self.user).consistent)

    def test_close_state_checks(self):
        with self.assertRaises(ShiftCloseError) as missing_draft:
            services.close_shift(self.user)
        self.assertEqual(missing_draft.exception.code, "no_active_shift")

        services.start_shift(self.user, "Alice", T)
        services.add_machine(self.user, "3")
        with self.assertRaises(ShiftCloseError) as not_finalizing:
            services.close_shift(self.user)
        self.assertEqual(not_finalizing.exception.code, "shift_not_finalizing")

        services.set_machine_amounts(self.user, "3", amount_in="", amount_out="n/a")
        services.begin_finalizing(self.user)
        with self.assertRaises(ShiftCloseError) as no_data:
            services.close_shift(self.user)
        self.assertEqual(no_data.exception.code, "missing_data")

        self.assertIsNotNone(DraftStore.get(self.user))
        self.assertFalse(BankBalanceEntry.objects.exists())

    @override_settings(SHIFT_SNAPSHOTS_REQUIRED=True)
    def test_machines_with_amounts_need_snapshots(self):
        self._ready_shift({"B": ("10", "0"), "A": ("0", "5"), "C": ("", "")})

        with self.assertRaises(ShiftCloseError) as ctx:
            services.close_shift(self.user)

        self.assertEqual(ctx.exception.code, "snapshots_required")
        self.assertEqual(ctx.exception.details, {"machines": ["A", "B"]})
        self.assertFalse(ShiftRecord.objects.exists())

    @override_settings(SHIFT_SNAPSHOTS_REQUIRED=True)
    def test_snapshots_are_carried_onto_the_record(self):
        media_root = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, media_root, ignore_errors=True)
        with self.settings(MEDIA_ROOT=media_root):
            services.start_shift(self.user, "Alice", T)
            services.add_machine(self.user, "3")
            services.set_machine_amounts(self.user, "3", amount_in="100", amount_out="40")
            services.attach_snapshot(self.user, "3", make_image(), now=T + timedelta(hours=7))
            services.begin_finalizing(self.user)

            record, _ = services.close_shift(self.user, now=T + timedelta(hours=8))

        snapshot = record.snapshots.get()
        self.assertEqual(snapshot.machine_label, "3")
        self.assertEqual(snapshot.taken_at, T + timedelta(hours=7))
        self.assertTrue(snapshot.image.name.startswith("shifts/drafts/"))

    def test_retried_close_does_not_credit_twice(self):
        self._ready_shift({"3": ("100", "40")})
        draft = DraftStore.get(self.user)
        first, first_created = services.close_shift(self.user, now=T + timedelta(hours=8))

        # A client retrying after a lost response resubmits the same draft.
        DraftShift.objects.create(
            user=self.user,
            employee_name=draft.employee_name,
            shift_id=draft.shift_id,
            start_time=draft.start_time,
            machines=draft.machines,
            phase=DraftShift.Phase.FINALIZING,
        )
        second, second_created = services.close_shift(self.user, now=T + timedelta(hours=9))

        self.assertTrue(first_created)
        self.assertFalse(second_created)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(BankBalanceEntry.objects.filter(owner=self.user).count(), 1)
        self.assertEqual(get_balance(self.user), Decimal("60.00"))
        self.assertIsNone(DraftStore.get(self.user))

    def test_failed_write_rolls_back_and_keeps_the_draft(self):
        self._ready_shift({"3": ("100", "40")})

        with patch.object(ShiftRecord.objects, "create", side_effect=DatabaseError("disk full")):
            with self.assertRaises(DatabaseError):
                services.close_shift(self.user, now=T + timedelta(hours=8))

        self.assertIsNotNone(DraftStore.get(self.user))
        self.assertFalse(BankBalanceEntry.objects.exists())
        self.assertEqual(get_balance(self.user), Decimal("0.00"))

        record, _ = services.close_shift(self.user, now=T + timedelta(hours=8))
        self.assertEqual(record.net_impact, Decimal("60.00"))

    def test_closed_records_are_immutable(self):
        self._ready_shift({"3": ("100", "40")})
        record, _ = services.close_shift(self.user, now=T + timedelta(hours=8))
        record.notes = "changed"

        with self.assertRaises(ValueError):
            record.save()


@override_settings(SHIFT_SNAPSHOTS_REQUIRED=False)
class ShiftApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.owner = self.user_model.objects.create_user(username="shift-api-owner", password="pass1234")
        self.other = self.user_model.objects.create_user(username="shift-api-other", password="pass1234")
        self.client.force_authenticate(user=self.owner)

    def test_full_shift_flow(self):
        started = self.client.post("/api/v1/shifts/draft/start/", {"employee_name": "Alice"}, format="json")
        self.assertEqual(started.status_code, 201)
        shift_id = started.json()["shift_id"]
        self.assertTrue(shift_id.startswith("Alice_"))

        self.assertEqual(self.client.post("/api/v1/shifts/draft/machines/", {"label": "3"}, format="json").status_code, 201)
        amounts = self.client.patch(
            "/api/v1/shifts/draft/machines/",
            {"label": "3", "amount_in": "100", "amount_out": "40"},
            format="json",
        )
        self.assertEqual(amounts.json()["machines"]["3"]["in"], "100")

        early_close = self.client.post("/api/v1/shifts/draft/close/")
        self.assertEqual(early_close.status_code, 422)
        self.assertEqual(early_close.json()["code"], "shift_not_finalizing")

        self.assertEqual(self.client.post("/api/v1/shifts/draft/finalize/").json()["phase"], "finalizing")
        closed = self.client.post("/api/v1/shifts/draft/close/")

        self.assertEqual(closed.status_code, 201)
        payload = closed.json()
        self.assertEqual(payload["shift_id"], shift_id)
        self.assertEqual(payload["profit_or_loss"], "60.00")
        self.assertEqual(payload["net_impact"], "60.00")
        self.assertEqual(self.client.get("/api/v1/shifts/draft/").status_code, 404)

        detail = self.client.get(f"/api/v1/shifts/{shift_id}/")
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(detail.json()["total_in"], "100.00")

    def test_replayed_close_returns_existing_record_without_new_audit(self):
        self.client.post("/api/v1/shifts/draft/start/", {"employee_name": "Alice"}, format="json")
        self.client.post("/api/v1/shifts/draft/machines/", {"label": "3"}, format="json")
        self.client.patch("/api/v1/shifts/draft/machines/", {"label": "3", "amount_in": "100"}, format="json")
        self.client.post("/api/v1/shifts/draft/finalize/")
        draft = DraftStore.get(self.owner)
        snapshot = {
            "employee_name": draft.employee_name,
            "shift_id": draft.shift_id,
            "start_time": draft.start_time,
            "machines": draft.machines,
        }

        first = self.client.post("/api/v1/shifts/draft/close/")
        DraftShift.objects.create(user=self.owner, phase=DraftShift.Phase.FINALIZING, **snapshot)
        replay = self.client.post("/api/v1/shifts/draft/close/")

        self.assertEqual(first.status_code, 201)
        self.assertEqual(replay.status_code, 200)
        self.assertEqual(replay.json()["shift_id"], snapshot["shift_id"])
        self.assertEqual(AuditLog.objects.filter(owner=self.owner, action="shift.close").count(), 1)
        self.assertEqual(BankBalanceEntry.objects.filter(owner=self.owner).count(), 1)

    def test_remove_machine_and_discard(self):
        self.client.post("/api/v1/shifts/draft/start/", {"employee_name": "Alice"}, format="json")
        self.client.post("/api/v1/shifts/draft/machines/", {"label": "Big Wheel"}, format="json")

        removed = self.client.delete("/api/v1/shifts/draft/machines/Big%20Wheel/")
        discarded = self.client.delete("/api/v1/shifts/draft/")
        again = self.client.delete("/api/v1/shifts/draft/")

        self.assertEqual(removed.status_code, 200)
        self.assertEqual(removed.json()["machines"], {})
        self.assertTrue(discarded.json()["discarded"])
        self.assertFalse(again.json()["discarded"])

    def test_history_is_owner_scoped_and_filterable(self):
        for user, name in ((self.owner, "Alice"), (self.owner, "Bob"), (self.other, "Alice")):
            services.start_shift(user, name, T)
            services.add_machine(user, "3")
            services.set_machine_amounts(user, "3", amount_in="10")
            services.begin_finalizing(user)
            services.close_shift(user, now=T + timedelta(hours=1))

        listing = self.client.get("/api/v1/shifts/")
        filtered = self.client.get("/api/v1/shifts/?employee=alice")

        self.assertEqual(listing.json()["count"], 2)
        self.assertEqual(filtered.json()["count"], 1)
        other_id = ShiftRecord.objects.get(owner=self.other).shift_id
        self.assertEqual(self.client.get(f"/api/v1/shifts/{other_id}/").status_code, 404)

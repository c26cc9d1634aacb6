from datetime import date, datetime, timedelta
from datetime import timezone as dt_timezone
from decimal import Decimal
from io import StringIO
from zoneinfo import ZoneInfo

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from rest_framework.test import APIClient

from common.exceptions import ServiceError
from ledger import services
from ledger.models import BankAccount, BankBalanceEntry, DailyExpense
from ledger.reports import build_monthly_report
from shifts.models import ShiftRecord


def make_shift_record(owner, shift_id, end_time, profit_or_loss, matched="0.00"):
    profit_or_loss = Decimal(profit_or_loss)
    matched = Decimal(matched)
    return ShiftRecord.objects.create(
        owner=owner,
        shift_id=shift_id,
        employee_name="Alice",
        start_time=end_time - timedelta(hours=8),
        end_time=end_time,
        machines={"3": {"in": str(profit_or_loss), "out": "0.00"}},
        total_in=profit_or_loss,
        total_out=Decimal("0.00"),
        profit_or_loss=profit_or_loss,
        total_matched_amount=matched,
        carry_forward=Decimal("0.00"),
        net_impact=profit_or_loss - matched,
    )


class BankLedgerServiceTests(TestCase):
    def setUp(self):
        self.owner = get_user_model().objects.create_user(username="ledger-owner", password="pass1234")

    def test_new_balance_is_a_running_sum_of_amounts(self):
        deltas = ["100.00", "-25.50", "0.75", "-300.00", "12.00"]
        services.set_balance(self.owner, Decimal("40.00"), "opening")
        for delta in deltas:
            services.adjust_balance(self.owner, Decimal(delta), BankBalanceEntry.EntryType.ADD)

        running = Decimal("0.00")
        for entry in BankBalanceEntry.objects.filter(owner=self.owner).order_by("sequence"):
            running += entry.amount
            self.assertEqual(entry.new_balance, running)

        expected = Decimal("40.00") + sum(Decimal(delta) for delta in deltas)
        self.assertEqual(services.get_balance(self.owner), expected)
        self.assertEqual(services.get_history(self.owner).first().new_balance, expected)
        self.assertTrue(services.reconcile(self.owner).consistent)

    def test_set_balance_is_recorded_as_the_delta_to_target(self):
        services.adjust_balance(self.owner, Decimal("70.00"), BankBalanceEntry.EntryType.ADD)

        entry = services.set_balance(self.owner, Decimal("50.00"), "count after close")

        self.assertEqual(entry.entry_type, BankBalanceEntry.EntryType.SET)
        self.assertEqual(entry.amount, Decimal("-20.00"))
        self.assertEqual(entry.new_balance, Decimal("50.00"))

    def test_history_entries_cannot_be_rewritten(self):
        entry = services.adjust_balance(self.owner, Decimal("5.00"), BankBalanceEntry.EntryType.ADD)
        entry.notes = "edited"

        with self.assertRaises(ValueError):
            entry.save()

    def test_unknown_entry_type_is_rejected_before_writing(self):
        with self.assertRaises(ServiceError):
            services.adjust_balance(self.owner, Decimal("5.00"), "bonus")

        self.assertFalse(BankBalanceEntry.objects.filter(owner=self.owner).exists())

    def test_reconcile_reports_divergence_without_repairing(self):
        services.adjust_balance(self.owner, Decimal("10.00"), BankBalanceEntry.EntryType.ADD)
        BankAccount.objects.filter(owner=self.owner).update(balance=Decimal("99.00"))

        with self.assertLogs("ledger.services", level="WARNING") as logs:
            report = services.reconcile(self.owner)

        self.assertFalse(report.consistent)
        self.assertEqual(report.cached_balance, Decimal("99.00"))
        self.assertEqual(report.replayed_balance, Decimal("10.00"))
        self.assertEqual(services.get_balance(self.owner), Decimal("99.00"))
        self.assertTrue(any("bank_ledger_divergence" in line for line in logs.output))


class DailyExpenseServiceTests(TestCase):
    def setUp(self):
        self.owner = get_user_model().objects.create_user(username="expense-owner", password="pass1234")
        services.set_balance(self.owner, Decimal("500.00"))

    def test_add_then_delete_expense_restores_balance(self):
        expense = services.add_expense(self.owner, Decimal("30.00"), date(2024, 5, 2), "supplies")

        self.assertEqual(services.get_balance(self.owner), Decimal("470.00"))
        added = services.get_history(self.owner).first()
        self.assertEqual(added.entry_type, BankBalanceEntry.EntryType.EXPENSE)
        self.assertEqual(added.amount, Decimal("-30.00"))

        services.delete_expense(expense)

        self.assertEqual(services.get_balance(self.owner), Decimal("500.00"))
        deleted = services.get_history(self.owner).first()
        self.assertEqual(deleted.entry_type, BankBalanceEntry.EntryType.DELETE_EXPENSE)
        self.assertEqual(deleted.amount, Decimal("30.00"))
        self.assertFalse(DailyExpense.objects.filter(id=expense.id).exists())
        self.assertTrue(services.reconcile(self.owner).consistent)

    def test_edit_changes_balance_by_old_minus_new(self):
        expense = services.add_expense(self.owner, Decimal("30.00"), date(2024, 5, 2))
        before = services.get_balance(self.owner)
        entries_before = BankBalanceEntry.objects.filter(owner=self.owner).count()

        services.edit_expense(expense, amount=Decimal("45.00"))

        self.assertEqual(services.get_balance(self.owner), before + Decimal("30.00") - Decimal("45.00"))
        self.assertEqual(BankBalanceEntry.objects.filter(owner=self.owner).count(), entries_before + 1)
        edit = services.get_history(self.owner).first()
        self.assertEqual(edit.entry_type, BankBalanceEntry.EntryType.EXPENSE_EDIT)
        # Signed as old minus new so each entry's amount is its balance delta.
        self.assertEqual(edit.amount, Decimal("-15.00"))
        self.assertTrue(services.reconcile(self.owner).consistent)

    def test_edit_without_amount_change_appends_nothing(self):
        expense = services.add_expense(self.owner, Decimal("30.00"), date(2024, 5, 2))
        entries_before = BankBalanceEntry.objects.filter(owner=self.owner).count()

        services.edit_expense(expense, notes="receipt lost", date=date(2024, 5, 3))

        expense.refresh_from_db()
        self.assertEqual(expense.notes, "receipt lost")
        self.assertEqual(expense.date, date(2024, 5, 3))
        self.assertEqual(BankBalanceEntry.objects.filter(owner=self.owner).count(), entries_before)

    def test_non_positive_expense_is_rejected_without_writes(self):
        with self.assertRaises(ServiceError) as ctx:
            services.add_expense(self.owner, Decimal("0"), date(2024, 5, 2))

        self.assertIn("amount", ctx.exception.details)
        self.assertFalse(DailyExpense.objects.exists())
        self.assertEqual(services.get_balance(self.owner), Decimal("500.00"))


class BankLedgerApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.owner = self.user_model.objects.create_user(username="api-owner", password="pass1234")
        self.other = self.user_model.objects.create_user(username="api-other", password="pass1234")
        self.client.force_authenticate(user=self.owner)

    def test_adjust_endpoint_validates_type_specific_fields(self):
        missing_balance = self.client.post("/api/v1/bank-balance/adjust/", {"type": "set"}, format="json")
        bad_type = self.client.post("/api/v1/bank-balance/adjust/", {"type": "expense", "amount": "5"}, format="json")

        self.assertEqual(missing_balance.status_code, 400)
        self.assertIn("balance", missing_balance.json()["errors"])
        self.assertEqual(bad_type.status_code, 400)
        self.assertFalse(BankBalanceEntry.objects.exists())

    def test_adjust_and_read_balance(self):
        set_res = self.client.post("/api/v1/bank-balance/adjust/", {"type": "set", "balance": "200.00"}, format="json")
        add_res = self.client.post(
            "/api/v1/bank-balance/adjust/",
            {"type": "add", "amount": "-35.25", "notes": "safe drop"},
            format="json",
        )

        self.assertEqual(set_res.status_code, 201)
        self.assertEqual(add_res.status_code, 201)
        self.assertEqual(add_res.json()["new_balance"], "164.75")
        self.assertEqual(add_res.json()["type"], "add")

        balance = self.client.get("/api/v1/bank-balance/")
        self.assertEqual(Decimal(str(balance.json()["balance"])), Decimal("164.75"))

    def test_history_is_newest_first_paginated_and_owner_scoped(self):
        for delta in ["1.00", "2.00", "3.00"]:
            services.adjust_balance(self.owner, Decimal(delta), BankBalanceEntry.EntryType.ADD)
        services.adjust_balance(self.other, Decimal("9.00"), BankBalanceEntry.EntryType.ADD)

        response = self.client.get("/api/v1/bank-balance/history/?page_size=2")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["count"], 3)
        self.assertEqual([row["amount"] for row in payload["results"]], ["3.00", "2.00"])
        self.assertIsNotNone(payload["next"])

    def test_expense_crud_keeps_ledger_in_step(self):
        created = self.client.post(
            "/api/v1/expenses/",
            {"amount": "30.00", "date": "2024-05-02", "notes": "cleaning"},
            format="json",
        )
        self.assertEqual(created.status_code, 201)
        expense_id = created.json()["id"]
        self.assertEqual(services.get_balance(self.owner), Decimal("-30.00"))

        updated = self.client.patch(f"/api/v1/expenses/{expense_id}/", {"amount": "20.00"}, format="json")
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.json()["amount"], "20.00")
        self.assertEqual(services.get_balance(self.owner), Decimal("-20.00"))

        deleted = self.client.delete(f"/api/v1/expenses/{expense_id}/")
        self.assertEqual(deleted.status_code, 204)
        self.assertEqual(services.get_balance(self.owner), Decimal("0.00"))

        types = list(BankBalanceEntry.objects.filter(owner=self.owner).order_by("sequence").values_list("entry_type", flat=True))
        self.assertEqual(types, ["expense", "expenseEdit", "deleteExpense"])
        self.assertTrue(services.reconcile(self.owner).consistent)

    def test_expense_must_be_positive(self):
        response = self.client.post("/api/v1/expenses/", {"amount": "-5.00", "date": "2024-05-02"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("amount", response.json()["errors"])
        self.assertFalse(BankBalanceEntry.objects.exists())

    def test_cannot_touch_other_owner_expense(self):
        expense = services.add_expense(self.other, Decimal("10.00"), date(2024, 5, 2))

        response = self.client.delete(f"/api/v1/expenses/{expense.id}/")

        self.assertEqual(response.status_code, 404)
        self.assertTrue(DailyExpense.objects.filter(id=expense.id).exists())

    def test_reconcile_endpoint(self):
        services.adjust_balance(self.owner, Decimal("10.00"), BankBalanceEntry.EntryType.ADD)

        response = self.client.get("/api/v1/bank-balance/reconcile/")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["consistent"])
        self.assertEqual(response.json()["entry_count"], 1)

    def test_ledger_screens_honor_reporting_password(self):
        self.owner.set_reporting_password("ledger-pass")
        self.owner.save()

        with self.assertLogs("security.authorization", level="WARNING"):
            denied = self.client.get("/api/v1/bank-balance/history/")
        allowed = self.client.get("/api/v1/bank-balance/history/", HTTP_X_REPORTING_PASSWORD="ledger-pass")

        self.assertEqual(denied.status_code, 403)
        self.assertEqual(allowed.status_code, 200)


class VerifyBankLedgerCommandTests(TestCase):
    def setUp(self):
        self.user_model = get_user_model()
        self.good = self.user_model.objects.create_user(username="good-owner", password="pass1234")
        self.bad = self.user_model.objects.create_user(username="bad-owner", password="pass1234")
        services.adjust_balance(self.good, Decimal("10.00"), BankBalanceEntry.EntryType.ADD)
        services.adjust_balance(self.bad, Decimal("10.00"), BankBalanceEntry.EntryType.ADD)

    def test_reports_only_divergent_owners(self):
        BankAccount.objects.filter(owner=self.bad).update(balance=Decimal("1.00"))
        out = StringIO()

        call_command("verify_bank_ledger", stdout=out)

        output = out.getvalue()
        self.assertIn("bad-owner", output)
        self.assertNotIn("good-owner", output)
        self.assertIn("Found 1 divergent bank ledger(s) across 2 owner(s).", output)

    def test_single_owner_consistent(self):
        out = StringIO()

        call_command("verify_bank_ledger", "--owner", "good-owner", stdout=out)

        self.assertIn("Checked 1 owner(s). All bank ledgers are consistent.", out.getvalue())


class ProfitLossReportTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.owner = get_user_model().objects.create_user(username="report-owner", password="pass1234")
        self.client.force_authenticate(user=self.owner)

    def test_month_with_shift_and_expense_on_different_days(self):
        make_shift_record(self.owner, "Alice_1", datetime(2024, 5, 3, 15, 0, tzinfo=dt_timezone.utc), "60.00")
        services.add_expense(self.owner, Decimal("10.00"), date(2024, 5, 7), "mop")
        make_shift_record(self.owner, "Alice_2", datetime(2024, 6, 1, 15, 0, tzinfo=dt_timezone.utc), "999.00")

        report = build_monthly_report(self.owner, date(2024, 5, 1), ZoneInfo("UTC"))

        self.assertEqual([day.date for day in report.daily_reports], [date(2024, 5, 7), date(2024, 5, 3)])
        by_day = {day.date: day for day in report.daily_reports}
        self.assertEqual(by_day[date(2024, 5, 3)].net_profit, Decimal("60.00"))
        self.assertEqual(by_day[date(2024, 5, 7)].net_profit, Decimal("-10.00"))
        self.assertEqual(by_day[date(2024, 5, 7)].expense_notes, ["mop"])
        self.assertEqual(report.monthly_net_profit, Decimal("50.00"))

    def test_matched_amounts_reduce_daily_net(self):
        end = datetime(2024, 5, 3, 15, 0, tzinfo=dt_timezone.utc)
        make_shift_record(self.owner, "Alice_1", end, "60.00", matched="20.00")
        make_shift_record(self.owner, "Bob_1", end + timedelta(hours=2), "40.00")

        report = build_monthly_report(self.owner, date(2024, 5, 1), ZoneInfo("UTC"))

        self.assertEqual(len(report.daily_reports), 1)
        day = report.daily_reports[0]
        self.assertEqual(day.shift_profit_loss, Decimal("100.00"))
        self.assertEqual(day.total_matched_amount, Decimal("20.00"))
        self.assertEqual(day.net_profit, Decimal("80.00"))

    def test_shifts_are_grouped_by_local_calendar_day(self):
        # 03:00 UTC on May 1st is still April 30th in Chicago.
        make_shift_record(self.owner, "Late_1", datetime(2024, 5, 1, 3, 0, tzinfo=dt_timezone.utc), "25.00")

        chicago = build_monthly_report(self.owner, date(2024, 4, 1), ZoneInfo("America/Chicago"))
        utc = build_monthly_report(self.owner, date(2024, 4, 1), ZoneInfo("UTC"))

        self.assertEqual([day.date for day in chicago.daily_reports], [date(2024, 4, 30)])
        self.assertEqual(utc.daily_reports, [])

    def test_endpoint_returns_json_and_csv(self):
        make_shift_record(self.owner, "Alice_1", datetime(2024, 5, 3, 15, 0, tzinfo=dt_timezone.utc), "60.00")
        services.add_expense(self.owner, Decimal("10.00"), date(2024, 5, 7), "mop")

        response = self.client.get("/api/v1/reports/profit-loss/?month=2024-05")
        export = self.client.get("/api/v1/reports/profit-loss/?month=2024-05&export=csv")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["month"], "2024-05")
        self.assertEqual(Decimal(str(payload["monthly_net_profit"])), Decimal("50"))
        self.assertEqual([row["date"] for row in payload["results"]], ["2024-05-07", "2024-05-03"])

        self.assertEqual(export.status_code, 200)
        self.assertEqual(export["Content-Type"], "text/csv")
        lines = export.content.decode().strip().splitlines()
        self.assertTrue(lines[0].startswith("date,"))
        self.assertEqual(len(lines), 3)

    def test_endpoint_rejects_bad_month_and_timezone(self):
        bad_month = self.client.get("/api/v1/reports/profit-loss/?month=May-2024")
        bad_tz = self.client.get("/api/v1/reports/profit-loss/?month=2024-05&timezone=Nowhere/City")

        self.assertEqual(bad_month.status_code, 400)
        self.assertIn("month", bad_month.json()["errors"])
        self.assertEqual(bad_tz.status_code, 400)
        self.assertIn("timezone", bad_tz.json()["errors"])

from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.db.models import Sum
from django.db.models.functions import Coalesce, TruncDate
from django.http import HttpResponse
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.permissions import ReportingPasswordPermission
from common.utils import ZERO
from ledger.models import DailyExpense
from shifts.models import ShiftRecord


@dataclass
class DailyReport:
    date: date
    shift_profit_loss: Decimal = ZERO
    total_matched_amount: Decimal = ZERO
    total_expenses: Decimal = ZERO
    expense_notes: list = field(default_factory=list)

    @property
    def net_profit(self):
        return self.shift_profit_loss - self.total_matched_amount - self.total_expenses

    def as_dict(self):
        return {**asdict(self), "date": self.date.isoformat(), "net_profit": self.net_profit}


@dataclass
class MonthlyReport:
    month: date
    timezone: str
    daily_reports: list

    @property
    def monthly_net_profit(self):
        return sum((day.net_profit for day in self.daily_reports), ZERO)


def month_bounds(month, tz):
    first_day = month.replace(day=1)
    if first_day.month == 12:
        next_month = first_day.replace(year=first_day.year + 1, month=1)
    else:
        next_month = first_day.replace(month=first_day.month + 1)
    start = datetime.combine(first_day, time.min).replace(tzinfo=tz)
    end = datetime.combine(next_month, time.min).replace(tzinfo=tz)
    return first_day, next_month, start, end


def build_monthly_report(owner, month, tz):
    """Join shift results and expenses by calendar day for one month.

    Shifts are bucketed by the local day of `end_time`, expenses by their
    `date`. Nothing is cached; each call re-reads the source rows.
    """
    first_day, next_month, start, end = month_bounds(month, tz)
    days = {}

    def day_for(key):
        if key not in days:
            days[key] = DailyReport(date=key)
        return days[key]

    shift_rows = (
        ShiftRecord.objects.filter(owner=owner, end_time__gte=start, end_time__lt=end)
        .annotate(day=TruncDate("end_time", tzinfo=tz))
        .values("day")
        .annotate(
            profit_or_loss=Coalesce(Sum("profit_or_loss"), ZERO),
            matched=Coalesce(Sum("total_matched_amount"), ZERO),
        )
        .order_by()
    )
    for row in shift_rows:
        day = day_for(row["day"])
        day.shift_profit_loss += row["profit_or_loss"]
        day.total_matched_amount += row["matched"]

    notes_by_day = defaultdict(list)
    expenses = DailyExpense.objects.filter(owner=owner, date__gte=first_day, date__lt=next_month).order_by("date", "timestamp")
    for expense in expenses.only("date", "amount", "notes"):
        day = day_for(expense.date)
        day.total_expenses += expense.amount
        if expense.notes:
            notes_by_day[expense.date].append(expense.notes)

    for key, notes in notes_by_day.items():
        days[key].expense_notes = notes

    daily_reports = sorted(days.values(), key=lambda day: day.date, reverse=True)
    return MonthlyReport(month=first_day, timezone=str(tz), daily_reports=daily_reports)


class ProfitLossReportView(APIView):
    permission_classes = [IsAuthenticated, ReportingPasswordPermission]

    def _parse_timezone(self, tz_name):
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError({"timezone": "Invalid IANA timezone."})

    def _parse_month(self, raw_month, tz):
        if not raw_month:
            return timezone.now().astimezone(tz).date().replace(day=1)
        try:
            return datetime.strptime(raw_month, "%Y-%m").date()
        except ValueError:
            raise ValidationError({"month": "Month must use the YYYY-MM format."})

    def _csv_response(self, filename, rows):
        import csv

        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = f'attachment; filename="{filename}"'

        if not rows:
            return response

        writer = csv.DictWriter(response, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        for row in rows:
            writer.writerow({**row, "expense_notes": "; ".join(row["expense_notes"])})
        return response

    def get(self, request):
        tz_name = request.query_params.get("timezone") or request.user.timezone
        tz = self._parse_timezone(tz_name)
        month = self._parse_month(request.query_params.get("month"), tz)

        report = build_monthly_report(request.user, month, tz)
        rows = [day.as_dict() for day in report.daily_reports]

        if request.query_params.get("export") == "csv":
            return self._csv_response(f"profit_loss_{month:%Y_%m}.csv", rows)
        return Response(
            {
                "month": month.strftime("%Y-%m"),
                "timezone": tz_name,
                "monthly_net_profit": report.monthly_net_profit,
                "results": rows,
            }
        )

from django.urls import path
from rest_framework.routers import DefaultRouter

from ledger.reports import ProfitLossReportView
from ledger.views import (
    BankBalanceAdjustView,
    BankBalanceHistoryView,
    BankBalanceReconcileView,
    BankBalanceView,
    DailyExpenseViewSet,
)

router = DefaultRouter()
router.register(r"expenses", DailyExpenseViewSet, basename="daily-expense")

urlpatterns = router.urls + [
    path("bank-balance/", BankBalanceView.as_view(), name="bank-balance"),
    path("bank-balance/adjust/", BankBalanceAdjustView.as_view(), name="bank-balance-adjust"),
    path("bank-balance/history/", BankBalanceHistoryView.as_view(), name="bank-balance-history"),
    path("bank-balance/reconcile/", BankBalanceReconcileView.as_view(), name="bank-balance-reconcile"),
    path("reports/profit-loss/", ProfitLossReportView.as_view(), name="report-profit-loss"),
]

from django.urls import path
from rest_framework.routers import DefaultRouter

from core.views import (
    AuditLogViewSet,
    OwnerProfileView,
    PasswordResetConfirmView,
    PasswordResetRequestView,
    RegisterView,
    ReportingPasswordView,
)

router = DefaultRouter()
router.register(r"audit-logs", AuditLogViewSet, basename="audit-log")

urlpatterns = router.urls + [
    path("register/", RegisterView.as_view(), name="register"),
    path("owner/", OwnerProfileView.as_view(), name="owner-profile"),
    path("owner/reporting-password/", ReportingPasswordView.as_view(), name="owner-reporting-password"),
    path("password-reset/request/", PasswordResetRequestView.as_view(), name="password_reset_request"),
    path("password-reset/confirm/", PasswordResetConfirmView.as_view(), name="password_reset_confirm"),
]

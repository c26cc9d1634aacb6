import logging

from django.conf import settings
from rest_framework.permissions import BasePermission

logger = logging.getLogger("security.authorization")


def reporting_password_matches(user, raw_password):
    if not user or not user.is_authenticated:
        return False
    if not user.has_reporting_password():
        return True
    if not raw_password:
        return False
    return user.check_reporting_password(raw_password)


class ReportingPasswordPermission(BasePermission):
    """Secondary gate for financial screens; checked only when the owner has set a reporting password.

    The password travels in the `X-Reporting-Password` header. It keeps staff
    sharing the owner login away from profit figures and is not a security boundary.
    """

    message = "A valid reporting password is required."

    def has_permission(self, request, view):
        raw_password = request.headers.get(settings.REPORTING_PASSWORD_HEADER)
        allowed = reporting_password_matches(request.user, raw_password)
        if not allowed:
            logger.warning(
                "reporting_access_denied user=%s method=%s path=%s view=%s header_present=%s",
                getattr(request.user, "username", "anonymous"),
                request.method,
                request.path,
                view.__class__.__name__,
                bool(raw_password),
            )
        return allowed

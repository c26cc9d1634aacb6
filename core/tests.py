from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.contrib.auth.tokens import default_token_generator
from django.core import mail
from django.test import TestCase, override_settings
from django.utils.encoding import force_bytes
from django.utils.http import urlsafe_base64_encode
from rest_framework.test import APIClient

from common.exceptions import ServiceError
from common.utils import parse_amount, slugify_employee
from core.models import AuditLog


class ErrorEnvelopeTests(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_unauthenticated_request_gets_not_authenticated_envelope(self):
        response = self.client.get("/api/v1/bank-balance/")

        self.assertEqual(response.status_code, 401)
        payload = response.json()
        self.assertEqual(payload["code"], "not_authenticated")
        self.assertEqual(payload["status"], 401)
        self.assertIsNone(payload["errors"])

    def test_unauthenticated_write_creates_nothing(self):
        response = self.client.post("/api/v1/shifts/draft/start/", {"employee_name": "Alice"}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertFalse(AuditLog.objects.exists())

    def test_service_error_is_rendered_with_code_and_details(self):
        user = get_user_model().objects.create_user(username="envelope-owner", password="pass1234")
        self.client.force_authenticate(user=user)

        with patch("shifts.services.DraftStore.start", side_effect=ServiceError("shift_already_active", message="busy")):
            response = self.client.post("/api/v1/shifts/draft/start/", {"employee_name": "Alice"}, format="json")

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json(), {"code": "shift_already_active", "message": "busy", "errors": None, "status": 422})


class RegistrationAndTokenTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.user_model.objects.create_user(
            username="existing-owner",
            email="existing@example.com",
            password="pass12345",
        )

    def test_register_creates_owner_with_timezone(self):
        response = self.client.post(
            "/api/v1/register/",
            {
                "username": "arcade-owner",
                "email": "Owner@Example.com",
                "password": "pass12345",
                "business_name": "Lucky Arcade",
                "timezone": "America/Chicago",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        owner = self.user_model.objects.get(username="arcade-owner")
        self.assertEqual(owner.email, "owner@example.com")
        self.assertEqual(owner.timezone, "America/Chicago")
        self.assertTrue(AuditLog.objects.filter(action="user.create", owner=owner).exists())

    def test_registration_rejects_case_insensitive_duplicate_email(self):
        response = self.client.post(
            "/api/v1/register/",
            {"username": "new-owner", "email": "EXISTING@example.com", "password": "pass12345"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["errors"], {"email": ["A user with this email already exists."]})

    def test_registration_rejects_unknown_timezone(self):
        response = self.client.post(
            "/api/v1/register/",
            {"username": "tz-owner", "password": "pass12345", "timezone": "Mars/Olympus"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("timezone", response.json()["errors"])

    def test_token_accepts_email_in_username_field(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "EXISTING@example.com", "password": "pass12345"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())
        self.assertIn("refresh", response.json())


class OwnerProfileTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.owner = get_user_model().objects.create_user(username="profile-owner", password="pass1234")
        self.client.force_authenticate(user=self.owner)

    def test_profile_update_keeps_sms_flag_read_only(self):
        response = self.client.patch(
            "/api/v1/owner/",
            {"business_name": "Night Owl Games", "timezone": "America/New_York", "has_sms_feature": True},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.owner.refresh_from_db()
        self.assertEqual(self.owner.business_name, "Night Owl Games")
        self.assertEqual(self.owner.timezone, "America/New_York")
        self.assertFalse(self.owner.has_sms_feature)


class ReportingPasswordTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.owner = get_user_model().objects.create_user(username="gate-owner", password="pass1234")
        self.client.force_authenticate(user=self.owner)

    def test_reports_are_open_until_a_reporting_password_is_set(self):
        response = self.client.get("/api/v1/reports/profit-loss/?month=2024-05")

        self.assertEqual(response.status_code, 200)

    def test_set_password_gates_reports_and_logs_denials(self):
        response = self.client.post("/api/v1/owner/reporting-password/", {"new_password": "s3cret"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["has_reporting_password"])
        self.owner.refresh_from_db()
        self.assertNotEqual(self.owner.reporting_password, "s3cret")

        with self.assertLogs("security.authorization", level="WARNING") as logs:
            denied = self.client.get("/api/v1/reports/profit-loss/?month=2024-05")
        self.assertEqual(denied.status_code, 403)
        self.assertEqual(denied.json()["code"], "permission_denied")
        self.assertTrue(any("reporting_access_denied" in line for line in logs.output))

        wrong = self.client.get("/api/v1/reports/profit-loss/?month=2024-05", HTTP_X_REPORTING_PASSWORD="nope")
        allowed = self.client.get("/api/v1/reports/profit-loss/?month=2024-05", HTTP_X_REPORTING_PASSWORD="s3cret")
        self.assertEqual(wrong.status_code, 403)
        self.assertEqual(allowed.status_code, 200)

    def test_changing_password_requires_current_one(self):
        self.owner.set_reporting_password("first")
        self.owner.save()

        rejected = self.client.post("/api/v1/owner/reporting-password/", {"new_password": "second"}, format="json")
        accepted = self.client.post(
            "/api/v1/owner/reporting-password/",
            {"current_password": "first", "new_password": ""},
            format="json",
        )

        self.assertEqual(rejected.status_code, 400)
        self.assertEqual(accepted.status_code, 200)
        self.assertFalse(accepted.json()["has_reporting_password"])
        self.assertTrue(AuditLog.objects.filter(action="owner.reporting_password.clear", owner=self.owner).exists())


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.owner = self.user_model.objects.create_user(username="audit-owner", password="pass1234")
        self.other = self.user_model.objects.create_user(username="audit-other", password="pass1234")

    def test_audit_logs_are_owner_scoped_and_read_only(self):
        mine = AuditLog.objects.create(owner=self.owner, actor=self.owner, action="test.action", entity="test")
        theirs = AuditLog.objects.create(owner=self.other, actor=self.other, action="test.action", entity="test")
        self.client.force_authenticate(user=self.owner)

        listing = self.client.get("/api/v1/audit-logs/")
        patch_res = self.client.patch(f"/api/v1/audit-logs/{mine.id}/", {"action": "changed"}, format="json")
        other_res = self.client.get(f"/api/v1/audit-logs/{theirs.id}/")

        self.assertEqual(listing.status_code, 200)
        ids = {item["id"] for item in listing.json()["results"]}
        self.assertEqual(ids, {str(mine.id)})
        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(other_res.status_code, 404)

    def test_request_id_is_recorded(self):
        self.client.force_authenticate(user=self.owner)

        response = self.client.post(
            "/api/v1/bank-balance/adjust/",
            {"type": "set", "balance": "100.00"},
            format="json",
            HTTP_X_REQUEST_ID="req-123",
        )

        self.assertEqual(response.status_code, 201)
        self.assertTrue(AuditLog.objects.filter(action="bank_balance.set", request_id="req-123").exists())


class PasswordResetTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(
            username="reset-user",
            email="reset@example.com",
            password="old-pass-123",
        )

    def test_password_reset_request_returns_generic_message_for_known_and_unknown_email(self):
        known_response = self.client.post("/api/v1/password-reset/request/", {"email": self.user.email}, format="json")
        unknown_response = self.client.post("/api/v1/password-reset/request/", {"email": "missing@example.com"}, format="json")

        self.assertEqual(known_response.status_code, 200)
        self.assertEqual(unknown_response.status_code, 200)
        self.assertEqual(known_response.json()["detail"], unknown_response.json()["detail"])

    @override_settings(
        PASSWORD_RESET_FRONTEND_URL="https://app.example.com/reset-password",
        PASSWORD_RESET_FROM_EMAIL="support@example.com",
    )
    def test_password_reset_request_sends_clickable_link(self):
        response = self.client.post("/api/v1/password-reset/request/", {"email": self.user.email}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.from_email, "support@example.com")
        uid = urlsafe_base64_encode(force_bytes(self.user.pk))
        self.assertIn(f"https://app.example.com/reset-password/{uid}/", message.body)

    def test_password_reset_confirm_updates_password_with_valid_token(self):
        token = default_token_generator.make_token(self.user)
        uid = urlsafe_base64_encode(force_bytes(self.user.pk))

        response = self.client.post(
            "/api/v1/password-reset/confirm/",
            {"uid": uid, "token": token, "new_password": "new-safe-pass-123"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("new-safe-pass-123"))

    def test_password_reset_confirm_rejects_invalid_token(self):
        uid = urlsafe_base64_encode(force_bytes(self.user.pk))

        response = self.client.post(
            "/api/v1/password-reset/confirm/",
            {"uid": uid, "token": "invalid-token", "new_password": "new-safe-pass-123"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("old-pass-123"))

    def test_password_reset_request_logs_mail_send_failures(self):
        with patch("core.views.send_mail", side_effect=RuntimeError("mail down")):
            with self.assertLogs("core.views", level="ERROR") as logs:
                response = self.client.post("/api/v1/password-reset/request/", {"email": self.user.email}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(any("password_reset_email_send_failed" in entry for entry in logs.output))


class HealthTests(TestCase):
    def test_health_endpoints(self):
        client = APIClient()

        self.assertEqual(client.get("/healthz/").json()["status"], "ok")
        self.assertEqual(client.get("/readyz/").json()["status"], "ready")


class AmountParsingTests(TestCase):
    def test_free_text_amounts_are_coerced(self):
        self.assertEqual(str(parse_amount("$1,200.5")), "1200.50")
        self.assertEqual(str(parse_amount("")), "0.00")
        self.assertEqual(str(parse_amount("abc")), "0.00")
        self.assertEqual(str(parse_amount("-40")), "0.00")
        self.assertEqual(str(parse_amount("NaN")), "0.00")

    def test_amounts_beyond_the_money_columns_count_as_zero(self):
        self.assertEqual(str(parse_amount("1e30")), "0.00")
        self.assertEqual(str(parse_amount("1000000000000")), "0.00")
        self.assertEqual(str(parse_amount("999999999999.99")), "999999999999.99")


    def test_employee_slug_replaces_whitespace_runs(self):
        self.assertEqual(slugify_employee("  Mary  Ann Lee "), "Mary_Ann_Lee")

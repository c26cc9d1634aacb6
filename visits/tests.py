import shutil
import tempfile
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from decimal import Decimal
from io import BytesIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase
from PIL import Image
from rest_framework.test import APIClient

from common.exceptions import ServiceError
from shifts.drafts import DraftStore
from visits import services
from visits.models import Customer, Visit
from visits.services import VisitUploadError, record_visit

T0 = datetime(2024, 5, 3, 14, 0, tzinfo=dt_timezone.utc)


def make_image(name="photo.png"):
    buffer = BytesIO()
    Image.new("RGB", (4, 4), "white").save(buffer, format="PNG")
    return SimpleUploadedFile(name, buffer.getvalue(), content_type="image/png")


class TemporaryMediaMixin:
    def use_temporary_media(self):
        media_root = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, media_root, ignore_errors=True)
        override = self.settings(MEDIA_ROOT=media_root)
        override.enable()
        self.addCleanup(override.disable)
        return media_root


class RecordVisitTests(TemporaryMediaMixin, TestCase):
    def setUp(self):
        self.owner = get_user_model().objects.create_user(username="visit-owner", password="pass1234")
        DraftStore.start(self.owner, "Alice", T0 - timedelta(hours=1))

    def test_second_match_inside_cooldown_is_rejected_without_writes(self):
        first = record_visit(self.owner, "5551234567", "Jane Doe", Decimal("20"), "4", now=T0)
        second = record_visit(self.owner, "5551234567", "Jane Doe", Decimal("15"), "4", now=T0 + timedelta(hours=3))

        self.assertTrue(first.accepted)
        self.assertTrue(first.customer_created)
        self.assertFalse(second.accepted)
        self.assertEqual(second.reason, "cooldown")
        self.assertEqual(second.prior_match["match_amount"], Decimal("20.00"))
        self.assertEqual(second.prior_match["age_seconds"], 3 * 3600)
        self.assertEqual(Visit.objects.filter(owner=self.owner).count(), 1)
        self.assertEqual(services.latest_visit(self.owner, "5551234567").match_amount, Decimal("20.00"))

    def test_exactly_twelve_hours_later_is_allowed(self):
        record_visit(self.owner, "5551234567", "Jane Doe", Decimal("20"), "4", now=T0)

        just_before = record_visit(
            self.owner, "5551234567", "Jane Doe", Decimal("5"), "4", now=T0 + timedelta(hours=12, seconds=-1)
        )
        at_boundary = record_visit(self.owner, "5551234567", "Jane Doe", Decimal("5"), "4", now=T0 + timedelta(hours=12))

        self.assertFalse(just_before.accepted)
        self.assertTrue(at_boundary.accepted)
        self.assertFalse(at_boundary.customer_created)
        self.assertEqual(services.latest_visit(self.owner, "5551234567").match_amount, Decimal("5.00"))
        self.assertEqual(Visit.objects.filter(owner=self.owner).count(), 2)

    def test_cooldown_is_per_owner(self):
        other = get_user_model().objects.create_user(username="visit-other", password="pass1234")
        DraftStore.start(other, "Bob", T0 - timedelta(hours=1))

        record_visit(self.owner, "5551234567", "Jane Doe", Decimal("20"), "4", now=T0)
        result = record_visit(other, "5551234567", "Jane Doe", Decimal("20"), "4", now=T0 + timedelta(minutes=5))

        self.assertTrue(result.accepted)

    def test_customer_profile_is_created_once(self):
        record_visit(self.owner, "5551234567", "Jane Doe", Decimal("0"), "", now=T0)
        record_visit(self.owner, "5551234567", "Janet", Decimal("0"), "", now=T0 + timedelta(hours=13))

        customer = Customer.objects.get(owner=self.owner, phone="5551234567")
        self.assertEqual(customer.name, "Jane Doe")
        self.assertEqual(customer.visits.count(), 2)

    def test_validation_rejects_bad_input_before_any_write(self):
        cases = [
            (("555123456", "Jane", Decimal("0"), ""), "phone"),
            (("55512345678", "Jane", Decimal("0"), ""), "phone"),
            (("555-123-45", "Jane", Decimal("0"), ""), "phone"),
            (("5551234567", "Jane 2", Decimal("0"), ""), "name"),
            (("5551234567", "Jane", Decimal("-1"), ""), "match_amount"),
            (("5551234567", "Jane", Decimal("10"), ""), "machine_number"),
            (("5551234567", "", Decimal("0"), ""), "name"),
        ]
        for args, field in cases:
            with self.subTest(field=field, args=args):
                with self.assertRaises(ServiceError) as ctx:
                    record_visit(self.owner, *args, now=T0)
                self.assertIn(field, ctx.exception.details)

        self.assertFalse(Visit.objects.exists())
        self.assertFalse(Customer.objects.exists())

    def test_visit_requires_an_active_shift(self):
        DraftStore.clear(self.owner)

        with self.assertRaises(ServiceError) as ctx:
            record_visit(self.owner, "5551234567", "Jane Doe", Decimal("20"), "4", now=T0)

        self.assertEqual(ctx.exception.code, "no_active_shift")
        self.assertFalse(Visit.objects.exists())

    def test_id_photo_is_uploaded_for_new_customer(self):
        self.use_temporary_media()

        result = record_visit(self.owner, "5551234567", "Jane Doe", Decimal("0"), "", id_image=make_image(), now=T0)

        self.assertTrue(result.customer.id_image.name.startswith("customers/ids/"))
        self.assertEqual(result.visit.id_image.name, result.customer.id_image.name)

    def test_upload_failure_aborts_the_whole_visit(self):
        with patch("common.storage.default_storage") as storage:
            storage.save.side_effect = OSError("bucket unavailable")
            with self.assertRaises(VisitUploadError) as ctx:
                record_visit(self.owner, "5551234567", "Jane Doe", Decimal("20"), "4", id_image=make_image(), now=T0)

        self.assertEqual(ctx.exception.code, "upload_failed")
        self.assertFalse(Visit.objects.exists())
        self.assertFalse(Customer.objects.exists())

    def test_visits_between_is_inclusive(self):
        record_visit(self.owner, "5551234567", "Jane Doe", Decimal("20"), "4", now=T0)
        record_visit(self.owner, "5559876543", "John Roe", Decimal("5"), "2", now=T0 + timedelta(hours=1))

        inside = services.visits_between(self.owner, T0, T0 + timedelta(hours=1))
        after = services.visits_between(self.owner, T0 + timedelta(seconds=1), T0 + timedelta(hours=2))

        self.assertEqual(inside.count(), 2)
        self.assertEqual(after.count(), 1)


class VisitApiTests(TemporaryMediaMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.owner = self.user_model.objects.create_user(username="visit-api-owner", password="pass1234")
        self.other = self.user_model.objects.create_user(username="visit-api-other", password="pass1234")
        DraftStore.start(self.owner, "Alice", T0)
        self.client.force_authenticate(user=self.owner)

    def test_record_visit_then_cooldown_conflict(self):
        created = self.client.post(
            "/api/v1/visits/",
            {"phone": "5551234567", "name": "Jane Doe", "match_amount": "20.00", "machine_number": "4"},
            format="json",
        )
        rejected = self.client.post(
            "/api/v1/visits/",
            {"phone": "5551234567", "name": "Jane Doe", "match_amount": "15.00", "machine_number": "4"},
            format="json",
        )

        self.assertEqual(created.status_code, 201)
        self.assertTrue(created.json()["customer_created"])
        self.assertEqual(created.json()["visit"]["match_amount"], "20.00")

        self.assertEqual(rejected.status_code, 409)
        payload = rejected.json()
        self.assertEqual(payload["code"], "cooldown")
        self.assertEqual(payload["errors"]["prior_match"]["match_amount"], "20.00")
        self.assertEqual(Visit.objects.filter(owner=self.owner).count(), 1)

    def test_validation_errors_use_service_codes(self):
        response = self.client.post(
            "/api/v1/visits/",
            {"phone": "12345", "name": "Jane Doe", "match_amount": "0"},
            format="json",
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("phone", response.json()["errors"])

    def test_multipart_visit_with_id_photo(self):
        self.use_temporary_media()

        response = self.client.post(
            "/api/v1/visits/",
            {"phone": "5551234567", "name": "Jane Doe", "match_amount": "0", "id_image": make_image()},
            format="multipart",
        )

        self.assertEqual(response.status_code, 201)
        self.assertIn("/media/customers/ids/", response.json()["customer"]["id_image_url"])

    def test_payout_photo_is_attached_to_visit(self):
        self.use_temporary_media()
        result = record_visit(self.owner, "5551234567", "Jane Doe", Decimal("20"), "4")

        response = self.client.post(
            f"/api/v1/visits/{result.visit.id}/payout-photo/",
            {"image": make_image("payout.png")},
            format="multipart",
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("/media/visits/payouts/", response.json()["payout_photo_url"])
        result.visit.refresh_from_db()
        self.assertTrue(result.visit.payout_photo.name.startswith("visits/payouts/"))

    def test_customer_search_lookup_and_scoping(self):
        record_visit(self.owner, "5551234567", "Jane Doe", Decimal("0"), "")
        record_visit(self.owner, "5559876543", "John Roe", Decimal("0"), "")
        DraftStore.start(self.other, "Bob", T0)
        record_visit(self.other, "5550000000", "Jane Other", Decimal("0"), "")

        search = self.client.get("/api/v1/customers/?search=jane")
        lookup = self.client.get("/api/v1/customers/by-phone/5551234567/")
        foreign = self.client.get("/api/v1/customers/by-phone/5550000000/")

        self.assertEqual(search.status_code, 200)
        self.assertEqual([row["phone"] for row in search.json()["results"]], ["5551234567"])
        self.assertEqual(lookup.status_code, 200)
        self.assertEqual(lookup.json()["customer"]["name"], "Jane Doe")
        self.assertEqual(lookup.json()["latest_visit"]["phone"], "5551234567")
        self.assertEqual(foreign.status_code, 404)

    def test_visit_history_is_newest_first_and_filterable(self):
        record_visit(self.owner, "5551234567", "Jane Doe", Decimal("0"), "", now=T0)
        record_visit(self.owner, "5559876543", "John Roe", Decimal("0"), "", now=T0 + timedelta(hours=1))

        history = self.client.get("/api/v1/visits/")
        filtered = self.client.get("/api/v1/visits/?phone=5551234567")

        self.assertEqual([row["phone"] for row in history.json()["results"]], ["5559876543", "5551234567"])
        self.assertEqual(filtered.json()["count"], 1)

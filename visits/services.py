import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from common.exceptions import ServiceError, StorageUnavailableError
from common.storage import discard_image, store_image
from common.utils import ZERO, to_money
from shifts.drafts import DraftStore
from visits.models import Customer, Visit

logger = logging.getLogger(__name__)

PHONE_RE = re.compile(r"^\d{10}$")
DIGIT_RE = re.compile(r"\d")

COOLDOWN_REASON = "cooldown"


class VisitUploadError(StorageUnavailableError):
    """The ID photo could not be stored, so the visit was not recorded."""


@dataclass
class VisitResult:
    accepted: bool
    reason: str = None
    prior_match: dict = None
    visit: Visit = None
    customer: Customer = None
    customer_created: bool = False


def cooldown_window():
    return timedelta(hours=settings.VISIT_COOLDOWN_HOURS)


def _owner_today(owner, now):
    try:
        tz = ZoneInfo(owner.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        tz = ZoneInfo(settings.DEFAULT_OWNER_TIMEZONE)
    return now.astimezone(tz).date()


def latest_visit(owner, phone):
    return Visit.objects.filter(owner=owner, phone=phone).order_by("-timestamp").first()


def visits_between(owner, start, end):
    """Visits with `start <= timestamp <= end`, served by the (owner, timestamp) index."""
    return Visit.objects.filter(owner=owner, timestamp__gte=start, timestamp__lte=end)


def _validate(phone, name, match_amount, machine_number):
    errors = {}
    if not PHONE_RE.match(phone):
        errors["phone"] = ["Phone number must be exactly 10 digits."]
    if DIGIT_RE.search(name):
        errors["name"] = ["Name must not contain digits."]
    if match_amount is None or not match_amount.is_finite() or match_amount < 0:
        errors["match_amount"] = ["Match amount must be zero or greater."]
    elif match_amount > 0 and not machine_number:
        errors["machine_number"] = ["Machine number is required when a match amount is given."]
    if errors:
        raise ServiceError(details=errors)


def _cooldown_result(latest, now):
    age = now - latest.timestamp
    if age >= cooldown_window():
        return None
    return VisitResult(
        accepted=False,
        reason=COOLDOWN_REASON,
        prior_match={
            "match_amount": latest.match_amount,
            "age_seconds": int(age.total_seconds()),
            "timestamp": latest.timestamp,
            "machine_number": latest.machine_number,
        },
    )


def record_visit(owner, phone, name, match_amount, machine_number="", id_image=None, now=None):
    """Check a customer in and log the match they were given.

    A visit for the same phone inside the cooldown window is rejected with the
    prior match and nothing is written. Accepted visits are appended to the
    visit log; the customer profile is created on the first visit only.
    """
    now = now or timezone.now()
    phone = (phone or "").strip()
    name = (name or "").strip()
    machine_number = (machine_number or "").strip()
    match_amount = Decimal(match_amount) if match_amount is not None else ZERO

    _validate(phone, name, match_amount, machine_number)
    match_amount = to_money(match_amount)

    if DraftStore.get(owner) is None:
        raise ServiceError("no_active_shift", message="Start a shift before checking customers in.")

    customer = Customer.objects.filter(owner=owner, phone=phone).first()
    if customer is None and not name:
        raise ServiceError(details={"name": ["Name is required for a new customer."]})

    latest = latest_visit(owner, phone)
    if latest is not None:
        rejected = _cooldown_result(latest, now)
        if rejected is not None:
            logger.info("visit_cooldown_rejected", extra={"owner_id": owner.id, "phone": phone})
            return rejected

    stored_image = None
    if id_image is not None and not (customer and customer.id_image):
        try:
            stored_image = store_image(id_image, "customers/ids")
        except StorageUnavailableError as exc:
            raise VisitUploadError(details=exc.details) from exc

    try:
        with transaction.atomic():
            result = _write_visit(owner, phone, name, match_amount, machine_number, stored_image, now)
    except Exception:
        discard_image(stored_image)
        raise

    if not result.accepted:
        discard_image(stored_image)
        return result

    logger.info(
        "visit_recorded",
        extra={"owner_id": owner.id, "phone": phone, "amount": match_amount},
    )
    return result


def _write_visit(owner, phone, name, match_amount, machine_number, stored_image, now):
    customer = Customer.objects.select_for_update().filter(owner=owner, phone=phone).first()

    # Re-check under the customer lock so two check-ins racing for one phone cannot both pass.
    if customer is not None:
        latest = latest_visit(owner, phone)
        if latest is not None:
            rejected = _cooldown_result(latest, now)
            if rejected is not None:
                return rejected

    created = False
    if customer is None:
        customer = Customer.objects.create(owner=owner, phone=phone, name=name, id_image=stored_image or "")
        created = True
    elif stored_image and not customer.id_image:
        # Profiles are created once; only a missing ID photo is filled in later.
        Customer.objects.filter(pk=customer.pk).update(id_image=stored_image)
        customer.id_image = stored_image

    visit = Visit.objects.create(
        owner=owner,
        customer=customer,
        phone=phone,
        name=name or customer.name,
        match_amount=match_amount,
        machine_number=machine_number,
        id_image=customer.id_image.name if customer.id_image else "",
        timestamp=now,
        last_used=_owner_today(owner, now),
    )
    return VisitResult(accepted=True, visit=visit, customer=customer, customer_created=created)


def attach_payout_photo(visit, image):
    """Store the payout photo for a visit; only the photo field of the visit changes."""
    stored = store_image(image, "visits/payouts")
    previous = visit.payout_photo.name if visit.payout_photo else ""
    try:
        Visit.objects.filter(pk=visit.pk).update(payout_photo=stored)
    except Exception:
        discard_image(stored)
        raise
    discard_image(previous)
    visit.payout_photo = stored
    logger.info("visit_payout_photo_attached", extra={"owner_id": visit.owner_id, "phone": visit.phone})
    return visit

import logging

from django.db import IntegrityError, transaction

from common.exceptions import ServiceError
from common.utils import epoch_millis, slugify_employee
from shifts.models import DraftShift

logger = logging.getLogger(__name__)


class DraftStore:
    """One in-progress shift per signed-in user.

    Staff sharing the owner login share this single slot; a second device
    starting a shift is rejected rather than given its own draft.
    """

    @staticmethod
    def get(user, *, for_update=False):
        queryset = DraftShift.objects.filter(user=user)
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.first()

    @staticmethod
    def require(user, *, for_update=True):
        draft = DraftStore.get(user, for_update=for_update)
        if draft is None:
            raise ServiceError("no_active_shift", message="No shift has been started.")
        return draft

    @staticmethod
    def start(user, employee_name, now):
        employee_name = (employee_name or "").strip()
        if not employee_name:
            raise ServiceError(details={"employee_name": ["Employee name is required."]})

        try:
            with transaction.atomic():
                draft = DraftShift.objects.create(
                    user=user,
                    employee_name=employee_name,
                    shift_id=f"{slugify_employee(employee_name)}_{epoch_millis(now)}",
                    start_time=now,
                )
        except IntegrityError:
            raise ServiceError("shift_already_active", message="A shift is already in progress.")

        logger.info("shift_started", extra={"user_id": user.id, "shift_id": draft.shift_id})
        return draft

    @staticmethod
    def clear(user):
        deleted, _ = DraftShift.objects.filter(user=user).delete()
        return bool(deleted)

import uuid

from django.conf import settings
from django.contrib.auth.hashers import check_password, make_password
from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import Q
from django.db.models.functions import Lower


def _default_timezone():
    return settings.DEFAULT_OWNER_TIMEZONE


class User(AbstractUser):
    """Operator account. Every gameroom record is scoped to the signed-in user (the owner)."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(blank=True)
    business_name = models.CharField(max_length=255, blank=True)
    timezone = models.CharField(max_length=64, default=_default_timezone)
    has_sms_feature = models.BooleanField(default=False)
    reporting_password = models.CharField(max_length=128, blank=True)

    class Meta(AbstractUser.Meta):
        constraints = [
            models.UniqueConstraint(
                Lower("email"),
                condition=~Q(email=""),
                name="core_user_email_ci_unique",
            )
        ]

    def save(self, *args, **kwargs):
        if self.email:
            self.email = self.email.strip().lower()
        super().save(*args, **kwargs)

    def has_reporting_password(self):
        return bool(self.reporting_password)

    def set_reporting_password(self, raw_password):
        self.reporting_password = make_password(raw_password) if raw_password else ""

    def check_reporting_password(self, raw_password):
        if not self.reporting_password:
            return True
        return check_password(raw_password, self.reporting_password)


class AuditLog(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(User, on_delete=models.CASCADE, null=True, blank=True, related_name="audit_logs")
    actor = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    action = models.CharField(max_length=64)
    entity = models.CharField(max_length=64)
    entity_id = models.CharField(max_length=128, null=True, blank=True)
    before_snapshot = models.JSONField(null=True, blank=True)
    after_snapshot = models.JSONField(null=True, blank=True)
    request_id = models.CharField(max_length=255, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["owner", "created_at"], name="core_auditl_owner_i_6b1d2e_idx"),
            models.Index(fields=["action", "created_at"], name="core_auditl_action_3c8f0a_idx"),
            models.Index(fields=["entity", "created_at"], name="core_auditl_entity_9e4b71_idx"),
        ]

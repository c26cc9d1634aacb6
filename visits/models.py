import uuid

from django.db import models
from django.utils import timezone

from core.models import User


class Customer(models.Model):
    """Customer profile, created on the first accepted visit for a phone and never overwritten."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(User, on_delete=models.CASCADE, related_name="customers")
    phone = models.CharField(max_length=10)
    name = models.CharField(max_length=255)
    id_image = models.ImageField(upload_to="customers/ids/", blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["owner", "phone"], name="uniq_customer_owner_phone"),
        ]
        indexes = [
            models.Index(fields=["owner", "name"], name="visits_customer_owner_name_idx"),
        ]

    def __str__(self):
        return f"{self.name} ({self.phone})"


class Visit(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(User, on_delete=models.CASCADE, related_name="visits")
    customer = models.ForeignKey(Customer, on_delete=models.CASCADE, related_name="visits")
    phone = models.CharField(max_length=10)
    name = models.CharField(max_length=255)
    match_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    machine_number = models.CharField(max_length=32, blank=True)
    id_image = models.ImageField(upload_to="customers/ids/", blank=True)
    payout_photo = models.ImageField(upload_to="visits/payouts/", blank=True)
    timestamp = models.DateTimeField(default=timezone.now)
    last_used = models.DateField()

    class Meta:
        indexes = [
            models.Index(fields=["owner", "phone", "timestamp"], name="visits_owner_phone_ts_idx"),
            models.Index(fields=["owner", "timestamp"], name="visits_owner_ts_idx"),
        ]

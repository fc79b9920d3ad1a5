import uuid

from django.conf import settings
from django.db import models


class Order(models.Model):
    """One purchase attempt of a course through Razorpay.

    Rows are never deleted. ``status`` only ever moves out of ``pending``;
    ``paid`` and ``failed`` are terminal.
    """

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        FAILED = "failed", "Failed"

    PROVIDER_RAZORPAY = "razorpay"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="course_orders")
    course = models.ForeignKey("courses.Course", on_delete=models.PROTECT, related_name="orders")
    provider = models.CharField(max_length=16, default=PROVIDER_RAZORPAY, db_index=True)

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=8, default="INR")
    receipt = models.CharField(max_length=40, unique=True)

    gateway_order_id = models.CharField(max_length=64, unique=True)
    gateway_payment_id = models.CharField(max_length=64, unique=True, null=True, blank=True)
    gateway_signature = models.CharField(max_length=256, blank=True, default="")  # audit only

    status = models.CharField(max_length=8, choices=Status.choices, default=Status.PENDING, db_index=True)
    verified_at = models.DateTimeField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)
        indexes = [
            models.Index(fields=["user", "course", "status"], name="order_user_course_status"),
        ]

    @property
    def is_paid(self) -> bool:
        return self.status == self.Status.PAID

    def __str__(self):
        return f"{self.gateway_order_id} ({self.status})"

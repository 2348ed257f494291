import uuid

from django.conf import settings
from django.db import models


class PaymentIntent(models.Model):
    """
    Our own record of one purchase attempt.

    `status` only ever moves pending -> completed or pending -> failed, and only
    through PaymentIntentStore's conditional updates.
    """
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    class Provider(models.TextChoices):
        RAZORPAY = "razorpay", "Razorpay"
        # fully discounted, completed without a gateway link
        FREE = "free", "Free"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="payment_intents")

    amount = models.PositiveIntegerField()  # whole rupees
    currency = models.CharField(max_length=3, default="INR")
    provider = models.CharField(max_length=20, choices=Provider.choices, default=Provider.RAZORPAY)

    # gateway payment link id, primary correlation key
    provider_order_id = models.CharField(max_length=100, unique=True, null=True, blank=True)
    # gateway payment id, set on completion
    provider_payment_id = models.CharField(max_length=100, null=True, blank=True, db_index=True)
    checkout_url = models.URLField(max_length=500, blank=True, default="")

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=["status", "created_at"], name="payment_status_created_idx"),
        ]

    def __str__(self):
        return f"{self.id} - {self.amount} {self.currency} - {self.status}"

    @property
    def is_terminal(self) -> bool:
        return self.status != self.Status.PENDING


class ReconciliationIssue(models.Model):
    """Queue of payment events a human has to look at."""

    class Kind(models.TextChoices):
        UNMATCHED = "unmatched", "No matching intent"
        AMBIGUOUS = "ambiguous", "Several candidate intents"
        AMOUNT_MISMATCH = "amount_mismatch", "Captured amount differs from intent"
        TERMINAL_CONFLICT = "terminal_conflict", "Capture conflicts with a settled intent"
        MALFORMED = "malformed", "Unreadable webhook body"
        SIDE_EFFECT_FAILED = "side_effect_failed", "Enrollment/referral update failed"

    kind = models.CharField(max_length=30, choices=Kind.choices)
    intent = models.ForeignKey(
        PaymentIntent, on_delete=models.SET_NULL, null=True, blank=True, related_name="issues"
    )
    provider_payment_id = models.CharField(max_length=100, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)  # rupees
    detail = models.TextField(blank=True, default="")
    payload = models.JSONField(null=True, blank=True)

    resolved = models.BooleanField(default=False, db_index=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.kind} ({'resolved' if self.resolved else 'open'})"

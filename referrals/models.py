from django.conf import settings
from django.db import models


class Referral(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        ENROLLED_FREE = "enrolled_free", "Enrolled (free)"
        ENROLLED_PAID = "enrolled_paid", "Enrolled (paid)"
        CANCELLED = "cancelled", "Cancelled"

    referrer = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="referrals_made"
    )
    # exactly one referral per referee
    referee = models.OneToOneField(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="referral"
    )
    referral_code = models.CharField(max_length=20)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)
    points_awarded = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    enrolled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["referrer", "status"], name="referral_referrer_status_idx"),
        ]

    def __str__(self):
        return f"{self.referrer_id} -> {self.referee_id} ({self.status})"


class ReferralReward(models.Model):
    referral = models.OneToOneField(Referral, on_delete=models.CASCADE, related_name="reward")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="referral_rewards")
    points_earned = models.PositiveIntegerField()
    reason = models.CharField(max_length=50)
    created_at = models.DateTimeField(auto_now_add=True)


class ReferralPoints(models.Model):
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="referral_points")
    total_points = models.PositiveIntegerField(default=0)
    available_points = models.PositiveIntegerField(default=0)
    redeemed_points = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

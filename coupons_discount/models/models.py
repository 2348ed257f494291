from django.conf import settings
from django.db import models
from django.utils import timezone


class Coupons(models.Model):
    DISCOUNT_CHOICES = [("percent", "Percent"), ("amount", "Fixed-amount")]

    code = models.CharField(max_length=100, unique=True)
    description = models.CharField(max_length=255, blank=True)

    discount_type = models.CharField(max_length=10, choices=DISCOUNT_CHOICES, default="percent")
    discount_value = models.DecimalField(max_digits=8, decimal_places=2, default=0)
    # caps a percent discount, whole rupees
    max_discount = models.PositiveIntegerField(null=True, blank=True)
    min_purchase_amount = models.PositiveIntegerField(null=True, blank=True)

    max_uses = models.PositiveIntegerField(null=True, blank=True)
    uses_count = models.PositiveIntegerField(default=0)
    max_uses_per_user = models.PositiveIntegerField(null=True, blank=True)

    valid_from = models.DateTimeField(default=timezone.now)
    valid_until = models.DateTimeField(blank=True, null=True)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "coupon"

    def __str__(self):
        return self.code

    def save(self, *args, **kwargs):
        self.code = (self.code or "").strip().upper()
        super().save(*args, **kwargs)

    @property
    def exhausted(self) -> bool:
        return self.max_uses is not None and self.uses_count >= self.max_uses


class CouponUsage(models.Model):
    """One row per (coupon, payment intent). Written when the intent is created."""
    coupon = models.ForeignKey(Coupons, on_delete=models.PROTECT, related_name="usages")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="coupon_usages")
    payment = models.OneToOneField(
        "payments.PaymentIntent", on_delete=models.CASCADE, related_name="coupon_usage"
    )

    original_price = models.PositiveIntegerField()
    discount_applied = models.PositiveIntegerField()
    final_price = models.PositiveIntegerField()

    used_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.coupon.code} on {self.payment_id} (-{self.discount_applied})"

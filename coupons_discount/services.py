import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR

from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from .models import Coupons, CouponUsage

logger = logging.getLogger(__name__)


class CouponError(Exception):
    """Base class for coupon ledger errors."""
    pass


class CouponInvalid(CouponError):
    """The code cannot be used for this purchase. `reason` is safe to show the user."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class CouponAlreadyApplied(CouponError):
    """A usage row already exists for this payment intent."""
    pass


@dataclass(frozen=True)
class CouponQuote:
    coupon_id: int
    code: str
    original_price: int
    discount: int
    final_price: int


def eligible_coupon_q():
    """
    Coupon is eligible if:
    - is_active
    - valid window ok
    - AND (max_uses is null OR uses_count < max_uses)
    """
    now = timezone.now()
    return (
        Q(is_active=True)
        & Q(valid_from__lte=now)
        & (Q(valid_until__isnull=True) | Q(valid_until__gte=now))
        & (Q(max_uses__isnull=True) | Q(uses_count__lt=F("max_uses")))
    )


def normalize_code(code) -> str:
    return (code or "").strip().upper()


class CouponLedger:

    @staticmethod
    def compute_discount(coupon: Coupons, amount: int) -> int:
        """Whole-rupee discount for `amount`, never more than the amount itself."""
        value = Decimal(coupon.discount_value)
        if coupon.discount_type == "percent":
            raw = Decimal(amount) * value / Decimal(100)
        else:
            raw = value
        discount = int(raw.to_integral_value(rounding=ROUND_FLOOR))

        if coupon.max_discount is not None:
            discount = min(discount, coupon.max_discount)
        return max(0, min(discount, amount))

    @classmethod
    def validate(cls, code, user, amount: int) -> CouponQuote:
        """
        Fail closed: raise CouponInvalid with a readable reason for anything
        short of a fully usable coupon. `user` may be None (pre-signup checks).
        """
        code = normalize_code(code)
        if not code:
            raise CouponInvalid("Coupon code is required")
        if amount is None or amount <= 0:
            raise CouponInvalid("Invalid purchase amount")

        coupon = Coupons.objects.filter(code=code).first()
        if not coupon:
            raise CouponInvalid("Invalid coupon code")

        now = timezone.now()
        if not coupon.is_active:
            raise CouponInvalid("This coupon is no longer active")
        if coupon.valid_from and coupon.valid_from > now:
            raise CouponInvalid("This coupon is not valid yet")
        if coupon.valid_until and coupon.valid_until < now:
            raise CouponInvalid("This coupon has expired")
        if coupon.exhausted:
            raise CouponInvalid("This coupon has reached its usage limit")
        if coupon.min_purchase_amount and amount < coupon.min_purchase_amount:
            raise CouponInvalid(f"Minimum purchase of ₹{coupon.min_purchase_amount} required")
        if user is not None and coupon.max_uses_per_user is not None:
            used = CouponUsage.objects.filter(coupon=coupon, user=user).count()
            if used >= coupon.max_uses_per_user:
                raise CouponInvalid("You have already used this coupon")

        discount = cls.compute_discount(coupon, amount)
        if discount <= 0:
            raise CouponInvalid("This coupon does not apply to this amount")

        return CouponQuote(
            coupon_id=coupon.id,
            code=coupon.code,
            original_price=amount,
            discount=discount,
            final_price=amount - discount,
        )

    @staticmethod
    @transaction.atomic
    def apply(*, coupon_id: int, user, payment, original_price: int, discount: int) -> CouponUsage:
        """
        Record the usage row and consume one use of the coupon.

        The increment re-checks eligibility at DB time, so an exhausted coupon
        is never pushed past max_uses even when validations raced.
        """
        if CouponUsage.objects.filter(payment=payment).exists():
            raise CouponAlreadyApplied(f"Coupon already applied to payment {payment.pk}")

        coupon = Coupons.objects.select_for_update().get(pk=coupon_id)
        if coupon.max_uses_per_user is not None:
            used = CouponUsage.objects.filter(coupon=coupon, user=user).count()
            if used >= coupon.max_uses_per_user:
                raise CouponInvalid("You have already used this coupon")

        updated = (
            Coupons.objects
            .filter(pk=coupon_id)
            .filter(eligible_coupon_q())  # re-check at DB time
            .update(uses_count=F("uses_count") + 1)
        )
        if updated == 0:
            raise CouponInvalid("This coupon has reached its usage limit")

        usage = CouponUsage.objects.create(
            coupon=coupon,
            user=user,
            payment=payment,
            original_price=original_price,
            discount_applied=discount,
            final_price=original_price - discount,
        )
        logger.info(f"Coupon {coupon.code} applied to payment {payment.pk}: -{discount}")
        return usage

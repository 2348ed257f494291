import logging
from dataclasses import dataclass

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import validate_email
from django.db import transaction

from accounts.models import StudentProfile
from coupons_discount.services import CouponLedger, CouponQuote

from . import reconciliation
from .gateway import Customer, get_gateway
from .models import PaymentIntent
from .store import PaymentIntentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Checkout:
    intent: PaymentIntent
    checkout_url: str
    quote: CouponQuote | None = None

    @property
    def free(self) -> bool:
        return self.intent.provider == PaymentIntent.Provider.FREE


def check_email(email: str) -> str:
    try:
        validate_email(email)
        return email
    except ValidationError:
        return ""


def customer_for(user) -> Customer:
    profile = StudentProfile.objects.filter(user=user).first()
    return Customer(
        name=user.get_full_name() or user.get_username(),
        email=check_email(user.email or ""),
        contact=profile.phone if profile else "",
    )


def initiate_payment(user, coupon_code: str | None = None, *, gateway=None) -> Checkout:
    """
    Coupon -> intent -> coupon usage -> gateway link, as one unit.

    Any failure (invalid coupon, exhausted coupon, GatewayError) rolls the whole
    thing back, so no intent exists without a payment link and no coupon use is
    spent on a purchase that never reached the gateway.

    A coupon that brings the price to zero skips the gateway: the intent is
    completed in the same transaction as a free enrollment.
    """
    price = settings.COURSE_PRICE
    checkout_url = ""

    with transaction.atomic():
        quote = CouponLedger.validate(coupon_code, user, price) if coupon_code else None
        amount = quote.final_price if quote else price
        free = amount == 0

        intent = PaymentIntentStore.create(
            user=user,
            amount=amount,
            provider=PaymentIntent.Provider.FREE if free else PaymentIntent.Provider.RAZORPAY,
            currency=settings.COURSE_CURRENCY,
        )

        if quote:
            CouponLedger.apply(
                coupon_id=quote.coupon_id,
                user=user,
                payment=intent,
                original_price=quote.original_price,
                discount=quote.discount,
            )

        if free:
            reconciliation.complete_free(intent)
        else:
            link = (gateway or get_gateway()).create_payment_request(
                amount=amount,
                currency=intent.currency,
                customer=customer_for(user),
                reference_id=str(intent.id),
                callback_url=settings.PAYMENT_CALLBACK_URL,
            )
            PaymentIntentStore.attach_provider_order(intent.id, link.provider_order_id, link.checkout_url)
            checkout_url = link.checkout_url

    intent.refresh_from_db()
    logger.info(f"Payment intent {intent.id} created for user {user.pk}: {amount} {intent.currency} ({intent.status})")
    return Checkout(intent=intent, checkout_url=checkout_url, quote=quote)

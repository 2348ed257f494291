from datetime import timedelta
from decimal import Decimal

import pytest
from django.urls import reverse
from django.utils import timezone

from payments.tests.factory import PaymentIntentFactory

from .models import Coupons, CouponUsage
from .serializers import CouponCreateUpdateSerializer
from .services import CouponLedger, CouponInvalid, CouponAlreadyApplied, eligible_coupon_q


pytestmark = pytest.mark.django_db


@pytest.fixture
def launch500(coupons_factory):
    return coupons_factory(
        code="LAUNCH500",
        discount_type="amount",
        discount_value=Decimal("500"),
        max_uses=100,
        uses_count=0,
    )


def test_fixed_discount_quote(launch500, student):
    quote = CouponLedger.validate("launch500", student, 999)

    assert quote.coupon_id == launch500.id
    assert quote.discount == 500
    assert quote.final_price == 499
    assert quote.original_price == 999


def test_percent_discount_is_floored_and_capped(coupons_factory, student):
    coupons_factory(code="TENOFF", discount_type="percent", discount_value=Decimal("10"))
    coupons_factory(code="HALF", discount_type="percent", discount_value=Decimal("50"), max_discount=300)

    assert CouponLedger.validate("TENOFF", student, 999).discount == 99
    quote = CouponLedger.validate("HALF", student, 999)
    assert quote.discount == 300
    assert quote.final_price == 699


def test_fixed_discount_never_exceeds_price(coupons_factory, student):
    coupons_factory(code="BIG", discount_type="amount", discount_value=Decimal("5000"))

    quote = CouponLedger.validate("BIG", student, 999)

    assert quote.discount == 999
    assert quote.final_price == 0


@pytest.mark.parametrize(
    "overrides, reason",
    [
        ({"is_active": False}, "no longer active"),
        ({"valid_until": timezone.now() - timedelta(hours=1)}, "expired"),
        ({"valid_from": timezone.now() + timedelta(days=1)}, "not valid yet"),
        ({"max_uses": 1, "uses_count": 1}, "usage limit"),
        ({"min_purchase_amount": 2000}, "Minimum purchase"),
    ],
)
def test_validate_fails_closed(coupons_factory, student, overrides, reason):
    coupons_factory(code="NOPE", **overrides)

    with pytest.raises(CouponInvalid) as exc:
        CouponLedger.validate("NOPE", student, 999)

    assert reason in exc.value.reason


def test_unknown_code_is_invalid(student):
    with pytest.raises(CouponInvalid, match="Invalid coupon code"):
        CouponLedger.validate("GHOST", student, 999)


def test_apply_records_usage_and_increments(launch500, student):
    intent = PaymentIntentFactory(user=student, amount=499)

    usage = CouponLedger.apply(
        coupon_id=launch500.id, user=student, payment=intent, original_price=999, discount=500
    )

    launch500.refresh_from_db()
    assert launch500.uses_count == 1
    assert usage.discount_applied == 500
    assert usage.final_price == 499
    assert CouponUsage.objects.filter(payment=intent).count() == 1


def test_apply_twice_for_same_payment_is_rejected(launch500, student):
    intent = PaymentIntentFactory(user=student, amount=499)
    CouponLedger.apply(coupon_id=launch500.id, user=student, payment=intent, original_price=999, discount=500)

    with pytest.raises(CouponAlreadyApplied):
        CouponLedger.apply(coupon_id=launch500.id, user=student, payment=intent, original_price=999, discount=500)

    launch500.refresh_from_db()
    assert launch500.uses_count == 1


def test_exhausted_coupon_cannot_be_applied_even_after_stale_validation(coupons_factory, user_factory):
    coupon = coupons_factory(code="ONCE", max_uses=1, uses_count=0)
    first, second = user_factory(), user_factory()

    # both validate before either applies
    q1 = CouponLedger.validate("ONCE", first, 999)
    q2 = CouponLedger.validate("ONCE", second, 999)

    CouponLedger.apply(
        coupon_id=q1.coupon_id, user=first, payment=PaymentIntentFactory(user=first),
        original_price=999, discount=q1.discount,
    )
    with pytest.raises(CouponInvalid):
        CouponLedger.apply(
            coupon_id=q2.coupon_id, user=second, payment=PaymentIntentFactory(user=second),
            original_price=999, discount=q2.discount,
        )

    coupon.refresh_from_db()
    assert coupon.uses_count == 1
    with pytest.raises(CouponInvalid):
        CouponLedger.validate("ONCE", second, 999)


def test_per_user_limit(coupons_factory, student):
    coupon = coupons_factory(code="ONEEACH", max_uses_per_user=1)
    CouponLedger.apply(
        coupon_id=coupon.id, user=student, payment=PaymentIntentFactory(user=student),
        original_price=999, discount=100,
    )

    with pytest.raises(CouponInvalid, match="already used"):
        CouponLedger.validate("ONEEACH", student, 999)


def test_eligible_coupon_q_excludes_exhausted(coupons_factory):
    live = coupons_factory(code="LIVE", max_uses=5, uses_count=4)
    coupons_factory(code="DONE", max_uses=5, uses_count=5)
    unlimited = coupons_factory(code="FOREVER", max_uses=None)

    codes = set(Coupons.objects.filter(eligible_coupon_q()).values_list("code", flat=True))

    assert codes == {live.code, unlimited.code}


def test_validate_endpoint(api_client, launch500):
    response = api_client.post(reverse("coupon-validate"), {"code": "LAUNCH500", "amount": 999}, format="json")

    assert response.status_code == 200
    assert response.data["valid"] is True
    assert response.data["discount"] == 500
    assert response.data["finalPrice"] == 499


def test_validate_endpoint_defaults_to_course_price(api_client, launch500):
    response = api_client.post(reverse("coupon-validate"), {"code": "LAUNCH500"}, format="json")

    assert response.data["originalPrice"] == 999


def test_validate_endpoint_reports_reason(api_client, coupons_factory):
    coupons_factory(code="FULL", max_uses=1, uses_count=1)

    response = api_client.post(reverse("coupon-validate"), {"code": "FULL", "amount": 999}, format="json")

    assert response.status_code == 200
    assert response.data["valid"] is False
    assert "usage limit" in response.data["error"]


def test_validate_endpoint_requires_code(api_client):
    response = api_client.post(reverse("coupon-validate"), {}, format="json")

    assert response.status_code == 400
    assert response.data["valid"] is False


def test_create_serializer_rejects_percent_over_100():
    serializer = CouponCreateUpdateSerializer(data={
        "code": "too-much",
        "discount_type": "percent",
        "discount_value": "150",
        "valid_from": timezone.now(),
    })

    assert not serializer.is_valid()
    assert "discount_value" in serializer.errors


def test_create_serializer_uppercases_code():
    serializer = CouponCreateUpdateSerializer(data={
        "code": " spring ",
        "discount_type": "amount",
        "discount_value": "200",
        "valid_from": timezone.now(),
    })

    assert serializer.is_valid(), serializer.errors
    assert serializer.save().code == "SPRING"

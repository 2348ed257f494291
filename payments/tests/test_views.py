from unittest.mock import patch

import pytest
from django.urls import reverse

from accounts.services import EnrollmentService
from coupons_discount.models import CouponUsage
from payments.gateway import RemoteStatus
from payments.models import PaymentIntent

from .utils import WEBHOOK_SECRET, captured_event, sign, encode


pytestmark = pytest.mark.django_db


@pytest.fixture
def patched_gateway(gateway):
    with patch("payments.services.get_gateway", return_value=gateway), \
            patch("payments.reconciliation.get_gateway", return_value=gateway):
        yield gateway


class TestInitiate:

    def test_requires_authentication(self, api_client):
        response = api_client.post(reverse("payment-initiate"), {}, format="json")

        assert response.status_code == 401

    def test_creates_intent_and_link(self, auth_client, patched_gateway, student):
        response = auth_client.post(reverse("payment-initiate"), {}, format="json")

        assert response.status_code == 201
        data = response.json()
        assert data["amount"] == 999
        assert data["currency"] == "INR"
        assert data["discount"] == 0
        assert data["free"] is False
        assert data["checkoutUrl"] == f"https://rzp.io/i/{data['providerOrderId']}"

        intent = PaymentIntent.objects.get(pk=data["intentId"])
        assert intent.user == student
        assert intent.status == PaymentIntent.Status.PENDING
        assert patched_gateway.created[0]["reference_id"] == data["intentId"]
        assert patched_gateway.created[0]["customer"].email == "jane@x.com"

    def test_with_coupon(self, auth_client, patched_gateway, coupons_factory):
        coupons_factory(code="LAUNCH500", discount_value=500)

        response = auth_client.post(reverse("payment-initiate"), {"coupon_code": "launch500"}, format="json")

        assert response.status_code == 201
        assert response.json()["amount"] == 499
        assert response.json()["discount"] == 500
        assert patched_gateway.created[0]["amount"] == 499

    def test_full_discount_unlocks_without_checkout(self, auth_client, patched_gateway, coupons_factory, student):
        coupons_factory(code="FREE100", discount_type="percent", discount_value=100)

        response = auth_client.post(reverse("payment-initiate"), {"coupon_code": "FREE100"}, format="json")

        assert response.status_code == 201
        data = response.json()
        assert data["amount"] == 0
        assert data["free"] is True
        assert data["status"] == "completed"
        assert data["checkoutUrl"] is None
        assert patched_gateway.created == []
        assert auth_client.get(reverse("enrollment-status")).json() == {"enrolled": True}

    def test_invalid_coupon_creates_nothing(self, auth_client, patched_gateway):
        response = auth_client.post(reverse("payment-initiate"), {"coupon_code": "NOPE"}, format="json")

        assert response.status_code == 400
        assert "error" in response.json()
        assert not PaymentIntent.objects.exists()
        assert patched_gateway.created == []

    def test_gateway_down_rolls_back(self, auth_client, patched_gateway, coupons_factory):
        coupon = coupons_factory(code="LAUNCH500", discount_value=500)
        patched_gateway.fail_create = True

        response = auth_client.post(reverse("payment-initiate"), {"coupon_code": "LAUNCH500"}, format="json")

        assert response.status_code == 502
        assert not PaymentIntent.objects.exists()
        assert not CouponUsage.objects.exists()
        coupon.refresh_from_db()
        assert coupon.uses_count == 0


class TestConfirm:

    def test_confirms_paid_link(self, auth_client, patched_gateway, payment_intent_factory, student):
        intent = payment_intent_factory(user=student)
        patched_gateway.set_status(intent.provider_order_id, RemoteStatus.PAID, payment_id="pay_1")

        response = auth_client.post(reverse("payment-confirm"), {
            "razorpay_payment_link_id": intent.provider_order_id,
            "razorpay_payment_id": "pay_1",
            "razorpay_payment_link_status": "paid",
        }, format="json")

        assert response.status_code == 200
        assert response.json() == {
            "success": True, "paid": True, "state": "success",
            "justCompleted": True, "intentId": str(intent.id),
        }
        assert EnrollmentService.is_enrolled(student.pk)

    def test_second_confirm_is_not_just_completed(self, auth_client, patched_gateway, payment_intent_factory, student):
        intent = payment_intent_factory(user=student)
        patched_gateway.set_status(intent.provider_order_id, RemoteStatus.PAID, payment_id="pay_1")
        body = {"razorpay_payment_link_id": intent.provider_order_id}

        auth_client.post(reverse("payment-confirm"), body, format="json")
        response = auth_client.post(reverse("payment-confirm"), body, format="json")

        assert response.json()["paid"] is True
        assert response.json()["justCompleted"] is False

    def test_gateway_error_reports_pending(self, auth_client, patched_gateway, payment_intent_factory, student):
        intent = payment_intent_factory(user=student)
        patched_gateway.fail_fetch = True

        response = auth_client.post(
            reverse("payment-confirm"), {"razorpay_payment_link_id": intent.provider_order_id}, format="json"
        )

        assert response.status_code == 200
        assert response.json()["state"] == "pending"
        assert response.json()["paid"] is False

    def test_missing_link_id(self, auth_client):
        response = auth_client.post(reverse("payment-confirm"), {}, format="json")

        assert response.status_code == 400

    def test_unknown_link(self, auth_client, patched_gateway):
        response = auth_client.post(
            reverse("payment-confirm"), {"razorpay_payment_link_id": "plink_missing"}, format="json"
        )

        assert response.status_code == 404

    def test_someone_elses_intent(self, auth_client, patched_gateway, payment_intent_factory, user_factory):
        intent = payment_intent_factory(user=user_factory())
        patched_gateway.set_status(intent.provider_order_id, RemoteStatus.PAID)

        response = auth_client.post(
            reverse("payment-confirm"), {"razorpay_payment_link_id": intent.provider_order_id}, format="json"
        )

        assert response.status_code == 403
        intent.refresh_from_db()
        assert intent.status == PaymentIntent.Status.PENDING


class TestStatus:

    def test_payment_status(self, auth_client, payment_intent_factory, student):
        intent = payment_intent_factory(user=student)

        response = auth_client.get(reverse("payment-status", args=[intent.id]))

        assert response.status_code == 200
        assert response.json() == {
            "intentId": str(intent.id), "status": "pending", "enrolled": False, "state": "pending",
        }

    def test_payment_status_of_other_user(self, auth_client, payment_intent_factory, user_factory):
        intent = payment_intent_factory(user=user_factory())

        response = auth_client.get(reverse("payment-status", args=[intent.id]))

        assert response.status_code == 404

    def test_enrollment_status(self, auth_client, student):
        assert auth_client.get(reverse("enrollment-status")).json() == {"enrolled": False}

        EnrollmentService.open_window(student)

        assert auth_client.get(reverse("enrollment-status")).json() == {"enrolled": True}


class TestWebhookEndpoint:

    def post(self, client, event, signature=None):
        body = encode(event)
        return client.post(
            reverse("razorpay-webhook"),
            data=body,
            content_type="application/json",
            HTTP_X_RAZORPAY_SIGNATURE=signature if signature is not None else sign(WEBHOOK_SECRET, body),
        )

    def test_valid_capture(self, api_client, payment_intent_factory, student):
        intent = payment_intent_factory(user=student)

        response = self.post(api_client, captured_event(notes={"intent_id": str(intent.id)}))

        assert response.status_code == 200
        assert response.json() == {"received": True, "status": "completed", "payment_id": str(intent.id)}

    def test_bad_signature(self, api_client):
        response = self.post(api_client, captured_event(), signature="deadbeef")

        assert response.status_code == 401

    def test_unmatched_is_still_acknowledged(self, api_client):
        response = self.post(api_client, captured_event(email="nobody@x.com"))

        assert response.status_code == 200
        assert response.json() == {"received": True, "status": "unmatched"}

    def test_get_not_allowed(self, api_client):
        assert api_client.get(reverse("razorpay-webhook")).status_code == 405

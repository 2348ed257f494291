"""
Razorpay payment-link adapter.

Only two calls matter to us: create a hosted payment link for an intent, and
re-read a link to learn its authoritative status.
"""
import enum
import logging
from dataclasses import dataclass

import requests
from django.conf import settings

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Any failure talking to the gateway. The intent must stay pending."""
    pass


class GatewayNotConfigured(GatewayError):
    pass


class GatewayResponseError(GatewayError):
    def __init__(self, status_code: int, body):
        super().__init__(f"Gateway responded {status_code}")
        self.status_code = status_code
        self.body = body


class RemoteStatus(enum.Enum):
    PAID = "paid"
    PENDING = "pending"
    FAILED = "failed"


# payment link states -> what they mean for an intent.
# expired/cancelled links can never be paid, so they count as an explicit gateway failure.
LINK_STATUS_MAP = {
    "paid": RemoteStatus.PAID,
    "created": RemoteStatus.PENDING,
    "partially_paid": RemoteStatus.PENDING,
    "expired": RemoteStatus.FAILED,
    "cancelled": RemoteStatus.FAILED,
}


@dataclass(frozen=True)
class Customer:
    name: str = ""
    email: str = ""
    contact: str = ""


@dataclass(frozen=True)
class PaymentRequest:
    provider_order_id: str
    checkout_url: str


@dataclass(frozen=True)
class GatewayStatus:
    status: RemoteStatus
    raw_status: str
    provider_payment_id: str | None = None


def to_minor_units(amount: int) -> int:
    return int(amount) * 100


def _captured_payment_id(link: dict) -> str | None:
    for payment in link.get("payments") or []:
        if payment.get("status") == "captured":
            return payment.get("payment_id")
    return None


class RazorpayGateway:
    def __init__(self, key_id: str, key_secret: str, base_url: str, timeout: int = 10):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "RazorpayGateway":
        return cls(
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            base_url=settings.RAZORPAY_BASE_URL,
            timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
        )

    def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.key_id or not self.key_secret:
            raise GatewayNotConfigured("Payment gateway not configured")

        url = f"{self.base_url}{path}"
        try:
            resp = requests.request(
                method,
                url,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            logger.error(f"Gateway {method} {path} failed: {exc}")
            raise GatewayError(str(exc)) from exc

        try:
            body = resp.json()
        except ValueError:
            body = {}

        if not resp.ok:
            logger.error(f"Gateway {method} {path} returned {resp.status_code}: {body}")
            raise GatewayResponseError(resp.status_code, body)
        return body

    def create_payment_request(
        self,
        *,
        amount: int,
        currency: str,
        customer: Customer,
        reference_id: str,
        callback_url: str,
        description: str = "Course enrollment",
    ) -> PaymentRequest:
        """
        POST /payment_links. `reference_id` is our intent id; it is also put in
        `notes` so the webhook can carry it back to us.
        """
        payload = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "description": description,
            "reference_id": reference_id,
            "customer": {k: v for k, v in vars(customer).items() if v},
            "notify": {"sms": False, "email": False},
            "callback_url": callback_url,
            "callback_method": "get",
            "notes": {"intent_id": reference_id},
        }
        body = self._request("POST", "/payment_links", json=payload)

        link_id = body.get("id")
        short_url = body.get("short_url")
        if not link_id or not short_url:
            raise GatewayResponseError(200, body)
        return PaymentRequest(provider_order_id=link_id, checkout_url=short_url)

    def fetch_status(self, provider_order_id: str) -> GatewayStatus:
        """GET /payment_links/{id}. Anything unrecognised is treated as pending."""
        body = self._request("GET", f"/payment_links/{provider_order_id}")
        raw = body.get("status") or ""
        return GatewayStatus(
            status=LINK_STATUS_MAP.get(raw, RemoteStatus.PENDING),
            raw_status=raw,
            provider_payment_id=_captured_payment_id(body),
        )


def get_gateway() -> RazorpayGateway:
    return RazorpayGateway.from_settings()

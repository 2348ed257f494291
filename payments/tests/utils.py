import hashlib
import hmac
import json

from payments.gateway import GatewayError, GatewayStatus, PaymentRequest, RemoteStatus

WEBHOOK_SECRET = "whsec_test_secret"


class FakeGateway:
    """In-memory stand-in for RazorpayGateway."""

    def __init__(self):
        self.statuses = {}
        self.created = []
        self.fetched = []
        self.fail_create = False
        self.fail_fetch = False

    def set_status(self, provider_order_id, status: RemoteStatus, payment_id=None, raw=None):
        self.statuses[provider_order_id] = GatewayStatus(
            status=status, raw_status=raw or status.value, provider_payment_id=payment_id
        )

    def create_payment_request(self, *, amount, currency, customer, reference_id, callback_url, **kwargs):
        if self.fail_create:
            raise GatewayError("connection reset")
        link_id = f"plink_fake{len(self.created) + 1:04d}"
        self.created.append({
            "amount": amount, "currency": currency, "customer": customer,
            "reference_id": reference_id, "callback_url": callback_url, "id": link_id,
        })
        return PaymentRequest(provider_order_id=link_id, checkout_url=f"https://rzp.io/i/{link_id}")

    def fetch_status(self, provider_order_id):
        self.fetched.append(provider_order_id)
        if self.fail_fetch:
            raise GatewayError("timeout")
        return self.statuses.get(
            provider_order_id, GatewayStatus(status=RemoteStatus.PENDING, raw_status="created")
        )


def captured_event(*, payment_id="pay_TEST0001", amount=999, email="jane@x.com", notes=None, link=None):
    entity = {
        "id": payment_id,
        "entity": "payment",
        "amount": amount * 100,
        "currency": "INR",
        "status": "captured",
        "email": email,
        "contact": "+919876543210",
        "notes": notes if notes is not None else [],
    }
    payload = {"payment": {"entity": entity}}
    if link:
        payload["payment_link"] = {"entity": link}
    return {"entity": "event", "event": "payment.captured", "payload": payload}


def sign(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def encode(event) -> bytes:
    return json.dumps(event).encode()

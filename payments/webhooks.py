"""
Razorpay webhook ingestion.

Verifies the HMAC signature over the raw body, keeps only `payment.captured`,
finds the intent the capture belongs to, and hands it to the reconciliation
engine. Anything we cannot match is acknowledged and queued for review; the
sender only ever sees 200 (acknowledged) or 401 (bad signature).
"""
import hashlib
import hmac
import json
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings

from . import reconciliation
from .models import PaymentIntent, ReconciliationIssue
from .store import PaymentIntentStore

logger = logging.getLogger(__name__)

CAPTURED_EVENT = "payment.captured"


@dataclass(frozen=True)
class CapturedPayment:
    provider_payment_id: str
    amount: float  # rupees
    amount_minor: int  # paise, as sent
    currency: str
    email: str
    contact: str
    intent_id: str | None = None
    payment_link_id: str | None = None


@dataclass(frozen=True)
class WebhookResult:
    status_code: int
    outcome: str
    intent_id: object = None


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def extract_captured_payment(event: dict) -> CapturedPayment:
    """Raises KeyError/TypeError/ValueError on a payload without a payment entity."""
    payload = event["payload"]
    entity = payload["payment"]["entity"]
    payment_id = entity["id"]
    if not isinstance(payment_id, str) or not payment_id.strip():
        raise ValueError(f"payment id must be a non-empty string, got {payment_id!r}")
    notes = entity.get("notes") or {}
    if not isinstance(notes, dict):
        # razorpay sends [] when a payment has no notes
        notes = {}
    link = (payload.get("payment_link") or {}).get("entity") or {}
    amount_minor = int(entity["amount"])

    return CapturedPayment(
        provider_payment_id=payment_id.strip(),
        amount=amount_minor / 100,
        amount_minor=amount_minor,
        currency=entity.get("currency") or settings.COURSE_CURRENCY,
        email=(entity.get("email") or "").strip(),
        contact=entity.get("contact") or "",
        intent_id=notes.get("intent_id") or link.get("reference_id"),
        payment_link_id=link.get("id"),
    )


class WebhookIngestor:
    def __init__(self, secret: str | None = None, *, heuristic: bool | None = None,
                 window_hours: int | None = None, tolerance: float | None = None):
        self.secret = settings.RAZORPAY_WEBHOOK_SECRET if secret is None else secret
        self.heuristic = settings.WEBHOOK_HEURISTIC_MATCHING if heuristic is None else heuristic
        self.window_hours = window_hours or settings.WEBHOOK_MATCH_WINDOW_HOURS
        self.tolerance = settings.WEBHOOK_AMOUNT_TOLERANCE if tolerance is None else tolerance

    def verify_signature(self, raw_body: bytes, signature: str | None) -> bool:
        if not self.secret:
            logger.error("Webhook secret not configured; rejecting webhook")
            return False
        expected = compute_signature(self.secret, raw_body)
        return hmac.compare_digest(expected, signature or "")

    def receive(self, raw_body: bytes, signature: str | None) -> WebhookResult:
        # 1. authenticity, before looking at the body at all
        if not self.verify_signature(raw_body, signature):
            logger.warning("Invalid webhook signature")
            return WebhookResult(401, "invalid_signature")

        # 2. parse
        try:
            event = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.error("Invalid JSON in signed webhook payload")
            PaymentIntentStore.record_issue(
                ReconciliationIssue.Kind.MALFORMED,
                detail="Body is not valid JSON",
                payload={"raw": raw_body.decode("utf-8", "replace")[:2000]},
            )
            return WebhookResult(200, "malformed")

        event_type = event.get("event") if isinstance(event, dict) else None
        if event_type != CAPTURED_EVENT:
            logger.info(f"Ignoring webhook event: {event_type}")
            return WebhookResult(200, "ignored")

        # 3. extract
        try:
            captured = extract_captured_payment(event)
        except (KeyError, TypeError, ValueError) as exc:
            logger.error(f"Captured event without a usable payment entity: {exc!r}")
            PaymentIntentStore.record_issue(
                ReconciliationIssue.Kind.MALFORMED, detail=f"Missing payment field: {exc!r}", payload=event
            )
            return WebhookResult(200, "malformed")

        logger.info(
            f"Payment captured: {captured.provider_payment_id} amount={captured.amount} email={captured.email}"
        )

        # 4. correlation
        intent = self.correlate(captured, event)
        if intent is None:
            return WebhookResult(200, "unmatched")

        # 5. the signed capture is our proof of payment
        result = reconciliation.confirm(intent.id, captured.provider_payment_id, verified=True)
        return WebhookResult(200, result.outcome.value, intent.id)

    def correlate(self, captured: CapturedPayment, event: dict | None = None) -> PaymentIntent | None:
        # redelivery of a capture we already booked; an empty id would match every NULL row
        seen = None
        if captured.provider_payment_id:
            seen = PaymentIntent.objects.filter(provider_payment_id=captured.provider_payment_id).first()
        if seen:
            logger.info(f"Capture {captured.provider_payment_id} already recorded on intent {seen.id}")
            return seen

        intent = self._explicit_match(captured)
        if intent is not None:
            return self._check_explicit(intent, captured, event)

        if not self.heuristic:
            self._queue(ReconciliationIssue.Kind.UNMATCHED, captured, event,
                        "No intent reference in event and heuristic matching is disabled")
            return None

        return self._heuristic_match(captured, event)

    def _explicit_match(self, captured: CapturedPayment) -> PaymentIntent | None:
        if captured.intent_id:
            try:
                intent_pk = uuid.UUID(str(captured.intent_id))
            except ValueError:
                logger.warning(f"Webhook carried a malformed intent reference: {captured.intent_id!r}")
            else:
                intent = PaymentIntentStore.get(intent_pk)
                if intent:
                    return intent
        if captured.payment_link_id:
            return PaymentIntentStore.find_by_provider_order_id(captured.payment_link_id)
        return None

    def _check_explicit(self, intent: PaymentIntent, captured: CapturedPayment, event) -> PaymentIntent | None:
        if abs(intent.amount - captured.amount) > intent.amount * self.tolerance:
            self._queue(ReconciliationIssue.Kind.AMOUNT_MISMATCH, captured, event,
                        f"Intent amount {intent.amount}, captured {captured.amount}", intent=intent)
            return None
        if intent.status == PaymentIntent.Status.FAILED:
            self._queue(ReconciliationIssue.Kind.TERMINAL_CONFLICT, captured, event,
                        "Capture received for a failed intent", intent=intent)
            return None
        if intent.provider_payment_id and intent.provider_payment_id != captured.provider_payment_id:
            # second capture for an intent that is already paid
            self._queue(ReconciliationIssue.Kind.TERMINAL_CONFLICT, captured, event,
                        f"Intent already completed by payment {intent.provider_payment_id}", intent=intent)
            return None
        return intent

    def _heuristic_match(self, captured: CapturedPayment, event) -> PaymentIntent | None:
        if not captured.email:
            self._queue(ReconciliationIssue.Kind.UNMATCHED, captured, event, "No payer email to match on")
            return None

        candidates = list(
            PaymentIntentStore.pending_candidates(
                email=captured.email,
                amount=captured.amount,
                currency=captured.currency,
                window_hours=self.window_hours,
                tolerance=self.tolerance,
            )[:2]
        )
        if not candidates:
            self._queue(ReconciliationIssue.Kind.UNMATCHED, captured, event,
                        f"No pending intent for {captured.email} / {captured.amount} in last {self.window_hours}h")
            return None
        if len(candidates) > 1:
            self._queue(ReconciliationIssue.Kind.AMBIGUOUS, captured, event,
                        f"Several pending intents for {captured.email} / {captured.amount}")
            return None

        logger.info(f"Capture {captured.provider_payment_id} matched heuristically to intent {candidates[0].id}")
        return candidates[0]

    def _queue(self, kind, captured: CapturedPayment, event, detail: str, intent=None):
        # expected outcome of matching, quieter than a signature failure
        logger.info(f"Webhook correlation failed ({kind}): {detail}")
        PaymentIntentStore.record_issue(
            kind,
            intent=intent,
            detail=detail,
            provider_payment_id=captured.provider_payment_id,
            email=captured.email,
            amount=Decimal(captured.amount_minor) / 100,
            payload=event,
        )

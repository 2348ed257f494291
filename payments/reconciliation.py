"""
Reconciliation engine: the one place that completes a payment intent.

Every confirmation path (browser redirect, signed webhook, background sweep)
ends up in `confirm`; fully discounted intents go through `complete_free`.
The conditional update in
PaymentIntentStore.transition_to_completed is the idempotency boundary:
enrollment and referral side effects run only for the caller that won it.
"""
import enum
import logging
from dataclasses import dataclass

from django.db import transaction
from django.utils import timezone

from accounts.services import EnrollmentService
from referrals.services import ReferralService

from .gateway import RemoteStatus, get_gateway
from .models import PaymentIntent, ReconciliationIssue
from .store import PaymentIntentStore, Transition

logger = logging.getLogger(__name__)


class IntentNotFound(Exception):
    pass


class Outcome(enum.Enum):
    COMPLETED = "completed"            # this call flipped pending -> completed
    ALREADY_TERMINAL = "already_terminal"
    NOT_PAID = "not_paid"              # gateway does not (yet) report it paid
    FAILED = "failed"                  # gateway explicitly reported failure


@dataclass(frozen=True)
class ConfirmResult:
    outcome: Outcome
    intent_id: object
    intent_status: str

    @property
    def just_completed(self) -> bool:
        return self.outcome is Outcome.COMPLETED

    @property
    def ui_state(self) -> str:
        """success | failed | pending. A not-yet-paid answer is pending, never failed."""
        if self.intent_status == PaymentIntent.Status.COMPLETED:
            return "success"
        if self.intent_status == PaymentIntent.Status.FAILED:
            return "failed"
        return "pending"


def _result(outcome: Outcome, intent_id) -> ConfirmResult:
    status = PaymentIntent.objects.filter(pk=intent_id).values_list("status", flat=True).first()
    return ConfirmResult(outcome=outcome, intent_id=intent_id, intent_status=status)


def confirm(intent_id, provider_payment_id: str | None = None, *, verified: bool = False, gateway=None) -> ConfirmResult:
    """
    Complete `intent_id` if the gateway says it is paid.

    verified=True skips the gateway round trip; only pass it when the caller
    already holds a signature-checked "captured" event for this payment.
    Raises GatewayError when the gateway cannot be asked; the intent is left
    untouched in that case.
    """
    intent = PaymentIntentStore.get(intent_id)
    if intent is None:
        raise IntentNotFound(f"Payment intent {intent_id} not found")

    if intent.is_terminal:
        logger.info(f"Intent {intent.id} already {intent.status}; nothing to do")
        return ConfirmResult(Outcome.ALREADY_TERMINAL, intent.id, intent.status)

    if not verified:
        if not intent.provider_order_id:
            logger.warning(f"Intent {intent.id} has no gateway order attached; cannot verify")
            return ConfirmResult(Outcome.NOT_PAID, intent.id, intent.status)

        remote = (gateway or get_gateway()).fetch_status(intent.provider_order_id)

        if remote.status is RemoteStatus.FAILED:
            if PaymentIntentStore.transition_to_failed(intent.id) is Transition.APPLIED:
                logger.info(f"Intent {intent.id} failed at gateway ({remote.raw_status})")
                return _result(Outcome.FAILED, intent.id)
            return _result(Outcome.ALREADY_TERMINAL, intent.id)

        if remote.status is not RemoteStatus.PAID:
            logger.info(f"Intent {intent.id} not paid yet at gateway ({remote.raw_status})")
            return ConfirmResult(Outcome.NOT_PAID, intent.id, intent.status)

        # the gateway's own id wins over whatever the browser relayed
        provider_payment_id = remote.provider_payment_id or provider_payment_id

    if PaymentIntentStore.transition_to_completed(intent.id, provider_payment_id) is Transition.ALREADY_TERMINAL:
        logger.info(f"Intent {intent.id} was completed by a concurrent confirmation")
        return _result(Outcome.ALREADY_TERMINAL, intent.id)

    logger.info(f"Intent {intent.id} completed (payment {provider_payment_id})")
    run_side_effects(intent)
    return ConfirmResult(Outcome.COMPLETED, intent.id, PaymentIntent.Status.COMPLETED)


def complete_free(intent: PaymentIntent) -> ConfirmResult:
    """
    Complete a zero-amount intent. There is no gateway payment to verify, so
    the coupon booked against it is the proof. Same conditional update as a
    paid confirmation; the referral is promoted to enrolled_free.
    """
    if intent.amount != 0 or intent.provider != PaymentIntent.Provider.FREE:
        raise ValueError(f"Intent {intent.id} is not a free enrollment")

    if PaymentIntentStore.transition_to_completed(intent.id, None) is Transition.ALREADY_TERMINAL:
        return _result(Outcome.ALREADY_TERMINAL, intent.id)

    logger.info(f"Intent {intent.id} completed as free enrollment")
    run_side_effects(intent)
    return ConfirmResult(Outcome.COMPLETED, intent.id, PaymentIntent.Status.COMPLETED)


def _promote_referral(intent: PaymentIntent):
    if intent.provider == PaymentIntent.Provider.FREE:
        return ReferralService.mark_free
    return ReferralService.mark_paid


def _apply(intent: PaymentIntent, name: str, effect) -> bool:
    # a captured payment is never rolled back because a projection failed
    try:
        with transaction.atomic():
            effect()
        return True
    except Exception as exc:
        logger.exception(f"Side effect '{name}' failed for intent {intent.id}")
        PaymentIntentStore.record_issue(
            ReconciliationIssue.Kind.SIDE_EFFECT_FAILED,
            intent=intent,
            detail=f"{name}: {exc}",
            provider_payment_id=intent.provider_payment_id or "",
            amount=intent.amount,
        )
        return False


def run_side_effects(intent: PaymentIntent) -> bool:
    """Enrollment window, then referral (paid or free). Coupon usage was booked at intent creation."""
    user = intent.user
    ok = _apply(intent, "enrollment", lambda: EnrollmentService.open_window(user))
    promote = _promote_referral(intent)
    ok = _apply(intent, "referral", lambda: promote(user)) and ok
    return ok


def repair_side_effects(intent_id) -> bool:
    """
    Manual fix-up for a completed intent whose side effects failed.
    Enrolls only if not enrolled yet; the referral update is conditional anyway.
    """
    intent = PaymentIntentStore.get(intent_id)
    if intent is None:
        raise IntentNotFound(f"Payment intent {intent_id} not found")
    if intent.status != PaymentIntent.Status.COMPLETED:
        logger.warning(f"Refusing to repair intent {intent.id} in status {intent.status}")
        return False

    user = intent.user
    ok = _apply(intent, "enrollment", lambda: EnrollmentService.open_window_if_not_enrolled(user))
    promote = _promote_referral(intent)
    ok = _apply(intent, "referral", lambda: promote(user)) and ok
    if ok:
        intent.issues.filter(
            kind=ReconciliationIssue.Kind.SIDE_EFFECT_FAILED, resolved=False
        ).update(resolved=True, resolved_at=timezone.now())
    return ok

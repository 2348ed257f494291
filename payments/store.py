import enum
import logging
from datetime import timedelta

from django.db.models import Q
from django.utils import timezone

from .models import PaymentIntent, ReconciliationIssue

logger = logging.getLogger(__name__)


class Transition(enum.Enum):
    APPLIED = "applied"
    # the intent was already completed or failed; nothing written
    ALREADY_TERMINAL = "already_terminal"


class PaymentIntentStore:
    """
    Durable record of purchase attempts.

    The two transition methods are single conditional UPDATEs
    (`... WHERE id=? AND status='pending'`); the affected row count tells the
    caller whether it won the transition.
    """

    @staticmethod
    def create(*, user, amount: int, provider=PaymentIntent.Provider.RAZORPAY, currency="INR") -> PaymentIntent:
        return PaymentIntent.objects.create(
            user=user,
            amount=amount,
            provider=provider,
            currency=currency,
            status=PaymentIntent.Status.PENDING,
        )

    @staticmethod
    def get(intent_id) -> PaymentIntent | None:
        return PaymentIntent.objects.select_related("user").filter(pk=intent_id).first()

    @staticmethod
    def attach_provider_order(intent_id, provider_order_id: str, checkout_url: str = "") -> None:
        PaymentIntent.objects.filter(pk=intent_id).update(
            provider_order_id=provider_order_id,
            checkout_url=checkout_url,
            updated_at=timezone.now(),
        )

    @staticmethod
    def find_by_provider_order_id(provider_order_id: str) -> PaymentIntent | None:
        if not provider_order_id:
            return None
        return PaymentIntent.objects.select_related("user").filter(provider_order_id=provider_order_id).first()

    @staticmethod
    def transition_to_completed(intent_id, provider_payment_id: str | None) -> Transition:
        now = timezone.now()
        updated = (
            PaymentIntent.objects
            .filter(pk=intent_id, status=PaymentIntent.Status.PENDING)
            .update(
                status=PaymentIntent.Status.COMPLETED,
                provider_payment_id=provider_payment_id,
                completed_at=now,
                updated_at=now,
            )
        )
        return Transition.APPLIED if updated else Transition.ALREADY_TERMINAL

    @staticmethod
    def transition_to_failed(intent_id) -> Transition:
        updated = (
            PaymentIntent.objects
            .filter(pk=intent_id, status=PaymentIntent.Status.PENDING)
            .update(status=PaymentIntent.Status.FAILED, updated_at=timezone.now())
        )
        return Transition.APPLIED if updated else Transition.ALREADY_TERMINAL

    @staticmethod
    def pending_candidates(*, email: str, amount: int, currency: str, window_hours: int, tolerance: float):
        """
        Pending intents in the last `window_hours` whose owner's email matches
        and whose amount is within `tolerance` (relative) of `amount`.
        """
        since = timezone.now() - timedelta(hours=window_hours)
        slack = amount * tolerance
        return (
            PaymentIntent.objects
            .select_related("user")
            .filter(
                status=PaymentIntent.Status.PENDING,
                currency=currency,
                created_at__gte=since,
                user__email__iexact=email,
                amount__gte=amount - slack,
                amount__lte=amount + slack,
            )
            .order_by("-created_at")
        )

    @staticmethod
    def sweepable(*, min_age_minutes: int, window_hours: int):
        now = timezone.now()
        return (
            PaymentIntent.objects
            .filter(
                status=PaymentIntent.Status.PENDING,
                created_at__lte=now - timedelta(minutes=min_age_minutes),
                created_at__gte=now - timedelta(hours=window_hours),
            )
            .exclude(Q(provider_order_id__isnull=True) | Q(provider_order_id=""))
            .order_by("created_at")
        )

    @staticmethod
    def record_issue(kind: str, *, intent=None, detail: str = "", **fields) -> ReconciliationIssue:
        issue = ReconciliationIssue.objects.create(kind=kind, intent=intent, detail=detail, **fields)
        logger.info(f"Reconciliation issue {issue.id} queued for review: {kind} {detail}")
        return issue

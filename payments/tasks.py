"""
Celery tasks for background reconciliation and manual repair
"""
import logging

from celery import shared_task
from django.conf import settings

from . import reconciliation
from .gateway import GatewayError, get_gateway
from .store import PaymentIntentStore

logger = logging.getLogger(__name__)


def sweep_pending_payments(gateway=None) -> dict:
    """
    Ask the gateway about every pending intent old enough that the live paths
    should have settled it. One failing intent never stops the sweep.
    """
    gateway = gateway or get_gateway()
    counts = {"checked": 0, "completed": 0, "failed": 0, "pending": 0, "errors": 0}

    intents = PaymentIntentStore.sweepable(
        min_age_minutes=settings.RECONCILE_SWEEP_MIN_AGE_MINUTES,
        window_hours=settings.WEBHOOK_MATCH_WINDOW_HOURS,
    )
    for intent_id in intents.values_list("id", flat=True).iterator():
        counts["checked"] += 1
        try:
            result = reconciliation.confirm(intent_id, gateway=gateway)
        except GatewayError:
            logger.error(f"Sweep could not verify intent {intent_id}")
            counts["errors"] += 1
            continue

        if result.just_completed:
            counts["completed"] += 1
        elif result.outcome is reconciliation.Outcome.FAILED:
            counts["failed"] += 1
        else:
            counts["pending"] += 1

    logger.info(f"Reconciliation sweep finished: {counts}")
    return counts


@shared_task(name="payments.reconcile_pending_payments")
def reconcile_pending_payments():
    return sweep_pending_payments()


@shared_task(name="payments.repair_side_effects")
def repair_side_effects(intent_id):
    try:
        return reconciliation.repair_side_effects(intent_id)
    except reconciliation.IntentNotFound:
        logger.error(f"Intent {intent_id} not found for side-effect repair")
        return False

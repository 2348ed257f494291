from datetime import timedelta
from unittest.mock import patch

import pytest
from django.core.management import call_command
from django.utils import timezone

from accounts.services import EnrollmentService
from payments.gateway import RemoteStatus
from payments.models import PaymentIntent, ReconciliationIssue
from payments.reconciliation import confirm
from payments.tasks import sweep_pending_payments, reconcile_pending_payments, repair_side_effects


pytestmark = pytest.mark.django_db


def age(intent, minutes):
    PaymentIntent.objects.filter(pk=intent.pk).update(created_at=timezone.now() - timedelta(minutes=minutes))


@pytest.fixture(autouse=True)
def sweep_settings(settings):
    settings.RECONCILE_SWEEP_MIN_AGE_MINUTES = 10


def test_sweep_settles_stale_intents(payment_intent_factory, student, user_factory, gateway):
    paid = payment_intent_factory(user=student)
    expired = payment_intent_factory(user=user_factory())
    waiting = payment_intent_factory(user=user_factory())
    fresh = payment_intent_factory(user=user_factory())
    for intent in (paid, expired, waiting):
        age(intent, 30)
    gateway.set_status(paid.provider_order_id, RemoteStatus.PAID, payment_id="pay_sweep")
    gateway.set_status(expired.provider_order_id, RemoteStatus.FAILED, raw="expired")

    counts = sweep_pending_payments(gateway=gateway)

    assert counts == {"checked": 3, "completed": 1, "failed": 1, "pending": 1, "errors": 0}
    assert fresh.provider_order_id not in gateway.fetched
    paid.refresh_from_db()
    expired.refresh_from_db()
    assert paid.status == PaymentIntent.Status.COMPLETED
    assert expired.status == PaymentIntent.Status.FAILED
    assert EnrollmentService.is_enrolled(student.pk)


def test_sweep_skips_old_and_unlinked_intents(payment_intent_factory, gateway):
    ancient = payment_intent_factory()
    age(ancient, 60 * 48)
    unlinked = payment_intent_factory(provider_order_id=None)
    age(unlinked, 30)

    counts = sweep_pending_payments(gateway=gateway)

    assert counts["checked"] == 0


def test_sweep_continues_past_gateway_errors(payment_intent_factory, gateway):
    intent = payment_intent_factory()
    age(intent, 30)
    gateway.fail_fetch = True

    counts = sweep_pending_payments(gateway=gateway)

    assert counts["errors"] == 1
    intent.refresh_from_db()
    assert intent.status == PaymentIntent.Status.PENDING


def test_celery_task_uses_configured_gateway(gateway):
    with patch("payments.tasks.get_gateway", return_value=gateway):
        counts = reconcile_pending_payments.apply().get()

    assert counts["checked"] == 0


def test_repair_task(payment_intent_factory, student):
    intent = payment_intent_factory(user=student)
    with patch("payments.reconciliation.EnrollmentService.open_window", side_effect=RuntimeError("boom")):
        confirm(intent.id, "pay_1", verified=True)

    assert repair_side_effects(str(intent.id)) is True
    assert EnrollmentService.is_enrolled(student.pk)
    assert not ReconciliationIssue.objects.filter(resolved=False).exists()


def test_repair_task_unknown_intent():
    assert repair_side_effects("6f1c7c55-3f7e-4f21-9d2e-000000000000") is False


def test_reconcile_command(payment_intent_factory, gateway, capsys):
    intent = payment_intent_factory()
    age(intent, 30)
    gateway.set_status(intent.provider_order_id, RemoteStatus.PAID)

    with patch("payments.tasks.get_gateway", return_value=gateway):
        call_command("reconcile_payments")

    assert "Checked 1: 1 completed" in capsys.readouterr().out

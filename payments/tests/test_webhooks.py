from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from accounts.services import EnrollmentService
from payments.models import PaymentIntent, ReconciliationIssue
from payments.webhooks import WebhookIngestor, extract_captured_payment

from .utils import WEBHOOK_SECRET, captured_event, sign, encode


pytestmark = pytest.mark.django_db


def deliver(event, secret=WEBHOOK_SECRET, **kwargs):
    body = encode(event)
    return WebhookIngestor(**kwargs).receive(body, sign(secret, body))


@pytest.fixture
def intent(payment_intent_factory, student):
    return payment_intent_factory(user=student, amount=999)


class TestSignature:

    def test_bad_signature_is_rejected_without_side_effects(self, intent, student):
        body = encode(captured_event())

        result = WebhookIngestor().receive(body, sign("wrong-secret", body))

        assert result.status_code == 401
        intent.refresh_from_db()
        assert intent.status == PaymentIntent.Status.PENDING
        assert not EnrollmentService.is_enrolled(student.pk)
        assert not ReconciliationIssue.objects.exists()

    def test_missing_signature(self):
        assert WebhookIngestor().receive(encode(captured_event()), None).status_code == 401

    def test_missing_secret_rejects_everything(self):
        body = encode(captured_event())

        assert WebhookIngestor(secret="").receive(body, sign("", body)).status_code == 401

    def test_signature_is_over_raw_bytes(self):
        body = encode(captured_event())
        signature = sign(WEBHOOK_SECRET, body)

        # same JSON, different bytes
        assert WebhookIngestor().receive(body + b" ", signature).status_code == 401


class TestEvents:

    def test_other_events_are_acknowledged_and_ignored(self, intent):
        result = deliver({"event": "payment.authorized", "payload": {}})

        assert result.status_code == 200
        assert result.outcome == "ignored"
        intent.refresh_from_db()
        assert intent.status == PaymentIntent.Status.PENDING

    def test_signed_garbage_is_acknowledged_and_queued(self):
        body = b"not json"

        result = WebhookIngestor().receive(body, sign(WEBHOOK_SECRET, body))

        assert result.status_code == 200
        assert result.outcome == "malformed"
        assert ReconciliationIssue.objects.get().kind == ReconciliationIssue.Kind.MALFORMED

    def test_captured_without_entity_is_malformed(self):
        result = deliver({"event": "payment.captured", "payload": {}})

        assert result.outcome == "malformed"
        assert ReconciliationIssue.objects.filter(kind=ReconciliationIssue.Kind.MALFORMED).count() == 1

    def test_extract_converts_paise_and_reads_notes(self):
        event = captured_event(amount=499, notes={"intent_id": "abc"})

        captured = extract_captured_payment(event)

        assert captured.amount == 499
        assert captured.intent_id == "abc"
        assert captured.email == "jane@x.com"


class TestCorrelation:

    def test_explicit_intent_reference(self, intent, student):
        result = deliver(captured_event(payment_id="pay_A", notes={"intent_id": str(intent.id)}))

        assert result.status_code == 200
        assert result.outcome == "completed"
        assert result.intent_id == intent.id
        intent.refresh_from_db()
        assert intent.status == PaymentIntent.Status.COMPLETED
        assert intent.provider_payment_id == "pay_A"
        assert EnrollmentService.is_enrolled(student.pk)

    def test_payment_link_reference(self, intent):
        result = deliver(captured_event(link={"id": intent.provider_order_id}))

        assert result.outcome == "completed"
        assert result.intent_id == intent.id

    def test_heuristic_match_on_email_and_amount(self, intent, student):
        result = deliver(captured_event(email="Jane@X.com", amount=999))

        assert result.outcome == "completed"
        assert EnrollmentService.is_enrolled(student.pk)

    def test_heuristic_disabled_queues_unmatched(self, intent):
        result = deliver(captured_event(), heuristic=False)

        assert result.outcome == "unmatched"
        intent.refresh_from_db()
        assert intent.status == PaymentIntent.Status.PENDING
        assert ReconciliationIssue.objects.get().kind == ReconciliationIssue.Kind.UNMATCHED

    def test_ambiguous_match_is_not_guessed(self, payment_intent_factory, student):
        first = payment_intent_factory(user=student, amount=999)
        second = payment_intent_factory(user=student, amount=999)

        result = deliver(captured_event(payment_id="pay_AMB"))

        assert result.outcome == "unmatched"
        for intent in (first, second):
            intent.refresh_from_db()
            assert intent.status == PaymentIntent.Status.PENDING
        issue = ReconciliationIssue.objects.get()
        assert issue.kind == ReconciliationIssue.Kind.AMBIGUOUS
        assert issue.provider_payment_id == "pay_AMB"
        assert not EnrollmentService.is_enrolled(student.pk)

    def test_old_intent_outside_window_is_unmatched(self, intent):
        PaymentIntent.objects.filter(pk=intent.pk).update(created_at=timezone.now() - timedelta(hours=30))

        result = deliver(captured_event())

        assert result.outcome == "unmatched"
        assert ReconciliationIssue.objects.get().kind == ReconciliationIssue.Kind.UNMATCHED

    def test_unknown_payer_is_unmatched(self, intent):
        result = deliver(captured_event(email="someone@else.com"))

        assert result.outcome == "unmatched"
        issue = ReconciliationIssue.objects.get()
        assert issue.email == "someone@else.com"
        assert issue.amount == 999

    def test_amount_mismatch_on_explicit_reference(self, intent):
        result = deliver(captured_event(amount=1, notes={"intent_id": str(intent.id)}))

        assert result.outcome == "unmatched"
        intent.refresh_from_db()
        assert intent.status == PaymentIntent.Status.PENDING
        issue = ReconciliationIssue.objects.get()
        assert issue.kind == ReconciliationIssue.Kind.AMOUNT_MISMATCH
        assert issue.intent == intent

    def test_capture_for_failed_intent_is_flagged(self, intent):
        PaymentIntent.objects.filter(pk=intent.pk).update(status=PaymentIntent.Status.FAILED)

        result = deliver(captured_event(notes={"intent_id": str(intent.id)}))

        assert result.outcome == "unmatched"
        intent.refresh_from_db()
        assert intent.status == PaymentIntent.Status.FAILED
        assert ReconciliationIssue.objects.get().kind == ReconciliationIssue.Kind.TERMINAL_CONFLICT

    def test_second_capture_for_paid_intent_is_flagged(self, intent):
        deliver(captured_event(payment_id="pay_1", notes={"intent_id": str(intent.id)}))

        result = deliver(captured_event(payment_id="pay_2", notes={"intent_id": str(intent.id)}))

        assert result.outcome == "unmatched"
        intent.refresh_from_db()
        assert intent.provider_payment_id == "pay_1"
        assert ReconciliationIssue.objects.get().kind == ReconciliationIssue.Kind.TERMINAL_CONFLICT

    def test_redelivery_is_a_no_op(self, intent, student):
        event = captured_event(payment_id="pay_R", notes={"intent_id": str(intent.id)})

        first = deliver(event)
        second = deliver(event)

        assert first.outcome == "completed"
        assert second.status_code == 200
        assert second.outcome == "already_terminal"
        assert not ReconciliationIssue.objects.exists()


class TestPaymentId:

    @pytest.mark.parametrize("payment_id", [None, "", "   ", 12345])
    def test_capture_without_usable_id_touches_no_intent(self, payment_id, payment_intent_factory,
                                                         user_factory, student):
        bob = user_factory(username="bob", email="bob@x.com")
        bobs_intent = payment_intent_factory(user=bob, amount=4999)
        event = captured_event(email="jane@x.com", amount=999)
        event["payload"]["payment"]["entity"]["id"] = payment_id

        result = deliver(event)

        assert result.status_code == 200
        assert result.outcome == "malformed"
        bobs_intent.refresh_from_db()
        assert bobs_intent.status == PaymentIntent.Status.PENDING
        assert not EnrollmentService.is_enrolled(bob.pk)
        assert ReconciliationIssue.objects.get().kind == ReconciliationIssue.Kind.MALFORMED

    def test_redelivery_lookup_ignores_blank_id(self, payment_intent_factory, user_factory):
        unrelated = payment_intent_factory(user=user_factory(), amount=4999)
        captured = extract_captured_payment(captured_event(payment_id="pay_X", email="nobody@x.com"))
        blank = replace(captured, provider_payment_id="")

        assert WebhookIngestor().correlate(blank) is None
        unrelated.refresh_from_db()
        assert unrelated.status == PaymentIntent.Status.PENDING


def test_review_queue_keeps_paise(intent):
    event = captured_event(email="someone@else.com")
    event["payload"]["payment"]["entity"]["amount"] = 99950

    deliver(event)

    issue = ReconciliationIssue.objects.get()
    assert issue.amount == Decimal("999.50")

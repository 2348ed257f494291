"""
Client-side safety net for when neither the redirect nor the webhook has
resolved a payment yet. Read-only: it watches, it never confirms anything.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable

from django.conf import settings

from accounts.services import EnrollmentService

from .models import PaymentIntent

logger = logging.getLogger(__name__)

SUCCESS = "success"
FAILED = "failed"
PENDING = "pending"


@dataclass(frozen=True)
class Snapshot:
    intent_status: str | None
    enrolled: bool


@dataclass(frozen=True)
class PollResult:
    state: str
    attempts: int
    snapshot: Snapshot | None = None
    cancelled: bool = False


def read_snapshot(intent_id, user_id) -> Snapshot:
    status = (
        PaymentIntent.objects
        .filter(pk=intent_id, user_id=user_id)
        .values_list("status", flat=True)
        .first()
    )
    return Snapshot(intent_status=status, enrolled=EnrollmentService.is_enrolled(user_id))


def state_of(snapshot: Snapshot) -> str | None:
    """Final UI state for a snapshot, or None if still undecided."""
    if snapshot.enrolled or snapshot.intent_status == PaymentIntent.Status.COMPLETED:
        return SUCCESS
    if snapshot.intent_status == PaymentIntent.Status.FAILED:
        return FAILED
    return None


class EnrollmentPoller:
    """
    Bounded retry loop: at most `attempts` reads, `interval` seconds apart.
    Gives up with PENDING ("check back later") instead of spinning forever.
    """

    def __init__(self, read: Callable[[], Snapshot], attempts: int | None = None,
                 interval: float | None = None, on_attempt: Callable[[int, Snapshot], None] | None = None):
        self.read = read
        self.attempts = attempts or settings.PAYMENT_POLL_ATTEMPTS
        self.interval = settings.PAYMENT_POLL_INTERVAL if interval is None else interval
        self.on_attempt = on_attempt
        self._stop = threading.Event()

    @classmethod
    def for_intent(cls, intent_id, user_id, **kwargs) -> "EnrollmentPoller":
        return cls(lambda: read_snapshot(intent_id, user_id), **kwargs)

    def cancel(self) -> None:
        self._stop.set()

    def run(self) -> PollResult:
        snapshot = None
        for attempt in range(1, self.attempts + 1):
            if self._stop.is_set():
                return PollResult(PENDING, attempt - 1, snapshot, cancelled=True)

            snapshot = self.read()
            if self.on_attempt:
                self.on_attempt(attempt, snapshot)

            state = state_of(snapshot)
            if state is not None:
                return PollResult(state, attempt, snapshot)

            # wait() doubles as an interruptible sleep
            if attempt < self.attempts and self._stop.wait(self.interval):
                return PollResult(PENDING, attempt, snapshot, cancelled=True)

        logger.info(f"Poller gave up after {self.attempts} attempts; payment still pending")
        return PollResult(PENDING, self.attempts, snapshot)

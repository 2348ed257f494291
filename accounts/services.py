import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from .models import StudentProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnrollmentWindow:
    start: datetime
    end: datetime


def cohort_duration() -> timedelta:
    return timedelta(days=settings.COHORT_DURATION_DAYS)


def get_profile(user) -> StudentProfile:
    profile, _ = StudentProfile.objects.get_or_create(user=user)
    return profile


class EnrollmentService:
    @staticmethod
    def is_enrolled(user_id) -> bool:
        return StudentProfile.objects.filter(user_id=user_id, enrolled=True).exists()

    @staticmethod
    @transaction.atomic
    def open_window(user, now: datetime | None = None) -> EnrollmentWindow:
        """
        Enroll the user and (re)start their cohort window.

        Unconditional overwrite: only call this once per completed payment,
        the reconciliation engine guarantees that.
        """
        start = now or timezone.now()
        window = EnrollmentWindow(start=start, end=start + cohort_duration())

        profile = get_profile(user)
        StudentProfile.objects.filter(pk=profile.pk).update(
            enrolled=True,
            cohort_start=window.start,
            cohort_end=window.end,
            updated_at=timezone.now(),
        )
        logger.info(f"Enrollment window opened for user {user.pk}: {window.start:%Y-%m-%d} -> {window.end:%Y-%m-%d}")
        return window

    @staticmethod
    @transaction.atomic
    def open_window_if_not_enrolled(user, now: datetime | None = None) -> EnrollmentWindow | None:
        """
        Repair path: enroll only if nothing has enrolled the user yet.
        Never extends or resets an existing window.
        """
        start = now or timezone.now()
        profile = get_profile(user)
        updated = StudentProfile.objects.filter(pk=profile.pk, enrolled=False).update(
            enrolled=True,
            cohort_start=start,
            cohort_end=start + cohort_duration(),
            updated_at=timezone.now(),
        )
        if not updated:
            return None
        logger.info(f"Enrollment window opened by repair for user {user.pk}")
        return EnrollmentWindow(start=start, end=start + cohort_duration())

import logging
from dataclasses import dataclass

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Count, F
from django.utils import timezone

from accounts.models import StudentProfile
from .models import Referral, ReferralReward, ReferralPoints

logger = logging.getLogger(__name__)


class ReferralError(Exception):
    """Raised for unusable referral codes. The message is safe to show the user."""
    pass


@dataclass(frozen=True)
class ReferralStats:
    referral_code: str | None
    total: int
    pending: int
    enrolled_paid: int
    enrolled_free: int
    total_points: int
    available_points: int


class ReferralService:

    @staticmethod
    def track(*, referral_code: str, referee) -> Referral:
        code = (referral_code or "").strip().upper()
        if not code:
            raise ReferralError("Referral code is required")

        owner = StudentProfile.objects.select_related("user").filter(referral_code=code).first()
        if not owner:
            raise ReferralError("Invalid referral code")
        if owner.user_id == referee.pk:
            raise ReferralError("Cannot use your own referral code")
        if Referral.objects.filter(referee=referee).exists():
            raise ReferralError("A referral is already recorded for this account")

        try:
            with transaction.atomic():
                referral = Referral.objects.create(
                    referrer=owner.user,
                    referee=referee,
                    referral_code=code,
                )
        except IntegrityError:
            # a concurrent request won the one-referral-per-referee race
            raise ReferralError("A referral is already recorded for this account")

        logger.info(f"Referral tracked: {owner.user_id} -> {referee.pk}")
        return referral

    @staticmethod
    def mark_paid(referee) -> Referral | None:
        return ReferralService._advance(referee, Referral.Status.ENROLLED_PAID, settings.REFERRAL_POINTS_PAID)

    @staticmethod
    def mark_free(referee) -> Referral | None:
        return ReferralService._advance(referee, Referral.Status.ENROLLED_FREE, settings.REFERRAL_POINTS_FREE)

    @staticmethod
    @transaction.atomic
    def _advance(referee, new_status: str, points: int) -> Referral | None:
        """
        pending -> new_status, awarding the referrer exactly once.
        Returns the referral when this call performed the transition, else None.
        """
        updated = (
            Referral.objects
            .filter(referee=referee, status=Referral.Status.PENDING)
            .update(status=new_status, enrolled_at=timezone.now(), points_awarded=points)
        )
        if updated == 0:
            return None

        referral = Referral.objects.get(referee=referee)
        ReferralReward.objects.create(
            referral=referral,
            user_id=referral.referrer_id,
            points_earned=points,
            reason=new_status,
        )
        ReferralPoints.objects.get_or_create(user_id=referral.referrer_id)
        ReferralPoints.objects.filter(user_id=referral.referrer_id).update(
            total_points=F("total_points") + points,
            available_points=F("available_points") + points,
            updated_at=timezone.now(),
        )
        logger.info(f"Referral {referral.id} advanced to {new_status}; {points} points to user {referral.referrer_id}")
        return referral

    @staticmethod
    def stats(user) -> ReferralStats:
        counts = dict(
            Referral.objects.filter(referrer=user)
            .values_list("status")
            .annotate(n=Count("id"))
        )
        points = ReferralPoints.objects.filter(user=user).first()
        profile = StudentProfile.objects.filter(user=user).first()
        return ReferralStats(
            referral_code=profile.referral_code if profile else None,
            total=sum(counts.values()),
            pending=counts.get(Referral.Status.PENDING, 0),
            enrolled_paid=counts.get(Referral.Status.ENROLLED_PAID, 0),
            enrolled_free=counts.get(Referral.Status.ENROLLED_FREE, 0),
            total_points=points.total_points if points else 0,
            available_points=points.available_points if points else 0,
        )

from django.conf import settings
from django.db import models, IntegrityError, transaction

from accounts.utils.codes import generate_referral_code


class StudentProfile(models.Model):
    """
    Course-facing profile of a user.

    `enrolled`, `cohort_start` and `cohort_end` are written by the payment
    reconciliation side effects (see accounts.services.EnrollmentService).
    """
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="student_profile"
    )
    phone = models.CharField(max_length=20, blank=True, default="")

    enrolled = models.BooleanField(default=False)
    cohort_start = models.DateTimeField(null=True, blank=True)
    cohort_end = models.DateTimeField(null=True, blank=True)

    referral_code = models.CharField(max_length=20, unique=True, null=True, blank=True, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.user} (enrolled={self.enrolled})"

    def _pick_unique_code_batch(self, batch_size=25) -> str:
        # generate candidate codes in memory
        candidates = {generate_referral_code(8) for _ in range(batch_size)}

        # single DB query to find which ones already exist
        taken = set(
            self.__class__.objects
            .filter(referral_code__in=candidates)
            .values_list("referral_code", flat=True)
        )

        available = list(candidates - taken)
        if not available:
            raise ValueError("All generated referral codes were taken; increase batch_size or retry.")
        return available[0]

    def save(self, *args, **kwargs):
        if self.referral_code:
            return super().save(*args, **kwargs)

        for _ in range(10):
            self.referral_code = self._pick_unique_code_batch(batch_size=25)
            try:
                with transaction.atomic():
                    return super().save(*args, **kwargs)
            except IntegrityError:
                # collision still possible under concurrency, so retry
                self.referral_code = None

        raise RuntimeError("Could not generate a unique referral code after multiple attempts.")

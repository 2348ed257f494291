from django.core.management.base import BaseCommand

from payments.tasks import sweep_pending_payments


class Command(BaseCommand):
    help = "Re-verify pending payment intents with the gateway and complete the paid ones."

    def handle(self, *args, **options):
        counts = sweep_pending_payments()
        self.stdout.write(self.style.SUCCESS(
            "Checked {checked}: {completed} completed, {failed} failed, "
            "{pending} still pending, {errors} gateway errors.".format(**counts)
        ))


# Run with: python manage.py reconcile_payments

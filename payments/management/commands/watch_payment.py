from django.core.management.base import BaseCommand, CommandError

from payments.models import PaymentIntent
from payments.poller import EnrollmentPoller, SUCCESS, FAILED


class Command(BaseCommand):
    help = "Watch a payment intent until it settles or the poll budget runs out. Read-only."

    def add_arguments(self, parser):
        parser.add_argument("intent_id")
        parser.add_argument("--attempts", type=int, default=None)
        parser.add_argument("--interval", type=float, default=None)

    def handle(self, *args, **options):
        intent = PaymentIntent.objects.filter(pk=options["intent_id"]).first()
        if intent is None:
            raise CommandError(f"Payment intent {options['intent_id']} not found")

        def report(attempt, snapshot):
            self.stdout.write(f"[{attempt}] status={snapshot.intent_status} enrolled={snapshot.enrolled}")

        poller = EnrollmentPoller.for_intent(
            intent.id, intent.user_id,
            attempts=options["attempts"], interval=options["interval"], on_attempt=report,
        )
        try:
            result = poller.run()
        except KeyboardInterrupt:
            poller.cancel()
            raise CommandError("Stopped watching; payment state unchanged")

        if result.state == SUCCESS:
            self.stdout.write(self.style.SUCCESS("Payment confirmed; course unlocked."))
        elif result.state == FAILED:
            self.stdout.write(self.style.ERROR("Payment failed at the gateway."))
        else:
            self.stdout.write(self.style.WARNING("Still pending, check back later."))


# Run with: python manage.py watch_payment <intent_id>

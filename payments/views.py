import logging

from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.services import EnrollmentService
from coupons_discount.services import CouponError, CouponInvalid

from . import reconciliation
from .gateway import GatewayError
from .models import PaymentIntent
from .poller import read_snapshot, state_of, PENDING
from .serializers import InitiatePaymentSerializer, ConfirmPaymentSerializer
from .services import initiate_payment
from .store import PaymentIntentStore
from .webhooks import WebhookIngestor

logger = logging.getLogger(__name__)


class InitiatePaymentView(APIView):
    """
    POST /api/payments/initiate/
    Body: {"coupon_code": "LAUNCH500"}   (optional)
    """

    def post(self, request):
        serializer = InitiatePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        coupon_code = serializer.validated_data.get("coupon_code") or None

        try:
            checkout = initiate_payment(request.user, coupon_code)
        except CouponInvalid as exc:
            return Response({"error": exc.reason}, status=status.HTTP_400_BAD_REQUEST)
        except CouponError as exc:
            return Response({"error": str(exc)}, status=status.HTTP_409_CONFLICT)
        except GatewayError:
            logger.error(f"Could not create payment link for user {request.user.pk}")
            return Response(
                {"error": "Payment gateway unavailable, please try again."},
                status=status.HTTP_502_BAD_GATEWAY,
            )

        intent = checkout.intent
        return Response(
            {
                "success": True,
                "intentId": str(intent.id),
                "amount": intent.amount,
                "currency": intent.currency,
                "provider": intent.provider,
                "providerOrderId": intent.provider_order_id,
                "checkoutUrl": checkout.checkout_url or None,
                "discount": checkout.quote.discount if checkout.quote else 0,
                # free enrollments are already unlocked; no checkout to open
                "free": checkout.free,
                "status": intent.status,
            },
            status=status.HTTP_201_CREATED,
        )


class ConfirmPaymentView(APIView):
    """
    POST /api/payments/confirm/
    Redirect-callback path. The status in the URL is only a hint: the engine
    re-reads the payment link from the gateway before completing anything.
    """

    def post(self, request):
        serializer = ConfirmPaymentSerializer(data=request.data)
        if not serializer.is_valid():
            return Response({"error": "Missing payment link id", "details": serializer.errors},
                            status=status.HTTP_400_BAD_REQUEST)
        data = serializer.validated_data

        intent = PaymentIntentStore.find_by_provider_order_id(data["razorpay_payment_link_id"])
        if intent is None and data.get("intent_id"):
            intent = PaymentIntentStore.get(data["intent_id"])
        if intent is None:
            return Response({"error": "Payment record not found"}, status=status.HTTP_404_NOT_FOUND)
        if intent.user_id != request.user.pk:
            return Response({"error": "Payment does not belong to this user"}, status=status.HTTP_403_FORBIDDEN)

        logger.info(
            f"Redirect callback for intent {intent.id}: link status hint "
            f"{data.get('razorpay_payment_link_status')!r}"
        )

        try:
            result = reconciliation.confirm(intent.id, data.get("razorpay_payment_id") or None)
        except GatewayError:
            # can't verify right now; the poller / webhook will settle it
            return Response({"success": True, "paid": False, "state": PENDING, "intentId": str(intent.id)})

        return Response({
            "success": True,
            "paid": result.ui_state == "success",
            "state": result.ui_state,
            "justCompleted": result.just_completed,
            "intentId": str(intent.id),
        })


class PaymentStatusView(APIView):
    """
    GET /api/payments/<intent_id>/status/
    Read-only snapshot the client poller asks for. Never writes.
    """

    def get(self, request, intent_id):
        intent = get_object_or_404(PaymentIntent, pk=intent_id, user=request.user)
        snapshot = read_snapshot(intent.id, request.user.pk)
        return Response({
            "intentId": str(intent.id),
            "status": snapshot.intent_status,
            "enrolled": snapshot.enrolled,
            "state": state_of(snapshot) or PENDING,
        })


class EnrollmentStatusView(APIView):
    """
    GET /api/payments/enrollment/
    """

    def get(self, request):
        return Response({"enrolled": EnrollmentService.is_enrolled(request.user.pk)})


@csrf_exempt
@require_POST
def razorpay_webhook(request):
    """
    Handle Razorpay payment webhooks
    """
    payload = request.body
    signature = request.headers.get("x-razorpay-signature") or request.headers.get("x-signature")

    result = WebhookIngestor().receive(payload, signature)
    if result.status_code == 401:
        return JsonResponse({"error": "Invalid signature"}, status=401)

    body = {"received": True, "status": result.outcome}
    if result.intent_id:
        body["payment_id"] = str(result.intent_id)
    return JsonResponse(body, status=200)

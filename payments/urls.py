from django.urls import path
from .views import (
    InitiatePaymentView, ConfirmPaymentView, PaymentStatusView,
    EnrollmentStatusView, razorpay_webhook,
)

urlpatterns = [
    path("initiate/", InitiatePaymentView.as_view(), name="payment-initiate"),
    path("confirm/", ConfirmPaymentView.as_view(), name="payment-confirm"),
    path("enrollment/", EnrollmentStatusView.as_view(), name="enrollment-status"),
    path("<uuid:intent_id>/status/", PaymentStatusView.as_view(), name="payment-status"),
    path("webhooks/razorpay/", razorpay_webhook, name="razorpay-webhook"),
]

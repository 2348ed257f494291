from rest_framework import serializers


class InitiatePaymentSerializer(serializers.Serializer):
    coupon_code = serializers.CharField(max_length=100, required=False, allow_blank=True)


class ConfirmPaymentSerializer(serializers.Serializer):
    """Query parameters the gateway appended to the redirect, relayed by the browser."""
    razorpay_payment_link_id = serializers.CharField(max_length=100)
    razorpay_payment_id = serializers.CharField(max_length=100, required=False, allow_blank=True)
    razorpay_payment_link_status = serializers.CharField(max_length=30, required=False, allow_blank=True)
    intent_id = serializers.UUIDField(required=False, allow_null=True)

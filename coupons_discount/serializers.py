from django.utils import timezone
from rest_framework import serializers
from .models import Coupons


class CouponSerializer(serializers.ModelSerializer):
    exhausted = serializers.SerializerMethodField()
    time_left_seconds = serializers.SerializerMethodField()

    class Meta:
        model = Coupons
        fields = [
            "id", "code", "description",
            "discount_type", "discount_value", "max_discount",
            "min_purchase_amount",
            "max_uses", "uses_count", "max_uses_per_user",
            "valid_from", "valid_until",
            "exhausted",
            "time_left_seconds",
        ]

    def get_exhausted(self, obj):
        return obj.exhausted

    def get_time_left_seconds(self, obj):
        # If no end date => no countdown
        if not obj.valid_until:
            return None
        now = timezone.now()
        if obj.valid_from and now < obj.valid_from:
            return None
        delta = obj.valid_until - now
        return max(0, int(delta.total_seconds()))


class CouponCreateUpdateSerializer(serializers.ModelSerializer):
    class Meta:
        model = Coupons
        fields = [
            "id",
            "code", "description",
            "discount_type", "discount_value", "max_discount",
            "min_purchase_amount",
            "max_uses", "max_uses_per_user",
            "valid_from", "valid_until",
            "is_active",
        ]

    def validate_code(self, value):
        return value.strip().upper()

    def validate(self, attrs):
        discount_type = attrs.get("discount_type", getattr(self.instance, "discount_type", None))
        discount_value = attrs.get("discount_value", getattr(self.instance, "discount_value", 0))
        valid_from = attrs.get("valid_from", getattr(self.instance, "valid_from", None))
        valid_until = attrs.get("valid_until", getattr(self.instance, "valid_until", None))

        if discount_value is None or discount_value <= 0:
            raise serializers.ValidationError({"discount_value": "discount_value must be > 0."})
        if discount_type == "percent" and discount_value > 100:
            raise serializers.ValidationError({"discount_value": "A percent discount cannot exceed 100."})

        if valid_from and valid_until and valid_until < valid_from:
            raise serializers.ValidationError({"valid_until": "valid_until must be >= valid_from."})

        return attrs


class CouponValidateSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=100)
    amount = serializers.IntegerField(min_value=1, required=False)

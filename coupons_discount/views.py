import logging

from django.conf import settings
from rest_framework import generics, permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import Coupons
from .serializers import CouponSerializer, CouponCreateUpdateSerializer, CouponValidateSerializer
from .services import CouponLedger, CouponInvalid, eligible_coupon_q

logger = logging.getLogger(__name__)


class CouponValidateView(APIView):
    """
    POST /api/coupons/validate/
    Body: {"code": "LAUNCH500", "amount": 999}   (amount defaults to the course price)
    Always 200 for a well-formed request; `valid` carries the verdict.
    """
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = CouponValidateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {"valid": False, "error": "Missing required fields", "details": serializer.errors},
                status=status.HTTP_400_BAD_REQUEST,
            )

        amount = serializer.validated_data.get("amount") or settings.COURSE_PRICE
        user = request.user if request.user.is_authenticated else None

        try:
            quote = CouponLedger.validate(serializer.validated_data["code"], user, amount)
        except CouponInvalid as exc:
            return Response({"valid": False, "error": exc.reason})

        return Response({
            "valid": True,
            "couponId": quote.coupon_id,
            "discount": quote.discount,
            "finalPrice": quote.final_price,
            "originalPrice": quote.original_price,
            "message": f"₹{quote.discount} off applied!",
        })


class EligibleCouponsListView(generics.ListAPIView):
    """
    GET /api/coupons/eligible/
    Returns coupons that can currently be redeemed (active, in window, not exhausted).
    """
    serializer_class = CouponSerializer
    permission_classes = [permissions.IsAdminUser]

    def get_queryset(self):
        qs = Coupons.objects.filter(eligible_coupon_q())

        discount_type = self.request.query_params.get("discount_type")
        if discount_type:
            qs = qs.filter(discount_type=discount_type)

        return qs.order_by("-valid_from", "code")


class CouponCreateView(generics.CreateAPIView):
    """
    POST /api/coupons/admin/
    """
    permission_classes = [permissions.IsAdminUser]
    serializer_class = CouponCreateUpdateSerializer
    queryset = Coupons.objects.all()


class CouponUpdateView(generics.UpdateAPIView):
    """
    PATCH/PUT /api/coupons/admin/<id>/
    """
    permission_classes = [permissions.IsAdminUser]
    serializer_class = CouponCreateUpdateSerializer
    queryset = Coupons.objects.all()

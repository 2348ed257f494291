from dataclasses import asdict

from rest_framework import serializers, status
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.services import get_profile
from .services import ReferralService, ReferralError


class TrackReferralSerializer(serializers.Serializer):
    referral_code = serializers.CharField(max_length=20)


class TrackReferralView(APIView):
    """
    POST /api/referrals/track/
    Body: {"referral_code": "AB12CD34"}
    """

    def post(self, request):
        serializer = TrackReferralSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            referral = ReferralService.track(
                referral_code=serializer.validated_data["referral_code"],
                referee=request.user,
            )
        except ReferralError as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(
            {"success": True, "referral_id": referral.id, "status": referral.status},
            status=status.HTTP_201_CREATED,
        )


class ReferralStatsView(APIView):
    """
    GET /api/referrals/stats/
    """

    def get(self, request):
        # make sure the caller has a code to share
        get_profile(request.user)
        return Response(asdict(ReferralService.stats(request.user)))

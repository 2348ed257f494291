from django.urls import path
from .views import TrackReferralView, ReferralStatsView

urlpatterns = [
    path("track/", TrackReferralView.as_view(), name="referral-track"),
    path("stats/", ReferralStatsView.as_view(), name="referral-stats"),
]

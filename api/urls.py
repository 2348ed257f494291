from django.urls import path, include

urlpatterns = [
    path("coupons/", include("coupons_discount.urls")),
    path("referrals/", include("referrals.urls")),
    path("payments/", include("payments.urls")),
]

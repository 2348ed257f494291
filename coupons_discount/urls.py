from django.urls import path
from .views import (
    CouponValidateView, EligibleCouponsListView,
    CouponCreateView, CouponUpdateView,
)

urlpatterns = [
    path("validate/", CouponValidateView.as_view(), name="coupon-validate"),
    path("eligible/", EligibleCouponsListView.as_view(), name="eligible-coupons"),

    path("admin/", CouponCreateView.as_view(), name="coupon-create"),
    path("admin/<int:pk>/", CouponUpdateView.as_view(), name="coupon-update"),
]

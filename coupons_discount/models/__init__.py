from .models import Coupons, CouponUsage

__all__ = ["Coupons", "CouponUsage"]

from django.contrib import admin

from .models import Coupons, CouponUsage


@admin.register(Coupons)
class CouponsAdmin(admin.ModelAdmin):
    list_display = ("code", "discount_type", "discount_value", "uses_count", "max_uses", "is_active", "valid_until")
    list_filter = ("is_active", "discount_type")
    search_fields = ("code",)


@admin.register(CouponUsage)
class CouponUsageAdmin(admin.ModelAdmin):
    list_display = ("coupon", "user", "payment", "original_price", "discount_applied", "final_price", "used_at")
    readonly_fields = [f.name for f in CouponUsage._meta.fields]

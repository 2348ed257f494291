from django.contrib import admin

from .models import Referral, ReferralReward, ReferralPoints


@admin.register(Referral)
class ReferralAdmin(admin.ModelAdmin):
    list_display = ("referrer", "referee", "status", "points_awarded", "created_at", "enrolled_at")
    list_filter = ("status",)


admin.site.register(ReferralReward)
admin.site.register(ReferralPoints)

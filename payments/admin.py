from django.contrib import admin

from .models import PaymentIntent, ReconciliationIssue
from . import tasks


@admin.register(PaymentIntent)
class PaymentIntentAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "amount", "currency", "status", "provider_order_id", "provider_payment_id", "created_at")
    list_filter = ("status", "provider")
    search_fields = ("id", "provider_order_id", "provider_payment_id", "user__email")
    # status changes only through the reconciliation engine
    readonly_fields = ("status", "provider_order_id", "provider_payment_id", "completed_at", "created_at", "updated_at")


@admin.register(ReconciliationIssue)
class ReconciliationIssueAdmin(admin.ModelAdmin):
    list_display = ("kind", "intent", "email", "amount", "provider_payment_id", "resolved", "created_at")
    list_filter = ("kind", "resolved")
    actions = ["repair_side_effects"]

    @admin.action(description="Re-run enrollment/referral for the linked intent")
    def repair_side_effects(self, request, queryset):
        for issue in queryset.filter(kind=ReconciliationIssue.Kind.SIDE_EFFECT_FAILED).exclude(intent=None):
            tasks.repair_side_effects.delay(str(issue.intent_id))

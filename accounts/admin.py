from django.contrib import admin

from .models import StudentProfile


@admin.register(StudentProfile)
class StudentProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "enrolled", "cohort_start", "cohort_end", "referral_code")
    list_filter = ("enrolled",)
    search_fields = ("user__email", "user__username", "referral_code")
    readonly_fields = ("referral_code", "created_at", "updated_at")

from django.contrib import admin

from .models import ApplicationTransition, InternshipApplication


class ApplicationTransitionInline(admin.TabularInline):
    model = ApplicationTransition
    extra = 0
    can_delete = False
    readonly_fields = ("from_status", "to_status", "actor", "actor_role", "comment", "ip_address", "created_at")


@admin.register(InternshipApplication)
class InternshipApplicationAdmin(admin.ModelAdmin):
    list_display = ("application_no", "student", "company", "university", "status", "submitted_at", "created_at")
    list_filter = ("status", "company", "university")
    search_fields = ("application_no", "student__username", "student__student_number", "position")
    readonly_fields = ("company_seal", "company_seal_payload", "certificate", "created_at", "updated_at")
    inlines = [ApplicationTransitionInline]

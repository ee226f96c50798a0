from django.contrib import admin

from .models import StudentWhitelist


@admin.register(StudentWhitelist)
class StudentWhitelistAdmin(admin.ModelAdmin):
    list_display = ("student_number", "name", "university", "is_used", "used_at", "batch_id", "created_at")
    list_filter = ("is_used", "university")
    search_fields = ("student_number", "name", "batch_id")
    readonly_fields = ("used_at", "used_by", "created_at")

from django.contrib import admin

from .models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("created_at", "type", "recipient", "title", "read_at")
    list_filter = ("type",)
    search_fields = ("recipient__username", "title")
    date_hierarchy = "created_at"
    readonly_fields = ("recipient", "type", "title", "body", "url", "created_at", "read_at")

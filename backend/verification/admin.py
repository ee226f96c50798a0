from django.contrib import admin

from .models import VerificationEvent


@admin.register(VerificationEvent)
class VerificationEventAdmin(admin.ModelAdmin):
    list_display = ("created_at", "lookup_kind", "outcome", "certificate_status", "ledger_checked", "ip_address", "lookup_prefix")
    search_fields = ("lookup_hash", "lookup_prefix", "ip_address", "path", "user_agent")
    list_filter = ("lookup_kind", "outcome", "ledger_checked")
    ordering = ("-created_at",)

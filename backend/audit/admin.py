from django.contrib import admin

from .models import AuditLog


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
	list_display = ("created_at", "event_type", "object_type", "object_id", "actor", "status_code")
	list_filter = ("event_type",)
	search_fields = ("object_id", "actor__username", "metadata")
	date_hierarchy = "created_at"

	def get_readonly_fields(self, request, obj=None):
		return [f.name for f in self.model._meta.fields]

	def has_add_permission(self, request):
		return False

	def has_delete_permission(self, request, obj=None):
		return False

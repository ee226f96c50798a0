from django.contrib import admin
from django.contrib.auth.admin import UserAdmin
from .models import User

@admin.register(User)
class CustomUserAdmin(UserAdmin):
    list_display = ('username', 'email', 'role', 'approval_status', 'university', 'company', 'is_active')
    list_filter = ('role', 'approval_status', 'is_active')
    search_fields = ('username', 'email', 'student_number', 'apply_org_code')
    fieldsets = UserAdmin.fieldsets + (
        ('Role Info', {'fields': ('role', 'university', 'company', 'student_number', 'wallet_address')}),
        ('Account request', {'fields': ('approval_status', 'apply_org_name', 'apply_org_code', 'apply_reason', 'reject_reason', 'approved_at', 'approved_by')}),
    )
    add_fieldsets = UserAdmin.add_fieldsets + (
        ('Role Info', {'fields': ('role',)}),
    )

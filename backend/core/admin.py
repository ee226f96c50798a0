from django.contrib import admin
from .models import Company, University

@admin.register(University)
class UniversityAdmin(admin.ModelAdmin):
    list_display = ('code', 'name', 'is_verified', 'created_at')
    list_filter = ('is_verified',)
    search_fields = ('code', 'name')

@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = ('code', 'name', 'is_verified', 'created_at')
    list_filter = ('is_verified',)
    search_fields = ('code', 'name')

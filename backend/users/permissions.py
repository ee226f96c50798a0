from rest_framework import permissions
from .models import User


class IsAdmin(permissions.BasePermission):
    def has_permission(self, request, view):
        return request.user.is_authenticated and (
            request.user.role == User.ROLE_ADMIN or request.user.is_superuser
        )


class IsStudent(permissions.BasePermission):
    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role == User.ROLE_STUDENT


class IsCompanyMember(permissions.BasePermission):
    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role == User.ROLE_COMPANY


class IsUniversityOrAdmin(permissions.BasePermission):
    """University staff and administrators operate on issued certificates."""

    def has_permission(self, request, view):
        return request.user.is_authenticated and (
            request.user.role in [User.ROLE_UNIVERSITY, User.ROLE_ADMIN] or request.user.is_superuser
        )


class IsOwnerOrAdmin(permissions.BasePermission):
    """
    Custom permission to only allow owners of an object to see or edit it.
    Admins can access anything.
    """

    def has_object_permission(self, request, view, obj):
        if request.user.role == User.ROLE_ADMIN or request.user.is_superuser:
            return True
        return obj == request.user

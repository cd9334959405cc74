from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import Invitation, Organization, User


@admin.register(Organization)
class OrganizationAdmin(admin.ModelAdmin):
    list_display = ("name", "slug", "subscription_plan", "subscription_status", "created_at")
    list_filter = ("subscription_plan", "subscription_status")
    search_fields = ("name", "slug", "abn")
    readonly_fields = ("txn_sequence", "claim_sequence")


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ("username", "email", "first_name", "last_name", "organization", "role", "is_active")
    list_filter = ("role", "is_active", "is_staff", "organization")
    fieldsets = BaseUserAdmin.fieldsets + (
        ("SDA Back Office", {"fields": ("organization", "role", "phone")}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ("SDA Back Office", {"fields": ("organization", "role", "phone", "first_name", "last_name", "email")}),
    )


@admin.register(Invitation)
class InvitationAdmin(admin.ModelAdmin):
    list_display = ("email", "organization", "role", "status", "created_at", "expires_at")
    list_filter = ("status", "role")
    search_fields = ("email", "first_name", "last_name")
    exclude = ("token",)

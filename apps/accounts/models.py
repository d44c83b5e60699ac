from django.db import models
from apps.core.models import TimeStampedModel
from apps.core.enums import AccessRole
from auditlog.registry import auditlog
from uuid import uuid4
import os
from django.contrib.auth.models import User


class OrganizationStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    SUSPENDED = "suspended", "Suspended"
    PENDING = "pending", "Pending"


class MemberRole(models.TextChoices):
    OWNER = AccessRole.OWNER.value, "Owner"
    ADMIN = AccessRole.ADMIN.value, "Admin"
    MEMBER = AccessRole.MEMBER.value, "Member"
    VIEWER = AccessRole.VIEWER.value, "Viewer"


def _logo_upload_path(instance, filename):
    base, ext = os.path.splitext(filename or "")
    ext = ext or ".png"
    return f"org_logos/{uuid4().hex}{ext}"


class Organization(TimeStampedModel):
    name = models.CharField(max_length=255, unique=True)
    slug = models.SlugField(max_length=128, unique=True)
    description = models.TextField(blank=True, null=True)
    website_url = models.URLField(blank=True, null=True)
    status = models.CharField(max_length=16, choices=OrganizationStatus.choices, default=OrganizationStatus.ACTIVE)
    logo = models.ImageField(upload_to=_logo_upload_path, blank=True, null=True)

    def __str__(self):
        return self.name


class OrganizationMember(TimeStampedModel):
    organization = models.ForeignKey(Organization, on_delete=models.CASCADE, related_name="members")
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="org_memberships")
    role = models.CharField(max_length=16, choices=MemberRole.choices, default=MemberRole.MEMBER)
    invited_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")

    class Meta:
        unique_together = ("organization", "user")

    def __str__(self):
        return f"org#{self.organization_id}:user#{self.user_id}:{self.role}"


# Register models for automatic audit logging
auditlog.register(Organization)
auditlog.register(OrganizationMember)

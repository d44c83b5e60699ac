from uuid import uuid4

from django.contrib.auth.models import User
from django.db import models
from auditlog.registry import auditlog

from apps.accounts.models import Organization
from apps.core.enums import AccessRole, QuestionType, CHOICE_TYPES
from apps.core.models import TimeStampedModel


class ProjectStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    FINISHED = "finished", "Finished"
    ARCHIVED = "archived", "Archived"


class ProjectRole(models.TextChoices):
    ADMIN = AccessRole.ADMIN.value, "Admin"
    EDITOR = AccessRole.EDITOR.value, "Editor"
    VIEWER = AccessRole.VIEWER.value, "Viewer"


class Project(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    organization = models.ForeignKey(
        Organization, on_delete=models.CASCADE, related_name="projects", null=True, blank=True
    )
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, null=True)
    status = models.CharField(max_length=16, choices=ProjectStatus.choices, default=ProjectStatus.ACTIVE)
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name="created_projects")
    agencies = models.JSONField(default=list, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["status"], name="idx_project_status"),
        ]

    @property
    def is_finished(self) -> bool:
        return self.status == ProjectStatus.FINISHED

    def __str__(self):
        return self.name


class ProjectMember(TimeStampedModel):
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="members")
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="project_memberships")
    role = models.CharField(max_length=16, choices=ProjectRole.choices, default=ProjectRole.VIEWER)
    added_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")

    class Meta:
        unique_together = ("project", "user")

    def __str__(self):
        return f"project#{self.project_id}:user#{self.user_id}:{self.role}"


class QuestionDefinition(TimeStampedModel):
    """A configured observation question; column order in exports follows sort_order."""

    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="questions")
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, null=True)
    question_type = models.CharField(max_length=16, choices=QuestionType.choices(), default=QuestionType.STRING.value)
    options = models.JSONField(default=list, blank=True)   # only kept for radio/checkbox
    sort_order = models.IntegerField(default=0)
    is_visible = models.BooleanField(default=True)

    class Meta:
        ordering = ["sort_order", "created_at"]
        indexes = [
            models.Index(fields=["project", "sort_order"], name="idx_question_project_order"),
        ]

    @property
    def has_options(self) -> bool:
        return self.question_type in CHOICE_TYPES

    def __str__(self):
        return f"{self.project_id}:{self.name}"


auditlog.register(Project)
auditlog.register(ProjectMember)
auditlog.register(QuestionDefinition)

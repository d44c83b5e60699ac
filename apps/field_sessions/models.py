from uuid import uuid4

from django.contrib.auth.models import User
from django.db import models
from django.utils import timezone
from auditlog.registry import auditlog

from apps.core.models import TimeStampedModel
from apps.projects.models import Project


class Session(TimeStampedModel):
    """One field visit to an agency; active while end_time is null."""

    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="sessions")
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="field_sessions")
    agency = models.CharField(max_length=255, blank=True, null=True)
    alias = models.CharField(max_length=255, blank=True, null=True)
    start_time = models.DateTimeField(default=timezone.now)
    end_time = models.DateTimeField(blank=True, null=True)

    class Meta:
        ordering = ["-start_time"]
        indexes = [
            models.Index(fields=["project", "start_time"], name="idx_session_project_start"),
        ]

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    def __str__(self):
        return f"session:{self.id} project:{self.project_id}"


auditlog.register(Session)

from uuid import uuid4

from django.contrib.auth.models import User
from django.db import models
from auditlog.registry import auditlog

from apps.core.models import TimeStampedModel
from apps.field_sessions.models import Session
from apps.projects.models import QuestionDefinition


class Observation(TimeStampedModel):
    """One answer to one question within one session."""

    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    session = models.ForeignKey(Session, on_delete=models.CASCADE, related_name="observations")
    question = models.ForeignKey(QuestionDefinition, on_delete=models.CASCADE, related_name="observations")
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="observations")
    response = models.JSONField(null=True, blank=True)
    alias = models.CharField(max_length=255, blank=True, null=True)

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["session", "question"], name="idx_obs_session_question"),
        ]

    def __str__(self):
        return f"obs:{self.session_id}:{self.question_id}"


auditlog.register(Observation)

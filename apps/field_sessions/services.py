"""
Session lifecycle: start, finish, delete.

Every operation goes through a DataAccess so the ordering of writes can be
checked against the in-memory fake. Deletion removes voice recordings before
the rows that reference them; a failure part-way leaves orphaned blobs at
worst, never an answer pointing at a deleted file.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional

from django.utils import timezone

from apps.core.backend import DataAccess, Row
from apps.core.exceptions import (
    BackendError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    RowNotFoundError,
    ValidationError,
)
from apps.observations.services import SESSION_FINISHED, remove_voice_recordings, voice_filenames

logger = logging.getLogger(__name__)

PROJECT_FINISHED = "El proyecto está finalizado y no admite nuevas sesiones"
UNKNOWN_AGENCY = "La agencia no pertenece a este proyecto"
SESSION_GONE = "La sesión no existe o ya fue eliminada"
CANNOT_FINISH = "No tienes permisos para finalizar esta sesión"


def start_session(
    backend: DataAccess,
    *,
    project: Row,
    user_id,
    agency: Optional[str] = None,
    alias: Optional[str] = None,
) -> Row:
    """Open a new active session for `user_id` in `project`."""
    if project.get("status") == "finished":
        raise ConflictError(PROJECT_FINISHED)

    agency = (agency or "").strip() or None
    agencies = project.get("agencies") or []
    if agencies and agency not in agencies:
        raise ValidationError(UNKNOWN_AGENCY)

    row = backend.insert_rows(
        "sessions",
        [{
            "project_id": project["id"],
            "user_id": user_id,
            "agency": agency,
            "alias": (alias or "").strip() or None,
            "start_time": timezone.now(),
            "end_time": None,
        }],
    )[0]
    logger.info("Session started", extra={"project_id": str(project["id"]), "session_id": str(row["id"])})
    return row


def finish_session(backend: DataAccess, session_id, project_id, user_id) -> Row:
    """
    Set end_time on an active session owned by `user_id`.

    The write is one conditional update; when it touches nothing the session
    is re-read only to pick the error message.
    """
    updated = backend.update_rows(
        "sessions",
        {"end_time": timezone.now()},
        {"id": session_id, "project_id": project_id, "user_id": user_id, "end_time__isnull": True},
    )
    if updated:
        return updated[0]

    try:
        session = backend.read_rows("sessions", {"id": session_id, "project_id": project_id}, single=True)
    except RowNotFoundError:
        raise NotFoundError(SESSION_GONE)
    if session.get("end_time"):
        raise ConflictError(SESSION_FINISHED)
    raise PermissionDeniedError(CANNOT_FINISH)


def delete_session_with_observations(backend: DataAccess, session_id, project_id) -> int:
    """
    End the session, delete its recordings, then its answers, then the
    session row. Returns the number of answers deleted.
    """
    # Ending first stops new answers from landing while the delete runs
    backend.update_rows(
        "sessions",
        {"end_time": timezone.now()},
        {"id": session_id, "project_id": project_id, "end_time__isnull": True},
    )

    observations = backend.read_rows("observations", {"session_id": session_id})
    remove_voice_recordings(backend, voice_filenames(observations))

    deleted = backend.delete_rows("observations", {"session_id": session_id})
    if not backend.delete_rows("sessions", {"id": session_id, "project_id": project_id}):
        raise NotFoundError(SESSION_GONE)
    logger.info("Session deleted", extra={"session_id": str(session_id), "observations": deleted})
    return deleted


def delete_project_sessions(backend: DataAccess, project_id) -> int:
    """Same ordering as a single delete, batched over every session of the project."""
    session_ids = [row["id"] for row in backend.read_rows("sessions", {"project_id": project_id})]
    if not session_ids:
        return 0
    observations = backend.read_rows("observations", {"session_id__in": session_ids})
    remove_voice_recordings(backend, voice_filenames(observations))
    backend.delete_rows("observations", {"session_id__in": session_ids})
    backend.delete_rows("sessions", {"project_id": project_id})
    logger.info("Project sessions deleted", extra={"project_id": str(project_id), "count": len(session_ids)})
    return len(session_ids)


def creator_fallback(user_id: Any) -> str:
    return f"Usuario {str(user_id or '')[:8]}"


def get_session_creator(backend: DataAccess, session: Row) -> str:
    """Email of the session's creator, or "Usuario <id prefix>" when it cannot be resolved."""
    user_id = session.get("user_id")
    if user_id is None:
        return creator_fallback(user_id)
    try:
        rows: List[Row] = backend.call_remote_procedure("get_user_emails", {"user_ids": [user_id]}) or []
    except BackendError as exc:
        logger.warning("Could not resolve session creator: %s", exc.message)
        return creator_fallback(user_id)
    for row in rows:
        if str(row.get("user_id")) == str(user_id) and row.get("email"):
            return row["email"]
    return creator_fallback(user_id)

"""
Read-only access decisions for organizations, projects and sessions.

Decisions are recomputed on every request and never persisted. Known outcomes
(unauthenticated, not found, no membership) come back as a denied
`AccessDecision` carrying a user-facing message; callers turn that into an
error with `raise_for_denied()`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, List, Optional, Type

from apps.core.backend import DataAccess, Row
from apps.core.enums import AccessRole
from apps.core.exceptions import (
    AuthenticationError,
    BackendError,
    NotFoundError,
    ObservaError,
    PermissionDeniedError,
    RowNotFoundError,
)
from apps.core.permissions import role_can

logger = logging.getLogger(__name__)

NOT_AUTHENTICATED = "Usuario no autenticado"
PROJECT_NOT_FOUND = "Proyecto no encontrado"
PROJECT_DENIED = "Sin acceso al proyecto"
SESSION_NOT_FOUND = "Sesión no encontrada"
ORGANIZATION_NOT_FOUND = "Organización no encontrada"
ORGANIZATION_DENIED = "No tienes acceso a esta organización"
INTERNAL_ERROR = "Error interno del servidor"


@dataclass(frozen=True)
class AccessDecision:
    has_access: bool
    role: Optional[AccessRole] = None
    error: Optional[str] = None
    error_class: Type[ObservaError] = PermissionDeniedError
    project: Optional[Row] = None
    session: Optional[Row] = None
    organization: Optional[Row] = None

    @property
    def can_edit(self) -> bool:
        return role_can(self.role, "edit_project")

    @property
    def can_delete(self) -> bool:
        return role_can(self.role, "delete_project")

    def raise_for_denied(self) -> None:
        if not self.has_access:
            raise self.error_class(self.error)

    def as_dict(self) -> dict:
        return {
            "has_access": self.has_access,
            "role": self.role.value if self.role else None,
            "error": self.error,
            "can_edit": self.can_edit,
            "can_delete": self.can_delete,
        }


def _deny(error_class: Type[ObservaError], message: str) -> AccessDecision:
    return AccessDecision(has_access=False, error=message, error_class=error_class)


def _as_role(value: Any) -> Optional[AccessRole]:
    try:
        return AccessRole(str(value))
    except ValueError:
        return None


class AccessValidator:
    def __init__(self, backend: DataAccess):
        self.backend = backend

    # ---- project ------------------------------------------------------------------

    def validate_project_access(self, project_id) -> AccessDecision:
        user = self.backend.current_user()
        if not user:
            return _deny(AuthenticationError, NOT_AUTHENTICATED)
        try:
            return self._project_decision(user, project_id)
        except BackendError:
            logger.exception("Error validating project access", extra={"project_id": str(project_id)})
            return _deny(BackendError, INTERNAL_ERROR)

    def _project_decision(self, user: Row, project_id) -> AccessDecision:
        try:
            project = self.backend.read_rows("projects", {"id": project_id}, single=True)
        except RowNotFoundError:
            return _deny(NotFoundError, PROJECT_NOT_FOUND)

        # Creator bypass: no membership lookups
        if project.get("created_by_id") == user["id"]:
            return AccessDecision(has_access=True, role=AccessRole.OWNER, project=project)

        project_role = None
        explicit = self.backend.read_rows("project_users", {"project_id": project["id"], "user_id": user["id"]})
        if explicit:
            project_role = _as_role(explicit[0].get("role"))

        organization = None
        org_role = None
        org_id = project.get("organization_id")
        if org_id is not None:
            memberships = self.backend.read_rows(
                "organization_users", {"organization_id": org_id, "user_id": user["id"]}
            )
            if memberships:
                org_role = _as_role(memberships[0].get("role")) or AccessRole.MEMBER
                organization = self._organization_row(org_id)

        role = project_role or org_role
        if role is None:
            return _deny(PermissionDeniedError, PROJECT_DENIED)
        return AccessDecision(has_access=True, role=role, project=project, organization=organization)

    # ---- session ------------------------------------------------------------------

    def validate_session_access(self, project_id, session_id) -> AccessDecision:
        user = self.backend.current_user()
        if not user:
            return _deny(AuthenticationError, NOT_AUTHENTICATED)

        decision = self.validate_project_access(project_id)
        if not decision.has_access:
            return decision

        try:
            # Filtering on both ids rejects a session that lives under another project
            session = self.backend.read_rows(
                "sessions", {"id": session_id, "project_id": project_id}, single=True
            )
        except RowNotFoundError:
            return _deny(NotFoundError, SESSION_NOT_FOUND)
        except BackendError:
            logger.exception("Error validating session access", extra={"session_id": str(session_id)})
            return _deny(BackendError, INTERNAL_ERROR)

        # The session's own creator and anyone with project access may see it
        return replace(decision, session=session)

    # ---- organization -------------------------------------------------------------

    def validate_organization_access(self, organization_id) -> AccessDecision:
        user = self.backend.current_user()
        if not user:
            return _deny(AuthenticationError, NOT_AUTHENTICATED)
        try:
            organization = self._organization_row(organization_id)
            if organization is None:
                return _deny(NotFoundError, ORGANIZATION_NOT_FOUND)
            memberships = self.backend.read_rows(
                "organization_users", {"organization_id": organization["id"], "user_id": user["id"]}
            )
        except BackendError:
            logger.exception("Error validating organization access", extra={"organization_id": organization_id})
            return _deny(BackendError, INTERNAL_ERROR)

        if not memberships:
            return _deny(PermissionDeniedError, ORGANIZATION_DENIED)
        role = _as_role(memberships[0].get("role")) or AccessRole.MEMBER
        return AccessDecision(has_access=True, role=role, organization=organization)

    def user_organizations(self) -> List[Row]:
        """Organizations of the current user with their role (empty when anonymous)."""
        user = self.backend.current_user()
        if not user:
            return []
        return self.backend.call_remote_procedure("get_user_organizations", {"user_id": user["id"]})

    def _organization_row(self, organization_id) -> Optional[Row]:
        try:
            return self.backend.read_rows("organizations", {"id": organization_id}, single=True)
        except RowNotFoundError:
            return None

from rest_framework.permissions import BasePermission

from .enums import AccessRole
from .exceptions import PermissionDeniedError

_ALL = frozenset(AccessRole)
_CONTRIBUTORS = _ALL - {AccessRole.VIEWER}
_MANAGERS = frozenset({AccessRole.OWNER, AccessRole.ADMIN})

# capability -> roles allowed to exercise it on a project
CAPABILITIES = {
    "view_sessions": _ALL,
    "create_sessions": _CONTRIBUTORS,
    "edit_observations": _CONTRIBUTORS,
    "access_settings": _CONTRIBUTORS,
    "add_agencies": _CONTRIBUTORS,
    "manage_questions": _MANAGERS | {AccessRole.EDITOR},
    "edit_project": _MANAGERS,
    "manage_users": _MANAGERS,
    "finish_project": _MANAGERS,
    "delete_project": frozenset({AccessRole.OWNER}),
}


def role_can(role, capability: str) -> bool:
    """True if `role` (AccessRole or its value) grants `capability`."""
    if role is None:
        return False
    try:
        role = AccessRole(str(role))
    except ValueError:
        return False
    return role in CAPABILITIES.get(capability, frozenset())


def _required_capability(request, view):
    by_method = getattr(view, "required_capability_by_method", None)
    if by_method and isinstance(by_method, dict):
        capability = by_method.get(request.method.upper())
        if capability is not None:
            return capability
    return getattr(view, "required_capability", None)


class HasProjectAccess(BasePermission):
    """
    Validate access to the project (and session, when the URL names one) and
    enforce the capability from view.required_capability_by_method or
    view.required_capability.

    The decision is stored on `request.access`; a denied decision raises the
    matching error so its message reaches the client.
    """

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        from apps.accounts.access import AccessValidator  # local import to avoid circulars
        from .backend import OrmDataAccess

        backend = OrmDataAccess(user=request.user)
        validator = AccessValidator(backend)
        project_id = view.kwargs.get("project_id")
        session_id = view.kwargs.get("session_id")
        if session_id is not None:
            decision = validator.validate_session_access(project_id, session_id)
        else:
            decision = validator.validate_project_access(project_id)
        decision.raise_for_denied()

        capability = _required_capability(request, view)
        if capability and not role_can(decision.role, capability):
            raise PermissionDeniedError("No tienes permisos para esta acción")

        request.backend = backend
        request.access = decision
        return True


class IsOrganizationMember(BasePermission):
    """Allow only members of the organization named by view.kwargs['org_id'].

    Methods listed in view.manager_methods additionally require owner/admin.
    """

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        from apps.accounts.access import AccessValidator
        from .backend import OrmDataAccess

        decision = AccessValidator(OrmDataAccess(user=request.user)).validate_organization_access(
            view.kwargs.get("org_id")
        )
        decision.raise_for_denied()
        if request.method.upper() in getattr(view, "manager_methods", ()):
            if decision.role not in (AccessRole.OWNER, AccessRole.ADMIN):
                raise PermissionDeniedError("No tienes permisos para administrar esta organización")
        request.access = decision
        return True

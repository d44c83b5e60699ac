"""
Data-access collaborator used by the access validator, the session lifecycle
services and the CSV exporter.

Services never touch model classes directly for these flows; they receive a
`DataAccess` so they can run against the ORM in production and against an
in-memory fake in unit tests. Rows cross this boundary as plain dicts.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from django.apps import apps
from django.core.exceptions import FieldError, ValidationError as DjangoValidationError
from django.core.files.storage import Storage, default_storage
from django.db import DatabaseError, transaction
from django.utils import timezone

from .exceptions import BackendError, RowNotFoundError

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

# Logical table name -> model label
TABLES: Dict[str, str] = {
    "organizations": "accounts.Organization",
    "organization_users": "accounts.OrganizationMember",
    "projects": "projects.Project",
    "project_users": "projects.ProjectMember",
    "project_observation_options": "projects.QuestionDefinition",
    "sessions": "field_sessions.Session",
    "observations": "observations.Observation",
}


class DataAccess:
    """
    Interface of the data store.

    Filters use Django lookup syntax (`{"session_id__in": [...]}`,
    `{"end_time__isnull": True}`); `order` is a list of field names with an
    optional "-" prefix for descending order.
    """

    def read_rows(
        self,
        table: str,
        filters: Optional[Row] = None,
        order: Optional[Sequence[str]] = None,
        *,
        single: bool = False,
    ):
        """Return matching rows; with `single=True` return exactly one row or raise."""
        raise NotImplementedError

    def insert_rows(self, table: str, rows: Iterable[Row]) -> List[Row]:
        raise NotImplementedError

    def update_rows(self, table: str, patch: Row, filters: Row) -> List[Row]:
        """Apply `patch` to rows matching `filters` and return the updated rows."""
        raise NotImplementedError

    def delete_rows(self, table: str, filters: Row) -> int:
        raise NotImplementedError

    def upload_blob(self, bucket: str, filename: str, content) -> str:
        raise NotImplementedError

    def remove_blobs(self, bucket: str, filenames: Sequence[str]) -> None:
        raise NotImplementedError

    def get_public_url(self, bucket: str, filename: str) -> str:
        raise NotImplementedError

    def current_user(self) -> Optional[Row]:
        raise NotImplementedError

    def call_remote_procedure(self, name: str, args: Optional[Row] = None) -> Any:
        raise NotImplementedError


class OrmDataAccess(DataAccess):
    """DataAccess backed by the Django ORM and `default_storage`."""

    def __init__(self, user=None, storage: Optional[Storage] = None):
        self.user = user
        self.storage = storage or default_storage

    # ---- tables -----------------------------------------------------------------

    def _model(self, table: str):
        try:
            return apps.get_model(TABLES[table])
        except KeyError:
            raise BackendError(f"Tabla desconocida: {table}", code="unknown_table")

    def _queryset(self, table: str, filters: Optional[Row]):
        model = self._model(table)
        try:
            return model.objects.filter(**(filters or {}))
        except (FieldError, ValueError, DjangoValidationError) as exc:
            raise BackendError(str(exc), code="bad_filter") from exc

    def read_rows(self, table, filters=None, order=None, *, single=False):
        qs = self._queryset(table, filters)
        if order:
            qs = qs.order_by(*order)
        try:
            rows = list(qs.values()[:2] if single else qs.values())
        except (DatabaseError, FieldError) as exc:
            logger.error("Read failed on %s", table, extra={"filters": filters})
            raise BackendError(str(exc), code="read_failed") from exc
        if not single:
            return rows
        if not rows:
            raise RowNotFoundError(f"Sin resultados en {table}")
        if len(rows) > 1:
            raise BackendError(f"Más de un resultado en {table}", code="multiple_rows")
        return rows[0]

    def insert_rows(self, table, rows):
        model = self._model(table)
        try:
            with transaction.atomic():
                created = [model.objects.create(**row) for row in rows]
            return list(model.objects.filter(pk__in=[obj.pk for obj in created]).values())
        except (DatabaseError, FieldError, TypeError) as exc:
            logger.error("Insert failed on %s", table)
            raise BackendError(str(exc), code="write_failed") from exc

    def update_rows(self, table, patch, filters):
        model = self._model(table)
        patch = dict(patch)
        if "updated_at" in {f.name for f in model._meta.get_fields()}:
            patch.setdefault("updated_at", timezone.now())
        qs = self._queryset(table, filters)
        try:
            with transaction.atomic():
                pks = list(qs.select_for_update().values_list("pk", flat=True))
                if pks:
                    # Re-apply the filters so the condition and the write stay one statement
                    qs.filter(pk__in=pks).update(**patch)
            return list(model.objects.filter(pk__in=pks).values())
        except (DatabaseError, FieldError) as exc:
            logger.error("Update failed on %s", table, extra={"filters": filters})
            raise BackendError(str(exc), code="write_failed") from exc

    def delete_rows(self, table, filters):
        if not filters:
            raise BackendError("Eliminar sin filtros no está permitido", code="bad_filter")
        qs = self._queryset(table, filters)
        try:
            with transaction.atomic():
                deleted, _ = qs.delete()
            return deleted
        except DatabaseError as exc:
            logger.error("Delete failed on %s", table, extra={"filters": filters})
            raise BackendError(str(exc), code="write_failed") from exc

    # ---- storage ----------------------------------------------------------------

    def upload_blob(self, bucket, filename, content):
        try:
            saved = self.storage.save(f"{bucket}/{filename}", content)
        except OSError as exc:
            raise BackendError(str(exc), code="storage_failed") from exc
        return saved.rsplit("/", 1)[-1]

    def remove_blobs(self, bucket, filenames):
        failed = []
        for name in filenames:
            try:
                self.storage.delete(f"{bucket}/{name}")
            except OSError:
                failed.append(name)
        if failed:
            raise BackendError(
                f"No se pudieron eliminar {len(failed)} archivo(s) de {bucket}",
                code="storage_failed",
            )

    def get_public_url(self, bucket, filename):
        return self.storage.url(f"{bucket}/{filename}")

    # ---- auth / procedures -------------------------------------------------------

    def current_user(self):
        user = self.user
        if user is None or not getattr(user, "is_authenticated", False):
            return None
        return {"id": user.pk, "email": user.email or ""}

    def call_remote_procedure(self, name, args=None):
        handler = getattr(self, f"_rpc_{name}", None)
        if handler is None:
            raise BackendError(f"Procedimiento desconocido: {name}", code="unknown_procedure")
        try:
            return handler(**(args or {}))
        except DatabaseError as exc:
            raise BackendError(str(exc), code="rpc_failed") from exc

    def _rpc_get_user_emails(self, user_ids: Sequence[Any]) -> List[Row]:
        User = apps.get_model("auth", "User")
        return [
            {"user_id": row["id"], "email": row["email"]}
            for row in User.objects.filter(pk__in=list(user_ids)).values("id", "email")
        ]

    def _rpc_get_user_organizations(self, user_id: Any) -> List[Row]:
        Member = apps.get_model(TABLES["organization_users"])
        qs = Member.objects.filter(user_id=user_id).select_related("organization").order_by("organization_id")
        return [
            {
                "organization_id": m.organization_id,
                "organization_name": m.organization.name,
                "organization_slug": m.organization.slug,
                "user_role": m.role,
                "joined_at": m.created_at,
            }
            for m in qs
        ]

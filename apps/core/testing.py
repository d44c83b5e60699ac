"""In-memory DataAccess used by unit tests."""
from __future__ import annotations

import copy
import operator as _op
from collections import defaultdict
from typing import Any, Dict, List, Optional
from uuid import uuid4

from django.utils import timezone

from .backend import DataAccess, Row
from .exceptions import BackendError, RowNotFoundError

LOOKUPS = {
    "in": lambda value, arg: value in list(arg),
    "isnull": lambda value, arg: (value is None) == bool(arg),
    "gt": _op.gt,
    "gte": _op.ge,
    "lt": _op.lt,
    "lte": _op.le,
}


def _matches(row: Row, filters: Optional[Row]) -> bool:
    for key, arg in (filters or {}).items():
        field, _, lookup = key.partition("__")
        value = row.get(field)
        if not lookup:
            if value != arg:
                return False
        elif not LOOKUPS[lookup](value, arg):
            return False
    return True


def _sort_key(field: str):
    def key(row: Row):
        value = row.get(field)
        return (value is None, value if value is not None else "")
    return key


class InMemoryDataAccess(DataAccess):
    """
    Dict-backed stand-in for the ORM collaborator.

    `calls` records every operation as (method, table, filters) so tests can
    assert on round trips and ordering. Set `fail_on[(method, table)]` to make
    an operation raise BackendError.
    """

    def __init__(self, tables: Optional[Dict[str, List[Row]]] = None, user: Optional[Row] = None):
        self.tables: Dict[str, List[Row]] = defaultdict(list)
        for name, rows in (tables or {}).items():
            self.tables[name] = [dict(r) for r in rows]
        self.user = user
        self.blobs: Dict[str, set] = defaultdict(set)
        self.procedures: Dict[str, Any] = {}
        self.fail_on: Dict[tuple, str] = {}
        self.calls: List[tuple] = []

    def _record(self, method: str, table: str, filters: Any = None) -> None:
        self.calls.append((method, table, filters))
        message = self.fail_on.get((method, table))
        if message:
            raise BackendError(message, code="injected")

    def calls_for(self, method: str, table: Optional[str] = None) -> List[tuple]:
        return [c for c in self.calls if c[0] == method and (table is None or c[1] == table)]

    def read_rows(self, table, filters=None, order=None, *, single=False):
        self._record("read_rows", table, filters)
        rows = [copy.deepcopy(r) for r in self.tables[table] if _matches(r, filters)]
        for field in reversed(list(order or [])):
            desc = field.startswith("-")
            rows.sort(key=_sort_key(field.lstrip("-")), reverse=desc)
        if not single:
            return rows
        if not rows:
            raise RowNotFoundError(f"Sin resultados en {table}")
        if len(rows) > 1:
            raise BackendError(f"Más de un resultado en {table}", code="multiple_rows")
        return rows[0]

    def insert_rows(self, table, rows):
        self._record("insert_rows", table)
        inserted = [dict(r) for r in rows]
        for row in inserted:
            row.setdefault("id", uuid4().hex)
            row.setdefault("created_at", timezone.now().isoformat())
        self.tables[table].extend(inserted)
        return copy.deepcopy(inserted)

    def update_rows(self, table, patch, filters):
        self._record("update_rows", table, filters)
        updated = []
        for row in self.tables[table]:
            if _matches(row, filters):
                row.update(patch)
                updated.append(copy.deepcopy(row))
        return updated

    def delete_rows(self, table, filters):
        self._record("delete_rows", table, filters)
        keep = [r for r in self.tables[table] if not _matches(r, filters)]
        deleted = len(self.tables[table]) - len(keep)
        self.tables[table] = keep
        return deleted

    def upload_blob(self, bucket, filename, content):
        self._record("upload_blob", bucket)
        self.blobs[bucket].add(filename)
        return filename

    def remove_blobs(self, bucket, filenames):
        self._record("remove_blobs", bucket, list(filenames))
        for name in filenames:
            self.blobs[bucket].discard(name)

    def get_public_url(self, bucket, filename):
        return f"https://storage.test/{bucket}/{filename}"

    def current_user(self):
        return dict(self.user) if self.user else None

    def call_remote_procedure(self, name, args=None):
        self._record("call_remote_procedure", name, args)
        if name not in self.procedures:
            raise BackendError(f"Procedimiento desconocido: {name}", code="unknown_procedure")
        return self.procedures[name](**(args or {}))

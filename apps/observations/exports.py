"""
CSV exports of sessions and their answers.

Column order always follows the project's questions (sort_order, then
creation time), so every row has the same shape; a session without an answer
for a question gets an empty cell. Dates are rendered at a fixed UTC-5 offset
(America/Lima, no DST) whatever the server or viewer timezone. Exports are
built fully in memory and either complete or raise; no partial file is
produced.
"""
from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone as dt_timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from django.http import HttpResponse
from django.utils import timezone
from django.utils.http import content_disposition_header

from apps.core.backend import DataAccess, Row
from apps.core.exceptions import BackendError, EmptyInputError
from apps.core.utility import coerce_datetime
from .formatting import format_duration, format_response

logger = logging.getLogger(__name__)

LIMA_TZ = dt_timezone(timedelta(hours=-5), "America/Lima")
CSV_CONTENT_TYPE = "text/csv;charset=utf-8"

SESSION_COLUMNS = ["ID de Sesión", "Fecha", "Agencia"]
DETAIL_COLUMNS = ["ID de Sesión", "Alias de Sesión", "Usuario", "Fecha de Inicio", "Fecha de Fin", "Duración"]

NOTHING_TO_EXPORT = "No hay sesiones para exportar"
NO_DETAILS_TO_EXPORT = "No hay datos de sesión o respuestas disponibles para exportar"
ACTIVE_SESSION = "Sesión activa"

_EPOCH = datetime(1970, 1, 1, tzinfo=dt_timezone.utc)


@dataclass(frozen=True)
class CsvExport:
    filename: str
    content: str

    def as_response(self) -> HttpResponse:
        response = HttpResponse(self.content, content_type=CSV_CONTENT_TYPE)
        response["Content-Disposition"] = content_disposition_header(True, self.filename)
        return response


def encode_csv(rows: Iterable[Sequence[Any]]) -> str:
    """Every field quoted, inner quotes doubled, rows joined by a bare newline."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerows([["" if field is None else str(field) for field in row] for row in rows])
    return buf.getvalue()[:-1]


def local_date(value: Any) -> str:
    dt = coerce_datetime(value)
    return dt.astimezone(LIMA_TZ).strftime("%d/%m/%Y") if dt else ""


def local_datetime(value: Any) -> str:
    dt = coerce_datetime(value)
    return dt.astimezone(LIMA_TZ).strftime("%d/%m/%Y %H:%M:%S") if dt else ""


def session_duration(session: Row) -> str:
    start, end = coerce_datetime(session.get("start_time")), coerce_datetime(session.get("end_time"))
    if end is None or start is None:
        return ACTIVE_SESSION
    return format_duration((end - start).total_seconds())


def _export_date(today: Optional[date]) -> str:
    return (today or timezone.now().date()).isoformat()


def _key(value: Any) -> str:
    return str(value)


def _observation_order(obs: Row):
    return (coerce_datetime(obs.get("created_at")) or _EPOCH, _key(obs.get("id")))


def build_response_lookup(
    observations: Iterable[Row], question_types: Dict[str, Optional[str]]
) -> Dict[str, Dict[str, str]]:
    """
    session id -> question id -> formatted cell.

    Observations are applied oldest first so the latest created_at wins for a
    repeated (session, question) pair. Answers to questions outside
    `question_types` are dropped.
    """
    lookup: Dict[str, Dict[str, str]] = {}
    for obs in sorted(observations, key=_observation_order):
        question_id = _key(obs.get("question_id"))
        if question_id not in question_types:
            continue
        lookup.setdefault(_key(obs.get("session_id")), {})[question_id] = format_response(
            obs.get("response"), question_types[question_id]
        )
    return lookup


def build_rows(sessions: Sequence[Row], questions: Sequence[Row], lookup: Dict[str, Dict[str, str]]) -> List[List[str]]:
    question_ids = [_key(q["id"]) for q in questions]
    rows = [SESSION_COLUMNS + [q.get("name") or "" for q in questions]]
    for session in sessions:
        answers = lookup.get(_key(session["id"]), {})
        rows.append(
            [_key(session["id"]), local_date(session.get("start_time")), session.get("agency") or ""]
            + [answers.get(qid, "") for qid in question_ids]
        )
    return rows


def _question_types(questions: Sequence[Row]) -> Dict[str, Optional[str]]:
    return {_key(q["id"]): q.get("question_type") for q in questions}


def load_export_rows(backend: DataAccess, project_id, session_ids: Sequence[Any]) -> Tuple[List[Row], List[Row]]:
    """
    Question definitions of the project in column order (sort_order, then
    creation time) and the observations of `session_ids` in one read. Read
    failures are re-raised with a localized prefix.
    """
    try:
        questions = backend.read_rows(
            "project_observation_options", {"project_id": project_id}, ["sort_order", "created_at"]
        )
    except BackendError as exc:
        raise exc.wrap("Error al cargar las opciones del proyecto") from exc

    try:
        observations = backend.read_rows(
            "observations", {"session_id__in": list(session_ids)}, ["created_at", "id"]
        )
    except BackendError as exc:
        raise exc.wrap("Error al cargar las observaciones") from exc
    return questions, observations


def export_session(
    session: Row,
    observations: Sequence[Row],
    question_definitions: Sequence[Row],
    today: Optional[date] = None,
) -> CsvExport:
    """One-row export from data the caller already holds; no reads."""
    lookup = build_response_lookup(observations, _question_types(question_definitions))
    content = encode_csv(build_rows([session], question_definitions, lookup))
    filename = f"sesion-{_key(session['id'])[:8]}-{_export_date(today)}.csv"
    return CsvExport(filename=filename, content=content)


def export_all_sessions(
    sessions: Sequence[Row],
    project_id,
    *,
    backend: DataAccess,
    project_name: Optional[str] = None,
    today: Optional[date] = None,
) -> CsvExport:
    """
    One row per session. Reads the project's questions once and the
    observations of every session in a single batched read.
    """
    if not sessions:
        raise EmptyInputError(NOTHING_TO_EXPORT)

    questions, observations = load_export_rows(backend, project_id, [s["id"] for s in sessions])
    lookup = build_response_lookup(observations, _question_types(questions))
    content = encode_csv(build_rows(sessions, questions, lookup))
    logger.info(
        "Sessions export generated",
        extra={"project_id": str(project_id), "sessions": len(sessions), "columns": len(questions)},
    )
    filename = f"sesiones-{project_name or project_id}-{_export_date(today)}.csv"
    return CsvExport(filename=filename, content=content)


def export_session_details(
    session: Row,
    observations: Sequence[Row],
    creator: str,
    today: Optional[date] = None,
) -> CsvExport:
    """
    Detail export of one session: one column per answered question, in the
    order the answers were given. `observations` carry question_name and
    question_type next to the response; `creator` is the creator's email or
    its fallback label.
    """
    if not observations:
        raise EmptyInputError(NO_DETAILS_TO_EXPORT)

    header = DETAIL_COLUMNS + [obs.get("question_name") or "Unknown" for obs in observations]
    end_time = session.get("end_time")
    row = [
        _key(session["id"]),
        session.get("alias") or "Sin alias",
        (creator or "").split("@")[0],
        local_datetime(session.get("start_time")),
        local_datetime(end_time) if end_time else ACTIVE_SESSION,
        session_duration(session),
    ] + [format_response(obs.get("response"), obs.get("question_type")) for obs in observations]

    filename = f"sesion-{session.get('alias') or _key(session['id'])}-{_export_date(today)}.csv"
    return CsvExport(filename=filename, content=encode_csv([header, row]))

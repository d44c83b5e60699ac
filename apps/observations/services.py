from __future__ import annotations

import logging
import os
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional
from uuid import uuid4

from django.conf import settings

from apps.core.backend import DataAccess, Row
from apps.core.enums import QuestionType
from apps.core.exceptions import BackendError, ConflictError, RowNotFoundError, ValidationError
from .formatting import RADIX_PREFIXES, audio_filename, audio_marker, is_numeric_string, lenient_json, to_text

logger = logging.getLogger(__name__)

SESSION_FINISHED = "Esta sesión ya está finalizada"
FOREIGN_QUESTION = "La pregunta no pertenece a este proyecto"


# ---- Storage coercion ----------------------------------------------------------

def _is_present(val: Any) -> bool:
    return not (val in (None, "") or (isinstance(val, list) and len(val) == 0))


def _coerce_number(raw: Any, question: Row):
    if isinstance(raw, bool):
        raise ValidationError(f"{question['name']}: se esperaba un número")
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw or not is_numeric_string(raw):
            raise ValidationError(f"{question['name']}: se esperaba un número")
        if raw[:2].lower() in RADIX_PREFIXES:
            raw = int(raw, 0)
    try:
        num = Decimal(str(raw))
    except InvalidOperation:
        raise ValidationError(f"{question['name']}: se esperaba un número")
    if not num.is_finite():
        raise ValidationError(f"{question['name']}: se esperaba un número")
    return int(num) if num == num.to_integral_value() else float(num)


def _coerce_cycle(item: Any, question: Row) -> dict:
    if not isinstance(item, dict):
        raise ValidationError(f"{question['name']}: cada ciclo debe ser un objeto")
    seconds = item.get("seconds")
    if seconds is not None:
        seconds = _coerce_number(seconds, question)
        if seconds < 0:
            raise ValidationError(f"{question['name']}: la duración no puede ser negativa")
    alias = item.get("alias")
    return {"alias": to_text(alias) if alias else None, "seconds": seconds}


def coerce_for_storage(raw: Any, question: Row) -> Any:
    """
    Normalize an incoming answer for `question` into the shape it is stored in.

    String-encoded (or double-encoded) JSON is decoded here once, so stored
    checkbox answers are lists of labels and timer answers are lists of
    {"alias", "seconds"} cycles. Raises ValidationError for answers the
    question cannot hold.
    """
    if not _is_present(raw):
        return None

    t = question.get("question_type")
    options = [str(o) for o in (question.get("options") or [])]

    if t == QuestionType.BOOLEAN.value:
        if raw in (True, "true"):
            return True
        if raw in (False, "false"):
            return False
        raise ValidationError(f"{question['name']}: se esperaba Sí o No")

    if t == QuestionType.RADIO.value:
        if not isinstance(raw, str) or raw not in options:
            raise ValidationError(f"Opción inválida '{raw}' para {question['name']}")
        return raw

    if t == QuestionType.CHECKBOX.value:
        data = lenient_json(raw)
        if not isinstance(data, list):
            raise ValidationError(f"{question['name']}: se esperaba una lista de opciones")
        values = [to_text(v) for v in data if _is_present(v)]
        invalid = [v for v in values if v not in options]
        if invalid:
            raise ValidationError(f"Opciones inválidas {invalid} para {question['name']}")
        return values

    if t in (QuestionType.NUMBER.value, QuestionType.COUNTER.value):
        return _coerce_number(raw, question)

    if t == QuestionType.TIMER.value:
        data = lenient_json(raw)
        if not isinstance(data, list):
            raise ValidationError(f"{question['name']}: se esperaba una lista de ciclos")
        return [_coerce_cycle(item, question) for item in data]

    if t == QuestionType.DATE.value:
        try:
            return date.fromisoformat(str(raw)).isoformat()
        except ValueError:
            raise ValidationError(f"{question['name']}: fecha inválida (AAAA-MM-DD)")

    if t == QuestionType.VOICE.value:
        if not isinstance(raw, str):
            raise ValidationError(f"{question['name']}: respuesta de audio inválida")
        return raw

    # string / text / textarea / time / email / url
    return to_text(raw)


# ---- Recording answers ---------------------------------------------------------

def _question_for_project(backend: DataAccess, project_id, question_id) -> Row:
    try:
        return backend.read_rows(
            "project_observation_options", {"id": question_id, "project_id": project_id}, single=True
        )
    except RowNotFoundError:
        raise ValidationError(FOREIGN_QUESTION)


def _latest_answer(backend: DataAccess, session_id, question_id) -> Optional[Row]:
    rows = backend.read_rows(
        "observations", {"session_id": session_id, "question_id": question_id}, ["-created_at", "-id"]
    )
    return rows[0] if rows else None


def record_observation(
    backend: DataAccess,
    *,
    project_id,
    session: Row,
    question_id,
    response: Any,
    user_id,
    alias: Optional[str] = None,
) -> Row:
    """
    Store the answer of `question_id` in `session`, replacing the latest
    existing answer for that pair. Finished sessions accept no answers.
    """
    if session.get("end_time"):
        raise ConflictError(SESSION_FINISHED)

    question = _question_for_project(backend, project_id, question_id)
    value = coerce_for_storage(response, question)

    existing = _latest_answer(backend, session["id"], question["id"])
    if existing:
        patch = {"response": value}
        if alias is not None:
            patch["alias"] = alias
        row = backend.update_rows("observations", patch, {"id": existing["id"]})[0]
    else:
        row = _insert_answer(backend, session, question, value, user_id, alias)
    row["question_name"] = question["name"]
    row["question_type"] = question["question_type"]
    return row


def _insert_answer(backend: DataAccess, session: Row, question: Row, value: Any, user_id, alias) -> Row:
    return backend.insert_rows(
        "observations",
        [{
            "session_id": session["id"],
            "question_id": question["id"],
            "user_id": user_id,
            "response": value,
            "alias": alias,
        }],
    )[0]


def voice_filenames(observations: Iterable[Row]) -> List[str]:
    """Storage filenames referenced by the audio markers of `observations`."""
    names = []
    for obs in observations:
        name = audio_filename(obs.get("response"))
        if name:
            names.append(name)
    return names


def remove_voice_recordings(backend: DataAccess, filenames: List[str]) -> None:
    """Delete recordings from the voice bucket; failures are logged and not raised."""
    if not filenames:
        return
    try:
        backend.remove_blobs(settings.OBSERVA_VOICE_BUCKET, filenames)
    except BackendError as exc:
        logger.warning(
            "Could not delete voice recordings: %s", exc.message, extra={"count": len(filenames)}
        )


def store_voice_recording(
    backend: DataAccess,
    *,
    project_id,
    session: Row,
    question_id,
    upload,
    user_id,
) -> Row:
    """
    Save an uploaded recording to the voice bucket and record the answer as
    an "[Audio: <url>]" marker. A recording it replaces is deleted.
    """
    if session.get("end_time"):
        raise ConflictError(SESSION_FINISHED)
    question = _question_for_project(backend, project_id, question_id)
    if question.get("question_type") != QuestionType.VOICE.value:
        raise ValidationError(f"{question['name']}: la pregunta no es de audio")

    bucket = settings.OBSERVA_VOICE_BUCKET
    _, ext = os.path.splitext(getattr(upload, "name", "") or "")
    saved = backend.upload_blob(bucket, f"{session['id']}_{uuid4().hex}{ext or '.webm'}", upload)
    url = backend.get_public_url(bucket, saved)

    previous = _latest_answer(backend, session["id"], question["id"])
    row = record_observation(
        backend,
        project_id=project_id,
        session=session,
        question_id=question["id"],
        response=audio_marker(url),
        user_id=user_id,
    )
    if previous:
        remove_voice_recordings(backend, voice_filenames([previous]))
    logger.info("Voice recording stored", extra={"session_id": str(session["id"]), "file": saved})
    return row


def load_session_observations(backend: DataAccess, project_id, session_id) -> List[Row]:
    """
    Answers of one session, oldest first, each carrying the name and type of
    its question ("Unknown"/"unknown" when the question no longer exists).
    """
    questions = {
        str(q["id"]): q
        for q in backend.read_rows("project_observation_options", {"project_id": project_id})
    }
    rows = backend.read_rows("observations", {"session_id": session_id}, ["created_at", "id"])
    for row in rows:
        question = questions.get(str(row.get("question_id")))
        row["question_name"] = question["name"] if question else "Unknown"
        row["question_type"] = question["question_type"] if question else "unknown"
    return rows

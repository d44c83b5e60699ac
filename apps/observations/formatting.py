"""
Answer decoding and rendering.

Stored answers are loosely typed JSON whose shape depends on the question
type. `decode_answer` turns a stored value into one of the answer variants
below, tolerating malformed or string-encoded payloads; the renderers then
match on the variant. Nothing in this module raises on bad input: a value
that cannot be understood degrades to an empty cell (CSV) or a placeholder
(display).
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

from apps.core.enums import QuestionType

AUDIO_MARKER_RE = re.compile(r"\[Audio: (.*?)\]")
AUDIO_LABEL = "Audio grabado"
NO_DURATION = "Sin duración"

# Nested JSON strings are unwrapped at most this many times
MAX_DECODE_DEPTH = 3

RADIX_PREFIXES = ("0x", "0o", "0b")

_TEXT_TYPES = {QuestionType.STRING.value, QuestionType.TEXT.value, QuestionType.TEXTAREA.value}
_NUMBER_TYPES = {QuestionType.NUMBER.value, QuestionType.COUNTER.value}


# ---- answer variants --------------------------------------------------------------

@dataclass(frozen=True)
class EmptyAnswer:
    pass


@dataclass(frozen=True)
class TextAnswer:
    text: str


@dataclass(frozen=True)
class BooleanAnswer:
    value: Optional[bool]
    fallback: str = ""  # shown when value is None


@dataclass(frozen=True)
class ChoiceAnswer:
    label: Optional[str]


@dataclass(frozen=True)
class MultiChoiceAnswer:
    labels: Optional[Tuple[str, ...]]  # None when the payload was not a list


@dataclass(frozen=True)
class NumberAnswer:
    text: Optional[str]


@dataclass(frozen=True)
class TimerCycle:
    alias: Optional[str]
    seconds: Optional[float]


@dataclass(frozen=True)
class TimerAnswer:
    cycles: Optional[Tuple[TimerCycle, ...]]


@dataclass(frozen=True)
class VoiceAnswer:
    url: Optional[str]


@dataclass(frozen=True)
class RawAnswer:
    value: Any


Answer = Union[
    EmptyAnswer, TextAnswer, BooleanAnswer, ChoiceAnswer, MultiChoiceAnswer,
    NumberAnswer, TimerAnswer, VoiceAnswer, RawAnswer,
]


# ---- decoding ---------------------------------------------------------------------

def lenient_json(value: Any) -> Any:
    """Parse JSON strings, unwrapping double encoding; unparseable text is returned as-is."""
    for _ in range(MAX_DECODE_DEPTH):
        if not isinstance(value, str):
            break
        try:
            value = json.loads(value)
        except (ValueError, RecursionError):
            break
    return value


def to_text(value: Any) -> str:
    """String form of a JSON value, the way a browser would print it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float, str)):
        return str(value)
    if isinstance(value, list):
        return ",".join(to_text(v) for v in value)
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_numeric_string(value: str) -> Optional[float]:
    """
    The number a string stands for under browser `Number()` rules: blank is
    0, "0x"/"0o"/"0b" prefixes are read in their radix, only "Infinity" spells
    infinity. None when the string is not numeric.
    """
    stripped = value.strip()
    if stripped == "":
        return 0.0
    if "_" in stripped:
        return None
    try:
        if stripped[:2].lower() in RADIX_PREFIXES:
            return float(int(stripped, 0))
        number = float(stripped)
    except OverflowError:
        return math.inf
    except ValueError:
        return None
    if math.isnan(number):
        return None
    if math.isinf(number) and stripped.lstrip("+-") != "Infinity":
        return None
    return number


def is_numeric_string(value: str) -> bool:
    return parse_numeric_string(value) is not None


def _seconds(value: Any) -> Optional[float]:
    """Finite duration in seconds, or None."""
    if _is_number(value):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str) and value.strip():
        number = parse_numeric_string(value)
    else:
        return None
    if number is None or not math.isfinite(number):
        return None
    return number


def _timer_cycle(item: Any) -> TimerCycle:
    if not isinstance(item, dict):
        return TimerCycle(alias=None, seconds=None)
    alias = item.get("alias")
    return TimerCycle(
        alias=to_text(alias) if alias else None,
        seconds=_seconds(item.get("seconds")),
    )


def decode_answer(response: Any, question_type: Optional[str]) -> Answer:
    """Map a stored response to its answer variant. Never raises."""
    if response is None:
        return EmptyAnswer()

    qtype = str(question_type or "")

    if qtype in _TEXT_TYPES:
        return TextAnswer(to_text(response))

    if qtype == QuestionType.BOOLEAN.value:
        if response is True or response == "true":
            return BooleanAnswer(True)
        if response is False or response == "false":
            return BooleanAnswer(False)
        # Free text stored against a boolean question is shown unchanged
        return BooleanAnswer(None, fallback=response if isinstance(response, str) else "")

    if qtype == QuestionType.RADIO.value:
        return ChoiceAnswer(response if isinstance(response, str) else None)

    if qtype == QuestionType.CHECKBOX.value:
        data = lenient_json(response)
        if not isinstance(data, list):
            return MultiChoiceAnswer(None)
        return MultiChoiceAnswer(tuple(to_text(v) for v in data if v is not None and to_text(v) != ""))

    if qtype in _NUMBER_TYPES:
        if _is_number(response):
            return NumberAnswer(to_text(response))
        if isinstance(response, str) and is_numeric_string(response):
            return NumberAnswer(response)
        return NumberAnswer(None)

    if qtype == QuestionType.TIMER.value:
        data = lenient_json(response)
        if not isinstance(data, list):
            return TimerAnswer(None)
        return TimerAnswer(tuple(_timer_cycle(item) for item in data))

    if qtype == QuestionType.VOICE.value:
        if isinstance(response, str):
            match = AUDIO_MARKER_RE.search(response)
            if match:
                return VoiceAnswer(match.group(1))
        return VoiceAnswer(None)

    return RawAnswer(response)


# ---- helpers shared by renderers ---------------------------------------------------

def format_duration(seconds: float) -> str:
    """H:MM:SS from one hour up, M:SS below; fractions are truncated."""
    total = max(0, int(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def cycle_label(cycle: TimerCycle, index: int) -> str:
    return cycle.alias or f"Ciclo {index + 1}"


def cycle_duration(cycle: TimerCycle) -> str:
    return format_duration(cycle.seconds) if cycle.seconds is not None else NO_DURATION


def audio_marker(url: str) -> str:
    return f"[Audio: {url}]"


def audio_filename(response: Any) -> Optional[str]:
    """Last path segment of the recording URL embedded in a voice answer."""
    if not isinstance(response, str):
        return None
    match = AUDIO_MARKER_RE.search(response)
    if not match:
        return None
    return match.group(1).rstrip("/").split("/")[-1] or None


def _raw_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


# ---- CSV rendering ----------------------------------------------------------------

def render_csv(answer: Answer) -> str:
    if isinstance(answer, EmptyAnswer):
        return ""
    if isinstance(answer, TextAnswer):
        return answer.text
    if isinstance(answer, BooleanAnswer):
        if answer.value is None:
            return answer.fallback
        return "Sí" if answer.value else "No"
    if isinstance(answer, ChoiceAnswer):
        return answer.label or ""
    if isinstance(answer, MultiChoiceAnswer):
        return ", ".join(answer.labels or ())
    if isinstance(answer, NumberAnswer):
        return answer.text or ""
    if isinstance(answer, TimerAnswer):
        return " | ".join(
            f"{cycle_label(c, i)}: {cycle_duration(c)}" for i, c in enumerate(answer.cycles or ())
        )
    if isinstance(answer, VoiceAnswer):
        return AUDIO_LABEL if answer.url is not None else ""
    if isinstance(answer, RawAnswer):
        return _raw_text(answer.value)
    raise TypeError(f"Unhandled answer variant: {type(answer).__name__}")


def format_response(response: Any, question_type: Optional[str]) -> str:
    """Flat cell text for a stored response; empty string when there is nothing to show."""
    return render_csv(decode_answer(response, question_type))


# ---- display rendering ------------------------------------------------------------

def _text(value: str) -> dict:
    return {"kind": "text", "text": value}


def render_display(answer: Answer) -> dict:
    if isinstance(answer, EmptyAnswer):
        return _text("Sin respuesta")
    if isinstance(answer, TextAnswer):
        return _text(answer.text)
    if isinstance(answer, BooleanAnswer):
        if answer.value is None:
            return _text(answer.fallback or "Sin respuesta")
        return _text("Sí" if answer.value else "No")
    if isinstance(answer, ChoiceAnswer):
        return _text(answer.label or "Sin respuesta")
    if isinstance(answer, MultiChoiceAnswer):
        return _text(", ".join(answer.labels) if answer.labels else "Sin respuesta")
    if isinstance(answer, NumberAnswer):
        return _text(answer.text if answer.text else "Sin valor")
    if isinstance(answer, TimerAnswer):
        if answer.cycles is None:
            return _text("Sin ciclos")
        return {
            "kind": "timer",
            "cycles": [
                {"label": cycle_label(c, i), "duration": cycle_duration(c)}
                for i, c in enumerate(answer.cycles)
            ],
        }
    if isinstance(answer, VoiceAnswer):
        if answer.url is None:
            return _text("Sin audio grabado")
        return {"kind": "audio", "url": answer.url, "label": AUDIO_LABEL}
    if isinstance(answer, RawAnswer):
        return _text(_raw_text(answer.value))
    raise TypeError(f"Unhandled answer variant: {type(answer).__name__}")


def format_for_display(response: Any, question_type: Optional[str]) -> dict:
    """JSON-ready rendering for the session detail screen; same parsing as format_response."""
    return render_display(decode_answer(response, question_type))

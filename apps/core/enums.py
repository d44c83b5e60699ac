from enum import Enum


class AccessRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    EDITOR = "editor"
    MEMBER = "member"
    VIEWER = "viewer"

    def __str__(self) -> str:
        return self.value

    @property
    def label(self) -> str:
        return ROLE_LABELS[self]


ROLE_LABELS = {
    AccessRole.OWNER: "Creador",
    AccessRole.ADMIN: "Administrador",
    AccessRole.EDITOR: "Editor",
    AccessRole.MEMBER: "Miembro",
    AccessRole.VIEWER: "Observador",
}


class QuestionType(str, Enum):
    STRING = "string"
    TEXT = "text"
    TEXTAREA = "textarea"
    BOOLEAN = "boolean"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    NUMBER = "number"
    COUNTER = "counter"
    TIMER = "timer"
    VOICE = "voice"
    DATE = "date"
    TIME = "time"
    EMAIL = "email"
    URL = "url"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def choices(cls):
        return [(t.value, t.value.capitalize()) for t in cls]


# Types whose definition carries an ordered option list
CHOICE_TYPES = frozenset({QuestionType.RADIO.value, QuestionType.CHECKBOX.value})

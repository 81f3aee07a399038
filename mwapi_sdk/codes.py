from __future__ import annotations

from enum import Enum

TOKEN_ERROR_CODES = frozenset({"badtoken", "notoken", "needtoken", "wrongtoken"})
ASSERTION_ERROR_CODES = frozenset({"assertuserfailed", "assertnameduserfailed"})


class ErrorKind(Enum):
    NONE = "none"
    TOKEN = "token"
    ASSERTION = "assertion"
    API = "api"


def classify_error_code(code: str | None) -> ErrorKind:
    if not code:
        return ErrorKind.NONE
    lowered = code.lower()
    if lowered in TOKEN_ERROR_CODES:
        return ErrorKind.TOKEN
    if lowered in ASSERTION_ERROR_CODES:
        return ErrorKind.ASSERTION
    return ErrorKind.API

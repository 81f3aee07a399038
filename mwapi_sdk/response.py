from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import httpx

from .codes import ErrorKind, classify_error_code
from .exceptions import ApiError


@dataclass(frozen=True)
class ApiErrorDetail:
    code: str
    info: str = ""
    text: str = ""
    module: str = ""

    @property
    def message(self) -> str:
        return self.info or self.text


@dataclass
class Envelope:
    error: ApiErrorDetail | None = None
    errors: list[ApiErrorDetail] = field(default_factory=list)
    warnings: dict[str, Any] = field(default_factory=dict)
    continuation: dict[str, str] = field(default_factory=dict)


@dataclass
class Response:
    """One API response: the raw body plus the envelope fields we understand."""

    status_code: int
    headers: httpx.Headers
    raw: bytes
    data: Any = None
    envelope: Envelope = field(default_factory=Envelope)

    @property
    def error(self) -> ApiErrorDetail | None:
        return self.envelope.error

    @property
    def errors(self) -> list[ApiErrorDetail]:
        return self.envelope.errors

    @property
    def warnings(self) -> dict[str, Any]:
        return self.envelope.warnings

    @property
    def continuation(self) -> dict[str, str]:
        return self.envelope.continuation

    @property
    def text(self) -> str:
        return self.raw.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the raw body, raising ``ValueError`` when it is not JSON."""
        return json.loads(self.raw)

    def first_error_code(self) -> str:
        if self.envelope.error is not None:
            return self.envelope.error.code
        if self.envelope.errors:
            return self.envelope.errors[0].code
        return ""

    def error_kind(self) -> ErrorKind:
        return classify_error_code(self.first_error_code())

    def api_error(self) -> ApiError | None:
        error = self.envelope.error
        errors = self.envelope.errors
        if error is None and not errors:
            return None
        details: list[ApiErrorDetail] = []
        code = ""
        message = ""
        if error is not None:
            code = error.code
            message = error.message
            details.append(error)
        if errors:
            code = code or errors[0].code
            message = message or errors[0].message
            details.extend(errors)
        return ApiError(
            code,
            message or "MediaWiki API error",
            status_code=self.status_code,
            errors=details,
            response=self,
        )


def parse_response(status_code: int, headers: httpx.Headers, raw: bytes) -> Response:
    response = Response(status_code=status_code, headers=headers, raw=raw)
    try:
        data = json.loads(raw)
    except ValueError:
        return response
    response.data = data
    if isinstance(data, dict):
        response.envelope = _parse_envelope(data)
    return response


def _parse_envelope(body: dict[str, Any]) -> Envelope:
    envelope = Envelope()
    envelope.error = _parse_error(body.get("error"))
    raw_errors = body.get("errors")
    if isinstance(raw_errors, list):
        envelope.errors = [detail for detail in map(_parse_error, raw_errors) if detail is not None]
    envelope.warnings = _parse_warnings(body.get("warnings"))
    raw_continue = body.get("continue")
    if isinstance(raw_continue, dict):
        envelope.continuation = {str(key): _continuation_value(value) for key, value in raw_continue.items()}
    return envelope


def _parse_error(value: Any) -> ApiErrorDetail | None:
    if not isinstance(value, dict):
        return None
    code = value.get("code")
    if not isinstance(code, str):
        return None
    return ApiErrorDetail(
        code=code,
        info=_str_field(value, "info"),
        text=_str_field(value, "text") or _str_field(value, "*"),
        module=_str_field(value, "module"),
    )


def _parse_warnings(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if not isinstance(value, list):
        return {}
    # errorformat=plaintext reports warnings as a list of {code, text, module}.
    grouped: dict[str, list[str]] = {}
    for item in value:
        if not isinstance(item, dict):
            continue
        module = _str_field(item, "module") or "main"
        grouped.setdefault(module, []).append(_str_field(item, "text") or _str_field(item, "code"))
    return grouped


def _str_field(value: dict[str, Any], key: str) -> str:
    item = value.get(key)
    return item if isinstance(item, str) else ""


def _continuation_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "1" if value else ""
    return json.dumps(value) if isinstance(value, (dict, list)) else str(value)

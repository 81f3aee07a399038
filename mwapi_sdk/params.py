"""Parameter normalization for the MediaWiki Action API.

Callers may pass parameters as a plain mapping, as already-encoded
``(key, value)`` pairs (or ``httpx.QueryParams``), or as a dataclass
record. All shapes normalize to one canonical ``dict[str, str]`` of form
fields plus a list of file attachments.
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from decimal import Decimal
from enum import Enum
from typing import IO, Any

import httpx

from .exceptions import UnsupportedParameterKind

DEFAULT_PARAMS: tuple[tuple[str, str], ...] = (
    ("action", "query"),
    ("format", "json"),
    ("formatversion", "2"),
    ("errorformat", "plaintext"),
)

MULTI_VALUE_SEPARATOR = "|"


@dataclasses.dataclass
class Attachment:
    """A file part of a multipart request.

    ``source`` is read at most once; the bytes are kept so the same request
    can be sent again after a token refresh or a relogin.
    """

    filename: str
    source: bytes | IO[bytes]
    content_type: str | None = None
    _content: bytes | None = dataclasses.field(default=None, init=False, repr=False, compare=False)

    def read_bytes(self) -> bytes:
        if self._content is None:
            if isinstance(self.source, (bytes, bytearray, memoryview)):
                self._content = bytes(self.source)
            else:
                data = self.source.read()
                if isinstance(data, str):
                    data = data.encode("utf-8")
                self._content = bytes(data)
        return self._content


@dataclasses.dataclass
class NormalizedParams:
    fields: dict[str, str] = dataclasses.field(default_factory=dict)
    attachments: list[tuple[str, Attachment]] = dataclasses.field(default_factory=list)

    def get(self, key: str) -> str:
        return self.fields.get(key, "")

    def with_field(self, key: str, value: str) -> NormalizedParams:
        fields = dict(self.fields)
        fields[key] = value
        return NormalizedParams(fields=fields, attachments=list(self.attachments))


def normalize_params(params: Any) -> NormalizedParams:
    """Return the canonical field map and attachments for ``params``.

    Raises ``UnsupportedParameterKind`` for unrecognized shapes; nothing is
    returned for a partially encoded set.
    """
    normalized = NormalizedParams()

    if params is None:
        pass
    elif isinstance(params, httpx.QueryParams):
        _add_encoded_pairs(normalized, params.multi_items())
    elif isinstance(params, Mapping):
        for key, value in params.items():
            _add_value(normalized, _param_key(key), value)
    elif isinstance(params, (list, tuple)):
        _add_encoded_pairs(normalized, _as_pairs(params))
    elif dataclasses.is_dataclass(params) and not isinstance(params, type):
        for field in dataclasses.fields(params):
            name = field.metadata.get("param", field.name)
            _add_value(normalized, name, getattr(params, field.name))
    else:
        raise UnsupportedParameterKind(f"unsupported params type: {type(params).__name__}")

    for key, value in DEFAULT_PARAMS:
        normalized.fields.setdefault(key, value)
    return normalized


def format_number(value: int | float) -> str:
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return format(Decimal(repr(value)), "f")
    return str(value)


def _param_key(key: Any) -> str:
    if not isinstance(key, str):
        raise UnsupportedParameterKind(f"parameter names must be str, got {type(key).__name__}")
    return key


def _as_pairs(items: list[Any] | tuple[Any, ...]) -> list[tuple[str, Any]]:
    pairs: list[tuple[str, Any]] = []
    for item in items:
        if not isinstance(item, tuple) or len(item) != 2:
            raise UnsupportedParameterKind("parameter sequences must contain (key, value) pairs")
        pairs.append((_param_key(item[0]), item[1]))
    return pairs


def _add_encoded_pairs(normalized: NormalizedParams, pairs: list[tuple[str, Any]]) -> None:
    grouped: dict[str, list[str]] = {}
    for key, value in pairs:
        grouped.setdefault(key, []).append(str(value))
    for key, values in grouped.items():
        normalized.fields[key] = MULTI_VALUE_SEPARATOR.join(values)


def _add_value(normalized: NormalizedParams, key: str, value: Any) -> None:
    if value is None:
        return
    if isinstance(value, Enum):
        _add_value(normalized, key, value.value)
        return
    if isinstance(value, str):
        normalized.fields[key] = value
        return
    if isinstance(value, bool):
        if value:
            normalized.fields[key] = "1"
        return
    if isinstance(value, (int, float)):
        normalized.fields[key] = format_number(value)
        return
    if isinstance(value, Attachment):
        normalized.attachments.append((key, value))
        return
    if isinstance(value, (bytes, bytearray, memoryview)):
        normalized.attachments.append((key, Attachment(filename=key, source=bytes(value))))
        return
    if hasattr(value, "read"):
        normalized.attachments.append((key, Attachment(filename=_stream_name(value, key), source=value)))
        return
    if isinstance(value, (list, tuple)):
        parts = [_scalar_text(item) for item in value if item is not None]
        if parts:
            normalized.fields[key] = MULTI_VALUE_SEPARATOR.join(parts)
        return
    if isinstance(value, Mapping):
        raise UnsupportedParameterKind(f"nested mapping is not a valid value for parameter {key!r}")
    normalized.fields[key] = str(value)


def _scalar_text(item: Any) -> str:
    if isinstance(item, Enum):
        item = item.value
    if isinstance(item, bool):
        return "1" if item else "0"
    if isinstance(item, (int, float)):
        return format_number(item)
    return str(item)


def _stream_name(stream: Any, default: str) -> str:
    name = getattr(stream, "name", None)
    if isinstance(name, str) and name:
        return os.path.basename(name) or default
    return default

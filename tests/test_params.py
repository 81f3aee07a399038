from __future__ import annotations

import io
from dataclasses import dataclass, field
from enum import Enum

import httpx
import pytest

from mwapi_sdk.exceptions import UnsupportedParameterKind
from mwapi_sdk.params import Attachment, normalize_params

DEFAULTS = {"action": "query", "format": "json", "formatversion": "2", "errorformat": "plaintext"}


class Namespace(Enum):
    MAIN = 0
    USER = 2


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("Main Page", "Main Page"),
        ("", ""),
        (True, "1"),
        (["a", "b"], "a|b"),
        (("info", None, "revisions"), "info|revisions"),
        ([1, 2.5, 3.0], "1|2.5|3"),
        (42, "42"),
        (-7, "-7"),
        (3.0, "3"),
        (0.1, "0.1"),
        (1e-7, "0.0000001"),
        (1e21, "1000000000000000000000"),
        (Namespace.USER, "2"),
    ],
)
def test_value_encoding(value, expected) -> None:
    assert normalize_params({"key": value}).fields["key"] == expected


@pytest.mark.parametrize("value", [None, False, [], ()])
def test_omitted_values(value) -> None:
    normalized = normalize_params({"key": value})
    assert "key" not in normalized.fields
    assert normalized.attachments == []


def test_defaults_fill_only_missing_fields() -> None:
    assert normalize_params(None).fields == DEFAULTS
    assert normalize_params({}).fields == DEFAULTS

    normalized = normalize_params({"action": "edit", "format": "php", "formatversion": 1, "errorformat": ""})
    assert normalized.fields == {"action": "edit", "format": "php", "formatversion": "1", "errorformat": ""}


def test_false_value_lets_default_apply() -> None:
    assert normalize_params({"formatversion": False}).fields["formatversion"] == "2"


def test_bytes_become_attachment_named_after_key() -> None:
    normalized = normalize_params({"file": b"abc"})

    assert "file" not in normalized.fields
    [(field_name, attachment)] = normalized.attachments
    assert field_name == "file"
    assert attachment.filename == "file"
    assert attachment.read_bytes() == b"abc"


def test_stream_attachment_is_read_once() -> None:
    stream = io.BytesIO(b"chunk")
    normalized = normalize_params({"chunk": stream})

    [(_, attachment)] = normalized.attachments
    assert attachment.filename == "chunk"
    assert attachment.read_bytes() == b"chunk"
    assert attachment.read_bytes() == b"chunk"


def test_explicit_attachment_keeps_its_filename() -> None:
    attachment = Attachment(filename="Logo.png", source=b"png", content_type="image/png")
    normalized = normalize_params({"file": attachment})
    assert normalized.attachments == [("file", attachment)]


def test_encoded_pairs_join_repeated_keys() -> None:
    normalized = normalize_params([("titles", "A"), ("prop", "info"), ("titles", "B")])
    assert normalized.fields["titles"] == "A|B"
    assert normalized.fields["prop"] == "info"


def test_query_params_are_accepted() -> None:
    normalized = normalize_params(httpx.QueryParams([("list", "allpages"), ("list", "categorymembers")]))
    assert normalized.fields["list"] == "allpages|categorymembers"


def test_dataclass_record_uses_param_metadata() -> None:
    @dataclass
    class RevisionsQuery:
        titles: list[str]
        rvprop: list[str] = field(default_factory=lambda: ["content"], metadata={"param": "rvprop"})
        limit: int | None = field(default=None, metadata={"param": "rvlimit"})
        redirects: bool = False
        prop: str = "revisions"

    normalized = normalize_params(RevisionsQuery(titles=["A", "B"], limit=5))
    assert normalized.fields == {
        "titles": "A|B",
        "rvprop": "content",
        "rvlimit": "5",
        "prop": "revisions",
        **DEFAULTS,
    }


@pytest.mark.parametrize(
    "params",
    [42, "action=query", {"nested": {"a": 1}}, [("only-key",)], {1: "x"}, object()],
)
def test_unsupported_parameter_sets_fail(params) -> None:
    with pytest.raises(UnsupportedParameterKind):
        normalize_params(params)


def test_dataclass_type_is_not_a_record() -> None:
    @dataclass
    class Empty:
        pass

    with pytest.raises(UnsupportedParameterKind):
        normalize_params(Empty)

"""Tests for json / yaml / xml encoding of store values."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

import pytest

from dirstore.codec import FORMATS, Codec
from dirstore.errors import CodecError, UnsupportedFormatError
from dirstore.registry import Shape


@dataclass
class Person:
    name: str
    age: int


@dataclass
class Group:
    name: str
    members: list[Person] = field(default_factory=list)
    score: float = 0.0
    active: bool = False
    note: str | None = None


GROUP = Group(
    name="Happy People",
    members=[Person("John Doe", 30), Person("Jane Doe", 28)],
    score=1.5,
    active=True,
)


@pytest.mark.parametrize("storage_format", FORMATS)
def test_round_trip(storage_format) -> None:
    codec = Codec(storage_format)
    shape = Shape.of(Group)
    assert codec.decode(codec.encode(GROUP, shape), shape) == GROUP


@pytest.mark.parametrize("storage_format", ["json", "yaml"])
def test_map_round_trip(storage_format) -> None:
    codec = Codec(storage_format)
    shape = Shape.of(dict)
    value = {"title": "x", "n": 3, "nested": {"a": [1, 2]}}
    assert codec.decode(codec.encode(value, shape), shape) == value


def test_json_is_pretty_printed() -> None:
    raw = Codec("json").encode(Person("bolt", 5), Shape.of(Person)).decode()
    assert raw == '{\n  "name": "bolt",\n  "age": 5\n}\n'
    assert json.loads(raw) == {"name": "bolt", "age": 5}


def test_yaml_is_block_style_in_field_order() -> None:
    raw = Codec("yaml").encode(Person("bolt", 5), Shape.of(Person)).decode()
    assert raw == "name: bolt\nage: 5\n"


def test_xml_layout() -> None:
    raw = Codec("xml").encode(GROUP, Shape.of(Group)).decode()
    assert raw.startswith("<Group>\n  <name>Happy People</name>\n")
    assert raw.count("<members>") == 2
    assert "<active>true</active>" in raw
    assert "<note>" not in raw


def test_xml_rejects_map_shapes_at_encode_time() -> None:
    with pytest.raises(CodecError, match="map shape"):
        Codec("xml").encode({"a": 1}, Shape.of(dict))


def test_unsupported_format() -> None:
    codec = Codec("toml")
    shape = Shape.of(Person)
    with pytest.raises(UnsupportedFormatError):
        codec.encode(Person("a", 1), shape)
    with pytest.raises(UnsupportedFormatError):
        codec.decode(b'{"name": "a"}', shape)
    with pytest.raises(UnsupportedFormatError):
        _ = codec.extension


@pytest.mark.parametrize(
    ("storage_format", "raw"),
    [
        ("json", b'{"name": "bolt", '),
        ("yaml", b"name: [unclosed"),
        ("xml", b"<Person><name>bolt</Person>"),
        ("json", b""),
        ("yaml", b"   \n"),
    ],
)
def test_corrupt_documents_raise_codec_error(storage_format, raw) -> None:
    with pytest.raises(CodecError):
        Codec(storage_format).decode(raw, Shape.of(Person))


def test_decode_fills_missing_fields_with_zero_values() -> None:
    assert Codec("json").decode(b'{"name": "bolt"}', Shape.of(Person)) == Person("bolt", 0)
    assert Codec("xml").decode(b"<Person><age>4</age></Person>", Shape.of(Person)) == Person("", 4)

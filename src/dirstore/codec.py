"""Codec: one process-wide serialization format for every store.

    json  indented two spaces, trailing newline
    yaml  block style, keys in field order
    xml   root element named after the dataclass, one child per field,
          list fields as repeated children (struct shapes only)

Output is pretty-printed so entry files stay readable and diffable when
edited by hand.
"""

from __future__ import annotations

import dataclasses
import json
import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING, Any

import yaml

from dirstore.errors import CodecError, UnsupportedFormatError
from dirstore.registry import (
    field_hints,
    field_key,
    is_dict_type,
    is_list_type,
    is_struct_type,
    item_type,
    strip_optional,
)

if TYPE_CHECKING:
    from dirstore.registry import Shape

FORMATS = ("json", "yaml", "xml")
EXTENSIONS = {"json": "json", "yaml": "yaml", "xml": "xml"}


class Codec:
    """Encode/decode store values in the configured format."""

    def __init__(self, storage_format: str = "json") -> None:
        self.format = storage_format

    @property
    def extension(self) -> str:
        try:
            return EXTENSIONS[self.format]
        except KeyError:
            raise UnsupportedFormatError(f"invalid format: {self.format}") from None

    def encode(self, value: Any, shape: Shape) -> bytes:
        plain = shape.to_plain(value)
        if self.format == "json":
            try:
                text = json.dumps(plain, indent=2, ensure_ascii=False) + "\n"
            except (TypeError, ValueError) as exc:
                raise CodecError(f"cannot encode {shape.name} as json: {exc}") from exc
        elif self.format == "yaml":
            try:
                text = yaml.safe_dump(plain, sort_keys=False, default_flow_style=False, allow_unicode=True)
            except yaml.YAMLError as exc:
                raise CodecError(f"cannot encode {shape.name} as yaml: {exc}") from exc
        elif self.format == "xml":
            text = _xml_encode(plain, shape)
        else:
            raise UnsupportedFormatError(f"invalid format: {self.format}")
        return text.encode("utf-8")

    def decode(self, raw: bytes, shape: Shape) -> Any:
        """Decode raw bytes into a freshly allocated value of shape."""
        if self.format not in FORMATS:
            raise UnsupportedFormatError(f"invalid format: {self.format}")
        if not raw.strip():
            raise CodecError(f"cannot decode {shape.name}: empty document")

        if self.format == "json":
            try:
                plain = json.loads(raw)
            except ValueError as exc:
                raise CodecError(f"cannot decode {shape.name} from json: {exc}") from exc
        elif self.format == "yaml":
            try:
                plain = yaml.safe_load(raw)
            except yaml.YAMLError as exc:
                raise CodecError(f"cannot decode {shape.name} from yaml: {exc}") from exc
        else:
            plain = _xml_decode(raw, shape)
        return shape.from_plain(plain)


# ---------------------------------------------------------------------------
# XML
# ---------------------------------------------------------------------------

def _xml_encode(plain: Any, shape: Shape) -> str:
    if not shape.is_struct:
        msg = "xml encoding requires a dataclass-shaped store, got a map shape"
        raise CodecError(msg)
    root = ET.Element(shape.name)
    _xml_fill(root, plain)
    ET.indent(root, space="  ")
    return ET.tostring(root, encoding="unicode") + "\n"


def _xml_fill(parent: ET.Element, mapping: dict[str, Any]) -> None:
    for key, value in mapping.items():
        if value is None:
            continue
        for item in value if isinstance(value, list) else [value]:
            child = ET.SubElement(parent, key)
            if isinstance(item, dict):
                _xml_fill(child, item)
            elif isinstance(item, list):
                msg = f"nested lists cannot be encoded as xml (field {key})"
                raise CodecError(msg)
            elif isinstance(item, bool):
                child.text = "true" if item else "false"
            else:
                child.text = str(item)


def _xml_decode(raw: bytes, shape: Shape) -> Any:
    if not shape.is_struct:
        msg = "xml decoding requires a dataclass-shaped store, got a map shape"
        raise CodecError(msg)
    try:
        root = ET.fromstring(raw)
    except ET.ParseError as exc:
        raise CodecError(f"cannot decode {shape.name} from xml: {exc}") from exc
    return _element_to_plain(root, shape.annotation)


def _element_to_plain(elem: ET.Element, tp: Any) -> Any:
    tp = strip_optional(tp)
    if is_struct_type(tp):
        hints = field_hints(tp)
        out: dict[str, Any] = {}
        for f in dataclasses.fields(tp):
            key = field_key(f)
            children = elem.findall(key)
            if not children:
                continue
            ftp = strip_optional(hints[f.name])
            if is_list_type(ftp):
                out[key] = [_element_to_plain(c, item_type(ftp)) for c in children]
            else:
                out[key] = _element_to_plain(children[0], ftp)
        return out
    if is_dict_type(tp):
        return {c.tag: _element_to_plain(c, item_type(tp)) for c in elem}
    return elem.text or ""

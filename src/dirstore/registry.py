"""Type registry: binds a store name to the shape of the values it holds.

A shape is either a dataclass ("struct shape") or a ``dict`` / ``dict[str, T]``
("map shape"). Registration accepts the class itself or a sample instance;
only the type is kept, never the sample's data.

    registry = TypeRegistry()
    registry.register("widgets", Widget)
    target = registry.new("widgets")      # Widget(name="", count=0)

Values cross the codec boundary as plain data (dicts, lists, scalars).
``to_plain`` flattens a value; ``from_plain`` allocates a fresh zero-valued
instance of the shape and overlays whatever keys the document carries, so a
document that omits a field decodes to that field's zero value.

On-disk keys default to the field name and can be renamed per field:

    @dataclass
    class Widget:
        name: str = field(metadata={"key": "Name"})
"""

from __future__ import annotations

import copy
import dataclasses
import functools
import threading
import types
import typing
from typing import Any, get_args, get_origin, get_type_hints

from dirstore.errors import CodecError, StoreNotFoundError

_NONE_TYPE = type(None)
_SCALAR_ZERO: dict[type, Any] = {str: "", int: 0, float: 0.0, bool: False}
_TRUE_WORDS = frozenset({"true", "yes", "on", "1"})
_FALSE_WORDS = frozenset({"false", "no", "off", "0", ""})


# ---------------------------------------------------------------------------
# Type helpers
# ---------------------------------------------------------------------------

@functools.cache
def field_hints(cls: type) -> dict[str, Any]:
    """Resolved annotations of a dataclass (string annotations included)."""
    return get_type_hints(cls)


def field_key(f: dataclasses.Field[Any]) -> str:
    return str(f.metadata.get("key", f.name))


def strip_optional(tp: Any) -> Any:
    """``X | None`` → ``X``; other unions and plain types pass through."""
    if get_origin(tp) in (typing.Union, types.UnionType):
        args = [a for a in get_args(tp) if a is not _NONE_TYPE]
        if len(args) == 1:
            return args[0]
    return tp


def is_list_type(tp: Any) -> bool:
    return tp is list or get_origin(tp) is list


def is_dict_type(tp: Any) -> bool:
    return tp is dict or get_origin(tp) is dict


def item_type(tp: Any) -> Any:
    """Element type of ``list[T]`` or value type of ``dict[K, T]``; Any when bare."""
    args = get_args(tp)
    if is_list_type(tp) and args:
        return args[0]
    if is_dict_type(tp) and len(args) == 2:
        return args[1]
    return Any


def is_struct_type(tp: Any) -> bool:
    return isinstance(tp, type) and dataclasses.is_dataclass(tp)


# ---------------------------------------------------------------------------
# Zero values
# ---------------------------------------------------------------------------

def zero_value(tp: Any) -> Any:
    """The empty value of a type: "", 0, False, [], {}, None or a zero struct."""
    origin = get_origin(tp)
    if origin in (typing.Union, types.UnionType):
        args = get_args(tp)
        return None if _NONE_TYPE in args else zero_value(args[0])
    if is_list_type(tp):
        return []
    if is_dict_type(tp):
        return {}
    if is_struct_type(tp):
        return _zero_struct(tp)
    return _SCALAR_ZERO.get(tp)


def _zero_struct(cls: type) -> Any:
    hints = field_hints(cls)
    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        if not f.init:
            continue
        if f.default is not dataclasses.MISSING or f.default_factory is not dataclasses.MISSING:
            continue
        kwargs[f.name] = zero_value(hints[f.name])
    return cls(**kwargs)


# ---------------------------------------------------------------------------
# Plain-data conversion
# ---------------------------------------------------------------------------

def to_plain(value: Any) -> Any:
    """Flatten dataclasses, mappings and sequences into codec-ready data."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            field_key(f): to_plain(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def from_plain(data: Any, tp: Any) -> Any:
    """Build a value of type tp from decoded plain data."""
    if tp is Any or tp is object:
        return data
    if get_origin(tp) in (typing.Union, types.UnionType):
        if data is None:
            return None
        return from_plain(data, strip_optional(tp))
    if data is None:
        return zero_value(tp)

    if is_struct_type(tp):
        if not isinstance(data, dict):
            msg = f"expected a mapping for {tp.__name__}, got {type(data).__name__}"
            raise CodecError(msg)
        target = _zero_struct(tp)
        hints = field_hints(tp)
        updates = {
            f.name: from_plain(data[field_key(f)], hints[f.name])
            for f in dataclasses.fields(tp)
            if f.init and field_key(f) in data
        }
        return dataclasses.replace(target, **updates) if updates else target

    if is_list_type(tp):
        if not isinstance(data, list):
            msg = f"expected a list, got {type(data).__name__}"
            raise CodecError(msg)
        elem = item_type(tp)
        return [from_plain(v, elem) for v in data]

    if is_dict_type(tp):
        if not isinstance(data, dict):
            msg = f"expected a mapping, got {type(data).__name__}"
            raise CodecError(msg)
        elem = item_type(tp)
        return {str(k): from_plain(v, elem) for k, v in data.items()}

    if tp in _SCALAR_ZERO:
        return _coerce_scalar(data, tp)
    return data


def _coerce_scalar(data: Any, tp: type) -> Any:
    if isinstance(data, (dict, list)):
        msg = f"expected {tp.__name__}, got {type(data).__name__}"
        raise CodecError(msg)
    if tp is bool and isinstance(data, str):
        word = data.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
        msg = f"expected bool, got {data!r}"
        raise CodecError(msg)
    try:
        return tp(data)
    except (TypeError, ValueError) as exc:
        msg = f"expected {tp.__name__}, got {data!r}"
        raise CodecError(msg) from exc


# ---------------------------------------------------------------------------
# Shape
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class Shape:
    """Structural schema of a store's values."""

    annotation: Any   # dataclass class, dict, or dict[str, T]

    @classmethod
    def of(cls, sample: Any) -> Shape:
        """Shape of a dataclass / dict type, or of a sample instance."""
        if is_struct_type(sample):
            return cls(sample)
        if dataclasses.is_dataclass(sample):
            return cls(type(sample))
        if is_dict_type(sample):
            return cls(sample)
        if isinstance(sample, dict):
            return cls(dict[str, Any])
        msg = f"cannot register a store of {sample!r}: expected a dataclass or dict shape"
        raise TypeError(msg)

    @property
    def is_struct(self) -> bool:
        return is_struct_type(self.annotation)

    @property
    def name(self) -> str:
        return self.annotation.__name__ if self.is_struct else "map"

    def new(self) -> Any:
        return zero_value(self.annotation)

    def check(self, value: Any) -> None:
        """Raise TypeError unless value is an instance of this shape."""
        expected = self.annotation if self.is_struct else dict
        if not isinstance(value, expected):
            msg = f"expected {self.name} value, got {type(value).__name__}"
            raise TypeError(msg)

    def copy(self, value: Any) -> Any:
        return copy.deepcopy(value)

    def to_plain(self, value: Any) -> Any:
        return to_plain(value)

    def from_plain(self, data: Any) -> Any:
        return from_plain(data, self.annotation)


class TypeRegistry:
    """Store name → Shape."""

    def __init__(self) -> None:
        self._shapes: dict[str, Shape] = {}
        self._lock = threading.Lock()

    def register(self, name: str, sample: Any) -> Shape:
        shape = Shape.of(sample)
        with self._lock:
            self._shapes[name] = shape
        return shape

    def shape(self, name: str) -> Shape:
        with self._lock:
            shape = self._shapes.get(name)
        if shape is None:
            msg = f"data store {name} not found"
            raise StoreNotFoundError(msg)
        return shape

    def new(self, name: str) -> Any:
        """A fresh zero-valued instance of the store's shape (decode target)."""
        return self.shape(name).new()

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._shapes)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._shapes

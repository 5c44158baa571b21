"""Bind configuration snapshots onto dataclasses declared with ``env_field``."""

from __future__ import annotations

import dataclasses
import re
import types
import typing
from collections.abc import Callable, Mapping
from datetime import timedelta
from typing import Any

_ENV = "env"
_DEFAULT = "default"

_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})

_UNIT_NS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_NUMBER_RE = re.compile(r"([0-9]*)(\.([0-9]*))?")
_UNIT_RE = re.compile(r"[^0-9.]*")

_OPTIONAL_RE = re.compile(r"(?:typing\.)?Optional\[(.+)\]")
_TYPE_NAMES: dict[str, Any] = {
    "str": str,
    "builtins.str": str,
    "bool": bool,
    "builtins.bool": bool,
    "int": int,
    "builtins.int": int,
    "float": float,
    "builtins.float": float,
    "timedelta": timedelta,
    "datetime.timedelta": timedelta,
}


class BindError(Exception):
    """A snapshot could not be bound onto a target."""


def env_field(env: str, default: Any = "") -> Any:
    """Declare a dataclass field read from ``env``.

    ``default`` is both the field's own default and the value used when the key
    is missing; as a string it is parsed to the field's type on binding.
    """
    return dataclasses.field(default=default, metadata={_ENV: env, _DEFAULT: default})


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as ``1h30m``, ``1.5s`` or ``-300ms``."""
    original = value
    negative = False
    if value and value[0] in "+-":
        negative = value[0] == "-"
        value = value[1:]
    if value == "0":
        return timedelta(0)
    if not value:
        raise ValueError(f'time: invalid duration "{original}"')

    total = 0
    while value:
        number = _NUMBER_RE.match(value)
        whole, fraction = number.group(1), number.group(3)
        if not whole and not fraction:
            raise ValueError(f'time: invalid duration "{original}"')
        value = value[number.end():]

        unit = _UNIT_RE.match(value).group()
        value = value[len(unit):]
        if not unit:
            raise ValueError(f'time: missing unit in duration "{original}"')
        if unit not in _UNIT_NS:
            raise ValueError(f'time: unknown unit "{unit}" in duration "{original}"')

        scale = _UNIT_NS[unit]
        part = int(whole or "0") * scale
        if fraction:
            part += int(fraction) * scale // 10 ** len(fraction)
        total += part
        if total > 1 << 63:
            raise ValueError(f'time: invalid duration "{original}"')

    if not negative and total > _INT64_MAX:
        raise ValueError(f'time: invalid duration "{original}"')
    micros = total // 1000
    return timedelta(microseconds=-micros if negative else micros)


def _parse_bool(value: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f'invalid boolean "{value}"')


def _parse_int(value: str) -> int:
    if not _INT_RE.fullmatch(value):
        raise ValueError(f'invalid integer "{value}"')
    result = int(value)
    if not _INT64_MIN <= result <= _INT64_MAX:
        raise ValueError(f'integer out of range "{value}"')
    return result


def _parse_float(value: str) -> float:
    if value != value.strip() or "_" in value:
        raise ValueError(f'invalid number "{value}"')
    return float(value)


_PARSERS: dict[Any, Callable[[str], Any]] = {
    str: lambda value: value,
    bool: _parse_bool,
    int: _parse_int,
    float: _parse_float,
    timedelta: parse_duration,
}


def _unwrap_optional(field_type: Any) -> Any:
    if typing.get_origin(field_type) in (typing.Union, types.UnionType):
        args = [arg for arg in typing.get_args(field_type) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return field_type


def _resolve_annotation(annotation: Any) -> Any:
    """Map a field annotation, possibly written as a string, to a known type."""
    if not isinstance(annotation, str):
        return _unwrap_optional(annotation)
    text = annotation.strip()
    optional = _OPTIONAL_RE.fullmatch(text)
    if optional:
        text = optional.group(1).strip()
    parts = [part.strip() for part in text.split("|")]
    parts = [part for part in parts if part != "None"]
    if len(parts) == 1:
        text = parts[0]
    return _TYPE_NAMES.get(text, text)


def _convert(field_type: Any, value: str) -> Any:
    resolved = _resolve_annotation(field_type)
    parser = None if isinstance(resolved, str) else _PARSERS.get(resolved)
    if parser is None:
        if isinstance(resolved, str):
            name = resolved
        else:
            name = getattr(resolved, "__name__", repr(resolved))
        raise BindError(f"unsupported field type: {name}")
    return parser(value)


def _bind_fields(snapshot: Mapping[str, str], target: Any) -> None:
    for field in dataclasses.fields(target):
        if field.name.startswith("_"):
            continue

        current = getattr(target, field.name)
        if dataclasses.is_dataclass(current) and not isinstance(current, type):
            try:
                _bind_fields(snapshot, current)
            except BindError as exc:
                raise BindError(
                    f"failed to bind nested struct {field.name}: {exc}"
                ) from exc
            continue

        env = field.metadata.get(_ENV)
        if not env:
            continue

        value = snapshot[env] if env in snapshot else field.metadata.get(_DEFAULT, "")
        if not isinstance(value, str):
            setattr(target, field.name, value)
            continue
        if value == "":
            continue

        try:
            parsed = _convert(field.type, value)
        except (BindError, ValueError) as exc:
            raise BindError(f"failed to set field {field.name}: {exc}") from exc
        setattr(target, field.name, parsed)


def bind_to_struct(
    snapshot: Mapping[str, str],
    target: Any,
    on_update: Callable[[], None] | None = None,
) -> None:
    """Set the ``env_field`` fields of a dataclass instance from ``snapshot``.

    Missing keys fall back to the field's default; empty values leave the field
    as it is. Nested dataclass fields are bound recursively. ``on_update`` is
    accepted for callers that register a change callback and is not invoked.
    """
    if not dataclasses.is_dataclass(target) or isinstance(target, type):
        raise BindError("target must be a dataclass instance")
    _bind_fields(snapshot, target)
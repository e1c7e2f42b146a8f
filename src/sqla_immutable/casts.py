"""Attribute casting.

``cast`` is a pure function: it never touches the record it reads from and
returns a fresh value on every call. ``None`` always passes through uncast.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Final, TypeAlias

from .exceptions import ConfigurationError
from .tools import detached


CastSpec: TypeAlias = "str | Callable[[Any], Any]"

FALSY_STRINGS: Final[frozenset[str]] = frozenset({"", "0", "false", "off", "no", "n"})


def cast(key: str, value: Any, spec: CastSpec) -> Any:
    """Cast a raw attribute value according to *spec*.

    Args:
        key: Attribute name, used in error messages.
        value: Raw value as read from the row.
        spec: Either a callable applied to the value, or a string of the form
            ``name[:params]`` such as ``"int"``, ``"json"``, ``"decimal:2"``
            or ``"datetime:%Y-%m-%d %H:%M"``.

    Returns:
        The cast value, or None when *value* is None.

    Raises:
        ConfigurationError: If *spec* names an unknown cast.
    """
    if value is None:
        return None

    if callable(spec):
        return spec(detached(value))

    name, _, params = spec.partition(":")
    match name:
        case "int" | "integer":
            return int(value)
        case "float" | "real" | "double":
            return float(value)
        case "str" | "string":
            return str(value)
        case "bool" | "boolean":
            return _to_bool(value)
        case "json" | "array" | "object":
            return _to_json(value)
        case "date":
            return _to_datetime(value, params or None).date()
        case "datetime":
            return _to_datetime(value, params or None)
        case "timestamp":
            return int(_to_datetime(value).timestamp())
        case "decimal":
            return _to_decimal(key, value, params)
        case _:
            raise ConfigurationError.invalid_cast(key, spec)


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in FALSY_STRINGS

    return bool(value)


def _to_json(value: Any) -> Any:
    if isinstance(value, (str, bytes, bytearray)):
        return json.loads(value)

    return detached(value)


def _to_datetime(value: Any, fmt: str | None = None) -> datetime:
    if isinstance(value, datetime):
        return value

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)

    text = str(value).strip()
    if fmt is not None:
        return datetime.strptime(text, fmt)

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    return datetime.fromisoformat(text)


def _to_decimal(key: str, value: Any, params: str) -> Decimal:
    number = Decimal(str(value))
    if not params:
        return number

    if not params.isdigit():
        raise ConfigurationError.invalid_cast(key, f"decimal:{params}")

    return number.quantize(Decimal(1).scaleb(-int(params)))

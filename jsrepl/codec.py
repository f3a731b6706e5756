"""Value codec for crossing the host/guest boundary.

Guest values travel as tagged JSON: plain JSON types map directly, and the
JavaScript values JSON cannot express are wrapped in an object with a
``$t`` tag:

    undefined        {"$t": "undefined"}
    NaN / ±Infinity  {"$t": "number", "v": "NaN"}
    unsafe integer   {"$t": "number", "v": "1152921504606847000"}
    BigInt           {"$t": "bigint", "v": "12345678901234567890"}
    Date             {"$t": "date", "v": "2024-01-01T00:00:00.000Z"}
    function         {"$t": "function", "name": "f", "source": "function f() {}"}
    symbol           {"$t": "symbol", "v": "description"}
    object with $t   {"$t": "object", "v": {...}}

The JavaScript half of the codec lives in the host prelude
(``jsrepl.prelude``); this module is the Python half.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any

TAG = "$t"


class _Undefined:
    """Singleton standing in for JavaScript ``undefined``."""

    _instance: _Undefined | None = None

    def __new__(cls) -> _Undefined:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "undefined"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "UNDEFINED"


UNDEFINED = _Undefined()


@dataclass(frozen=True)
class JSFunction:
    """A guest function returned to the host.

    Functions cannot be called once their context is gone; the host keeps the
    name and source text so results stay inspectable. Passing a JSFunction
    back in as a binding re-evaluates its source inside the new context.
    """

    name: str
    source: str

    def __str__(self) -> str:
        return self.source


def _encode_number(value: float) -> Any:
    if math.isnan(value):
        return {TAG: "number", "v": "NaN"}
    if math.isinf(value):
        return {TAG: "number", "v": "Infinity" if value > 0 else "-Infinity"}
    return value


def _format_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def encode(value: Any, path: str = "value") -> Any:
    """Encode a Python value into tagged JSON for the guest.

    Args:
        value: Python value to encode
        path: Location of the value, used in error messages

    Returns:
        JSON-compatible structure

    Raises:
        TypeError: If the value (or a nested value) has no guest representation
    """
    if value is None or isinstance(value, (bool, str)):
        return value
    if value is UNDEFINED:
        return {TAG: "undefined"}
    if isinstance(value, int):
        if abs(value) > 2**53:
            return {TAG: "bigint", "v": str(value)}
        return value
    if isinstance(value, float):
        return _encode_number(value)
    if isinstance(value, datetime):
        return {TAG: "date", "v": _format_date(value)}
    if isinstance(value, date):
        return {TAG: "date", "v": _format_date(datetime(value.year, value.month, value.day))}
    if isinstance(value, JSFunction):
        return {TAG: "function", "name": value.name, "source": value.source}
    if isinstance(value, (list, tuple)):
        return [encode(item, f"{path}[{index}]") for index, item in enumerate(value)]
    if isinstance(value, dict):
        encoded = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"{path} has a non-string key {key!r}")
            encoded[key] = encode(item, f"{path}.{key}")
        if TAG in encoded:
            return {TAG: "object", "v": encoded}
        return encoded
    raise TypeError(f"{path} of type {type(value).__name__} cannot be passed to JavaScript")


def _decode_date(text: str | None, fallbacks: list[str] | None, path: str) -> datetime | str | None:
    if text is None:
        # Invalid Date
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except (ValueError, OverflowError):
        # outside years 1-9999
        if fallbacks is not None:
            fallbacks.append(path)
        return text


def decode(value: Any, fallbacks: list[str] | None = None, path: str = "value") -> Any:
    """Decode tagged JSON produced by the guest into Python values.

    Args:
        value: Tagged JSON structure
        fallbacks: If given, collects the paths of values that had no Python
                   equivalent and were kept as their ISO string instead
        path: Location of the value, recorded in ``fallbacks``
    """
    if isinstance(value, list):
        return [decode(item, fallbacks, f"{path}[{index}]") for index, item in enumerate(value)]
    if not isinstance(value, dict):
        return value

    tag = value.get(TAG)
    if tag == "undefined":
        return UNDEFINED
    if tag == "number":
        return float(value["v"].replace("Infinity", "inf"))
    if tag == "bigint":
        return int(value["v"])
    if tag == "date":
        return _decode_date(value.get("v"), fallbacks, path)
    if tag == "function":
        return JSFunction(name=value.get("name", ""), source=value.get("source", ""))
    if tag == "symbol":
        return value.get("v", "")
    if tag == "object":
        value = value["v"]
    return {key: decode(item, fallbacks, f"{path}.{key}") for key, item in value.items()}


def to_plain(value: Any) -> Any:
    """Convert a decoded value into plain JSON types for transport payloads.

    ``undefined`` becomes None, dates become ISO strings, functions become
    their source text and non-finite floats become their JavaScript names.
    """
    if value is UNDEFINED:
        return None
    if isinstance(value, float) and not math.isfinite(value):
        if math.isnan(value):
            return "NaN"
        return "Infinity" if value > 0 else "-Infinity"
    if isinstance(value, datetime):
        return _format_date(value)
    if isinstance(value, JSFunction):
        return value.source
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    if isinstance(value, dict):
        return {str(key): to_plain(item) for key, item in value.items()}
    return value

"""
Canonical serialization of structured values, the single hash input format.

Accepted values: None, bool, int, float, str, list/tuple, dict with str keys.
Object keys are sorted by code point at every level, arrays keep their order,
strings use JSON escaping. Integral floats render like ints (1.0 -> "1"), so
numerically equal values serialize identically.

A key mapped to None is NOT the same as a missing key: {"a": None} renders
'{"a":null}' while {} renders '{}'.
"""
import json
import math
from typing import Any, Union

from assurance.errors import ValidationError

JSONValue = Union[None, bool, int, float, str, list["JSONValue"], dict[str, "JSONValue"]]


def _number(value: Union[int, float]) -> str:
    if isinstance(value, int):
        return str(value)
    if not math.isfinite(value):
        raise ValidationError(f"Non-finite number cannot be serialized: {value!r}")
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _string(value: str) -> str:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ValidationError(f"String is not valid UTF-8 text: {e.reason}") from e
    return json.dumps(value, ensure_ascii=False)


def canonical_serialize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return _number(value)
    if isinstance(value, str):
        return _string(value)
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(canonical_serialize(v) for v in value) + "]"
    if isinstance(value, dict):
        for key in value:
            if not isinstance(key, str):
                raise ValidationError(f"Object keys must be strings, got {type(key).__name__}")
        pairs = (
            _string(key) + ":" + canonical_serialize(value[key])
            for key in sorted(value)
        )
        return "{" + ",".join(pairs) + "}"
    raise ValidationError(f"Unsupported value type for canonical serialization: {type(value).__name__}")

"""
Conversion of arbitrary host values into JSON.

Hosts hand us whatever their scripting layer produces: dicts keyed 1..n
standing in for arrays, functions, sets, objects nobody knows how to
serialize. Everything is mapped onto the closed JSON value space:

    ┌───────────────────────────────┬──────────────────────────────────┐
    │  Input                        │ JSON                             │
    ├───────────────────────────────┼──────────────────────────────────┤
    │  None / bool / int / str      │ as is                            │
    │  float                        │ number, null if NaN or infinite  │
    │  {1: a, 2: b, ..., n: z}      │ [a, b, ..., z]                   │
    │  any other mapping            │ object, keys converted to str    │
    │  list / tuple / set           │ array                            │
    │  bytes                        │ string (UTF-8, replaced errors)  │
    │  dataclass instance           │ object of its fields             │
    │  callable                     │ "<function>"                     │
    │  anything else                │ "<TypeName>"                     │
    └───────────────────────────────┴──────────────────────────────────┘

Conversion never calls into the value (callables are not invoked) and
never raises for an unknown type.
"""

import dataclasses
import json
import math
from collections.abc import Mapping, Set
from typing import Any, Dict, List, Union

from .errors import UsageError


JSONValue = Union[None, bool, int, float, str, List[Any], Dict[str, Any]]

FUNCTION_PLACEHOLDER = "<function>"

MAX_DEPTH = 100

PRETTY_INDENT = 3


def to_json_value(obj: Any, _depth: int = 0) -> JSONValue:
    """
    Convert obj into plain JSON data.

    Raises:
        UsageError: The value nests deeper than MAX_DEPTH (usually a cycle).
    """
    if _depth > MAX_DEPTH:
        raise UsageError(f"Value nested deeper than {MAX_DEPTH} levels (cyclic?)")

    if obj is None or isinstance(obj, (bool, str)):
        return obj

    if isinstance(obj, int):
        return int(obj)

    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None

    if isinstance(obj, Mapping):
        return _convert_mapping(obj, _depth + 1)

    if isinstance(obj, (bytes, bytearray)):
        return bytes(obj).decode("utf-8", errors="replace")

    if isinstance(obj, (list, tuple)):
        return [to_json_value(item, _depth + 1) for item in obj]

    if isinstance(obj, Set):
        items = [to_json_value(item, _depth + 1) for item in obj]
        return sorted(items, key=repr)

    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        fields = {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
        return _convert_mapping(fields, _depth + 1)

    if callable(obj):
        return FUNCTION_PLACEHOLDER

    return f"<{type(obj).__name__}>"


def _convert_mapping(mapping: Mapping, depth: int) -> JSONValue:
    keys = list(mapping.keys())

    # {1: a, 2: b, ...} is how array-less scripting layers spell a list
    if keys and all(type(key) is int for key in keys):
        if sorted(keys) == list(range(1, len(keys) + 1)):
            return [to_json_value(mapping[i], depth) for i in range(1, len(keys) + 1)]

    return {str(key): to_json_value(value, depth) for key, value in mapping.items()}


def to_json_string(obj: Any, pretty: bool = True) -> str:
    """
    Serialize obj to JSON text.

    Keys are sorted. With pretty=True the output is indented; otherwise it
    is compact.
    """
    value = to_json_value(obj)
    if pretty:
        return json.dumps(value, indent=PRETTY_INDENT, sort_keys=True, ensure_ascii=False)
    return json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False)

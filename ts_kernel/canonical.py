"""Canonical JSON encoding.

Every hash and signature in the kernel is computed over the output of
`canonical_json_dumps`. Two conforming encoders (in any language) must emit
identical bytes for the same logical value, so the rules are fixed:

- null / true / false as JSON literals
- strings as JSON strings, non-ASCII kept verbatim (UTF-8 on the wire),
  lone surrogates escaped as \\uXXXX
- arrays keep element order
- objects sort keys by code point (identical to UTF-8 byte order)
- numbers render like ECMAScript ``Number.prototype.toString``
- no whitespace anywhere

The value domain is the closed set in `JsonKind`. Anything else is rejected
with a TSError rather than being coerced.
"""

from __future__ import annotations

import json
import math
import re
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional

from .config import KernelConfig
from .errors import (
    ts_error,
    TS_E_CANON_DEPTH,
    TS_E_CANON_INT_TOO_LARGE,
    TS_E_CANON_KEY_TYPE,
    TS_E_CANON_NON_JSON,
    TS_E_CANON_NONFINITE,
)


_CANON_MAX_INT_DIGITS = 128

_LONE_SURROGATE = re.compile(r"[\ud800-\udfff]")


class JsonKind(str, Enum):
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"


def _encode_string(s: str) -> str:
    text = json.dumps(s, ensure_ascii=False)
    if not _LONE_SURROGATE.search(text):
        return text
    # Join well-formed pairs first; what remains is escaped as lowercase
    # \uXXXX, like ES2019 JSON.stringify.
    s = s.encode("utf-16-le", "surrogatepass").decode("utf-16-le", "surrogatepass")
    text = json.dumps(s, ensure_ascii=False)
    return _LONE_SURROGATE.sub(lambda m: "\\u%04x" % ord(m.group()), text)


def _path_key(k: str) -> str:
    # JSONPath-ish: $['key'] with minimal escaping for readability
    ks = k.replace("\\", "\\\\").replace("'", "\\'")
    return f"['{ks}']"


def json_kind(value: Any, *, path: str = "$") -> JsonKind:
    """Classify a Python value into the JSON value domain."""
    if value is None:
        return JsonKind.NULL
    # bool is a subclass of int; must be tested first
    if isinstance(value, bool):
        return JsonKind.BOOL
    if isinstance(value, (int, float)):
        return JsonKind.NUMBER
    if isinstance(value, str):
        return JsonKind.STRING
    if isinstance(value, (list, tuple)):
        return JsonKind.ARRAY
    if isinstance(value, dict):
        return JsonKind.OBJECT
    raise ts_error(TS_E_CANON_NON_JSON, "non-JSON-serializable type", path=path, got=type(value).__name__)


def format_number(value: Any, *, path: str = "$") -> str:
    """Render an int or float exactly as ECMAScript would."""
    if isinstance(value, int):
        digits = len(str(abs(value)))
        if digits > _CANON_MAX_INT_DIGITS:
            raise ts_error(
                TS_E_CANON_INT_TOO_LARGE,
                "integer has too many digits",
                path=path,
                digits=digits,
                max_int_digits=_CANON_MAX_INT_DIGITS,
            )
        return str(value)

    if not math.isfinite(value):
        raise ts_error(TS_E_CANON_NONFINITE, "non-finite float", path=path)
    if value == 0:
        # covers -0.0
        return "0"

    # repr() gives the shortest round-tripping digits, same as JS.
    sign, digit_tuple, exponent = Decimal(repr(value)).as_tuple()
    raw = "".join(str(d) for d in digit_tuple)
    digits = raw.rstrip("0")
    exponent += len(raw) - len(digits)
    k = len(digits)
    n = k + exponent  # value == 0.<digits> * 10**n

    if k <= n <= 21:
        text = digits + "0" * (n - k)
    elif 0 < n <= 21:
        text = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        text = "0." + "0" * (-n) + digits
    else:
        e = n - 1
        mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
        text = f"{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"

    return ("-" if sign else "") + text


def _encode(value: Any, out: List[str], *, max_depth: int, path: str, depth: int) -> None:
    if depth > max_depth:
        raise ts_error(TS_E_CANON_DEPTH, "max nesting depth exceeded", path=path, max_depth=max_depth)

    kind = json_kind(value, path=path)
    if kind is JsonKind.NULL:
        out.append("null")
    elif kind is JsonKind.BOOL:
        out.append("true" if value else "false")
    elif kind is JsonKind.NUMBER:
        out.append(format_number(value, path=path))
    elif kind is JsonKind.STRING:
        out.append(_encode_string(value))
    elif kind is JsonKind.ARRAY:
        out.append("[")
        for i, item in enumerate(value):
            if i:
                out.append(",")
            _encode(item, out, max_depth=max_depth, path=f"{path}[{i}]", depth=depth + 1)
        out.append("]")
    elif kind is JsonKind.OBJECT:
        for k in value:
            if not isinstance(k, str):
                raise ts_error(TS_E_CANON_KEY_TYPE, "dict key must be str", path=path, got=type(k).__name__)
        out.append("{")
        for i, k in enumerate(sorted(value)):
            if i:
                out.append(",")
            out.append(_encode_string(k))
            out.append(":")
            _encode(value[k], out, max_depth=max_depth, path=path + _path_key(k), depth=depth + 1)
        out.append("}")


def canonical_json_dumps(value: Any, *, max_depth: Optional[int] = None) -> str:
    """Encode `value` as canonical JSON text.

    Raises:
        TSError: for values outside the JSON domain, non-finite floats,
            pathological integers or nesting deeper than `max_depth`
            (default: ``KernelConfig.from_env().canon_max_depth``).
    """
    if max_depth is None:
        max_depth = KernelConfig.from_env().canon_max_depth
    out: List[str] = []
    _encode(value, out, max_depth=int(max_depth), path="$", depth=0)
    return "".join(out)


def canonical_bytes(value: Any, *, max_depth: Optional[int] = None) -> bytes:
    """UTF-8 bytes of the canonical encoding; the input to every digest."""
    return canonical_json_dumps(value, max_depth=max_depth).encode("utf-8")

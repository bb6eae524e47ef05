"""
VeritasLog Canonicalization

Turns raw submitted log content into a deterministic text form so that every
party computing a commitment over "the same" log agrees byte for byte.

Rules:
- CRLF line endings become LF
- Leading/trailing whitespace is removed (ECMAScript whitespace set)
- Content that parses as JSON is re-serialized compactly with its top-level
  object keys sorted by Unicode code point; nested key order is kept
- Anything else is kept verbatim (after the two steps above) as text

The JSON serializer mirrors ECMAScript JSON.stringify output so commitments
minted by browser clients and by this library are interchangeable.
"""

import json
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class PayloadKind(str, Enum):
    TEXT = "text"
    JSON = "json"


@dataclass(frozen=True)
class CanonicalPayload:
    """Tagged canonical form of a log payload."""
    kind: PayloadKind
    data: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "data": self.data}


# ECMAScript WhiteSpace + LineTerminator code points (String.prototype.trim)
_JS_WHITESPACE = (
    "\u0009\u000a\u000b\u000c\u000d\u0020\u00a0\u1680"
    "\u2000\u2001\u2002\u2003\u2004\u2005\u2006\u2007\u2008\u2009\u200a"
    "\u2028\u2029\u202f\u205f\u3000\ufeff"
)

# Largest integer a JavaScript Number holds exactly
MAX_SAFE_INTEGER = 2 ** 53 - 1

_SURROGATE = re.compile(r"[\ud800-\udfff]")

_NOT_JSON = object()


def normalize_text(raw: str) -> str:
    """Normalize line endings and trim outer whitespace."""
    return raw.replace("\r\n", "\n").strip(_JS_WHITESPACE)


def canonicalize(raw: str) -> CanonicalPayload:
    """
    Canonicalize raw log content.

    Total function: every input string maps to a CanonicalPayload.
    Failing to parse as JSON is not an error, it selects the text branch.
    A bare `null` document is treated as text.
    """
    if not isinstance(raw, str):
        raise TypeError(f"canonicalize expects str, got {type(raw).__name__}")

    text = normalize_text(raw)
    parsed = _parse_json(text)
    if parsed is _NOT_JSON or parsed is None:
        return CanonicalPayload(PayloadKind.TEXT, text)

    if isinstance(parsed, dict):
        parsed = {k: parsed[k] for k in sorted(parsed)}
    return CanonicalPayload(PayloadKind.JSON, to_json(parsed))


def _parse_json(text: str) -> Any:
    try:
        return json.loads(text, parse_int=_parse_int, parse_constant=_reject_constant)
    except (ValueError, RecursionError):
        return _NOT_JSON


def _parse_int(literal: str) -> Any:
    # Literals past 15 digits are read as doubles; overlong ones overflow to inf
    if len(literal.lstrip("-")) > 15:
        return float(literal)
    value = int(literal)
    if abs(value) > MAX_SAFE_INTEGER:
        return float(value)
    return value


def _reject_constant(name: str) -> Any:
    # NaN / Infinity are not JSON
    raise ValueError(f"invalid JSON constant {name}")


# ============================================================
# Deterministic serialization
# ============================================================

class _Fragment(str):
    """Already-serialized output queued on the work stack."""


def to_json(value: Any) -> str:
    """
    Serialize a JSON-compatible value compactly, preserving dict order.

    Output matches ECMAScript JSON.stringify for the same logical value.
    Containers are expanded on an explicit work stack, so nesting depth is
    bounded by memory rather than the interpreter's recursion limit.
    """
    out = []
    stack = [value]
    while stack:
        item = stack.pop()
        if type(item) is _Fragment:
            out.append(item)
        elif item is None:
            out.append("null")
        elif item is True:
            out.append("true")
        elif item is False:
            out.append("false")
        elif isinstance(item, int):
            if abs(item) > MAX_SAFE_INTEGER:
                out.append(format_number(float(item)))
            else:
                out.append(str(item))
        elif isinstance(item, float):
            out.append(format_number(item))
        elif isinstance(item, str):
            out.append(_quote(item))
        elif isinstance(item, (list, tuple)):
            out.append("[")
            stack.append(_Fragment("]"))
            for i in range(len(item) - 1, -1, -1):
                stack.append(item[i])
                if i:
                    stack.append(_Fragment(","))
        elif isinstance(item, dict):
            entries = list(item.items())
            for key, _ in entries:
                if not isinstance(key, str):
                    raise ValueError(f"Cannot serialize non-string key: {key!r}")
            out.append("{")
            stack.append(_Fragment("}"))
            for i in range(len(entries) - 1, -1, -1):
                key, child = entries[i]
                stack.append(child)
                stack.append(_Fragment(_quote(key) + ":"))
                if i:
                    stack.append(_Fragment(","))
        else:
            raise ValueError(f"Cannot serialize type: {type(item)}")
    return "".join(out)


def to_json_bytes(value: Any) -> bytes:
    return to_json(value).encode("utf-8")


def format_number(x: float) -> str:
    """Format a float the way ECMAScript Number.prototype.toString does."""
    if math.isnan(x) or math.isinf(x):
        return "null"
    if x == 0:
        return "0"

    sign = "-" if x < 0 else ""
    mantissa, _, exp = repr(abs(x)).partition("e")
    int_part, _, frac_part = mantissa.partition(".")
    point = len(int_part) + (int(exp) if exp else 0)

    digits = int_part + frac_part
    stripped = digits.lstrip("0")
    point -= len(digits) - len(stripped)
    digits = stripped.rstrip("0")

    k, n = len(digits), point
    if k <= n <= 21:
        body = digits + "0" * (n - k)
    elif 0 < n <= 21:
        body = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        body = "0." + "0" * (-n) + digits
    else:
        e = n - 1
        exp_str = ("+" if e >= 0 else "-") + str(abs(e))
        if k == 1:
            body = digits + "e" + exp_str
        else:
            body = digits[0] + "." + digits[1:] + "e" + exp_str
    return sign + body


def _quote(s: str) -> str:
    quoted = json.dumps(s, ensure_ascii=False)
    return _SURROGATE.sub(lambda m: "\\u%04x" % ord(m.group()), quoted)

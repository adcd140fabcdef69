"""Input sanitizers for untrusted request values.

Every helper is pure. Helpers documented as "never fails" coerce bad input to a
safe default; the rest raise ``InvalidInput`` so callers can map the failure to
a validation error.

Markup handling uses an allow-list of zero tags and zero attributes: comments
and the contents of script-like elements are dropped entirely, every other tag
is dropped while its text is kept. Whatever survives is entity-escaped, so the
result never contains ``<`` or ``>``.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any, TypeVar

T = TypeVar("T")

ID_RE = re.compile(r"^c[a-z0-9]{24}$")

_RAW_CONTENT_TAGS = (
    "script",
    "style",
    "iframe",
    "object",
    "embed",
    "noscript",
    "noembed",
    "noframes",
    "template",
    "textarea",
    "title",
    "xmp",
)

_COMMENT_RE = re.compile(r"<!--[\s\S]*?(?:-->|\Z)")
_RAW_CONTENT_RE = re.compile(
    r"<(?P<tag>" + "|".join(_RAW_CONTENT_TAGS) + r")\b[\s\S]*?(?:</(?P=tag)\s*>|\Z)",
    re.IGNORECASE,
)
# Quoted attribute values may contain ">"; an unterminated tag runs to the end.
_TAG_RE = re.compile(
    r"</?[A-Za-z][^\s/>]*(?:\"[^\"]*\"?|'[^']*'?|[^>\"'])*>?"
)
_DECL_RE = re.compile(r"<[!?/][^>]*>?")

_ESCAPES = str.maketrans({
    "&": "&amp;",
    '"': "&quot;",
    "'": "&#x27;",
    "<": "&lt;",
    ">": "&gt;",
    "/": "&#x2F;",
    "\\": "&#x5C;",
    "`": "&#96;",
})

_WILDCARD_RE = re.compile(r"[%_]")
_PATTERN_SPECIALS_RE = re.compile(r"[.*+?^${}()|\[\]\\]")

DANGEROUS_KEY_PARTS = ("__proto__", "constructor", "prototype")


class InvalidInput(ValueError):
    """Raised when a value cannot be made safe and must be rejected."""


def remove_null_bytes(value: str) -> str:
    return value.replace("\x00", "")


def strip_markup(value: str) -> str:
    """Drop every tag, comment and script-like element body from ``value``."""
    text = _COMMENT_RE.sub("", value)
    text = _RAW_CONTENT_RE.sub("", text)
    text = _TAG_RE.sub("", text)
    return _DECL_RE.sub("", text)


def escape_html(value: str) -> str:
    return value.translate(_ESCAPES)


def sanitize_string(
    value: Any,
    *,
    max_length: int | None = None,
    trim: bool = True,
    lower: bool = False,
    upper: bool = False,
    remove_special_chars: bool = False,
    allowed_special_chars: str = "",
) -> str:
    """Clean an untrusted string. Never fails: non-strings become ``""``.

    Length is enforced by truncation, before escaping.
    """
    if not isinstance(value, str):
        return ""

    text = strip_markup(remove_null_bytes(value))
    if trim:
        text = text.strip()
    if max_length and len(text) > max_length:
        text = text[:max_length]
    if remove_special_chars:
        allowed = re.escape(allowed_special_chars)
        text = re.sub(rf"[^a-zA-Z0-9\s{allowed}]", "", text)
    if lower:
        text = text.lower()
    elif upper:
        text = text.upper()
    return escape_html(text)


def sanitize_search_query(query: Any) -> str:
    """Sanitize a free-text search term for substring matching. Never fails."""
    if not isinstance(query, str):
        return ""
    text = sanitize_string(query, max_length=100, trim=True)
    text = _WILDCARD_RE.sub("", text)
    return _PATTERN_SPECIALS_RE.sub(lambda m: "\\" + m.group(0), text)


def sanitize_sort_field(field: Any, allowed_fields: Iterable[str]) -> str:
    allowed = list(allowed_fields)
    if not isinstance(field, str):
        raise InvalidInput("Sort field must be a string")
    value = field.strip()
    if value not in allowed:
        raise InvalidInput(f"Invalid sort field. Allowed fields: {', '.join(allowed)}")
    return value


def sanitize_sort_order(order: Any) -> str:
    """Return ``asc`` or ``desc``; anything else falls back to ``desc``."""
    if not isinstance(order, str):
        return "desc"
    value = order.strip().lower()
    if value not in ("asc", "desc"):
        return "desc"
    return value


def sanitize_number(
    value: Any,
    *,
    min_value: float | None = None,
    max_value: float | None = None,
    is_int: bool = False,
) -> int | float:
    if isinstance(value, bool) or value is None:
        raise InvalidInput("Invalid number")
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError as exc:
            raise InvalidInput("Invalid number") from exc
    else:
        raise InvalidInput("Invalid number")

    if isinstance(number, float) and math.isnan(number):
        raise InvalidInput("Invalid number")
    if is_int and not float(number).is_integer():
        raise InvalidInput("Must be an integer")
    if min_value is not None and number < min_value:
        raise InvalidInput(f"Number must be at least {min_value}")
    if max_value is not None and number > max_value:
        raise InvalidInput(f"Number must be at most {max_value}")

    if is_int:
        return int(number)
    return number


def sanitize_id(value: Any) -> str:
    if not isinstance(value, str):
        raise InvalidInput("ID must be a string")
    candidate = value.strip()
    if not ID_RE.match(candidate):
        raise InvalidInput("Invalid ID format")
    return candidate


def sanitize_array(
    value: Any,
    item_sanitizer: Callable[[Any], T],
    *,
    max_length: int | None = None,
    unique: bool = False,
) -> list[T]:
    """Map ``item_sanitizer`` over a list. Non-lists become ``[]``."""
    if not isinstance(value, list):
        return []
    items = [item_sanitizer(item) for item in value]
    if unique:
        items = list(dict.fromkeys(items))
    if max_length and len(items) > max_length:
        items = items[:max_length]
    return items


def sanitize_object(value: Any, allowed_keys: Iterable[str]) -> dict[str, Any]:
    """Copy allow-listed keys into a fresh dict, never copying prototype-like keys."""
    if not isinstance(value, Mapping):
        return {}
    cleaned: dict[str, Any] = {}
    for key in allowed_keys:
        if any(part in key for part in DANGEROUS_KEY_PARTS):
            continue
        if key in value:
            cleaned[key] = value[key]
    return cleaned

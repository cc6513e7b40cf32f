"""Recursive input sanitizers shared by the request sanitizer stages."""

from __future__ import annotations

import re
from typing import Any

# Control characters (C0, DEL, C1, line/paragraph separators, bidi
# overrides, BOM) stripped from values before they reach log lines.
CONTROL_CHARS_RE = re.compile(
    r"[\x00-\x1f\x7f-\x9f\u2028\u2029\u200b-\u200f\u202a-\u202e\u2066-\u2069\ufeff]"
)

OPERATOR_PREFIX = "$"


def strip_control_chars(value: str) -> str:
    """Strip all control characters from a string."""
    return CONTROL_CHARS_RE.sub("", value)


def is_operator_key(key: Any) -> bool:
    """Keys a document store would read as an operator or a dotted field path."""
    return isinstance(key, str) and (key.startswith(OPERATOR_PREFIX) or "." in key)


def strip_operator_keys(value: Any, removed: list[str] | None = None, _path: str = "") -> Any:
    """Return a copy of ``value`` with operator-like keys removed at every depth.

    Removed key paths are appended to ``removed`` when given.
    """
    if isinstance(value, dict):
        cleaned = {}
        for key, item in value.items():
            key_path = f"{_path}.{key}" if _path else str(key)
            if is_operator_key(key):
                if removed is not None:
                    removed.append(key_path)
                continue
            cleaned[key] = strip_operator_keys(item, removed, key_path)
        return cleaned
    if isinstance(value, list):
        return [strip_operator_keys(item, removed, f"{_path}[{i}]") for i, item in enumerate(value)]
    return value


def escape_markup(value: Any) -> Any:
    """Neutralise embedded markup: every ``<`` becomes ``&lt;`` and strings are trimmed."""
    if isinstance(value, str):
        return value.replace("<", "&lt;").strip()
    if isinstance(value, dict):
        return {key: escape_markup(item) for key, item in value.items()}
    if isinstance(value, list):
        return [escape_markup(item) for item in value]
    return value

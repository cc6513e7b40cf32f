"""Nested query-string parsing.

Supports bracket notation so filters such as ``duration[gte]=5`` arrive as
``{"duration": {"gte": "5"}}`` and repeated keys arrive as lists. Used for
both the URL query and url-encoded request bodies.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import unquote_plus

_BRACKET_RE = re.compile(r"\[([^\[\]]*)\]")

# Numeric indices above this stay dict keys instead of becoming list slots
ARRAY_LIMIT = 20


def _array_index(key: str) -> int | None:
    """Return ``key`` as a list index, or None for anything but a short ASCII number."""
    if key.isascii() and key.isdigit() and len(key) <= len(str(ARRAY_LIMIT)):
        index = int(key)
        if index <= ARRAY_LIMIT:
            return index
    return None


def split_key(key: str, depth: int = 5) -> list[str]:
    """Split ``a[b][]`` into ``["a", "b", ""]``, keeping at most ``depth`` bracket segments."""
    start = key.find("[")
    if start <= 0:
        return [key]
    parts = [key[:start]]
    pos = start
    for match in _BRACKET_RE.finditer(key, start):
        if match.start() != pos or len(parts) > depth:
            break
        parts.append(match.group(1))
        pos = match.end()
    if pos < len(key):
        # Unparsed remainder is kept verbatim as a final segment
        parts.append(key[pos:])
    return parts


def _assign(container: dict[str, Any], path: list[str], value: str) -> None:
    key = path[0]
    if len(path) == 1 or (len(path) == 2 and path[1] == ""):
        push = len(path) == 2
        existing = container.get(key)
        if existing is None:
            container[key] = [value] if push else value
        elif isinstance(existing, list):
            existing.append(value)
        elif isinstance(existing, dict):
            # Conflicting shapes: the nested form wins
            return
        else:
            container[key] = [existing, value]
        return

    child = container.get(key)
    if child is None:
        child = container[key] = {}
    elif not isinstance(child, dict):
        return
    _assign(child, path[1:], value)


def _compact(value: Any) -> Any:
    """Turn dicts keyed by small integers into lists ordered by index."""
    if not isinstance(value, dict):
        return value
    compacted = {k: _compact(v) for k, v in value.items()}
    if compacted and all(_array_index(k) is not None for k in compacted):
        return [compacted[k] for k in sorted(compacted, key=_array_index)]
    return compacted


def parse_query(query: str, parameter_limit: int = 1000, depth: int = 5) -> dict[str, Any]:
    """Parse a query string (or url-encoded body) into nested dicts and lists.

    Parameters past ``parameter_limit`` are ignored.
    """
    result: dict[str, Any] = {}
    if not query:
        return result
    pairs = [p for p in query.split("&") if p][:parameter_limit]
    for pair in pairs:
        raw_key, _, raw_value = pair.partition("=")
        key = unquote_plus(raw_key)
        if not key:
            continue
        _assign(result, split_key(key, depth), unquote_plus(raw_value))
    return {k: _compact(v) for k, v in result.items()}


def count_parameters(query: str) -> int:
    return sum(1 for p in query.split("&") if p)

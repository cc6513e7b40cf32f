"""Pure-function CSP (Content-Security-Policy) utilities."""

from __future__ import annotations


def parse_csp(csp_string: str) -> dict[str, list[str]]:
    """Parse a CSP string into {directive: [values]} dict.

    Example:
        >>> parse_csp("default-src 'self'; script-src 'self' https:")
        {"default-src": ["'self'"], "script-src": ["'self'", "https:"]}
    """
    result: dict[str, list[str]] = {}
    if not csp_string or not csp_string.strip():
        return result
    for part in csp_string.split(";"):
        tokens = part.split()
        if not tokens:
            continue
        result[tokens[0].lower()] = tokens[1:]
    return result


def merge_csp(base: dict[str, list[str]], override: dict[str, list[str]]) -> dict[str, list[str]]:
    """Overlay directives on a base policy.

    A directive present in ``override`` replaces the base directive of the
    same name; values are deduplicated keeping first occurrence. Base
    directive order is preserved, new directives are appended.
    """
    merged = {directive: list(values) for directive, values in base.items()}
    for directive, values in override.items():
        merged[directive.lower()] = list(dict.fromkeys(values))
    return merged


def build_csp(directives: dict[str, list[str]]) -> str:
    """Build a CSP string from {directive: [values]} dict.

    Example:
        >>> build_csp({"default-src": ["'self'"], "script-src": ["'self'", "https:"]})
        "default-src 'self'; script-src 'self' https:"
    """
    parts = []
    for directive, values in directives.items():
        if values:
            parts.append(f"{directive} {' '.join(values)}")
        else:
            parts.append(directive)
    return "; ".join(parts)

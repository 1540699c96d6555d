"""
Log Sanitizer for Secret Masking

Removes credentials from log entries before they reach any sink.

Two passes are applied to every entry:
    1. String masking - Postman API keys are partially masked and quoted
       password/secret/token values are replaced with a placeholder.
    2. Key redaction - any mapping key listed in the excluded headers
       (exact, case-insensitive match) has its whole value replaced.

All functions are pure: they return sanitized copies and never touch the
caller's objects.

Usage:
    from governance_collector.core.sanitizer import sanitize_log_entry

    safe_entry = sanitize_log_entry(
        {"message": "Using PMAK-abcd1234efgh5678ijkl9999", "headers": {"authorization": "Bearer xyz"}},
        mask_api_keys=True,
        exclude_headers=["authorization"],
    )
"""

import re
from collections.abc import Iterable, Mapping
from typing import Any

REDACTED = "[REDACTED]"
MASK_TOKEN = "****"
TRUNCATED = "[TRUNCATED]"
CIRCULAR = "[CIRCULAR]"

# Nesting deeper than this is replaced rather than walked
MAX_DEPTH = 64

POSTMAN_API_KEY_PATTERN = re.compile(r"PMAK-[a-zA-Z0-9-]{20,}")

# Quoted key followed by a quoted word value, e.g. "password":"hunter2"
SENSITIVE_FIELD_PATTERN = re.compile(r"(password|secret|token)['\":\s]*['\"]\w+['\"]", re.IGNORECASE)


def _mask_api_key(match: re.Match) -> str:
    key = match.group(0)
    return f"{key[:8]}{MASK_TOKEN}{key[-4:]}"


def mask_sensitive_data(value: Any) -> Any:
    """
    Mask secrets inside a single string.

    Non-string values are returned unchanged. Already-masked text is left as
    is, so the function can be applied any number of times.

    Args:
        value: Value to mask

    Returns:
        Masked string, or the original value if it is not a string

    Example:
        >>> mask_sensitive_data("key=PMAK-abcd1234efgh5678ijkl9999")
        'key=PMAK-abc****9999'
        >>> mask_sensitive_data('{"password":"hunter2"}')
        '{"password":"[REDACTED]"}'
    """
    if not isinstance(value, str):
        return value

    masked = POSTMAN_API_KEY_PATTERN.sub(_mask_api_key, value)
    return SENSITIVE_FIELD_PATTERN.sub(lambda m: f'{m.group(1)}":"{REDACTED}"', masked)


def normalize_header_names(headers: Iterable[Any] | None) -> frozenset[str]:
    """Lowercase the configured header names, ignoring non-strings."""
    if not headers or isinstance(headers, str):
        return frozenset()
    return frozenset(h.lower() for h in headers if isinstance(h, str))


def sanitize_object(
    value: Any,
    exclude_headers: Iterable[str] | None = None,
    max_depth: int = MAX_DEPTH,
) -> Any:
    """
    Return a sanitized deep copy of a nested structure.

    Strings are masked with mask_sensitive_data(). Mapping keys whose
    lowercase name appears in exclude_headers get the value [REDACTED]
    regardless of type. Containers nested deeper than max_depth become
    [TRUNCATED] and reference cycles become [CIRCULAR].

    Args:
        value: Mapping, list, tuple, string or scalar
        exclude_headers: Header names to redact wholesale
        max_depth: Maximum container nesting to walk

    Returns:
        Sanitized copy (scalars other than strings are returned as is)
    """
    excluded = normalize_header_names(exclude_headers)
    return _sanitize(value, excluded, max_depth, 0, set())


def _sanitize(value: Any, excluded: frozenset[str], max_depth: int, depth: int, seen: set[int]) -> Any:
    if isinstance(value, str):
        return mask_sensitive_data(value)

    if not isinstance(value, (Mapping, list, tuple, set)):
        return value

    if depth >= max_depth:
        return TRUNCATED

    marker = id(value)
    if marker in seen:
        return CIRCULAR
    seen.add(marker)

    try:
        if isinstance(value, Mapping):
            result: dict[Any, Any] = {}
            for key, item in value.items():
                if isinstance(key, str) and key.lower() in excluded:
                    result[key] = REDACTED
                else:
                    result[key] = _sanitize(item, excluded, max_depth, depth + 1, seen)
            return result

        return [_sanitize(item, excluded, max_depth, depth + 1, seen) for item in value]
    finally:
        seen.discard(marker)


def sanitize_log_entry(
    entry: Mapping[str, Any],
    mask_api_keys: bool = True,
    exclude_headers: Iterable[str] | None = None,
) -> dict[str, Any]:
    """
    Sanitize a complete log entry.

    Args:
        entry: Log entry with level, message, timestamp and metadata
        mask_api_keys: When False the entry is copied without masking
        exclude_headers: Header names whose values are redacted

    Returns:
        New sanitized entry dictionary
    """
    if not mask_api_keys:
        return dict(entry)

    sanitized = sanitize_object(entry, exclude_headers)
    if isinstance(sanitized, dict):
        return sanitized
    return {"message": REDACTED}

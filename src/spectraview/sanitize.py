"""
Scrubbing of common PII patterns from custom-event payloads.

Works on a deep copy and walks dicts, lists and tuples recursively, rewriting
every string it finds:

- card numbers   -> ``[CARD]``
- US SSNs        -> ``[SSN]``
- email addresses -> ``[EMAIL]``
- phone numbers  -> ``[PHONE]``

Keys are left alone; only values are rewritten.
"""

import copy
import re
from typing import Any, Callable, List, Tuple

Sanitizer = Callable[[Any], Any]

# Order matters: card numbers before phone numbers (a card contains phone-like runs).
DEFAULT_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"), "[CARD]"),
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "[SSN]"),
    (re.compile(r"[\w.-]+@[\w.-]+\.\w+"), "[EMAIL]"),
    (re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"), "[PHONE]"),
]


def sanitize_string(value: str, patterns: List[Tuple[re.Pattern, str]] = DEFAULT_PATTERNS) -> str:
    for regex, replacement in patterns:
        value = regex.sub(replacement, value)
    return value


def sanitize(data: Any, patterns: List[Tuple[re.Pattern, str]] = DEFAULT_PATTERNS) -> Any:
    """Return a scrubbed deep copy of ``data``.

    Examples:
        >>> sanitize({"contact": "jane@example.com", "n": 3})
        {'contact': '[EMAIL]', 'n': 3}
    """
    if not data:
        return data
    return _sanitize_value(copy.deepcopy(data), patterns)


def _sanitize_value(value: Any, patterns) -> Any:
    if isinstance(value, str):
        return sanitize_string(value, patterns)
    if isinstance(value, dict):
        return {k: _sanitize_value(v, patterns) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize_value(v, patterns) for v in value]
    return value

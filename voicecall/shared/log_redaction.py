"""Log redaction utilities for transport payloads.

Raw transport events can carry SDK keys, call tokens and user speech.
Everything headed for a log or the diagnostics sink passes through here.
"""

import re
from typing import Any, Dict, Optional

# Long utterance text is clipped; diagnostics only need the shape.
MAX_TEXT_CHARS = 120

# Patterns for sensitive data
_REDACTION_PATTERNS = [
    # API keys / tokens
    (re.compile(r'sk-[a-zA-Z0-9_-]{20,}'), '[REDACTED:api_key]'),
    (re.compile(r'\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b'), '[REDACTED:uuid]'),
    (re.compile(r'eyJ[a-zA-Z0-9_-]{10,}\.[a-zA-Z0-9_-]{10,}\.[a-zA-Z0-9_-]+'), '[REDACTED:jwt]'),
    # Generic bearer tokens
    (re.compile(r'Bearer\s+[a-zA-Z0-9._-]{20,}'), 'Bearer [REDACTED]'),
    # Email addresses
    (re.compile(r'[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}'), '[REDACTED:email]'),
    # Credit card numbers (basic)
    (re.compile(r'\b\d{4}[- ]?\d{4}[- ]?\d{4}[- ]?\d{4}\b'), '[REDACTED:cc]'),
    # Phone numbers (US format)
    (re.compile(r'\b(?:\+1)?[\s.-]?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}\b'), '[REDACTED:phone]'),
]

DEFAULT_SENSITIVE_KEYS = frozenset({
    "password", "secret", "token", "api_key", "apikey",
    "authorization", "cookie", "public_key", "publickey",
    "private_key", "access_key", "secret_key", "webcallurl",
})


def redact_string(text: str, max_chars: Optional[int] = MAX_TEXT_CHARS) -> str:
    """Redact sensitive patterns from a string, then clip it."""
    if not isinstance(text, str):
        return text
    result = text
    for pattern, replacement in _REDACTION_PATTERNS:
        result = pattern.sub(replacement, result)
    if max_chars is not None and len(result) > max_chars:
        result = result[:max_chars] + f"...(+{len(result) - max_chars} chars)"
    return result


def redact_value(value: Any, sensitive_keys: frozenset = DEFAULT_SENSITIVE_KEYS) -> Any:
    """Redact any JSON-like value (dict, list, string, scalar)."""
    if isinstance(value, dict):
        return redact_dict(value, sensitive_keys)
    if isinstance(value, (list, tuple)):
        return [redact_value(item, sensitive_keys) for item in value]
    if isinstance(value, str):
        return redact_string(value)
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return redact_string(repr(value))


def redact_dict(data: Dict[str, Any], sensitive_keys: frozenset = DEFAULT_SENSITIVE_KEYS) -> Dict[str, Any]:
    """Redact sensitive values from a dictionary.

    Args:
        data: Dictionary to redact
        sensitive_keys: Key names (lowercase substrings) whose values are fully redacted
    """
    result = {}
    for key, value in data.items():
        key_lower = str(key).lower()
        if any(sk in key_lower for sk in sensitive_keys):
            result[key] = "[REDACTED]"
        else:
            result[key] = redact_value(value, sensitive_keys)
    return result

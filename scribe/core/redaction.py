from __future__ import annotations

import re
from typing import Any, Callable, List, Tuple, Union

MASK = "***REDACTED***"

# matched against the lower-cased key, either exactly or as a `_<name>` suffix
# ("openai_api_key" is sensitive, "tokens_processed" is not)
SENSITIVE_KEYS = ("password", "secret", "token", "api_key", "apikey", "access_token", "authorization")

_Replacement = Union[str, Callable[["re.Match[str]"], str]]

# applied in order; the bearer rule runs first so "Authorization: Bearer x" loses the whole credential
_INLINE_RULES: List[Tuple["re.Pattern[str]", _Replacement]] = [
    (re.compile(r"(?i)\bBearer\s+[A-Za-z0-9\-\._~\+/]+=*"), f"Bearer {MASK}"),
    (
        re.compile(r"(?i)\b(api[_-]?key|token|secret|password|authorization)\b\s*[:=]\s*[^\s,;]+"),
        lambda m: f"{m.group(1)}={MASK}",
    ),
    # provider keys quoted back in AI-service error text
    (re.compile(r"\bsk-[A-Za-z0-9\-_]{8,}"), MASK),
]


def is_sensitive_key(key: Any) -> bool:
    k = str(key).lower()
    return any(k == name or k.endswith("_" + name) for name in SENSITIVE_KEYS)


def scrub_text(text: str) -> str:
    for pattern, repl in _INLINE_RULES:
        text = pattern.sub(repl, text)
    return text


def redact_by_key(obj: Any) -> Any:
    """Mask values stored under sensitive keys; strings are left as they are."""
    if isinstance(obj, dict):
        return {k: (MASK if is_sensitive_key(k) else redact_by_key(v)) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return type(obj)(redact_by_key(x) for x in obj)
    return obj


def telemetry_redact(obj: Any) -> Any:
    """Key masking plus inline scrubbing of every string, at any depth."""
    if isinstance(obj, str):
        return scrub_text(obj)
    if isinstance(obj, dict):
        return {k: (MASK if is_sensitive_key(k) else telemetry_redact(v)) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return type(obj)(telemetry_redact(x) for x in obj)
    return obj

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from scribe.core.redaction import redact_by_key


class Severity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @classmethod
    def overall(cls, critical_count: int, warning_count: int) -> "Severity":
        if critical_count > 0:
            return cls.CRITICAL
        if warning_count > 0:
            return cls.WARNING
        return cls.INFO


@dataclass
class ScribeError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact_by_key(self.context or {}),
        }


class ConfigError(ScribeError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)

from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from scribe.core.errors import ConfigError


class SamplerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    interval_seconds: float = Field(default=10.0, gt=0.0)
    cpu_warning_percent: float = Field(default=70.0, ge=0.0, le=100.0)
    cpu_critical_percent: float = Field(default=85.0, ge=0.0, le=100.0)
    memory_warning_percent: float = Field(default=75.0, ge=0.0, le=100.0)
    memory_critical_percent: float = Field(default=90.0, ge=0.0, le=100.0)
    alert_cooldown_seconds: float = Field(default=300.0, ge=0.0)
    memory_limit_mb: Optional[float] = Field(default=None, gt=0.0)  # None -> total physical memory
    recent_alerts: int = Field(default=100, ge=1, le=10_000)

    @model_validator(mode="after")
    def _ladders_ordered(self) -> "SamplerConfig":
        if self.cpu_warning_percent > self.cpu_critical_percent:
            raise ValueError("cpu_warning_percent must not exceed cpu_critical_percent")
        if self.memory_warning_percent > self.memory_critical_percent:
            raise ValueError("memory_warning_percent must not exceed memory_critical_percent")
        return self


class ErrorTrackerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    analysis_interval_seconds: float = Field(default=300.0, gt=0.0)
    retention_seconds: float = Field(default=24 * 3600.0, gt=0.0)
    trend_window_seconds: float = Field(default=3600.0, gt=0.0)
    rate_warning_threshold: float = Field(default=0.05, ge=0.0)
    rate_critical_threshold: float = Field(default=0.10, ge=0.0)
    high_frequency_threshold: int = Field(default=10, ge=1)
    pattern_component_threshold: int = Field(default=2, ge=1)  # error type in more than N components


class CoordinatorConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    export_interval_seconds: float = Field(default=60.0, gt=0.0)
    error_rate_warning_threshold: float = Field(default=0.05, ge=0.0)
    error_rate_critical_threshold: float = Field(default=0.10, ge=0.0)
    export_path: Optional[str] = None  # JSONL sink; None -> log sink only


class HealthConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_workers: int = Field(default=8, ge=1, le=64)
    probe_timeout_seconds: Optional[float] = Field(default=10.0, gt=0.0)  # None -> wait for every probe
    stale_sample_seconds: float = Field(default=60.0, gt=0.0)


class TelemetryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    scheduler_workers: int = Field(default=3, ge=1, le=32)
    sampler: SamplerConfig = Field(default_factory=SamplerConfig)
    errors: ErrorTrackerConfig = Field(default_factory=ErrorTrackerConfig)
    coordinator: CoordinatorConfig = Field(default_factory=CoordinatorConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)


def load_telemetry_config(path: Optional[str] = None, *, overrides: Optional[Dict[str, Any]] = None) -> TelemetryConfig:
    """
    Load telemetry config from a JSON object file.

    A missing file yields defaults; a corrupt or invalid file raises ConfigError.
    """
    data: Dict[str, Any] = {}
    if path and os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                obj = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError("Telemetry config is not valid JSON.", path=path, error=str(e)) from e
        except OSError as e:
            raise ConfigError("Telemetry config could not be read.", path=path, error=str(e)) from e
        if not isinstance(obj, dict):
            raise ConfigError("Telemetry config must be a JSON object.", path=path)
        data = obj
    if overrides:
        data = _merge(data, overrides)
    try:
        return TelemetryConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError("Telemetry config is invalid.", path=path, error=str(e)) from e


def _merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in extra.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out

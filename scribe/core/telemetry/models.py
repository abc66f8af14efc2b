from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from scribe.core.errors import Severity


class OperationCategory(str, Enum):
    AUDIO = "AUDIO"
    TRANSCRIPTION = "TRANSCRIPTION"
    AI_SERVICE = "AI_SERVICE"
    SYSTEM = "SYSTEM"
    STORAGE = "STORAGE"


class HealthStatus(str, Enum):
    UP = "UP"
    WARNING = "WARNING"
    DOWN = "DOWN"


class SystemHealth(str, Enum):
    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class MonitoredQuantity(str, Enum):
    CPU = "CPU"
    MEMORY = "MEMORY"


# ---- Sample Recorder ----
class OperationMetrics(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    operation_name: str
    execution_count: int = 0
    total_duration_ms: float = 0.0
    average_duration_ms: float = 0.0
    last_execution_at: Optional[float] = None


class ComponentMetrics(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    category: str
    total_operations: int = 0
    total_duration_ms: float = 0.0
    average_duration_ms: float = 0.0
    operations: Dict[str, OperationMetrics] = Field(default_factory=dict)
    latency: Dict[str, float] = Field(default_factory=dict)  # {count,min,max,avg,p50,p95} over recent window


class PerformanceSummary(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    components: Dict[str, ComponentMetrics] = Field(default_factory=dict)
    total_operations: int = 0
    memory_usage_mb: float = 0.0
    cpu_usage_percent: float = 0.0

    @property
    def health_status(self) -> SystemHealth:
        if self.memory_usage_mb > 1000 or self.cpu_usage_percent > 80:
            return SystemHealth.CRITICAL
        if self.memory_usage_mb > 500 or self.cpu_usage_percent > 60:
            return SystemHealth.WARNING
        return SystemHealth.HEALTHY

    def average_for(self, category: str) -> float:
        cm = self.components.get(str(category))
        return cm.average_duration_ms if cm is not None else 0.0


# ---- System Sampler ----
class SystemSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    sampled_at: Optional[float] = None  # wall clock of the probe; None until the first successful tick
    cpu_percent: float = 0.0
    heap_used_mb: float = 0.0
    heap_used_percent: float = 0.0
    non_heap_mb: float = 0.0
    thread_count: int = 0
    peak_thread_count: int = 0
    uptime_seconds: float = 0.0
    sample_age_seconds: float = 0.0
    health: SystemHealth = SystemHealth.HEALTHY
    gauges: Dict[str, float] = Field(default_factory=dict)

    def is_stale(self, max_age_seconds: float) -> bool:
        return self.sampled_at is None or self.sample_age_seconds > float(max_age_seconds)


@dataclass
class AlertState:
    active: bool = False
    last_alert_at: Optional[float] = None
    last_severity: Optional[Severity] = None


class AlertEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    ts: float = Field(default_factory=lambda: time.time())
    quantity: MonitoredQuantity
    severity: Severity
    value: float
    threshold: float
    message: str = ""


# ---- Error Tracker ----
class ErrorRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    component: str
    error_type: str
    message: str
    severity: Severity
    first_seen: float
    last_seen: float
    occurrence_count: int = 1

    @property
    def key(self) -> str:
        return f"{self.component}:{self.error_type}"


class ErrorStatistics(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    component: str
    total_errors: int = 0
    critical_errors: int = 0
    warning_errors: int = 0
    overall_severity: Severity = Severity.INFO

    def error_rate_percentage(self, total_operations: int) -> float:
        if total_operations <= 0:
            return 0.0
        return (float(self.total_errors) / float(total_operations)) * 100.0


class ErrorTrends(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    window_seconds: float
    total_errors: int = 0
    critical_errors: int = 0
    error_rate: float = 0.0  # occurrences per minute of window

    def is_concerning(self, *, rate_threshold: float = 0.05, critical_threshold: int = 5) -> bool:
        return self.error_rate >= rate_threshold or self.critical_errors >= critical_threshold


# ---- Health Registry ----
class HealthIndicatorResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    status: HealthStatus
    message: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)
    checked_at: float = Field(default_factory=lambda: time.time())
    latency_ms: Optional[float] = None


class OverallHealth(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    status: HealthStatus
    message: str
    checked_at: float = Field(default_factory=lambda: time.time())
    components: Dict[str, HealthIndicatorResult] = Field(default_factory=dict)
    total_components: int = 0
    healthy_components: int = 0


# ---- Telemetry Coordinator ----
class BusinessSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    meetings_processed: int = 0
    audio_chunks_processed: int = 0
    transcription_requests: int = 0
    ai_service_requests: int = 0
    ai_requests_by_model: Dict[str, int] = Field(default_factory=dict)
    custom_counters: Dict[str, int] = Field(default_factory=dict)
    custom_gauges: Dict[str, float] = Field(default_factory=dict)


class MetricsSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    assembled_at: float
    components: Dict[str, ComponentMetrics] = Field(default_factory=dict)
    system: SystemSnapshot = Field(default_factory=SystemSnapshot)
    errors: ErrorStatistics
    business: BusinessSnapshot = Field(default_factory=BusinessSnapshot)

    @property
    def overall_health(self) -> SystemHealth:
        return self.system.health

    @property
    def is_healthy(self) -> bool:
        return self.overall_health in {SystemHealth.HEALTHY, SystemHealth.WARNING}

from __future__ import annotations

import functools
import time
from typing import Any, Callable, Dict, List, Optional

from scribe.core.errors import Severity
from scribe.core.logger import component_logger
from scribe.core.telemetry.config import TelemetryConfig
from scribe.core.telemetry.coordinator import BusinessCounters, TelemetryCoordinator
from scribe.core.telemetry.error_tracker import OVERALL_COMPONENT, ErrorTracker
from scribe.core.telemetry.health_checks import HealthRegistry, ProbeLike, down, error_tracker_probe, system_resource_probe
from scribe.core.telemetry.models import (
    ErrorRecord,
    ErrorStatistics,
    ErrorTrends,
    HealthIndicatorResult,
    HealthStatus,
    MetricsSnapshot,
    OverallHealth,
    PerformanceSummary,
)
from scribe.core.telemetry.recorder import CategoryLike, MeasurementSpan, SampleRecorder, category_key
from scribe.core.telemetry.resources import ResourceReading, SystemSampler
from scribe.core.telemetry.scheduler import PeriodicScheduler
from scribe.core.telemetry.sinks import FanOutSink, JsonlFileSink, LoggingSink

SYSTEM_PROBE = "system"
ERRORS_PROBE = "errors"


class TelemetryManager:
    """
    Process-scoped telemetry pipeline.

    Owns one recorder, sampler, error tracker, health registry and
    coordinator, and drives the three cadences (sampling, export, error
    analysis) from one PeriodicScheduler. Construct once at startup and pass
    the instance to the services that report into it.

    Reporting calls are fire-and-forget and query calls never raise; the
    worst a query returns is a stale or DOWN view.
    """

    def __init__(
        self,
        *,
        cfg: Optional[TelemetryConfig] = None,
        logger=None,
        probe: Optional[Callable[[], ResourceReading]] = None,
        sink: Any = None,
        total_requests: Optional[Callable[[], int]] = None,
        now: Callable[[], float] = time.time,
        scheduler_clock: Callable[[], float] = time.monotonic,
    ):
        self.cfg = cfg or TelemetryConfig()
        self.logger = component_logger("manager", logger)

        self.recorder = SampleRecorder(logger=logger, now=now)
        self.sampler = SystemSampler(cfg=self.cfg.sampler, probe=probe, recorder=self.recorder, logger=logger, now=now)
        self.recorder.attach_gauge_sink(self.sampler.record_gauge)

        self.tracker = ErrorTracker(cfg=self.cfg.errors, total_operations=self.recorder.total_operations, logger=logger, now=now)

        self.health = HealthRegistry(cfg=self.cfg.health, logger=logger)
        self.health.register(SYSTEM_PROBE, system_resource_probe(self.sampler, stale_after_seconds=self.cfg.health.stale_sample_seconds))
        self.health.register(ERRORS_PROBE, error_tracker_probe(self.tracker))

        self.business = BusinessCounters()
        self.sink = sink if sink is not None else self._default_sink(logger)
        self.coordinator = TelemetryCoordinator(
            recorder=self.recorder,
            sampler=self.sampler,
            tracker=self.tracker,
            sink=self.sink,
            business=self.business,
            total_requests=total_requests,
            cfg=self.cfg.coordinator,
            logger=logger,
            now=now,
        )

        self.scheduler = PeriodicScheduler(max_workers=self.cfg.scheduler_workers, logger=logger, now=scheduler_clock)
        self.scheduler.schedule("system-sampler", self.cfg.sampler.interval_seconds, self.sampler.sample)
        self.scheduler.schedule(
            "metrics-export",
            self.cfg.coordinator.export_interval_seconds,
            self.coordinator.tick,
            initial_delay_seconds=self.cfg.coordinator.export_interval_seconds,
        )
        self.scheduler.schedule(
            "error-analysis",
            self.cfg.errors.analysis_interval_seconds,
            self.tracker.analyze,
            initial_delay_seconds=self.cfg.errors.analysis_interval_seconds,
        )

    def _default_sink(self, logger) -> Any:
        sinks: List[Any] = [LoggingSink(logger=logger)]
        if self.cfg.coordinator.export_path:
            sinks.append(JsonlFileSink(self.cfg.coordinator.export_path))
        return sinks[0] if len(sinks) == 1 else FanOutSink(sinks, logger=logger)

    # -------- lifecycle --------
    def start(self) -> None:
        if not self.cfg.enabled:
            self.logger.info("Telemetry disabled by config; scheduler not started")
            return
        self.scheduler.start()
        self.logger.info("Telemetry started")

    def stop(self, *, wait: bool = True) -> None:
        self.scheduler.shutdown(wait=wait)
        self.health.shutdown()
        self.logger.info("Telemetry stopped")

    def run_pending(self) -> int:
        """Run due cadences inline (used by tests and the one-shot CLI)."""
        return self.scheduler.run_pending()

    # -------- inbound reporting --------
    def begin_span(self, category: CategoryLike, operation_name: str) -> MeasurementSpan:
        return self.recorder.begin_span(category, operation_name)

    span = begin_span

    def complete(self, span: MeasurementSpan) -> bool:
        return self.recorder.complete(span)

    def record_error(self, component: str, error_type: str, message: str = "", severity: Any = Severity.ERROR) -> None:
        """Counts the error on the recorder and aggregates it in the error tracker."""
        try:
            self.recorder.record_error(component, error_type)
        except Exception as e:  # noqa: BLE001
            self.logger.debug(f"Error counter dropped: {e}")
        self.tracker.record_error(component, error_type, message, severity)

    def record_exception(self, component: str, exc: BaseException, severity: Any = Severity.ERROR) -> None:
        self.record_error(component, type(exc).__name__, str(exc) or repr(exc), severity)

    def monitored(self, category: CategoryLike, operation_name: Optional[str] = None) -> Callable:
        """Time each call under `category`; exceptions are recorded and re-raised."""
        key = category_key(category)

        def deco(fn: Callable) -> Callable:
            name = operation_name or getattr(fn, "__qualname__", getattr(fn, "__name__", "call"))

            @functools.wraps(fn)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                with self.recorder.begin_span(key, name):
                    try:
                        return fn(*args, **kwargs)
                    except Exception as e:
                        self.record_exception(key, e)
                        raise

            return wrapper

        return deco

    # -------- probe registration --------
    def register_probe(self, name: str, probe: ProbeLike) -> None:
        self.health.register(name, probe)

    def unregister_probe(self, name: str) -> bool:
        return self.health.unregister(name)

    # -------- query API --------
    def get_current_snapshot(self) -> MetricsSnapshot:
        return self.coordinator.latest()

    def get_overall_health(self) -> OverallHealth:
        try:
            return self.health.overall_health()
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"Error computing overall health: {e}")
            return OverallHealth(status=HealthStatus.DOWN, message=f"Health check system error: {e}")

    def get_component_health(self, name: str) -> HealthIndicatorResult:
        try:
            return self.health.evaluate(name)
        except Exception as e:  # noqa: BLE001
            return down(f"Health check failed: {e}")

    def get_error_statistics(self, component: Optional[str] = None) -> ErrorStatistics:
        try:
            if component is None:
                return self.tracker.overall_statistics()
            return self.tracker.statistics_for(component)
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"Error computing error statistics: {e}")
            return ErrorStatistics(component=component or OVERALL_COMPONENT)

    def get_trends(self, window_seconds: float) -> ErrorTrends:
        try:
            return self.tracker.trends(window_seconds)
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"Error computing error trends: {e}")
            return ErrorTrends(window_seconds=0.0)

    def get_most_frequent_errors(self, limit: int = 10) -> List[ErrorRecord]:
        return self.tracker.most_frequent(limit)

    def get_most_recent_errors(self, limit: int = 10) -> List[ErrorRecord]:
        return self.tracker.most_recent(limit)

    def get_performance_summary(self) -> PerformanceSummary:
        return self.recorder.performance_summary()

    def status(self) -> Dict[str, Any]:
        return {
            "enabled": bool(self.cfg.enabled),
            "scheduler_running": self.scheduler.running,
            "jobs": self.scheduler.jobs(),
            "probes": self.health.names(),
            "ticks": self.coordinator.ticks,
            "failed_ticks": self.coordinator.failed_ticks,
        }

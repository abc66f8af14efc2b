from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Optional

from scribe.core.errors import Severity
from scribe.core.logger import component_logger
from scribe.core.telemetry.config import CoordinatorConfig
from scribe.core.telemetry.models import BusinessSnapshot, ErrorStatistics, MetricsSnapshot, SystemSnapshot

ALERT_COMPONENT = "METRICS_ALERT"
ALERT_ERROR_TYPE = "HIGH_ERROR_RATE"


class BusinessCounters:
    """Application-level counters reported by the audio, transcription and AI services."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._meetings = 0
        self._audio_chunks = 0
        self._transcriptions = 0
        self._ai_requests = 0
        self._ai_by_model: Dict[str, int] = {}
        self._counters: Dict[str, int] = {}
        self._gauges: Dict[str, float] = {}

    def record_meeting_processed(self) -> None:
        with self._lock:
            self._meetings += 1

    def record_audio_chunk(self, count: int = 1) -> None:
        with self._lock:
            self._audio_chunks += max(0, int(count))

    def record_transcription_request(self) -> None:
        with self._lock:
            self._transcriptions += 1

    def record_ai_request(self, service: str, model: str = "") -> None:
        key = f"{service}:{model}" if model else str(service)
        with self._lock:
            self._ai_requests += 1
            self._ai_by_model[key] = self._ai_by_model.get(key, 0) + 1

    def record_counter(self, name: str, increment: int = 1) -> None:
        with self._lock:
            self._counters[str(name)] = self._counters.get(str(name), 0) + int(increment)

    def record_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[str(name)] = float(value)

    def total_requests(self) -> int:
        with self._lock:
            return self._transcriptions + self._ai_requests

    def snapshot(self) -> BusinessSnapshot:
        with self._lock:
            return BusinessSnapshot(
                meetings_processed=self._meetings,
                audio_chunks_processed=self._audio_chunks,
                transcription_requests=self._transcriptions,
                ai_service_requests=self._ai_requests,
                ai_requests_by_model=dict(self._ai_by_model),
                custom_counters=dict(self._counters),
                custom_gauges=dict(self._gauges),
            )


class TelemetryCoordinator:
    """
    Assemble-and-export loop.

    Every tick builds a fresh MetricsSnapshot from the recorder, sampler and
    error tracker, hands it to the sink, then checks the global error rate.
    Nothing is queued between ticks; a failed tick is logged and forgotten.

    total_requests must be a monotonically increasing counter. When it is not
    injected, transcription + AI requests from BusinessCounters are used.
    """

    def __init__(
        self,
        *,
        recorder: Any,
        sampler: Any,
        tracker: Any,
        sink: Any = None,
        business: Optional[BusinessCounters] = None,
        total_requests: Optional[Callable[[], int]] = None,
        cfg: Optional[CoordinatorConfig] = None,
        logger=None,
        now: Callable[[], float] = time.time,
    ):
        self.cfg = cfg or CoordinatorConfig()
        self.recorder = recorder
        self.sampler = sampler
        self.tracker = tracker
        self.sink = sink
        self.business = business or BusinessCounters()
        self._total_requests = total_requests or self.business.total_requests
        self.logger = component_logger("coordinator", logger)
        self._now = now

        self._lock = threading.Lock()
        self._latest: Optional[MetricsSnapshot] = None
        self._own_alerts = 0
        self.ticks = 0
        self.failed_ticks = 0

    def assemble_snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(
            assembled_at=self._now(),
            components=self.recorder.component_metrics(),
            system=self.sampler.current_snapshot(),
            errors=self.tracker.overall_statistics(),
            business=self.business.snapshot(),
        )

    def tick(self) -> Optional[MetricsSnapshot]:
        try:
            snap = self.assemble_snapshot()
            with self._lock:
                self._latest = snap
                self.ticks += 1
            self._export(snap.model_copy(deep=True))
            self.check_thresholds(snap)
            self.logger.debug(f"Metrics snapshot collected at {snap.assembled_at:.3f}")
            return snap.model_copy(deep=True)
        except Exception as e:  # noqa: BLE001
            with self._lock:
                self.failed_ticks += 1
            self.logger.error(f"Error collecting metrics: {e}", exc_info=True)
            return None

    def latest(self) -> MetricsSnapshot:
        """
        Last assembled snapshot; assembles one when no tick has run yet.

        Callers get their own deep copy, so the cached snapshot cannot be
        changed through a returned one.
        """
        with self._lock:
            snap = self._latest
        if snap is None:
            try:
                fresh = self.assemble_snapshot()
            except Exception as e:  # noqa: BLE001
                self.logger.error(f"Error assembling metrics snapshot: {e}")
                return MetricsSnapshot(
                    assembled_at=self._now(),
                    system=SystemSnapshot(),
                    errors=ErrorStatistics(component="APPLICATION"),
                )
            with self._lock:
                if self._latest is None:
                    self._latest = fresh
                snap = self._latest
        return snap.model_copy(deep=True)

    def global_error_rate(self, snap: MetricsSnapshot) -> Optional[float]:
        requests = int(self._total_requests())
        if requests <= 0:
            return None
        with self._lock:
            own = self._own_alerts
        # rate alerts recorded by this loop do not count towards the rate
        errors = max(0, snap.errors.total_errors - own)
        return errors / float(requests)

    def check_thresholds(self, snap: MetricsSnapshot) -> Optional[Severity]:
        rate = self.global_error_rate(snap)
        if rate is None:
            return None
        if rate > self.cfg.error_rate_critical_threshold:
            sev = Severity.CRITICAL
        elif rate > self.cfg.error_rate_warning_threshold:
            sev = Severity.WARNING
        else:
            return None
        msg = f"Error rate {rate * 100:.2f}% exceeds {sev.value.lower()} threshold"
        self.logger.warning(f"High error rate detected: {rate * 100:.2f}%")
        if self.tracker.record_error(ALERT_COMPONENT, ALERT_ERROR_TYPE, msg, sev) is not None:
            with self._lock:
                self._own_alerts += 1
        return sev

    def _export(self, snap: MetricsSnapshot) -> None:
        if self.sink is None:
            return
        try:
            self.sink.export(snap)
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"Metrics export failed: {e}", exc_info=True)

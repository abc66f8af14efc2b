from __future__ import annotations

import os
import threading
import time
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Callable, Deque, Dict, List, Optional

import psutil

from scribe.core.errors import Severity
from scribe.core.logger import component_logger
from scribe.core.telemetry.config import SamplerConfig
from scribe.core.telemetry.models import AlertEvent, AlertState, MonitoredQuantity, SystemHealth, SystemSnapshot

_MB = 1024.0 * 1024.0


@dataclass(frozen=True)
class ResourceReading:
    cpu_percent: float
    heap_used_bytes: int
    heap_used_percent: float
    non_heap_bytes: int
    thread_count: int
    uptime_seconds: float


class ResourceProbe:
    """
    Process resource probe backed by psutil.

    - cpu: process CPU load normalised to 0..100 across all cores
    - heap: resident set size, as MB and as a percentage of memory_limit_mb
      (or of total physical memory when no limit is configured)
    - non-heap: shared memory where the platform reports it, else 0
    """

    def __init__(self, *, memory_limit_mb: Optional[float] = None, process: Any = None):
        self.memory_limit_mb = memory_limit_mb
        self._proc = process if process is not None else psutil.Process(os.getpid())
        self._cpus = max(1, int(psutil.cpu_count() or 1))
        try:
            # prime cpu_percent; the first call always reports 0.0
            self._proc.cpu_percent(interval=None)
        except psutil.Error:
            pass

    def read(self) -> ResourceReading:
        cpu = float(self._proc.cpu_percent(interval=None)) / self._cpus
        mi = self._proc.memory_info()
        rss = int(mi.rss)
        if self.memory_limit_mb:
            limit = float(self.memory_limit_mb) * _MB
        else:
            limit = float(psutil.virtual_memory().total)
        pct = (rss / limit * 100.0) if limit > 0 else 0.0
        return ResourceReading(
            cpu_percent=min(100.0, max(0.0, cpu)),
            heap_used_bytes=rss,
            heap_used_percent=pct,
            non_heap_bytes=int(getattr(mi, "shared", 0) or 0),
            thread_count=int(self._proc.num_threads()),
            uptime_seconds=max(0.0, time.time() - float(self._proc.create_time())),
        )


class SystemSampler:
    """
    Periodic resource sampler with CPU/memory threshold ladders.

    Each tick replaces the published SystemSnapshot wholesale. Alerting is
    gated per quantity: while an alert is active, a repeat is only emitted
    once the cooldown has elapsed; dropping below WARNING clears the alert on
    the same tick.
    """

    def __init__(
        self,
        *,
        cfg: Optional[SamplerConfig] = None,
        probe: Optional[Callable[[], ResourceReading]] = None,
        recorder: Any = None,
        logger=None,
        now: Callable[[], float] = time.time,
    ):
        self.cfg = cfg or SamplerConfig()
        self.recorder = recorder
        self.logger = component_logger("sampler", logger)
        self._now = now
        self._probe = probe if probe is not None else ResourceProbe(memory_limit_mb=self.cfg.memory_limit_mb).read

        self._lock = threading.Lock()
        self._started_at = now()
        self._latest = SystemSnapshot()
        self._latest_at: Optional[float] = None
        self._peak_threads = 0
        self._gauges: Dict[str, float] = {}
        self._alerts: Dict[MonitoredQuantity, AlertState] = {q: AlertState() for q in MonitoredQuantity}
        self._recent_alerts: Deque[AlertEvent] = deque(maxlen=int(self.cfg.recent_alerts))

    # ---- gauge inputs ----
    def record_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[str(name)] = float(value)

    # ---- scheduled tick ----
    def sample(self) -> bool:
        now = self._now()
        try:
            reading = self._probe()
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"Error collecting system metrics: {e}", exc_info=True)
            if self.recorder is not None:
                self.recorder.record_error("SYSTEM_MONITOR", type(e).__name__)
            return False

        with self._lock:
            self._peak_threads = max(self._peak_threads, int(reading.thread_count))
            snap = SystemSnapshot(
                sampled_at=now,
                cpu_percent=float(reading.cpu_percent),
                heap_used_mb=reading.heap_used_bytes / _MB,
                heap_used_percent=float(reading.heap_used_percent),
                non_heap_mb=reading.non_heap_bytes / _MB,
                thread_count=int(reading.thread_count),
                peak_thread_count=self._peak_threads,
                uptime_seconds=float(reading.uptime_seconds),
                sample_age_seconds=0.0,
                health=self.classify(reading.cpu_percent, reading.heap_used_percent),
                gauges=dict(self._gauges),
            )
            self._latest = snap
            self._latest_at = now

        if self.recorder is not None:
            self.recorder.update_system_metrics(snap.heap_used_mb, snap.cpu_percent)
        self.logger.debug(f"System metrics collected: cpu={snap.cpu_percent:.2f}%, memory={snap.heap_used_mb:.1f}MB, threads={snap.thread_count}")

        for ev in self.evaluate_thresholds(snap.cpu_percent, snap.heap_used_percent, now=now):
            self._dispatch_alert(ev)
        return True

    def classify(self, cpu_percent: float, memory_percent: float) -> SystemHealth:
        c = self.cfg
        if cpu_percent >= c.cpu_critical_percent or memory_percent >= c.memory_critical_percent:
            return SystemHealth.CRITICAL
        if cpu_percent >= c.cpu_warning_percent or memory_percent >= c.memory_warning_percent:
            return SystemHealth.WARNING
        return SystemHealth.HEALTHY

    def evaluate_thresholds(self, cpu_percent: float, memory_percent: float, *, now: Optional[float] = None) -> List[AlertEvent]:
        """Run both threshold ladders; returns the alerts that passed cooldown gating."""
        ts = self._now() if now is None else float(now)
        c = self.cfg
        out: List[AlertEvent] = []
        for quantity, value, warn, crit in (
            (MonitoredQuantity.CPU, cpu_percent, c.cpu_warning_percent, c.cpu_critical_percent),
            (MonitoredQuantity.MEMORY, memory_percent, c.memory_warning_percent, c.memory_critical_percent),
        ):
            ev = self._check_ladder(quantity, float(value), warn, crit, ts)
            if ev is not None:
                out.append(ev)
        return out

    def _check_ladder(self, quantity: MonitoredQuantity, value: float, warn: float, crit: float, now: float) -> Optional[AlertEvent]:
        if value >= crit:
            severity, threshold = Severity.CRITICAL, crit
        elif value >= warn:
            severity, threshold = Severity.WARNING, warn
        else:
            with self._lock:
                self._alerts[quantity].active = False
            return None

        with self._lock:
            st = self._alerts[quantity]
            if st.active and st.last_alert_at is not None and (now - st.last_alert_at) <= float(self.cfg.alert_cooldown_seconds):
                return None
            st.active = True
            st.last_alert_at = now
            st.last_severity = severity
            label = "CPU" if quantity == MonitoredQuantity.CPU else "Memory"
            ev = AlertEvent(
                ts=now,
                quantity=quantity,
                severity=severity,
                value=value,
                threshold=threshold,
                message=f"{severity.value}: {label} usage exceeded threshold: {value:.2f}% >= {threshold}%",
            )
            self._recent_alerts.appendleft(ev)
            return ev

    def _dispatch_alert(self, ev: AlertEvent) -> None:
        if ev.severity == Severity.CRITICAL:
            self.logger.error(ev.message)
        else:
            self.logger.warning(ev.message)
        if self.recorder is not None:
            self.recorder.record_error(f"SYSTEM_{ev.quantity.value}", f"{ev.severity.value}_THRESHOLD_EXCEEDED")

    # ---- read API ----
    def current_snapshot(self) -> SystemSnapshot:
        """The last sampled snapshot, gauges included, with only its age refreshed."""
        now = self._now()
        with self._lock:
            snap = self._latest
            ref = self._latest_at if self._latest_at is not None else self._started_at
        return snap.model_copy(update={"sample_age_seconds": max(0.0, now - ref)}, deep=True)

    def alert_state(self, quantity: MonitoredQuantity) -> AlertState:
        with self._lock:
            return replace(self._alerts[quantity])

    def recent_alerts(self, n: int = 20) -> List[AlertEvent]:
        with self._lock:
            return list(self._recent_alerts)[: max(1, int(n))]

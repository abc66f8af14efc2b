from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from scribe.core.errors import Severity
from scribe.core.logger import component_logger
from scribe.core.redaction import telemetry_redact
from scribe.core.telemetry.config import ErrorTrackerConfig
from scribe.core.telemetry.models import ErrorRecord, ErrorStatistics, ErrorTrends

OVERALL_COMPONENT = "APPLICATION"


def coerce_severity(value: Any) -> Severity:
    if isinstance(value, Severity):
        return value
    try:
        return Severity(str(value).strip().upper())
    except ValueError:
        return Severity.ERROR


class ErrorTracker:
    """
    Keyed error aggregation by (component, error type).

    Records keep their first-seen instant and insertion position; repeats bump
    last-seen and the occurrence count. The global severity counters are
    monotonic and are not reduced by stale eviction.
    """

    def __init__(
        self,
        *,
        cfg: Optional[ErrorTrackerConfig] = None,
        total_operations: Optional[Callable[[], int]] = None,
        logger=None,
        now: Callable[[], float] = time.time,
    ):
        self.cfg = cfg or ErrorTrackerConfig()
        self.logger = component_logger("errors", logger)
        self._total_operations = total_operations
        self._now = now

        self._lock = threading.Lock()
        self._records: Dict[Tuple[str, str], ErrorRecord] = {}
        self._total = 0
        self._critical = 0
        self._warning = 0

    def set_total_operations_source(self, fn: Optional[Callable[[], int]]) -> None:
        self._total_operations = fn

    # ---- reporting ----
    def record_error(self, component: str, error_type: str, message: str = "", severity: Any = Severity.ERROR) -> Optional[ErrorRecord]:
        try:
            sev = coerce_severity(severity)
            comp = str(component or "UNKNOWN")
            etype = str(error_type or "UNKNOWN")
            msg = str(telemetry_redact(str(message or "")))
            now = self._now()
            k = (comp, etype)
            with self._lock:
                prev = self._records.get(k)
                if prev is None:
                    rec = ErrorRecord(component=comp, error_type=etype, message=msg, severity=sev, first_seen=now, last_seen=now, occurrence_count=1)
                else:
                    rec = prev.model_copy(update={"last_seen": max(prev.last_seen, now), "occurrence_count": prev.occurrence_count + 1})
                self._records[k] = rec
                self._total += 1
                if sev == Severity.CRITICAL:
                    self._critical += 1
                elif sev == Severity.WARNING:
                    self._warning += 1
        except Exception as e:  # noqa: BLE001
            self.logger.debug(f"Error record dropped: {e}")
            return None

        self.logger.error(
            f"Error tracked: {rec.component} - {rec.error_type} - {rec.message}",
            extra={"component": rec.component, "error_type": rec.error_type, "severity": sev.value, "occurrence_count": rec.occurrence_count},
        )
        self._immediate_alerts(rec)
        return rec

    def record_exception(self, component: str, exc: BaseException, severity: Any = Severity.ERROR) -> Optional[ErrorRecord]:
        return self.record_error(component, type(exc).__name__, str(exc) or repr(exc), severity)

    def _immediate_alerts(self, rec: ErrorRecord) -> None:
        if rec.severity == Severity.CRITICAL:
            self.logger.error(f"CRITICAL ERROR ALERT: {rec.component} - {rec.error_type} - {rec.message} (occurrences: {rec.occurrence_count})")
        if rec.occurrence_count >= int(self.cfg.high_frequency_threshold):
            self.logger.error(f"HIGH FREQUENCY ERROR ALERT: {rec.component} - {rec.error_type} has occurred {rec.occurrence_count} times")

    # ---- queries ----
    def records(self) -> List[ErrorRecord]:
        with self._lock:
            return list(self._records.values())

    def get(self, component: str, error_type: str) -> Optional[ErrorRecord]:
        with self._lock:
            return self._records.get((str(component), str(error_type)))

    def statistics_for(self, component: str) -> ErrorStatistics:
        total = critical = warning = 0
        for rec in self.records():
            if rec.component != component:
                continue
            total += rec.occurrence_count
            if rec.severity == Severity.CRITICAL:
                critical += rec.occurrence_count
            elif rec.severity == Severity.WARNING:
                warning += rec.occurrence_count
        return ErrorStatistics(component=component, total_errors=total, critical_errors=critical, warning_errors=warning, overall_severity=Severity.overall(critical, warning))

    def overall_statistics(self) -> ErrorStatistics:
        with self._lock:
            total, critical, warning = self._total, self._critical, self._warning
        return ErrorStatistics(component=OVERALL_COMPONENT, total_errors=total, critical_errors=critical, warning_errors=warning, overall_severity=Severity.overall(critical, warning))

    def trends(self, window_seconds: float) -> ErrorTrends:
        window = max(0.0, float(window_seconds))
        cutoff = self._now() - window
        total = critical = 0
        for rec in self.records():
            if rec.last_seen >= cutoff:
                total += rec.occurrence_count
                if rec.severity == Severity.CRITICAL:
                    critical += rec.occurrence_count
        minutes = window / 60.0
        rate = (total / minutes) if minutes > 0 else 0.0
        return ErrorTrends(window_seconds=window, total_errors=total, critical_errors=critical, error_rate=rate)

    def most_frequent(self, limit: int = 10) -> List[ErrorRecord]:
        # sorted() is stable, so ties keep insertion order
        return sorted(self.records(), key=lambda r: r.occurrence_count, reverse=True)[: max(0, int(limit))]

    def most_recent(self, limit: int = 10) -> List[ErrorRecord]:
        return sorted(self.records(), key=lambda r: r.last_seen, reverse=True)[: max(0, int(limit))]

    # ---- scheduled analysis ----
    def analyze(self) -> Dict[str, Any]:
        """One analysis pass: rate trend, cross-component patterns, stale eviction."""
        report: Dict[str, Any] = {"ok": True}
        try:
            self.logger.debug("Starting scheduled error analysis")
            report["error_rate"] = self.check_error_rate_trend()
            report["patterns"] = self.detect_patterns()
            report["evicted"] = self.evict_stale()
            self.logger.debug("Scheduled error analysis completed")
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"Error during scheduled error analysis: {e}", exc_info=True)
            report["ok"] = False
        return report

    def check_error_rate_trend(self) -> Optional[float]:
        trend = self.trends(self.cfg.trend_window_seconds)
        ops = int(self._total_operations()) if self._total_operations is not None else 0
        if ops <= 0:
            return None
        rate = trend.total_errors / float(ops)
        if rate >= self.cfg.rate_critical_threshold:
            self.logger.error(f"CRITICAL ERROR RATE ALERT: Error rate over last window: {rate * 100:.2f}%")
        elif rate >= self.cfg.rate_warning_threshold:
            self.logger.warning(f"WARNING ERROR RATE ALERT: Error rate over last window: {rate * 100:.2f}%")
        return rate

    def detect_patterns(self) -> Dict[str, int]:
        components_by_type: Dict[str, set] = {}
        for rec in self.records():
            components_by_type.setdefault(rec.error_type, set()).add(rec.component)
        patterns = {t: len(c) for t, c in components_by_type.items() if len(c) > int(self.cfg.pattern_component_threshold)}
        for etype, n in patterns.items():
            self.logger.warning(f"PATTERN ALERT: Error type {etype} occurs in {n} components")
        return patterns

    def evict_stale(self) -> int:
        cutoff = self._now() - float(self.cfg.retention_seconds)
        with self._lock:
            stale = [k for k, rec in self._records.items() if rec.last_seen < cutoff]
            for k in stale:
                del self._records[k]
        for comp, etype in stale:
            self.logger.debug(f"Removing old error entry: {comp}:{etype}")
        return len(stale)

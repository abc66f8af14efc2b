from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, List, Optional, Protocol, Union, runtime_checkable

from scribe.core.errors import Severity
from scribe.core.logger import component_logger
from scribe.core.redaction import telemetry_redact
from scribe.core.telemetry.config import HealthConfig
from scribe.core.telemetry.models import HealthIndicatorResult, HealthStatus, OverallHealth, SystemHealth


@runtime_checkable
class HealthProbe(Protocol):
    def evaluate(self) -> HealthIndicatorResult:
        ...


ProbeLike = Union[HealthProbe, Callable[[], HealthIndicatorResult]]


def up(message: str, *, details: Optional[Dict[str, Any]] = None) -> HealthIndicatorResult:
    return HealthIndicatorResult(status=HealthStatus.UP, message=message, details=telemetry_redact(details or {}))


def warning(message: str, *, details: Optional[Dict[str, Any]] = None) -> HealthIndicatorResult:
    return HealthIndicatorResult(status=HealthStatus.WARNING, message=message, details=telemetry_redact(details or {}))


def down(message: str, *, details: Optional[Dict[str, Any]] = None) -> HealthIndicatorResult:
    return HealthIndicatorResult(status=HealthStatus.DOWN, message=telemetry_redact(message), details=telemetry_redact(details or {}))


def aggregate_status(results: Dict[str, HealthIndicatorResult]) -> HealthStatus:
    statuses = [r.status for r in results.values()]
    if all(s == HealthStatus.UP for s in statuses):
        return HealthStatus.UP
    if any(s == HealthStatus.DOWN for s in statuses):
        return HealthStatus.DOWN
    return HealthStatus.WARNING


class HealthRegistry:
    """
    Named, independent health probes.

    Probes are stateless from the registry's point of view: every evaluation
    runs the probe again and nothing is cached between calls. A probe that
    raises is reported as DOWN for that probe only.
    """

    def __init__(self, *, cfg: Optional[HealthConfig] = None, logger=None):
        self.cfg = cfg or HealthConfig()
        self.logger = component_logger("health", logger)
        self._lock = threading.Lock()
        self._probes: Dict[str, Callable[[], HealthIndicatorResult]] = {}
        # runs that outlived their deadline still hold a worker until they return
        self._inflight: Dict[str, Future] = {}
        self._exec: Optional[ThreadPoolExecutor] = None

    def register(self, name: str, probe: ProbeLike) -> None:
        if isinstance(probe, HealthProbe):
            fn = probe.evaluate
        elif callable(probe):
            fn = probe
        else:
            raise ValueError("probe must be callable or expose evaluate()")
        with self._lock:
            self._probes[str(name)] = fn
        self.logger.debug(f"Registered health indicator for component: {name}")

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._probes.pop(str(name), None) is not None

    def names(self) -> List[str]:
        with self._lock:
            return list(self._probes.keys())

    def evaluate(self, name: str) -> HealthIndicatorResult:
        with self._lock:
            fn = self._probes.get(str(name))
        if fn is None:
            return down(f"Component not found: {name}")
        return self._run(str(name), fn)

    def evaluate_all(self) -> Dict[str, HealthIndicatorResult]:
        with self._lock:
            probes = list(self._probes.items())
        futures: Dict[str, Future] = {}
        results: Dict[str, HealthIndicatorResult] = {}
        for name, fn in probes:
            with self._lock:
                prev = self._inflight.get(name)
                if prev is not None and not prev.done():
                    results[name] = down("Health check still running from a previous evaluation")
                    continue
                try:
                    fut = self._executor().submit(self._run, name, fn)
                except RuntimeError as e:
                    results[name] = down(f"Health check system error: {e}")
                    continue
                self._inflight[name] = fut
            futures[name] = fut
            fut.add_done_callback(lambda f, n=name: self._forget(n, f))

        timeout = self.cfg.probe_timeout_seconds
        deadline = (time.monotonic() + float(timeout)) if timeout is not None else None
        for name, fut in futures.items():
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                results[name] = fut.result(timeout=remaining)
            except FutureTimeout:
                self.logger.error(f"Health check timed out for component: {name}")
                results[name] = down("Health check timeout", details={"timeout_seconds": timeout})
            except Exception as e:  # noqa: BLE001
                results[name] = down(f"Failed to get health check result: {e}")
        # keep registration order
        return {name: results[name] for name, _fn in probes if name in results}

    def overall_health(self) -> OverallHealth:
        results = self.evaluate_all()
        status = aggregate_status(results)
        return OverallHealth(
            status=status,
            message=f"Overall system health: {status.value}",
            components=results,
            total_components=len(results),
            healthy_components=sum(1 for r in results.values() if r.status == HealthStatus.UP),
        )

    def shutdown(self) -> None:
        """Release the worker pool. A later evaluate_all() starts a fresh one."""
        with self._lock:
            ex, self._exec = self._exec, None
            self._inflight.clear()
        if ex is not None:
            ex.shutdown(wait=False, cancel_futures=True)

    def _executor(self) -> ThreadPoolExecutor:
        # caller holds self._lock
        if self._exec is None:
            self._exec = ThreadPoolExecutor(max_workers=int(self.cfg.max_workers), thread_name_prefix="health-probe")
        return self._exec

    def _forget(self, name: str, fut: Future) -> None:
        with self._lock:
            if self._inflight.get(name) is fut:
                del self._inflight[name]

    def _run(self, name: str, fn: Callable[[], HealthIndicatorResult]) -> HealthIndicatorResult:
        t0 = time.perf_counter()
        try:
            res = fn()
            if not isinstance(res, HealthIndicatorResult):
                raise TypeError(f"probe returned {type(res).__name__}, expected HealthIndicatorResult")
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"Error checking health for component: {name}: {e}")
            res = down(f"Health check failed: {e}", details={"error": type(e).__name__})
        self.logger.debug(f"Health check completed for component: {name} - {res.status.value}")
        return res.model_copy(update={"latency_ms": (time.perf_counter() - t0) * 1000.0})


# ---- built-in probes ----
def system_resource_probe(sampler: Any, *, stale_after_seconds: float = 60.0) -> Callable[[], HealthIndicatorResult]:
    def evaluate() -> HealthIndicatorResult:
        snap = sampler.current_snapshot()
        details = {
            "cpu_percent": snap.cpu_percent,
            "heap_used_percent": snap.heap_used_percent,
            "thread_count": snap.thread_count,
            "sample_age_seconds": snap.sample_age_seconds,
        }
        if snap.is_stale(stale_after_seconds):
            return down("System metrics are stale", details=details)
        if snap.health == SystemHealth.CRITICAL:
            return down("System resources critical", details=details)
        if snap.health == SystemHealth.WARNING:
            return warning("System resources elevated", details=details)
        return up("System resources nominal", details=details)

    return evaluate


def error_tracker_probe(tracker: Any) -> Callable[[], HealthIndicatorResult]:
    def evaluate() -> HealthIndicatorResult:
        stats = tracker.overall_statistics()
        details = {"total_errors": stats.total_errors, "critical_errors": stats.critical_errors, "warning_errors": stats.warning_errors}
        if stats.overall_severity == Severity.CRITICAL:
            return down("Critical errors recorded", details=details)
        if stats.overall_severity == Severity.WARNING:
            return warning("Warnings recorded", details=details)
        return up("No significant errors", details=details)

    return evaluate

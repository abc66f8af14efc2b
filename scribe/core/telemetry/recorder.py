from __future__ import annotations

import functools
import math
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, Optional, Tuple, Union

from scribe.core.logger import component_logger
from scribe.core.telemetry.models import ComponentMetrics, OperationCategory, OperationMetrics, PerformanceSummary

CategoryLike = Union[OperationCategory, str]


def category_key(category: Optional[CategoryLike]) -> str:
    if isinstance(category, OperationCategory):
        return category.value
    key = str(category or "").strip().upper()
    return key or "UNKNOWN"


class MeasurementSpan:
    """
    One open measurement. Completing it records exactly one sample, however
    many times completion is requested.
    """

    def __init__(self, recorder: "SampleRecorder", category: str, operation_name: str, started_at: float):
        self._recorder = recorder
        self.category = category
        self.operation_name = operation_name
        self.started_at = started_at
        self._completed = False
        self._lock = threading.Lock()

    @property
    def completed(self) -> bool:
        return self._completed

    def elapsed_ms(self) -> float:
        return (self._recorder._clock() - self.started_at) * 1000.0

    def complete(self) -> bool:
        return self._recorder.complete(self)

    def _claim(self) -> bool:
        with self._lock:
            if self._completed:
                return False
            self._completed = True
            return True

    def __enter__(self) -> "MeasurementSpan":
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.complete()


class _OperationCell:
    def __init__(self, name: str):
        self.name = name
        self.count = 0
        self.total_ms = 0.0
        self.last_at: Optional[float] = None


class _CategoryCell:
    def __init__(self, category: str, max_samples: int):
        self.category = category
        self.lock = threading.Lock()
        self.count = 0
        self.total_ms = 0.0
        self.operations: Dict[str, _OperationCell] = {}
        self.samples: Deque[float] = deque(maxlen=max_samples)

    def add(self, operation_name: str, duration_ms: float, at: float) -> None:
        with self.lock:
            self.count += 1
            self.total_ms += duration_ms
            self.samples.append(duration_ms)
            op = self.operations.get(operation_name)
            if op is None:
                op = self.operations[operation_name] = _OperationCell(operation_name)
            op.count += 1
            op.total_ms += duration_ms
            op.last_at = at

    def freeze(self) -> ComponentMetrics:
        with self.lock:
            count = self.count
            total = self.total_ms
            samples = list(self.samples)
            ops = [(o.name, o.count, o.total_ms, o.last_at) for o in self.operations.values()]
        return ComponentMetrics(
            category=self.category,
            total_operations=count,
            total_duration_ms=total,
            average_duration_ms=_avg(total, count),
            operations={
                name: OperationMetrics(operation_name=name, execution_count=n, total_duration_ms=t, average_duration_ms=_avg(t, n), last_execution_at=last)
                for name, n, t, last in ops
            },
            latency=_stats(samples),
        )


class SampleRecorder:
    """
    Per-category counters and timers for business operations.

    All reporting calls are fire-and-forget: they never raise into the caller
    and never hold a lock while the measured operation runs.
    """

    def __init__(self, *, logger=None, clock: Callable[[], float] = time.perf_counter, now: Callable[[], float] = time.time, max_latency_samples: int = 200):
        self.logger = component_logger("recorder", logger)
        self._clock = clock
        self._now = now
        self._max_samples = max(10, int(max_latency_samples))

        self._lock = threading.Lock()
        self._cells: Dict[str, _CategoryCell] = {}
        self._errors: Dict[Tuple[str, str], int] = {}
        self._memory_mb = 0.0
        self._cpu_percent = 0.0
        self._gauge_sink: Optional[Callable[[str, float], None]] = None

    # ---- wiring ----
    def attach_gauge_sink(self, sink: Optional[Callable[[str, float], None]]) -> None:
        """SYSTEM-category durations are forwarded to `sink(name, value)`."""
        self._gauge_sink = sink

    # ---- reporting API ----
    def begin_span(self, category: CategoryLike, operation_name: str) -> MeasurementSpan:
        return MeasurementSpan(self, category_key(category), str(operation_name or "unknown"), self._clock())

    span = begin_span

    def complete(self, span: MeasurementSpan) -> bool:
        """Record the span's duration. Returns False when it was already completed."""
        try:
            if not span._claim():
                return False
            duration_ms = (self._clock() - span.started_at) * 1000.0
            self.record_duration(span.category, span.operation_name, duration_ms)
            return True
        except Exception as e:  # noqa: BLE001
            self.logger.debug(f"Span completion dropped: {e}")
            return False

    def record_duration(self, category: CategoryLike, operation_name: str, duration_ms: float) -> None:
        try:
            key = category_key(category)
            duration_ms = max(0.0, float(duration_ms))
            self._cell(key).add(str(operation_name), duration_ms, self._now())
            self.logger.debug(f"{key} completed: {operation_name} in {duration_ms:.1f}ms")
            if key == OperationCategory.SYSTEM.value and self._gauge_sink is not None:
                self._gauge_sink(f"system.{operation_name}", duration_ms)
        except Exception as e:  # noqa: BLE001
            self.logger.debug(f"Duration sample dropped: {e}")

    def record_error(self, component: str, error_type: str) -> None:
        k = (str(component or "UNKNOWN"), str(error_type or "UNKNOWN"))
        with self._lock:
            self._errors[k] = self._errors.get(k, 0) + 1
        self.logger.warning(f"Error recorded: component={k[0]}, errorType={k[1]}")

    def update_system_metrics(self, memory_mb: float, cpu_percent: float) -> None:
        with self._lock:
            self._memory_mb = float(memory_mb)
            self._cpu_percent = float(cpu_percent)

    def monitored(self, category: CategoryLike, operation_name: Optional[str] = None, *, record_errors: bool = True) -> Callable:
        """
        Decorator timing each call under `category`. When the call raises and
        record_errors is set, the exception class is counted before re-raising.
        """
        key = category_key(category)

        def deco(fn: Callable) -> Callable:
            name = operation_name or getattr(fn, "__qualname__", getattr(fn, "__name__", "call"))

            @functools.wraps(fn)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                with self.begin_span(key, name):
                    try:
                        return fn(*args, **kwargs)
                    except Exception as e:
                        if record_errors:
                            self.record_error(key, type(e).__name__)
                        raise

            return wrapper

        return deco

    # ---- read API ----
    def metrics_for(self, category: CategoryLike) -> ComponentMetrics:
        key = category_key(category)
        with self._lock:
            cell = self._cells.get(key)
        if cell is None:
            return ComponentMetrics(category=key)
        return cell.freeze()

    def component_metrics(self) -> Dict[str, ComponentMetrics]:
        with self._lock:
            cells = list(self._cells.values())
        return {c.category: c.freeze() for c in cells}

    def total_operations(self) -> int:
        return sum(m.total_operations for m in self.component_metrics().values())

    def error_counts(self) -> Dict[str, int]:
        with self._lock:
            items = list(self._errors.items())
        return {f"{c}:{t}": n for (c, t), n in items}

    def total_errors(self) -> int:
        with self._lock:
            return sum(self._errors.values())

    def performance_summary(self) -> PerformanceSummary:
        components = self.component_metrics()
        with self._lock:
            memory_mb = self._memory_mb
            cpu = self._cpu_percent
        return PerformanceSummary(
            components=components,
            total_operations=sum(m.total_operations for m in components.values()),
            memory_usage_mb=memory_mb,
            cpu_usage_percent=cpu,
        )

    def _cell(self, key: str) -> _CategoryCell:
        with self._lock:
            cell = self._cells.get(key)
            if cell is None:
                cell = self._cells[key] = _CategoryCell(key, self._max_samples)
            return cell


def _avg(total: float, count: int) -> float:
    return float(total) / count if count > 0 else 0.0


def _percentile(sorted_vals: list[float], p: float) -> float:
    if not sorted_vals:
        return float("nan")
    if p <= 0:
        return sorted_vals[0]
    if p >= 100:
        return sorted_vals[-1]
    k = (len(sorted_vals) - 1) * (p / 100.0)
    f = math.floor(k)
    c = math.ceil(k)
    if f == c:
        return sorted_vals[int(k)]
    return sorted_vals[int(f)] * (c - k) + sorted_vals[int(c)] * (k - f)


def _stats(samples: Iterable[float]) -> Dict[str, float]:
    xs = sorted(float(x) for x in samples)
    if not xs:
        return {"count": 0.0}
    count = float(len(xs))
    return {
        "count": count,
        "min": xs[0],
        "max": xs[-1],
        "avg": sum(xs) / count,
        "p50": _percentile(xs, 50),
        "p95": _percentile(xs, 95),
    }

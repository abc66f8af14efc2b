from __future__ import annotations

import json
import os
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Protocol, Sequence, runtime_checkable

from scribe.core.logger import component_logger
from scribe.core.redaction import telemetry_redact
from scribe.core.telemetry.models import MetricsSnapshot


@runtime_checkable
class ExportSink(Protocol):
    def export(self, snapshot: MetricsSnapshot) -> None:
        ...


class LoggingSink:
    """Writes one summary line per snapshot to the telemetry logger."""

    def __init__(self, *, logger=None):
        self.logger = component_logger("export", logger)

    def export(self, snapshot: MetricsSnapshot) -> None:
        comps = ", ".join(f"{k}={v.total_operations}/{v.average_duration_ms:.1f}ms" for k, v in snapshot.components.items()) or "none"
        self.logger.info(
            f"Metrics snapshot: health={snapshot.overall_health.value} cpu={snapshot.system.cpu_percent:.1f}% "
            f"memory={snapshot.system.heap_used_mb:.1f}MB threads={snapshot.system.thread_count} "
            f"errors={snapshot.errors.total_errors} operations=[{comps}]"
        )


class JsonlFileSink:
    """Appends each snapshot as one JSON line; keeps the last few in memory."""

    def __init__(self, path: str = os.path.join("logs", "telemetry", "snapshots.jsonl"), *, keep_last: int = 50):
        self.path = path
        self._lock = threading.Lock()
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self._recent: Deque[Dict[str, Any]] = deque(maxlen=max(1, int(keep_last)))

    def export(self, snapshot: MetricsSnapshot) -> None:
        data = telemetry_redact(snapshot.model_dump(mode="json"))
        line = json.dumps(data, ensure_ascii=False)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
            self._recent.appendleft(data)

    def recent(self, n: int = 10) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._recent)[: max(1, int(n))]


class FanOutSink:
    """Exports to every child sink; one child failing does not skip the rest."""

    def __init__(self, sinks: Sequence[ExportSink], *, logger=None):
        self.sinks = list(sinks)
        self.logger = component_logger("export", logger)

    def export(self, snapshot: MetricsSnapshot) -> None:
        failures: List[str] = []
        for sink in self.sinks:
            try:
                sink.export(snapshot)
            except Exception as e:  # noqa: BLE001
                failures.append(f"{type(sink).__name__}: {e}")
                self.logger.error(f"Metrics export failed in {type(sink).__name__}: {e}")
        if failures and len(failures) == len(self.sinks):
            raise RuntimeError("all export sinks failed: " + "; ".join(failures))

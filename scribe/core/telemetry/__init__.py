"""
Telemetry & Health Monitoring (in-process).

This subsystem collects:
- Per-category operation timings (measurement spans)
- Process resource usage with CPU/memory threshold alerts
- Aggregated errors with trend and pattern analysis
- Pluggable per-component health probes

All state is process-scoped and in memory; snapshots go to a pluggable sink.
"""

from scribe.core.telemetry.manager import TelemetryManager

__all__ = ["TelemetryManager"]

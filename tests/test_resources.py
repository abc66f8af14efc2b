from __future__ import annotations

import pytest

from scribe.core.errors import Severity
from scribe.core.telemetry.config import SamplerConfig
from scribe.core.telemetry.models import MonitoredQuantity, OperationCategory, SystemHealth
from scribe.core.telemetry.recorder import SampleRecorder
from scribe.core.telemetry.resources import ResourceProbe, SystemSampler

from .helpers.fakes import FakeClock, FakeResourceProbe


def _sampler(clock, probe, **cfg):
    rec = SampleRecorder(clock=clock.time, now=clock.time)
    s = SystemSampler(cfg=SamplerConfig(**cfg), probe=probe, recorder=rec, now=clock.time)
    rec.attach_gauge_sink(s.record_gauge)
    return s, rec


def test_critical_alert_respects_cooldown():
    clock = FakeClock()
    probe = FakeResourceProbe(cpu=90.0)
    s, rec = _sampler(clock, probe)

    s.sample()
    clock.advance(180)
    s.sample()
    assert len(s.recent_alerts()) == 1

    clock.advance(180)
    s.sample()
    alerts = s.recent_alerts()
    assert len(alerts) == 2
    assert all(a.severity == Severity.CRITICAL and a.quantity == MonitoredQuantity.CPU for a in alerts)
    assert rec.error_counts()["SYSTEM_CPU:CRITICAL_THRESHOLD_EXCEEDED"] == 2


def test_recovery_clears_alert_immediately():
    clock = FakeClock()
    probe = FakeResourceProbe(cpu=90.0)
    s, _rec = _sampler(clock, probe)

    s.sample()
    assert s.alert_state(MonitoredQuantity.CPU).active

    clock.advance(60)
    probe.set(cpu=50.0)
    s.sample()
    assert not s.alert_state(MonitoredQuantity.CPU).active

    # inactive again, so a new breach alerts without waiting for cooldown
    clock.advance(60)
    probe.set(cpu=90.0)
    s.sample()
    assert len(s.recent_alerts()) == 2


def test_oscillation_between_levels_alerts_once_per_cooldown():
    clock = FakeClock()
    probe = FakeResourceProbe(cpu=90.0)
    s, _rec = _sampler(clock, probe)

    for cpu in (90.0, 75.0, 88.0, 72.0):
        probe.set(cpu=cpu)
        s.sample()
        clock.advance(60)
    assert len(s.recent_alerts()) == 1


def test_quantities_are_gated_independently():
    clock = FakeClock()
    probe = FakeResourceProbe(cpu=90.0, memory_percent=80.0)
    s, rec = _sampler(clock, probe)
    s.sample()
    alerts = s.recent_alerts()
    assert {(a.quantity, a.severity) for a in alerts} == {
        (MonitoredQuantity.CPU, Severity.CRITICAL),
        (MonitoredQuantity.MEMORY, Severity.WARNING),
    }
    assert rec.error_counts()["SYSTEM_MEMORY:WARNING_THRESHOLD_EXCEEDED"] == 1


@pytest.mark.parametrize(
    "cpu,mem,expected",
    [
        (10.0, 10.0, SystemHealth.HEALTHY),
        (70.0, 10.0, SystemHealth.WARNING),
        (10.0, 80.0, SystemHealth.WARNING),
        (85.0, 10.0, SystemHealth.CRITICAL),
        (72.0, 95.0, SystemHealth.CRITICAL),
    ],
)
def test_health_classification(cpu, mem, expected):
    s = SystemSampler(probe=FakeResourceProbe())
    assert s.classify(cpu, mem) == expected


def test_snapshot_is_replaced_and_pushes_system_metrics():
    clock = FakeClock()
    probe = FakeResourceProbe(cpu=12.0, heap_mb=256.0, threads=10)
    s, rec = _sampler(clock, probe)
    s.sample()
    probe.set(threads=5)
    clock.advance(10)
    s.sample()

    snap = s.current_snapshot()
    assert snap.sampled_at == clock.time()
    assert snap.heap_used_mb == pytest.approx(256.0)
    assert snap.non_heap_mb == pytest.approx(16.0)
    assert snap.thread_count == 5
    assert snap.peak_thread_count == 10
    assert snap.sample_age_seconds == 0.0
    summary = rec.performance_summary()
    assert summary.memory_usage_mb == pytest.approx(256.0)
    assert summary.cpu_usage_percent == pytest.approx(12.0)


def test_failed_probe_keeps_stale_snapshot():
    clock = FakeClock()
    probe = FakeResourceProbe(cpu=33.0)
    s, rec = _sampler(clock, probe)
    assert s.sample() is True

    probe.fail = True
    clock.advance(30)
    assert s.sample() is False

    snap = s.current_snapshot()
    assert snap.cpu_percent == pytest.approx(33.0)
    assert snap.sample_age_seconds == pytest.approx(30.0)
    assert snap.is_stale(20)
    assert rec.error_counts()["SYSTEM_MONITOR:RuntimeError"] == 1


def test_never_sampled_snapshot_is_stale():
    clock = FakeClock()
    s, _rec = _sampler(clock, FakeResourceProbe())
    clock.advance(5)
    snap = s.current_snapshot()
    assert snap.sampled_at is None
    assert snap.is_stale(60)
    assert snap.sample_age_seconds == pytest.approx(5.0)


def test_system_spans_show_up_as_gauges():
    clock = FakeClock()
    s, rec = _sampler(clock, FakeResourceProbe())
    rec.record_duration(OperationCategory.SYSTEM, "gc", 4.0)
    # gauges belong to the tick that sampled them
    assert s.current_snapshot().gauges == {}
    s.sample()
    assert s.current_snapshot().gauges == {"system.gc": 4.0}

    rec.record_duration(OperationCategory.SYSTEM, "gc", 9.0)
    clock.advance(5)
    snap = s.current_snapshot()
    assert snap.gauges == {"system.gc": 4.0}
    assert snap.sample_age_seconds == pytest.approx(5.0)

    snap.gauges.clear()
    assert s.current_snapshot().gauges == {"system.gc": 4.0}


def test_resource_probe_reads_this_process():
    r = ResourceProbe().read()
    assert 0.0 <= r.cpu_percent <= 100.0
    assert r.heap_used_bytes > 0
    assert 0.0 < r.heap_used_percent <= 100.0
    assert r.thread_count >= 1
    assert r.uptime_seconds >= 0.0

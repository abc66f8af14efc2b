from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from scribe.core.errors import Severity
from scribe.core.telemetry.config import CoordinatorConfig, ErrorTrackerConfig, SamplerConfig
from scribe.core.telemetry.coordinator import ALERT_COMPONENT, ALERT_ERROR_TYPE, BusinessCounters, TelemetryCoordinator
from scribe.core.telemetry.error_tracker import ErrorTracker
from scribe.core.telemetry.models import OperationCategory, SystemHealth
from scribe.core.telemetry.recorder import SampleRecorder
from scribe.core.telemetry.resources import SystemSampler

from .helpers.fakes import FakeClock, FakeResourceProbe, MemorySink


def _pipeline(clock, *, sink=None, total_requests=None, logger=None):
    probe = FakeResourceProbe(cpu=20.0)
    recorder = SampleRecorder(clock=clock.time, now=clock.time)
    sampler = SystemSampler(cfg=SamplerConfig(), probe=probe, recorder=recorder, now=clock.time)
    tracker = ErrorTracker(cfg=ErrorTrackerConfig(), now=clock.time)
    coord = TelemetryCoordinator(
        recorder=recorder,
        sampler=sampler,
        tracker=tracker,
        sink=sink if sink is not None else MemorySink(),
        total_requests=total_requests,
        cfg=CoordinatorConfig(),
        logger=logger,
        now=clock.time,
    )
    return coord, probe


def test_snapshot_is_stable_between_ticks_and_advances_after():
    clock = FakeClock()
    coord, probe = _pipeline(clock)
    coord.recorder.record_duration(OperationCategory.AUDIO, "capture", 10.0)
    coord.sampler.sample()
    coord.tick()

    a = coord.latest()
    b = coord.latest()
    assert a == b
    with pytest.raises(ValidationError):
        a.assembled_at = 0.0

    coord.recorder.record_duration(OperationCategory.AUDIO, "capture", 30.0)
    probe.set(cpu=42.0)
    clock.advance(60)
    coord.sampler.sample()
    coord.tick()
    c = coord.latest()
    assert c.components["AUDIO"].total_operations >= a.components["AUDIO"].total_operations
    assert c.components["AUDIO"].average_duration_ms == pytest.approx(20.0)
    assert c.system.cpu_percent == pytest.approx(42.0)
    assert c.assembled_at == clock.time()
    assert c.overall_health == SystemHealth.HEALTHY
    assert c.is_healthy
    assert len(coord.sink.exported) == 2


def test_latest_before_first_tick_assembles_once():
    clock = FakeClock()
    coord, _probe = _pipeline(clock)
    first = coord.latest()
    clock.advance(5)
    assert coord.latest() == first


def test_mutating_a_returned_snapshot_does_not_change_later_reads():
    clock = FakeClock()
    coord, _probe = _pipeline(clock)
    coord.recorder.attach_gauge_sink(coord.sampler.record_gauge)
    coord.recorder.record_duration(OperationCategory.AUDIO, "capture", 10.0)
    coord.recorder.record_duration(OperationCategory.SYSTEM, "gc", 2.0)
    coord.business.record_counter("exports")
    coord.sampler.record_gauge("queue_depth", 3.0)
    coord.sampler.sample()
    ticked = coord.tick()

    a = coord.latest()
    a.components.clear()
    a.business.custom_counters["exports"] = 99
    a.system.gauges.clear()
    ticked.components.clear()

    b = coord.latest()
    assert set(b.components) == {"AUDIO", "SYSTEM"}
    assert b.business.custom_counters == {"exports": 1}
    assert b.system.gauges == {"system.gc": 2.0, "queue_depth": 3.0}
    assert b != a


def test_sink_failure_is_logged_and_swallowed(caplog):
    clock = FakeClock()
    log = logging.getLogger("tests.coordinator.sink")
    coord, _probe = _pipeline(clock, sink=MemorySink(fail=True), logger=log)
    with caplog.at_level(logging.ERROR, logger=log.name):
        snap = coord.tick()
    assert snap is not None
    assert coord.latest() == snap
    assert any("Metrics export failed" in r.getMessage() for r in caplog.records)


def test_assembly_failure_skips_tick_only():
    clock = FakeClock()
    coord, _probe = _pipeline(clock)
    real = coord.tracker

    class Broken:
        def overall_statistics(self):
            raise RuntimeError("stats unavailable")

    coord.tracker = Broken()
    assert coord.tick() is None
    assert coord.failed_ticks == 1

    coord.tracker = real
    assert coord.tick() is not None
    assert coord.ticks == 1


def test_high_error_rate_is_recorded_through_tracker():
    clock = FakeClock()
    coord, _probe = _pipeline(clock)
    for _ in range(10):
        coord.business.record_transcription_request()
    coord.tracker.record_error("TRANSCRIPTION", "Timeout")
    coord.tracker.record_error("TRANSCRIPTION", "Timeout")

    coord.tick()
    alert = coord.tracker.get(ALERT_COMPONENT, ALERT_ERROR_TYPE)
    assert alert is not None
    assert alert.severity == Severity.CRITICAL

    # the alert itself does not inflate the next rate computation
    snap = coord.tick()
    assert snap.errors.total_errors == 3
    assert coord.tracker.get(ALERT_COMPONENT, ALERT_ERROR_TYPE).occurrence_count == 2
    assert coord.global_error_rate(coord.assemble_snapshot()) == pytest.approx(0.2)


def test_warning_rate_and_no_requests():
    clock = FakeClock()
    coord, _probe = _pipeline(clock)
    assert coord.check_thresholds(coord.assemble_snapshot()) is None

    for _ in range(10):
        coord.business.record_ai_request("openai", "gpt-4o")
    coord.tracker.record_error("AI_SERVICE", "RateLimited")
    assert coord.check_thresholds(coord.assemble_snapshot()) == Severity.WARNING


def test_injected_request_counter_overrides_business_counters():
    clock = FakeClock()
    coord, _probe = _pipeline(clock, total_requests=lambda: 1000)
    coord.tracker.record_error("AI_SERVICE", "RateLimited")
    assert coord.check_thresholds(coord.assemble_snapshot()) is None
    assert coord.global_error_rate(coord.assemble_snapshot()) == pytest.approx(0.001)


def test_business_counters_snapshot():
    b = BusinessCounters()
    b.record_meeting_processed()
    b.record_audio_chunk(3)
    b.record_transcription_request()
    b.record_ai_request("openai", "gpt-4o")
    b.record_ai_request("openai", "gpt-4o")
    b.record_ai_request("local")
    b.record_counter("exports")
    b.record_gauge("queue_depth", 4)

    s = b.snapshot()
    assert s.meetings_processed == 1
    assert s.audio_chunks_processed == 3
    assert s.ai_service_requests == 3
    assert s.ai_requests_by_model == {"openai:gpt-4o": 2, "local": 1}
    assert s.custom_counters == {"exports": 1}
    assert s.custom_gauges == {"queue_depth": 4.0}
    assert b.total_requests() == 4

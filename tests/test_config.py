from __future__ import annotations

import json
import os

import pytest

from scribe.core.errors import ConfigError
from scribe.core.telemetry.config import SamplerConfig, TelemetryConfig, load_telemetry_config


def _write(tmp_path, name, text):
    p = os.path.join(str(tmp_path), name)
    with open(p, "w", encoding="utf-8") as f:
        f.write(text)
    return p


def test_missing_file_yields_defaults(tmp_path):
    cfg = load_telemetry_config(os.path.join(str(tmp_path), "nope.json"))
    assert cfg == TelemetryConfig()
    assert cfg.sampler.interval_seconds == 10.0
    assert (cfg.sampler.cpu_warning_percent, cfg.sampler.cpu_critical_percent) == (70.0, 85.0)
    assert (cfg.sampler.memory_warning_percent, cfg.sampler.memory_critical_percent) == (75.0, 90.0)
    assert cfg.sampler.alert_cooldown_seconds == 300.0
    assert cfg.errors.retention_seconds == 24 * 3600.0
    assert cfg.coordinator.export_interval_seconds == 60.0


def test_file_and_overrides_merge(tmp_path):
    p = _write(tmp_path, "telemetry.json", json.dumps({"sampler": {"interval_seconds": 5, "cpu_warning_percent": 60}}))
    cfg = load_telemetry_config(p, overrides={"sampler": {"interval_seconds": 2}, "health": {"probe_timeout_seconds": None}})
    assert cfg.sampler.interval_seconds == 2.0
    assert cfg.sampler.cpu_warning_percent == 60.0
    assert cfg.health.probe_timeout_seconds is None


@pytest.mark.parametrize(
    "text",
    [
        "{not json",
        "[1, 2, 3]",
        json.dumps({"sampler": {"cpu_warning_percent": 95, "cpu_critical_percent": 85}}),
        json.dumps({"unknown_block": {}}),
    ],
)
def test_invalid_files_raise_config_error(tmp_path, text):
    p = _write(tmp_path, "telemetry.json", text)
    with pytest.raises(ConfigError) as ei:
        load_telemetry_config(p)
    d = ei.value.to_dict()
    assert d["code"] == "config_error"
    assert d["recoverable"] is False


def test_ladder_order_is_validated():
    with pytest.raises(ValueError):
        SamplerConfig(memory_warning_percent=95, memory_critical_percent=90)

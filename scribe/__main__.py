from __future__ import annotations

import argparse
import json
import time

from scribe.core.errors import ConfigError
from scribe.core.logger import setup_logging
from scribe.core.telemetry.config import load_telemetry_config
from scribe.core.telemetry.manager import TelemetryManager
from scribe.core.telemetry.models import HealthStatus


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Scribe telemetry snapshot")
    ap.add_argument("--config", default=None, help="Telemetry config JSON file.")
    ap.add_argument("--log-dir", default="logs", help="Directory for scribe.log.")
    mode = ap.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Sample once, print, and exit (default).")
    mode.add_argument("--duration", type=float, default=None, help="Run the scheduler for S seconds before printing.")
    args = ap.parse_args(argv)

    logger = setup_logging(args.log_dir)
    try:
        cfg = load_telemetry_config(args.config)
    except ConfigError as e:
        print(json.dumps(e.to_dict(), indent=2))
        return 2

    mgr = TelemetryManager(cfg=cfg, logger=logger)
    try:
        if args.duration is not None and args.duration > 0:
            mgr.start()
            time.sleep(float(args.duration))
        else:
            mgr.sampler.sample()
        mgr.coordinator.tick()
        snap = mgr.get_current_snapshot()
        health = mgr.get_overall_health()
    finally:
        mgr.stop()

    print(json.dumps({"snapshot": snap.model_dump(mode="json"), "health": health.model_dump(mode="json")}, indent=2))
    return 0 if health.status != HealthStatus.DOWN else 2


if __name__ == "__main__":
    raise SystemExit(main())

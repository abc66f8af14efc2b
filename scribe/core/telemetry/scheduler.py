from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from scribe.core.logger import component_logger


@dataclass
class _Job:
    name: str
    interval: float
    fn: Callable[[], Any]
    next_due: float
    running: bool = False
    runs: int = 0
    failures: int = 0
    skipped: int = 0
    last_error: Optional[str] = None


class PeriodicScheduler:
    """
    Fixed-rate background jobs on a small worker pool.

    One timer thread waits until the earliest due time and hands due jobs to
    the pool. A job that is still running when its next tick comes due is not
    resubmitted, and missed ticks are never replayed: the next due time is
    always "tick time + interval".
    """

    def __init__(self, *, max_workers: int = 3, logger=None, now: Callable[[], float] = time.monotonic, max_wait_seconds: float = 1.0):
        self.logger = component_logger("scheduler", logger)
        self._now = now
        self._max_workers = max(1, int(max_workers))
        self._max_wait = max(0.01, float(max_wait_seconds))

        self._cond = threading.Condition()
        self._jobs: Dict[str, _Job] = {}
        self._stopping = False
        self._thread: Optional[threading.Thread] = None
        self._exec: Optional[ThreadPoolExecutor] = None

    def schedule(self, name: str, interval_seconds: float, fn: Callable[[], Any], *, initial_delay_seconds: float = 0.0) -> None:
        interval = float(interval_seconds)
        if interval <= 0:
            raise ValueError("interval_seconds must be > 0")
        with self._cond:
            self._jobs[str(name)] = _Job(name=str(name), interval=interval, fn=fn, next_due=self._now() + max(0.0, float(initial_delay_seconds)))
            self._cond.notify_all()

    def cancel(self, name: str) -> bool:
        with self._cond:
            return self._jobs.pop(str(name), None) is not None

    def jobs(self) -> List[Dict[str, Any]]:
        with self._cond:
            return [
                {"name": j.name, "interval_seconds": j.interval, "running": j.running, "runs": j.runs, "failures": j.failures, "skipped": j.skipped, "last_error": j.last_error}
                for j in self._jobs.values()
            ]

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._cond:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stopping = False
            self._exec = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="telemetry-tick")
            self._thread = threading.Thread(target=self._loop, name="telemetry-scheduler", daemon=True)
            self._thread.start()
        self.logger.info(f"Scheduler started with {len(self._jobs)} job(s)")

    def run_pending(self) -> int:
        """Run every due job inline on the calling thread. Returns how many ran."""
        with self._cond:
            due = self._collect_due(self._now())
        for job in due:
            self._run_job(job)
        return len(due)

    def shutdown(self, *, wait: bool = True, timeout: float = 5.0) -> None:
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
            thread, ex = self._thread, self._exec
            self._thread = None
            self._exec = None
        if thread is not None:
            thread.join(timeout=timeout)
        if ex is not None:
            ex.shutdown(wait=wait)
        self.logger.info("Scheduler stopped")

    # -------- internal loop --------
    def _loop(self) -> None:
        while True:
            with self._cond:
                if self._stopping:
                    return
                now = self._now()
                due = self._collect_due(now)
                if not due:
                    self._cond.wait(timeout=self._wait_for(now))
                    continue
                ex = self._exec
            for job in due:
                try:
                    ex.submit(self._run_job, job)
                except RuntimeError:
                    # pool closed under us during shutdown
                    with self._cond:
                        job.running = False
                    return

    def _collect_due(self, now: float) -> List[_Job]:
        # caller holds self._cond
        due: List[_Job] = []
        for job in self._jobs.values():
            if job.next_due > now:
                continue
            job.next_due = now + job.interval
            if job.running:
                job.skipped += 1
                self.logger.debug(f"Job {job.name} still running; tick skipped")
                continue
            job.running = True
            due.append(job)
        return due

    def _wait_for(self, now: float) -> float:
        if not self._jobs:
            return self._max_wait
        earliest = min(j.next_due for j in self._jobs.values())
        return min(self._max_wait, max(0.0, earliest - now))

    def _run_job(self, job: _Job) -> None:
        err: Optional[str] = None
        try:
            job.fn()
        except Exception as e:  # noqa: BLE001
            err = f"{type(e).__name__}: {e}"
            self.logger.error(f"Scheduled job {job.name} failed: {e}", exc_info=True)
        finally:
            with self._cond:
                job.running = False
                job.runs += 1
                if err is not None:
                    job.failures += 1
                    job.last_error = err

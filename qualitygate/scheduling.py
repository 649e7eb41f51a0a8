from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable

import schedule

from qualitygate.logging_config import get_logger


logger = get_logger(__name__)

# Builds the job on a fresh scheduler; ``do`` is attached by ScheduledJob.
Trigger = Callable[[schedule.Scheduler], schedule.Job]

MAX_IDLE_SECONDS = 30.0


def every_seconds(seconds: float) -> Trigger:
    return lambda scheduler: scheduler.every(seconds).seconds


def daily_at(hour: int, minute: int = 0) -> Trigger:
    return lambda scheduler: scheduler.every().day.at(f"{hour:02d}:{minute:02d}", "UTC")


def weekly_at(weekday: str, hour: int, minute: int = 0) -> Trigger:
    """``weekday`` is a lowercase day name such as ``"monday"``."""
    return lambda scheduler: getattr(scheduler.every(), weekday).at(f"{hour:02d}:{minute:02d}", "UTC")


class ScheduledJob:
    """Runs ``func`` on its own daemon thread with its own ``schedule.Scheduler``.

    Each job is independent: a slow or failing tick never delays another
    job. Exceptions raised by ``func`` are logged and the job keeps going.
    """

    def __init__(self, name: str, trigger: Trigger, func: Callable[[], object]) -> None:
        self.name = name
        self.trigger = trigger
        self.func = func
        self.scheduler = schedule.Scheduler()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def next_run_at(self) -> datetime | None:
        if not self.running or not self.scheduler.jobs:
            return None
        # schedule keeps naive local times
        return self.scheduler.next_run.astimezone(timezone.utc)

    def start(self) -> None:
        if self.running:
            return
        self.scheduler.clear()
        self.trigger(self.scheduler).do(self.run_once)
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=f"qualitygate-{self.name}", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        self.scheduler.clear()

    def run_once(self) -> bool:
        try:
            self.func()
        except Exception:
            logger.exception("scheduled_job_failed", job=self.name)
            return False
        return True

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.scheduler.run_pending()
            idle = self.scheduler.idle_seconds
            delay = MAX_IDLE_SECONDS if idle is None else min(max(idle, 0.0), MAX_IDLE_SECONDS)
            if self._stop.wait(delay):
                break

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any, Callable

from qualitygate.logging_config import get_logger


logger = get_logger(__name__)

SYNC_COMPLETED = "validation.sync.completed"
ASYNC_COMPLETED = "validation.async.completed"
BULK_COMPLETED = "validation.bulk.completed"
MONITOR_STARTED = "monitor.started"
MONITOR_STOPPED = "monitor.stopped"
METRICS_UPDATED = "monitor.metrics.updated"
ALERTS_RAISED = "monitor.alerts.raised"
ALERT_ACKNOWLEDGED = "monitor.alert.acknowledged"
CONFIG_UPDATED = "monitor.config.updated"
DAILY_REPORT = "monitor.report.daily"
WEEKLY_REPORT = "monitor.report.weekly"

Handler = Callable[[Any], None]


class EventBus:
    """In-process publish/subscribe for lifecycle events.

    Handlers run inline on the emitting thread. A handler that raises is
    logged and skipped; it never reaches the emitter.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event: str, handler: Handler) -> None:
        with self._lock:
            self._handlers[event].append(handler)

    def unsubscribe(self, event: str, handler: Handler) -> bool:
        with self._lock:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
            return False

    def emit(self, event: str, payload: Any = None) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event, []))
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                logger.exception("event_handler_failed", event=event, handler=getattr(handler, "__name__", repr(handler)))

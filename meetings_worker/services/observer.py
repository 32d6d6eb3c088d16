from __future__ import annotations

import json
import logging
import threading
from collections import Counter
from typing import Any, Dict, Optional, Protocol


class PipelineObserver(Protocol):
    """Sink for structured pipeline events (guard_fired, records_dropped, ...)."""

    def emit(self, event: str, **fields: Any) -> None: ...


_WARN_EVENTS = frozenset({"guard_fired", "unparseable_start", "invalid_range"})


class LoggingObserver:
    """Write each event as one JSON line to a standard logger."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("app.pipeline")

    def emit(self, event: str, **fields: Any) -> None:
        level = logging.WARNING if event in _WARN_EVENTS else logging.INFO
        if not self.logger.isEnabledFor(level):
            return
        self.logger.log(level, json.dumps({"event": event, **fields}, default=str))


class CountingObserver:
    """Tally events for the diagnostics endpoint, optionally forwarding them."""

    def __init__(self, forward: Optional[PipelineObserver] = None) -> None:
        self.forward = forward
        self.events: Counter = Counter()
        self.dropped_records = 0
        self.last: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def emit(self, event: str, **fields: Any) -> None:
        with self._lock:
            self.events[event] += 1
            if event == "records_dropped":
                self.dropped_records += int(fields.get("dropped", 0))
            self.last[event] = dict(fields)
        if self.forward is not None:
            self.forward.emit(event, **fields)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "events": dict(self.events),
                "dropped_records": self.dropped_records,
                "last": {k: dict(v) for k, v in self.last.items()},
            }


default_observer = LoggingObserver()


def resolve(observer: Optional[PipelineObserver]) -> PipelineObserver:
    return observer if observer is not None else default_observer

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Request

from .services.normalize import Meeting
from .services.observer import CountingObserver, default_observer


@dataclass
class MeetingsState:
    items: List[Meeting] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)
    phase: str = "idle"
    reason: Optional[str] = None
    last_run: Optional[Dict[str, Any]] = None


@dataclass
class AggregateRun:
    cancel: asyncio.Event = field(default_factory=asyncio.Event)


@dataclass
class State:
    """Mutable worker state, attached to FastAPI's app.state.

    Merges into ``meetings`` are serialized by its lock; each domain has at
    most one aggregation run in flight.
    """

    db_path: Path
    meetings: MeetingsState = field(default_factory=MeetingsState)
    observer: CountingObserver = field(default_factory=lambda: CountingObserver(default_observer))
    runs: Dict[str, AggregateRun] = field(default_factory=dict)

    # Injected aggregation backend; built from settings when None
    aggregate_client: Any | None = None


def get_state(request: Request) -> State:  # FastAPI dependency helper
    return request.app.state.state

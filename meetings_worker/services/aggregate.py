"""
aggregate.py: start/poll/complete driver for the engagement summary job

The backend job is started once per run and then polled at a fixed interval
until it reports a terminal status or the poll budget runs out. The state
machine is explicit (see ``TRANSITIONS``); sleeping and HTTP are injected so
runs can be driven without a wall clock.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Protocol

from .backend_client import BackendError
from .coerce import ensure_array
from .observer import PipelineObserver, resolve

log = logging.getLogger("app.aggregate")

DEFAULT_POLL_INTERVAL_S = 2.0
DEFAULT_MAX_ATTEMPTS = 30
JOB_ERROR_FALLBACK = "Engagement summary failed"
INVALID_START_RESPONSE = "Invalid response from server"


class JobState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    POLLING = "polling"
    COMPLETE = "complete"
    ERROR = "error"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


TRANSITIONS: Dict[JobState, FrozenSet[JobState]] = {
    JobState.IDLE: frozenset({JobState.STARTING}),
    JobState.STARTING: frozenset({JobState.POLLING, JobState.ERROR, JobState.CANCELLED}),
    JobState.POLLING: frozenset(
        {JobState.POLLING, JobState.COMPLETE, JobState.ERROR, JobState.TIMED_OUT, JobState.CANCELLED}
    ),
}

TERMINAL_STATES = frozenset({JobState.COMPLETE, JobState.ERROR, JobState.TIMED_OUT, JobState.CANCELLED})


class InvalidTransition(RuntimeError):
    pass


class AggregateBackend(Protocol):
    async def start(self, domain: str) -> Any: ...

    async def status(self, domain: str, run_id: str) -> Any: ...


@dataclass
class AggregationJob:
    domain: str
    run_id: Optional[str] = None
    state: JobState = JobState.IDLE
    summary: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    attempts: int = 0
    updated_at: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new: JobState) -> None:
        if new not in TRANSITIONS.get(self.state, frozenset()):
            raise InvalidTransition(f"{self.state.value} -> {new.value}")
        self.state = new
        if new in TERMINAL_STATES:
            self.finished_at = time.time()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "run_id": self.run_id,
            "state": self.state.value,
            "summary": self.summary,
            "error": self.error,
            "attempts": self.attempts,
            "updated_at": self.updated_at,
        }


def clean_domain(value: str) -> str:
    """'https://www.acme.com/about' -> 'acme.com'."""
    text = re.sub(r"^https?://", "", value.strip(), flags=re.IGNORECASE)
    text = re.sub(r"^www\.", "", text, flags=re.IGNORECASE)
    return text.split("/", 1)[0].lower()


def first_status_record(payload: Any) -> Optional[Mapping]:
    """The record a status poll refers to, or None if there is none yet."""
    if not isinstance(payload, list) or not payload:
        return None
    record = payload[0]
    return record if isinstance(record, Mapping) else None


def _run_id_from(payload: Any) -> Optional[str]:
    if not isinstance(payload, Mapping) or not payload.get("ok"):
        return None
    run_id = payload.get("run_id")
    if run_id is None or str(run_id) == "":
        return None
    return str(run_id)


class AggregationController:
    """Drive one aggregation run per ``run()`` call to a terminal state."""

    def __init__(
        self,
        client: AggregateBackend,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        observer: Optional[PipelineObserver] = None,
    ) -> None:
        self.client = client
        self.poll_interval_s = poll_interval_s
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._observer = resolve(observer)

    def _move(self, job: AggregationJob, new: JobState) -> None:
        job.transition(new)
        self._observer.emit(
            "job_state",
            domain=job.domain,
            run_id=job.run_id,
            state=new.value,
            attempt=job.attempts,
            error=job.error,
        )

    async def _wait(self, cancel: Optional[asyncio.Event]) -> bool:
        """Sleep one poll interval; True if cancelled meanwhile."""
        if cancel is None:
            await self._sleep(self.poll_interval_s)
            return False
        if cancel.is_set():
            return True
        sleeper = asyncio.ensure_future(self._sleep(self.poll_interval_s))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()
        return cancel.is_set()

    async def run(self, domain: str, cancel: Optional[asyncio.Event] = None) -> AggregationJob:
        job = AggregationJob(domain=domain)
        self._move(job, JobState.STARTING)

        try:
            started = await self.client.start(domain)
        except BackendError as e:
            job.error = str(e) or INVALID_START_RESPONSE
            self._move(job, JobState.ERROR)
            return job

        run_id = _run_id_from(started)
        if run_id is None:
            job.error = INVALID_START_RESPONSE
            self._move(job, JobState.ERROR)
            return job
        if cancel is not None and cancel.is_set():
            self._move(job, JobState.CANCELLED)
            return job

        job.run_id = run_id
        self._move(job, JobState.POLLING)
        log.info(json.dumps({"domain": domain, "run_id": run_id, "msg": "job started"}))

        while job.attempts < self.max_attempts:
            if await self._wait(cancel):
                self._move(job, JobState.CANCELLED)
                return job
            job.attempts += 1

            try:
                payload = await self.client.status(domain, run_id)
            except BackendError as e:
                log.warning(f"status check {job.attempts}/{self.max_attempts} failed: {e}")
                continue

            record = first_status_record(payload)
            if record is None:
                continue

            status = record.get("status")
            if status == "complete":
                summary = record.get("summary")
                job.summary = dict(summary) if isinstance(summary, Mapping) else {}
                job.updated_at = record.get("updated_at")
                self._move(job, JobState.COMPLETE)
                return job
            if status == "error":
                job.error = str(record.get("error") or JOB_ERROR_FALLBACK)
                job.updated_at = record.get("updated_at")
                self._move(job, JobState.ERROR)
                return job

        self._move(job, JobState.TIMED_OUT)
        return job


def build_digest(job: AggregationJob, months_span: int = 6) -> Optional[Dict[str, Any]]:
    """Aggregate view of a completed run; None for any other state."""
    if job.state is not JobState.COMPLETE:
        return None
    summary = job.summary or {}
    return {
        "domain": job.domain,
        "summary": json.dumps(summary),
        "meetings_count": summary.get("meetings_count") or 0,
        "months_span": months_span,
        "generated_at": job.updated_at,
        "goals": list(ensure_array(summary.get("goals"))),
        "challenges": list(ensure_array(summary.get("challenges"))),
        "people": list(ensure_array(summary.get("people"))),
    }


def digest_items(digest: Mapping, now: Optional[datetime] = None) -> Dict[str, List[Dict[str, Any]]]:
    """Turn digest goal/challenge strings into id-bearing records."""
    stamp = int((now or datetime.now(timezone.utc)).timestamp() * 1000)
    out: Dict[str, List[Dict[str, Any]]] = {}
    for kind, key in (("goal", "goals"), ("challenge", "challenges")):
        out[key] = [
            {"id": f"{kind}-{stamp}-{idx}", "kind": kind, "description": str(text)}
            for idx, text in enumerate(ensure_array(digest.get(key)))
            if text
        ]
    return out

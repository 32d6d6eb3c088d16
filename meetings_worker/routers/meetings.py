from __future__ import annotations

import json
from functools import partial
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from starlette.concurrency import run_in_threadpool

from ..db import MEETINGS_KEY, kv_set
from ..models.meeting import (
    GroupedMeetingsResponse,
    IngestResponse,
    MeetingOut,
    MeetingsResponse,
    RefreshResponse,
    TranscriptRequest,
)
from ..services.backend_client import BackendClient
from ..services.coerce import ensure_array
from ..services.merge import safe_merge
from ..services.normalize import Meeting, normalize_meetings, split_transcript
from ..services.pipeline import run_pipeline, zero_state_message
from ..services.ranges import compute_window, filter_by_date_range, group_by_source
from ..state import State, get_state

router = APIRouter(tags=["meetings"])


def _out(meetings: List[Meeting]) -> List[MeetingOut]:
    return [MeetingOut(**m.to_dict()) for m in meetings]


def _persist(state: State) -> None:
    kv_set(MEETINGS_KEY, [m.to_dict() for m in state.meetings.items], db_path=state.db_path)


def _merge_into_state(state: State, batch: List[Meeting]) -> Tuple[int, bool]:
    with state.meetings.lock:
        before = state.meetings.items
        guard_fired = bool(before) and not batch
        state.meetings.items = safe_merge(before, batch, observer=state.observer)
        state.meetings.phase = "merged" if state.meetings.items else "empty"
        total = len(state.meetings.items)
    if not guard_fired and batch:
        _persist(state)
    return total, guard_fired


def _ingest(state: State, source: str, payload: Any) -> IngestResponse:
    received = len(ensure_array(payload))
    batch = normalize_meetings(payload, source, observer=state.observer)
    total, guard_fired = _merge_into_state(state, batch)
    return IngestResponse(
        source=source,
        received=received,
        normalized=len(batch),
        dropped=received - len(batch),
        total=total,
        guard_fired=guard_fired,
    )


@router.post("/meetings/ingest/{source}", response_model=IngestResponse)
async def v1_ingest(source: str, request: Request, state: State = Depends(get_state)) -> IngestResponse:
    body = await request.body()
    payload: Any = None
    if body.strip():
        try:
            payload = json.loads(body)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Body is not valid JSON: {e}")
    return await run_in_threadpool(_ingest, state, source, payload)


@router.post("/meetings/transcript", response_model=IngestResponse)
def v1_ingest_transcript(payload: TranscriptRequest, state: State = Depends(get_state)) -> IngestResponse:
    return _ingest(state, payload.source, split_transcript(payload.text))


@router.post("/meetings/refresh", response_model=RefreshResponse)
def v1_refresh(request: Request, state: State = Depends(get_state)) -> RefreshResponse:
    settings = request.app.state.settings
    urls = settings.source_urls()
    if not urls:
        raise HTTPException(status_code=400, detail="No meeting sources configured (WORKER_MEETING_SOURCES)")

    client = BackendClient(
        "",
        token=settings.aggregate_token,
        timeout=settings.http_timeout_s,
        no_verify=settings.ssl_no_verify,
    )
    sources = [(tag, partial(client.fetch_pages, url)) for tag, url in urls.items()]
    window = compute_window(settings.window_tz, settings.window_days)

    with state.meetings.lock:
        state.meetings.phase = "fetching"
        result = run_pipeline(sources, current=state.meetings.items, window=window, observer=state.observer)
        state.meetings.items = result.merged
        state.meetings.phase = result.phase
        state.meetings.reason = result.reason
        state.meetings.last_run = {"phase": result.phase, "reason": result.reason, **result.diagnostics}
    _persist(state)

    return RefreshResponse(
        phase=result.phase,
        reason=result.reason,
        count=len(result.meetings),
        diagnostics=result.diagnostics,
        zero_state=None if result.meetings else zero_state_message(result.reason),
    )


@router.get("/meetings", response_model=MeetingsResponse)
def v1_list_meetings(
    from_: Optional[str] = Query(None, alias="from", description="ISO-8601 lower bound (inclusive)"),
    to: Optional[str] = Query(None, description="ISO-8601 upper bound (inclusive)"),
    state: State = Depends(get_state),
) -> MeetingsResponse:
    if (from_ is None) != (to is None):
        raise HTTPException(status_code=400, detail="Both 'from' and 'to' are required for a range")
    items = list(state.meetings.items)
    if from_ is not None and to is not None:
        items = filter_by_date_range(items, from_, to, observer=state.observer)
    return MeetingsResponse(count=len(items), meetings=_out(items))


@router.get("/meetings/grouped", response_model=GroupedMeetingsResponse)
def v1_grouped_meetings(state: State = Depends(get_state)) -> GroupedMeetingsResponse:
    groups = group_by_source(state.meetings.items)
    return GroupedMeetingsResponse(
        counts={k: len(v) for k, v in groups.items()},
        groups={k: _out(v) for k, v in groups.items()},
    )


@router.get("/meetings/diagnostics")
def v1_diagnostics(state: State = Depends(get_state)) -> Dict[str, Any]:
    return {
        "ok": True,
        "phase": state.meetings.phase,
        "reason": state.meetings.reason,
        "count": len(state.meetings.items),
        "observer": state.observer.snapshot(),
        "last_run": state.meetings.last_run,
    }

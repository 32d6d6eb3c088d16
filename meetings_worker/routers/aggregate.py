from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from ..config import Settings
from ..db import aggregate_key, kv_set, utc_now_iso
from ..models.aggregate import AggregateJobResponse, AggregateRequest
from ..services.aggregate import (
    AggregationController,
    JobState,
    build_digest,
    clean_domain,
    digest_items,
)
from ..services.backend_client import BackendClient
from ..state import AggregateRun, State, get_state

router = APIRouter(tags=["aggregate"])


def _backend(state: State, settings: Settings) -> Any:
    if state.aggregate_client is not None:
        return state.aggregate_client
    if not settings.aggregate_base_url:
        raise HTTPException(status_code=503, detail="Aggregation backend not configured (WORKER_AGGREGATE_BASE_URL)")
    return BackendClient(
        settings.aggregate_base_url,
        token=settings.aggregate_token,
        timeout=settings.http_timeout_s,
        start_path=settings.aggregate_start_path,
        status_path=settings.aggregate_status_path,
        no_verify=settings.ssl_no_verify,
    )


@router.post("/aggregate", response_model=AggregateJobResponse)
async def v1_aggregate(payload: AggregateRequest, request: Request, state: State = Depends(get_state)) -> AggregateJobResponse:
    domain = clean_domain(payload.domain)
    if not domain:
        raise HTTPException(status_code=400, detail="Please enter a company domain first")
    if domain in state.runs:
        raise HTTPException(status_code=409, detail=f"An aggregation run for {domain} is already in progress")

    settings: Settings = request.app.state.settings
    controller = AggregationController(
        _backend(state, settings),
        poll_interval_s=settings.poll_interval_s,
        max_attempts=settings.poll_max_attempts,
        observer=state.observer,
    )

    run = AggregateRun()
    state.runs[domain] = run
    try:
        job = await controller.run(domain, cancel=run.cancel)
    finally:
        state.runs.pop(domain, None)

    resp: Dict[str, Any] = dict(job.to_dict(), ok=job.state is JobState.COMPLETE)
    digest = build_digest(job)
    if digest is not None:
        resp["digest"] = digest
        resp.update(digest_items(digest))
        if payload.save:
            key = aggregate_key(domain)
            doc = {"domain": domain, "aggregate": digest, "saved_at": utc_now_iso()}
            await run_in_threadpool(kv_set, key, doc, state.db_path)
            resp["saved_key"] = key
    return AggregateJobResponse(**resp)


@router.post("/aggregate/{domain}/cancel")
async def v1_cancel_aggregate(domain: str, state: State = Depends(get_state)) -> Dict[str, Any]:
    key = clean_domain(domain)
    run = state.runs.get(key)
    if run is None:
        raise HTTPException(status_code=404, detail=f"No aggregation run in progress for {key}")
    run.cancel.set()
    return {"ok": True, "domain": key, "cancelled": True}

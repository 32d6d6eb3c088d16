from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .merge import safe_merge
from .normalize import Meeting, normalize_meetings
from .observer import PipelineObserver, resolve
from .ranges import DateWindow, filter_by_date_range

log = logging.getLogger("app.pipeline")

Fetch = Callable[[], Any]


@dataclass
class PipelineResult:
    phase: str = "idle"
    reason: Optional[str] = None
    merged: List[Meeting] = field(default_factory=list)
    meetings: List[Meeting] = field(default_factory=list)
    diagnostics: Dict[str, Any] = field(default_factory=lambda: {"counts": {}, "params": {}, "errors": {}})


def _zero_reason(merged: List[Meeting], in_window: List[Meeting], errors: Dict[str, str]) -> str:
    if in_window:
        return "ok"
    if merged:
        return "date_window_miss"
    if errors:
        return "source_error"
    return "no_source_results"


def run_pipeline(
    sources: Sequence[Tuple[str, Fetch]],
    current: Optional[List[Meeting]] = None,
    window: Optional[DateWindow] = None,
    observer: Optional[PipelineObserver] = None,
) -> PipelineResult:
    """Fetch, normalize and merge each source in order.

    A source that raises contributes nothing; its error is kept in the
    diagnostics. Earlier results are never erased by later empty sources.
    """
    obs = resolve(observer)
    result = PipelineResult(phase="fetching")
    counts: Dict[str, int] = {}
    errors: Dict[str, str] = {}
    merged: List[Meeting] = list(current or [])

    for tag, fetch in sources:
        try:
            payload = fetch()
        except Exception as e:
            log.warning(f"source {tag} failed: {e}")
            errors[tag] = str(e)
            payload = []
        batch = normalize_meetings(payload, tag, observer=obs)
        counts[tag] = len(batch)
        merged = safe_merge(merged, batch, observer=obs)

    in_window = merged
    if window is not None:
        in_window = filter_by_date_range(merged, window.from_iso, window.to_iso, observer=obs)

    counts["merged"] = len(merged)
    counts["in_window"] = len(in_window)
    result.merged = merged
    result.meetings = in_window
    result.reason = _zero_reason(merged, in_window, errors)
    result.phase = "merged" if in_window else "empty"
    result.diagnostics = {
        "counts": counts,
        "params": window.as_params() if window is not None else {},
        "errors": errors,
    }
    obs.emit("pipeline_done", phase=result.phase, reason=result.reason, counts=counts)
    return result


_ZERO_MESSAGES: Dict[str, Dict[str, Any]] = {
    "no_source_results": {
        "title": "No Meetings Found",
        "message": "No meetings were found in any source for the selected time period.",
        "suggestions": [
            "Try extending the date range to 180 days",
            "Check that the meeting recorder is connected to the correct email addresses",
            "Verify the organization domain is correct",
        ],
    },
    "date_window_miss": {
        "title": "No Meetings in Date Range",
        "message": "No meetings found in the selected date range.",
        "suggestions": [
            "Try extending the date range",
            "Check if meetings occurred in a different timezone",
        ],
    },
    "source_error": {
        "title": "Meeting Sources Unavailable",
        "message": "Every meeting source failed to respond.",
        "suggestions": [
            "Check the proxy configuration (WORKER_MEETING_SOURCES)",
            "Retry once the upstream service is reachable",
        ],
    },
}


def zero_state_message(reason: Optional[str]) -> Dict[str, Any]:
    return _ZERO_MESSAGES.get(
        reason or "",
        {
            "title": "Unknown Error",
            "message": "Unable to load meetings due to an unknown error.",
            "suggestions": ["Try refreshing", "Contact support if the issue persists"],
        },
    )

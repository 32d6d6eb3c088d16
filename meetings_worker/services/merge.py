from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Sequence

from .coerce import ensure_array
from .normalize import parse_timestamp
from .observer import PipelineObserver, resolve


def record_field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _newest_first(record: Any):
    ms = parse_timestamp(record_field(record, "start"))
    # Unparseable starts go last; the sort is stable within each group.
    return (ms is None, -(ms or 0))


def safe_merge(
    current: List[Any],
    incoming: Any,
    observer: Optional[PipelineObserver] = None,
) -> List[Any]:
    """Merge a fresh batch into a known collection without ever losing data.

    A non-empty ``current`` paired with an empty ``incoming`` is returned
    unchanged (the very same list). Otherwise records are keyed by ``id``,
    ``incoming`` replaces ``current`` on collision, and the result is sorted
    by start time, most recent first.
    """
    obs = resolve(observer)
    batch = ensure_array(incoming)

    if current and not batch:
        obs.emit("guard_fired", current_count=len(current), incoming_count=0)
        return current
    if not batch:
        return current

    by_id: Dict[str, Any] = {}
    for record in current:
        by_id[record_field(record, "id")] = record
    for record in batch:
        by_id[record_field(record, "id")] = record

    merged = sorted(by_id.values(), key=_newest_first)
    obs.emit(
        "merged",
        current_count=len(current),
        incoming_count=len(batch),
        merged_count=len(merged),
    )
    return merged


def merge_sources(*collections: Sequence[Any], observer: Optional[PipelineObserver] = None) -> List[Any]:
    """Fold ``safe_merge`` over the collections in the order given."""
    merged: List[Any] = []
    for batch in collections:
        merged = safe_merge(merged, batch, observer=observer)
    return merged

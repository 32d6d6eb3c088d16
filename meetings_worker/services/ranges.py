from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from .merge import record_field
from .normalize import parse_timestamp
from .observer import PipelineObserver, resolve


@dataclass(frozen=True)
class DateWindow:
    from_iso: str
    to_iso: str
    tz: str

    def as_params(self) -> Dict[str, str]:
        return {"tz": self.tz, "fromISO": self.from_iso, "toISO": self.to_iso}


def compute_window(tz: str = "America/Chicago", days: int = 180, now: Optional[datetime] = None) -> DateWindow:
    """Local-midnight ``days - 1`` days ago through the end of today in ``tz``."""
    zone = ZoneInfo(tz)
    local_now = now.astimezone(zone) if now is not None else datetime.now(zone)
    end = local_now.replace(hour=23, minute=59, second=59, microsecond=999000)
    start = (end - timedelta(days=max(days, 1) - 1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return DateWindow(
        from_iso=start.isoformat(timespec="milliseconds"),
        to_iso=end.isoformat(timespec="milliseconds"),
        tz=tz,
    )


def filter_by_date_range(
    meetings: Iterable[Any],
    from_iso: str,
    to_iso: str,
    observer: Optional[PipelineObserver] = None,
) -> List[Any]:
    """Meetings whose start falls within [from_iso, to_iso], bounds inclusive."""
    obs = resolve(observer)
    lo = parse_timestamp(from_iso)
    hi = parse_timestamp(to_iso)
    if lo is None or hi is None:
        obs.emit("invalid_range", from_iso=from_iso, to_iso=to_iso)
        return []

    out: List[Any] = []
    for m in meetings:
        start = record_field(m, "start")
        ms = parse_timestamp(start)
        if ms is None:
            ident = record_field(m, "id")
            obs.emit("unparseable_start", id=ident, start=start)
            continue
        if lo <= ms <= hi:
            out.append(m)
    return out


def group_by_source(meetings: Iterable[Any]) -> Dict[str, List[Any]]:
    groups: Dict[str, List[Any]] = {}
    for m in meetings:
        source = record_field(m, "source") or "unknown"
        groups.setdefault(source, []).append(m)
    return groups

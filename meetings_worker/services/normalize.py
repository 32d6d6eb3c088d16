"""
normalize.py: canonical Meeting record and the source-agnostic normalizer

This module provides:
  - the `Meeting` dataclass every downstream step operates on
  - an ordered alias table mapping source field names to canonical fields
  - single-record and batch normalization (records without a start are dropped)
  - ISO-8601 timestamp parsing to epoch milliseconds
  - splitting of pasted transcripts into pseudo-records
"""

from __future__ import annotations

import hashlib
import re
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from .coerce import ensure_array
from .observer import PipelineObserver, resolve

UNTITLED = "Untitled Meeting"

# (canonical field, source aliases in priority order). New source formats are
# supported by extending a row, not by adding branches.
FIELD_ALIASES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("id", ("id", "meetingId", "meeting_id", "fathomMeetingId")),
    ("title", ("title", "topic", "subject", "name")),
    ("start", ("start_time", "start", "startedAt", "started_at", "createdAt")),
    ("end", ("end_time", "end", "endedAt", "ended_at")),
    ("attendees", ("attendees", "participants", "emails")),
    ("duration", ("duration", "duration_minutes")),
    ("recording_url", ("recording_url", "recordingUrl", "video_url", "videoUrl")),
    ("summary", ("summary", "description", "notes")),
)
_ALIASES = dict(FIELD_ALIASES)

Number = Union[int, float]


@dataclass
class Meeting:
    id: str
    title: str
    start: str
    end: Optional[str] = None
    duration: Optional[Number] = None
    attendees: List[Any] = field(default_factory=list)
    recording_url: Optional[str] = None
    summary: Optional[str] = None
    source: str = "unknown"
    # Original payload, kept for diagnostics only.
    raw: Any = field(default=None, compare=False, repr=False)

    def to_dict(self, include_raw: bool = False) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "start": self.start,
            "end": self.end,
            "duration": self.duration,
            "attendees": list(self.attendees),
            "recordingUrl": self.recording_url,
            "summary": self.summary,
            "source": self.source,
        }
        if include_raw:
            out["raw"] = self.raw
        return out

    @classmethod
    def from_dict(cls, data: Mapping) -> "Meeting":
        return cls(
            id=str(data["id"]),
            title=data.get("title") or UNTITLED,
            start=data["start"],
            end=data.get("end"),
            duration=data.get("duration"),
            attendees=list(ensure_array(data.get("attendees"))),
            recording_url=data.get("recordingUrl", data.get("recording_url")),
            summary=data.get("summary"),
            source=data.get("source") or "unknown",
            raw=data.get("raw"),
        )


def generate_meeting_id() -> str:
    return uuid.uuid4().hex


def _first(raw: Mapping, name: str) -> Any:
    for alias in _ALIASES[name]:
        value = raw.get(alias)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        return value
    return None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


# fromisoformat on 3.10 only takes "+HH:MM" offsets and 3 or 6 fraction digits.
_COMPACT_OFFSET = re.compile(r"(T[\d:.,]+[+-]\d{2})(\d{2})$")
_FRACTION = re.compile(r"(?<=T\d{2}:\d{2}:\d{2})[.,](\d+)")


def parse_timestamp(value: Any) -> Optional[int]:
    """Return epoch milliseconds for an ISO-8601 value, or None if unparseable.

    Naive timestamps (including date-only strings) are read as UTC.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        text = _COMPACT_OFFSET.sub(r"\1:\2", text)
        text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text)
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


def _duration(raw: Mapping, start: str, end: Optional[str]) -> Optional[Number]:
    explicit = _first(raw, "duration")
    if isinstance(explicit, bool):
        explicit = None
    if isinstance(explicit, (int, float)):
        return explicit
    if isinstance(explicit, str):
        try:
            return float(explicit)
        except ValueError:
            pass
    if end is None:
        return None
    start_ms = parse_timestamp(start)
    end_ms = parse_timestamp(end)
    if start_ms is None or end_ms is None:
        return None
    return int(round((end_ms - start_ms) / 60000))


def normalize_meeting(raw: Any, source: str) -> Optional[Meeting]:
    """Convert one raw record into a Meeting; None if it has no start time."""
    if not isinstance(raw, Mapping):
        return None

    start = _as_text(_first(raw, "start"))
    if not start:
        return None

    ident = _as_text(_first(raw, "id")) or generate_meeting_id()
    title = _first(raw, "title")
    end = _as_text(_first(raw, "end"))
    attendees = ensure_array(_first(raw, "attendees"))

    return Meeting(
        id=ident,
        title=str(title) if title is not None else UNTITLED,
        start=start,
        end=end,
        duration=_duration(raw, start, end),
        attendees=attendees,
        recording_url=_as_text(_first(raw, "recording_url")),
        summary=_as_text(_first(raw, "summary")),
        source=source,
        raw=raw,
    )


def normalize_meetings(
    raw: Any,
    source: str = "unknown",
    observer: Optional[PipelineObserver] = None,
) -> List[Meeting]:
    items = ensure_array(raw)
    out: List[Meeting] = []
    for item in items:
        meeting = normalize_meeting(item, source)
        if meeting is not None:
            out.append(meeting)
    dropped = len(items) - len(out)
    if dropped:
        resolve(observer).emit("records_dropped", source=source, dropped=dropped, kept=len(out))
    return out


_BLANK_LINES = re.compile(r"\n\s*\n+")


def split_transcript(text: str, received_at: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Split a pasted transcript on blank lines into normalizer-ready records."""
    received = (received_at or datetime.now(timezone.utc)).isoformat()
    sections = [s.strip() for s in _BLANK_LINES.split(text or "")]
    records: List[Dict[str, Any]] = []
    for idx, section in enumerate(s for s in sections if s):
        digest = hashlib.sha1(section.encode("utf-8")).hexdigest()[:12]
        records.append(
            {
                "id": f"manual-{digest}",
                "title": f"Transcript section {idx + 1}",
                "createdAt": received,
                "summary": section,
            }
        )
    return records

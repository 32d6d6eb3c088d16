from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class MeetingOut(BaseModel):
    id: str
    title: str
    start: str
    end: Optional[str] = None
    duration: Optional[Union[int, float]] = Field(None, description="Minutes")
    attendees: List[Any] = Field(default_factory=list)
    recordingUrl: Optional[str] = None
    summary: Optional[str] = None
    source: str


class MeetingsResponse(BaseModel):
    ok: bool = True
    count: int
    meetings: List[MeetingOut]


class GroupedMeetingsResponse(BaseModel):
    ok: bool = True
    counts: Dict[str, int]
    groups: Dict[str, List[MeetingOut]]


class IngestResponse(BaseModel):
    ok: bool = True
    source: str
    received: int = Field(description="Records found in the payload")
    normalized: int = Field(description="Records that survived normalization")
    dropped: int
    total: int = Field(description="Size of the merged collection afterwards")
    guard_fired: bool = False


class TranscriptRequest(BaseModel):
    text: str = Field(min_length=1, description="Pasted transcript; blank lines separate sections")
    source: str = "manual"


class RefreshResponse(BaseModel):
    ok: bool = True
    phase: str
    reason: Optional[str] = None
    count: int
    diagnostics: Dict[str, Any]
    zero_state: Optional[Dict[str, Any]] = None

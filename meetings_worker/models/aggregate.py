from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AggregateRequest(BaseModel):
    domain: str = Field(min_length=1, description="Customer domain or website URL")
    save: bool = Field(default=False, description="Persist the digest when the run completes")


class DigestItem(BaseModel):
    id: str
    kind: str
    description: str


class AggregateDigest(BaseModel):
    domain: str
    summary: str
    meetings_count: int = 0
    months_span: int = 6
    generated_at: Optional[str] = None
    goals: List[Any] = Field(default_factory=list)
    challenges: List[Any] = Field(default_factory=list)
    people: List[Any] = Field(default_factory=list)


class AggregateJobResponse(BaseModel):
    ok: bool
    domain: str
    run_id: Optional[str] = None
    state: str
    attempts: int = 0
    error: Optional[str] = None
    summary: Optional[Dict[str, Any]] = None
    digest: Optional[AggregateDigest] = None
    goals: List[DigestItem] = Field(default_factory=list)
    challenges: List[DigestItem] = Field(default_factory=list)
    saved_key: Optional[str] = None

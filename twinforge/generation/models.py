# -*- coding: utf-8 -*-
"""Generation: pydantic models for stream records and API payloads."""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


Step = Literal["configuration", "generating", "validation", "error"]
UnitStatus = Literal["loading", "ready", "failed"]


# ---------- Stream records ----------


class SkeletonCountEvent(BaseModel):
    type: Literal["skeletonCount"] = "skeletonCount"
    total: int = Field(..., ge=1)


class UnitEvent(BaseModel):
    type: Literal["unit"] = "unit"
    # None when the record carries nothing to match on; it then fills the next placeholder.
    key: Optional[str] = None
    payload: Dict[str, Any]


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    artifact_id: Optional[str] = None
    summary: Dict[str, Any] = Field(default_factory=dict)


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str = "Generation failed"


StreamEvent = Annotated[
    Union[SkeletonCountEvent, UnitEvent, CompleteEvent, ErrorEvent],
    Field(discriminator="type"),
]

stream_event_adapter: TypeAdapter[Any] = TypeAdapter(StreamEvent)


def is_terminal(event: Any) -> bool:
    return isinstance(event, (CompleteEvent, ErrorEvent))


# ---------- API payloads ----------


class UnitView(BaseModel):
    key: str
    position: int
    status: UnitStatus
    payload: Optional[Dict[str, Any]] = None


class ProgressView(BaseModel):
    percentage: int = 0
    title: str = ""
    subtitle: str = ""
    message: str = ""


class GenerationStateResponse(BaseModel):
    kind: str
    session_id: Optional[str] = None
    step: Step = "configuration"
    units: List[UnitView] = Field(default_factory=list)
    progress: ProgressView = Field(default_factory=ProgressView)
    ready_count: int = 0
    total_count: int = 0
    # 1-based index of the stream being consumed (weeks of a meal plan)
    phase: int = 1
    phase_count: int = 1
    artifact_id: Optional[str] = None
    recovered: bool = False
    summary: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class SaveResponse(BaseModel):
    status: str = "saved"
    artifact_id: str


class SavedArtifactItem(BaseModel):
    artifact_id: str
    kind: str
    summary: Dict[str, Any] = Field(default_factory=dict)
    payload: Dict[str, Any] = Field(default_factory=dict)
    unit_count: int = 0
    created_at: str
    saved_at: Optional[str] = None


class SavedArtifactListResponse(BaseModel):
    count: int
    items: List[SavedArtifactItem]

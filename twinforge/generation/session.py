# -*- coding: utf-8 -*-
"""Generation session state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel

from .models import GenerationStateResponse, ProgressView, Step, UnitStatus, UnitView


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Unit:
    """One independently arriving piece of the artifact (a day, a recipe, a category)."""

    key: str
    position: int
    status: UnitStatus = "loading"
    payload: Optional[Dict[str, Any]] = None
    phase: int = 0

    @property
    def is_ready(self) -> bool:
        return self.status == "ready"


@dataclass
class ProgressState:
    percentage: int = 0
    title: str = ""
    subtitle: str = ""
    message: str = ""


@dataclass
class GenerationResult:
    """The finalized artifact exposed once a session reaches validation."""

    kind: str
    units: List[Dict[str, Any]]
    artifact_id: Optional[str] = None
    summary: Dict[str, Any] = field(default_factory=dict)
    recovered: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "units": self.units,
            "artifact_id": self.artifact_id,
            "summary": self.summary,
            "recovered": self.recovered,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationResult":
        return cls(
            kind=str(data.get("kind") or ""),
            units=list(data.get("units") or []),
            artifact_id=data.get("artifact_id"),
            summary=dict(data.get("summary") or {}),
            recovered=bool(data.get("recovered")),
        )


@dataclass
class GenerationSession:
    """Mutable state of one generation attempt.

    Units are preallocated by the skeleton factory and addressed through
    ``index`` (key -> position); their order never changes afterwards.

    A session may run several streams back to back (``phase_count``, e.g. one
    per week of a meal plan). Every unit belongs to exactly one phase and
    only the units of ``phase_index`` are being streamed at any time.
    """

    kind: str
    subject_id: str
    config: BaseModel
    session_id: str = field(default_factory=lambda: str(uuid4()))
    created_at: str = field(default_factory=iso_now)
    step: Step = "configuration"
    units: List[Unit] = field(default_factory=list)
    index: Dict[str, int] = field(default_factory=dict)
    declared_total: int = 0
    overflow_count: int = 0
    progress: ProgressState = field(default_factory=ProgressState)
    peak_percentage: int = 0
    terminal: bool = False
    cancelled: bool = False
    result: Optional[GenerationResult] = None
    error: Optional[str] = None
    phase_index: int = 0
    phase_count: int = 1
    phase_started_at: Optional[str] = None
    # artifact_id/summary of every finished phase, in order
    phase_results: List[Dict[str, Any]] = field(default_factory=list)
    recovered: bool = False

    @property
    def ready_count(self) -> int:
        return sum(1 for unit in self.units if unit.is_ready)

    @property
    def total_count(self) -> int:
        return len(self.units)

    @property
    def accepts_events(self) -> bool:
        return not (self.terminal or self.cancelled)

    @property
    def is_last_phase(self) -> bool:
        return self.phase_index >= self.phase_count - 1

    def phase_units(self, phase: Optional[int] = None) -> List[Unit]:
        phase = self.phase_index if phase is None else phase
        return [unit for unit in self.units if unit.phase == phase]

    def begin_phase(self, phase: int) -> None:
        self.phase_index = phase
        self.phase_started_at = self.created_at if phase == 0 else iso_now()

    def set_units(self, units: List[Unit]) -> None:
        self.units = units
        self.index = {unit.key: unit.position for unit in units}

    def to_response(self) -> GenerationStateResponse:
        result = self.result
        return GenerationStateResponse(
            kind=self.kind,
            session_id=self.session_id,
            step=self.step,
            units=[
                UnitView(key=u.key, position=u.position, status=u.status, payload=u.payload)
                for u in self.units
            ],
            progress=ProgressView(
                percentage=self.progress.percentage,
                title=self.progress.title,
                subtitle=self.progress.subtitle,
                message=self.progress.message,
            ),
            ready_count=self.ready_count,
            total_count=self.total_count,
            phase=self.phase_index + 1,
            phase_count=self.phase_count,
            artifact_id=result.artifact_id if result else None,
            recovered=bool(result and result.recovered),
            summary=dict(result.summary) if result else {},
            error=self.error,
        )

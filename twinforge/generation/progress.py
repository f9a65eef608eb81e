# -*- coding: utf-8 -*-
"""Progress anchoring.

Each pipeline step owns a window of the overall percentage (its anchor range).
Inside the generating window progress follows the ratio of ready units, lifted
by a floor so the first frame already shows movement and held under a cap so
the last unit never claims completion before the terminal record. A session
that streams several phases (the weeks of a meal plan) splits the generating
window evenly, one slice per phase.
"""

from __future__ import annotations

import math
from typing import Dict, Tuple

from .session import GenerationSession, ProgressState

DEFAULT_FLOOR = 10
DEFAULT_CAP = 90

STEP_ANCHORS: Dict[str, Tuple[int, int]] = {
    "configuration": (0, 0),
    "generating": (0, 100),
    "validation": (100, 100),
}


def compute_percentage(
    ready_count: int,
    total_count: int,
    anchor_start: int,
    anchor_end: int,
    floor: int = DEFAULT_FLOOR,
    cap: int = DEFAULT_CAP,
) -> int:
    """Map ``ready_count / total_count`` into ``[anchor_start, anchor_end]``.

    The local position runs from ``floor`` (nothing ready) to ``cap`` (all
    ready), both expressed in percent of the anchor span.
    """
    if total_count <= 0:
        return anchor_start
    ready = min(max(ready_count, 0), total_count)
    span = anchor_end - anchor_start
    local = floor + (ready / total_count) * (cap - floor)
    value = anchor_start + span * local / 100.0
    upper = anchor_start + span * cap / 100.0
    return int(math.floor(min(max(value, anchor_start), upper)))


def phase_anchor(phase_index: int, phase_count: int, step: str = "generating") -> Tuple[int, int]:
    """Slice of ``step``'s anchor range owned by one phase of a multi-stream session."""
    start, end = STEP_ANCHORS[step]
    if phase_count <= 1:
        return start, end
    index = min(max(phase_index, 0), phase_count - 1)
    span = end - start
    return start + span * index // phase_count, start + span * (index + 1) // phase_count


def _plural(count: int, label: Tuple[str, str]) -> str:
    return label[0] if count == 1 else label[1]


def describe_progress(
    session: GenerationSession,
    *,
    unit_label: Tuple[str, str],
    artifact_label: str,
    phase_label: str = "phase",
) -> ProgressState:
    """Derive the displayed progress for the session's step and unit counts.

    While generating, the percentage follows the ready ratio of the current
    phase inside that phase's anchor slice. It never drops below the
    session's high-water mark.
    """
    ready = session.ready_count
    total = session.total_count
    step = session.step

    if step == "configuration":
        return ProgressState(0, "Configuration", "Select your preferences", "")

    if step == "validation":
        message = "Recovered successfully" if session.result and session.result.recovered else "Generated successfully"
        return ProgressState(100, "Done!", f"Your {artifact_label} is ready", message)

    if step == "error":
        return ProgressState(
            session.peak_percentage,
            "Generation failed",
            f"{ready} of {total} {_plural(total, unit_label)} received",
            session.error or "",
        )

    start, end = phase_anchor(session.phase_index, session.phase_count)
    phase_units = session.phase_units()
    phase_ready = sum(1 for unit in phase_units if unit.is_ready)
    percentage = max(session.peak_percentage, compute_percentage(phase_ready, len(phase_units), start, end))
    title = "Generating"
    if session.phase_count > 1:
        title = f"Generating {phase_label} {session.phase_index + 1} of {session.phase_count}"
    if ready < total:
        return ProgressState(
            percentage,
            title,
            f"{ready} of {total} {_plural(total, unit_label)} generated",
            f"Creating {unit_label[0]} {ready + 1}...",
        )
    return ProgressState(percentage, "Finalizing", "Final adjustments", "Final optimisation...")

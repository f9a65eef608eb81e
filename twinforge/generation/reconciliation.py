# -*- coding: utf-8 -*-
"""Merge streamed units into the session's skeleton array."""

from __future__ import annotations

import logging

from ..config import settings
from .errors import StreamAnomalyError
from .kinds import GenerationKind
from .models import CompleteEvent, ErrorEvent, SkeletonCountEvent, UnitEvent
from .progress import describe_progress
from .session import GenerationSession, Unit

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """Apply stream events to a session, in place.

    Units keep their position for the whole session: resizing appends or
    trims trailing placeholders only, and arriving units either fill the unit
    with the same key or are appended after the last one.
    """

    def __init__(self, kind: GenerationKind, *, max_overflow_units: int | None = None) -> None:
        self.kind = kind
        self.max_overflow_units = (
            settings.max_overflow_units if max_overflow_units is None else max_overflow_units
        )

    def apply(self, event: object, session: GenerationSession) -> GenerationSession:
        if not session.accepts_events:
            logger.debug("Session %s no longer accepts events; dropping %r", session.session_id, event)
            return session

        if isinstance(event, SkeletonCountEvent):
            self._resize(session, event.total)
        elif isinstance(event, UnitEvent):
            self._place(session, event)
        elif isinstance(event, CompleteEvent):
            self._close(session, reason="complete")
        elif isinstance(event, ErrorEvent):
            session.error = event.message
            self._close(session, reason="error")
        else:
            logger.warning("Unsupported event for session %s: %r", session.session_id, event)
            return session

        self.refresh(session)
        return session

    def refresh(self, session: GenerationSession) -> None:
        progress = describe_progress(
            session,
            unit_label=self.kind.unit_label,
            artifact_label=self.kind.artifact_label,
            phase_label=self.kind.phase_label,
        )
        if session.step == "generating":
            session.peak_percentage = max(session.peak_percentage, progress.percentage)
        session.progress = progress

    # ---------- mutations ----------

    def _resize(self, session: GenerationSession, total: int) -> None:
        if session.phase_count > 1:
            # Every phase's block is fixed up front; a per-stream count can only confirm it.
            expected = len(session.phase_units())
            if total != expected:
                logger.info(
                    "Session %s: %s %d declared %d units, keeping the %d placeholders",
                    session.session_id,
                    self.kind.phase_label,
                    session.phase_index + 1,
                    total,
                    expected,
                )
            return
        session.declared_total = total
        current = session.total_count
        if total > current:
            key_fn = self.kind.key_fn(session.config)
            for position in range(current, total):
                self._append(session, self._fresh_key(session, key_fn(position), position), position)
        elif total < current:
            while session.total_count > total and session.units[-1].status == "loading":
                removed = session.units.pop()
                session.index.pop(removed.key, None)
            if session.total_count > total:
                logger.info(
                    "Session %s: declared %d units but %d are already in place; keeping ready units",
                    session.session_id,
                    total,
                    session.total_count,
                )
        session.overflow_count = max(0, session.total_count - session.declared_total)
        logger.info("Session %s resized to %d units", session.session_id, session.total_count)

    def _place(self, session: GenerationSession, event: UnitEvent) -> None:
        key = event.key
        unit = None
        if key is not None:
            position = session.index.get(key)
            if position is not None:
                unit = session.units[position]
        else:
            unit = next((u for u in session.phase_units() if u.status == "loading"), None)

        if unit is not None:
            if unit.is_ready:
                logger.info("Session %s: duplicate unit %s, replacing payload", session.session_id, unit.key)
            unit.payload = event.payload
            unit.status = "ready"
            logger.info(
                "Session %s: unit %s ready (%d/%d)",
                session.session_id,
                unit.key,
                session.ready_count,
                session.total_count,
            )
            return

        if session.overflow_count >= self.max_overflow_units:
            raise StreamAnomalyError(
                f"Received more than {self.max_overflow_units} units beyond the expected {session.declared_total}"
            )
        position = session.total_count
        if key is None or key in session.index:
            key = self._fresh_key(session, self.kind.key_fn(session.config)(position), position)
        appended = self._append(session, key, position)
        appended.payload = event.payload
        appended.status = "ready"
        session.overflow_count += 1
        logger.warning(
            "Session %s: unit %s arrived beyond the skeleton, appended at position %d",
            session.session_id,
            key,
            position,
        )

    def _close(self, session: GenerationSession, *, reason: str) -> None:
        # A complete record ends the current phase; only the last one ends the session.
        if reason == "complete" and not session.is_last_phase:
            pending = session.phase_units()
        else:
            session.terminal = True
            pending = session.units
        failed = 0
        for unit in pending:
            if unit.status == "loading":
                unit.status = "failed"
                failed += 1
        if failed:
            logger.warning(
                "Session %s closed by %s with %d units never delivered",
                session.session_id,
                reason,
                failed,
            )

    @staticmethod
    def _append(session: GenerationSession, key: str, position: int) -> Unit:
        unit = Unit(key=key, position=position, phase=session.phase_index)
        session.units.append(unit)
        session.index[key] = position
        return unit

    @staticmethod
    def _fresh_key(session: GenerationSession, key: str, position: int) -> str:
        if key not in session.index:
            return key
        return f"{key}#{position}"

# -*- coding: utf-8 -*-
"""Salvage a broken stream from the persistent store.

The backend keeps generating after the client connection drops and writes the
finished artifact itself. When a stream faults, the coordinator waits a short
grace period, looks up the newest artifact of the same user and kind created
after the session started, and adopts it when it is structurally complete.
This is a single lookup, not a polling loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ..config import settings
from .errors import RecoveryExhausted
from .kinds import GenerationKind
from .session import GenerationResult, GenerationSession, Unit

logger = logging.getLogger(__name__)

RECOVERY_FAILED_MESSAGE = (
    "No complete {artifact} was received. It may have been generated server-side; "
    "refresh or retry the generation."
)


class RecoveryCoordinator:
    def __init__(
        self,
        kind: GenerationKind,
        store: Any,
        *,
        grace_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.kind = kind
        self.store = store
        self.grace_seconds = settings.recovery_grace_seconds if grace_seconds is None else grace_seconds
        self._sleep = sleep

    async def recover(self, session: GenerationSession, cause: BaseException) -> GenerationResult:
        """Find and adopt a persisted artifact, or raise ``RecoveryExhausted``."""
        artifact = await self.find_salvage(session, cause)
        return self.adopt(session, artifact)

    async def find_salvage(self, session: GenerationSession, cause: BaseException) -> Dict[str, Any]:
        """Return a structurally complete artifact for ``session`` without touching it."""
        logger.warning(
            "Session %s: stream fault (%s: %s) with %d/%d units, attempting recovery",
            session.session_id,
            type(cause).__name__,
            cause,
            session.ready_count,
            session.total_count,
        )
        if self.grace_seconds > 0:
            await self._sleep(self.grace_seconds)

        artifact = await self._lookup(session)
        expected = self._expected_units(session)
        if artifact is None or not self.kind.is_complete(artifact.get("payload") or {}, expected):
            if artifact is not None:
                logger.warning(
                    "Session %s: artifact %s is structurally incomplete, not adopting",
                    session.session_id,
                    artifact.get("artifact_id"),
                )
            raise RecoveryExhausted(RECOVERY_FAILED_MESSAGE.format(artifact=self.kind.artifact_label)) from cause
        return artifact

    def adopt(self, session: GenerationSession, artifact: Dict[str, Any]) -> GenerationResult:
        """Replace the units with the artifact's contents.

        A single-phase session takes the artifact wholesale. In a multi-phase
        session the artifact covers the faulted phase only; its block is
        replaced and the other phases are left as they are.
        """
        if session.phase_count > 1:
            units = self._splice_phase(session, artifact["payload"])
        else:
            units = self._units_from(session, artifact["payload"])
        session.set_units(units)
        session.declared_total = len(units)
        session.overflow_count = 0
        session.recovered = True
        result = GenerationResult(
            kind=self.kind.name,
            units=[u.payload or {} for u in units if u.is_ready],
            artifact_id=artifact.get("artifact_id"),
            summary=dict(artifact.get("summary") or {}),
            recovered=True,
        )
        logger.info(
            "Session %s: recovered artifact %s with %d units",
            session.session_id,
            result.artifact_id,
            len(units),
        )
        return result

    async def _lookup(self, session: GenerationSession) -> Optional[Dict[str, Any]]:
        try:
            return await self.store.find_latest_generated(
                user_id=session.subject_id,
                kind=self.kind.name,
                created_after=session.phase_started_at or session.created_at,
            )
        except Exception as exc:
            logger.error("Session %s: recovery lookup failed: %s", session.session_id, exc)
            return None

    @staticmethod
    def _expected_units(session: GenerationSession) -> int:
        if session.phase_count > 1:
            return len(session.phase_units())
        return session.declared_total or session.total_count

    def _units_from(self, session: GenerationSession, payload: Dict[str, Any]) -> list[Unit]:
        key_fn = self.kind.key_fn(session.config)
        units: list[Unit] = []
        seen: set[str] = set()
        for position, (key, item) in enumerate(self.kind.units_from_artifact(payload)):
            key = key or key_fn(position)
            if key in seen:
                key = f"{key}#{position}"
            seen.add(key)
            units.append(Unit(key=key, position=position, status="ready", payload=item))
        return units

    def _splice_phase(self, session: GenerationSession, payload: Dict[str, Any]) -> list[Unit]:
        phase = session.phase_index
        before = [u for u in session.units if u.phase < phase]
        after = [u for u in session.units if u.phase > phase]
        taken = {u.key for u in before + after}
        key_fn = self.kind.key_fn(session.config)
        block: list[Unit] = []
        for offset, (key, item) in enumerate(self.kind.units_from_artifact(payload)):
            position = len(before) + offset
            key = key or key_fn(position)
            if key in taken:
                key = f"{key}#{position}"
            taken.add(key)
            block.append(Unit(key=key, position=position, status="ready", payload=item, phase=phase))
        for position, unit in enumerate(after, start=len(before) + len(block)):
            unit.position = position
        return before + block + after

# -*- coding: utf-8 -*-
"""Session lifecycle for one generation flow.

The controller owns exactly one live session per (subject, kind). It walks the
session through ``configuration -> generating -> validation | error``, runs the
stream consumer as a background task and routes every stream fault into
recovery. Anything arriving for a session that has been cancelled or
superseded is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any, Coroutine, Dict, List, Optional, Set

from ..config import settings
from .client import GenerationClient, GenerationStream
from .errors import (
    GenerationError,
    GenerationRejected,
    InvalidStepError,
    PartialGenerationError,
    PersistenceError,
    RecoveryExhausted,
    TransportError,
)
from .events import StreamEventParser
from .kinds import GenerationKind
from .models import CompleteEvent, ErrorEvent, GenerationStateResponse, is_terminal
from .reconciliation import ReconciliationEngine
from .recovery import RecoveryCoordinator
from .rewards import RewardNotifier, default_notifier
from .session import GenerationResult, GenerationSession, ProgressState, Unit
from .skeletons import create_skeletons
from .storage import ArtifactStore

logger = logging.getLogger(__name__)


class PipelineSessionController:
    def __init__(
        self,
        kind: GenerationKind,
        *,
        subject_id: str,
        client: Optional[GenerationClient] = None,
        store: Optional[ArtifactStore] = None,
        notifier: Optional[RewardNotifier] = None,
        engine: Optional[ReconciliationEngine] = None,
        recovery: Optional[RecoveryCoordinator] = None,
        stream_timeout: Optional[float] = None,
    ) -> None:
        self.kind = kind
        self.subject_id = subject_id
        self.client = client or GenerationClient()
        self.store = store or ArtifactStore()
        self.notifier = notifier if notifier is not None else default_notifier(getattr(self.store, "db_path", None))
        self.engine = engine or ReconciliationEngine(kind)
        self.recovery = recovery or RecoveryCoordinator(kind, self.store)
        self.stream_timeout = settings.stream_timeout if stream_timeout is None else stream_timeout

        self._session: Optional[GenerationSession] = None
        self._task: Optional[asyncio.Task] = None
        self._side_effects: Set[asyncio.Task] = set()
        # Orders snapshot writes against deletes.
        self._snapshot_lock = asyncio.Lock()
        self.last_saved_id: Optional[str] = None
        self.last_failure: Optional[GenerationError] = None

    # ---------- observers ----------

    @property
    def session(self) -> Optional[GenerationSession]:
        return self._session

    @property
    def step(self) -> str:
        return self._session.step if self._session else "configuration"

    @property
    def units(self) -> List[Unit]:
        return list(self._session.units) if self._session else []

    @property
    def progress(self) -> ProgressState:
        return self._session.progress if self._session else ProgressState(title="Configuration")

    @property
    def result(self) -> Optional[GenerationResult]:
        return self._session.result if self._session else None

    @property
    def error(self) -> Optional[str]:
        return self._session.error if self._session else None

    @property
    def idle(self) -> bool:
        """No session and no pending work: nothing would be lost by dropping this controller."""
        return self._session is None and self._task is None and not self._side_effects

    def state(self) -> GenerationStateResponse:
        if self._session is None:
            return GenerationStateResponse(kind=self.kind.name, progress={"title": "Configuration"})
        return self._session.to_response()

    # ---------- lifecycle ----------

    async def start_pipeline(self, config: Any) -> GenerationSession:
        """Validate ``config``, build the skeleton and start streaming in the background.

        Raises ``ValidationError`` before anything is sent when the flow's
        preconditions are not met. A session already in progress is
        superseded.
        """
        parsed = self.kind.parse_config(config)
        if self._session is not None:
            logger.info("Superseding %s session %s", self.kind.name, self._session.session_id)
            await self._settle()
            self._drop_session()
            await self._forget_snapshot()

        phases = self.kind.phase_count(parsed)
        session = GenerationSession(kind=self.kind.name, subject_id=self.subject_id, config=parsed)
        session.set_units(create_skeletons(self.kind.unit_count(parsed), self.kind.key_fn(parsed), phases))
        session.declared_total = session.total_count
        session.phase_count = phases
        session.begin_phase(0)
        session.step = "generating"
        self.engine.refresh(session)
        self._session = session
        self.last_failure = None

        logger.info(
            "Starting %s session %s for %s with %d placeholders",
            self.kind.name,
            session.session_id,
            self.subject_id,
            session.total_count,
        )
        self._task = asyncio.create_task(self._run(session), name=f"generation-{session.session_id}")
        return session

    async def wait(self) -> Optional[GenerationSession]:
        """Block until the current stream task settles; returns the current session."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})
        return self._session

    async def generate(self, config: Any) -> Optional[GenerationSession]:
        await self.start_pipeline(config)
        return await self.wait()

    def cancel(self) -> None:
        """Abort the in-flight stream (if any) and return to configuration."""
        if self._session is not None:
            logger.info("Cancelling %s session %s", self.kind.name, self._session.session_id)
        self._drop_session()

    def reset_pipeline(self) -> None:
        self._drop_session()
        self.last_saved_id = None
        self.last_failure = None

    async def save(self) -> str:
        """Persist the validated artifact and return its id.

        Only valid in validation. A persistence failure leaves the session in
        validation so the save can be retried.
        """
        session = self._session
        if session is None or session.step != "validation" or session.result is None:
            raise InvalidStepError("save", self.step)
        await self._settle()
        if self._session is not session:
            raise InvalidStepError("save", self.step)

        result = session.result
        try:
            saved = await self.store.save_artifact(
                user_id=self.subject_id,
                kind=self.kind.name,
                payload={self.kind.artifact_field: result.units},
                summary=result.summary,
                artifact_id=result.artifact_id,
                source_session_id=session.session_id,
            )
        except PersistenceError:
            logger.error("Saving %s session %s failed", self.kind.name, session.session_id)
            raise
        except Exception as exc:
            logger.error("Saving %s session %s failed: %s", self.kind.name, session.session_id, exc)
            raise PersistenceError(f"Could not save the {self.kind.artifact_label}: {exc}") from exc

        artifact_id = saved["artifact_id"]
        self.last_saved_id = artifact_id
        logger.info("Saved %s %s from session %s", self.kind.name, artifact_id, session.session_id)
        if self._session is session:
            self._drop_session()
        await self._forget_snapshot()
        return artifact_id

    async def discard(self) -> None:
        """Drop a validated or failed result without saving it."""
        if self._session is not None and self._session.step not in ("validation", "error"):
            raise InvalidStepError("discard", self.step)
        await self._settle()
        self._drop_session()
        await self._forget_snapshot()

    async def resume(self) -> Optional[GenerationSession]:
        """Restore the last unsaved validated result, if one was snapshotted."""
        if self._session is not None and self._session.step == "generating":
            raise InvalidStepError("resume", self.step)
        await self._settle()
        snapshot = await self.store.load_snapshot(user_id=self.subject_id, kind=self.kind.name)
        if not snapshot or not snapshot.get("result"):
            return None

        config = self.kind.resolve(self.kind.config_model.model_validate(snapshot.get("config") or {}))
        session = GenerationSession(
            kind=self.kind.name,
            subject_id=self.subject_id,
            config=config,
            session_id=snapshot.get("session_id") or "",
            created_at=snapshot.get("created_at") or "",
        )
        session.set_units([Unit(**unit) for unit in snapshot.get("units") or []])
        session.declared_total = session.total_count
        session.phase_count = self.kind.phase_count(config)
        session.begin_phase(session.phase_count - 1)
        session.result = GenerationResult.from_dict(snapshot["result"])
        session.recovered = session.result.recovered
        session.step = "validation"
        session.terminal = True
        self.engine.refresh(session)

        self._drop_session()
        self._session = session
        logger.info("Resumed %s session %s from snapshot", self.kind.name, session.session_id)
        return session

    def on_terminal_success(self, event: CompleteEvent) -> None:
        """Finalize the current session from a ``complete`` record."""
        session = self._session
        if session is None:
            return
        result = self._build_result(session, event.artifact_id, event.summary, recovered=session.recovered)
        self._enter_validation(session, result)
        # A week salvaged from the store earlier in the session counts as a recovery: no reward.
        if not result.recovered:
            self._schedule_reward(session, result)

    # ---------- stream task ----------

    def _is_current(self, session: GenerationSession) -> bool:
        return self._session is session and not session.cancelled

    async def _run(self, session: GenerationSession) -> None:
        for phase in range(session.phase_count):
            if not self._is_current(session):
                return
            if phase:
                session.begin_phase(phase)
                self.engine.refresh(session)
                logger.info(
                    "Session %s: starting %s %d of %d",
                    session.session_id,
                    self.kind.phase_label,
                    phase + 1,
                    session.phase_count,
                )
            if not await self._run_phase(session):
                return

    async def _run_phase(self, session: GenerationSession) -> bool:
        """Stream one phase; True when the session continues with the next phase."""
        body = self.kind.request_body(session.config, self.subject_id, session.session_id, session.phase_index)
        try:
            stream = await self.client.open_stream(self.kind.endpoint, body)
        except TransportError as exc:
            # The request never opened, so there is nothing server-side to salvage.
            if self._is_current(session):
                self._fail(session, exc)
            return False
        except Exception as exc:
            logger.exception("Session %s: could not open the generation stream", session.session_id)
            if self._is_current(session):
                self._fail(session, TransportError(f"Generation request failed: {exc}"))
            return False

        terminal: Any = None
        fault: Optional[BaseException] = None
        try:
            terminal = await asyncio.wait_for(self._consume(session, stream), timeout=self.stream_timeout)
        except asyncio.TimeoutError:
            fault = PartialGenerationError(f"No terminal record within {self.stream_timeout:g}s")
        except (TransportError, PartialGenerationError) as exc:
            fault = exc
        except Exception as exc:
            logger.exception("Session %s: unexpected error while reading the stream", session.session_id)
            fault = exc
        finally:
            await self._close_stream(session, stream)

        if not self._is_current(session):
            return False
        if isinstance(terminal, CompleteEvent):
            if not session.is_last_phase:
                self._finish_phase(session, terminal.artifact_id, terminal.summary)
                return True
            self.on_terminal_success(terminal)
            await self._snapshot(session)
            return False
        if isinstance(terminal, ErrorEvent):
            self._fail(session, GenerationRejected(terminal.message))
            return False
        if fault is None:
            fault = PartialGenerationError("Stream ended without a complete record")
        return await self._recover(session, fault)

    async def _consume(self, session: GenerationSession, stream: GenerationStream) -> Any:
        parser = StreamEventParser(key_for=self.kind.key_for)
        async for chunk in stream.iter_chunks():
            if not self._is_current(session):
                return None
            for event in parser.feed(chunk):
                if self._dispatch(session, event):
                    return event
        for event in parser.flush():
            if self._dispatch(session, event):
                return event
        if parser.skipped:
            logger.warning("Session %s: skipped %d malformed records", session.session_id, parser.skipped)
        return None

    def _dispatch(self, session: GenerationSession, event: Any) -> bool:
        if not self._is_current(session) or not session.accepts_events:
            return False
        self.engine.apply(event, session)
        return is_terminal(event)

    async def _close_stream(self, session: GenerationSession, stream: GenerationStream) -> None:
        try:
            await stream.aclose()
        except Exception as exc:
            logger.warning("Session %s: closing the stream failed: %s", session.session_id, exc)

    async def _recover(self, session: GenerationSession, fault: BaseException) -> bool:
        try:
            artifact = await self.recovery.find_salvage(session, fault)
        except RecoveryExhausted as exc:
            if self._is_current(session):
                self._fail(session, exc)
            return False
        if not self._is_current(session):
            return False
        salvaged = self.recovery.adopt(session, artifact)
        if not session.is_last_phase:
            self._finish_phase(session, salvaged.artifact_id, salvaged.summary)
            return True
        result = self._build_result(session, salvaged.artifact_id, salvaged.summary, recovered=True)
        self._enter_validation(session, result)
        await self._snapshot(session)
        return False

    # ---------- transitions ----------

    def _build_result(
        self,
        session: GenerationSession,
        artifact_id: Optional[str],
        summary: Dict[str, Any],
        *,
        recovered: bool,
    ) -> GenerationResult:
        if session.phase_count > 1:
            session.phase_results.append({"artifact_id": artifact_id, "summary": dict(summary)})
            summary = {f"{self.kind.phase_label}s": list(session.phase_results)}
        return GenerationResult(
            kind=self.kind.name,
            units=[unit.payload or {} for unit in session.units if unit.is_ready],
            artifact_id=artifact_id,
            summary=dict(summary),
            recovered=recovered,
        )

    def _finish_phase(self, session: GenerationSession, artifact_id: Optional[str], summary: Dict[str, Any]) -> None:
        session.phase_results.append({"artifact_id": artifact_id, "summary": dict(summary)})
        self.engine.refresh(session)
        logger.info(
            "Session %s: %s %d of %d done (%d/%d units ready)",
            session.session_id,
            self.kind.phase_label,
            session.phase_index + 1,
            session.phase_count,
            session.ready_count,
            session.total_count,
        )

    def _enter_validation(self, session: GenerationSession, result: GenerationResult) -> None:
        session.terminal = True
        session.result = result
        session.error = None
        session.step = "validation"
        self.engine.refresh(session)
        logger.info(
            "Session %s reached validation with %d units (recovered=%s)",
            session.session_id,
            len(result.units),
            result.recovered,
        )

    def _fail(self, session: GenerationSession, failure: GenerationError) -> None:
        session.terminal = True
        session.error = str(failure)
        session.step = "error"
        self.engine.refresh(session)
        self.last_failure = failure
        logger.error("Session %s failed (%s): %s", session.session_id, type(failure).__name__, failure)

    def _drop_session(self) -> None:
        session, task = self._session, self._task
        self._session = None
        self._task = None
        if session is not None:
            session.cancelled = True
        if task is not None and not task.done():
            task.cancel()
            self._track(task, label="stream")

    # ---------- side effects ----------

    def _schedule_reward(self, session: GenerationSession, result: GenerationResult) -> None:
        if self.notifier is None:
            return
        metadata = {
            "kind": self.kind.name,
            "session_id": session.session_id,
            "artifact_id": result.artifact_id,
            "unit_count": len(result.units),
            "points": self.kind.reward_points,
        }
        self._spawn(
            self.notifier.notify(user_id=self.subject_id, action_id=self.kind.reward_action, metadata=metadata),
            label="reward",
        )

    async def _snapshot(self, session: GenerationSession) -> None:
        async with self._snapshot_lock:
            if session.result is None or not self._is_current(session):
                return
            try:
                await self.store.save_snapshot(
                    user_id=self.subject_id,
                    kind=self.kind.name,
                    session_id=session.session_id,
                    config=session.config.model_dump(mode="json"),
                    units=[asdict(unit) for unit in session.units],
                    result=session.result.to_dict(),
                )
            except Exception as exc:
                logger.warning("Session %s: snapshot failed: %s", session.session_id, exc)

    async def _forget_snapshot(self) -> None:
        async with self._snapshot_lock:
            try:
                await self.store.delete_snapshot(user_id=self.subject_id, kind=self.kind.name)
            except Exception as exc:
                logger.warning("Deleting %s snapshot for %s failed: %s", self.kind.name, self.subject_id, exc)

    async def _settle(self) -> None:
        """Let a finished session's task write its snapshot before the session changes hands."""
        session, task = self._session, self._task
        if session is None or session.step == "generating" or task is None or task.done():
            return
        await asyncio.wait({task})

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, label: str) -> None:
        self._track(asyncio.create_task(coro), label=label)

    def _track(self, task: asyncio.Task, *, label: str) -> None:
        self._side_effects.add(task)

        def _done(t: asyncio.Task) -> None:
            self._side_effects.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.warning("%s task for %s failed: %s", label, self.kind.name, exc)

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for pending rewards and cancelled stream tasks to settle."""
        if self._side_effects:
            await asyncio.gather(*list(self._side_effects), return_exceptions=True)

    async def aclose(self) -> None:
        self._drop_session()
        await self.drain()


__all__ = ["PipelineSessionController"]

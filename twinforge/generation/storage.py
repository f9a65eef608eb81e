# -*- coding: utf-8 -*-
"""Generated artifact storage helpers (SQLite)."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ..app_db import db_conn
from ..config import settings
from .errors import PersistenceError
from .session import iso_now


def _loads(raw: Any, default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


def _row_to_artifact(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "artifact_id": row.get("id"),
        "kind": row.get("kind"),
        "status": row.get("status"),
        "summary": _loads(row.get("summary_json"), {}),
        "payload": _loads(row.get("payload_json"), {}),
        "unit_count": int(row.get("unit_count") or 0),
        "source_session_id": row.get("source_session_id"),
        "created_at": row.get("created_at") or "",
        "saved_at": row.get("saved_at"),
    }


def _unit_count(payload: Dict[str, Any]) -> int:
    return max((len(v) for v in payload.values() if isinstance(v, list)), default=0)


def record_generated(
    *,
    user_id: str,
    kind: str,
    payload: Dict[str, Any],
    summary: Dict[str, Any] | None = None,
    source_session_id: str | None = None,
    artifact_id: str | None = None,
    created_at: str | None = None,
    db_path: Path | None = None,
) -> Dict[str, Any]:
    """Insert a finished artifact the way the generation backend does when it completes."""
    row = {
        "id": artifact_id or str(uuid4()),
        "user_id": user_id,
        "kind": kind,
        "status": "generated",
        "summary_json": json.dumps(summary or {}, ensure_ascii=False),
        "payload_json": json.dumps(payload, ensure_ascii=False),
        "unit_count": _unit_count(payload),
        "source_session_id": source_session_id,
        "created_at": created_at or iso_now(),
        "saved_at": None,
    }
    with db_conn(db_path or settings.app_db_path) as conn:
        conn.execute(
            """
            INSERT INTO generation_artifacts (
                id, user_id, kind, status, summary_json, payload_json,
                unit_count, source_session_id, created_at, saved_at
            ) VALUES (:id, :user_id, :kind, :status, :summary_json, :payload_json,
                      :unit_count, :source_session_id, :created_at, :saved_at)
            """,
            row,
        )
    return _row_to_artifact(row)


def find_latest_generated(
    *,
    user_id: str,
    kind: str,
    created_after: str,
    db_path: Path | None = None,
) -> Optional[Dict[str, Any]]:
    with db_conn(db_path or settings.app_db_path) as conn:
        row = conn.execute(
            """
            SELECT * FROM generation_artifacts
            WHERE user_id = ? AND kind = ? AND status = 'generated' AND created_at >= ?
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (user_id, kind, created_after),
        ).fetchone()
    return _row_to_artifact(dict(row)) if row else None


def save_artifact(
    *,
    user_id: str,
    kind: str,
    payload: Dict[str, Any],
    summary: Dict[str, Any] | None = None,
    artifact_id: str | None = None,
    source_session_id: str | None = None,
    db_path: Path | None = None,
) -> Dict[str, Any]:
    """Persist an accepted artifact.

    A ``generated`` row named by ``artifact_id`` is archived and replaced by
    its saved copy; otherwise a new saved row is written. Saving the same
    session twice returns the first saved row.
    """
    now = iso_now()
    saved_id = str(uuid4())
    try:
        with db_conn(db_path or settings.app_db_path) as conn:
            if source_session_id:
                previous = conn.execute(
                    """
                    SELECT * FROM generation_artifacts
                    WHERE user_id = ? AND kind = ? AND status = 'saved' AND source_session_id = ?
                    ORDER BY saved_at DESC LIMIT 1
                    """,
                    (user_id, kind, source_session_id),
                ).fetchone()
                if previous:
                    return _row_to_artifact(dict(previous))
            if artifact_id:
                current = conn.execute(
                    "SELECT * FROM generation_artifacts WHERE id = ? AND user_id = ?",
                    (artifact_id, user_id),
                ).fetchone()
                if current and current["status"] == "saved":
                    return _row_to_artifact(dict(current))
                if current and current["status"] == "generated":
                    conn.execute(
                        "UPDATE generation_artifacts SET status = ? WHERE id = ?",
                        ("archived", artifact_id),
                    )
            conn.execute(
                """
                INSERT INTO generation_artifacts (
                    id, user_id, kind, status, summary_json, payload_json,
                    unit_count, source_session_id, created_at, saved_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    saved_id,
                    user_id,
                    kind,
                    "saved",
                    json.dumps(summary or {}, ensure_ascii=False),
                    json.dumps(payload, ensure_ascii=False),
                    _unit_count(payload),
                    source_session_id,
                    now,
                    now,
                ),
            )
            saved = conn.execute(
                "SELECT * FROM generation_artifacts WHERE id = ?",
                (saved_id,),
            ).fetchone()
    except sqlite3.Error as exc:
        raise PersistenceError(f"Saving {kind} failed: {exc}") from exc
    return _row_to_artifact(dict(saved))


def get_artifact(*, user_id: str, artifact_id: str, db_path: Path | None = None) -> Optional[Dict[str, Any]]:
    with db_conn(db_path or settings.app_db_path) as conn:
        row = conn.execute(
            "SELECT * FROM generation_artifacts WHERE id = ? AND user_id = ?",
            (artifact_id, user_id),
        ).fetchone()
    return _row_to_artifact(dict(row)) if row else None


def list_saved(*, user_id: str, kind: str, limit: int = 50, db_path: Path | None = None) -> List[Dict[str, Any]]:
    with db_conn(db_path or settings.app_db_path) as conn:
        rows = conn.execute(
            """
            SELECT * FROM generation_artifacts
            WHERE user_id = ? AND kind = ? AND status = 'saved'
            ORDER BY saved_at DESC
            LIMIT ?
            """,
            (user_id, kind, limit),
        ).fetchall()
    return [_row_to_artifact(dict(r)) for r in rows]


# ---------- resume snapshots ----------


def save_snapshot(
    *,
    user_id: str,
    kind: str,
    session_id: str,
    config: Dict[str, Any],
    units: List[Dict[str, Any]],
    result: Dict[str, Any],
    db_path: Path | None = None,
) -> None:
    now = iso_now()
    with db_conn(db_path or settings.app_db_path) as conn:
        conn.execute(
            """
            INSERT INTO generation_snapshots (
                user_id, kind, session_id, config_json, units_json, result_json, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, kind) DO UPDATE SET
                session_id = excluded.session_id,
                config_json = excluded.config_json,
                units_json = excluded.units_json,
                result_json = excluded.result_json,
                updated_at = excluded.updated_at
            """,
            (
                user_id,
                kind,
                session_id,
                json.dumps(config, ensure_ascii=False, default=str),
                json.dumps(units, ensure_ascii=False),
                json.dumps(result, ensure_ascii=False),
                now,
                now,
            ),
        )


def load_snapshot(*, user_id: str, kind: str, db_path: Path | None = None) -> Optional[Dict[str, Any]]:
    with db_conn(db_path or settings.app_db_path) as conn:
        row = conn.execute(
            "SELECT * FROM generation_snapshots WHERE user_id = ? AND kind = ?",
            (user_id, kind),
        ).fetchone()
    if not row:
        return None
    r = dict(row)
    return {
        "session_id": r.get("session_id"),
        "config": _loads(r.get("config_json"), {}),
        "units": _loads(r.get("units_json"), []),
        "result": _loads(r.get("result_json"), {}),
        "created_at": r.get("created_at"),
        "updated_at": r.get("updated_at"),
    }


def delete_snapshot(*, user_id: str, kind: str, db_path: Path | None = None) -> None:
    with db_conn(db_path or settings.app_db_path) as conn:
        conn.execute(
            "DELETE FROM generation_snapshots WHERE user_id = ? AND kind = ?",
            (user_id, kind),
        )


class ArtifactStore:
    """Awaitable facade over the SQLite helpers, bound to one database file."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or settings.app_db_path

    async def find_latest_generated(self, *, user_id: str, kind: str, created_after: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(
            find_latest_generated,
            user_id=user_id,
            kind=kind,
            created_after=created_after,
            db_path=self.db_path,
        )

    async def save_artifact(self, **kwargs: Any) -> Dict[str, Any]:
        return await asyncio.to_thread(save_artifact, db_path=self.db_path, **kwargs)

    async def list_saved(self, *, user_id: str, kind: str) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(list_saved, user_id=user_id, kind=kind, db_path=self.db_path)

    async def save_snapshot(self, **kwargs: Any) -> None:
        await asyncio.to_thread(save_snapshot, db_path=self.db_path, **kwargs)

    async def load_snapshot(self, *, user_id: str, kind: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(load_snapshot, user_id=user_id, kind=kind, db_path=self.db_path)

    async def delete_snapshot(self, *, user_id: str, kind: str) -> None:
        await asyncio.to_thread(delete_snapshot, user_id=user_id, kind=kind, db_path=self.db_path)

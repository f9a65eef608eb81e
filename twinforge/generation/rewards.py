# -*- coding: utf-8 -*-
"""Reward side effects fired once a generation succeeds."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional, Protocol
from uuid import uuid4

import httpx

from ..app_db import db_conn
from ..config import settings
from .kinds import REWARD_POINTS
from .session import iso_now


class RewardNotifier(Protocol):
    async def notify(self, *, user_id: str, action_id: str, metadata: Dict[str, Any]) -> None: ...


def record_reward(
    *,
    user_id: str,
    action_id: str,
    metadata: Dict[str, Any] | None = None,
    db_path: Path | None = None,
) -> Dict[str, Any]:
    points = REWARD_POINTS.get(action_id, 0)
    reward_id = str(uuid4())
    now = iso_now()
    with db_conn(db_path or settings.app_db_path) as conn:
        conn.execute(
            """
            INSERT INTO reward_events (id, user_id, action_id, points, metadata_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (reward_id, user_id, action_id, points, json.dumps(metadata or {}, ensure_ascii=False), now),
        )
    return {"id": reward_id, "user_id": user_id, "action_id": action_id, "points": points, "created_at": now}


def list_rewards(*, user_id: str, db_path: Path | None = None) -> list[Dict[str, Any]]:
    with db_conn(db_path or settings.app_db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM reward_events WHERE user_id = ? ORDER BY created_at DESC",
            (user_id,),
        ).fetchall()
    return [dict(r) for r in rows]


class LedgerRewardNotifier:
    """Award points by writing the local ``reward_events`` ledger."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or settings.app_db_path

    async def notify(self, *, user_id: str, action_id: str, metadata: Dict[str, Any]) -> None:
        await asyncio.to_thread(
            record_reward,
            user_id=user_id,
            action_id=action_id,
            metadata=metadata,
            db_path=self.db_path,
        )


class HttpRewardNotifier:
    """Award points through the remote gamification endpoint."""

    def __init__(self, url: str, *, timeout: float | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.url = url
        self.timeout = settings.rewards_timeout if timeout is None else timeout
        self._transport = transport

    async def notify(self, *, user_id: str, action_id: str, metadata: Dict[str, Any]) -> None:
        payload = {
            "user_id": user_id,
            "action_id": action_id,
            "points": REWARD_POINTS.get(action_id, 0),
            "metadata": metadata,
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(self.url, json=payload)
            resp.raise_for_status()


def default_notifier(db_path: Optional[Path] = None) -> RewardNotifier:
    if settings.rewards_url:
        return HttpRewardNotifier(settings.rewards_url)
    return LedgerRewardNotifier(db_path)

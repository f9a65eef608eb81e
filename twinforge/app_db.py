# -*- coding: utf-8 -*-
"""App database (generated artifacts, resume snapshots, rewards): SQLite helpers."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


def connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def init_app_db(db_path: Path) -> None:
    conn = connect(db_path)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS generation_artifacts (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                status TEXT NOT NULL,
                summary_json TEXT,
                payload_json TEXT NOT NULL,
                unit_count INTEGER NOT NULL DEFAULT 0,
                source_session_id TEXT,
                created_at TEXT NOT NULL,
                saved_at TEXT
            );
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_generation_artifacts_user_kind_status_created ON generation_artifacts(user_id, kind, status, created_at DESC);"
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS generation_snapshots (
                user_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                session_id TEXT NOT NULL,
                config_json TEXT NOT NULL,
                units_json TEXT NOT NULL,
                result_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (user_id, kind)
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS reward_events (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                action_id TEXT NOT NULL,
                points INTEGER NOT NULL,
                metadata_json TEXT,
                created_at TEXT NOT NULL
            );
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_reward_events_user_created ON reward_events(user_id, created_at DESC);"
        )
        conn.commit()
    finally:
        conn.close()


@contextmanager
def db_conn(db_path: Path) -> Iterator[sqlite3.Connection]:
    conn = connect(db_path)
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()

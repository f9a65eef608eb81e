# -*- coding: utf-8 -*-

from __future__ import annotations

import shutil
import tempfile
import unittest
from pathlib import Path

from twinforge.app_db import init_app_db
from twinforge.generation import storage
from twinforge.generation.errors import PersistenceError
from twinforge.generation.rewards import LedgerRewardNotifier, list_rewards


class TestArtifactStorage(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = Path(tempfile.mkdtemp(prefix="twinforge-test-"))
        self.db_path = self._tmp / "twinforge.db"
        init_app_db(self.db_path)

    def tearDown(self) -> None:
        shutil.rmtree(self._tmp, ignore_errors=True)

    def test_find_latest_generated_respects_subject_kind_and_time(self) -> None:
        storage.record_generated(
            user_id="u1", kind="recipes", payload={"recipes": []}, created_at="2025-01-01T00:00:00+00:00", db_path=self.db_path
        )
        newest = storage.record_generated(
            user_id="u1", kind="recipes", payload={"recipes": [{"title": "A"}]}, created_at="2025-01-03T00:00:00+00:00", db_path=self.db_path
        )
        storage.record_generated(
            user_id="u2", kind="recipes", payload={"recipes": []}, created_at="2025-01-04T00:00:00+00:00", db_path=self.db_path
        )
        storage.record_generated(
            user_id="u1", kind="meal_plan", payload={"days": []}, created_at="2025-01-05T00:00:00+00:00", db_path=self.db_path
        )

        found = storage.find_latest_generated(
            user_id="u1", kind="recipes", created_after="2025-01-02T00:00:00+00:00", db_path=self.db_path
        )
        self.assertIsNotNone(found)
        assert found is not None
        self.assertEqual(found["artifact_id"], newest["artifact_id"])
        self.assertEqual(found["unit_count"], 1)

        self.assertIsNone(
            storage.find_latest_generated(
                user_id="u1", kind="recipes", created_after="2025-01-04T00:00:00+00:00", db_path=self.db_path
            )
        )

    def test_save_archives_generated_row(self) -> None:
        generated = storage.record_generated(
            user_id="u1", kind="recipes", payload={"recipes": [{"title": "A"}]}, db_path=self.db_path
        )
        saved = storage.save_artifact(
            user_id="u1",
            kind="recipes",
            payload={"recipes": [{"title": "A"}]},
            summary={"count": 1},
            artifact_id=generated["artifact_id"],
            source_session_id="s1",
            db_path=self.db_path,
        )
        self.assertEqual(saved["status"], "saved")
        self.assertNotEqual(saved["artifact_id"], generated["artifact_id"])
        archived = storage.get_artifact(user_id="u1", artifact_id=generated["artifact_id"], db_path=self.db_path)
        assert archived is not None
        self.assertEqual(archived["status"], "archived")

        listed = storage.list_saved(user_id="u1", kind="recipes", db_path=self.db_path)
        self.assertEqual([item["artifact_id"] for item in listed], [saved["artifact_id"]])
        self.assertEqual(listed[0]["summary"], {"count": 1})
        self.assertEqual(listed[0]["source_session_id"], "s1")

    def test_save_twice_returns_existing_saved_row(self) -> None:
        saved = storage.save_artifact(user_id="u1", kind="recipes", payload={"recipes": []}, db_path=self.db_path)
        again = storage.save_artifact(
            user_id="u1", kind="recipes", payload={"recipes": []}, artifact_id=saved["artifact_id"], db_path=self.db_path
        )
        self.assertEqual(again["artifact_id"], saved["artifact_id"])
        self.assertEqual(len(storage.list_saved(user_id="u1", kind="recipes", db_path=self.db_path)), 1)

    def test_resaving_a_session_after_its_generated_row_was_archived(self) -> None:
        generated = storage.record_generated(
            user_id="u1", kind="recipes", payload={"recipes": [{"title": "A"}]}, db_path=self.db_path
        )
        kwargs = dict(
            user_id="u1",
            kind="recipes",
            payload={"recipes": [{"title": "A"}]},
            artifact_id=generated["artifact_id"],
            source_session_id="s1",
            db_path=self.db_path,
        )
        first = storage.save_artifact(**kwargs)
        second = storage.save_artifact(**kwargs)
        self.assertEqual(second["artifact_id"], first["artifact_id"])
        self.assertEqual(len(storage.list_saved(user_id="u1", kind="recipes", db_path=self.db_path)), 1)

    def test_save_failure_raises_persistence_error(self) -> None:
        missing = self._tmp / "empty.db"
        missing.touch()
        with self.assertRaises(PersistenceError):
            storage.save_artifact(user_id="u1", kind="recipes", payload={"recipes": []}, db_path=missing)

    def test_snapshot_upsert_and_delete(self) -> None:
        self.assertIsNone(storage.load_snapshot(user_id="u1", kind="recipes", db_path=self.db_path))
        for session_id in ("s1", "s2"):
            storage.save_snapshot(
                user_id="u1",
                kind="recipes",
                session_id=session_id,
                config={"recipe_count": 2},
                units=[{"key": "0", "position": 0, "status": "ready", "payload": {"title": "A"}}],
                result={"kind": "recipes", "units": [{"title": "A"}]},
                db_path=self.db_path,
            )
        snapshot = storage.load_snapshot(user_id="u1", kind="recipes", db_path=self.db_path)
        assert snapshot is not None
        self.assertEqual(snapshot["session_id"], "s2")
        self.assertEqual(snapshot["config"], {"recipe_count": 2})
        storage.delete_snapshot(user_id="u1", kind="recipes", db_path=self.db_path)
        self.assertIsNone(storage.load_snapshot(user_id="u1", kind="recipes", db_path=self.db_path))


class TestRewardLedger(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = Path(tempfile.mkdtemp(prefix="twinforge-test-"))
        self.db_path = self._tmp / "twinforge.db"
        init_app_db(self.db_path)

    async def asyncTearDown(self) -> None:
        shutil.rmtree(self._tmp, ignore_errors=True)

    async def test_ledger_notifier_records_points(self) -> None:
        notifier = LedgerRewardNotifier(self.db_path)
        await notifier.notify(user_id="u1", action_id="meal_plan_generated", metadata={"artifact_id": "p1"})
        rewards = list_rewards(user_id="u1", db_path=self.db_path)
        self.assertEqual(len(rewards), 1)
        self.assertEqual(rewards[0]["points"], 35)
        self.assertEqual(rewards[0]["action_id"], "meal_plan_generated")


if __name__ == "__main__":
    unittest.main()

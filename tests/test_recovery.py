# -*- coding: utf-8 -*-

from __future__ import annotations

import shutil
import tempfile
import unittest
from datetime import date, timedelta
from pathlib import Path

from twinforge.app_db import init_app_db
from twinforge.generation import storage
from twinforge.generation.errors import PartialGenerationError, RecoveryExhausted
from twinforge.generation.kinds import MEAL_PLAN, MealPlanConfig
from twinforge.generation.recovery import RecoveryCoordinator
from twinforge.generation.session import GenerationSession
from twinforge.generation.skeletons import create_skeletons
from twinforge.generation.storage import ArtifactStore

START = date(2025, 1, 6)


def _days(count: int) -> list[dict]:
    return [{"date": (START + timedelta(days=i)).isoformat(), "meals": [f"m{i}"]} for i in range(count)]


class _BrokenStore:
    async def find_latest_generated(self, **kwargs):
        raise RuntimeError("database unavailable")


class TestRecoveryCoordinator(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = Path(tempfile.mkdtemp(prefix="twinforge-test-"))
        self.db_path = self._tmp / "twinforge.db"
        init_app_db(self.db_path)
        self.store = ArtifactStore(self.db_path)
        self.sleeps: list[float] = []

        config = MealPlanConfig(selected_inventory_id="inv", start_date=START)
        self.session = GenerationSession(kind="meal_plan", subject_id="u1", config=config)
        self.session.set_units(create_skeletons(7, MEAL_PLAN.key_fn(config)))
        self.session.declared_total = 7
        self.session.step = "generating"
        for unit in self.session.units[:4]:
            unit.status = "ready"
            unit.payload = {"date": unit.key}

    async def asyncTearDown(self) -> None:
        shutil.rmtree(self._tmp, ignore_errors=True)

    async def _sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    def _coordinator(self, store=None) -> RecoveryCoordinator:
        return RecoveryCoordinator(MEAL_PLAN, store or self.store, grace_seconds=2, sleep=self._sleep)

    async def test_adopts_complete_artifact_created_after_start(self) -> None:
        storage.record_generated(
            user_id="u1", kind="meal_plan", payload={"days": _days(7)}, summary={"days": 7}, db_path=self.db_path
        )
        result = await self._coordinator().recover(self.session, PartialGenerationError("closed"))
        self.assertEqual(self.sleeps, [2])
        self.assertTrue(result.recovered)
        self.assertEqual(result.summary, {"days": 7})
        self.assertEqual(len(result.units), 7)
        self.assertEqual(self.session.ready_count, 7)
        self.assertEqual(self.session.units[6].payload["meals"], ["m6"])
        self.assertEqual([u.key for u in self.session.units][0], START.isoformat())

    async def test_nothing_found_leaves_units_untouched(self) -> None:
        with self.assertRaises(RecoveryExhausted) as ctx:
            await self._coordinator().recover(self.session, PartialGenerationError("closed"))
        self.assertIn("refresh", str(ctx.exception))
        self.assertIsInstance(ctx.exception.__cause__, PartialGenerationError)
        self.assertEqual([u.status for u in self.session.units], ["ready"] * 4 + ["loading"] * 3)

    async def test_artifact_from_before_session_is_ignored(self) -> None:
        storage.record_generated(
            user_id="u1",
            kind="meal_plan",
            payload={"days": _days(7)},
            created_at="2000-01-01T00:00:00+00:00",
            db_path=self.db_path,
        )
        with self.assertRaises(RecoveryExhausted):
            await self._coordinator().recover(self.session, PartialGenerationError("closed"))

    async def test_incomplete_artifact_is_not_adopted(self) -> None:
        storage.record_generated(user_id="u1", kind="meal_plan", payload={"days": _days(5)}, db_path=self.db_path)
        with self.assertRaises(RecoveryExhausted):
            await self._coordinator().recover(self.session, PartialGenerationError("closed"))
        self.assertEqual(self.session.ready_count, 4)

    async def test_lookup_failure_counts_as_nothing_found(self) -> None:
        with self.assertRaises(RecoveryExhausted):
            await self._coordinator(_BrokenStore()).recover(self.session, PartialGenerationError("closed"))

    async def test_multi_phase_session_only_replaces_the_faulted_phase(self) -> None:
        config = MealPlanConfig(selected_inventory_id="inv", start_date=START, week_count=2)
        session = GenerationSession(kind="meal_plan", subject_id="u1", config=config)
        session.set_units(create_skeletons(14, MEAL_PLAN.key_fn(config), 2))
        session.declared_total = 14
        session.phase_count = 2
        for unit in session.units[:7]:
            unit.status = "ready"
            unit.payload = {"date": unit.key, "week": 1}
        session.begin_phase(1)

        week2 = [{"date": (START + timedelta(days=7 + i)).isoformat(), "meals": []} for i in range(7)]
        storage.record_generated(
            user_id="u1", kind="meal_plan", payload={"days": week2}, artifact_id="w2", db_path=self.db_path
        )

        result = await self._coordinator().recover(session, PartialGenerationError("closed"))

        self.assertEqual(result.artifact_id, "w2")
        self.assertTrue(session.recovered)
        self.assertEqual(session.ready_count, 14)
        self.assertEqual([u.payload.get("week") for u in session.units[:7]], [1] * 7)
        self.assertEqual([u.key for u in session.units[7:]], [d["date"] for d in week2])
        self.assertEqual([u.phase for u in session.units], [0] * 7 + [1] * 7)
        self.assertEqual([u.position for u in session.units], list(range(14)))


if __name__ == "__main__":
    unittest.main()

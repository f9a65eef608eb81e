# -*- coding: utf-8 -*-
"""One pipeline controller per (user, generation kind)."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Tuple

from ..config import settings
from .client import GenerationClient
from .controller import PipelineSessionController
from .kinds import GenerationKind, get_kind
from .recovery import RecoveryCoordinator
from .rewards import RewardNotifier, default_notifier
from .storage import ArtifactStore

logger = logging.getLogger(__name__)


class PipelineRegistry:
    """Hands out controllers, creating them on first use.

    The factories let tests swap the remote client or the store without
    touching the HTTP layer.
    """

    def __init__(
        self,
        *,
        client_factory: Optional[Callable[[], GenerationClient]] = None,
        store: Optional[ArtifactStore] = None,
        notifier: Optional[RewardNotifier] = None,
        stream_timeout: Optional[float] = None,
        grace_seconds: Optional[float] = None,
        max_controllers: Optional[int] = None,
    ) -> None:
        self.client_factory = client_factory or GenerationClient
        self.store = store or ArtifactStore()
        self.notifier = notifier if notifier is not None else default_notifier(self.store.db_path)
        self.stream_timeout = stream_timeout
        self.grace_seconds = grace_seconds
        self.max_controllers = settings.max_controllers if max_controllers is None else max_controllers
        # Least recently used first.
        self.controllers: Dict[Tuple[str, str], PipelineSessionController] = {}

    def get(self, user_id: str, kind_name: str) -> PipelineSessionController:
        kind: GenerationKind = get_kind(kind_name)
        key = (user_id, kind.name)
        controller = self.controllers.pop(key, None)
        if controller is None:
            self._evict_idle(room_for=1)
            controller = PipelineSessionController(
                kind,
                subject_id=user_id,
                client=self.client_factory(),
                store=self.store,
                notifier=self.notifier,
                recovery=RecoveryCoordinator(kind, self.store, grace_seconds=self.grace_seconds),
                stream_timeout=self.stream_timeout,
            )
            logger.debug("Created %s controller for %s", kind.name, user_id)
        self.controllers[key] = controller
        return controller

    def _evict_idle(self, *, room_for: int) -> None:
        """Drop least recently used idle controllers until ``room_for`` more fit under the cap.

        Busy controllers are never evicted, so the map may exceed the cap while
        that many sessions are live.
        """
        excess = len(self.controllers) + room_for - self.max_controllers
        if excess <= 0:
            return
        for key in [k for k, c in self.controllers.items() if c.idle][:excess]:
            del self.controllers[key]
            logger.debug("Evicted idle %s controller for %s", key[1], key[0])

    async def shutdown(self) -> None:
        for controller in list(self.controllers.values()):
            await controller.aclose()
        self.controllers.clear()


pipeline_registry: Optional[PipelineRegistry] = None


def get_registry() -> PipelineRegistry:
    global pipeline_registry
    if pipeline_registry is None:
        pipeline_registry = PipelineRegistry()
    return pipeline_registry

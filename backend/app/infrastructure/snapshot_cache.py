from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..domain.closed_dates import ClosedDateRegistry
from ..domain.repositories import ClosedDateRepository, SettingsRepository
from ..domain.system_settings import SystemSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfigSnapshot:
    settings: SystemSettings
    closed_dates: ClosedDateRegistry
    fetched_at: float


class SnapshotProvider:
    """
    Process-level cache of the admin configuration handed to the engine.
    Snapshots are replaced wholesale, never mutated; invalidate() is the hook for
    change notifications from the settings store.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._snapshot: Optional[ConfigSnapshot] = None
        self._lock = asyncio.Lock()

    def invalidate(self) -> None:
        self._snapshot = None

    async def get(
        self,
        settings_repo: SettingsRepository,
        closed_date_repo: ClosedDateRepository,
    ) -> ConfigSnapshot:
        snapshot = self._snapshot
        if snapshot is not None and not self._expired(snapshot):
            return snapshot
        async with self._lock:
            snapshot = self._snapshot
            if snapshot is not None and not self._expired(snapshot):
                return snapshot
            settings = await settings_repo.fetch_settings()
            closed_dates = await closed_date_repo.fetch_closed_dates()
            snapshot = ConfigSnapshot(
                settings=settings,
                closed_dates=ClosedDateRegistry(closed_dates),
                fetched_at=self._clock(),
            )
            self._snapshot = snapshot
            logger.debug("refreshed config snapshot with %d closed dates", len(closed_dates))
            return snapshot

    def _expired(self, snapshot: ConfigSnapshot) -> bool:
        return self._clock() - snapshot.fetched_at >= self.ttl_seconds

"""Polling driver that ties the session manager to the settings table.

Every ``interval`` seconds:
  - disabled: stop the manager (once) and flush what its agents counted
  - enabled: flush counters, reload the configuration, rescan targets
"""

import asyncio
import logging
from typing import Optional

from autoaccept.cdp.manager import SessionManager
from autoaccept.config import is_enabled, load_config
from autoaccept.database import Database

logger = logging.getLogger(__name__)

CONTROL_INTERVAL = 5.0


class Controller:
    def __init__(
        self,
        manager: SessionManager,
        db: Database,
        interval: float = CONTROL_INTERVAL,
        workspace: Optional[str] = None,
    ):
        self.manager = manager
        self.db = db
        self.interval = interval
        self.workspace = workspace
        self.active = False
        self._stopped = False

    def flush_stats(self) -> tuple[int, int]:
        """Move the manager's read-and-reset counters into the database."""
        stats = self.manager.get_stats()
        if not stats.empty:
            self.db.increment_stats(
                accepted=stats.clicks, blocked=stats.blocked, workspace=self.workspace
            )
            logger.debug("Persisted %d click(s), %d block(s)", stats.clicks, stats.blocked)
        return stats.clicks, stats.blocked

    async def run_once(self) -> int:
        """One control cycle. Returns the number of connected targets."""
        if not is_enabled(self.db):
            if self.active:
                logger.info("Auto-accept disabled, stopping all agents")
                await self.manager.stop()
                self.active = False
            self.flush_stats()
            return 0

        self.flush_stats()
        count = await self.manager.scan(load_config(self.db))
        if not self.active:
            logger.info("Auto-accept active on %d target(s)", count)
        self.active = True
        return count

    async def run(self) -> None:
        """Loop until ``stop()`` or cancellation, then shut the manager down."""
        self._stopped = False
        try:
            while not self._stopped:
                try:
                    await self.run_once()
                except Exception as e:
                    logger.warning("Control cycle failed: %s", e)
                await asyncio.sleep(self.interval)
        finally:
            await self.manager.stop()
            self.active = False
            self.flush_stats()

    def stop(self) -> None:
        self._stopped = True

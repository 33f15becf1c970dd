"""Removal of expired cache entries."""

import logging
import random
import time
from typing import Callable, Optional

from sqlalchemy.orm import Session

from .config import JanitorConfig
from .store import StoreAdapter

logger = logging.getLogger(__name__)


class Janitor:
    """Sweeps expired rows and the tag rows they leave behind."""

    def __init__(
        self,
        store: StoreAdapter,
        config: Optional[JanitorConfig] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.config = config or JanitorConfig()
        self.clock = clock
        self.rng = rng or random.Random()

    def sweep(self, session: Optional[Session] = None) -> int:
        """
        Delete every entry whose expiry has passed, plus orphaned tag rows.

        Args:
            session: Run inside this transaction instead of opening one

        Returns:
            Number of entries removed
        """
        if session is None:
            with self.store.transaction() as session:
                return self._sweep(session)
        return self._sweep(session)

    def _sweep(self, session: Session) -> int:
        now = self.clock()
        removed = self.store.execute(session, "delete_expired", {"now": now}).rowcount
        orphans = self.store.execute(session, "delete_orphan_tags").rowcount

        if removed > 0:
            logger.info(f"Cleaned up {removed} expired cache entries")
        if orphans > 0:
            logger.debug(f"Removed {orphans} orphaned tag rows")
        return removed

    def maybe_sweep(self) -> bool:
        """Sweep with the configured probability. Returns whether it ran."""
        if self.config.cleanup_on_init or (
            self.config.sweep_probability > 0
            and self.rng.random() < self.config.sweep_probability
        ):
            self.sweep()
            return True
        return False

"""Collect every watch's persistable status and rewrite the status file."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from src.common.state import save_status
from src.monitor.models import WatchStatus
from src.monitor.registry import WatchRegistry
from src.monitor.watch import WatchTimeoutError

logger = logging.getLogger("woof.snapshot")


class SnapshotBuilder:
    """Queries watches one after another and hands the result to the status file.

    Writes are single-flight: a trigger that arrives while a write is in
    progress waits for it to finish before collecting its own snapshot.
    """

    def __init__(self, registry: WatchRegistry, state_file: Path | str | None) -> None:
        self.registry = registry
        self.state_file = Path(state_file) if state_file else None
        self._lock = asyncio.Lock()

    async def collect(self) -> dict[str, WatchStatus]:
        """Return endpoint -> status for every watch that has checked in."""
        statuses: dict[str, WatchStatus] = {}
        for watch in self.registry:
            if not watch.endpoint:
                continue
            status = await watch.query()
            if status.last_seen is None:
                continue
            statuses[watch.endpoint] = status
        return statuses

    async def write(self) -> bool:
        """Snapshot all watches to the status file.  Returns True on success."""
        if self.state_file is None:
            return False
        async with self._lock:
            try:
                statuses = await self.collect()
                await asyncio.to_thread(save_status, self.state_file, statuses)
            except WatchTimeoutError as e:
                logger.error("Status snapshot aborted: %s", e)
                return False
            except OSError as e:
                logger.error("Failed to write status file %s: %s", self.state_file, e)
                return False
        logger.info("Saved status of %d watch(es) to %s", len(statuses), self.state_file)
        return True

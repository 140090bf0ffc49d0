"""Ordered collection of watch actors, keyed by endpoint."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator

from src.monitor.models import WatchStatus
from src.monitor.watch import Watch, WatchEvent, WatchNotFoundError

logger = logging.getLogger("woof.registry")


def _order_key(watch: Watch) -> tuple[int, str]:
    return (int(watch.trigger), watch.endpoint)


class WatchRegistry:
    """Watches sorted by (trigger kind, endpoint) for display and snapshots.

    The sort is stable, so watches that compare equal keep insertion order.
    """

    def __init__(self) -> None:
        self._watches: list[Watch] = []
        self._by_endpoint: dict[str, Watch] = {}

    def __iter__(self) -> Iterator[Watch]:
        return iter(list(self._watches))

    def __len__(self) -> int:
        return len(self._watches)

    def __contains__(self, endpoint: object) -> bool:
        return endpoint in self._by_endpoint

    def insert(self, watch: Watch) -> None:
        if watch.endpoint in self._by_endpoint:
            raise ValueError(f"duplicate watch endpoint {watch.endpoint!r}")
        self._watches.append(watch)
        self._watches.sort(key=_order_key)
        self._by_endpoint[watch.endpoint] = watch

    def get(self, endpoint: str) -> Watch:
        try:
            return self._by_endpoint[endpoint]
        except KeyError:
            raise WatchNotFoundError(endpoint) from None

    async def dispatch(self, endpoint: str, event: WatchEvent) -> WatchStatus | None:
        """Route a kick or query to the watch for ``endpoint``."""
        return await self.get(endpoint).send(event)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        for watch in self._watches:
            if not watch.started:
                watch.start()
        logger.info("Started %d watch(es)", len(self._watches))

    async def stop(self) -> None:
        await asyncio.gather(*(w.stop() for w in self._watches))

"""Per-endpoint watch actor.

Each watch owns its liveness state inside one asyncio task.  Callers never
touch that state: they drop a message in the watch's mailbox and await the
reply, so every kick, query and timer expiry is applied one at a time and no
caller can observe a half-updated status.

The state transitions themselves live in :class:`WatchState`, which has no
clock or I/O of its own; the actor feeds it wall-clock times and drives the
timer from the event loop's monotonic clock.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Protocol

from src.monitor.models import TriggerKind, WatchConfig, WatchStatus
from src.monitor.stats import IntervalEstimator

logger = logging.getLogger("woof.watch")

DEFAULT_REPLY_TIMEOUT = 5.0  # seconds a caller waits for the actor to answer


class WatchNotFoundError(KeyError):
    """No watch is registered for the requested endpoint."""


class WatchTimeoutError(TimeoutError):
    """The watch did not answer within the reply timeout."""


class WatchEvent(str, Enum):
    KICK = "kick"
    QUERY = "query"


class ExpiryHandler(Protocol):
    def invoke(self, endpoint: str, status: WatchStatus) -> object: ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WatchState:
    """Liveness state machine for one endpoint."""

    def __init__(self, config: WatchConfig, status: WatchStatus, now: datetime) -> None:
        self.config = config
        self.last_seen = status.last_seen
        self.missed_reports = 0
        self.estimator = IntervalEstimator(status.interval_mean, status.interval_stddev)
        self._interval = timedelta(seconds=config.interval)
        if self.last_seen is None:
            self.due = now + self._interval
        else:
            self.due = self.last_seen + self._interval

    def initial_delay(self, now: datetime) -> float:
        """Seconds until the first expiry; negative when already overdue."""
        return (self.due - now).total_seconds()

    def kick(self, now: datetime) -> None:
        if self.last_seen is not None:
            self.estimator.update((now - self.last_seen).total_seconds())
        self.last_seen = now
        self.missed_reports = 0
        self.due = now + self._interval

    def expire(self, fired_at: datetime) -> None:
        self.due = fired_at + self._interval
        # A periodic watch has nobody to kick it: the expiry is the signal.
        if self.config.trigger == TriggerKind.PERIODIC:
            self.last_seen = fired_at
        else:
            self.missed_reports += 1

    def snapshot(self) -> WatchStatus:
        return WatchStatus(
            last_seen=self.last_seen,
            interval_mean=self.estimator.mean,
            interval_stddev=self.estimator.stddev,
            due=self.due,
            missed_reports=self.missed_reports,
        )


@dataclass
class _Message:
    event: WatchEvent
    reply: asyncio.Future = field(repr=False)


class Watch:
    """Actor wrapping a :class:`WatchState` behind a mailbox."""

    def __init__(
        self,
        endpoint: str,
        config: WatchConfig,
        status: WatchStatus | None = None,
        *,
        expiry: ExpiryHandler | None = None,
        reply_timeout: float = DEFAULT_REPLY_TIMEOUT,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.config = config
        self.reply_timeout = reply_timeout
        self._initial = status or WatchStatus()
        self._expiry = expiry
        self._now = now_provider or utc_now
        self._mailbox: asyncio.Queue[_Message] | None = None
        self._task: asyncio.Task | None = None

    def __repr__(self) -> str:
        return f"Watch({self.endpoint!r}, {self.trigger.label}, {self.interval}s)"

    @property
    def trigger(self) -> TriggerKind:
        return self.config.trigger

    @property
    def interval(self) -> float:
        return self.config.interval

    @property
    def started(self) -> bool:
        return self._task is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Spawn the actor task on the running event loop."""
        if self._task is not None:
            raise RuntimeError(f"watch {self.endpoint!r} already started")
        self._mailbox = asyncio.Queue()
        state = WatchState(self.config, self._initial, self._now())
        self._task = asyncio.get_running_loop().create_task(
            self._run(state), name=f"watch:{self.endpoint}",
        )
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def kick(self) -> None:
        await self._request(WatchEvent.KICK)

    async def query(self) -> WatchStatus:
        return await self._request(WatchEvent.QUERY)

    async def send(self, event: WatchEvent) -> WatchStatus | None:
        return await self._request(WatchEvent(event))

    async def _request(self, event: WatchEvent):
        loop = asyncio.get_running_loop()
        reply = loop.create_future()
        if self._mailbox is not None:
            self._mailbox.put_nowait(_Message(event, reply))
        try:
            return await asyncio.wait_for(reply, self.reply_timeout)
        except asyncio.TimeoutError:
            # wait_for cancelled the reply; the actor skips cancelled messages.
            raise WatchTimeoutError(
                f"watch {self.endpoint!r} did not answer {event.value} "
                f"within {self.reply_timeout}s"
            ) from None

    # ------------------------------------------------------------------
    # Event loop
    # ------------------------------------------------------------------

    async def _run(self, state: WatchState) -> None:
        loop = asyncio.get_running_loop()
        mailbox = self._mailbox
        deadline = loop.time() + state.initial_delay(self._now())
        logger.debug("%s armed, due %s", self.endpoint, state.due.isoformat())

        while True:
            try:
                message = mailbox.get_nowait()
            except asyncio.QueueEmpty:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    deadline = loop.time() + self.interval
                    self._on_expire(state)
                    continue
                try:
                    message = await asyncio.wait_for(mailbox.get(), remaining)
                except asyncio.TimeoutError:
                    continue

            if message.reply.done():
                continue
            try:
                if message.event == WatchEvent.KICK:
                    state.kick(self._now())
                    # Rearming replaces any deadline that passed unconsumed.
                    deadline = loop.time() + self.interval
                    message.reply.set_result(None)
                else:
                    message.reply.set_result(state.snapshot())
            except Exception as exc:
                logger.exception("%s: failed to handle %s", self.endpoint, message.event.value)
                if not message.reply.done():
                    message.reply.set_exception(exc)

    def _on_expire(self, state: WatchState) -> None:
        try:
            state.expire(self._now())
            status = state.snapshot()
            if self.trigger != TriggerKind.PERIODIC:
                logger.info(
                    "%s missed check-in (%d missed, next due %s)",
                    self.endpoint, status.missed_reports, status.due.isoformat(),
                )
            if self._expiry is not None:
                self._expiry.invoke(self.endpoint, status)
        except Exception:
            logger.exception("%s: expiry handling failed", self.endpoint)

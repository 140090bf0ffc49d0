"""Watch data model: trigger kinds, per-watch configuration and status snapshots."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum

DEFAULT_INTERVAL = 30.0  # seconds, used when a watch leaves its interval unset


class TriggerKind(IntEnum):
    """How a watch expects to be fed.  Integer order is the display order."""

    POST = 0
    MANUAL = 1
    PERIODIC = 2

    @classmethod
    def parse(cls, value: object) -> TriggerKind:
        """Case-insensitive parse; anything unrecognised becomes MANUAL."""
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                pass
        return cls.MANUAL

    @property
    def label(self) -> str:
        return self.name.capitalize()


@dataclass(frozen=True)
class WatchConfig:
    trigger: TriggerKind = TriggerKind.MANUAL
    interval: float = DEFAULT_INTERVAL
    on_expiry: str = ""

    def __post_init__(self) -> None:
        if not self.interval:
            object.__setattr__(self, "interval", DEFAULT_INTERVAL)


@dataclass(frozen=True)
class WatchStatus:
    """Immutable snapshot of one watch's liveness state.

    ``last_seen`` is ``None`` until the first signal.  ``due`` and
    ``missed_reports`` are derived at runtime and never persisted.
    """

    last_seen: datetime | None = None
    interval_mean: float = 0.0
    interval_stddev: float = 0.0
    due: datetime | None = None
    missed_reports: int = 0

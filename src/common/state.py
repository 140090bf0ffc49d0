"""Status-file persistence for watch baselines.

The status file is a flat JSON object keyed by endpoint.  Each entry keeps
only what survives a restart::

    {"backup": {"LastSeen": "2026-01-02T03:04:05.123456+00:00",
                "IntervalMean": "24h0m3.2s",
                "IntervalStdDev": "41.5s"}}

``IntervalMean``/``IntervalStdDev`` are omitted when zero.  Due times and
missed-report counts are recomputed at startup, never stored.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from src.common.durations import format_duration, parse_duration
from src.monitor.models import WatchStatus

logger = logging.getLogger("woof.state")

_FRACTION_RE = re.compile(r"\.(\d+)")
_ZERO_YEAR = 1  # Go's zero time.Time, "0001-01-01T00:00:00Z"


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_timestamp(text: str) -> datetime | None:
    """Parse an RFC 3339 timestamp.  Returns None for the zero time."""
    s = text.strip()
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    # datetime only keeps microseconds; Go writes up to nanoseconds.
    s = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), s, count=1)
    parsed = datetime.fromisoformat(s)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if parsed.year == _ZERO_YEAR:
        return None
    return parsed


def status_to_record(status: WatchStatus) -> dict[str, str]:
    record: dict[str, str] = {}
    if status.last_seen is not None:
        record["LastSeen"] = format_timestamp(status.last_seen)
    if status.interval_mean:
        record["IntervalMean"] = format_duration(status.interval_mean)
    if status.interval_stddev:
        record["IntervalStdDev"] = format_duration(status.interval_stddev)
    return record


def record_to_status(record: dict[str, Any]) -> WatchStatus:
    """Rebuild the persisted part of a status.  Raises ValueError on bad input."""
    if not isinstance(record, dict):
        raise ValueError("status record must be an object")
    for key in ("LastSeen", "IntervalMean", "IntervalStdDev"):
        value = record.get(key)
        if value is not None and not isinstance(value, str):
            raise ValueError(f"{key} must be a string, got {type(value).__name__}")
    last_seen = record.get("LastSeen")
    mean = record.get("IntervalMean") or ""
    stddev = record.get("IntervalStdDev") or ""
    return WatchStatus(
        last_seen=parse_timestamp(last_seen) if last_seen else None,
        interval_mean=parse_duration(mean) if mean else 0.0,
        interval_stddev=parse_duration(stddev) if stddev else 0.0,
    )


def load_status(state_path: Path | str) -> dict[str, WatchStatus]:
    """Load every endpoint's saved status.  Returns empty dict if file missing or corrupt."""
    path = Path(state_path)
    if not path.exists():
        logger.info("No status file at %s, starting without previous state", path)
        return {}
    try:
        with open(path, encoding="utf-8") as fh:
            raw = json.load(fh)
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("%s: %s, continuing without previous state", path, exc)
        return {}
    if not isinstance(raw, dict):
        logger.warning("%s: expected a JSON object, continuing without previous state", path)
        return {}

    statuses: dict[str, WatchStatus] = {}
    for endpoint, record in raw.items():
        try:
            statuses[endpoint] = record_to_status(record)
        except (TypeError, ValueError) as exc:
            logger.warning("%s: skipping saved status for %r: %s", path, endpoint, exc)
    return statuses


def save_status(state_path: Path | str, statuses: dict[str, WatchStatus]) -> None:
    """Atomically rewrite the whole status file."""
    path = Path(state_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {endpoint: status_to_record(st) for endpoint, st in statuses.items()}
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False)
    tmp.replace(path)

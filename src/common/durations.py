"""Duration strings in the ``<number><unit>`` grammar used by config and state files.

Accepts the same grammar as Go's ``time.ParseDuration`` (``300ms``, ``1h30m``,
``-1.5h``, ``0``) and renders the same way ``time.Duration.String()`` does,
so status files written by older deployments round-trip unchanged.
Values are float seconds everywhere else in the code base.
"""

from __future__ import annotations

import re

_NS_PER_UNIT: dict[str, int] = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,  # micro sign
    "μs": 1_000,  # greek mu
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}

_UNIT = r"ns|us|µs|μs|ms|s|m|h"
_COMPONENT_RE = re.compile(rf"(\d*(?:\.\d*)?)({_UNIT})")
_DURATION_RE = re.compile(rf"(?:\d*(?:\.\d*)?(?:{_UNIT}))+")


def parse_duration(text: str) -> float:
    """Parse a duration string and return seconds.

    Raises ``ValueError`` for anything outside the grammar, including an
    empty string and bare numbers other than ``0``.
    """
    s = text.strip()
    orig = s
    sign = 1.0
    if s[:1] in ("-", "+"):
        if s[0] == "-":
            sign = -1.0
        s = s[1:]
    if s == "0":
        return 0.0
    if not s or not _DURATION_RE.fullmatch(s):
        raise ValueError(f"invalid duration {orig!r}")

    total_ns = 0.0
    for number, unit in _COMPONENT_RE.findall(s):
        if not any(ch.isdigit() for ch in number):
            raise ValueError(f"invalid duration {orig!r}")
        total_ns += float(number) * _NS_PER_UNIT[unit]
    return sign * total_ns / 1e9


def _frac(value: int, unit: int) -> str:
    """Render ``value / unit`` with trailing zeros trimmed."""
    whole, rem = divmod(value, unit)
    if not rem:
        return str(whole)
    width = len(str(unit)) - 1
    digits = str(rem).rjust(width, "0").rstrip("0")
    return f"{whole}.{digits}"


def format_duration(seconds: float) -> str:
    """Render seconds as a duration string, e.g. ``1h2m3.5s`` or ``250ms``."""
    ns = round(seconds * 1e9)
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    ns = abs(ns)

    if ns < 1_000:
        return f"{sign}{ns}ns"
    if ns < 1_000_000:
        return f"{sign}{_frac(ns, 1_000)}µs"
    if ns < 1_000_000_000:
        return f"{sign}{_frac(ns, 1_000_000)}ms"

    total_s, frac_ns = divmod(ns, 1_000_000_000)
    hours, rem = divmod(total_s, 3600)
    minutes, secs = divmod(rem, 60)
    sec_part = _frac(secs * 1_000_000_000 + frac_ns, 1_000_000_000) + "s"
    if hours:
        return f"{sign}{hours}h{minutes}m{sec_part}"
    if minutes:
        return f"{sign}{minutes}m{sec_part}"
    return sign + sec_part


def coerce_duration(value: object) -> float:
    """Accept a duration string or a plain number of seconds (YAML ints/floats)."""
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        return parse_duration(value)
    raise ValueError(f"invalid duration {value!r}")

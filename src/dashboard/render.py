"""HTML status page for the watch list."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from html import escape
from urllib.parse import quote

from src.common.durations import format_duration
from src.monitor.models import TriggerKind, WatchStatus
from src.monitor.watch import Watch


def friendly(t: datetime | None, now: datetime | None = None) -> str:
    """Short human form of a timestamp relative to ``now``."""
    if t is None:
        return "-"
    now = now or datetime.now(timezone.utc)
    delta = t - now
    age = abs(delta)
    local = t.astimezone()
    if age <= timedelta(minutes=30):
        return format_duration(round(delta.total_seconds()))
    if age <= timedelta(hours=12):
        return local.strftime("%H:%M")
    if age <= timedelta(days=3):
        return local.strftime("%a %H:%M")
    if age <= timedelta(days=182):
        return local.strftime("%a, %d %b")
    return local.isoformat(timespec="seconds")


def stats_text(status: WatchStatus) -> str:
    return (
        f"Mean interval: {format_duration(status.interval_mean)}\n"
        f"stddev: {format_duration(status.interval_stddev)}"
    )


_PAGE_CSS = """\
h1 {text-align: center}
table {width: 80%; margin: auto}
th {text-align: left; background: #D0D0D0}
td, th {padding: 0.2em}
tr:nth-child(even) td {background: #F0F0F0}
tr:nth-child(odd) td {background: #FDFDFD}
.ttavail {position: relative; display: inline-block; border-bottom: 1px dotted black}
.ttavail .tt {
    visibility: hidden; background-color: black; color: #fff; text-align: center;
    border-radius: 6px; padding: 0.2em; top: 1.4em; left: 0; position: absolute;
    z-index: 1; white-space: pre;
}
.ttavail:hover .tt {visibility: visible}
.late {color: red; font-weight: bold}
"""


def _row(watch: Watch, status: WatchStatus, now: datetime) -> str:
    endpoint = escape(watch.endpoint)
    label = watch.trigger.label
    if watch.trigger == TriggerKind.MANUAL:
        trigger = (
            f'<form action="/{escape(quote(watch.endpoint), quote=True)}" method="POST">'
            f'<input type="submit" value="{label}"/></form>'
        )
    else:
        trigger = label

    last_seen = escape(friendly(status.last_seen, now))
    if status.missed_reports > 0:
        last_seen = f'<span class="late">{last_seen}</span>'

    return (
        "<tr>"
        f"<td>{endpoint}</td>"
        f"<td>{trigger}</td>"
        f'<td><div class="ttavail">{format_duration(watch.interval)}'
        f'<span class="tt">{escape(stats_text(status))}</span></div></td>'
        f"<td>{last_seen}</td>"
        f"<td>{escape(friendly(status.due, now))}</td>"
        "</tr>"
    )


def render_status_page(
    listen_address: str,
    rows: list[tuple[Watch, WatchStatus]],
    now: datetime | None = None,
) -> str:
    now = now or datetime.now(timezone.utc)
    body = "\n".join(_row(w, st, now) for w, st in rows)
    title = escape(listen_address)
    return (
        "<!DOCTYPE html><html><head><meta charset='utf-8'>"
        "<title>Woof!</title>"
        f"<style>{_PAGE_CSS}</style>"
        '<meta http-equiv="refresh" content="30">'
        "</head><body>"
        f"<h1>Woof on {title}</h1>"
        "<table><thead><tr><th>Endpoint</th><th>Trigger</th><th>Interval</th>"
        "<th>Last seen</th><th>Next expected</th></tr></thead>"
        f"<tbody>{body}</tbody></table>"
        "</body></html>"
    )

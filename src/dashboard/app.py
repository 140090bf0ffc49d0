#!/usr/bin/env python3
"""Woof HTTP surface -- watch kicks, status page and JSON status API.

Run:
    python3 -m src.dashboard.app config/config.yaml

``POST /<endpoint>`` kicks a watch, ``GET /`` shows every watch, and
``GET /api/watches`` returns the same data as JSON.  Sending SIGHUP to the
process writes the status file when one is configured.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from contextlib import asynccontextmanager
from typing import Any, Callable

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse, Response

from src.common.config import ConfigError, load_config, setup_logging, split_listen_address
from src.dashboard.render import render_status_page
from src.monitor.context import WoofContext, build_context
from src.monitor.models import TriggerKind, WatchStatus
from src.monitor.watch import Watch, WatchEvent, WatchNotFoundError, WatchTimeoutError

logger = logging.getLogger("woof.dashboard")

__version__ = "1.0.0"

_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

router = APIRouter()


def _context(request: Request) -> WoofContext:
    return request.app.state.context


def status_json(watch: Watch, status: WatchStatus) -> dict[str, Any]:
    return {
        "endpoint": watch.endpoint,
        "trigger": watch.trigger.label,
        "interval": watch.interval,
        "last_seen": status.last_seen.isoformat() if status.last_seen else None,
        "due": status.due.isoformat() if status.due else None,
        "missed_reports": status.missed_reports,
        "interval_mean": status.interval_mean,
        "interval_stddev": status.interval_stddev,
    }


def _busy(exc: WatchTimeoutError) -> PlainTextResponse:
    logger.warning("%s", exc)
    return PlainTextResponse("Watch busy", status_code=503)


# ══════════════════════════════════════════════════════════════════════════════
#  Status page + JSON API
# ══════════════════════════════════════════════════════════════════════════════

@router.get("/", response_class=HTMLResponse)
async def status_page(request: Request) -> Response:
    ctx = _context(request)
    try:
        rows = [(w, await w.query()) for w in ctx.registry]
    except WatchTimeoutError as exc:
        return _busy(exc)
    return HTMLResponse(render_status_page(ctx.server.listen_address, rows))


@router.get("/api/watches")
async def api_watches(request: Request) -> Response:
    ctx = _context(request)
    try:
        data = [status_json(w, await w.query()) for w in ctx.registry]
    except WatchTimeoutError as exc:
        return _busy(exc)
    return JSONResponse(data)


@router.get("/api/watches/{endpoint:path}")
async def api_watch(endpoint: str, request: Request) -> Response:
    ctx = _context(request)
    try:
        status = await ctx.registry.dispatch(endpoint, WatchEvent.QUERY)
    except WatchNotFoundError:
        return JSONResponse({"error": f"No watch named {endpoint!r}"}, status_code=404)
    except WatchTimeoutError as exc:
        return _busy(exc)
    return JSONResponse(status_json(ctx.registry.get(endpoint), status))


# ══════════════════════════════════════════════════════════════════════════════
#  Watch endpoints
# ══════════════════════════════════════════════════════════════════════════════

@router.api_route("/{endpoint:path}", methods=_ALL_METHODS)
async def kick_watch(endpoint: str, request: Request) -> Response:
    ctx = _context(request)
    try:
        watch = ctx.registry.get(endpoint)
    except WatchNotFoundError:
        return PlainTextResponse("404 page not found", status_code=404)

    if request.method != "POST":
        return PlainTextResponse("Method Not Allowed", status_code=405)
    # Periodic watches are fed by the clock alone.
    if watch.trigger == TriggerKind.PERIODIC:
        return PlainTextResponse("Forbidden", status_code=403)

    try:
        await watch.kick()
    except WatchTimeoutError as exc:
        return _busy(exc)

    # Manual kicks come from the status page's button.
    if watch.trigger == TriggerKind.MANUAL:
        return RedirectResponse("/", status_code=303)
    return PlainTextResponse("Watchdog kicked")


# ══════════════════════════════════════════════════════════════════════════════
#  Lifecycle
# ══════════════════════════════════════════════════════════════════════════════

def install_snapshot_trigger(context: WoofContext) -> Callable[[], None]:
    """Write the status file on SIGHUP.  Returns a callable that removes the handler."""
    sighup = getattr(signal, "SIGHUP", None)
    if context.server.state_file is None or sighup is None:
        return lambda: None

    loop = asyncio.get_running_loop()
    pending: set[asyncio.Task] = set()

    def _on_sighup() -> None:
        logger.info("SIGHUP received, saving status to %s", context.server.state_file)
        task = loop.create_task(context.snapshots.write())
        pending.add(task)
        task.add_done_callback(pending.discard)

    try:
        loop.add_signal_handler(sighup, _on_sighup)
    except (NotImplementedError, RuntimeError) as e:
        logger.warning("Cannot install SIGHUP handler: %s", e)
        return lambda: None
    return lambda: loop.remove_signal_handler(sighup)


@asynccontextmanager
async def lifespan(app: FastAPI):
    context: WoofContext = app.state.context
    context.registry.start()
    remove_trigger = install_snapshot_trigger(context)
    try:
        yield
    finally:
        remove_trigger()
        await context.snapshots.write()
        await context.registry.stop()
        logger.info("Woof stopped")


def create_app(context: WoofContext) -> FastAPI:
    app = FastAPI(title="Woof", version=__version__, lifespan=lifespan)
    app.state.context = context
    app.include_router(router)
    return app


# ── Entrypoint ───────────────────────────────────────────────────────────────

def _print_watches(context: WoofContext) -> None:
    print(f"Listen address: {context.server.listen_address}")
    print(f"State file: {context.server.state_file or '(none)'}")
    for watch in context.registry:
        action = "on_expiry" if watch.config.on_expiry else "no action"
        print(f"  [{watch.trigger.label:8s}] {watch.endpoint}  every {watch.interval:g}s  ({action})")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="woof", description="Woof heartbeat monitor")
    parser.add_argument("config", nargs="?", default=None, help="Path to config.yaml")
    parser.add_argument(
        "--check", action="store_true",
        help="Validate the config, list the watches and exit",
    )
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(e, file=sys.stderr)
        sys.exit(1)
    setup_logging(cfg.server)

    try:
        context = build_context(cfg)
        host, port = split_listen_address(cfg.server.listen_address)
    except ConfigError as e:
        logger.error("%s", e)
        sys.exit(1)

    if args.check:
        _print_watches(context)
        return

    import uvicorn
    uvicorn.run(
        create_app(context),
        host=host,
        port=port,
        log_level=cfg.server.log_level.lower(),
    )


if __name__ == "__main__":
    main()

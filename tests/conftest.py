"""Shared fixtures for watch, registry and HTTP tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable

import httpx
import pytest
import pytest_asyncio

from src.common.config import ServerConfig, WoofConfig
from src.monitor.context import build_context
from src.monitor.models import TriggerKind, WatchConfig

REPO_DIR = Path(__file__).resolve().parent.parent

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Wall clock the tests move by hand."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class RecordingExpiry:
    """Stands in for ExpiryInvoker and remembers every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    def invoke(self, endpoint: str, status: Any) -> None:
        self.calls.append((endpoint, status))


async def wait_until(
    predicate: Callable[[], Awaitable[bool]],
    timeout: float = 2.0,
    step: float = 0.01,
) -> None:
    """Poll an async predicate until it holds or the timeout expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if await predicate():
            return
        await asyncio.sleep(step)
    raise AssertionError(f"condition not met within {timeout}s")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def woof_config(tmp_path: Path) -> WoofConfig:
    return WoofConfig(
        server=ServerConfig(
            listen_address="127.0.0.1:8080",
            state_file=tmp_path / "state.json",
            reply_timeout=1.0,
        ),
        watches={
            "backup": WatchConfig(trigger=TriggerKind.POST, interval=60.0),
            "plants": WatchConfig(trigger=TriggerKind.MANUAL, interval=60.0),
            "tick": WatchConfig(trigger=TriggerKind.PERIODIC, interval=60.0),
        },
    )


@pytest_asyncio.fixture()
async def context(woof_config: WoofConfig, clock: FakeClock):
    """Application context with every watch started on the test's loop."""
    ctx = build_context(woof_config, pid=4242, now_provider=clock)
    ctx.registry.start()
    try:
        yield ctx
    finally:
        await ctx.registry.stop()


@pytest_asyncio.fixture()
async def client(context):
    """Async httpx client bound to the FastAPI app."""
    from src.dashboard.app import create_app

    app = create_app(context)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

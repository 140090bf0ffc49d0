"""Application context: the watches, their registry and the snapshot writer.

Built once at startup from the configuration plus whatever the status file
remembers, then handed to the HTTP app and the SIGHUP handler.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from src.common.config import ConfigError, ServerConfig, WoofConfig
from src.common.state import load_status
from src.monitor.expiry import build_invoker
from src.monitor.models import WatchStatus
from src.monitor.registry import WatchRegistry
from src.monitor.snapshot import SnapshotBuilder
from src.monitor.watch import Watch

logger = logging.getLogger("woof.context")


@dataclass
class WoofContext:
    server: ServerConfig
    registry: WatchRegistry
    snapshots: SnapshotBuilder
    pid: int


def build_context(
    config: WoofConfig,
    *,
    pid: int | None = None,
    now_provider: Callable[[], datetime] | None = None,
) -> WoofContext:
    """Merge configured watches with saved status and register them (not started)."""
    server = config.server
    pid = os.getpid() if pid is None else pid

    saved: dict[str, WatchStatus] = {}
    if server.state_file is not None:
        saved = load_status(server.state_file)

    registry = WatchRegistry()
    for endpoint, watch_cfg in config.watches.items():
        invoker = build_invoker(
            server.exec_args, watch_cfg.on_expiry, pid=pid, timeout=server.expiry_timeout,
        )
        registry.insert(Watch(
            endpoint,
            watch_cfg,
            saved.get(endpoint),
            expiry=invoker,
            reply_timeout=server.reply_timeout,
            now_provider=now_provider,
        ))

    if not len(registry):
        raise ConfigError("No watches configured (malformed config file?)")

    restored = sum(1 for endpoint in config.watches if endpoint in saved)
    logger.info("Configured %d watch(es), %d with saved status", len(registry), restored)
    return WoofContext(
        server=server,
        registry=registry,
        snapshots=SnapshotBuilder(registry, server.state_file),
        pid=pid,
    )

"""Run a watch's notification command when it expires.

The command is ``exec_args + [on_expiry]`` (by default ``/bin/bash -c
<on_expiry>``) and learns about the expiry from ``WOOF_*`` environment
variables.  Each invocation runs on its own daemon thread so a slow or hung
command never holds up the watch that triggered it.  Failures are logged and
otherwise ignored: there is no retry.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from collections.abc import Sequence

from src.monitor.models import WatchStatus

logger = logging.getLogger("woof.expiry")

DEFAULT_EXEC_ARGS = ("/bin/bash", "-c")
DEFAULT_EXPIRY_TIMEOUT = 60.0


class ExpiryInvoker:
    """Launches one watch's ``on_expiry`` command."""

    def __init__(
        self,
        exec_args: Sequence[str],
        command: str,
        *,
        pid: int | None = None,
        timeout: float | None = DEFAULT_EXPIRY_TIMEOUT,
    ) -> None:
        self.argv = [*exec_args, command]
        self.pid = os.getpid() if pid is None else pid
        self.timeout = timeout

    def environment(self, endpoint: str, status: WatchStatus) -> dict[str, str]:
        last_seen = int(status.last_seen.timestamp()) if status.last_seen else 0
        due = int(status.due.timestamp()) if status.due else 0
        return {
            "WOOF_PID": str(self.pid),
            "WOOF_ENDPOINT": endpoint,
            "WOOF_LASTSEEN": str(last_seen),
            "WOOF_DUE": str(due),
            "WOOF_MISSEDREPORTS": str(status.missed_reports),
        }

    def invoke(self, endpoint: str, status: WatchStatus) -> threading.Thread:
        """Start the command on a detached worker thread and return it."""
        env = {**os.environ, **self.environment(endpoint, status)}
        thread = threading.Thread(
            target=self.run, args=(endpoint, env), name=f"expiry:{endpoint}", daemon=True,
        )
        thread.start()
        return thread

    def run(self, endpoint: str, env: dict[str, str]) -> int | None:
        """Run the command to completion.  Returns its exit code, or None on failure."""
        try:
            result = subprocess.run(
                self.argv, env=env, stdin=subprocess.DEVNULL, timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning("%s: expiry command timed out after %ss", endpoint, self.timeout)
            return None
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("%s: failed to run expiry command: %s", endpoint, e)
            return None
        if result.returncode != 0:
            logger.warning("%s: expiry command exited with %d", endpoint, result.returncode)
        return result.returncode


def build_invoker(
    exec_args: Sequence[str],
    on_expiry: str,
    *,
    pid: int | None = None,
    timeout: float | None = DEFAULT_EXPIRY_TIMEOUT,
) -> ExpiryInvoker | None:
    """Return an invoker, or None when either the prefix or the command is empty."""
    if not exec_args or not on_expiry:
        return None
    return ExpiryInvoker(exec_args, on_expiry, pid=pid, timeout=timeout)

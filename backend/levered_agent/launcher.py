"""Background launcher for the proxy server.

``levered-agent listen --detached`` re-executes the CLI as a child in its
own session with stdout and stderr appended to the log file, then returns
so the calling shell is free. The child sees ``LEVERED_DETACHED=1`` and
logs to the file only.
"""

import logging
import os
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DETACHED_ENV = "LEVERED_DETACHED"
STARTUP_WAIT_SECONDS = 0.5


@dataclass
class LaunchResult:
    """Outcome of a detached launch."""

    pid: int
    log_file: Path
    exit_code: int | None

    @property
    def running(self) -> bool:
        return self.exit_code is None


def is_detached_child() -> bool:
    """True inside a process started by ``launch_detached``."""
    return os.environ.get(DETACHED_ENV) == "1"


def launch_detached(
    cli_args: list[str],
    log_file: Path,
    wait_seconds: float = STARTUP_WAIT_SECONDS,
) -> LaunchResult:
    """Start ``levered-agent <cli_args>`` in the background.

    Waits ``wait_seconds`` so an immediate crash (bad port, import error)
    is reported instead of a PID that is already gone.
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)
    command = [sys.executable, "-m", "levered_agent.cli", *cli_args]
    logger.info(f"Launching detached server: {' '.join(command)}")

    with open(log_file, "ab") as log:
        child = subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=log,
            stderr=log,
            env={**os.environ, DETACHED_ENV: "1"},
            start_new_session=True,
        )

    time.sleep(wait_seconds)
    result = LaunchResult(pid=child.pid, log_file=log_file, exit_code=child.poll())
    if result.running:
        logger.info(f"Detached server running (pid={result.pid})")
    else:
        logger.error(f"Detached server exited immediately with code {result.exit_code}")
    return result

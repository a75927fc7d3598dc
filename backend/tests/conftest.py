"""Pytest fixtures for backend tests.

The agent executable is never run: ``spawner`` stands in for
``asyncio.create_subprocess_exec`` and hands out ``FakeProcess`` objects
whose stdout/stderr are real ``asyncio.StreamReader``s fed with scripted
output.
"""

import asyncio
import itertools
import json
from collections import deque
from typing import Any

import pytest

from levered_agent.api.chat import limiter
from levered_agent.config import Settings
from levered_agent.events import Event
from levered_agent.supervisor import ProcessSupervisor, SupervisorConfig

_pids = itertools.count(1000)


def pytest_configure(config):
    """Configure pytest-asyncio mode."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


def jsonl(*records: dict[str, Any]) -> bytes:
    """Encode records the way the agent prints them."""
    return "".join(json.dumps(record) + "\n" for record in records).encode("utf-8")


class FakeStdin:
    def __init__(self) -> None:
        self.data = b""
        self.closed = False

    def write(self, data: bytes) -> None:
        self.data += data

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True


class FakeProcess:
    """Scripted stand-in for ``asyncio.subprocess.Process``.

    ``records`` are printed as JSON lines unless raw ``stdout`` is given.
    With ``hang=True`` the process keeps its pipes open until it is
    signalled; ``ignore_sigterm=True`` makes it survive SIGTERM so only
    SIGKILL ends it.
    """

    def __init__(
        self,
        stdout: bytes = b"",
        records: tuple[dict[str, Any], ...] | list[dict[str, Any]] = (),
        stderr: bytes = b"",
        exit_code: int = 0,
        hang: bool = False,
        ignore_sigterm: bool = False,
    ) -> None:
        self.pid = next(_pids)
        self.returncode: int | None = None
        self.signals: list[str] = []
        self.ignore_sigterm = ignore_sigterm
        self.stdin = FakeStdin()
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self._exited = asyncio.Event()

        stdout = stdout or jsonl(*records)
        if stdout:
            self.stdout.feed_data(stdout)
        if stderr:
            self.stderr.feed_data(stderr)
        if not hang:
            self._exit(exit_code)

    def terminate(self) -> None:
        self.signals.append("SIGTERM")
        if not self.ignore_sigterm:
            self._exit(-15)

    def kill(self) -> None:
        self.signals.append("SIGKILL")
        self._exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def _exit(self, code: int) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()


class FakeSpawner:
    """Records spawn calls and returns scripted processes in order."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.options: list[dict[str, Any]] = []
        self.processes: list[FakeProcess] = []
        self.error: BaseException | None = None
        self._scripts: deque[dict[str, Any]] = deque()

    def script(self, **kwargs: Any) -> "FakeSpawner":
        """Queue the behavior of the next spawned process."""
        self._scripts.append(kwargs)
        return self

    async def __call__(self, program: str, *args: str, **kwargs: Any) -> FakeProcess:
        self.calls.append([program, *args])
        self.options.append(kwargs)
        if self.error is not None:
            raise self.error
        script = self._scripts.popleft() if self._scripts else {}
        process = FakeProcess(**script)
        self.processes.append(process)
        return process


class RecordingSink:
    """Event sink that keeps everything pushed to it."""

    def __init__(self) -> None:
        self.events: list[Event] = []
        self.busy_on_push: list[bool] = []
        self.supervisor: ProcessSupervisor | None = None

    def push(self, event: Event) -> None:
        self.events.append(event)
        if self.supervisor is not None:
            self.busy_on_push.append(self.supervisor.is_busy())

    def types(self) -> list[str]:
        return [event.type.value for event in self.events]

    def terminal(self) -> list[Event]:
        return [event for event in self.events if event.is_terminal]


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_supervisor(spawner, sink):
    """Build a started supervisor wired to the fake spawner and recording sink."""

    def factory(**config: Any) -> ProcessSupervisor:
        config.setdefault("executable", "claude")
        config.setdefault("grace_period", 0.05)
        supervisor = ProcessSupervisor(SupervisorConfig(**config), sink=sink, spawn=spawner)
        sink.supervisor = supervisor
        supervisor.start()
        return supervisor

    return factory


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        working_directory=tmp_path,
        log_dir=tmp_path / ".levered",
        shutdown_grace_seconds=0.05,
        keepalive_interval=5.0,
    )


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Keep rate limit counters from leaking between tests."""
    limiter.reset()
    yield
    limiter.reset()

"""Lifecycle of the external agent process.

The agent executable is not kept resident: every message spawns a fresh
process in print mode, writes the prompt to its stdin, closes stdin and
streams its stdout until it exits. Conversational continuity comes from the
session id the agent prints in its output, which is captured here and
handed back on the next spawn through the resume flag.
"""

import asyncio
import codecs
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from levered_agent.broadcaster import EventSink
from levered_agent.errors import BusyError, SupervisorError, SupervisorNotStartedError
from levered_agent.events import CompletedEvent, ErrorEvent, Event
from levered_agent.stream_decoder import StreamDecoder, extract_continuation_token, extract_failure_detail

logger = logging.getLogger(__name__)

# Non-interactive, streaming-JSON, no permission prompts.
BASE_ARGS = [
    "--print",
    "--output-format",
    "stream-json",
    "--verbose",  # required by stream-json in print mode
    "--permission-mode",
    "bypassPermissions",
]

STDERR_TAIL_CHARS = 500
STDERR_LOG_CHARS = 1000

SpawnFn = Callable[..., Awaitable[Any]]


@dataclass
class SupervisorConfig:
    """Resolved settings for spawning the agent."""

    executable: str = "claude"
    working_directory: str | None = None
    extra_args: list[str] = field(default_factory=list)
    resume_flag: str = "--resume"
    grace_period: float = 5.0  # seconds between SIGTERM and SIGKILL
    timeout: float | None = None  # per-job limit in seconds, None disables
    read_size: int = 4096


@dataclass
class Session:
    """The one conversation this supervisor carries."""

    continuation_token: str | None = None
    busy: bool = False
    started_at: float | None = None
    last_activity_at: float | None = None


@dataclass
class Job:
    """One spawn-to-exit cycle of the agent for a single message."""

    message: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    process: Any = None
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    exit_code: int | None = None
    stopped: bool = False
    timed_out: bool = False
    failure: str | None = None  # the agent's own account of a failed run
    task: asyncio.Task | None = None
    created_at: float = field(default_factory=time.time)

    @property
    def pid(self) -> int | None:
        return getattr(self.process, "pid", None)

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    def stderr_tail(self, limit: int = STDERR_TAIL_CHARS) -> str:
        return "".join(self.stderr)[-limit:].strip()

    async def wait(self) -> None:
        """Wait until the job has emitted its terminal event."""
        if self.task is not None:
            await asyncio.wait({self.task})


class ProcessSupervisor:
    """Spawns the agent per message and forwards its decoded events to a sink."""

    def __init__(
        self,
        config: SupervisorConfig,
        sink: EventSink,
        spawn: SpawnFn | None = None,
    ) -> None:
        self.config = config
        self._sink = sink
        self._spawn = spawn or asyncio.create_subprocess_exec
        self._decoder = StreamDecoder()
        self._session = Session()
        self._job: Job | None = None
        self._started = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def continuation_token(self) -> str | None:
        return self._session.continuation_token

    @property
    def current_job(self) -> Job | None:
        return self._job

    def is_alive(self) -> bool:
        return self._started

    def is_busy(self) -> bool:
        return self._session.busy

    def uptime_ms(self) -> int:
        if self._session.started_at is None:
            return 0
        return int((time.time() - self._session.started_at) * 1000)

    def idle_ms(self) -> int:
        if self._session.last_activity_at is None:
            return 0
        return int((time.time() - self._session.last_activity_at) * 1000)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Open the session. No process is spawned until a message arrives."""
        if self._started:
            raise SupervisorError("Agent supervisor already started")
        now = time.time()
        self._session.started_at = now
        self._session.last_activity_at = now
        self._started = True
        logger.info(
            f"Agent supervisor started: executable={self.config.executable} "
            f"cwd={self.config.working_directory or os.getcwd()}"
        )

    def build_args(self) -> list[str]:
        """Command-line arguments for the next spawn."""
        args = [*BASE_ARGS, *self.config.extra_args]
        token = self._session.continuation_token
        if token:
            args.extend([self.config.resume_flag, token])
        return args

    async def send_message(self, text: str) -> Job:
        """Spawn the agent for ``text`` and start streaming its output.

        Returns once the process is running; the job continues in the
        background and ends with exactly one terminal event on the sink.

        Raises:
            SupervisorNotStartedError: ``start()`` has not been called.
            BusyError: another job is still in flight.
        """
        if not self._started:
            raise SupervisorNotStartedError()
        if self._session.busy:
            logger.warning("Rejecting message: agent is busy")
            raise BusyError()

        self._session.busy = True
        self._session.last_activity_at = time.time()
        self._decoder.reset()
        job = Job(message=text)
        self._job = job

        args = self.build_args()
        if self._session.continuation_token:
            logger.info(f"Resuming agent session {self._session.continuation_token}", extra={"job_id": job.id})
        else:
            logger.info("No continuation token, starting a new conversation", extra={"job_id": job.id})
        logger.info(f"Spawning agent: {self.config.executable} {' '.join(args)}", extra={"job_id": job.id})
        logger.debug(f"Prompt ({len(text)} chars): {text[:100]}")

        try:
            job.process = await self._spawn(
                self.config.executable,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.config.working_directory,
                env={**os.environ},
            )
        except OSError as e:
            logger.error(f"Failed to spawn agent: {e}", extra={"job_id": job.id})
            self._finish(job, ErrorEvent(error=f"Failed to start agent: {e}", detail=self.config.executable))
            return job
        except BaseException:
            self._release(job)
            raise

        logger.info(f"Agent process started (pid={job.pid})", extra={"job_id": job.id})
        job.task = asyncio.create_task(self._run(job), name=f"agent-job-{job.id}")
        return job

    async def stop(self) -> None:
        """Terminate the in-flight process, escalating to SIGKILL after the grace period."""
        job = self._job
        if job is None or job.process is None:
            return

        job.stopped = True
        logger.info(f"Stopping agent process (pid={job.pid})", extra={"job_id": job.id})
        await self._terminate(job)

        if job.task is not None:
            done, _ = await asyncio.wait({job.task}, timeout=self.config.grace_period)
            if not done:
                logger.warning("Agent job did not finish after termination, cancelling", extra={"job_id": job.id})
                job.task.cancel()
                await asyncio.wait({job.task}, timeout=self.config.grace_period)

        if self._job is job:
            self._release(job)

    async def reset(self) -> None:
        """Stop any running job and forget the conversation."""
        await self.stop()
        if self._session.continuation_token:
            logger.info(f"Clearing continuation token {self._session.continuation_token}")
        self._session.continuation_token = None
        self._decoder.reset()

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def _run(self, job: Job) -> None:
        try:
            terminal = await self._consume(job)
        except asyncio.CancelledError:
            self._kill(job)
            self._finish(job, ErrorEvent(error="Agent process was stopped"))
            raise
        self._finish(job, terminal)

    async def _consume(self, job: Job) -> Event:
        process = job.process
        pipes = [
            asyncio.create_task(self._write_prompt(job), name=f"agent-stdin-{job.id}"),
            asyncio.create_task(self._read_stdout(job), name=f"agent-stdout-{job.id}"),
            asyncio.create_task(self._read_stderr(job), name=f"agent-stderr-{job.id}"),
        ]
        try:
            async with asyncio.timeout(self.config.timeout):
                await asyncio.gather(*pipes)
                job.exit_code = await process.wait()
        except asyncio.TimeoutError:
            job.timed_out = True
            logger.error(f"Agent timed out after {self.config.timeout}s", extra={"job_id": job.id})
            await self._terminate(job)
            return ErrorEvent(error=f"Agent timed out after {self.config.timeout:g}s")
        except Exception as e:
            logger.exception(f"Agent process error: {e}", extra={"job_id": job.id})
            await self._terminate(job)
            return ErrorEvent(error=f"Agent process error: {e}")
        finally:
            # No reader may outlive the job and feed the decoder after its terminal event.
            await _cancel_all(pipes)

        logger.info(
            f"Agent process exited (pid={job.pid})",
            extra={"job_id": job.id, "exit_code": job.exit_code},
        )

        if job.stopped:
            return ErrorEvent(error="Agent process was stopped", detail=f"exit code {job.exit_code}")
        if job.exit_code == 0:
            return CompletedEvent()

        logger.error(
            f"Agent exited with non-zero code {job.exit_code}: {job.stderr_tail()}",
            extra={"job_id": job.id, "exit_code": job.exit_code},
        )
        return ErrorEvent(
            error=f"Agent exited with code {job.exit_code}",
            detail=job.failure or job.stderr_tail() or None,
        )

    async def _write_prompt(self, job: Job) -> None:
        stdin = job.process.stdin
        if stdin is None:
            logger.error("Agent process stdin not available", extra={"job_id": job.id})
            return
        try:
            stdin.write(job.message.encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning(f"Agent closed stdin early: {e}", extra={"job_id": job.id})
        finally:
            stdin.close()
        logger.debug("Prompt written to agent stdin", extra={"job_id": job.id})

    async def _read_stdout(self, job: Job) -> None:
        stream = job.process.stdout
        utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(self.config.read_size)
            if not data:
                break
            self._handle_output(job, utf8.decode(data))
        tail = utf8.decode(b"", final=True)
        if tail:
            self._handle_output(job, tail)
        # Output ended without a trailing newline.
        self._handle_records(job, self._decoder.flush())

    async def _read_stderr(self, job: Job) -> None:
        # Read in chunks: diagnostics can hold lines longer than the reader's line limit.
        stream = job.process.stderr
        utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        partial = ""
        while True:
            data = await stream.read(self.config.read_size)
            if not data:
                break
            text = utf8.decode(data)
            job.stderr.append(text)
            *lines, partial = (partial + text).split("\n")
            for line in lines:
                self._log_stderr(job, line)
        tail = utf8.decode(b"", final=True)
        job.stderr.append(tail)
        self._log_stderr(job, partial + tail)

    def _log_stderr(self, job: Job, line: str) -> None:
        line = line.rstrip()
        if not line:
            return
        if len(line) > STDERR_LOG_CHARS:
            line = f"{line[:STDERR_LOG_CHARS]}... ({len(line)} chars)"
        logger.info(f"agent stderr: {line}", extra={"job_id": job.id})

    def _handle_output(self, job: Job, chunk: str) -> None:
        job.stdout.append(chunk)
        self._handle_records(job, self._decoder.records(chunk))

    def _handle_records(self, job: Job, records: list[dict[str, Any]]) -> None:
        for record in records:
            token = extract_continuation_token(record)
            if token and token != self._session.continuation_token:
                logger.info(
                    f"Continuation token captured: {token} "
                    f"(previous: {self._session.continuation_token})"
                )
                self._session.continuation_token = token
            failure = extract_failure_detail(record)
            if failure:
                logger.warning(f"Agent reported a failed run: {failure}", extra={"job_id": job.id})
                job.failure = failure
            for event in self._decoder.events_for(record):
                self._emit(event)

    async def _terminate(self, job: Job) -> None:
        process = job.process
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.config.grace_period)
        except asyncio.TimeoutError:
            logger.warning(
                f"Agent did not exit within {self.config.grace_period:g}s of SIGTERM, killing (pid={job.pid})",
                extra={"job_id": job.id},
            )
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    def _kill(self, job: Job) -> None:
        if job.running:
            try:
                job.process.kill()
            except ProcessLookupError:
                pass

    def _release(self, job: Job) -> None:
        if self._job is job:
            self._job = None
        self._session.busy = False
        self._session.last_activity_at = time.time()

    def _finish(self, job: Job, terminal: Event) -> None:
        # Busy is cleared before the terminal event so a subscriber reacting
        # to it can send the next message straight away.
        if self._job is not job:
            return
        self._release(job)
        self._emit(terminal.as_terminal())

    def _emit(self, event: Event) -> None:
        logger.debug(f"Emitting {event.type.value} event")
        try:
            self._sink.push(event)
        except Exception as e:
            logger.error(f"Event sink failed on {event.type.value}: {e}")


async def _cancel_all(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        if not task.done():
            task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)

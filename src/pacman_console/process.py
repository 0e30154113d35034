"""Process spawning for the backend.

Abstracts "spawn argv with a privilege level, get an awaitable for exit
and a callback stream for output" so the invoker and streaming sessions
work identically against a real subprocess or an in-memory mock.

Architecture:
- Spawner is the PROTOCOL: spawn(argv, privilege, capture) -> ProcessHandle
- ProcessHandle exposes stream(callback), wait() and close(problem)
- SubprocessSpawner runs the backend with asyncio subprocesses
- MockSpawner records spawns and replays canned output for tests
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import os
import shutil
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from typing import Protocol, runtime_checkable

from .protocol.commands import ErrorCapture, Privilege

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096

# Seconds between SIGTERM and SIGKILL after close()
KILL_GRACE = 5.0

PROBLEM_MESSAGES = {
    "timeout": "Operation timed out",
    "cancelled": "Operation was cancelled",
    "terminated": "Process was terminated",
}

DataCallback = Callable[[str], None]


class ProcessError(Exception):
    """A backend process that did not exit cleanly.

    Attributes:
        message: Failure text (stderr in "message" capture mode)
        exit_status: Exit code, negative for a signal, None if never started
        problem: Reason passed to close(), or a spawn problem code
        output: Whatever the process wrote to stdout before failing
    """

    def __init__(
        self,
        message: str = "",
        *,
        exit_status: int | None = None,
        problem: str | None = None,
        output: str = "",
    ):
        super().__init__(message)
        self.message = message
        self.exit_status = exit_status
        self.problem = problem
        self.output = output


@runtime_checkable
class ProcessHandle(Protocol):
    """A running backend process."""

    def stream(self, callback: DataCallback) -> None:
        """Deliver stdout text chunks to callback as they arrive."""
        ...

    async def wait(self) -> str:
        """Wait for exit and return all stdout text.

        Raises:
            ProcessError: On non-zero exit, spawn failure or after close()
        """
        ...

    def close(self, problem: str | None = None) -> None:
        """Request termination, recording problem as the reason."""
        ...


class Spawner(Protocol):
    """Capability to start backend processes."""

    def spawn(
        self,
        argv: Sequence[str],
        *,
        privilege: Privilege,
        capture: ErrorCapture,
    ) -> ProcessHandle: ...


def _is_root() -> bool:
    return hasattr(os, "geteuid") and os.geteuid() == 0


def escalate_argv(
    argv: Sequence[str],
    privilege: Privilege,
    escalation: Sequence[str],
) -> list[str]:
    """Prefix argv with the escalation command where the privilege asks for it.

    Raises:
        ProcessError: If privilege is required and escalation is unavailable
    """
    if _is_root() or not escalation:
        return list(argv)

    if shutil.which(escalation[0]) is not None:
        return [*escalation, *argv]

    if privilege is Privilege.REQUIRED:
        raise ProcessError(
            f"Permission denied: {escalation[0]} is not available to escalate privileges",
            problem="access-denied",
        )
    return list(argv)


async def escalation_works(escalation: Sequence[str]) -> bool:
    """Check non-interactively that the escalation command can run ``true``."""
    try:
        process = await asyncio.create_subprocess_exec(
            *escalation,
            "true",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError:
        return False
    return await process.wait() == 0


class SubprocessHandle:
    """ProcessHandle backed by an asyncio subprocess.

    The process is started in a background task as soon as the handle is
    created; register stream() before yielding to the event loop to see
    every chunk.
    """

    def __init__(
        self,
        argv: Sequence[str],
        *,
        privilege: Privilege,
        capture: ErrorCapture,
        escalation: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
    ):
        self._argv = list(argv)
        self._privilege = privilege
        self._capture = capture
        self._escalation = tuple(escalation)
        self._env = {**os.environ, **env} if env else None
        self._callback: DataCallback | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._problem: str | None = None
        self._kill_handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[str] = asyncio.create_task(self._run())

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    def stream(self, callback: DataCallback) -> None:
        self._callback = callback

    async def wait(self) -> str:
        return await asyncio.shield(self._task)

    def close(self, problem: str | None = None) -> None:
        if self._task.done():
            return
        if self._problem is None:
            self._problem = problem or "terminated"
        if self._process is not None:
            self._terminate()

    def _terminate(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        if self._kill_handle is None:
            loop = asyncio.get_running_loop()
            self._kill_handle = loop.call_later(KILL_GRACE, self._kill)

    def _kill(self) -> None:
        process = self._process
        if process is not None and process.returncode is None:
            logger.warning(f"Process {process.pid} ignored SIGTERM, killing")
            with contextlib.suppress(ProcessLookupError):
                process.kill()

    async def _resolve_argv(self) -> list[str]:
        argv = escalate_argv(self._argv, self._privilege, self._escalation)
        if self._privilege is Privilege.OPTIONAL and len(argv) > len(self._argv):
            if not await escalation_works(self._escalation):
                logger.info(f"{self._escalation[0]} cannot escalate, running unprivileged")
                return list(self._argv)
        return argv

    async def _run(self) -> str:
        argv = await self._resolve_argv()
        stderr = (
            asyncio.subprocess.STDOUT
            if self._capture is ErrorCapture.OUT
            else asyncio.subprocess.PIPE
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=stderr,
                env=self._env,
            )
        except OSError as e:
            raise ProcessError(
                f"Failed to spawn {argv[0]}: {e.strerror or e}",
                problem="spawn-failed",
            ) from e

        self._process = process
        logger.debug(f"Spawned {' '.join(argv)} (pid={process.pid})")

        # close() may have been requested while the process was starting
        if self._problem is not None:
            self._terminate()

        stderr_task = (
            asyncio.create_task(process.stderr.read()) if process.stderr else None
        )
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        chunks: list[str] = []

        try:
            assert process.stdout is not None
            while data := await process.stdout.read(CHUNK_SIZE):
                self._deliver(decoder.decode(data), chunks)
            self._deliver(decoder.decode(b"", final=True), chunks)

            returncode = await process.wait()
            error_bytes = await stderr_task if stderr_task else b""
        finally:
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
            if stderr_task and not stderr_task.done():
                stderr_task.cancel()
            if self._kill_handle is not None:
                self._kill_handle.cancel()

        output = "".join(chunks)
        logger.debug(f"Process {process.pid} exited with {returncode}")

        if self._problem is not None:
            raise ProcessError(
                PROBLEM_MESSAGES.get(self._problem, self._problem),
                exit_status=returncode,
                problem=self._problem,
                output=output,
            )

        if returncode != 0:
            if self._capture is ErrorCapture.OUT:
                message = ""
            else:
                message = error_bytes.decode("utf-8", errors="replace").strip()
                message = message or f"Process exited with code {returncode}"
            raise ProcessError(message, exit_status=returncode, output=output)

        return output

    def _deliver(self, text: str, chunks: list[str]) -> None:
        if not text:
            return
        chunks.append(text)
        if self._callback is not None:
            self._callback(text)


class SubprocessSpawner:
    """Spawner that runs the backend as a local subprocess."""

    def __init__(
        self,
        escalation_command: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
    ):
        self._escalation = tuple(escalation_command)
        self._env = env

    def spawn(
        self,
        argv: Sequence[str],
        *,
        privilege: Privilege,
        capture: ErrorCapture,
    ) -> SubprocessHandle:
        return SubprocessHandle(
            argv,
            privilege=privilege,
            capture=capture,
            escalation=self._escalation,
            env=self._env,
        )


# =============================================================================
# Mock implementation
# =============================================================================


class MockProcess:
    """In-memory ProcessHandle driven by the test.

    Usage:
        process.feed('{"type": "log", ...}\\n')
        process.finish()                       # clean exit
        process.fail("boom", exit_status=1)    # failed exit
    """

    def __init__(
        self,
        argv: Sequence[str],
        *,
        privilege: Privilege,
        capture: ErrorCapture,
        fail_on_close: bool = True,
    ):
        self.argv = list(argv)
        self.privilege = privilege
        self.capture = capture
        self.close_requests: list[str | None] = []
        self._fail_on_close = fail_on_close
        self._callback: DataCallback | None = None
        self._chunks: list[str] = []
        self._result: asyncio.Future[str] = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self._result.done()

    def stream(self, callback: DataCallback) -> None:
        self._callback = callback

    async def wait(self) -> str:
        return await asyncio.shield(self._result)

    def close(self, problem: str | None = None) -> None:
        self.close_requests.append(problem)
        if self._fail_on_close and not self.done:
            reason = problem or "terminated"
            self.fail(
                PROBLEM_MESSAGES.get(reason, reason),
                exit_status=-15,
                problem=reason,
            )

    def feed(self, text: str) -> None:
        """Emit a chunk of stdout."""
        self._chunks.append(text)
        if self._callback is not None:
            self._callback(text)

    def finish(self, output: str | None = None) -> None:
        """Exit cleanly; output defaults to everything fed so far."""
        if not self.done:
            self._result.set_result("".join(self._chunks) if output is None else output)

    def fail(
        self,
        message: str = "",
        *,
        exit_status: int | None = 1,
        problem: str | None = None,
        output: str | None = None,
    ) -> None:
        """Exit with a failure."""
        if not self.done:
            self._result.set_exception(
                ProcessError(
                    message,
                    exit_status=exit_status,
                    problem=problem,
                    output="".join(self._chunks) if output is None else output,
                )
            )


Responder = Callable[[MockProcess], None]


class MockSpawner:
    """Spawner that records spawns and replays queued responses.

    Responders run on the next loop iteration after spawn, once the
    caller has registered its stream callback.

    Usage:
        spawner = MockSpawner()
        spawner.respond_with('{"packages": [], "total": 0}')
        invoker = CommandInvoker(config, spawner=spawner)
        await invoker.invoke("list-installed")
        assert spawner.last.argv[1] == "list-installed"
    """

    def __init__(self, *, fail_on_close: bool = True):
        self.processes: list[MockProcess] = []
        self._fail_on_close = fail_on_close
        self._responders: deque[Responder] = deque()

    @property
    def last(self) -> MockProcess:
        """Most recently spawned process."""
        return self.processes[-1]

    def spawn(
        self,
        argv: Sequence[str],
        *,
        privilege: Privilege,
        capture: ErrorCapture,
    ) -> MockProcess:
        process = MockProcess(
            argv,
            privilege=privilege,
            capture=capture,
            fail_on_close=self._fail_on_close,
        )
        self.processes.append(process)
        if self._responders:
            asyncio.get_running_loop().call_soon(self._responders.popleft(), process)
        return process

    def respond(self, responder: Responder) -> None:
        """Queue an arbitrary responder for the next spawn."""
        self._responders.append(responder)

    def respond_with(self, output: str) -> None:
        """Next spawn exits cleanly with output."""
        self.respond(lambda process: process.finish(output))

    def respond_with_failure(
        self,
        message: str = "",
        *,
        exit_status: int | None = 1,
        output: str = "",
    ) -> None:
        """Next spawn fails with message."""
        self.respond(
            lambda process: process.fail(message, exit_status=exit_status, output=output)
        )

    def respond_with_stream(
        self,
        chunks: Sequence[str],
        *,
        failure: ProcessError | None = None,
    ) -> None:
        """Next spawn feeds chunks, then exits cleanly or with failure."""

        def responder(process: MockProcess) -> None:
            for chunk in chunks:
                process.feed(chunk)
            if failure is None:
                process.finish()
            else:
                process.fail(
                    failure.message,
                    exit_status=failure.exit_status,
                    problem=failure.problem,
                )

        self.respond(responder)

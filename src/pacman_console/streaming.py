"""Streaming backend commands.

Long-running operations (upgrade, sync, cache cleanup, ...) print one
JSON event per line while they work and finish with a single
``{"type": "complete", ...}`` record. A StreamingSession reassembles
lines across output chunks, dispatches typed events, mirrors them as
human-readable text, and reports exactly one terminal outcome:

    on_event(ProgressEvent(...))          # every parsed record
    on_data("[upgrade_start] linux 20%\\n") # text mirror / raw lines
    on_complete() or on_error(message)    # at most once per session

Failures are never raised; on_error is the only failure channel.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from .config import ClientConfig
from .process import ProcessError, ProcessHandle, Spawner, SubprocessSpawner
from .protocol.commands import Command
from .protocol.events import CompleteEvent, StreamEvent, parse_event, render_event

logger = logging.getLogger(__name__)

NO_COMPLETION_MESSAGE = "Backend process ended without sending completion status"
DEFAULT_FAILURE_MESSAGE = "Operation failed"


@dataclass
class StreamCallbacks:
    """Callbacks for a streaming session. All are optional."""

    on_event: Callable[[StreamEvent], None] | None = None
    on_data: Callable[[str], None] | None = None
    on_complete: Callable[[], None] | None = None
    on_error: Callable[[str], None] | None = None


class StreamHandle:
    """Caller's handle on a running session."""

    def __init__(self, session: StreamingSession, task: asyncio.Task[None]):
        self._session = session
        self._task = task

    @property
    def command(self) -> Command:
        return self._session.command

    @property
    def terminal_reached(self) -> bool:
        return self._session.terminal_reached

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        """Ask the backend to stop.

        Fires no callback itself; the process exit reports the outcome.
        """
        self._session.cancel()

    async def wait(self) -> None:
        """Wait until the session has delivered its terminal outcome."""
        await asyncio.shield(self._task)


class StreamingSession:
    """One streaming backend invocation.

    Owns its line buffer and terminal latch; nothing is shared between
    sessions.
    """

    def __init__(
        self,
        command: Command,
        callbacks: StreamCallbacks | None = None,
        *,
        config: ClientConfig,
        spawner: Spawner | None = None,
    ):
        self.command = command
        self.config = config
        self._callbacks = callbacks or StreamCallbacks()
        self._spawner = spawner or SubprocessSpawner(
            config.escalation_command, env=config.env
        )
        self._buffer = ""
        self._terminal_reached = False
        self._process: ProcessHandle | None = None

    @property
    def terminal_reached(self) -> bool:
        return self._terminal_reached

    @classmethod
    def start_command(
        cls,
        command: str,
        args: Sequence[str] = (),
        callbacks: StreamCallbacks | None = None,
        *,
        config: ClientConfig,
        spawner: Spawner | None = None,
    ) -> StreamHandle:
        """Start a streaming backend subcommand. Must run inside an event loop."""
        session = cls(
            Command.streaming(command, tuple(args)),
            callbacks,
            config=config,
            spawner=spawner,
        )
        return session.start()

    def start(self) -> StreamHandle:
        """Spawn the backend and begin consuming its output."""
        if self._process is not None:
            raise RuntimeError("Streaming session already started")

        process = self._spawner.spawn(
            self.command.argv(self.config.backend_path),
            privilege=self.command.privilege,
            capture=self.command.capture,
        )
        self._process = process
        process.stream(self.feed)
        logger.info(f"Started streaming command {self.command.name}")

        task = asyncio.create_task(self._watch(process))
        return StreamHandle(self, task)

    def cancel(self) -> None:
        if self._process is not None:
            logger.info(f"Cancelling streaming command {self.command.name}")
            self._process.close("cancelled")

    # =========================================================================
    # Line assembly
    # =========================================================================

    def feed(self, chunk: str) -> None:
        """Accept a chunk of output; complete lines are processed in order."""
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            self._process_line(line)

    def _flush(self) -> None:
        remainder, self._buffer = self._buffer, ""
        if remainder:
            self._process_line(remainder)

    def _process_line(self, line: str) -> None:
        if not line.strip():
            return

        event = parse_event(line)
        if event is None:
            self._emit("on_data", line + "\n")
            return

        self._emit("on_event", event)

        if isinstance(event, CompleteEvent):
            self._mark_terminal(event.success, event.message)
            return

        text = render_event(event)
        if text is not None:
            self._emit("on_data", text)

    # =========================================================================
    # Terminal outcome
    # =========================================================================

    def _mark_terminal(self, success: bool, message: str | None = None) -> None:
        if self._terminal_reached:
            return
        self._terminal_reached = True

        if success:
            logger.info(f"Streaming command {self.command.name} completed")
            self._emit("on_complete")
        else:
            message = DEFAULT_FAILURE_MESSAGE if message is None else message
            logger.warning(f"Streaming command {self.command.name} failed: {message}")
            self._emit("on_error", message)

    async def _watch(self, process: ProcessHandle) -> None:
        try:
            await process.wait()
        except ProcessError as e:
            status = "unknown" if e.exit_status is None else e.exit_status
            self._mark_terminal(False, e.message or f"{DEFAULT_FAILURE_MESSAGE} (exit {status})")
            return
        except Exception as e:
            logger.exception(f"Streaming command {self.command.name} crashed")
            self._mark_terminal(False, str(e) or DEFAULT_FAILURE_MESSAGE)
            return

        self._flush()
        if not self._terminal_reached:
            self._mark_terminal(False, NO_COMPLETION_MESSAGE)

    def _emit(self, name: str, *args: Any) -> None:
        callback = getattr(self._callbacks, name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.warning(f"{name} callback failed for {self.command.name}: {e}")

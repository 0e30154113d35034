"""One-shot backend commands.

A one-shot command spawns the backend, waits for it to exit and parses
its whole stdout as a single JSON document:

    <backend> list-installed 0 50 "" all all "" ""
    stdout: {"packages": [...], "total": 2, ...}

The wait races a deadline timer. Whichever of completion and timeout
happens first settles the result; the other is discarded.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Sequence
from typing import Any

from .config import ClientConfig
from .errors import ClientError, ErrorKind, classify
from .process import ProcessError, Spawner, SubprocessSpawner
from .protocol.commands import Command

logger = logging.getLogger(__name__)


def structured_error(data: Any) -> ClientError | None:
    """Interpret a parsed document as the backend's error envelope.

    Any JSON object carrying both ``code`` and ``message`` is an error,
    whatever else it contains.
    """
    if not isinstance(data, dict) or "code" not in data or "message" not in data:
        return None
    details = data.get("details")
    return ClientError(
        ErrorKind.from_code(data["code"]),
        str(data["message"]),
        details=None if details is None else str(details),
    )


def _envelope_in(output: str) -> ClientError | None:
    if not output.strip():
        return None
    try:
        return structured_error(json.loads(output))
    except json.JSONDecodeError:
        return None


class CommandInvoker:
    """Runs one-shot backend commands under a deadline.

    Each call spawns exactly one process, arms at most one timer and
    never retries.
    """

    def __init__(self, config: ClientConfig, spawner: Spawner | None = None):
        self.config = config
        self._spawner = spawner or SubprocessSpawner(
            config.escalation_command, env=config.env
        )

    async def invoke(self, command: str, args: Sequence[str] = ()) -> Any:
        """Run a backend subcommand and return its parsed JSON output.

        Args:
            command: Backend subcommand name
            args: Positional arguments, in backend order

        Returns:
            The parsed JSON document, unvalidated

        Raises:
            ClientError: On timeout, process failure, empty or invalid
                output, or a structured error from the backend
        """
        return await self.run(Command.query(command, tuple(args)))

    async def run(self, command: Command) -> Any:
        """Run a prepared Command. See invoke()."""
        output = await self._execute(command)

        if not output or not output.strip():
            raise ClientError(
                ErrorKind.INTERNAL_ERROR,
                f"Backend returned empty response for command: {command.name}",
            )

        try:
            data = json.loads(output)
        except json.JSONDecodeError as e:
            raise ClientError(
                ErrorKind.INTERNAL_ERROR,
                f"Backend returned invalid JSON for {command.name}: {e}",
            ) from e

        error = structured_error(data)
        if error is not None:
            logger.warning(
                f"Backend reported {error.kind.value} for {command.name}: {error.message}"
            )
            raise error

        return data

    async def _execute(self, command: Command) -> str:
        """Spawn the command and race its completion against the deadline."""
        loop = asyncio.get_running_loop()
        started = time.monotonic()
        timeout = self.config.timeout

        process = self._spawner.spawn(
            command.argv(self.config.backend_path),
            privilege=command.privilege,
            capture=command.capture,
        )
        logger.debug(f"Invoking backend command {command.name} {list(command.args)}")

        # Settles exactly once; done() is the latch.
        outcome: asyncio.Future[str] = loop.create_future()

        def on_timeout() -> None:
            if outcome.done():
                return
            process.close("timeout")
            outcome.set_exception(
                ClientError(
                    ErrorKind.TIMEOUT,
                    f"Backend operation timed out after {timeout:g}s",
                )
            )

        def on_completion(task: asyncio.Future[str]) -> None:
            if task.cancelled():
                if not outcome.done():
                    outcome.cancel()
                return
            error = task.exception()
            if outcome.done():
                # Lost the race; the late result is dropped.
                if error is not None:
                    logger.debug(f"Discarding late failure of {command.name}: {error}")
                return
            if error is not None:
                outcome.set_exception(error)
            else:
                outcome.set_result(task.result())

        timer = loop.call_later(timeout, on_timeout)
        completion = asyncio.ensure_future(process.wait())
        completion.add_done_callback(on_completion)

        try:
            return await outcome
        except ClientError:
            raise
        except asyncio.CancelledError:
            process.close("cancelled")
            raise
        except Exception as e:
            raise self._failure(command, e) from e
        finally:
            timer.cancel()
            logger.debug(f"{command.name} finished in {time.monotonic() - started:.2f}s")

    def _failure(self, command: Command, error: Exception) -> ClientError:
        if isinstance(error, ProcessError):
            envelope = _envelope_in(error.output)
            if envelope is not None:
                logger.warning(
                    f"Backend command {command.name} failed with {envelope.kind.value}: "
                    f"{envelope.message}"
                )
                return envelope
            text = error.message or f"exit status {error.exit_status}"
        else:
            text = str(error) or type(error).__name__

        kind = classify(text)
        logger.warning(f"Backend command {command.name} failed ({kind.value}): {text}")
        return ClientError(kind, f"Backend command '{command.name}' failed: {text}")

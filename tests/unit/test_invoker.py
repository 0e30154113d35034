"""Unit tests for the one-shot command invoker.

Runs against MockSpawner so the race between process completion and
the deadline can be driven step by step.
"""

from __future__ import annotations

import asyncio
import dataclasses
from unittest.mock import patch

import pytest

from pacman_console.config import ClientConfig
from pacman_console.errors import ClientError, ErrorKind
from pacman_console.invoker import CommandInvoker, structured_error
from pacman_console.process import MockSpawner
from pacman_console.protocol.commands import ErrorCapture, Privilege

PACKAGES = '{"packages": [{"name": "bash"}, {"name": "linux"}], "total": 2}'


@pytest.fixture
def invoker(config: ClientConfig, spawner: MockSpawner) -> CommandInvoker:
    return CommandInvoker(config, spawner=spawner)


# =============================================================================
# structured_error Tests
# =============================================================================


class TestStructuredError:
    """Tests for structured_error - the backend error envelope."""

    def test_envelope(self) -> None:
        error = structured_error({"code": "not_found", "message": "nope", "details": "x"})
        assert error is not None
        assert error.kind is ErrorKind.NOT_FOUND
        assert error.details == "x"

    def test_needs_code_and_message(self) -> None:
        assert structured_error({"code": "not_found"}) is None
        assert structured_error({"message": "hello"}) is None
        assert structured_error(["code", "message"]) is None

    def test_extra_keys_still_error(self) -> None:
        """Any object with code and message counts, whatever else it holds."""
        error = structured_error({"code": "timeout", "message": "m", "packages": []})
        assert error is not None
        assert error.kind is ErrorKind.TIMEOUT


# =============================================================================
# Success Path Tests
# =============================================================================


class TestInvokeSuccess:
    """Tests for documents returned unchanged."""

    @pytest.mark.asyncio
    async def test_returns_parsed_document(
        self, invoker: CommandInvoker, spawner: MockSpawner
    ) -> None:
        """list-installed output resolves to the parsed document."""
        spawner.respond_with(PACKAGES)

        result = await invoker.invoke("list-installed", ["0", "50", "", "all", "all", "", ""])

        assert result == {"packages": [{"name": "bash"}, {"name": "linux"}], "total": 2}

    @pytest.mark.asyncio
    async def test_spawns_backend_with_args(
        self, invoker: CommandInvoker, spawner: MockSpawner, config: ClientConfig
    ) -> None:
        """The backend is spawned once with subcommand and args in order."""
        spawner.respond_with("{}")

        await invoker.invoke("search", ["vim", "0", "100"])

        assert len(spawner.processes) == 1
        process = spawner.last
        assert process.argv == [config.backend_path, "search", "vim", "0", "100"]
        assert process.privilege is Privilege.OPTIONAL
        assert process.capture is ErrorCapture.MESSAGE

    @pytest.mark.asyncio
    async def test_non_object_documents(
        self, invoker: CommandInvoker, spawner: MockSpawner
    ) -> None:
        """Arrays and objects without an envelope pass through."""
        spawner.respond_with("[1, 2, 3]")
        assert await invoker.invoke("list-ignored") == [1, 2, 3]

        spawner.respond_with('{"code": "ok-ish"}')
        assert await invoker.invoke("list-ignored") == {"code": "ok-ish"}

    @pytest.mark.asyncio
    async def test_success_cancels_deadline(
        self, spawner: MockSpawner, config: ClientConfig
    ) -> None:
        """After success the timer never fires a close request."""
        invoker = CommandInvoker(dataclasses.replace(config, timeout=0.05), spawner=spawner)
        spawner.respond_with("{}")

        await invoker.invoke("check-updates")
        await asyncio.sleep(0.1)

        assert spawner.last.close_requests == []

    @pytest.mark.asyncio
    async def test_query_falls_back_when_escalation_refused(self) -> None:
        """A query still runs unprivileged when the escalation tool exits non-zero."""
        config = ClientConfig(backend_path="/bin/echo", escalation_command=("false",))

        with patch("pacman_console.process._is_root", return_value=False):
            result = await CommandInvoker(config).invoke('{"ok":', ["true}"])

        assert result == {"ok": True}


# =============================================================================
# Failure Path Tests
# =============================================================================


class TestInvokeFailures:
    """Tests for every failure mapping to one ClientError."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("output", ["", "   \n\t"])
    async def test_empty_output(
        self, invoker: CommandInvoker, spawner: MockSpawner, output: str
    ) -> None:
        """Empty stdout is an internal error naming the command."""
        spawner.respond_with(output)

        with pytest.raises(ClientError) as exc_info:
            await invoker.invoke("list-installed")

        assert exc_info.value.kind is ErrorKind.INTERNAL_ERROR
        assert "empty response" in exc_info.value.message
        assert "list-installed" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_invalid_json(self, invoker: CommandInvoker, spawner: MockSpawner) -> None:
        spawner.respond_with("warning: something\n{")

        with pytest.raises(ClientError) as exc_info:
            await invoker.invoke("cache-info")

        assert exc_info.value.kind is ErrorKind.INTERNAL_ERROR
        assert "invalid JSON" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_structured_error_is_authoritative(
        self, invoker: CommandInvoker, spawner: MockSpawner
    ) -> None:
        """The envelope's code wins over what the message text suggests."""
        spawner.respond_with(
            '{"code": "permission_denied", "message": "connection timed out", "details": "d"}'
        )

        with pytest.raises(ClientError) as exc_info:
            await invoker.invoke("add-ignored", ["linux"])

        error = exc_info.value
        assert error.kind is ErrorKind.PERMISSION_DENIED
        assert error.message == "connection timed out"
        assert error.details == "d"

    @pytest.mark.asyncio
    async def test_unknown_code(self, invoker: CommandInvoker, spawner: MockSpawner) -> None:
        spawner.respond_with('{"code": "alpm_error", "message": "boom"}')

        with pytest.raises(ClientError) as exc_info:
            await invoker.invoke("check-updates")

        assert exc_info.value.kind is ErrorKind.INTERNAL_ERROR
        assert exc_info.value.message == "boom"

    @pytest.mark.asyncio
    async def test_process_failure_is_classified(
        self, invoker: CommandInvoker, spawner: MockSpawner
    ) -> None:
        """stderr text of a failed process goes through classify."""
        spawner.respond_with_failure("error: unable to lock database", exit_status=1)

        with pytest.raises(ClientError) as exc_info:
            await invoker.invoke("check-updates")

        assert exc_info.value.kind is ErrorKind.DATABASE_LOCKED
        assert exc_info.value.message == (
            "Backend command 'check-updates' failed: error: unable to lock database"
        )

    @pytest.mark.asyncio
    async def test_process_failure_with_envelope(
        self, invoker: CommandInvoker, spawner: MockSpawner
    ) -> None:
        """An envelope printed by a failing process is used as-is."""
        spawner.respond_with_failure(
            "exited with 1",
            output='{"code": "not_found", "message": "Package foo not found"}',
        )

        with pytest.raises(ClientError) as exc_info:
            await invoker.invoke("local-package-info", ["foo"])

        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert exc_info.value.message == "Package foo not found"

    @pytest.mark.asyncio
    async def test_process_failure_without_message(
        self, invoker: CommandInvoker, spawner: MockSpawner
    ) -> None:
        spawner.respond_with_failure("", exit_status=2)

        with pytest.raises(ClientError) as exc_info:
            await invoker.invoke("history")

        assert exc_info.value.kind is ErrorKind.INTERNAL_ERROR
        assert "exit status 2" in exc_info.value.message


# =============================================================================
# Deadline Tests
# =============================================================================


class TestInvokeDeadline:
    """Tests for the race between completion and the deadline."""

    @pytest.mark.asyncio
    async def test_timeout(self, spawner: MockSpawner, config: ClientConfig) -> None:
        """A silent process times out and is closed with reason timeout."""
        invoker = CommandInvoker(dataclasses.replace(config, timeout=0.05), spawner=spawner)

        with pytest.raises(ClientError) as exc_info:
            await invoker.invoke("check-updates")

        assert exc_info.value.kind is ErrorKind.TIMEOUT
        assert "0.05s" in exc_info.value.message
        assert spawner.last.close_requests == ["timeout"]

    @pytest.mark.asyncio
    async def test_late_success_is_discarded(self, config: ClientConfig) -> None:
        """A process finishing after the deadline cannot change the outcome."""
        spawner = MockSpawner(fail_on_close=False)
        invoker = CommandInvoker(dataclasses.replace(config, timeout=0.05), spawner=spawner)

        with pytest.raises(ClientError) as exc_info:
            await invoker.invoke("check-updates")

        spawner.last.finish(PACKAGES)
        await asyncio.sleep(0)

        assert exc_info.value.kind is ErrorKind.TIMEOUT
        assert spawner.last.close_requests == ["timeout"]

    @pytest.mark.asyncio
    async def test_caller_cancellation_closes_process(
        self, invoker: CommandInvoker, spawner: MockSpawner
    ) -> None:
        """Cancelling the awaiting task closes the process as cancelled."""
        task = asyncio.create_task(invoker.invoke("check-updates"))
        await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert spawner.last.close_requests == ["cancelled"]

    @pytest.mark.asyncio
    async def test_independent_calls(self, invoker: CommandInvoker, spawner: MockSpawner) -> None:
        """Concurrent calls each get their own process and result."""
        spawner.respond_with('{"n": 1}')
        spawner.respond_with('{"n": 2}')

        results = await asyncio.gather(
            invoker.invoke("check-updates"),
            invoker.invoke("list-orphans"),
        )

        assert results == [{"n": 1}, {"n": 2}]
        assert [p.argv[1] for p in spawner.processes] == ["check-updates", "list-orphans"]

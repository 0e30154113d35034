"""Unit tests for PacmanClient - the per-operation facade."""

from __future__ import annotations

import dataclasses
from unittest.mock import MagicMock

import pytest

from pacman_console.client import PacmanClient
from pacman_console.config import ClientConfig
from pacman_console.errors import ClientError, ErrorKind
from pacman_console.process import MockSpawner
from pacman_console.protocol.operations import (
    CheckUpdatesParams,
    SearchParams,
    UpgradeParams,
)
from pacman_console.streaming import StreamCallbacks

COMPLETE_OK = '{"type":"complete","success":true}\n'


@pytest.fixture
def client(config: ClientConfig, spawner: MockSpawner) -> PacmanClient:
    return PacmanClient(config, spawner=spawner)


# =============================================================================
# build_params Tests
# =============================================================================


class TestBuildParams:
    """Tests for PacmanClient.build_params."""

    def test_valid(self) -> None:
        params = PacmanClient.build_params("search", {"query": "vim", "limit": "5"})
        assert params == SearchParams(query="vim", limit=5)

    def test_unknown_operation(self) -> None:
        with pytest.raises(ClientError) as exc_info:
            PacmanClient.build_params("frobnicate", {})
        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert exc_info.value.message == "Unknown operation: frobnicate"

    def test_invalid_values(self) -> None:
        with pytest.raises(ClientError) as exc_info:
            PacmanClient.build_params("news", {"days": "forever"})
        assert exc_info.value.kind is ErrorKind.VALIDATION_ERROR
        assert "days" in exc_info.value.details


# =============================================================================
# Query Tests
# =============================================================================


class TestQueries:
    """Tests for one-shot operations through the client."""

    @pytest.mark.asyncio
    async def test_list_installed(
        self, client: PacmanClient, spawner: MockSpawner, config: ClientConfig
    ) -> None:
        spawner.respond_with('{"packages": [], "total": 0}')

        result = await client.list_installed(search="linux", filter="explicit")

        assert result == {"packages": [], "total": 0}
        assert spawner.last.argv == [
            config.backend_path,
            "list-installed",
            "0",
            "50",
            "linux",
            "explicit",
            "all",
            "",
            "",
        ]

    @pytest.mark.asyncio
    async def test_sync_package_info(self, client: PacmanClient, spawner: MockSpawner) -> None:
        spawner.respond_with('{"name": "bash"}')

        await client.sync_package_info("bash", repo="core")

        assert spawner.last.argv[1:] == ["sync-package-info", "bash", "core"]

    @pytest.mark.asyncio
    async def test_errors_propagate(self, client: PacmanClient, spawner: MockSpawner) -> None:
        spawner.respond_with('{"code": "database_locked", "message": "locked"}')

        with pytest.raises(ClientError) as exc_info:
            await client.check_updates()

        assert exc_info.value.kind is ErrorKind.DATABASE_LOCKED

    @pytest.mark.asyncio
    async def test_query_rejects_streaming_operation(self, client: PacmanClient) -> None:
        with pytest.raises(ClientError) as exc_info:
            await client.query(UpgradeParams())
        assert exc_info.value.kind is ErrorKind.VALIDATION_ERROR


# =============================================================================
# Streaming Tests
# =============================================================================


class TestStreams:
    """Tests for streaming operations through the client."""

    @pytest.mark.asyncio
    async def test_upgrade(
        self, client: PacmanClient, spawner: MockSpawner, config: ClientConfig
    ) -> None:
        spawner.respond_with_stream([COMPLETE_OK])
        on_complete = MagicMock()

        handle = client.upgrade(StreamCallbacks(on_complete=on_complete), ignore=["linux"])
        await handle.wait()

        on_complete.assert_called_once_with()
        assert spawner.last.argv == [config.backend_path, "upgrade", "linux"]

    @pytest.mark.asyncio
    async def test_configured_streaming_timeout(
        self, spawner: MockSpawner, config: ClientConfig
    ) -> None:
        client = PacmanClient(dataclasses.replace(config, streaming_timeout=300), spawner=spawner)
        spawner.respond_with_stream([COMPLETE_OK])
        spawner.respond_with_stream([COMPLETE_OK])

        await client.sync_database(force=True).wait()
        await client.sync_database(timeout=60).wait()

        assert spawner.processes[0].argv[1:] == ["sync-database", "true", "300"]
        assert spawner.processes[1].argv[1:] == ["sync-database", "false", "60"]

    @pytest.mark.asyncio
    async def test_test_mirrors(self, client: PacmanClient, spawner: MockSpawner) -> None:
        spawner.respond_with_stream([COMPLETE_OK])

        await client.test_mirrors(["https://a/", "https://b/"]).wait()

        assert spawner.last.argv[1:] == ["test-mirrors", "https://a/,https://b/"]

    def test_stream_rejects_query_operation(self, client: PacmanClient) -> None:
        with pytest.raises(ClientError) as exc_info:
            client.stream(CheckUpdatesParams())
        assert exc_info.value.kind is ErrorKind.VALIDATION_ERROR

"""High-level client for the package-management backend.

One method per logical operation. Queries are awaited and return the
backend's JSON document; long-running operations start a streaming
session and return its handle immediately.

Usage:
    client = PacmanClient(ClientConfig.from_env())

    installed = await client.list_installed(search="linux")

    handle = client.upgrade(StreamCallbacks(on_data=print), ignore=["linux"])
    await handle.wait()
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError

from .config import ClientConfig
from .errors import ClientError, ErrorKind
from .invoker import CommandInvoker
from .process import Spawner, SubprocessSpawner
from .protocol import operations as ops
from .protocol.operations import OperationParams, StreamingParams, get_operation
from .streaming import StreamCallbacks, StreamHandle, StreamingSession

logger = logging.getLogger(__name__)


class PacmanClient:
    """Facade over the command invoker and streaming sessions."""

    def __init__(self, config: ClientConfig | None = None, spawner: Spawner | None = None):
        self.config = config or ClientConfig()
        self._spawner = spawner or SubprocessSpawner(
            self.config.escalation_command, env=self.config.env
        )
        self.invoker = CommandInvoker(self.config, spawner=self._spawner)

    # =========================================================================
    # Dispatch
    # =========================================================================

    @staticmethod
    def build_params(operation: str, values: dict[str, Any] | None = None) -> OperationParams:
        """Validate raw values into an operation's parameter model.

        Raises:
            ClientError: validation_error for bad values, not_found for an
                unknown operation
        """
        try:
            params_cls = get_operation(operation)
        except KeyError as e:
            raise ClientError(ErrorKind.NOT_FOUND, e.args[0]) from None
        try:
            return params_cls.model_validate(values or {})
        except ValidationError as e:
            raise ClientError(
                ErrorKind.VALIDATION_ERROR,
                f"Invalid parameters for {operation}",
                details=str(e),
            ) from e

    async def query(self, params: OperationParams) -> Any:
        """Run a one-shot operation."""
        if params.streaming:
            raise ClientError(
                ErrorKind.VALIDATION_ERROR,
                f"{params.operation} is a streaming operation",
            )
        logger.debug(f"Query {params.operation}")
        return await self.invoker.run(params.to_command())

    def stream(
        self,
        params: OperationParams,
        callbacks: StreamCallbacks | None = None,
    ) -> StreamHandle:
        """Start a streaming operation."""
        if not isinstance(params, StreamingParams):
            raise ClientError(
                ErrorKind.VALIDATION_ERROR,
                f"{params.operation} is not a streaming operation",
            )
        if params.timeout is None and self.config.streaming_timeout is not None:
            params = params.model_copy(update={"timeout": self.config.streaming_timeout})

        logger.debug(f"Stream {params.operation}")
        session = StreamingSession(
            params.to_command(),
            callbacks,
            config=self.config,
            spawner=self._spawner,
        )
        return session.start()

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_installed(self, **params: Any) -> dict[str, Any]:
        return await self.query(ops.ListInstalledParams(**params))

    async def check_updates(self) -> dict[str, Any]:
        return await self.query(ops.CheckUpdatesParams())

    async def package_info(self, name: str) -> dict[str, Any]:
        return await self.query(ops.PackageInfoParams(name=name))

    async def search(self, query: str, **params: Any) -> dict[str, Any]:
        return await self.query(ops.SearchParams(query=query, **params))

    async def sync_package_info(self, name: str, repo: str | None = None) -> dict[str, Any]:
        return await self.query(ops.SyncPackageInfoParams(name=name, repo=repo))

    async def list_orphans(self) -> dict[str, Any]:
        return await self.query(ops.ListOrphansParams())

    async def cache_info(self) -> dict[str, Any]:
        return await self.query(ops.CacheInfoParams())

    async def dependency_tree(
        self, name: str, depth: int = 3, direction: str = "forward"
    ) -> dict[str, Any]:
        return await self.query(
            ops.DependencyTreeParams(name=name, depth=depth, direction=direction)
        )

    async def history(self, **params: Any) -> dict[str, Any]:
        return await self.query(ops.HistoryParams(**params))

    async def list_downgrades(self, name: str | None = None) -> dict[str, Any]:
        return await self.query(ops.ListDowngradesParams(name=name))

    async def list_ignored(self) -> dict[str, Any]:
        return await self.query(ops.ListIgnoredParams())

    async def add_ignored(self, name: str) -> dict[str, Any]:
        return await self.query(ops.AddIgnoredParams(name=name))

    async def remove_ignored(self, name: str) -> dict[str, Any]:
        return await self.query(ops.RemoveIgnoredParams(name=name))

    async def keyring_status(self) -> dict[str, Any]:
        return await self.query(ops.KeyringStatusParams())

    async def list_mirrors(self) -> dict[str, Any]:
        return await self.query(ops.ListMirrorsParams())

    async def mirror_status(self) -> dict[str, Any]:
        return await self.query(ops.MirrorStatusParams())

    async def save_mirrorlist(self, mirrors: Sequence[dict[str, Any]]) -> dict[str, Any]:
        return await self.query(ops.SaveMirrorlistParams(mirrors=list(mirrors)))

    async def reboot_status(self) -> dict[str, Any]:
        return await self.query(ops.RebootStatusParams())

    async def schedule_config(self) -> dict[str, Any]:
        return await self.query(ops.ScheduleConfigParams())

    async def set_schedule_config(self, **params: Any) -> dict[str, Any]:
        return await self.query(ops.SetScheduleConfigParams(**params))

    async def scheduled_runs(self, offset: int = 0, limit: int = 50) -> dict[str, Any]:
        return await self.query(ops.ScheduledRunsParams(offset=offset, limit=limit))

    async def preflight_upgrade(self, ignore: Sequence[str] = ()) -> dict[str, Any]:
        return await self.query(ops.PreflightUpgradeParams(ignore=list(ignore)))

    async def news(self, days: int = 30) -> dict[str, Any]:
        return await self.query(ops.NewsParams(days=days))

    # =========================================================================
    # Streaming operations
    # =========================================================================

    def sync_database(
        self,
        callbacks: StreamCallbacks | None = None,
        *,
        force: bool = False,
        timeout: int | None = None,
    ) -> StreamHandle:
        return self.stream(ops.SyncDatabaseParams(force=force, timeout=timeout), callbacks)

    def upgrade(
        self,
        callbacks: StreamCallbacks | None = None,
        *,
        ignore: Sequence[str] = (),
        timeout: int | None = None,
    ) -> StreamHandle:
        return self.stream(ops.UpgradeParams(ignore=list(ignore), timeout=timeout), callbacks)

    def remove_orphans(
        self, callbacks: StreamCallbacks | None = None, *, timeout: int | None = None
    ) -> StreamHandle:
        return self.stream(ops.RemoveOrphansParams(timeout=timeout), callbacks)

    def clean_cache(
        self,
        callbacks: StreamCallbacks | None = None,
        *,
        keep_versions: int = 3,
        timeout: int | None = None,
    ) -> StreamHandle:
        return self.stream(
            ops.CleanCacheParams(keep_versions=keep_versions, timeout=timeout), callbacks
        )

    def downgrade(
        self,
        name: str,
        version: str,
        callbacks: StreamCallbacks | None = None,
        *,
        timeout: int | None = None,
    ) -> StreamHandle:
        return self.stream(
            ops.DowngradeParams(name=name, version=version, timeout=timeout), callbacks
        )

    def refresh_keyring(
        self, callbacks: StreamCallbacks | None = None, *, timeout: int | None = None
    ) -> StreamHandle:
        return self.stream(ops.RefreshKeyringParams(timeout=timeout), callbacks)

    def init_keyring(
        self, callbacks: StreamCallbacks | None = None, *, timeout: int | None = None
    ) -> StreamHandle:
        return self.stream(ops.InitKeyringParams(timeout=timeout), callbacks)

    def test_mirrors(
        self,
        urls: Sequence[str],
        callbacks: StreamCallbacks | None = None,
        *,
        timeout: int | None = None,
    ) -> StreamHandle:
        return self.stream(ops.TestMirrorsParams(urls=list(urls), timeout=timeout), callbacks)

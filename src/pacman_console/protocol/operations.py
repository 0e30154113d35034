"""Operation catalogue: parameters to backend argv.

Each logical operation is a parameter model that knows its backend
subcommand, whether it streams, and how to serialise itself into the
positional argv the backend parses. The backend reads arguments by
position, so the order in each ``to_args`` is a contract with it and
must only change together with the backend.

Usage:
    params = ListInstalledParams(search="linux", filter="explicit")
    command = params.to_command()
    # Command(name="list-installed",
    #         args=("0", "50", "linux", "explicit", "all", "", ""))
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any, ClassVar, Literal, get_origin

from pydantic import BaseModel, ConfigDict, Field

from .commands import Command

FilterType = Literal["all", "explicit", "dependency"]
InstalledFilterType = Literal["all", "installed", "not-installed"]
SortDirection = Literal["", "asc", "desc"]
DependencyDirection = Literal["forward", "reverse", "both"]


class OperationParams(BaseModel):
    """Base class for operation parameters."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    operation: ClassVar[str]
    command: ClassVar[str]
    streaming: ClassVar[bool] = False

    def to_args(self) -> list[str]:
        """Positional backend arguments, in backend order."""
        return []

    def to_command(self) -> Command:
        """Build the Command for this operation."""
        if self.streaming:
            return Command.streaming(self.command, self.to_args())
        return Command.query(self.command, self.to_args())


class StreamingParams(OperationParams):
    """Parameters of a long-running operation.

    ``timeout`` is not enforced client-side; it is handed to the backend
    as a trailing argument so the backend can abort on its own.
    """

    streaming: ClassVar[bool] = True

    timeout: int | None = Field(default=None, gt=0)

    def to_command(self) -> Command:
        args = self.to_args()
        if self.timeout is not None:
            args.append(str(self.timeout))
        return Command.streaming(self.command, args)


def _join(values: list[str]) -> str:
    return ",".join(values)


# =============================================================================
# Queries
# =============================================================================


class ListInstalledParams(OperationParams):
    operation: ClassVar[str] = "list_installed"
    command: ClassVar[str] = "list-installed"

    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=50, ge=1)
    search: str = ""
    filter: FilterType = "all"
    repo: str = "all"
    sort_by: str = ""
    sort_dir: SortDirection = ""

    def to_args(self) -> list[str]:
        return [
            str(self.offset),
            str(self.limit),
            self.search,
            self.filter,
            self.repo,
            self.sort_by,
            self.sort_dir,
        ]


class CheckUpdatesParams(OperationParams):
    operation: ClassVar[str] = "check_updates"
    command: ClassVar[str] = "check-updates"


class PackageInfoParams(OperationParams):
    operation: ClassVar[str] = "package_info"
    command: ClassVar[str] = "local-package-info"

    name: str = Field(min_length=1)

    def to_args(self) -> list[str]:
        return [self.name]


class SearchParams(OperationParams):
    operation: ClassVar[str] = "search"
    command: ClassVar[str] = "search"

    query: str = Field(min_length=1)
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=100, ge=1)
    installed: InstalledFilterType = "all"
    sort_by: str = ""
    sort_dir: SortDirection = ""

    def to_args(self) -> list[str]:
        return [
            self.query,
            str(self.offset),
            str(self.limit),
            self.installed,
            self.sort_by,
            self.sort_dir,
        ]


class SyncPackageInfoParams(OperationParams):
    operation: ClassVar[str] = "sync_package_info"
    command: ClassVar[str] = "sync-package-info"

    name: str = Field(min_length=1)
    repo: str | None = None

    def to_args(self) -> list[str]:
        return [self.name, self.repo] if self.repo else [self.name]


class ListOrphansParams(OperationParams):
    operation: ClassVar[str] = "list_orphans"
    command: ClassVar[str] = "list-orphans"


class CacheInfoParams(OperationParams):
    operation: ClassVar[str] = "cache_info"
    command: ClassVar[str] = "cache-info"


class DependencyTreeParams(OperationParams):
    operation: ClassVar[str] = "dependency_tree"
    command: ClassVar[str] = "dependency-tree"

    name: str = Field(min_length=1)
    depth: int = Field(default=3, ge=1)
    direction: DependencyDirection = "forward"

    def to_args(self) -> list[str]:
        return [self.name, str(self.depth), self.direction]


class HistoryParams(OperationParams):
    operation: ClassVar[str] = "history"
    command: ClassVar[str] = "history"

    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=50, ge=1)
    filter: str = ""

    def to_args(self) -> list[str]:
        return [str(self.offset), str(self.limit), self.filter]


class ListDowngradesParams(OperationParams):
    operation: ClassVar[str] = "list_downgrades"
    command: ClassVar[str] = "list-downgrades"

    name: str | None = None

    def to_args(self) -> list[str]:
        return [self.name] if self.name else []


class ListIgnoredParams(OperationParams):
    operation: ClassVar[str] = "list_ignored"
    command: ClassVar[str] = "list-ignored"


class AddIgnoredParams(OperationParams):
    operation: ClassVar[str] = "add_ignored"
    command: ClassVar[str] = "add-ignored"

    name: str = Field(min_length=1)

    def to_args(self) -> list[str]:
        return [self.name]


class RemoveIgnoredParams(AddIgnoredParams):
    operation: ClassVar[str] = "remove_ignored"
    command: ClassVar[str] = "remove-ignored"


class KeyringStatusParams(OperationParams):
    operation: ClassVar[str] = "keyring_status"
    command: ClassVar[str] = "keyring-status"


class ListMirrorsParams(OperationParams):
    operation: ClassVar[str] = "list_mirrors"
    command: ClassVar[str] = "list-mirrors"


class MirrorStatusParams(OperationParams):
    operation: ClassVar[str] = "mirror_status"
    command: ClassVar[str] = "mirror-status"


class MirrorEntry(BaseModel):
    """One mirrorlist line."""

    url: str
    enabled: bool = True
    comment: str | None = None


class SaveMirrorlistParams(OperationParams):
    operation: ClassVar[str] = "save_mirrorlist"
    command: ClassVar[str] = "save-mirrorlist"

    mirrors: list[MirrorEntry]

    def to_args(self) -> list[str]:
        return [json.dumps([m.model_dump() for m in self.mirrors])]


class RebootStatusParams(OperationParams):
    operation: ClassVar[str] = "reboot_status"
    command: ClassVar[str] = "reboot-status"


class ScheduleConfigParams(OperationParams):
    operation: ClassVar[str] = "schedule_config"
    command: ClassVar[str] = "get-schedule"


class SetScheduleConfigParams(OperationParams):
    """Empty positions leave the stored value unchanged."""

    operation: ClassVar[str] = "set_schedule_config"
    command: ClassVar[str] = "set-schedule"

    enabled: bool | None = None
    mode: Literal["check", "upgrade"] | None = None
    schedule: str | None = None
    max_packages: int | None = Field(default=None, ge=0)

    def to_args(self) -> list[str]:
        enabled = "" if self.enabled is None else str(self.enabled).lower()
        max_packages = "" if self.max_packages is None else str(self.max_packages)
        return [enabled, self.mode or "", self.schedule or "", max_packages]


class ScheduledRunsParams(OperationParams):
    operation: ClassVar[str] = "scheduled_runs"
    command: ClassVar[str] = "scheduled-runs"

    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=50, ge=1)

    def to_args(self) -> list[str]:
        return [str(self.offset), str(self.limit)]


class PreflightUpgradeParams(OperationParams):
    operation: ClassVar[str] = "preflight_upgrade"
    command: ClassVar[str] = "preflight-upgrade"

    ignore: list[str] = Field(default_factory=list)

    def to_args(self) -> list[str]:
        return [_join(self.ignore)]


class NewsParams(OperationParams):
    operation: ClassVar[str] = "news"
    command: ClassVar[str] = "news"

    days: int = Field(default=30, ge=1, le=365)

    def to_args(self) -> list[str]:
        return [str(self.days)]


# =============================================================================
# Streaming operations
# =============================================================================


class SyncDatabaseParams(StreamingParams):
    operation: ClassVar[str] = "sync_database"
    command: ClassVar[str] = "sync-database"

    force: bool = False

    def to_args(self) -> list[str]:
        return [str(self.force).lower()]


class UpgradeParams(StreamingParams):
    operation: ClassVar[str] = "upgrade"
    command: ClassVar[str] = "upgrade"

    ignore: list[str] = Field(default_factory=list)

    def to_args(self) -> list[str]:
        return [_join(self.ignore)]


class RemoveOrphansParams(StreamingParams):
    operation: ClassVar[str] = "remove_orphans"
    command: ClassVar[str] = "remove-orphans"


class CleanCacheParams(StreamingParams):
    operation: ClassVar[str] = "clean_cache"
    command: ClassVar[str] = "clean-cache"

    keep_versions: int = Field(default=3, ge=0)

    def to_args(self) -> list[str]:
        return [str(self.keep_versions)]


class DowngradeParams(StreamingParams):
    operation: ClassVar[str] = "downgrade"
    command: ClassVar[str] = "downgrade"

    name: str = Field(min_length=1)
    version: str = Field(min_length=1)

    def to_args(self) -> list[str]:
        return [self.name, self.version]


class RefreshKeyringParams(StreamingParams):
    operation: ClassVar[str] = "refresh_keyring"
    command: ClassVar[str] = "refresh-keyring"


class InitKeyringParams(StreamingParams):
    operation: ClassVar[str] = "init_keyring"
    command: ClassVar[str] = "init-keyring"


class TestMirrorsParams(StreamingParams):
    __test__ = False  # not a pytest test class

    operation: ClassVar[str] = "test_mirrors"
    command: ClassVar[str] = "test-mirrors"

    urls: list[str] = Field(min_length=1)

    def to_args(self) -> list[str]:
        return [_join(self.urls)]


OPERATIONS: dict[str, type[OperationParams]] = {
    params.operation: params
    for params in (
        ListInstalledParams,
        CheckUpdatesParams,
        PackageInfoParams,
        SearchParams,
        SyncPackageInfoParams,
        ListOrphansParams,
        CacheInfoParams,
        DependencyTreeParams,
        HistoryParams,
        ListDowngradesParams,
        ListIgnoredParams,
        AddIgnoredParams,
        RemoveIgnoredParams,
        KeyringStatusParams,
        ListMirrorsParams,
        MirrorStatusParams,
        SaveMirrorlistParams,
        RebootStatusParams,
        ScheduleConfigParams,
        SetScheduleConfigParams,
        ScheduledRunsParams,
        PreflightUpgradeParams,
        NewsParams,
        SyncDatabaseParams,
        UpgradeParams,
        RemoveOrphansParams,
        CleanCacheParams,
        DowngradeParams,
        RefreshKeyringParams,
        InitKeyringParams,
        TestMirrorsParams,
    )
}


def get_operation(name: str) -> type[OperationParams]:
    """Look up an operation's parameter model by name.

    Raises:
        KeyError: If the operation is unknown
    """
    try:
        return OPERATIONS[name]
    except KeyError:
        raise KeyError(f"Unknown operation: {name}") from None


def values_from_strings(
    params_cls: type[OperationParams],
    raw: Mapping[str, Sequence[str]],
) -> dict[str, Any]:
    """Shape string inputs (query string, CLI pairs) for model validation.

    List fields accept repeated keys and comma-separated values; other
    fields take the last value given. Type conversion is left to pydantic.
    """
    values: dict[str, Any] = {}
    for key, items in raw.items():
        field = params_cls.model_fields.get(key)
        if field is not None and get_origin(field.annotation) is list:
            values[key] = [v for item in items for v in item.split(",") if v]
        elif items:
            values[key] = items[-1]
    return values


def describe_operations() -> list[dict[str, Any]]:
    """Catalogue of operations for listings."""
    return [
        {"operation": name, "command": params.command, "streaming": params.streaming}
        for name, params in OPERATIONS.items()
    ]

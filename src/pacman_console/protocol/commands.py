"""Command definitions for the backend protocol.

A Command is one invocation of the backend executable: a subcommand
name plus ordered string arguments, together with how the process must
be spawned.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class Privilege(str, Enum):
    """Privilege escalation level for a spawned backend."""

    OPTIONAL = "optional"  # escalate when possible, else run as the caller
    REQUIRED = "required"  # fail if escalation is unavailable


class ErrorCapture(str, Enum):
    """Where the backend's stderr ends up."""

    MESSAGE = "message"  # collected into the failure message
    OUT = "out"  # merged into stdout


class Command(BaseModel):
    """An immutable backend invocation.

    Example:
        Command(name="search", args=("linux", "0", "100", "all", "", ""))

    becomes ``<backend> search linux 0 100 all "" ""``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    args: tuple[str, ...] = ()
    privilege: Privilege = Privilege.OPTIONAL
    capture: ErrorCapture = ErrorCapture.MESSAGE

    def argv(self, backend_path: str) -> list[str]:
        """Full argv for the given backend executable."""
        return [backend_path, self.name, *self.args]

    @classmethod
    def query(cls, name: str, args: tuple[str, ...] | list[str] = ()) -> Command:
        """A one-shot command: best-effort escalation, stderr as message."""
        return cls(
            name=name,
            args=tuple(args),
            privilege=Privilege.OPTIONAL,
            capture=ErrorCapture.MESSAGE,
        )

    @classmethod
    def streaming(cls, name: str, args: tuple[str, ...] | list[str] = ()) -> Command:
        """A streaming command: mandatory escalation, stderr merged into stdout."""
        return cls(
            name=name,
            args=tuple(args),
            privilege=Privilege.REQUIRED,
            capture=ErrorCapture.OUT,
        )

"""Client configuration.

Passed into the invoker, streaming sessions and client at construction
time. Nothing reads module-level state.
"""

from __future__ import annotations

import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field

DEFAULT_BACKEND_PATH = "/usr/libexec/cockpit-pacman/cockpit-pacman-backend"
DEFAULT_TIMEOUT = 30.0
DEFAULT_ESCALATION = ("sudo", "-n")

ENV_BACKEND = "PACMAN_CONSOLE_BACKEND"
ENV_TIMEOUT = "PACMAN_CONSOLE_TIMEOUT"
ENV_STREAMING_TIMEOUT = "PACMAN_CONSOLE_STREAMING_TIMEOUT"
ENV_ESCALATION = "PACMAN_CONSOLE_ESCALATION"


@dataclass(frozen=True)
class ClientConfig:
    """Configuration for talking to the backend."""

    backend_path: str = DEFAULT_BACKEND_PATH

    # Deadline for one-shot commands, in seconds
    timeout: float = DEFAULT_TIMEOUT

    # Passed to streaming commands as a backend argument, never enforced here
    streaming_timeout: int | None = None

    # Prefix used to run the backend with elevated privileges
    escalation_command: tuple[str, ...] = DEFAULT_ESCALATION

    # Extra environment for the backend process
    env: Mapping[str, str] | None = field(default=None, hash=False)

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.streaming_timeout is not None and self.streaming_timeout <= 0:
            raise ValueError(
                f"streaming_timeout must be positive, got {self.streaming_timeout}"
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ClientConfig:
        """Build a config from PACMAN_CONSOLE_* environment variables.

        Unset variables keep their defaults.
        """
        environ = os.environ if environ is None else environ

        streaming = environ.get(ENV_STREAMING_TIMEOUT)
        escalation = environ.get(ENV_ESCALATION)

        return cls(
            backend_path=environ.get(ENV_BACKEND, DEFAULT_BACKEND_PATH),
            timeout=float(environ.get(ENV_TIMEOUT, DEFAULT_TIMEOUT)),
            streaming_timeout=int(streaming) if streaming else None,
            escalation_command=(
                tuple(shlex.split(escalation)) if escalation is not None else DEFAULT_ESCALATION
            ),
        )

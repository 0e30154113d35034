"""Stream event definitions.

Streaming backend commands print one JSON record per line on stdout.
Each record carries a ``type`` tag selecting its shape:

    {"type": "log", "level": "info", "message": "..."}
    {"type": "progress", "operation": "upgrade_start", "package": "linux",
     "current": 1, "total": 5, "percent": 20}
    {"type": "download", "filename": "linux.pkg.tar.zst", "event": "progress",
     "downloaded": 1024, "total": 4096}
    {"type": "event", "event": "hook_run", "package": "linux"}
    {"type": "mirror_test", "url": "...", "current": 1, "total": 3,
     "result": {"url": "...", "success": true, "latency_ms": 42}}
    {"type": "complete", "success": true, "message": "..."}

``complete`` is the terminal record; everything before it is progress.
"""

from __future__ import annotations

import math
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter, ValidationError


class LogEvent(BaseModel):
    """A log line from the backend."""

    type: Literal["log"] = "log"
    level: str
    message: str


class ProgressEvent(BaseModel):
    """Per-package progress of a transaction step."""

    type: Literal["progress"] = "progress"
    operation: str
    package: str
    current: int
    total: int
    percent: int


class DownloadEvent(BaseModel):
    """Download progress for a single file."""

    type: Literal["download"] = "download"
    filename: str
    event: Literal["init", "progress", "retry", "completed"]
    downloaded: int | None = None
    total: int | None = None


class NamedEvent(BaseModel):
    """A named milestone (hook run, scriptlet, ...)."""

    type: Literal["event"] = "event"
    event: str
    package: str | None = None


class MirrorTestResult(BaseModel):
    """Outcome of probing one mirror."""

    url: str
    success: bool
    speed_bps: int | None = None
    latency_ms: int | None = None
    error: str | None = None


class MirrorTestEvent(BaseModel):
    """Result of one mirror probe within a test run."""

    type: Literal["mirror_test"] = "mirror_test"
    url: str
    current: int
    total: int
    result: MirrorTestResult


class CompleteEvent(BaseModel):
    """Terminal record of a streaming operation."""

    type: Literal["complete"] = "complete"
    success: bool
    message: str | None = None


StreamEvent = Annotated[
    LogEvent
    | ProgressEvent
    | DownloadEvent
    | NamedEvent
    | MirrorTestEvent
    | CompleteEvent,
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


def parse_event(line: str) -> StreamEvent | None:
    """Parse one line into a StreamEvent.

    Returns None for anything that is not a JSON record of a known shape,
    so callers can fall back to treating the line as plain text.
    """
    try:
        return _event_adapter.validate_json(line)
    except ValidationError:
        return None


def _percent(done: int, total: int) -> int:
    # Half-up rounding, not banker's rounding.
    return math.floor(done / total * 100 + 0.5)


def render_event(event: StreamEvent) -> str | None:
    """Human-readable line mirroring an event, or None if it has none.

    ``complete`` records never render; they end the stream instead.
    Download ``init`` and ``retry`` records have no text.
    """
    match event:
        case LogEvent(level=level, message=message):
            return f"[{level}] {message}\n"
        case ProgressEvent(operation=operation, package=package, percent=percent):
            return f"[{operation}] {package} {percent}%\n"
        case DownloadEvent(event="progress", downloaded=int(done), total=int(total)) if total:
            return f"Downloading {event.filename}: {_percent(done, total)}%\n"
        case DownloadEvent(event="completed"):
            return f"Downloaded {event.filename}\n"
        case NamedEvent(event=name, package=None):
            return f"{name}\n"
        case NamedEvent(event=name, package=package):
            return f"{name}: {package}\n"
        case MirrorTestEvent(result=result):
            outcome = f"{result.latency_ms}ms" if result.success else result.error
            return f"[{event.current}/{event.total}] {event.url}: {outcome}\n"
    return None

"""Backend wire protocol.

Defines what goes to the backend and what comes back:
- Commands: subcommand name + positional argv, spawn options
- Operations: typed parameters that build Commands in backend order
- Events: newline-delimited JSON records from streaming commands
"""

from .commands import Command, ErrorCapture, Privilege
from .events import (
    CompleteEvent,
    DownloadEvent,
    LogEvent,
    MirrorTestEvent,
    MirrorTestResult,
    NamedEvent,
    ProgressEvent,
    StreamEvent,
    parse_event,
    render_event,
)
from .operations import (
    OPERATIONS,
    OperationParams,
    StreamingParams,
    describe_operations,
    get_operation,
    values_from_strings,
)

__all__ = [
    "Command",
    "ErrorCapture",
    "Privilege",
    "StreamEvent",
    "LogEvent",
    "ProgressEvent",
    "DownloadEvent",
    "NamedEvent",
    "MirrorTestEvent",
    "MirrorTestResult",
    "CompleteEvent",
    "parse_event",
    "render_event",
    "OPERATIONS",
    "OperationParams",
    "StreamingParams",
    "describe_operations",
    "get_operation",
    "values_from_strings",
]

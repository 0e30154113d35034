"""Backend operation endpoints.

Exposes the operation catalogue over HTTP for a browser UI:

- GET  /v1/operations             - catalogue
- GET  /v1/query/{operation}      - one-shot operation, params in query string
- POST /v1/query/{operation}      - one-shot operation, params as JSON body
- GET  /v1/stream/{operation}     - streaming operation as SSE
- POST /v1/stream/{operation}     - same, params as JSON body

Errors use the backend's envelope: {"code": ..., "message": ..., "details"?}.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from ..client import PacmanClient
from ..errors import ClientError, ErrorKind
from ..protocol.events import StreamEvent
from ..protocol.operations import (
    OperationParams,
    describe_operations,
    get_operation,
    values_from_strings,
)
from ..streaming import StreamCallbacks

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DATABASE_LOCKED: 409,
    ErrorKind.CANCELLED: 409,
    ErrorKind.NETWORK_ERROR: 502,
    ErrorKind.TIMEOUT: 504,
}


def error_response(error: ClientError) -> JSONResponse:
    """Render a ClientError as its envelope with a matching status."""
    return JSONResponse(error.to_dict(), status_code=ERROR_STATUS.get(error.kind, 500))


async def _read_params(request: Request) -> OperationParams:
    operation = request.path_params["operation"]
    try:
        params_cls = get_operation(operation)
    except KeyError as e:
        raise ClientError(ErrorKind.NOT_FOUND, e.args[0]) from None

    if request.method == "GET":
        raw = {key: request.query_params.getlist(key) for key in request.query_params}
        values: Any = values_from_strings(params_cls, raw)
    else:
        body = await request.body()
        try:
            values = json.loads(body) if body else {}
        except json.JSONDecodeError as e:
            raise ClientError(ErrorKind.VALIDATION_ERROR, f"Invalid JSON body: {e}") from e
        if not isinstance(values, dict):
            raise ClientError(ErrorKind.VALIDATION_ERROR, "Request body must be a JSON object")

    return PacmanClient.build_params(operation, values)


def _client(request: Request) -> PacmanClient:
    return request.app.state.client


async def list_operations(request: Request) -> JSONResponse:
    """List all operations the backend supports."""
    return JSONResponse(describe_operations())


async def query_operation(request: Request) -> JSONResponse:
    """Run a one-shot operation and return the backend's document."""
    try:
        params = await _read_params(request)
        result = await _client(request).query(params)
    except ClientError as e:
        return error_response(e)
    return JSONResponse(result)


async def stream_operation(request: Request) -> Response:
    """Run a streaming operation, forwarding its progress as SSE.

    Each message is a JSON object:
    - backend events as emitted ({"type": "progress", ...})
    - {"type": "output", "data": "..."} for the text log
    - {"type": "done", "success": bool, "message"?: str} last

    Closing the connection cancels the operation.
    """
    try:
        params = await _read_params(request)
        if not params.streaming:
            raise ClientError(
                ErrorKind.VALIDATION_ERROR,
                f"{params.operation} is not a streaming operation",
            )
    except ClientError as e:
        return error_response(e)

    client = _client(request)
    queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

    def on_event(event: StreamEvent) -> None:
        queue.put_nowait(event.model_dump())

    def on_data(text: str) -> None:
        queue.put_nowait({"type": "output", "data": text})

    def on_complete() -> None:
        queue.put_nowait({"type": "done", "success": True})
        queue.put_nowait(None)

    def on_error(message: str) -> None:
        queue.put_nowait({"type": "done", "success": False, "message": message})
        queue.put_nowait(None)

    callbacks = StreamCallbacks(
        on_event=on_event,
        on_data=on_data,
        on_complete=on_complete,
        on_error=on_error,
    )

    async def event_stream():
        handle = client.stream(params, callbacks)
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                yield f"data: {json.dumps(item)}\n\n"
        finally:
            if not handle.terminal_reached:
                logger.info(f"Client went away, cancelling {params.operation}")
                handle.cancel()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


operation_routes = [
    Route("/v1/operations", list_operations, methods=["GET"]),
    Route("/v1/query/{operation}", query_operation, methods=["GET", "POST"]),
    Route("/v1/stream/{operation}", stream_operation, methods=["GET", "POST"]),
]

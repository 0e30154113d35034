"""Health check endpoint."""

import os

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint.

    Reports whether the configured backend executable is present.
    """
    backend_path = request.app.state.client.config.backend_path
    return JSONResponse(
        {
            "status": "ok",
            "backend": backend_path,
            "backend_available": os.access(backend_path, os.X_OK),
        }
    )


health_routes = [
    Route("/health", health_check, methods=["GET"]),
]

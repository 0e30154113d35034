"""Pacman Console HTTP application.

Creates the Starlette ASGI application a browser UI talks to.

Routes:
- /health - Health check
- /v1/operations - Operation catalogue
- /v1/query/{operation} - One-shot backend queries (JSON)
- /v1/stream/{operation} - Long-running backend operations (SSE)
"""

from __future__ import annotations

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route

from .client import PacmanClient
from .config import ClientConfig
from .routes import health_routes, operation_routes


def create_app(
    config: ClientConfig | None = None,
    *,
    client: PacmanClient | None = None,
) -> Starlette:
    """Create the application.

    Args:
        config: Client configuration, read from the environment if omitted
        client: Prebuilt client (tests inject one with a mock spawner)

    Returns:
        Configured Starlette application
    """
    if client is None:
        client = PacmanClient(config or ClientConfig.from_env())

    routes: list[Route] = []
    routes.extend(health_routes)
    routes.extend(operation_routes)

    # CORS middleware for local development
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origin_regex=r"http://(localhost|127\.0\.0\.1)(:\d+)?",
            allow_methods=["*"],
            allow_headers=["*"],
        ),
    ]

    app = Starlette(routes=routes, middleware=middleware)
    app.state.client = client
    return app

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from promptgraph.api.error_handling import register_exception_handlers
from promptgraph.api.routes import router
from promptgraph.config import Settings, get_settings
from promptgraph.logging import get_logger, set_correlation_id
from promptgraph.service.context_store import ContextStore

logger = get_logger(__name__)

__version__ = "0.1.0"


def create_app(
    settings: Optional[Settings] = None,
    *,
    context_store: Optional[ContextStore] = None,
) -> FastAPI:
    """Build the context service; each app owns its own context store."""
    settings = settings or get_settings()
    app = FastAPI(title="promptgraph context service", version=__version__)
    app.state.context_store = (
        context_store if context_store is not None else ContextStore()
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def add_correlation_id(request, call_next):
        """Tag each request with the client's X-Request-ID, or a fresh one."""
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    register_exception_handlers(app)
    app.include_router(router)
    logger.info("context_service_created", version=__version__)
    return app


app = create_app()

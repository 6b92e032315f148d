"""FastAPI application configuration and lifecycle management.

The application serves:
- the authorize endpoint and its login/consent callbacks under ``/auth/v1``
- a health check at ``/health``

Example:
    Basic usage::

        from core_authorize.api.fast_api import get_app

        app = get_app()

    Or with uvicorn::

        uvicorn core_authorize.api.fast_api:get_app --factory

Client and resource scope registrations for the in-memory stores are read from
the JSON file named by ``AUTHORIZE_REGISTRY_FILE``::

    {
        "clients": [{"client_id": "client1", "redirect_uris": ["https://client1/callback"]}],
        "scopes": [{"name": "api1", "type": "resource"}]
    }
"""

from typing import List, Optional
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv, find_dotenv

from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from ..constants import INTERACTION_TTL_SECONDS
from ..logging_config import setup_logging
from ..memory import InMemoryClientStore, InMemoryConsentStore, InMemoryInteractionStore, InMemoryScopeStore
from ..models import Client, Scope
from ..orchestrator import AuthorizeOrchestrator
from ..tokens import JwtTokenIssuer
from .router import get_authorize_router

__app: Optional[FastAPI] = None
__running: bool = False


class Registry(BaseModel):
    clients: List[Client] = []
    scopes: List[Scope] = []


def is_running() -> bool:
    return __running


def load_registry(path: Optional[str] = None) -> Registry:
    """Read client and scope registrations; an unset path yields an empty registry."""
    path = path or os.getenv("AUTHORIZE_REGISTRY_FILE")
    if not path:
        return Registry()
    with open(path, "r", encoding="utf-8") as f:
        registry = Registry.model_validate_json(f.read())
    logger.info("Loaded registry", path=path, clients=len(registry.clients), scopes=len(registry.scopes))
    return registry


def build_orchestrator(registry: Optional[Registry] = None) -> AuthorizeOrchestrator:
    """Wire the engine to the in-memory collaborators and the JWT token issuer."""
    registry = registry or load_registry()
    return AuthorizeOrchestrator(
        clients=InMemoryClientStore(registry.clients),
        scopes=InMemoryScopeStore.with_standard_scopes(*registry.scopes),
        consents=InMemoryConsentStore(),
        interactions=InMemoryInteractionStore(ttl=INTERACTION_TTL_SECONDS),
        issuer=JwtTokenIssuer(),
        interaction_ttl=INTERACTION_TTL_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Track the running state across application startup and shutdown."""
    global __running

    __running = True
    logger.info("FastAPI application started")

    yield

    __running = False
    logger.info("FastAPI application shutdown")


def create_app(orchestrator: Optional[AuthorizeOrchestrator] = None) -> FastAPI:
    """Build a new application around ``orchestrator`` (the default wiring when omitted)."""
    load_dotenv(find_dotenv(), override=False)
    setup_logging()

    app = FastAPI(
        title="SCK Core Authorize",
        description="Simple Cloud Kit OAuth 2.0 / OpenID Connect authorization endpoint",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator or build_orchestrator()

    app.include_router(get_authorize_router(), tags=["Authorize"])

    @app.get("/health", include_in_schema=False)
    async def health_check() -> Response:
        return JSONResponse({"status": "healthy", "running": is_running()})

    return app


def get_app() -> FastAPI:
    """Get or create the process-wide FastAPI application instance."""
    global __app

    if __app is None:
        __app = create_app()
    return __app


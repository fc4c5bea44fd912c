"""FastAPI application exposing the mailbox operations.

Creates the FastAPI app with:
- Lifespan context manager that builds every dependency once
- A middleware binding a request id to every log entry
- A handler turning request-body validation failures into 400 VALIDATION_ERROR
- The /api router

Usage:
    from inboxmap.web.app import create_app

    app = create_app()
    # Run with: uvicorn.run(app, host="127.0.0.1", port=8000)
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager

import requests
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from inboxmap import __version__
from inboxmap.core.logging import get_logger, set_request_id

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build dependencies on startup, release them on shutdown.

    On startup:
    1. Load config (defaults when the file is missing)
    2. Build the taxonomy registry
    3. Initialize the mapping store
    4. Build provider adapters sharing one HTTP session
    5. Build the mailbox service
    """
    from inboxmap.auth.credentials import EnvCredentialProvider
    from inboxmap.config import get_config
    from inboxmap.config_schema import AppConfig
    from inboxmap.core.errors import ConfigLoadError
    from inboxmap.db.store import MappingStore
    from inboxmap.engine.service import MailboxService
    from inboxmap.engine.suggest import SuggestionEngine
    from inboxmap.providers.factory import create_adapters
    from inboxmap.taxonomy.registry import TaxonomyRegistry

    # 1. Load config
    try:
        config = get_config()
    except ConfigLoadError as e:
        logger.warning("config_load_failed_using_defaults", error=str(e))
        config = AppConfig()
    app.state.config = config

    # 2. Taxonomy (built-ins are validated at import)
    registry = TaxonomyRegistry.builtin()
    app.state.registry = registry

    # 3. Mapping store
    store = MappingStore(config.database.path)
    await store.initialize()
    app.state.store = store

    # 4. Provider adapters
    session = requests.Session()
    adapters = create_adapters(config, session=session)

    # 5. Service
    app.state.service = MailboxService(
        registry=registry,
        adapters=adapters,
        store=store,
        credentials=EnvCredentialProvider(),
        engine=SuggestionEngine(registry, config.suggestion.partial_threshold),
    )

    logger.info(
        "app_started",
        database=config.database.path,
        providers=[provider.value for provider in adapters],
        business_types=registry.business_types(),
    )

    yield

    session.close()
    logger.info("app_stopped")


async def _bind_request_id(request: Request, call_next):
    """Bind the caller's X-Request-ID (or a new UUID) to the logging context."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    set_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        set_request_id(None)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body"),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "detail": {
                "error": "VALIDATION_ERROR",
                "message": "Invalid request",
                "details": details,
            }
        },
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    from inboxmap.web.routes import api_router

    app = FastAPI(
        title="inboxmap",
        description="Mailbox taxonomy discovery, suggestion and provisioning",
        version=__version__,
        lifespan=lifespan,
    )

    app.middleware("http")(_bind_request_id)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.include_router(api_router)

    return app

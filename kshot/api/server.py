"""
FastAPI server for k-shot device trust.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..config import Config
from ..context import TrustContext
from ..errors import (
    AlreadyInitialized,
    AlreadyRevoked,
    AuthError,
    ConfigError,
    CredentialCorrupt,
    CredentialMissing,
    IdentityNotFound,
    SignatureInvalid,
    TokenRevoked,
    TrustError,
    UnknownToken,
)

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins
ERROR_STATUS = [
    (IdentityNotFound, 404),
    (UnknownToken, 404),
    (AlreadyRevoked, 400),
    (CredentialCorrupt, 400),
    (SignatureInvalid, 400),
    (TokenRevoked, 403),
    (AlreadyInitialized, 403),
    (CredentialMissing, 401),
    (AuthError, 401),
    (ConfigError, 500),
]


def status_for(exc: TrustError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


def error_body(exc: TrustError) -> dict:
    return {"success": False, "error": exc.code, "message": str(exc)}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the registry at startup and close it at shutdown."""
    owned: Optional[TrustContext] = None
    if getattr(app.state, "context", None) is None:
        owned = TrustContext.open(app.state.config)
        app.state.context = owned
        logger.info(f"k-shot trust API started, registry {owned.db.path}")
    try:
        yield
    finally:
        if owned is not None:
            owned.close()
            app.state.context = None


def create_app(
    config: Optional[Config] = None,
    context: Optional[TrustContext] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Configuration used to open a context at startup
        context: An already open context (the app will not close it)
    """
    from .routes import router

    app = FastAPI(
        title="k-shot device trust",
        description="Device credential authentication and token administration",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config or (context.config if context else Config.from_env())
    app.state.context = context

    @app.exception_handler(TrustError)
    async def trust_error_handler(request: Request, exc: TrustError):
        return JSONResponse(status_code=status_for(exc), content=error_body(exc))

    app.include_router(router, prefix="/api")

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


def run_server(config: Config, reload: bool = False):
    """Run the server with uvicorn."""
    app = create_app(config)
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        reload=reload,
        log_level="info",
    )

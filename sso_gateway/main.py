"""
FastAPI SSO Gateway Application Factory
=======================================

This is the main entry point for the SSO gateway, which signs users in
through an external OAuth2 identity provider and keeps a local user record
for every allow-listed account.

Routers:
    - /api/auth/*   : SSO login, callback, session check, logout
    - /             : Login entry page
    - /health       : Health check endpoint

Environment Variables Required:
    - OAUTH_CLIENT_ID, OAUTH_CLIENT_SECRET, OAUTH_REDIRECT_URL
    - SESSION_SECRET: Secret for signing session cookies (32+ chars)
    - DATABASE_HOST, DATABASE_USER, DATABASE_PASSWORD, DATABASE_NAME
      (or DATABASE_URL)
    - ALLOWED_DOMAIN: Email domain permitted to sign in (default: mesika.org)
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn sso_gateway.main:create_app --factory --reload --port 8080

    Production:
        uvicorn sso_gateway.main:create_app --factory --host 0.0.0.0 --port 8080
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse

from . import __version__
from .auth.errors import AuthError
from .auth.flow import AuthFlowController
from .auth.provider import IdentityProviderClient, create_http_client
from .auth.routes import auth_router
from .auth.session import InMemorySessionBackend, SessionGateway
from .config import Settings, get_settings, validate_configuration
from .models import HealthResponse
from .pages import render_login_page
from .users.db import create_engine, create_session_factory, create_tables
from .users.store import UserStore

logger = logging.getLogger(__name__)


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Validate configuration
        - Create the database engine (and tables, if enabled)
        - Open the pooled HTTP client for the identity provider
        - Wire the login controller and its collaborators into app.state

    Shutdown tasks:
        - Close the HTTP client
        - Dispose of the database engine
    """
    settings: Settings = app.state.settings
    setup_logging(settings.LOG_LEVEL)

    report = validate_configuration(settings)
    for warning in report["warnings"]:
        logger.warning(f"Configuration warning: {warning}")
    if not report["valid"]:
        raise RuntimeError(f"Invalid configuration: {'; '.join(report['errors'])}")

    engine = create_engine(settings)
    if settings.DATABASE_CREATE_TABLES:
        await create_tables(engine)
        logger.info("Ensured database tables exist")

    provider = IdentityProviderClient(settings, create_http_client(settings))
    user_store = UserStore(create_session_factory(engine), settings.DATABASE_TIMEOUT_SECONDS)
    session_gateway = SessionGateway(settings, InMemorySessionBackend())

    app.state.user_store = user_store
    app.state.session_gateway = session_gateway
    app.state.auth_controller = AuthFlowController(
        settings=settings,
        provider=provider,
        users=user_store,
        sessions=session_gateway,
    )

    logger.info(
        "SSO gateway started",
        extra={
            "version": __version__,
            "allowed_domain": settings.ALLOWED_DOMAIN,
            "log_level": settings.LOG_LEVEL,
        }
    )

    try:
        yield
    finally:
        logger.info("Shutting down SSO gateway")
        await provider.aclose()
        await engine.dispose()
        logger.info("SSO gateway shutdown complete")


# Create FastAPI application
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - CORS middleware
        - Route handlers
        - Exception handlers

    Args:
        settings: Configuration to use; loaded from the environment if omitted

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="SSO Gateway",
        description="Single sign-on gateway restricted to one email domain",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.settings = settings

    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(auth_router)

    @app.get("/", response_class=HTMLResponse, tags=["System"])
    async def login_page() -> HTMLResponse:
        return render_login_page("SSO Login", settings.ALLOWED_DOMAIN)

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check() -> HealthResponse:
        return HealthResponse(status="ok", service="sso-gateway", version=__version__)

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        """
        Turn a rejected login or session check into its coded JSON response.

        The cause chain is logged; only the kind and message reach the client.
        """
        logger.info(
            f"Request rejected: {exc}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error_kind": exc.kind.value,
            }
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            }
        )

    return app


if __name__ == "__main__":
    """
    Direct execution entry point.

    This allows running the service directly with: python -m sso_gateway.main
    """
    settings = get_settings()

    uvicorn.run(
        "sso_gateway.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower()
    )

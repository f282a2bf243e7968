# buildnotify/transport/http_app.py
"""
HTTP application for notification dispatch.

Endpoints:
1. POST /        - authenticated notification dispatch
2. OPTIONS /     - CORS preflight (204, no body)
3. GET /health   - liveness
4. GET /metrics  - counters (token-protected when METRICS_TOKEN is set)

Settings are read once by the caller and passed in; every component
receives its configuration through its constructor.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from buildnotify.config import Settings, load_settings, validate_or_warn
from buildnotify.core.access import CredentialVerifier, RoleAuthorizer
from buildnotify.core.dispatch import NotificationDispatcher
from buildnotify.core.errors import DispatchError
from buildnotify.infra.audit_log import AuditLogger
from buildnotify.infra.backend_client import BackendClient
from buildnotify.infra.http_client import close_all_sessions
from buildnotify.infra.logging_config import setup_logging, get_logger
from buildnotify.infra.metrics import get_metrics_collector
from buildnotify.transport.middleware import (
    CorsHeadersMiddleware,
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
)
from buildnotify.transport.security import (
    CORS_HEADERS,
    build_request_meta,
    require_metrics_auth,
)
from buildnotify.transport.telegram_sender import TelegramSender

logger = get_logger(__name__)


# ============================================================================
# WIRING
# ============================================================================

def build_dispatcher(settings: Settings) -> NotificationDispatcher:
    """Assemble the notification pipeline from settings."""
    backend = BackendClient(
        settings.backend_url,
        settings.supabase_anon_key,
        write_key=settings.audit_key,
    )

    sender = None
    if settings.telegram_bot_token:
        sender = TelegramSender(
            settings.telegram_bot_token,
            api_base=settings.telegram_api_base,
            parse_mode=settings.telegram_parse_mode,
        )

    return NotificationDispatcher(
        verifier=CredentialVerifier(backend),
        authorizer=RoleAuthorizer(backend, settings.roles_table),
        sender=sender,
        audit=AuditLogger(backend, settings.audit_table),
        profile=settings.handler_profile,
        admin_role=settings.admin_role,
        default_chat_id=settings.telegram_default_chat_id,
    )


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""
    settings: Settings = fastapi_app.state.settings
    profile = fastapi_app.state.dispatcher.profile

    logger.info(f"Starting application: env={settings.app_env}")

    validate_or_warn(settings)

    logger.info(
        f"Handler profile: require_admin={profile.require_admin}, "
        f"record_caller_identity={profile.record_caller_identity}"
    )
    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")
    await close_all_sessions()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

def create_app(
    settings: Settings | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> FastAPI:
    """
    Application factory.

    Args:
        settings: loaded settings (read from the environment when omitted)
        dispatcher: pre-built pipeline (built from settings when omitted)
    """
    settings = settings or load_settings()

    setup_logging(
        level=settings.log_level,
        use_json=settings.is_production,
    )

    app = FastAPI(
        title="buildnotify",
        description="Authenticated Telegram notifications for site and crew events",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        openapi_url=None if settings.is_production else "/openapi.json",
    )
    app.state.settings = settings
    app.state.dispatcher = dispatcher or build_dispatcher(settings)

    # Innermost first: errors are rendered before CORS headers are applied
    app.add_middleware(ErrorHandlingMiddleware, is_production=settings.is_production)
    app.add_middleware(CorsHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
    app.add_middleware(RequestIDMiddleware)

    # ------------------------------------------------------------------
    # Exception handlers
    # ------------------------------------------------------------------

    @app.exception_handler(DispatchError)
    async def dispatch_error_handler(request: Request, exc: DispatchError):
        """Render pipeline errors as {"error": detail}"""
        if exc.status_code >= 500:
            logger.error(
                f"Notification failed: {exc.__class__.__name__}: {exc.detail}",
                extra={"status_code": exc.status_code},
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with appropriate logging"""
        if exc.status_code >= 500:
            logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    @app.options("/")
    async def notifications_preflight():
        """CORS preflight - no body"""
        return Response(status_code=204, headers=CORS_HEADERS)

    @app.post("/")
    async def send_notification(
        request: Request,
        dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    ):
        """
        Dispatch one notification.

        Body: {"action": "<tag>", "data": {...}}
        Header: Authorization: Bearer <access token>
        """
        try:
            body = await request.json()
        except ValueError:
            body = None

        result = await dispatcher.handle(
            request.headers.get("Authorization"),
            body,
            build_request_meta(request, settings),
        )
        return result.to_response()

    @app.get("/health")
    def health():
        """Basic health check - PUBLIC endpoint."""
        return {"status": "healthy"}

    @app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
    def metrics():
        """In-process counters."""
        return get_metrics_collector().get_metrics()

    return app

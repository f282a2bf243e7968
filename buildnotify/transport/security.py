# buildnotify/transport/security.py
"""
Request-side security helpers for the HTTP layer.

- CORS headers returned on every notification response
- Client IP resolution (proxy headers only when trusted)
- Bearer-token guard for the metrics endpoint (constant-time compare)
- Error message sanitization for unexpected exceptions
"""
import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from buildnotify.config import Settings
from buildnotify.core.domain import RequestMeta
from buildnotify.infra.logging_config import get_logger

logger = get_logger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

metrics_bearer_scheme = HTTPBearer(
    scheme_name="Metrics Token",
    auto_error=False,
)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_client_ip(request: Request, trust_proxy_headers: bool) -> str | None:
    """
    Get the real client IP, respecting proxy headers if configured.

    SECURITY NOTE:
    - Only trust X-Forwarded-For behind a trusted proxy / gateway
    - Malicious clients can spoof this header if there's no proxy
    """
    client_ip = request.client.host if request.client else None

    if trust_proxy_headers:
        # X-Forwarded-For: client, proxy1, proxy2
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip and not forwarded_for:
            client_ip = real_ip.strip()

    return client_ip


def build_request_meta(request: Request, settings: Settings) -> RequestMeta:
    return RequestMeta(
        ip_address=get_client_ip(request, settings.trust_proxy_headers),
        user_agent=request.headers.get("User-Agent"),
        request_id=getattr(request.state, "request_id", None),
    )


def require_metrics_auth(
    settings: Settings = Depends(get_settings),
    credentials: HTTPAuthorizationCredentials | None = Depends(metrics_bearer_scheme),
):
    """
    Dependency for the metrics endpoint.

    - Metrics disabled: 404 (endpoint looks absent)
    - METRICS_TOKEN set: Bearer token required
    - No METRICS_TOKEN: open (a startup warning is logged)
    """
    if not settings.enable_metrics:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    if not settings.metrics_token:
        return

    if not credentials:
        logger.warning("Metrics endpoint accessed without token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not hmac.compare_digest(credentials.credentials, settings.metrics_token):
        logger.warning("Invalid metrics token attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


def sanitize_error_message(error: Exception, is_production: bool) -> str:
    """
    Sanitize error messages for external responses.
    In production: Generic messages
    In dev: Detailed messages
    """
    if not is_production:
        return str(error) or error.__class__.__name__

    error_type = type(error).__name__

    generic_messages = {
        "ValueError": "Invalid input",
        "KeyError": "Invalid request",
        "ConnectionError": "Service temporarily unavailable",
        "TimeoutError": "Request timeout",
    }

    return generic_messages.get(error_type, "An error occurred")

# buildnotify/core/errors.py
"""
Typed errors for the notification pipeline.

Each error maps to a specific HTTP status code.  The transport layer
catches ``DispatchError`` subtypes and renders ``{"error": detail}``
without embedding business logic in the route handlers.
"""
from __future__ import annotations


class DispatchError(Exception):
    """Base class for all notification pipeline errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class Unauthorized(DispatchError):
    """Missing or invalid bearer credential (401)."""

    status_code = 401

    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(detail)


class Forbidden(DispatchError):
    """Caller lacks the required role (403)."""

    status_code = 403

    def __init__(self, detail: str = "Insufficient permissions"):
        super().__init__(detail)


class BadRequest(DispatchError):
    """Malformed body or missing required field (400)."""

    status_code = 400


class UnsupportedAction(BadRequest):
    """Action tag has no registered template (400)."""

    def __init__(self, action: object):
        self.action = action
        super().__init__(f"Unknown action: {action}")


class ConfigurationError(DispatchError):
    """Required secret or setting is absent (500)."""

    status_code = 500


class UpstreamFailure(DispatchError):
    """Identity provider or messaging API failed (500)."""

    status_code = 500


class DeliveryFailed(UpstreamFailure):
    """Telegram rejected or could not acknowledge the message.

    Attributes:
        status:     HTTP status code (0 for connection-level errors).
        error_code: Telegram-specific error code from the response body.
        description: Upstream error description.
        retryable:  Classification for diagnostics; nothing retries automatically.
    """

    def __init__(
        self,
        status: int,
        error_code: int | None,
        description: str,
        *,
        retryable: bool = False,
    ):
        self.status = status
        self.error_code = error_code
        self.description = description
        self.retryable = retryable
        super().__init__(f"Telegram API error: {description}")

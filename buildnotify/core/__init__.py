# buildnotify/core/__init__.py
"""
Core notification logic -- transport-agnostic.

Canonical imports:
    from buildnotify.core import NotificationAction, format_message
    from buildnotify.core.dispatch import NotificationDispatcher
    from buildnotify.core.errors import Unauthorized, Forbidden
"""
from buildnotify.core.domain import (  # noqa: F401
    CallerIdentity,
    DispatchRecord,
    DispatchResult,
    DispatchStatus,
    NotificationAction,
    RequestMeta,
    RoleGrant,
)
from buildnotify.core.formatters import format_message, list_actions  # noqa: F401

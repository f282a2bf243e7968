# buildnotify/core/domain.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class NotificationAction(str, Enum):
    PROJECT_STATUS_UPDATE = "project_status_update"
    ATTENDANCE_REMINDER = "attendance_reminder"
    TASK_ASSIGNED = "task_assigned"
    PAYMENT_PROCESSED = "payment_processed"
    SECURITY_ALERT = "security_alert"
    EXPENSE_ADDED = "expense_added"
    BUDGET_ALERT = "budget_alert"
    DAILY_REPORT = "daily_report"


class DispatchStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True)
class CallerIdentity:
    id: str
    email: str | None = None


@dataclass(frozen=True)
class RoleGrant:
    user_id: str
    role: str
    is_active: bool = True


@dataclass(frozen=True)
class RequestMeta:
    """Request attributes recorded with caller attribution"""
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None


@dataclass
class DispatchRecord:
    """
    One audit entry per attempted send.

    Field names follow the domain; ``to_row()`` maps them onto the
    columns of the notifications log table.
    """
    recipient_id: str
    type: str
    message_text: str
    status: DispatchStatus
    external_message_id: int | str | None = None
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)
    user_id: str | None = None

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "type": self.type,
            "recipient": self.recipient_id,
            "message": self.message_text,
            "status": self.status.value,
            "sent_at": self.sent_at.isoformat(),
        }
        if self.external_message_id is not None:
            row["telegram_message_id"] = self.external_message_id
        if self.user_id is not None:
            row["user_id"] = self.user_id
        if self.metadata:
            row["metadata"] = self.metadata
        return row


@dataclass(frozen=True)
class DispatchResult:
    message_id: int | str
    notification_logged: bool

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "message_id": self.message_id,
            "notification_logged": self.notification_logged,
        }

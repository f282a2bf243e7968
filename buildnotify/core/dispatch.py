# buildnotify/core/dispatch.py
"""
Notification request pipeline.

    verify credential → authorize (optional) → validate body → format
    → resolve recipient → send via Telegram → audit → result

One ``NotificationDispatcher`` serves both deployment profiles
(see ``HandlerProfile``):

- require_admin: run the role check before anything is formatted or sent
- record_caller_identity: attach user_id / sender metadata to audit rows

Nothing here is retried or deduplicated: two identical requests send
two messages and write two audit rows.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from buildnotify.config import HandlerProfile
from buildnotify.core.access import CredentialVerifier, RoleAuthorizer
from buildnotify.core.domain import (
    CallerIdentity,
    DispatchRecord,
    DispatchResult,
    DispatchStatus,
    RequestMeta,
)
from buildnotify.core.errors import BadRequest, ConfigurationError
from buildnotify.core.formatters import format_message
from buildnotify.infra.audit_log import AuditLogger
from buildnotify.infra.logging_config import LogContext, get_logger
from buildnotify.infra.metrics import inc_counter

logger = get_logger(__name__)

# Payload keys that may carry the recipient chat, in lookup order
RECIPIENT_KEYS = ("chatId", "chat_id", "telegram_chat_id", "user_telegram_id")


class MessageSender(Protocol):
    async def send_text(self, chat_id: str | int, text: str) -> int | str:  # pragma: no cover - Protocol
        ...


def resolve_recipient(data: dict[str, Any], default_chat_id: str | None = None) -> str | int | None:
    for key in RECIPIENT_KEYS:
        value = data.get(key)
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            continue
        if value != "":
            return value
    return default_chat_id or None


class NotificationDispatcher:
    def __init__(
        self,
        *,
        verifier: CredentialVerifier,
        authorizer: RoleAuthorizer,
        sender: MessageSender | None,
        audit: AuditLogger,
        profile: HandlerProfile,
        admin_role: str = "admin",
        default_chat_id: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._verifier = verifier
        self._authorizer = authorizer
        self._sender = sender
        self._audit = audit
        self._profile = profile
        self._admin_role = admin_role
        self._default_chat_id = default_chat_id
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def profile(self) -> HandlerProfile:
        return self._profile

    async def handle(
        self,
        authorization: str | None,
        body: Any,
        meta: RequestMeta | None = None,
    ) -> DispatchResult:
        """
        Run the full pipeline for one request.

        Args:
            authorization: raw Authorization header value
            body: parsed JSON body (None if the body was not valid JSON)
            meta: request attributes for caller attribution

        Raises:
            DispatchError subtypes; the transport maps them to HTTP statuses
        """
        meta = meta or RequestMeta()
        log = LogContext(logger, request_id=meta.request_id)

        caller, token = await self._verifier.verify(authorization)
        log = log.bind(user_id=caller.id)

        if self._profile.require_admin:
            await self._authorizer.authorize(caller, self._admin_role, access_token=token)

        action, data = _parse_body(body)
        log = log.bind(action=str(action))

        now = self._clock()
        text = format_message(action, data, now=now)

        chat_id = resolve_recipient(data, self._default_chat_id)
        if chat_id is None:
            raise BadRequest("Missing recipient chat id")
        log = log.bind(chat_id=str(chat_id))

        if self._sender is None:
            raise ConfigurationError("Telegram bot token not configured")

        try:
            message_id = await self._sender.send_text(chat_id, text)
        except Exception as exc:
            # Any failed attempt still leaves a "failed" audit row
            inc_counter("notifications_failed_total", action=action)
            log.warning(f"Notification delivery failed: {exc.__class__.__name__}: {exc}")
            await self._audit.record(
                self._record(caller, meta, action, chat_id, text, DispatchStatus.FAILED, None, now)
            )
            raise

        inc_counter("notifications_sent_total", action=action)
        logged = await self._audit.record(
            self._record(caller, meta, action, chat_id, text, DispatchStatus.SENT, message_id, now)
        )
        log.info(f"Notification sent: msg_id={message_id}, logged={logged}")

        return DispatchResult(message_id=message_id, notification_logged=logged)

    def _record(
        self,
        caller: CallerIdentity,
        meta: RequestMeta,
        action: str,
        chat_id: str | int,
        text: str,
        status: DispatchStatus,
        message_id: int | str | None,
        now: datetime,
    ) -> DispatchRecord:
        record = DispatchRecord(
            recipient_id=str(chat_id),
            type=action,
            message_text=text,
            status=status,
            external_message_id=message_id,
            sent_at=now,
        )
        if self._profile.record_caller_identity:
            record.user_id = caller.id
            record.metadata = {
                "sent_by": caller.email,
                "ip_address": meta.ip_address,
                "user_agent": meta.user_agent,
            }
        return record


def _parse_body(body: Any) -> tuple[Any, dict[str, Any]]:
    if not isinstance(body, dict):
        raise BadRequest("Invalid request body: expected a JSON object")

    action = body.get("action")
    if action in (None, ""):
        raise BadRequest("Missing required field: action")

    data = body.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise BadRequest("Invalid field: data must be an object")

    return action, data

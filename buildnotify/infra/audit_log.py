# buildnotify/infra/audit_log.py
"""
Audit trail for notification dispatch attempts.

Every attempt (sent or failed) produces one row in the notifications
log table and one event on the dedicated "audit" logger, so the trail
can also be routed to a separate sink via logging configuration.

Writing is best-effort: ``record()`` never raises.  Delivery is the
primary contract, the audit row is secondary.
"""
from __future__ import annotations

from buildnotify.core.domain import DispatchRecord
from buildnotify.infra.backend_client import BackendClient
from buildnotify.infra.logging_config import get_logger, mask_chat_id
from buildnotify.infra.metrics import inc_counter

logger = get_logger(__name__)

# Dedicated audit logger, separate from the app logger.
_audit_logger = get_logger("audit")


class AuditLogger:
    def __init__(self, backend: BackendClient, table: str = "notifications_log") -> None:
        self._backend = backend
        self._table = table

    async def record(self, entry: DispatchRecord) -> bool:
        """
        Persist one dispatch record.

        Returns:
            True if the row was written, False otherwise
        """
        _audit_logger.info(
            f"AUDIT: notification.{entry.status.value} type={entry.type} "
            f"recipient={mask_chat_id(entry.recipient_id)} user={entry.user_id or '-'}",
            extra={
                "audit_action": f"notification.{entry.status.value}",
                "action": entry.type,
                "chat_id": entry.recipient_id,
                **({"user_id": entry.user_id} if entry.user_id else {}),
            },
        )

        try:
            await self._backend.insert_row(self._table, entry.to_row())
            return True
        except Exception as exc:
            logger.error(
                f"Failed to log notification: {exc}",
                extra={"action": entry.type},
            )
            inc_counter("notification_audit_failures_total")
            return False

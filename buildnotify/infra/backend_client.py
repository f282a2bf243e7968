# buildnotify/infra/backend_client.py
"""
Async client for the managed backend (auth + PostgREST tables).

Three calls are used by the notification pipeline:
- ``get_user(token)``            → GET  /auth/v1/user
- ``fetch_active_role(...)``     → GET  /rest/v1/<roles_table>
- ``insert_row(table, row)``     → POST /rest/v1/<table>

Error classification:
- Auth endpoint 401/403           → ``None`` (token does not resolve)
- Any other non-2xx / bad JSON    → ``BackendError``
- Network / timeout               → ``BackendError``

HTTP session lifecycle:
- Uses the shared backend session from buildnotify.infra.http_client
  unless a session is injected.
"""
from __future__ import annotations

import asyncio
from typing import Any

import aiohttp

from buildnotify.core.domain import CallerIdentity, RoleGrant
from buildnotify.infra.http_client import get_backend_session
from buildnotify.infra.logging_config import get_logger
from buildnotify.infra.metrics import inc_counter

logger = get_logger(__name__)


class BackendError(Exception):
    """Backend call failed (transport error or unexpected status)."""

    def __init__(self, operation: str, status: int, message: str):
        self.operation = operation
        self.status = status
        super().__init__(f"Backend {operation} failed (status={status}): {message}")


class BackendClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        write_key: str | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._write_key = write_key or api_key
        self._session_override = session

    def _session(self) -> aiohttp.ClientSession:
        return self._session_override or get_backend_session()

    def _headers(self, bearer: str | None = None, key: str | None = None) -> dict[str, str]:
        api_key = key or self._api_key
        return {
            "apikey": api_key,
            "Authorization": f"Bearer {bearer or api_key}",
        }

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def get_user(self, access_token: str) -> CallerIdentity | None:
        """
        Resolve an access token to the user it was issued for.

        Returns:
            CallerIdentity, or None when the token is invalid or expired

        Raises:
            BackendError: auth endpoint unreachable or failing
        """
        url = f"{self._base_url}/auth/v1/user"
        try:
            async with self._session().get(url, headers=self._headers(bearer=access_token)) as resp:
                if resp.status in (401, 403):
                    inc_counter("backend_auth_rejected_total")
                    return None

                body = await _safe_response_json(resp)
                if resp.status != 200 or not isinstance(body, dict):
                    raise BackendError("get_user", resp.status, _describe(body))

                user_id = body.get("id")
                if not user_id:
                    return None
                return CallerIdentity(id=str(user_id), email=body.get("email"))

        except BackendError:
            raise
        except aiohttp.ClientError as exc:
            logger.error(f"Backend auth connection error: {exc}")
            raise BackendError("get_user", 0, str(exc)) from exc
        except asyncio.TimeoutError as exc:
            logger.error("Backend auth request timed out")
            raise BackendError("get_user", 0, "Request timed out") from exc

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    async def fetch_active_role(
        self,
        table: str,
        user_id: str,
        role: str,
        *,
        access_token: str | None = None,
    ) -> RoleGrant | None:
        """
        Look up one active grant of ``role`` for ``user_id``.

        ``access_token`` is forwarded so row-level policies see the caller.
        """
        url = f"{self._base_url}/rest/v1/{table}"
        params = {
            "select": "user_id,role,is_active",
            "user_id": f"eq.{user_id}",
            "role": f"eq.{role}",
            "is_active": "eq.true",
            "limit": "1",
        }
        try:
            async with self._session().get(
                url,
                params=params,
                headers=self._headers(bearer=access_token),
            ) as resp:
                body = await _safe_response_json(resp)
                if resp.status != 200 or not isinstance(body, list):
                    raise BackendError("fetch_active_role", resp.status, _describe(body))

                if not body:
                    return None

                row = body[0]
                return RoleGrant(
                    user_id=str(row.get("user_id", user_id)),
                    role=row.get("role", role),
                    is_active=bool(row.get("is_active", True)),
                )

        except BackendError:
            raise
        except aiohttp.ClientError as exc:
            raise BackendError("fetch_active_role", 0, str(exc)) from exc
        except asyncio.TimeoutError as exc:
            raise BackendError("fetch_active_role", 0, "Request timed out") from exc

    async def insert_row(self, table: str, row: dict[str, Any]) -> None:
        """Insert one row. Raises BackendError on any failure."""
        url = f"{self._base_url}/rest/v1/{table}"
        headers = {
            **self._headers(key=self._write_key),
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        }
        try:
            async with self._session().post(url, json=row, headers=headers) as resp:
                if resp.status in (200, 201, 204):
                    return
                body = await _safe_response_json(resp)
                raise BackendError(f"insert {table}", resp.status, _describe(body))

        except BackendError:
            raise
        except aiohttp.ClientError as exc:
            raise BackendError(f"insert {table}", 0, str(exc)) from exc
        except asyncio.TimeoutError as exc:
            raise BackendError(f"insert {table}", 0, "Request timed out") from exc


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------

async def _safe_response_json(resp: aiohttp.ClientResponse) -> Any:
    """Parse JSON from response, returning None if body is not valid JSON."""
    try:
        return await resp.json(content_type=None)
    except Exception:
        logger.warning(f"Backend returned non-JSON body: status={resp.status}")
        return None


def _describe(body: Any) -> str:
    if isinstance(body, dict):
        return str(
            body.get("message")
            or body.get("msg")
            or body.get("error_description")
            or body.get("error")
            or "Unknown error"
        )
    return "Unexpected response"

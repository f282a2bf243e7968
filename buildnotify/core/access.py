# buildnotify/core/access.py
"""
Caller authentication and role authorization.

- CredentialVerifier: ``Authorization: Bearer <token>`` → CallerIdentity
- RoleAuthorizer: CallerIdentity + role name → active grant or Forbidden

Authorization fails closed: a lookup error counts as "no grant".
"""
from __future__ import annotations

from buildnotify.core.domain import CallerIdentity, RoleGrant
from buildnotify.core.errors import Forbidden, Unauthorized, UpstreamFailure
from buildnotify.infra.backend_client import BackendClient, BackendError
from buildnotify.infra.logging_config import get_logger
from buildnotify.infra.metrics import inc_counter

logger = get_logger(__name__)

BEARER_SCHEME = "bearer"


def extract_bearer_token(header_value: str | None) -> str | None:
    """Strip the ``Bearer `` prefix. Returns None when nothing usable remains."""
    if not header_value:
        return None
    value = header_value.strip()
    scheme, _, credentials = value.partition(" ")
    if scheme.lower() == BEARER_SCHEME:
        value = credentials.strip()
    return value or None


class CredentialVerifier:
    def __init__(self, backend: BackendClient) -> None:
        self._backend = backend

    async def verify(self, header_value: str | None) -> tuple[CallerIdentity, str]:
        """
        Resolve the caller behind an Authorization header.

        Returns:
            (identity, raw access token)

        Raises:
            Unauthorized: header missing or token does not resolve to a user
            UpstreamFailure: auth endpoint unreachable or failing
        """
        token = extract_bearer_token(header_value)
        if token is None:
            inc_counter("auth_rejections_total", reason="missing_credential")
            raise Unauthorized()

        try:
            identity = await self._backend.get_user(token)
        except BackendError as exc:
            logger.error(f"Identity verification failed: {exc}")
            raise UpstreamFailure(f"Identity verification failed: {exc}") from exc

        if identity is None:
            inc_counter("auth_rejections_total", reason="invalid_credential")
            raise Unauthorized()

        return identity, token


class RoleAuthorizer:
    def __init__(self, backend: BackendClient, table: str = "user_roles") -> None:
        self._backend = backend
        self._table = table

    async def authorize(
        self,
        caller: CallerIdentity,
        role: str,
        *,
        access_token: str | None = None,
    ) -> RoleGrant:
        """
        Require an active ``role`` grant for ``caller``.

        Raises:
            Forbidden: no active grant, or the lookup itself failed
        """
        try:
            grant = await self._backend.fetch_active_role(
                self._table, caller.id, role, access_token=access_token,
            )
        except BackendError as exc:
            logger.warning(
                f"Role lookup failed, denying access: {exc}",
                extra={"user_id": caller.id},
            )
            grant = None

        if grant is None or not grant.is_active:
            inc_counter("auth_rejections_total", reason="missing_role")
            raise Forbidden()

        return grant

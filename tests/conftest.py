# tests/conftest.py
"""Pytest configuration and fixtures"""
from __future__ import annotations

import pytest

from buildnotify.config import HandlerProfile, Settings
from buildnotify.core.access import CredentialVerifier, RoleAuthorizer
from buildnotify.core.dispatch import NotificationDispatcher
from buildnotify.infra.audit_log import AuditLogger
from buildnotify.infra.metrics import get_metrics_collector
from tests.fakes import FIXED_NOW, FakeBackend, FakeSender


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics_collector().reset()
    yield
    get_metrics_collector().reset()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def chat_id():
    """Default chat ID for tests"""
    return "-1001234567890"


@pytest.fixture
def make_dispatcher(backend, sender, chat_id):
    """Factory: build a dispatcher over the fake backend and sender."""

    def _make(
        profile: HandlerProfile | None = None,
        *,
        with_sender: bool = True,
        default_chat_id: str | None = chat_id,
    ) -> NotificationDispatcher:
        return NotificationDispatcher(
            verifier=CredentialVerifier(backend),
            authorizer=RoleAuthorizer(backend, "user_roles"),
            sender=sender if with_sender else None,
            audit=AuditLogger(backend, "notifications_log"),
            profile=profile or HandlerProfile(),
            default_chat_id=default_chat_id,
            clock=lambda: FIXED_NOW,
        )

    return _make


@pytest.fixture
def settings(chat_id):
    return Settings(
        _env_file=None,
        app_env="dev",
        supabase_url="https://backend.test/",
        supabase_anon_key="anon-key",
        telegram_bot_token="123456:TEST",
        telegram_default_chat_id=chat_id,
        metrics_token=None,
    )

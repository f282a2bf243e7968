# tests/test_telegram_sender.py
"""Tests for buildnotify/transport/telegram_sender.py: sendMessage call and error classification."""
from __future__ import annotations

import asyncio

import aiohttp
import pytest

from buildnotify.core.errors import DeliveryFailed, UpstreamFailure
from buildnotify.infra.metrics import get_metrics_collector
from buildnotify.transport.telegram_sender import TelegramSender
from tests.fakes import FakeResponse, FakeSession


def _sender(session, **kwargs) -> TelegramSender:
    return TelegramSender("123456:TEST", api_base="https://tg.test/", session=session, **kwargs)


class TestSendText:
    @pytest.mark.asyncio
    async def test_success_returns_message_id(self):
        session = FakeSession(FakeResponse(200, {"ok": True, "result": {"message_id": 777}}))
        msg_id = await _sender(session).send_text(-100500, "hello")

        assert msg_id == 777
        assert get_metrics_collector().get_counter("telegram_outbound_sent") == 1

    @pytest.mark.asyncio
    async def test_single_post_to_send_message(self):
        session = FakeSession(FakeResponse(200, {"ok": True, "result": {"message_id": 1}}))
        await _sender(session).send_text("-100500", "<b>hi</b>")

        assert len(session.calls) == 1
        method, url, kwargs = session.calls[0]
        assert method == "POST"
        assert url == "https://tg.test/bot123456:TEST/sendMessage"
        assert kwargs["json"] == {"chat_id": "-100500", "text": "<b>hi</b>", "parse_mode": "HTML"}
        assert "timeout" not in kwargs

    @pytest.mark.asyncio
    async def test_parse_mode_omitted_when_none(self):
        session = FakeSession(FakeResponse(200, {"ok": True, "result": {"message_id": 1}}))
        await _sender(session, parse_mode=None).send_text(1, "plain")
        assert "parse_mode" not in session.calls[0][2]["json"]

    @pytest.mark.asyncio
    async def test_ack_without_message_id(self):
        session = FakeSession(FakeResponse(200, {"ok": True, "result": True}))
        with pytest.raises(DeliveryFailed) as exc_info:
            await _sender(session).send_text(1, "x")
        assert exc_info.value.retryable is False
        assert "message_id" in exc_info.value.description

    @pytest.mark.asyncio
    async def test_ok_false_is_failure(self):
        session = FakeSession(FakeResponse(200, {"ok": False, "description": "weird"}))
        with pytest.raises(DeliveryFailed) as exc_info:
            await _sender(session).send_text(1, "x")
        assert exc_info.value.description == "weird"


class TestErrorClassification:
    @pytest.mark.asyncio
    async def test_chat_not_found(self):
        session = FakeSession(FakeResponse(
            400, {"ok": False, "error_code": 400, "description": "Bad Request: chat not found"},
        ))
        with pytest.raises(DeliveryFailed) as exc_info:
            await _sender(session).send_text(1, "x")

        exc = exc_info.value
        assert exc.status == 400
        assert exc.error_code == 400
        assert exc.retryable is False
        assert exc.detail == "Telegram API error: Bad Request: chat not found"
        assert get_metrics_collector().get_counter("telegram_outbound_bad_request") == 1

    @pytest.mark.asyncio
    async def test_invalid_token(self):
        session = FakeSession(FakeResponse(401, {"ok": False, "error_code": 401, "description": "Unauthorized"}))
        with pytest.raises(DeliveryFailed) as exc_info:
            await _sender(session).send_text(1, "x")
        assert exc_info.value.retryable is False
        assert get_metrics_collector().get_counter("telegram_outbound_auth_error") == 1

    @pytest.mark.asyncio
    async def test_bot_blocked(self):
        session = FakeSession(FakeResponse(
            403, {"ok": False, "error_code": 403, "description": "Forbidden: bot was blocked by the user"},
        ))
        with pytest.raises(DeliveryFailed) as exc_info:
            await _sender(session).send_text(1, "x")
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_rate_limited_is_retryable_but_not_retried(self):
        session = FakeSession(FakeResponse(
            429,
            {"ok": False, "error_code": 429, "description": "Too Many Requests",
             "parameters": {"retry_after": 5}},
        ))
        with pytest.raises(DeliveryFailed) as exc_info:
            await _sender(session).send_text(1, "x")
        assert exc_info.value.retryable is True
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_non_json(self):
        session = FakeSession(FakeResponse(502, text="Bad Gateway"))
        with pytest.raises(DeliveryFailed) as exc_info:
            await _sender(session).send_text(1, "x")
        assert exc_info.value.description == "HTTP 502: Bad Gateway"
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_connection_error(self):
        session = FakeSession(error=aiohttp.ClientConnectionError("connection refused"))
        with pytest.raises(DeliveryFailed) as exc_info:
            await _sender(session).send_text(1, "x")
        assert exc_info.value.status == 0
        assert exc_info.value.retryable is True
        assert get_metrics_collector().get_counter("telegram_outbound_connection_error") == 1

    @pytest.mark.asyncio
    async def test_timeout_is_retryable_delivery_failure(self):
        session = FakeSession(error=asyncio.TimeoutError())
        with pytest.raises(DeliveryFailed) as exc_info:
            await _sender(session).send_text(1, "x")

        exc = exc_info.value
        assert exc.status == 0
        assert exc.retryable is True
        assert exc.detail == "Telegram API error: Request timed out"
        assert get_metrics_collector().get_counter("telegram_outbound_timeout") == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_wrapped(self):
        session = FakeSession(error=RuntimeError("socket exploded"))
        with pytest.raises(DeliveryFailed) as exc_info:
            await _sender(session).send_text(1, "x")
        assert exc_info.value.description == "socket exploded"
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_delivery_failed_is_upstream_failure(self):
        exc = DeliveryFailed(400, 400, "nope")
        assert isinstance(exc, UpstreamFailure)
        assert exc.status_code == 500

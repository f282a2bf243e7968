# buildnotify/transport/telegram_sender.py
"""
Telegram Bot API outbound sender.

One ``sendMessage`` call per notification: no retry, no per-request
timeout override (the shared sender session defaults apply).

Error classification (DeliveryFailed.retryable, informational only):
- Token invalid / bot blocked  → NOT retryable (needs human intervention)
- Chat not found / bad request → NOT retryable
- Rate limiting (429)          → retryable
- Network / timeout            → retryable  (transient)
- Any other exception          → retryable
- Unknown server error         → retryable  (optimistic)

HTTP session lifecycle:
- Uses the shared sender session from buildnotify.infra.http_client
  unless a session is injected.
- Call close_all_sessions() during application shutdown.
"""
from __future__ import annotations

import asyncio

import aiohttp

from buildnotify.core.errors import DeliveryFailed
from buildnotify.infra.http_client import get_sender_session
from buildnotify.infra.logging_config import get_logger, mask_chat_id
from buildnotify.infra.metrics import inc_counter

logger = get_logger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


class TelegramSender:
    def __init__(
        self,
        bot_token: str,
        *,
        api_base: str = TELEGRAM_API_BASE,
        parse_mode: str | None = "HTML",
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._bot_token = bot_token
        self._api_base = api_base.rstrip("/")
        self._parse_mode = parse_mode
        self._session_override = session

    def _session(self) -> aiohttp.ClientSession:
        return self._session_override or get_sender_session()

    def _bot_url(self, method: str) -> str:
        """Build Telegram Bot API URL."""
        return f"{self._api_base}/bot{self._bot_token}/{method}"

    async def send_text(self, chat_id: str | int, text: str) -> int | str:
        """
        Send a text message via Telegram Bot API.

        Args:
            chat_id: Telegram chat ID (numeric id or @channel username)
            text: Message text body

        Returns:
            The message_id Telegram assigned to the delivered message

        Raises:
            DeliveryFailed: On any API, parsing or connection error
        """
        payload: dict = {
            "chat_id": chat_id,
            "text": text,
        }
        if self._parse_mode:
            payload["parse_mode"] = self._parse_mode

        body = await self._send_request(self._bot_url("sendMessage"), payload, str(chat_id))

        result = body.get("result")
        if not isinstance(result, dict) or "message_id" not in result:
            inc_counter("telegram_outbound_error")
            raise DeliveryFailed(200, None, "acknowledgment without message_id", retryable=False)
        return result["message_id"]

    async def _send_request(self, url: str, payload: dict, chat_id: str) -> dict:
        """
        Execute a Telegram Bot API request with error handling.
        """
        masked = mask_chat_id(chat_id)
        try:
            async with self._session().post(url, json=payload) as resp:
                body = await _safe_response_json(resp)

                if 200 <= resp.status < 300 and body and body.get("ok"):
                    result = body.get("result", {})
                    msg_id = result.get("message_id", "unknown") if isinstance(result, dict) else "ok"
                    logger.info(f"Telegram message sent: to={masked}, msg_id={msg_id}")
                    inc_counter("telegram_outbound_sent")
                    return body

                # --- Error path ------------------------------------------------
                if body is None:
                    error_desc = f"HTTP {resp.status}: {await _safe_response_text(resp)}"
                else:
                    error_desc = body.get("description", "Unknown error")
                error_code = (body or {}).get("error_code")

                # -- Auth failure: token invalid --------
                if resp.status == 401 or error_code == 401:
                    logger.error(f"Telegram API auth error (token invalid): {error_desc}")
                    inc_counter("telegram_outbound_auth_error")
                    raise DeliveryFailed(resp.status, error_code, error_desc, retryable=False)

                # -- Forbidden: bot blocked by user or kicked from chat --
                if resp.status == 403:
                    logger.warning(f"Telegram API forbidden: to={masked}, {error_desc}")
                    inc_counter("telegram_outbound_forbidden")
                    raise DeliveryFailed(resp.status, error_code, error_desc, retryable=False)

                # -- Bad request: chat not found, bad markup, message too long --
                if resp.status == 400:
                    logger.warning(f"Telegram API bad request: to={masked}, {error_desc}")
                    inc_counter("telegram_outbound_bad_request")
                    raise DeliveryFailed(resp.status, error_code, error_desc, retryable=False)

                if resp.status == 429:
                    retry_after = ((body or {}).get("parameters") or {}).get("retry_after")
                    logger.warning(f"Telegram API rate limit, retry_after={retry_after}s")
                    inc_counter("telegram_outbound_rate_limited")
                    raise DeliveryFailed(resp.status, error_code, error_desc, retryable=True)

                logger.error(f"Telegram API error: status={resp.status}, code={error_code}, msg={error_desc}")
                inc_counter("telegram_outbound_error")
                raise DeliveryFailed(resp.status, error_code, error_desc, retryable=True)

        except DeliveryFailed:
            raise
        except aiohttp.ClientError as exc:
            logger.error(f"Telegram API connection error: {exc.__class__.__name__}: {exc}")
            inc_counter("telegram_outbound_connection_error")
            raise DeliveryFailed(0, None, str(exc) or exc.__class__.__name__, retryable=True) from exc
        except asyncio.TimeoutError as exc:
            logger.error(f"Telegram API timeout: to={masked}")
            inc_counter("telegram_outbound_timeout")
            raise DeliveryFailed(0, None, "Request timed out", retryable=True) from exc
        except Exception as exc:
            logger.error(f"Telegram API unexpected error: {exc.__class__.__name__}: {exc}", exc_info=True)
            inc_counter("telegram_outbound_unexpected_error")
            raise DeliveryFailed(0, None, str(exc) or exc.__class__.__name__, retryable=True) from exc


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------

async def _safe_response_json(resp: aiohttp.ClientResponse) -> dict | None:
    """Parse JSON from response, returning None if body is not a JSON object."""
    try:
        data = await resp.json(content_type=None)
    except Exception:
        logger.warning(f"Telegram API returned non-JSON body: status={resp.status}")
        return None
    return data if isinstance(data, dict) else None


async def _safe_response_text(resp: aiohttp.ClientResponse, max_len: int = 300) -> str:
    """Read response body as text, truncated for safe logging."""
    try:
        text = await resp.text()
        return text[:max_len]
    except Exception:
        return "<unreadable>"

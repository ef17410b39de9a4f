"""
Asynchronous delivery through the WeChat Customer Service message API.

Used once the passive-reply window of the original request has closed:
runtime results arrive minutes later via /callback/{openid} and are pushed
to the user with message/custom/send.

Constraints handled here:
  - A customer service text message is limited to ``max_length`` characters;
    longer content is split on natural breaks and numbered "(n/total)".
  - A rejected access_token is invalidated and the send retried once.
"""

import asyncio
import itertools
import json
import logging

import httpx

from wxrelay.models.envelopes import CallbackPayload
from wxrelay.services.token_manager import WECHAT_API_BASE, PlatformTokenManager

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 600
CHUNK_DELAY_SECONDS = 0.1

# invalid credential / invalid access_token / access_token expired
AUTH_REJECTED_ERRCODES = {40001, 40014, 42001}

EMPTY_RESULT_MESSAGE = "✅ 任务已完成（无返回内容）"
FAILURE_PREFIX = "❌ 处理失败："
UNKNOWN_ERROR = "未知错误"


# ---------------------------------------------------------------------------
# Message composition
# ---------------------------------------------------------------------------

def format_elapsed(thinking_time_ms: float) -> str:
    return f"\n\n⏱️ 思考用时: {thinking_time_ms / 1000:.1f}s"


def compose_result_text(payload: CallbackPayload) -> str:
    """Turn a runtime result into the text shown to the user."""
    if payload.success:
        content = payload.result or EMPTY_RESULT_MESSAGE
    else:
        content = f"{FAILURE_PREFIX}{payload.error or UNKNOWN_ERROR}"

    if payload.metadata and payload.metadata.thinking_time_ms is not None:
        content += format_elapsed(payload.metadata.thinking_time_ms)

    return content


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------

def _find_split(text: str, limit: int) -> int:
    """
    Index to cut ``text`` at so the head fits in ``limit`` characters.

    Prefers the last newline, then the last space, but only when it lies in
    the upper half of the window; otherwise cuts hard at ``limit``.
    """
    for separator in ("\n", " "):
        index = text.rfind(separator, 0, limit + 1)
        if index != -1 and index >= limit / 2:
            return index
    return limit


def _split_pieces(content: str, first_limit: int, rest_limit: int) -> list[str]:
    pieces: list[str] = []
    remaining = content
    limit = first_limit

    while remaining:
        if len(remaining) <= limit:
            pieces.append(remaining)
            break
        index = _find_split(remaining, limit)
        pieces.append(remaining[:index])
        remaining = remaining[index:].lstrip()
        limit = rest_limit

    return pieces


def split_message(content: str, max_length: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """
    Split ``content`` into numbered chunks of at most ``max_length`` characters.

    The first chunk is sent bare; every later chunk is prefixed with
    "(n/total) " and the prefix counts toward the limit.

    Raises:
        ValueError: ``max_length`` is too small to fit any text after the
            prefix the chunk count requires.
    """
    if len(content) <= max_length:
        return [content]

    # Prefix width depends on the number of chunks; widen until it fits
    for digits in itertools.count(1):
        prefix_width = len(f"({'9' * digits}/{'9' * digits}) ")
        if max_length - prefix_width < 1:
            raise ValueError(f"max_length {max_length} leaves no room for text after the chunk prefix")
        pieces = _split_pieces(content, max_length, max_length - prefix_width)
        if len(str(len(pieces))) <= digits:
            break

    total = len(pieces)
    return [
        piece if i == 0 else f"({i + 1}/{total}) {piece}"
        for i, piece in enumerate(pieces)
    ]


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------

class WeChatDelivery:
    """Sends text to a WeChat user outside the passive-reply window."""

    def __init__(
        self,
        token_manager: PlatformTokenManager,
        http_client: httpx.AsyncClient,
        *,
        max_length: int = MAX_MESSAGE_LENGTH,
        chunk_delay: float = CHUNK_DELAY_SECONDS,
        api_base: str = WECHAT_API_BASE,
    ):
        self._tokens = token_manager
        self._http = http_client
        self._max_length = max_length
        self._chunk_delay = chunk_delay
        self._send_url = f"{api_base.rstrip('/')}/message/custom/send"

    async def send_customer_message(self, message: dict, retry_on_token_error: bool = True) -> bool:
        """
        POST one customer service message. Returns True on errcode 0.

        An auth-rejected response invalidates the cached token and retries
        exactly once with a fresh one.
        """
        try:
            access_token = await self._tokens.get_token()
            response = await self._http.post(
                self._send_url,
                params={"access_token": access_token},
                # WeChat shows \uXXXX escapes literally, so send raw UTF-8
                content=json.dumps(message, ensure_ascii=False).encode("utf-8"),
                headers={"Content-Type": "application/json"},
            )
            data = response.json()
        except Exception as e:
            logger.error(f"Error sending customer service message to {message.get('touser')}: {e!r}")
            return False

        errcode = data.get("errcode", 0)
        if errcode == 0:
            return True

        if errcode in AUTH_REJECTED_ERRCODES and retry_on_token_error:
            logger.warning(f"Access token rejected (errcode {errcode}), refreshing...")
            try:
                await self._tokens.force_invalidate()
            except Exception as e:
                logger.error(f"Failed to invalidate access token: {e!r}")
                return False
            return await self.send_customer_message(message, retry_on_token_error=False)

        logger.error(f"Failed to send customer service message: {data}")
        return False

    async def send_text(self, openid: str, content: str) -> bool:
        """
        Send text to ``openid``, split into several messages when too long.

        Every chunk is attempted even if an earlier one failed; the result is
        False if any chunk failed.
        """
        chunks = split_message(content, self._max_length)
        success = True

        for i, chunk in enumerate(chunks):
            sent = await self.send_customer_message(
                {"touser": openid, "msgtype": "text", "text": {"content": chunk}}
            )
            if not sent:
                success = False

            # Small delay between messages to preserve order
            if i < len(chunks) - 1:
                await asyncio.sleep(self._chunk_delay)

        return success

    async def deliver_result(self, openid: str, payload: CallbackPayload) -> bool:
        return await self.send_text(openid, compose_result_text(payload))

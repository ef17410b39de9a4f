"""
Tests for result formatting, message chunking and Customer Service delivery.
"""

import json
import time
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from wxrelay.models.envelopes import CallbackPayload, ResultMetadata
from wxrelay.services.delivery import (
    EMPTY_RESULT_MESSAGE,
    WeChatDelivery,
    compose_result_text,
    split_message,
)
from wxrelay.services.token_manager import TOKEN_KEY, PlatformTokenManager


def _strip_prefix(chunk: str) -> str:
    return chunk.split(") ", 1)[1] if chunk.startswith("(") else chunk


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------

class TestComposeResultText:

    def test_success_with_thinking_time(self):
        payload = CallbackPayload(success=True, result="42", metadata=ResultMetadata(thinking_time_ms=1500))
        text = compose_result_text(payload)
        assert text.startswith("42")
        assert "1.5s" in text

    def test_success_without_metadata(self):
        assert compose_result_text(CallbackPayload(success=True, result="42")) == "42"

    def test_empty_result_placeholder(self):
        assert compose_result_text(CallbackPayload(success=True, result="")) == EMPTY_RESULT_MESSAGE

    def test_failure_with_error(self):
        text = compose_result_text(CallbackPayload(success=False, error="Task timeout"))
        assert text == "❌ 处理失败：Task timeout"

    def test_failure_without_error(self):
        assert compose_result_text(CallbackPayload(success=False)) == "❌ 处理失败：未知错误"

    def test_zero_thinking_time_still_shown(self):
        payload = CallbackPayload(success=True, result="ok", metadata=ResultMetadata(thinking_time_ms=0))
        assert "0.0s" in compose_result_text(payload)


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------

class TestSplitMessage:

    def test_short_content_single_chunk(self):
        assert split_message("hello", 600) == ["hello"]

    def test_exact_limit_single_chunk(self):
        assert split_message("x" * 600, 600) == ["x" * 600]

    def test_long_content_split_on_spaces(self):
        """1450 characters of words become three numbered chunks within the limit."""
        content = "word " * 290
        chunks = split_message(content, 600)

        assert len(chunks) == 3
        assert all(len(chunk) <= 600 for chunk in chunks)
        assert not chunks[0].startswith("(")
        assert chunks[1].startswith("(2/3) ")
        assert chunks[2].startswith("(3/3) ")
        # Order and content preserved; only the split whitespace is dropped
        assert " ".join(_strip_prefix(c) for c in chunks) == content

    def test_prefers_newline_over_space(self):
        content = "a" * 400 + "\n" + "b" * 100 + " " + "c" * 300
        chunks = split_message(content, 600)
        assert chunks[0] == "a" * 400
        assert chunks[1] == "(2/2) " + "b" * 100 + " " + "c" * 300

    def test_break_in_lower_half_is_ignored(self):
        """A newline before the halfway point would waste the chunk; cut hard instead."""
        content = "a" * 100 + "\n" + "b" * 700
        chunks = split_message(content, 600)
        assert len(chunks[0]) == 600

    def test_hard_cut_without_whitespace(self):
        content = "x" * 1300
        chunks = split_message(content, 600)

        assert len(chunks) == 3
        assert all(len(chunk) <= 600 for chunk in chunks)
        assert "".join(_strip_prefix(c) for c in chunks) == content

    def test_prefix_widens_for_ten_or_more_chunks(self):
        content = "x" * 1000
        chunks = split_message(content, 100)

        total = len(chunks)
        assert total >= 10
        assert chunks[-1].startswith(f"({total}/{total}) ")
        assert all(len(chunk) <= 100 for chunk in chunks)
        assert "".join(_strip_prefix(c) for c in chunks) == content

    def test_small_ceiling_still_terminates(self):
        """A 12-character ceiling leaves 4 characters of text after a two-digit prefix."""
        content = "x" * 100
        chunks = split_message(content, 12)

        assert len(chunks) == 23
        assert all(len(chunk) <= 12 for chunk in chunks)
        assert "".join(_strip_prefix(c) for c in chunks) == content

    @pytest.mark.parametrize("max_length", [1, 6, 8])
    def test_ceiling_without_room_for_text_raises(self, max_length):
        """Ceilings that cannot fit the chunk prefix plus one character are rejected."""
        with pytest.raises(ValueError):
            split_message("x" * 100, max_length)


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------

class WeChatAPI:
    """MockTransport handler for /token and /message/custom/send."""

    def __init__(self, send_errcodes: list[int] | None = None):
        self.send_errcodes = list(send_errcodes or [])
        self.sent: list[dict] = []
        self.send_tokens: list[str] = []
        self.token_calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/token"):
            self.token_calls += 1
            return httpx.Response(200, json={"access_token": f"fresh-{self.token_calls}", "expires_in": 7200})

        self.sent.append(json.loads(request.content.decode("utf-8")))
        self.send_tokens.append(request.url.params["access_token"])
        errcode = self.send_errcodes.pop(0) if self.send_errcodes else 0
        return httpx.Response(200, json={"errcode": errcode, "errmsg": "ok" if errcode == 0 else "error"})


def _delivery(fake_redis, api: WeChatAPI, **kwargs) -> WeChatDelivery:
    fake_redis.data[TOKEN_KEY] = json.dumps({"access_token": "cached", "expires_at": time.time() + 3600})
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(api))
    tokens = PlatformTokenManager(fake_redis, http_client, "wx-appid", "app-secret")
    return WeChatDelivery(tokens, http_client, chunk_delay=0, **kwargs)


class TestSendCustomerMessage:

    @pytest.mark.asyncio
    async def test_success(self, fake_redis):
        api = WeChatAPI()
        delivery = _delivery(fake_redis, api)

        sent = await delivery.send_customer_message({"touser": "U1", "msgtype": "text", "text": {"content": "你好"}})

        assert sent is True
        assert api.sent[0]["text"]["content"] == "你好"
        assert api.send_tokens == ["cached"]

    @pytest.mark.asyncio
    async def test_body_is_raw_utf8(self, fake_redis):
        """Chinese text must not be sent as \\uXXXX escapes."""
        seen: list[bytes] = []
        api = WeChatAPI()

        def handler(request):
            seen.append(request.content)
            return api(request)

        fake_redis.data[TOKEN_KEY] = json.dumps({"access_token": "cached", "expires_at": time.time() + 3600})
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        delivery = WeChatDelivery(PlatformTokenManager(fake_redis, http_client, "a", "s"), http_client)

        await delivery.send_text("U1", "你好")

        assert "你好".encode("utf-8") in seen[0]

    @pytest.mark.asyncio
    async def test_rejected_token_refreshed_and_retried_once(self, fake_redis):
        api = WeChatAPI(send_errcodes=[40001, 0])
        delivery = _delivery(fake_redis, api)

        sent = await delivery.send_text("U1", "hello")

        assert sent is True
        assert api.token_calls == 1
        assert api.send_tokens == ["cached", "fresh-1"]

    @pytest.mark.asyncio
    async def test_second_rejection_is_not_retried_again(self, fake_redis):
        api = WeChatAPI(send_errcodes=[42001, 42001])
        delivery = _delivery(fake_redis, api)

        assert await delivery.send_text("U1", "hello") is False
        assert len(api.sent) == 2

    @pytest.mark.asyncio
    async def test_other_errcode_fails_without_retry(self, fake_redis):
        """45015 (user outside the 48h window) is not a token problem."""
        api = WeChatAPI(send_errcodes=[45015])
        delivery = _delivery(fake_redis, api)

        assert await delivery.send_text("U1", "hello") is False
        assert len(api.sent) == 1
        assert api.token_calls == 0

    @pytest.mark.asyncio
    async def test_network_error_returns_false(self, fake_redis):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        fake_redis.data[TOKEN_KEY] = json.dumps({"access_token": "cached", "expires_at": time.time() + 3600})
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        delivery = WeChatDelivery(PlatformTokenManager(fake_redis, http_client, "a", "s"), http_client)

        assert await delivery.send_text("U1", "hello") is False


class TestSendText:

    @pytest.mark.asyncio
    async def test_long_text_sent_in_order(self, fake_redis):
        api = WeChatAPI()
        delivery = _delivery(fake_redis, api)

        assert await delivery.send_text("U1", "word " * 290) is True

        contents = [message["text"]["content"] for message in api.sent]
        assert len(contents) == 3
        assert contents[1].startswith("(2/3) ")
        assert contents[2].startswith("(3/3) ")
        assert all(message["touser"] == "U1" for message in api.sent)

    @pytest.mark.asyncio
    async def test_failed_chunk_does_not_stop_later_chunks(self, fake_redis):
        api = WeChatAPI(send_errcodes=[0, 45015, 0])
        delivery = _delivery(fake_redis, api)

        with patch("wxrelay.services.delivery.asyncio.sleep", new=AsyncMock()) as mock_sleep:
            result = await delivery.send_text("U1", "x" * 1300)

        assert result is False
        assert len(api.sent) == 3
        assert mock_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_deliver_result_composes_text(self, fake_redis):
        api = WeChatAPI()
        delivery = _delivery(fake_redis, api)
        payload = CallbackPayload(success=True, result="42", metadata=ResultMetadata(thinking_time_ms=1500))

        assert await delivery.deliver_result("U1", payload) is True

        content = api.sent[0]["text"]["content"]
        assert "42" in content
        assert "1.5s" in content

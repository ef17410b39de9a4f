"""
Shared fixtures for the bridge and runtime tests.

No real Redis, Supabase, WeChat or runtime is contacted: the token cache is an
in-memory FakeRedis, bindings live in FakeBindingStore, and outbound HTTP goes
through httpx.MockTransport in the individual test modules.
"""

import os
import time
from datetime import datetime, timezone
from typing import Optional

import pytest

# Ensure env vars are set before importing anything that triggers app imports
os.environ.setdefault("WECHAT_APPID", "wx-test-appid")
os.environ.setdefault("WECHAT_APPSECRET", "test-app-secret")
os.environ.setdefault("WECHAT_TOKEN", "test-wechat-token")
os.environ.setdefault("BRIDGE_BASE_URL", "https://bridge.example.com")
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")

from wxrelay.config import Settings
from wxrelay.models.binding import Binding
from wxrelay.services.binding_store import BindingStoreError
from wxrelay.services.signature import generate_signature


# ---------------------------------------------------------------------------
# In-memory doubles
# ---------------------------------------------------------------------------

class FakeRedis:
    """The subset of redis.asyncio.Redis the token manager uses."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, Optional[int]] = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def ping(self):
        return True

    async def aclose(self):
        return None


class FakeBindingStore:
    """Dict-backed stand-in for BindingStore. Set ``fail`` to simulate an outage."""

    def __init__(self):
        self.bindings: dict[str, Binding] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise BindingStoreError("store unavailable")

    async def set_binding(self, openid, endpoint, token):
        self._check()
        binding = Binding(
            openid=openid,
            endpoint=endpoint,
            token=token,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self.bindings[openid] = binding
        return binding

    async def get_binding(self, openid):
        self._check()
        return self.bindings.get(openid)

    async def delete_binding(self, openid):
        self._check()
        return self.bindings.pop(openid, None) is not None

    async def ping(self):
        self._check()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def binding_store():
    return FakeBindingStore()


@pytest.fixture
def settings():
    return Settings(
        wechat_app_id="wx-test-appid",
        wechat_app_secret="test-app-secret",
        wechat_token="test-wechat-token",
        bridge_base_url="https://bridge.example.com",
        supabase_url="https://test.supabase.co",
        supabase_service_key="test-service-key",
    )


@pytest.fixture
def signed_params(settings):
    """Factory for query params carrying a valid WeChat signature."""

    def _make(timestamp: str = "1700000000", nonce: str = "nonce123", **extra) -> dict:
        return {
            "signature": generate_signature(settings.wechat_token, timestamp, nonce),
            "timestamp": timestamp,
            "nonce": nonce,
            **extra,
        }

    return _make


@pytest.fixture
def make_xml():
    """Factory for inbound WeChat XML envelopes."""

    def _make(msg_type: str = "text", from_user: str = "U1", to_user: str = "gh_account", **fields) -> str:
        parts = [
            f"<ToUserName><![CDATA[{to_user}]]></ToUserName>",
            f"<FromUserName><![CDATA[{from_user}]]></FromUserName>",
            f"<CreateTime>{int(time.time())}</CreateTime>",
            f"<MsgType><![CDATA[{msg_type}]]></MsgType>",
        ]
        for tag, value in fields.items():
            parts.append(f"<{tag}><![CDATA[{value}]]></{tag}>")
        return "<xml>" + "".join(parts) + "</xml>"

    return _make

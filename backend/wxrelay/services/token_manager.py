"""
WeChat platform access token manager.

One access_token is shared by every bridge replica. It is cached in Redis
as JSON {"access_token", "expires_at"} with a TTL equal to ``expires_in``,
and refreshed by at most one process at a time under a Redis lock
(SET NX EX). A refresher that crashes leaves the lock to expire on its own.

States:
  Valid     : cached and now < expires_at - refresh_margin  -> returned as-is
  Expiring  : missing or inside the margin                 -> refresh
  Refreshing: lock held by someone else                    -> wait, retry
"""

import asyncio
import json
import logging
import time
import uuid
from typing import Optional

import httpx
import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

WECHAT_API_BASE = "https://api.weixin.qq.com/cgi-bin"

TOKEN_KEY = "wechat:access_token"
TOKEN_LOCK_KEY = "wechat:access_token:lock"

# Refresh 10 minutes before expiry
TOKEN_REFRESH_MARGIN = 600
TOKEN_LOCK_TTL = 30
TOKEN_LOCK_RETRY_DELAY = 1.0


class WeChatAPIError(Exception):
    """WeChat returned a non-zero errcode."""

    def __init__(self, errcode: int, errmsg: str = ""):
        self.errcode = errcode
        self.errmsg = errmsg
        super().__init__(f"WeChat API error: {errcode} - {errmsg}")


class PlatformTokenManager:
    """Hands out a valid WeChat access_token, refreshing it when needed."""

    def __init__(
        self,
        redis: aioredis.Redis,
        http_client: httpx.AsyncClient,
        app_id: str,
        app_secret: str,
        *,
        refresh_margin: int = TOKEN_REFRESH_MARGIN,
        lock_ttl: int = TOKEN_LOCK_TTL,
        lock_retry_delay: float = TOKEN_LOCK_RETRY_DELAY,
        api_base: str = WECHAT_API_BASE,
    ):
        self._redis = redis
        self._http = http_client
        self._app_id = app_id
        self._app_secret = app_secret
        self._refresh_margin = refresh_margin
        self._lock_ttl = lock_ttl
        self._lock_retry_delay = lock_retry_delay
        self._api_base = api_base.rstrip("/")

    async def get_token(self) -> str:
        """
        Return a token that is valid for at least ``refresh_margin`` seconds.

        Raises:
            WeChatAPIError: the credential exchange returned an errcode.
            httpx.HTTPError: the credential exchange could not be reached.
        """
        cached = await self._read_cache()
        if cached is not None:
            access_token, expires_at = cached
            if expires_at - self._refresh_margin > time.time():
                return access_token

        return await self._refresh()

    async def force_invalidate(self) -> None:
        """Drop the cached token so the next get_token() refreshes it."""
        await self._redis.delete(TOKEN_KEY)
        logger.info("WeChat access token invalidated")

    async def ping(self) -> None:
        await self._redis.ping()

    async def _read_cache(self) -> Optional[tuple[str, float]]:
        raw = await self._redis.get(TOKEN_KEY)
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return data["access_token"], float(data["expires_at"])
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable cached WeChat access token")
            return None

    async def _refresh(self) -> str:
        lock_value = uuid.uuid4().hex
        acquired = await self._redis.set(TOKEN_LOCK_KEY, lock_value, ex=self._lock_ttl, nx=True)

        if not acquired:
            # Another process is refreshing; wait and re-read the cache
            await asyncio.sleep(self._lock_retry_delay)
            return await self.get_token()

        try:
            # Someone may have refreshed between our cache read and the lock
            cached = await self._read_cache()
            if cached is not None and cached[1] - self._refresh_margin > time.time():
                return cached[0]
            return await self._exchange_credentials()
        finally:
            await self._release_lock(lock_value)

    async def _release_lock(self, lock_value: str) -> None:
        # Only release the lock if it is still ours (it may have expired)
        try:
            if await self._redis.get(TOKEN_LOCK_KEY) == lock_value:
                await self._redis.delete(TOKEN_LOCK_KEY)
        except Exception as e:
            logger.error(f"Failed to release WeChat token refresh lock: {e!r}")

    async def _exchange_credentials(self) -> str:
        response = await self._http.get(
            f"{self._api_base}/token",
            params={
                "grant_type": "client_credential",
                "appid": self._app_id,
                "secret": self._app_secret,
            },
        )
        response.raise_for_status()
        data = response.json()

        if data.get("errcode"):
            raise WeChatAPIError(data["errcode"], data.get("errmsg", ""))

        access_token = data["access_token"]
        expires_in = int(data["expires_in"])
        expires_at = int(time.time()) + expires_in

        await self._redis.set(
            TOKEN_KEY,
            json.dumps({"access_token": access_token, "expires_at": expires_at}),
            ex=expires_in,
        )
        logger.info(f"WeChat access token refreshed, expires in {expires_in}s")
        return access_token

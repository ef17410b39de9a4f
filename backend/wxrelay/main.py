"""
WeChat Bridge API
FastAPI application relaying WeChat Official Account messages to agent runtimes.
"""

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, HTTPException

from wxrelay.config import load_settings
from wxrelay.db import create_redis_client, create_supabase_client
from wxrelay.dependencies import BridgeServices, get_services
from wxrelay.routers import callback, wechat
from wxrelay.services.binding_store import BindingStore
from wxrelay.services.delivery import WeChatDelivery
from wxrelay.services.dispatcher import ForwardingDispatcher
from wxrelay.services.token_manager import PlatformTokenManager

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

# Outbound WeChat API calls (token exchange, customer service send)
WECHAT_HTTP_TIMEOUT = 30.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the shared clients and services, and close them on shutdown.

    Skipped when the app was created with prebuilt services (tests).
    Clients are registered for cleanup as soon as they exist, so a failure
    later in startup still closes the ones already opened.
    """
    if getattr(app.state, "services", None) is not None:
        yield
        return

    settings = load_settings()

    async with AsyncExitStack() as stack:
        redis_client = create_redis_client(settings)
        stack.push_async_callback(redis_client.aclose)
        http_client = httpx.AsyncClient(timeout=WECHAT_HTTP_TIMEOUT)
        stack.push_async_callback(http_client.aclose)
        supabase_client = await create_supabase_client(settings)

        tokens = PlatformTokenManager(
            redis_client,
            http_client,
            settings.wechat_app_id,
            settings.wechat_app_secret,
        )
        app.state.services = BridgeServices(
            settings=settings,
            bindings=BindingStore(supabase_client),
            tokens=tokens,
            dispatcher=ForwardingDispatcher(
                http_client,
                settings.bridge_base_url,
                timeout=settings.dispatch_timeout_seconds,
            ),
            delivery=WeChatDelivery(tokens, http_client, max_length=settings.max_message_length),
        )

        logger.info(
            "WeChat Bridge starting:\n"
            "  WeChat AppID: %s...\n"
            "  Bridge URL:   %s\n"
            "  Listening:    http://%s:%s",
            settings.wechat_app_id[:6],
            settings.bridge_base_url,
            settings.host,
            settings.port,
        )
        if settings.wechat_encoding_aes_key:
            logger.warning(
                "WECHAT_ENCODING_AES_KEY is set but only plaintext mode is handled; "
                "configure the Official Account message mode as plaintext"
            )

        try:
            yield
        finally:
            app.state.services = None
            logger.info("WeChat Bridge stopped")


def create_app(services: Optional[BridgeServices] = None) -> FastAPI:
    """Create the bridge app; pass ``services`` to skip building real clients."""
    app = FastAPI(
        title="WeChat Bridge API",
        description="Relays WeChat Official Account messages to agent runtimes",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.include_router(wechat.router, prefix="/wechat", tags=["wechat"])
    app.include_router(callback.router, prefix="/callback", tags=["callback"])

    @app.get("/health")
    async def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/health/store")
    async def health_store(services: BridgeServices = Depends(get_services)):
        """
        Check both shared stores.

        Reads one row from the bindings table and validates that the token
        cache is reachable. Returns 503 on failure.
        """
        try:
            await services.bindings.ping()
        except Exception as exc:
            logger.error(f"Binding store health check failed: {exc}")
            raise HTTPException(status_code=503, detail=f"Binding store unreachable: {exc}")

        try:
            await services.tokens.ping()
        except Exception as exc:
            logger.error(f"Token cache health check failed: {exc}")
            raise HTTPException(status_code=503, detail=f"Token cache unreachable: {exc}")

        return {"status": "ok", "bindings": "reachable", "token_cache": "reachable"}

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the bridge on HOST:PORT."""
    settings = load_settings()
    uvicorn.run("wxrelay.main:app", host=settings.host, port=settings.port)

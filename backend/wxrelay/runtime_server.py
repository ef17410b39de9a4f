"""
Runtime Webhook API
FastAPI application that receives bridge tasks, runs them through an agent,
and POSTs the result back to the bridge's callback URL.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI

from wxrelay.config import RuntimeSettings, load_runtime_settings
from wxrelay.dependencies import RuntimeServices, get_runtime_settings
from wxrelay.routers import webhook
from wxrelay.services.agent import load_agent

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

PLUGIN_NAME = "webhook-server"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Resolve settings and the agent, open the callback HTTP client."""
    if getattr(app.state, "runtime", None) is not None:
        yield
        return

    settings = load_runtime_settings()
    agent = load_agent(settings.agent, model=settings.anthropic_model)
    http_client = httpx.AsyncClient()

    app.state.runtime = RuntimeServices(settings=settings, agent=agent, http_client=http_client)

    logger.info(
        "Webhook server listening on http://%s:%s/webhook (auth token: %s...)",
        settings.host,
        settings.port,
        settings.auth_token[:12],
    )

    try:
        yield
    finally:
        await http_client.aclose()
        app.state.runtime = None
        logger.info("Webhook server stopped")


def create_app(runtime: Optional[RuntimeServices] = None) -> FastAPI:
    """Create the runtime webhook app; pass ``runtime`` to inject doubles."""
    app = FastAPI(
        title="Runtime Webhook API",
        description="Runs bridge tasks through an agent and calls back with the result",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.include_router(webhook.router, tags=["webhook"])

    @app.get("/health")
    async def health():
        return {"status": "ok", "plugin": PLUGIN_NAME}

    @app.get("/status")
    async def status(settings: RuntimeSettings = Depends(get_runtime_settings)):
        return {
            "running": True,
            "host": settings.host,
            "port": settings.port,
            "endpoint": f"http://{settings.host}:{settings.port}/webhook",
        }

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the webhook on RUNTIME_HOST:RUNTIME_PORT."""
    settings = load_runtime_settings()
    uvicorn.run("wxrelay.runtime_server:app", host=settings.host, port=settings.port)

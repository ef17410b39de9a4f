"""
Background processing for tasks received on the runtime /webhook endpoint.

Flow: invoke the agent under the task timeout, then POST the outcome to the
task's callback_url. Both failures and successes are reported through the
callback; errors while posting the callback are only logged.
"""

import asyncio
import logging
import time

import httpx

from wxrelay.models.envelopes import CallbackPayload, ResultMetadata, TaskEnvelope
from wxrelay.services.agent import AgentRuntime

logger = logging.getLogger(__name__)

TASK_TIMEOUT_SECONDS = 300.0
CALLBACK_TIMEOUT_SECONDS = 30.0


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


async def send_callback(
    http_client: httpx.AsyncClient,
    callback_url: str,
    payload: CallbackPayload,
    timeout: float = CALLBACK_TIMEOUT_SECONDS,
) -> bool:
    """POST ``payload`` to the bridge. Returns False (and logs) on any failure."""
    try:
        response = await http_client.post(
            callback_url,
            json=payload.model_dump(exclude_none=True),
            timeout=timeout,
        )
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(f"Failed to send callback to {callback_url}: {e!r}")
        return False

    logger.info(f"Callback sent to {callback_url}, status: {response.status_code}")
    return True


async def process_webhook_task(
    agent: AgentRuntime,
    envelope: TaskEnvelope,
    http_client: httpx.AsyncClient,
    *,
    task_timeout: float = TASK_TIMEOUT_SECONDS,
    callback_timeout: float = CALLBACK_TIMEOUT_SECONDS,
) -> CallbackPayload:
    """
    Run one task through the agent and report the result to its callback URL.

    Never raises; the returned payload is what was (or was attempted to be)
    sent to the callback.
    """
    start = time.monotonic()
    openid = envelope.metadata.openid or "default"
    context = {
        **envelope.metadata.model_dump(exclude_none=True),
        "conversation_id": f"webhook-{openid}",
    }

    logger.info(f"Processing task for {openid}: {envelope.task[:50]}...")

    try:
        result = await asyncio.wait_for(agent.invoke(envelope.task, context), timeout=task_timeout)
        thinking_time_ms = _elapsed_ms(start)
        logger.info(f"Task completed in {thinking_time_ms}ms")
        payload = CallbackPayload(
            success=True,
            result=result,
            metadata=ResultMetadata(thinking_time_ms=thinking_time_ms),
        )
    except asyncio.TimeoutError:
        logger.error(f"Task for {openid} timed out after {task_timeout}s")
        payload = CallbackPayload(
            success=False,
            error="Task timeout",
            metadata=ResultMetadata(thinking_time_ms=_elapsed_ms(start)),
        )
    except Exception as e:
        logger.exception(f"Task for {openid} failed: {e}")
        payload = CallbackPayload(
            success=False,
            error=str(e) or "Unknown error",
            metadata=ResultMetadata(thinking_time_ms=_elapsed_ms(start)),
        )

    await send_callback(http_client, envelope.callback_url, payload, timeout=callback_timeout)
    return payload

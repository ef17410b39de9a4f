"""
Runtime callback endpoints.

  POST /callback/{openid}         : final task result
  POST /callback/{openid}/stream  : streamed result pieces

The OpenID in the path was put there by the dispatcher when it built the
task's callback URL, so it identifies the user to deliver to. Results go out
through the Customer Service API because the passive-reply window of the
original message has long closed.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from wxrelay.dependencies import get_binding_store, get_delivery
from wxrelay.models.envelopes import CallbackPayload, StreamChunkPayload
from wxrelay.services.binding_store import BindingStore, BindingStoreError
from wxrelay.services.delivery import EMPTY_RESULT_MESSAGE, WeChatDelivery

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{openid}")
async def receive_result(
    openid: str,
    payload: CallbackPayload,
    store: BindingStore = Depends(get_binding_store),
    delivery: WeChatDelivery = Depends(get_delivery),
):
    """
    Deliver a runtime result to the WeChat user.

    The binding lookup is informational: a user who unbound while a task was
    running still receives its result.

    Returns:
        200 {"ok": true} once every message part was sent,
        500 {"ok": false, "error": ...} otherwise.
    """
    logger.info(
        f"Received callback for OpenID: {openid} "
        f"(success={payload.success}, metadata={payload.metadata})"
    )

    try:
        binding = await store.get_binding(openid)
    except BindingStoreError as e:
        logger.warning(f"Could not check binding for {openid}: {e}")
        binding = None
    if binding is None:
        logger.warning(f"Callback received for unbound user: {openid}")

    sent = await delivery.deliver_result(openid, payload)

    if sent:
        logger.info(f"Successfully sent response to {openid}")
        return {"ok": True}

    logger.error(f"Failed to send response to {openid}")
    return JSONResponse(
        status_code=500,
        content={"ok": False, "error": "Failed to send WeChat message"},
    )


@router.post("/{openid}/stream")
async def receive_stream_chunk(
    openid: str,
    payload: StreamChunkPayload,
    delivery: WeChatDelivery = Depends(get_delivery),
):
    """
    Acknowledge intermediate chunks; deliver only the final one.

    Intermediate chunks are not accumulated; the final chunk is expected to
    carry the text to show.
    """
    if not payload.done:
        logger.info(f"Received stream chunk {payload.chunk_index if payload.chunk_index is not None else '?'} for {openid}")
        return {"ok": True, "buffered": True}

    sent = await delivery.send_text(openid, payload.chunk or EMPTY_RESULT_MESSAGE)
    return {"ok": sent}

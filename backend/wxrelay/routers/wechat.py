"""
WeChat Official Account endpoints.

  GET  /wechat  : server verification handshake (echoes echostr)
  POST /wechat  : inbound messages and events

Every authenticated POST is answered with 200 within WeChat's 5 second
budget. Business outcomes (bad bind URL, not bound yet, store trouble) are
passive chat replies, never HTTP errors. Bound users get an immediate
"processing" reply while the message is forwarded in the background.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse, Response

from wxrelay.auth import verify_wechat_request
from wxrelay.dependencies import get_binding_store, get_dispatcher
from wxrelay.services.binding_store import BindingStore, BindingStoreError
from wxrelay.services.commands import STORE_UNAVAILABLE_MESSAGE, CommandOutcome, process_message
from wxrelay.services.dispatcher import ForwardingDispatcher
from wxrelay.services.message_translator import MessageParseError, build_text_reply, parse_wechat_xml

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", dependencies=[Depends(verify_wechat_request)])
async def verify_server(echostr: Optional[str] = Query(None)):
    """Answer WeChat's server validation by echoing ``echostr`` verbatim."""
    if not echostr:
        raise HTTPException(status_code=403, detail="Invalid signature")

    logger.info("WeChat server verification succeeded")
    return PlainTextResponse(echostr)


@router.post("", dependencies=[Depends(verify_wechat_request)])
async def receive_message(
    request: Request,
    background_tasks: BackgroundTasks,
    store: BindingStore = Depends(get_binding_store),
    dispatcher: ForwardingDispatcher = Depends(get_dispatcher),
):
    """Handle one WeChat message or event and return a passive reply."""
    body = await request.body()
    try:
        message = parse_wechat_xml(body)
    except MessageParseError as e:
        logger.warning(f"Failed to parse WeChat XML: {e}")
        raise HTTPException(status_code=400, detail="Invalid XML")

    try:
        outcome = await process_message(message, store)
    except BindingStoreError as e:
        logger.error(f"Binding store unavailable for {message.FromUserName}: {e}")
        outcome = CommandOutcome(reply=STORE_UNAVAILABLE_MESSAGE)

    if outcome.forward:
        # Runs after the response is sent; the reply never waits on the runtime
        background_tasks.add_task(dispatcher.forward, message, outcome.binding)

    if outcome.reply is None:
        return PlainTextResponse("success")

    return Response(
        content=build_text_reply(message.FromUserName, message.ToUserName, outcome.reply),
        media_type="application/xml",
    )

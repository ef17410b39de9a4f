"""
Runtime-facing webhook endpoint.

  POST /webhook   (auth: Authorization: Bearer <RUNTIME_AUTH_TOKEN>)

Accepts {task, callback_url, metadata?}, answers 202 immediately and runs the
task in the background; the result is POSTed to callback_url later.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from wxrelay.auth import verify_runtime_token
from wxrelay.dependencies import RuntimeServices, get_runtime_services
from wxrelay.models.envelopes import TaskEnvelope
from wxrelay.services.runtime_tasks import process_webhook_task
from wxrelay.validation import is_absolute_url

logger = logging.getLogger(__name__)

router = APIRouter()

_REQUIRED_FIELDS = ["task", "callback_url"]


def _bad_request(error: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": error, **extra})


@router.post("/webhook", dependencies=[Depends(verify_runtime_token)])
async def receive_task(
    request: Request,
    background_tasks: BackgroundTasks,
    runtime: RuntimeServices = Depends(get_runtime_services),
):
    """
    Queue a task for the agent.

    Returns:
        202 {"status": "accepted"} when queued,
        400 when task/callback_url is missing or callback_url is not a URL.
    """
    try:
        body = await request.json()
    except ValueError:
        return _bad_request("Invalid JSON")

    if not isinstance(body, dict) or not body.get("task") or not body.get("callback_url"):
        return _bad_request("Invalid payload", required=_REQUIRED_FIELDS)

    if not is_absolute_url(str(body["callback_url"])):
        return _bad_request("Invalid callback_url")

    try:
        envelope = TaskEnvelope(**body)
    except ValidationError as e:
        logger.warning(f"Rejected webhook payload: {e}")
        return _bad_request("Invalid payload", required=_REQUIRED_FIELDS)

    background_tasks.add_task(
        process_webhook_task,
        runtime.agent,
        envelope,
        runtime.http_client,
        task_timeout=runtime.settings.task_timeout_seconds,
        callback_timeout=runtime.settings.callback_timeout_seconds,
    )

    return JSONResponse(
        status_code=202,
        content={"status": "accepted", "message": "Task queued for processing"},
    )

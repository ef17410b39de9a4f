"""
Forwarding dispatcher: hands a WeChat message to the sender's runtime.

The POST to the runtime only covers the handshake (the runtime answers
202 and works in the background), so it carries a short timeout. The actual
answer comes back later through /callback/{openid}.
"""

import logging

import httpx

from wxrelay.models.binding import Binding
from wxrelay.models.envelopes import TaskEnvelope, TaskMetadata
from wxrelay.models.wechat import WeChatMessage
from wxrelay.services.message_translator import message_to_task

logger = logging.getLogger(__name__)

DISPATCH_TIMEOUT_SECONDS = 10.0


def build_task_envelope(message: WeChatMessage, base_url: str) -> TaskEnvelope:
    """Build the runtime request; the callback URL embeds the sender's OpenID."""
    openid = message.FromUserName
    return TaskEnvelope(
        task=message_to_task(message),
        callback_url=f"{base_url.rstrip('/')}/callback/{openid}",
        metadata=TaskMetadata(
            openid=openid,
            msg_type=message.MsgType,
            msg_id=message.MsgId,
            timestamp=message.CreateTime,
        ),
    )


class ForwardingDispatcher:
    """POSTs task envelopes to runtime webhooks."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        timeout: float = DISPATCH_TIMEOUT_SECONDS,
    ):
        self._http = http_client
        self._base_url = base_url
        self._timeout = timeout

    async def dispatch(self, message: WeChatMessage, binding: Binding) -> httpx.Response:
        """
        Send the task and wait for the runtime's handshake.

        Raises:
            httpx.HTTPError: on network errors, timeouts and non-2xx responses.
        """
        envelope = build_task_envelope(message, self._base_url)

        logger.info(f"Forwarding message from {message.FromUserName} to {binding.endpoint}")
        response = await self._http.post(
            binding.endpoint,
            json=envelope.model_dump(exclude_none=True),
            headers={"Authorization": f"Bearer {binding.token}"},
            timeout=self._timeout,
        )
        response.raise_for_status()

        logger.info(f"Runtime responded with status: {response.status_code}")
        return response

    async def forward(self, message: WeChatMessage, binding: Binding) -> bool:
        """
        Fire-and-forget variant used after the passive reply has been sent.

        Failures are logged and swallowed; the user only hears back through
        the callback path.
        """
        try:
            await self.dispatch(message, binding)
            return True
        except Exception as e:
            logger.error(
                f"Failed to forward message from {message.FromUserName} "
                f"to {binding.endpoint}: {e!r}"
            )
            return False

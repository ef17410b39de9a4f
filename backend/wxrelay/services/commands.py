"""
Binding command processor.

Decides what to do with an inbound WeChat message before anything is
forwarded to a runtime:

  subscribe event        -> welcome text
  other events           -> plain acknowledgement, nothing else
  "bind <url> <token>"   -> create/replace the sender's binding
  "unbind"               -> delete the sender's binding (no-op if unbound)
  anything else, unbound -> onboarding instructions
  anything else, bound   -> forward to the bound runtime

Commands are only recognised in text messages and match the whole trimmed
content, case-insensitively.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from wxrelay.models.binding import Binding
from wxrelay.models.wechat import WeChatMessage
from wxrelay.services.binding_store import BindingStore
from wxrelay.validation import is_absolute_url

logger = logging.getLogger(__name__)

BIND_PATTERN = re.compile(r"^bind\s+(\S+)\s+(\S+)$", re.IGNORECASE)
UNBIND_PATTERN = re.compile(r"^unbind$", re.IGNORECASE)

# ---------------------------------------------------------------------------
# Reply texts
# ---------------------------------------------------------------------------

WELCOME_MESSAGE = """👋 欢迎关注！

这是一个 Agent 桥接服务。请发送以下指令绑定你的 Agent 实例：

bind <你的Agent地址> <Token>

例如：
bind https://my-agent.example.com/webhook abc123

绑定后，你可以直接发送消息与你的 Agent 对话。

其他指令：
• unbind - 解除绑定"""

BIND_PROMPT = """👋 请先绑定你的 Agent 实例。

发送格式：
bind <你的Agent地址> <Token>

例如：
bind https://my-agent.example.com/webhook abc123"""

INVALID_URL_MESSAGE = "❌ 无效的 URL 格式，请检查后重试。"

BIND_SUCCESS_TEMPLATE = """✅ 绑定成功！

你的 Agent 地址：{endpoint}

现在可以直接发送消息与你的 Agent 对话了。

提示：发送 unbind 可以解除绑定。"""

UNBIND_SUCCESS_MESSAGE = """✅ 已解除绑定。

你可以随时使用 bind 指令重新绑定新的 Agent 实例。"""

PROCESSING_MESSAGE = "⏳ 正在处理中，请稍候..."

STORE_UNAVAILABLE_MESSAGE = "⚠️ 服务暂时不可用，请稍后再试。"


@dataclass
class CommandOutcome:
    """
    Result of processing one inbound message.

    reply:   passive reply text, or None to acknowledge without a reply.
    binding: set only when the message must be forwarded to this runtime.
    """

    reply: Optional[str]
    binding: Optional[Binding] = None

    @property
    def forward(self) -> bool:
        return self.binding is not None


async def process_message(message: WeChatMessage, store: BindingStore) -> CommandOutcome:
    """Apply the command language to ``message`` and mutate ``store`` as needed."""
    openid = message.FromUserName

    if message.MsgType == "event":
        if (message.Event or "").lower() == "subscribe":
            logger.info(f"New follower: {openid}")
            return CommandOutcome(reply=WELCOME_MESSAGE)
        logger.info(f"Ignoring event={message.Event} from {openid}")
        return CommandOutcome(reply=None)

    if message.MsgType == "text" and message.Content:
        text = message.Content.strip()

        bind_match = BIND_PATTERN.match(text)
        if bind_match:
            endpoint, token = bind_match.group(1), bind_match.group(2)
            if not is_absolute_url(endpoint):
                return CommandOutcome(reply=INVALID_URL_MESSAGE)
            await store.set_binding(openid, endpoint, token)
            logger.info(f"Bound {openid} -> {endpoint}")
            return CommandOutcome(reply=BIND_SUCCESS_TEMPLATE.format(endpoint=endpoint))

        if UNBIND_PATTERN.match(text):
            existed = await store.delete_binding(openid)
            logger.info(f"Unbound {openid} (had binding: {existed})")
            return CommandOutcome(reply=UNBIND_SUCCESS_MESSAGE)

    binding = await store.get_binding(openid)
    if binding is None:
        return CommandOutcome(reply=BIND_PROMPT)

    return CommandOutcome(reply=PROCESSING_MESSAGE, binding=binding)

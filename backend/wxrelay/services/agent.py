"""
Agent runtime contract used by the runtime webhook service.

The webhook service only needs one capability from whatever agent sits
behind it:

    async invoke(task: str, context: dict) -> str

``AnthropicAgent`` is the built-in implementation. Any other agent is
plugged in with RUNTIME_AGENT="package.module:attribute", where the
attribute is either an object with ``invoke`` or a zero-argument factory
(class or function) returning one.
"""

import importlib
import logging
from typing import Any, Optional, Protocol, runtime_checkable

import anthropic

logger = logging.getLogger(__name__)

# Model configuration
MODEL = "claude-sonnet-4-5-20250929"
MAX_TOKENS = 4096

SYSTEM_PROMPT = """\
You are a helpful assistant answering messages that users send from a WeChat \
Official Account. Replies are shown as plain chat text: do not use Markdown \
tables or headings, keep answers concise, and answer in the language the user \
wrote in.
"""


@runtime_checkable
class AgentRuntime(Protocol):
    async def invoke(self, task: str, context: dict[str, Any]) -> str:
        ...


class AnthropicAgent:
    """Answers each task with a single Claude Messages API call."""

    def __init__(
        self,
        client: Optional[anthropic.AsyncAnthropic] = None,
        model: str = MODEL,
        max_tokens: int = MAX_TOKENS,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        self._client = client or anthropic.AsyncAnthropic()
        self._model = model
        self._max_tokens = max_tokens
        self._system_prompt = system_prompt

    async def invoke(self, task: str, context: dict[str, Any]) -> str:
        logger.info(
            f"Sending task to {self._model} "
            f"(conversation={context.get('conversation_id', 'webhook-default')}): {task[:50]}..."
        )
        response = await self._client.messages.create(
            model=self._model,
            max_tokens=self._max_tokens,
            system=self._system_prompt,
            messages=[{"role": "user", "content": task}],
        )
        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        return text or "No response"


def load_agent(path: str, model: Optional[str] = None) -> AgentRuntime:
    """
    Resolve RUNTIME_AGENT to an agent instance.

    Args:
        path: "anthropic" for the built-in agent, or "module:attribute".
        model: optional model override for the built-in agent.

    Raises:
        ValueError: malformed path.
        TypeError: the resolved object has no ``invoke`` method.
    """
    path = (path or "anthropic").strip()
    if path == "anthropic":
        return AnthropicAgent(model=model or MODEL)

    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"RUNTIME_AGENT must be 'anthropic' or 'module:attribute', got {path!r}")

    target = getattr(importlib.import_module(module_name), attr)
    # Classes expose invoke too, so check for them before the protocol
    if isinstance(target, type) or not isinstance(target, AgentRuntime):
        agent = target()
    else:
        agent = target

    if not isinstance(agent, AgentRuntime):
        raise TypeError(f"{path} does not provide an invoke(task, context) method")

    logger.info(f"Loaded agent runtime {path}")
    return agent

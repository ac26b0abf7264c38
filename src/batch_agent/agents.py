"""Agent adapters that satisfy the AgentLike protocol.

The batch processor only needs ``async chat(ChatRequest) -> ChatResponse``.
This module wraps PydanticAI agents so any model PydanticAI supports can be
used as the downstream service.
"""

import logging
from typing import TYPE_CHECKING, Any

from .core import ChatRequest, ChatResponse
from .strategies.errors import AgentUnavailableError

# Conditional imports for optional dependencies
if TYPE_CHECKING:
    from pydantic_ai import Agent
else:
    try:
        from pydantic_ai import Agent
    except ImportError:
        Agent = Any  # type: ignore[misc,assignment]

logger = logging.getLogger(__name__)


def _total_tokens(usage: Any) -> int:
    """Read the total token count from a PydanticAI usage object."""
    if usage is None:
        return 0
    total = getattr(usage, "total_tokens", None)
    if total:
        return int(total)
    input_tokens = getattr(usage, "input_tokens", None) or getattr(usage, "request_tokens", 0)
    output_tokens = getattr(usage, "output_tokens", None) or getattr(usage, "response_tokens", 0)
    return int((input_tokens or 0) + (output_tokens or 0))


class PydanticAIChatAgent:
    """
    Adapter exposing a PydanticAI agent through chat().

    The agent's output is rendered with str(); token usage is the run's total.
    Each request is independent: no message history is carried between items.
    """

    def __init__(self, agent: "Agent[None, Any]"):
        """
        Initialize the adapter.

        Args:
            agent: Configured PydanticAI agent
        """
        if Agent is Any:
            raise AgentUnavailableError(
                "pydantic-ai is required for PydanticAIChatAgent. "
                "Install with: pip install 'batch-agent[pydantic-ai]'"
            )
        self.agent = agent

    @classmethod
    def from_model(cls, model: str, system_prompt: str | None = None) -> "PydanticAIChatAgent":
        """
        Build an adapter around a new PydanticAI agent for `model`.

        Raises:
            AgentUnavailableError: If pydantic-ai is missing or the model cannot be set up
                (unknown provider, missing API key, ...)
        """
        if Agent is Any:
            raise AgentUnavailableError(
                "pydantic-ai is required to build an agent from a model name. "
                "Install with: pip install 'batch-agent[pydantic-ai]'"
            )
        try:
            agent = Agent(model, system_prompt=system_prompt or ())
        except Exception as e:
            raise AgentUnavailableError(f"Cannot set up model {model!r}: {e}") from e
        logger.info(f"✓ Agent ready for model {model}")
        return cls(agent)

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Run the PydanticAI agent on the request message."""
        result = await self.agent.run(request.message)
        # usage is a method on older pydantic-ai releases and a property on newer ones
        usage = result.usage
        if callable(usage):
            usage = usage()
        return ChatResponse(content=str(result.output), tokens_used=_total_tokens(usage))

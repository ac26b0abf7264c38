"""Agent contract and wire models for batch agent processing."""

from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """A single request sent to the agent."""

    model_config = ConfigDict(frozen=True)

    message: str
    conversation_id: str | None = None


class ChatResponse(BaseModel):
    """The agent's reply to a ChatRequest."""

    content: str
    tokens_used: int = Field(default=0, ge=0)


@runtime_checkable
class AgentLike(Protocol):
    """Protocol that any agent must satisfy."""

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send one request to the agent and return its response."""
        ...

"""Core components for batch processing."""

from .config import (
    TIER_3,
    TIER_4,
    TIER_5,
    TIERS,
    InputLimits,
    ProcessorConfig,
    RateLimiterConfig,
    tier_config,
)
from .protocols import AgentLike, ChatRequest, ChatResponse

__all__ = [
    "InputLimits",
    "ProcessorConfig",
    "RateLimiterConfig",
    "TIER_3",
    "TIER_4",
    "TIER_5",
    "TIERS",
    "tier_config",
    "AgentLike",
    "ChatRequest",
    "ChatResponse",
]

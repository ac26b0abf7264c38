"""Batch agent processing: dispatch a file of prompts within provider quotas.

This module provides a bounded-concurrency, retrying executor that sends many
independent prompts to a single agent while respecting its concurrency,
requests-per-minute and tokens-per-minute limits.

Key features:
- Text and JSON-lines input parsing with stable, order-preserving ids
- Quota gate enforcing concurrency, RPM and TPM together
- Per-attempt deadlines and bounded retries
- Graceful cancellation that lets in-flight calls finish
- Order-preserving results with a summary and JSON export
- Observer pattern for monitoring

Example:
    >>> from batch_agent import ParallelBatchProcessor, ProcessorConfig, TIER_3
    >>> from batch_agent.agents import PydanticAIChatAgent
    >>>
    >>> agent = PydanticAIChatAgent.from_model("openai:gpt-4o-mini")
    >>> processor = ParallelBatchProcessor(
    ...     agent, ProcessorConfig(max_concurrency=10), rate_limiter=TIER_3
    ... )
    >>> result = await processor.process_file("prompts.txt", "results.json")
    >>> print(result.summary())
"""

# Core classes
from .base import (
    BatchProcessor,
    BatchResult,
    ItemStatus,
    ProcessingStats,
    WorkItem,
    WorkItemResult,
)

# Configuration and agent contract
from .core import (
    TIER_3,
    TIER_4,
    TIER_5,
    TIERS,
    AgentLike,
    ChatRequest,
    ChatResponse,
    InputLimits,
    ProcessorConfig,
    RateLimiterConfig,
    tier_config,
)

# Observers
from .observers import BaseObserver, MetricsObserver, ProcessingEvent, ProcessorObserver

# Main processor
from .parallel import ParallelBatchProcessor

# Input parsing
from .parsing import InputFormat, ParsedInput, ParseError, parse_file

# Quota gate and errors
from .strategies import (
    AgentUnavailableError,
    AttemptTimeoutError,
    BatchAgentError,
    BatchCancelledError,
    InputFileError,
    InputValidationError,
    QuotaGate,
    TokenBucket,
)

__all__ = [
    # Core
    "BatchProcessor",
    "BatchResult",
    "ItemStatus",
    "ProcessingStats",
    "WorkItem",
    "WorkItemResult",
    # Configuration
    "InputLimits",
    "ProcessorConfig",
    "RateLimiterConfig",
    "TIER_3",
    "TIER_4",
    "TIER_5",
    "TIERS",
    "tier_config",
    # Agent contract
    "AgentLike",
    "ChatRequest",
    "ChatResponse",
    # Parsing
    "InputFormat",
    "ParsedInput",
    "ParseError",
    "parse_file",
    # Quota gate
    "QuotaGate",
    "TokenBucket",
    # Errors
    "BatchAgentError",
    "AgentUnavailableError",
    "AttemptTimeoutError",
    "BatchCancelledError",
    "InputFileError",
    "InputValidationError",
    # Observers
    "ProcessorObserver",
    "BaseObserver",
    "MetricsObserver",
    "ProcessingEvent",
    # Processor
    "ParallelBatchProcessor",
]

__version__ = "0.1.0"

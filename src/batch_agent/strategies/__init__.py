"""Processing strategies: quota admission and error taxonomy."""

from .errors import (
    AgentUnavailableError,
    AttemptTimeoutError,
    BatchAgentError,
    BatchCancelledError,
    InputFileError,
    InputValidationError,
)
from .rate_limit import Permit, QuotaGate, SlidingWindowCounter, TokenBucket

__all__ = [
    "AgentUnavailableError",
    "AttemptTimeoutError",
    "BatchAgentError",
    "BatchCancelledError",
    "InputFileError",
    "InputValidationError",
    "Permit",
    "QuotaGate",
    "SlidingWindowCounter",
    "TokenBucket",
]

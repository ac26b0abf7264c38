"""Configuration management for batch processor."""

from dataclasses import dataclass, field
from types import MappingProxyType


@dataclass
class InputLimits:
    """Content checks applied to prompts when input validation is enabled."""

    max_prompt_bytes: int = 100 * 1024
    max_whitespace_ratio: float = 0.8
    repetition_min_length: int = 10_000
    max_repeated_char_ratio: float = 0.9

    def validate(self) -> None:
        """Validate input limits."""
        if self.max_prompt_bytes < 1:
            raise ValueError(
                f"max_prompt_bytes must be >= 1 (got {self.max_prompt_bytes}). "
                f"Set input_limits.max_prompt_bytes to a positive integer."
            )
        if not 0 < self.max_whitespace_ratio <= 1:
            raise ValueError(
                f"max_whitespace_ratio must be in (0, 1] (got {self.max_whitespace_ratio}). "
                f"Set input_limits.max_whitespace_ratio to a fraction such as 0.8."
            )
        if not 0 < self.max_repeated_char_ratio <= 1:
            raise ValueError(
                f"max_repeated_char_ratio must be in (0, 1] (got {self.max_repeated_char_ratio}). "
                f"Set input_limits.max_repeated_char_ratio to a fraction such as 0.9."
            )


@dataclass(frozen=True)
class RateLimiterConfig:
    """
    Provider quota limits enforced by the quota gate.

    max_concurrency can only tighten ProcessorConfig.max_concurrency, never
    relax it. estimated_tokens_per_request is the amount reserved from the
    token budget before each call; the bucket is reconciled with the real
    usage once the agent responds.
    """

    max_concurrency: int
    requests_per_minute: int
    tokens_per_minute: int
    estimated_tokens_per_request: int = 1000

    def validate(self) -> None:
        """Validate rate limiter configuration."""
        if self.max_concurrency < 1:
            raise ValueError(
                f"max_concurrency must be >= 1 (got {self.max_concurrency}). "
                f"Set rate_limiter.max_concurrency to a positive integer."
            )
        if self.requests_per_minute < 1:
            raise ValueError(
                f"requests_per_minute must be >= 1 (got {self.requests_per_minute}). "
                f"Set rate_limiter.requests_per_minute to your provider's RPM quota."
            )
        if self.tokens_per_minute < 1:
            raise ValueError(
                f"tokens_per_minute must be >= 1 (got {self.tokens_per_minute}). "
                f"Set rate_limiter.tokens_per_minute to your provider's TPM quota."
            )
        if self.estimated_tokens_per_request < 1:
            raise ValueError(
                f"estimated_tokens_per_request must be >= 1 "
                f"(got {self.estimated_tokens_per_request}). "
                f"Use a typical per-request token count for your prompts."
            )


# Named provider service levels
TIER_3 = RateLimiterConfig(
    max_concurrency=200, requests_per_minute=5000, tokens_per_minute=3_000_000
)
TIER_4 = RateLimiterConfig(
    max_concurrency=400, requests_per_minute=5000, tokens_per_minute=4_000_000
)
TIER_5 = RateLimiterConfig(
    max_concurrency=1000, requests_per_minute=10000, tokens_per_minute=5_000_000
)

TIERS = MappingProxyType({"3": TIER_3, "4": TIER_4, "5": TIER_5})


def tier_config(tier: str | int) -> RateLimiterConfig:
    """Look up a tier preset by name ("3", "4" or "5")."""
    try:
        return TIERS[str(tier)]
    except KeyError:
        raise ValueError(
            f"Unknown tier {tier!r}. Available tiers: {', '.join(TIERS)}."
        ) from None


@dataclass
class ProcessorConfig:
    """Complete configuration for batch processor."""

    max_concurrency: int = 3
    timeout: float = 60.0  # Per attempt, in seconds
    retry_count: int = 2
    retry_delay: float = 1.0

    # Input handling
    skip_invalid: bool = True
    validate_input: bool = True
    input_limits: InputLimits = field(default_factory=InputLimits)

    # Progress reporting
    progress_interval: int = 100  # Log every N items

    # Dry-run mode (for testing configuration without making API calls)
    dry_run: bool = False

    @property
    def max_attempts(self) -> int:
        """Total attempts per item, including the first."""
        return self.retry_count + 1

    def validate(self) -> None:
        """Validate complete configuration."""
        if self.max_concurrency < 1:
            raise ValueError(
                f"max_concurrency must be >= 1 (got {self.max_concurrency}). "
                f"Set config.max_concurrency to a positive integer (typical: 3-20)."
            )
        if self.timeout <= 0:
            raise ValueError(
                f"timeout must be > 0 (got {self.timeout}). "
                f"Set config.timeout to a positive number in seconds (typical: 30-120)."
            )
        if self.retry_count < 0:
            raise ValueError(
                f"retry_count must be >= 0 (got {self.retry_count}). "
                f"Set config.retry_count to 0 to disable retries."
            )
        if self.retry_delay < 0:
            raise ValueError(
                f"retry_delay must be >= 0 (got {self.retry_delay}). "
                f"Set config.retry_delay to a non-negative number in seconds."
            )
        if self.progress_interval < 1:
            raise ValueError(
                f"progress_interval must be >= 1 (got {self.progress_interval}). "
                f"Set config.progress_interval to a positive integer."
            )

        self.input_limits.validate()

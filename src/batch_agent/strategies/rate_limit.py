"""Quota gate: admission control for concurrency, RPM and TPM limits."""

import asyncio
import logging
import time
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from ..core.config import ProcessorConfig, RateLimiterConfig
from .errors import BatchCancelledError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]

WINDOW_SECONDS = 60.0
_EPSILON = 1e-9


@dataclass
class TokenBucket:
    """
    Continuously refilling budget of `capacity` units per minute.

    The level may be pushed below zero by adjust() when a reservation turned
    out to be too small. No consumption is allowed until it refills.
    """

    capacity: float
    available: float
    last_update_time: float
    clock: Clock = field(default=time.monotonic, repr=False, compare=False)

    @classmethod
    def start(cls, capacity_per_minute: float, clock: Clock = time.monotonic) -> "TokenBucket":
        return cls(capacity_per_minute, capacity_per_minute, clock(), clock)

    @property
    def refill_per_second(self) -> float:
        return self.capacity / WINDOW_SECONDS

    def refill(self) -> None:
        now = self.clock()
        elapsed = max(0.0, now - self.last_update_time)
        self.available = min(
            self.capacity, self.available + self.refill_per_second * elapsed
        )
        self.last_update_time = now

    def wait_time(self, amount: float) -> float:
        """Seconds until `amount` can be consumed (0.0 if available now)."""
        self.refill()
        deficit = amount - self.available
        if deficit <= _EPSILON:
            return 0.0
        return deficit / self.refill_per_second

    def try_consume(self, amount: float) -> bool:
        if self.wait_time(amount) > 0:
            return False
        self.available -= amount
        return True

    def adjust(self, delta: float) -> None:
        """Debit (positive) or credit (negative) the bucket after the fact."""
        self.refill()
        self.available = min(self.capacity, self.available - delta)


@dataclass
class SlidingWindowCounter:
    """
    At most `limit` admissions in any rolling window.

    Unlike a token bucket, a full burst followed by steady refill cannot
    exceed the limit within a single window.
    """

    limit: int
    window: float = WINDOW_SECONDS
    clock: Clock = field(default=time.monotonic, repr=False, compare=False)
    _admitted: deque = field(default_factory=deque, init=False, repr=False)

    def _evict(self, now: float) -> None:
        while self._admitted and self._admitted[0] <= now - self.window:
            self._admitted.popleft()

    def wait_time(self) -> float:
        now = self.clock()
        self._evict(now)
        if len(self._admitted) < self.limit:
            return 0.0
        return max(_EPSILON, self._admitted[0] + self.window - now)

    def try_consume(self) -> bool:
        if self.wait_time() > 0:
            return False
        self._admitted.append(self.clock())
        return True

    @property
    def in_window(self) -> int:
        self._evict(self.clock())
        return len(self._admitted)


@dataclass
class Permit:
    """Grant returned by QuotaGate.acquire() for a single dispatch attempt."""

    reserved_tokens: int = 0
    tokens_used: int | None = None
    released: bool = False


class QuotaGate:
    """
    Admission control shared by all workers.

    Every dispatch attempt acquires, in this order: a concurrency slot, one
    request credit, then a token reservation. Credits are consumed and only
    time replenishes them; the slot is returned when the attempt ends. Token
    reservations are reconciled with the real usage on release.
    """

    def __init__(
        self,
        max_concurrency: int,
        requests_per_minute: int | None = None,
        tokens_per_minute: int | None = None,
        estimated_tokens_per_request: int = 1000,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        poll_interval: float = 0.1,
    ):
        """
        Initialize the quota gate.

        Args:
            max_concurrency: Number of concurrency slots
            requests_per_minute: RPM budget (None = unlimited)
            tokens_per_minute: TPM budget (None = unlimited)
            estimated_tokens_per_request: Tokens reserved before each call
            clock: Monotonic clock in seconds (injectable for tests)
            sleep: Async sleep used while waiting for credits
            poll_interval: Longest single wait before re-checking close()
        """
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1 (got {max_concurrency})")

        self.max_concurrency = max_concurrency
        self.requests_per_minute = requests_per_minute
        self.tokens_per_minute = tokens_per_minute
        self.poll_interval = poll_interval
        self._sleep = sleep

        self._requests = (
            SlidingWindowCounter(requests_per_minute, clock=clock)
            if requests_per_minute
            else None
        )
        self._tokens = (
            TokenBucket.start(tokens_per_minute, clock=clock) if tokens_per_minute else None
        )
        self._reservation = (
            min(estimated_tokens_per_request, tokens_per_minute) if tokens_per_minute else 0
        )

        self._slots = asyncio.Semaphore(max_concurrency)
        self._lock = asyncio.Lock()
        self._closed = False
        self._in_flight = 0

    @classmethod
    def from_configs(
        cls,
        config: ProcessorConfig,
        rate_limiter: RateLimiterConfig | None = None,
        **kwargs,
    ) -> "QuotaGate":
        """Build a gate from processor config and an optional tier/limits config."""
        if rate_limiter is None:
            return cls(config.max_concurrency, **kwargs)
        return cls(
            min(config.max_concurrency, rate_limiter.max_concurrency),
            requests_per_minute=rate_limiter.requests_per_minute,
            tokens_per_minute=rate_limiter.tokens_per_minute,
            estimated_tokens_per_request=rate_limiter.estimated_tokens_per_request,
            **kwargs,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def tokens_available(self) -> float | None:
        if self._tokens is None:
            return None
        self._tokens.refill()
        return self._tokens.available

    def close(self) -> None:
        """Stop admitting new acquisitions. In-flight permits stay valid."""
        if not self._closed:
            logger.info("ℹ️  Quota gate closed; no further dispatches will be admitted")
        self._closed = True

    def reopen(self) -> None:
        """Admit acquisitions again after close(). Rate history is kept."""
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise BatchCancelledError("quota gate is closed")

    async def acquire(self) -> Permit:
        """Block until a slot, a request credit and a token reservation are all held."""
        self._check_open()
        await self._slots.acquire()
        try:
            self._check_open()
            # Serialize credit waits so earlier waiters are served first
            async with self._lock:
                if self._requests is not None:
                    await self._wait_for("request", self._requests.try_consume, self._requests.wait_time)
                if self._tokens is not None:
                    amount = self._reservation
                    await self._wait_for(
                        "token",
                        lambda: self._tokens.try_consume(amount),
                        lambda: self._tokens.wait_time(amount),
                    )
        except BaseException:
            self._slots.release()
            raise

        self._in_flight += 1
        return Permit(reserved_tokens=self._reservation)

    async def _wait_for(
        self,
        label: str,
        consume: Callable[[], bool],
        wait_time: Callable[[], float],
    ) -> None:
        while True:
            self._check_open()
            if consume():
                return
            delay = min(wait_time(), self.poll_interval)
            logger.debug(f"Waiting {delay:.3f}s for {label} credit")
            await self._sleep(delay)

    def release(self, permit: Permit) -> None:
        """Return the slot and reconcile the token reservation."""
        if permit.released:
            return
        permit.released = True
        if self._tokens is not None and permit.tokens_used is not None:
            # Failed attempts keep the reservation: the real cost is unknown
            self._tokens.adjust(permit.tokens_used - permit.reserved_tokens)
        self._in_flight -= 1
        self._slots.release()

    @asynccontextmanager
    async def admit(self) -> AsyncIterator[Permit]:
        """Hold a permit for the duration of one attempt."""
        permit = await self.acquire()
        try:
            yield permit
        finally:
            self.release(permit)

"""Tests for the quota gate and its credit counters.

Time-dependent tests use the FakeClock fixture so they run instantly and
deterministically.
"""

import asyncio

import pytest

from batch_agent import (
    TIER_3,
    TIER_4,
    TIER_5,
    BatchCancelledError,
    ParallelBatchProcessor,
    ProcessorConfig,
    QuotaGate,
    RateLimiterConfig,
    TokenBucket,
    tier_config,
)
from batch_agent.strategies import SlidingWindowCounter
from batch_agent.testing import MockAgent


class TestTokenBucket:
    def test_starts_full(self, fake_clock):
        bucket = TokenBucket.start(600, clock=fake_clock)

        assert bucket.available == 600
        assert bucket.refill_per_second == 10

    def test_consume_and_refill(self, fake_clock):
        bucket = TokenBucket.start(600, clock=fake_clock)

        assert bucket.try_consume(600)
        assert not bucket.try_consume(1)
        assert bucket.wait_time(50) == 5.0

        fake_clock.now += 5.0
        assert bucket.try_consume(50)

    def test_refill_is_capped(self, fake_clock):
        bucket = TokenBucket.start(600, clock=fake_clock)
        bucket.try_consume(100)

        fake_clock.now += 3600
        bucket.refill()

        assert bucket.available == 600

    def test_adjust_can_go_negative(self, fake_clock):
        bucket = TokenBucket.start(600, clock=fake_clock)

        bucket.adjust(900)

        assert bucket.available == -300
        assert bucket.wait_time(100) == 40.0

    def test_adjust_credit_is_capped(self, fake_clock):
        bucket = TokenBucket.start(600, clock=fake_clock)

        bucket.adjust(-100)

        assert bucket.available == 600


class TestSlidingWindowCounter:
    def test_limits_admissions_per_window(self, fake_clock):
        counter = SlidingWindowCounter(3, clock=fake_clock)

        assert all(counter.try_consume() for _ in range(3))
        assert not counter.try_consume()
        assert counter.wait_time() == 60.0

    def test_oldest_admission_expires(self, fake_clock):
        counter = SlidingWindowCounter(2, clock=fake_clock)
        counter.try_consume()
        fake_clock.now = 10.0
        counter.try_consume()

        fake_clock.now = 59.5
        assert not counter.try_consume()

        fake_clock.now = 60.0
        assert counter.try_consume()
        assert counter.in_window == 2


class TestQuotaGate:
    @pytest.mark.asyncio
    async def test_requests_never_exceed_rpm_in_any_window(self, fake_clock):
        gate = QuotaGate(
            max_concurrency=5,
            requests_per_minute=10,
            clock=fake_clock,
            sleep=fake_clock.sleep,
            poll_interval=0.5,
        )
        starts: list[float] = []

        async def attempt():
            async with gate.admit():
                starts.append(fake_clock.now)
                await fake_clock.sleep(1.0)

        await asyncio.gather(*(attempt() for _ in range(35)))

        assert len(starts) == 35
        for window_start in starts:
            in_window = [t for t in starts if window_start <= t < window_start + 60]
            assert len(in_window) <= 10

    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        gate = QuotaGate(max_concurrency=3)
        active = 0
        max_active = 0

        async def attempt():
            nonlocal active, max_active
            async with gate.admit():
                active += 1
                max_active = max(max_active, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(attempt() for _ in range(12)))

        assert max_active == 3
        assert gate.in_flight == 0

    @pytest.mark.asyncio
    async def test_token_reservation_is_reconciled(self, fake_clock):
        gate = QuotaGate(
            max_concurrency=2,
            tokens_per_minute=6000,
            estimated_tokens_per_request=1000,
            clock=fake_clock,
            sleep=fake_clock.sleep,
        )

        permit = await gate.acquire()
        assert permit.reserved_tokens == 1000
        assert gate.tokens_available == 5000

        permit.tokens_used = 400
        gate.release(permit)

        assert gate.tokens_available == 5600

    @pytest.mark.asyncio
    async def test_failed_attempt_keeps_reservation(self, fake_clock):
        gate = QuotaGate(
            max_concurrency=1, tokens_per_minute=6000, clock=fake_clock, sleep=fake_clock.sleep
        )

        permit = await gate.acquire()
        gate.release(permit)

        assert gate.tokens_available == 5000

    @pytest.mark.asyncio
    async def test_overspend_delays_next_dispatch(self, fake_clock):
        gate = QuotaGate(
            max_concurrency=2,
            tokens_per_minute=6000,
            estimated_tokens_per_request=1000,
            clock=fake_clock,
            sleep=fake_clock.sleep,
            poll_interval=1.0,
        )

        permit = await gate.acquire()
        permit.tokens_used = 7000
        gate.release(permit)
        assert gate.tokens_available == -1000

        started = fake_clock.now
        second = await gate.acquire()

        # 2000 token deficit at 100 tokens/s
        assert fake_clock.now - started == 20.0
        gate.release(second)

    @pytest.mark.asyncio
    async def test_reservation_clamped_to_tpm(self, fake_clock):
        gate = QuotaGate(
            max_concurrency=1,
            tokens_per_minute=500,
            estimated_tokens_per_request=1000,
            clock=fake_clock,
        )

        permit = await gate.acquire()

        assert permit.reserved_tokens == 500
        gate.release(permit)

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self):
        gate = QuotaGate(max_concurrency=1)

        permit = await gate.acquire()
        gate.release(permit)
        gate.release(permit)

        assert gate.in_flight == 0

    @pytest.mark.asyncio
    async def test_closed_gate_rejects_acquire(self):
        gate = QuotaGate(max_concurrency=2)
        gate.close()

        with pytest.raises(BatchCancelledError):
            await gate.acquire()
        assert gate.in_flight == 0

    @pytest.mark.asyncio
    async def test_close_wakes_waiters(self, fake_clock):
        gate = QuotaGate(
            max_concurrency=2,
            requests_per_minute=1,
            clock=fake_clock,
            sleep=fake_clock.sleep,
        )
        first = await gate.acquire()

        waiter = asyncio.create_task(gate.acquire())
        await asyncio.sleep(0)
        gate.close()

        with pytest.raises(BatchCancelledError):
            await waiter
        assert gate.in_flight == 1
        gate.release(first)

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            QuotaGate(max_concurrency=0)


class TestTiers:
    def test_tier_values(self):
        assert (TIER_3.max_concurrency, TIER_3.requests_per_minute, TIER_3.tokens_per_minute) == (
            200,
            5000,
            3_000_000,
        )
        assert (TIER_4.max_concurrency, TIER_4.requests_per_minute, TIER_4.tokens_per_minute) == (
            400,
            5000,
            4_000_000,
        )
        assert (TIER_5.max_concurrency, TIER_5.requests_per_minute, TIER_5.tokens_per_minute) == (
            1000,
            10000,
            5_000_000,
        )

    def test_tier_lookup(self):
        assert tier_config("4") is TIER_4
        assert tier_config(5) is TIER_5

    def test_unknown_tier(self):
        with pytest.raises(ValueError, match="Unknown tier"):
            tier_config("7")

    def test_invalid_rate_limiter_config(self):
        with pytest.raises(ValueError):
            RateLimiterConfig(max_concurrency=1, requests_per_minute=0, tokens_per_minute=10).validate()

    def test_effective_concurrency_is_the_smaller_limit(self):
        agent = MockAgent()

        limited_by_tier = ParallelBatchProcessor(
            agent,
            ProcessorConfig(max_concurrency=50),
            rate_limiter=RateLimiterConfig(
                max_concurrency=4, requests_per_minute=100, tokens_per_minute=10_000
            ),
        )
        limited_by_config = ParallelBatchProcessor(
            agent, ProcessorConfig(max_concurrency=2), rate_limiter=TIER_3
        )

        assert limited_by_tier.gate.max_concurrency == 4
        assert limited_by_config.gate.max_concurrency == 2

"""Tests for retry and per-attempt timeout behavior."""

import time

import pytest

from batch_agent import ItemStatus, ParallelBatchProcessor, ProcessorConfig, WorkItem
from batch_agent.testing import MockAgent


def single_item() -> list[WorkItem]:
    return [WorkItem(item_id="only", prompt="Test prompt", order=0)]


@pytest.mark.asyncio
async def test_attempts_are_bounded_by_retry_count():
    """A permanently failing item is tried exactly retry_count + 1 times."""

    def always_fail(prompt):
        raise RuntimeError("boom")

    mock_agent = MockAgent(response_factory=always_fail, latency=0.001)
    config = ProcessorConfig(max_concurrency=1, retry_count=2, retry_delay=0.0)
    processor = ParallelBatchProcessor(mock_agent, config)

    result = await processor.run(single_item())

    item = result.items[0]
    assert mock_agent.call_count == 3
    assert item.attempts == 3
    assert item.success is False
    assert item.status is ItemStatus.FAILED
    assert item.error == "RuntimeError: boom"

    stats = await processor.get_stats()
    assert stats["retries"] == 2
    assert stats["error_counts"] == {"RuntimeError": 1}


@pytest.mark.asyncio
async def test_no_retries_when_retry_count_is_zero():
    def always_fail(prompt):
        raise ValueError("bad request")

    mock_agent = MockAgent(response_factory=always_fail, latency=0.001)
    config = ProcessorConfig(max_concurrency=1, retry_count=0)
    processor = ParallelBatchProcessor(mock_agent, config)

    result = await processor.run(single_item())

    assert mock_agent.call_count == 1
    assert result.items[0].attempts == 1


@pytest.mark.asyncio
async def test_success_on_retry():
    """An item that fails once then succeeds reports the attempt that worked."""
    calls = {"count": 0}

    def flaky(prompt):
        calls["count"] += 1
        if calls["count"] == 1:
            raise ConnectionError("connection reset")
        return f"answer: {prompt}"

    mock_agent = MockAgent(response_factory=flaky, latency=0.001, tokens_per_call=42)
    config = ProcessorConfig(max_concurrency=1, retry_count=2, retry_delay=0.0)
    processor = ParallelBatchProcessor(mock_agent, config)

    result = await processor.run(single_item())

    item = result.items[0]
    assert item.success is True
    assert item.attempts == 2
    assert item.output == "answer: Test prompt"
    assert item.error is None
    assert item.tokens_used == 42


@pytest.mark.asyncio
async def test_retry_delay_is_applied():
    calls = {"count": 0}

    def fail_twice(prompt):
        calls["count"] += 1
        if calls["count"] <= 2:
            raise RuntimeError("transient")
        return "done"

    mock_agent = MockAgent(response_factory=fail_twice, latency=0.001)
    config = ProcessorConfig(max_concurrency=1, retry_count=2, retry_delay=0.1)
    processor = ParallelBatchProcessor(mock_agent, config)

    start = time.monotonic()
    result = await processor.run(single_item())
    elapsed = time.monotonic() - start

    assert result.items[0].success is True
    assert elapsed >= 0.2
    assert result.items[0].duration >= 0.2


@pytest.mark.asyncio
async def test_timeout_has_distinct_status_and_message():
    mock_agent = MockAgent(latency=1.0)
    config = ProcessorConfig(max_concurrency=1, timeout=0.05, retry_count=1, retry_delay=0.0)
    processor = ParallelBatchProcessor(mock_agent, config)

    result = await processor.run(single_item())

    item = result.items[0]
    assert item.status is ItemStatus.TIMED_OUT
    assert item.error == "timeout: no response within 0.05s"
    assert item.attempts == 2
    assert mock_agent.call_count == 2


@pytest.mark.asyncio
async def test_provider_timeout_is_an_ordinary_failure():
    """A TimeoutError raised by the agent itself is not a deadline timeout."""

    def provider_timeout(prompt):
        raise TimeoutError("upstream gateway timeout")

    mock_agent = MockAgent(response_factory=provider_timeout, latency=0.001)
    config = ProcessorConfig(max_concurrency=1, retry_count=0)
    processor = ParallelBatchProcessor(mock_agent, config)

    result = await processor.run(single_item())

    assert result.items[0].status is ItemStatus.FAILED
    assert result.items[0].error == "TimeoutError: upstream gateway timeout"


@pytest.mark.asyncio
async def test_each_retry_gets_a_fresh_timeout():
    """The first call hangs; the retry runs under a new deadline and succeeds."""
    mock_agent = MockAgent(latency=0.01, timeout_on_call=1)
    config = ProcessorConfig(max_concurrency=1, timeout=0.2, retry_count=1, retry_delay=0.0)
    processor = ParallelBatchProcessor(mock_agent, config)

    result = await processor.run(single_item())

    item = result.items[0]
    assert item.success is True
    assert item.attempts == 2
    assert mock_agent.call_count == 2


@pytest.mark.asyncio
async def test_failed_item_does_not_stop_others():
    def fail_on_bad(prompt):
        if "bad" in prompt:
            raise RuntimeError("rejected")
        return "ok"

    mock_agent = MockAgent(response_factory=fail_on_bad, latency=0.001)
    config = ProcessorConfig(max_concurrency=2, retry_count=1, retry_delay=0.0)
    processor = ParallelBatchProcessor(mock_agent, config)
    items = [
        WorkItem(item_id="a", prompt="good one", order=0),
        WorkItem(item_id="b", prompt="bad one", order=1),
        WorkItem(item_id="c", prompt="good two", order=2),
    ]

    result = await processor.run(items)

    assert result.succeeded == 2
    assert result.failed == 1
    assert [r.item_id for r in result.failed_items()] == ["b"]
    assert "b: RuntimeError: rejected" in result.failure_details()

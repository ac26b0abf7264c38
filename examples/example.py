"""Example usage of the batch_agent module with a mock agent.

Runs both sample inputs without any API keys, using a metrics observer and a
tier preset so the quota gate is exercised.
"""

import asyncio
import logging
from pathlib import Path

from batch_agent import (
    TIER_3,
    MetricsObserver,
    ParallelBatchProcessor,
    ProcessorConfig,
)
from batch_agent.testing import MockAgent

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)

HERE = Path(__file__).parent


async def run_text_file():
    """Text input: ids come from line numbers."""
    mock_agent = MockAgent(latency=0.05)
    config = ProcessorConfig(max_concurrency=2, timeout=5.0)

    async with ParallelBatchProcessor(mock_agent, config, rate_limiter=TIER_3) as processor:
        result = await processor.process_file(HERE / "prompts.txt")

    print(result.summary())
    for item in result.items:
        print(f"{item.item_id}: {item.output}")


async def run_jsonl_file():
    """JSON-lines input: malformed and duplicate entries are skipped, not fatal."""
    mock_agent = MockAgent(latency=0.05, failure_rate=0.3)
    metrics = MetricsObserver()
    config = ProcessorConfig(max_concurrency=3, retry_count=2, retry_delay=0.1)
    processor = ParallelBatchProcessor(mock_agent, config, observers=[metrics])

    result = await processor.process_file(HERE / "batch.jsonl", HERE / "results.json")

    print(result.summary())
    if result.failed_items():
        print("Failed items:")
        print(result.failure_details())

    print("\nMetrics:")
    print(await metrics.export_json())


async def main():
    await run_text_file()
    print("=" * 60)
    await run_jsonl_file()


if __name__ == "__main__":
    asyncio.run(main())

"""Example of processing a batch file with a real PydanticAI model.

Requires the optional dependency and a provider key:

    pip install batch-agent[pydantic-ai]
    export OPENAI_API_KEY=...
"""

import asyncio
import logging
import sys
from pathlib import Path

from batch_agent import TIER_3, AgentUnavailableError, ParallelBatchProcessor, ProcessorConfig
from batch_agent.agents import PydanticAIChatAgent

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)


async def main(model: str = "openai:gpt-4o-mini"):
    try:
        agent = PydanticAIChatAgent.from_model(
            model, system_prompt="Answer concisely in at most two sentences."
        )
    except AgentUnavailableError as e:
        print(f"Cannot create agent: {e}")
        sys.exit(1)

    config = ProcessorConfig(max_concurrency=10, timeout=30.0, retry_count=2)
    processor = ParallelBatchProcessor(agent, config, rate_limiter=TIER_3)

    input_path = Path(__file__).parent / "prompts.txt"
    result = await processor.process_file(input_path, "results.json")

    print(result.summary())
    for item in result.items:
        print(f"\n[{item.item_id}] {item.prompt}\n  -> {item.output or item.error}")


if __name__ == "__main__":
    asyncio.run(main(*sys.argv[1:2]))

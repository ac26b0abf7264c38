"""Command-line entry point: run a batch file against an agent."""

import asyncio
import logging
import signal
from pathlib import Path

import typer

from .agents import PydanticAIChatAgent
from .base import BatchResult
from .core import TIERS, ProcessorConfig, RateLimiterConfig, tier_config
from .parallel import ParallelBatchProcessor
from .strategies import BatchAgentError, InputValidationError

logger = logging.getLogger(__name__)

EXIT_FATAL = 1
EXIT_ITEMS_FAILED = 2

app = typer.Typer(
    help="Dispatch a file of prompts to an LLM agent within provider rate limits.",
    context_settings={"help_option_names": ["-h", "--help"]},
    add_completion=False,
    no_args_is_help=True,
)


async def _run_batch(
    processor: ParallelBatchProcessor, input_path: Path, output_path: Path | None
) -> BatchResult:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, processor.cancel)
    except NotImplementedError:
        pass  # Signal handlers are unavailable on Windows event loops
    try:
        return await processor.process_file(input_path, output_path)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass


@app.command()
def batch(
    input_path: Path = typer.Option(..., "-i", "--input", help="Input file (.txt or .jsonl)"),
    output_path: Path | None = typer.Option(None, "-o", "--output", help="Write full results as JSON"),
    concurrency: int = typer.Option(3, "-c", "--concurrency", min=1, help="Max concurrent dispatches"),
    timeout: float = typer.Option(60.0, "-t", "--timeout", help="Per-attempt timeout in seconds"),
    tier: str | None = typer.Option(None, "--tier", help="Rate-limit preset: 3, 4 or 5"),
    retries: int = typer.Option(2, "--retries", min=0, help="Retries per item after the first attempt"),
    retry_delay: float = typer.Option(1.0, "--retry-delay", help="Seconds between attempts"),
    model: str | None = typer.Option(None, "--model", help="PydanticAI model, e.g. openai:gpt-4o-mini"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Do not call the agent"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Enable debug logging"),
) -> None:
    """Process every prompt in INPUT and print a summary."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    if not input_path.exists():
        typer.echo(f"Error: Input file not found: {input_path}", err=True)
        raise typer.Exit(code=EXIT_FATAL)

    config = ProcessorConfig(
        max_concurrency=concurrency,
        timeout=timeout,
        retry_count=retries,
        retry_delay=retry_delay,
        dry_run=dry_run,
    )

    rate_limiter: RateLimiterConfig | None = None
    try:
        if tier is not None:
            rate_limiter = tier_config(tier)
            typer.echo(
                f"⚡ Using Tier {tier} rate limits: {rate_limiter.max_concurrency} concurrent, "
                f"{rate_limiter.requests_per_minute} RPM, {rate_limiter.tokens_per_minute:,} TPM"
            )

        agent = None
        if not dry_run:
            if model is None:
                typer.echo("Error: --model is required unless --dry-run is set", err=True)
                raise typer.Exit(code=EXIT_FATAL)
            agent = PydanticAIChatAgent.from_model(model)

        processor = ParallelBatchProcessor(agent, config, rate_limiter=rate_limiter)
        typer.echo(f"🤖 Processing batch file: {input_path}")
        typer.echo(
            f"   Concurrency: {processor.gate.max_concurrency} | Timeout: {timeout:g}s"
            + (f" | Tier: {tier}" if tier else "")
        )
        typer.echo()

        result = asyncio.run(_run_batch(processor, input_path, output_path))
    except InputValidationError as e:
        typer.echo(f"Error: {e}", err=True)
        for error in e.errors:
            typer.echo(f"  - line {error.line_number}: {error.reason}", err=True)
        raise typer.Exit(code=EXIT_FATAL)
    except (BatchAgentError, ValueError) as e:
        typer.echo(f"Error processing batch: {e}", err=True)
        raise typer.Exit(code=EXIT_FATAL)

    typer.echo(result.summary())
    if output_path is not None:
        typer.echo(f"✓ Results saved to: {output_path}")

    failed = result.failed_items()
    if failed:
        typer.echo("\nFailed items:")
        typer.echo(result.failure_details())
        raise typer.Exit(code=EXIT_ITEMS_FAILED)


@app.command()
def tiers() -> None:
    """List the available rate-limit presets."""
    for name, preset in TIERS.items():
        typer.echo(
            f"Tier {name}: {preset.max_concurrency} concurrent, "
            f"{preset.requests_per_minute:,} RPM, {preset.tokens_per_minute:,} TPM"
        )


def main() -> None:
    app()


if __name__ == "__main__":
    main()

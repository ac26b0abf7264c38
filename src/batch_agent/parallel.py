"""Parallel batch processor"""

import asyncio
import logging
import time
from collections.abc import Iterable
from pathlib import Path

from .base import BatchProcessor, BatchResult, ItemStatus, WorkItem, WorkItemResult
from .core import AgentLike, ChatRequest, ProcessorConfig, RateLimiterConfig
from .observers import ProcessingEvent, ProcessorObserver
from .parsing import InputFormat, ParseError, parse_file
from .strategies import (
    AgentUnavailableError,
    AttemptTimeoutError,
    BatchCancelledError,
    InputValidationError,
    QuotaGate,
)
from .strategies.errors import format_error

logger = logging.getLogger(__name__)


class ParallelBatchProcessor(BatchProcessor):
    """
    Batch processor that dispatches items to an agent in parallel.

    Each dispatch attempt passes through a QuotaGate (concurrency slot,
    request credit, token reservation), runs under a per-attempt deadline and
    is retried up to config.retry_count times. Without a RateLimiterConfig the
    gate only bounds concurrency.

    Example:
        >>> processor = ParallelBatchProcessor(agent, ProcessorConfig(), rate_limiter=TIER_3)
        >>> result = await processor.process_file("prompts.txt", "results.json")
        >>> print(result.summary())
    """

    def __init__(
        self,
        agent: AgentLike | None,
        config: ProcessorConfig | None = None,
        rate_limiter: RateLimiterConfig | None = None,
        observers: list[ProcessorObserver] | None = None,
        gate: QuotaGate | None = None,
    ):
        """
        Initialize the parallel batch processor.

        Args:
            agent: Agent that answers each prompt (may be None only in dry-run mode)
            config: Processor configuration (defaults to ProcessorConfig())
            rate_limiter: Optional provider quota limits (e.g. TIER_3)
            observers: List of observers for events
            gate: Pre-built quota gate (overrides config/rate_limiter limits)

        Raises:
            AgentUnavailableError: If no agent is given outside dry-run mode
        """
        config = config or ProcessorConfig()
        config.validate()
        if rate_limiter is not None:
            rate_limiter.validate()

        if agent is None and not config.dry_run:
            raise AgentUnavailableError(
                "No agent configured. Provide an agent implementing chat(request) "
                "or enable dry_run."
            )
        if agent is not None and not isinstance(agent, AgentLike):
            raise TypeError(
                f"agent must implement async chat(request) (got {type(agent).__name__})"
            )

        self.gate = gate or QuotaGate.from_configs(config, rate_limiter)
        super().__init__(self.gate.max_concurrency)

        self.agent = agent
        self.config = config
        self.rate_limiter = rate_limiter
        self.observers = observers or []

        self._cancel_event = asyncio.Event()
        self._fatal_error: AgentUnavailableError | None = None
        self._dispatch_total = 0
        self._stats_lock = asyncio.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """
        Stop the run gracefully.

        No new dispatch attempts are admitted and no further retries are
        issued. Attempts already in flight are allowed to finish; items that
        never started are reported as cancelled.
        """
        if self._cancel_event.is_set():
            return
        logger.warning("⚠️  Cancellation requested: draining in-flight attempts")
        self._cancel_event.set()
        self.gate.close()

    async def get_stats(self) -> dict:
        """
        Get processor statistics (thread-safe).

        Returns:
            Dictionary containing processing statistics
        """
        async with self._stats_lock:
            return self._stats.copy()

    async def process_file(
        self,
        input_path: str | Path,
        output_path: str | Path | None = None,
        input_format: InputFormat | None = None,
    ) -> BatchResult:
        """
        Parse an input file, process every valid entry and optionally save results.

        Args:
            input_path: Text or JSON-lines input file
            output_path: Where to write the full result as JSON (None = no file)
            input_format: Force an input format instead of detecting by extension

        Returns:
            BatchResult with one item per valid or skipped entry, in file order

        Raises:
            InputFileError: If the input cannot be read
            InputValidationError: If entries are invalid and skip_invalid is off
            AgentUnavailableError: If the agent cannot be reached at all
        """
        parsed = parse_file(input_path, self.config, input_format)
        if parsed.errors and not self.config.skip_invalid:
            logger.error(
                f"✗ {len(parsed.errors)} invalid entries in {input_path}; aborting before dispatch"
            )
            raise InputValidationError(parsed.errors)

        result = await self.run(parsed.items, skipped=parsed.errors)

        if output_path is not None:
            result.write_json(output_path)
        return result

    async def run(
        self,
        items: Iterable[WorkItem],
        skipped: Iterable[ParseError] = (),
    ) -> BatchResult:
        """
        Process work items and return their results in input order.

        Args:
            items: Work items to dispatch
            skipped: Rejected entries to report as skipped without dispatch

        Returns:
            BatchResult for every dispatched, cancelled or skipped item

        Raises:
            AgentUnavailableError: If the agent reports it cannot be reached
            ValueError: If two items (or skipped entries) share an id
        """
        items = list(items)
        skipped = list(skipped)
        seen: set[str] = set()
        for item_id in [e.item_id for e in skipped] + [i.item_id for i in items]:
            if item_id in seen:
                raise ValueError(f"Duplicate work item id: {item_id!r}")
            seen.add(item_id)

        self._reset_run_state()

        for error in skipped:
            await self.add_result(error.to_result())
            await self._emit_event(
                ProcessingEvent.ITEM_SKIPPED,
                {"item_id": error.item_id, "reason": error.reason},
            )
        for item in items:
            await self.add_work(item)
        self._dispatch_total = len(items)

        limits = ""
        if self.rate_limiter is not None:
            limits = (
                f" | RPM limit: {self.rate_limiter.requests_per_minute:,}"
                f" | TPM limit: {self.rate_limiter.tokens_per_minute:,}"
            )
        logger.info(
            f"ℹ️  Starting batch: {len(items)} items to dispatch | "
            f"concurrency: {self.gate.max_concurrency}{limits}"
        )
        await self._emit_event(ProcessingEvent.BATCH_STARTED, {"total": self._stats.total})

        result = await self.process_all()

        if self._fatal_error is not None:
            raise self._fatal_error

        if self.cancelled:
            await self._emit_event(
                ProcessingEvent.BATCH_CANCELLED, {"cancelled": result.cancelled}
            )
        await self._emit_event(
            ProcessingEvent.BATCH_COMPLETED,
            {"succeeded": result.succeeded, "failed": result.failed},
        )
        self._log_performance(result)
        return result

    def _reset_run_state(self) -> None:
        """Start each run with empty results, fresh stats and an open gate."""
        self.reset()
        self._cancel_event.clear()
        self._fatal_error = None
        self._dispatch_total = 0
        self.gate.reopen()

    async def _emit_event(self, event: ProcessingEvent, data: dict | None = None) -> None:
        """Emit event to all observers."""
        if not self.observers:
            return

        event_data = data or {}
        for observer in self.observers:
            try:
                await asyncio.wait_for(
                    observer.on_event(event, event_data),
                    timeout=5.0,  # 5 second timeout for observer callbacks
                )
            except (TimeoutError, asyncio.TimeoutError):
                logger.warning(f"⚠️  Observer callback timed out after 5s for event {event.name}")
            except Exception as e:
                logger.warning(f"⚠️  Observer error: {e}")

    async def _worker(self, worker_id: int):
        """Worker coroutine that processes items from the queue."""
        logger.debug(f"✓ Worker {worker_id} started and waiting for work")
        await self._emit_event(ProcessingEvent.WORKER_STARTED, {"worker_id": worker_id})

        while True:
            try:
                work_item = await self._queue.get()
            except asyncio.CancelledError:
                logger.info(f"⚠️  Worker {worker_id} cancelled while waiting for work")
                raise

            if work_item is None:  # Sentinel value
                self._queue.task_done()
                logger.debug(f"✓ Worker {worker_id} finished (no more work)")
                await self._emit_event(ProcessingEvent.WORKER_STOPPED, {"worker_id": worker_id})
                return

            try:
                if self.cancelled:
                    result = WorkItemResult.cancelled(work_item)
                    await self._emit_event(
                        ProcessingEvent.ITEM_CANCELLED, {"item_id": work_item.item_id}
                    )
                else:
                    result = await self._process_item(work_item, worker_id)
            except AgentUnavailableError as e:
                logger.error(f"✗ Agent unavailable while processing {work_item.item_id}: {e}")
                if self._fatal_error is None:
                    self._fatal_error = e
                self.cancel()
                result = self._failed_result(work_item, e, attempts=1, duration=0.0)
            except Exception as e:
                logger.error(
                    f"✗ Worker {worker_id} failed to process {work_item.item_id}: "
                    f"{type(e).__name__}: {str(e)[:200]}"
                )
                result = self._failed_result(work_item, e, attempts=0, duration=0.0)

            await self._record(result)
            self._queue.task_done()

            status = "✓" if result.success else "✗"
            logger.info(
                f"{status} [Worker {worker_id}] Completed {work_item.item_id} ({result.status.value})"
            )

    async def _process_item(self, work_item: WorkItem, worker_id: int) -> WorkItemResult:
        """Dispatch one item with retries; never raises for per-item failures."""
        start_time = time.monotonic()
        max_attempts = self.config.max_attempts
        last_error: Exception | None = None
        attempts = 0

        await self._emit_event(
            ProcessingEvent.ITEM_STARTED,
            {"item_id": work_item.item_id, "worker_id": worker_id},
        )

        for attempt in range(1, max_attempts + 1):
            if self.cancelled:
                break
            if attempt > 1:
                logger.info(
                    f"ℹ️  [Worker {worker_id}] Retry attempt {attempt} for {work_item.item_id}"
                )

            try:
                output, tokens_used = await self._dispatch(work_item, attempt)
            except BatchCancelledError:
                break
            except AgentUnavailableError:
                raise
            except Exception as e:
                attempts = attempt
                last_error = e
                if attempt < max_attempts and not self.cancelled:
                    logger.warning(
                        f"⚠️  Attempt {attempt}/{max_attempts} failed for {work_item.item_id}: "
                        f"{format_error(e)[:150]}. Retrying in {self.config.retry_delay:.1f}s..."
                    )
                    async with self._stats_lock:
                        self._stats.retries += 1
                    await self._emit_event(
                        ProcessingEvent.ITEM_RETRY,
                        {"item_id": work_item.item_id, "attempt": attempt},
                    )
                    await self._sleep_unless_cancelled(self.config.retry_delay)
                continue

            duration = time.monotonic() - start_time
            if attempt > 1:
                logger.info(
                    f"✓ SUCCESS on attempt {attempt} for {work_item.item_id} "
                    f"(after {attempt - 1} failure(s), took {duration:.1f}s)"
                )
            await self._emit_event(
                ProcessingEvent.ITEM_COMPLETED,
                {"item_id": work_item.item_id, "duration": duration, "tokens": tokens_used},
            )
            return WorkItemResult(
                item_id=work_item.item_id,
                order=work_item.order,
                success=True,
                status=ItemStatus.SUCCEEDED,
                output=output,
                tokens_used=tokens_used,
                attempts=attempt,
                duration=duration,
                prompt=work_item.prompt,
            )

        if last_error is None:
            # Cancelled before the first attempt was admitted
            await self._emit_event(ProcessingEvent.ITEM_CANCELLED, {"item_id": work_item.item_id})
            return WorkItemResult.cancelled(work_item)

        duration = time.monotonic() - start_time
        if attempts < max_attempts:
            logger.error(
                f"✗ Giving up on {work_item.item_id} after {attempts}/{max_attempts} attempts "
                f"(run cancelled): {format_error(last_error)}"
            )
        else:
            logger.error(
                f"✗ ALL {max_attempts} ATTEMPTS EXHAUSTED for {work_item.item_id}:\n"
                f"  Final error type: {type(last_error).__name__}\n"
                f"  Final error message: {str(last_error)[:500]}"
            )
        await self._emit_event(
            ProcessingEvent.ITEM_FAILED,
            {
                "item_id": work_item.item_id,
                "error_type": type(last_error).__name__,
                "timed_out": isinstance(last_error, AttemptTimeoutError),
            },
        )
        return self._failed_result(work_item, last_error, attempts, duration)

    async def _dispatch(self, work_item: WorkItem, attempt: int) -> tuple[str, int]:
        """Run one attempt under the quota gate and the per-attempt deadline."""
        # The slot is held per attempt. Items in progress stay bounded by the gate
        # size because the worker count never exceeds gate.max_concurrency.
        async with self.gate.admit() as permit:
            if self.config.dry_run:
                logger.info(f"[DRY-RUN] Skipping agent call for {work_item.item_id}")
                permit.tokens_used = 0
                return f"[DRY-RUN] Mock output for {work_item.item_id}", 0

            request = ChatRequest(message=work_item.prompt)
            logger.debug(
                f"Dispatching {work_item.item_id} (attempt {attempt}, timeout={self.config.timeout}s)"
            )
            call = asyncio.ensure_future(self.agent.chat(request))
            try:
                done, _ = await asyncio.wait({call}, timeout=self.config.timeout)
            except asyncio.CancelledError:
                call.cancel()
                raise
            if not done:
                call.cancel()
                await asyncio.gather(call, return_exceptions=True)
                logger.error(
                    f"⏱ AGENT TIMEOUT for {work_item.item_id} after {self.config.timeout}s "
                    f"(attempt {attempt})"
                )
                raise AttemptTimeoutError(self.config.timeout)

            response = call.result()
            permit.tokens_used = response.tokens_used
            return response.content, response.tokens_used

    async def _sleep_unless_cancelled(self, delay: float) -> None:
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=delay)
        except (TimeoutError, asyncio.TimeoutError):
            pass  # Delay elapsed without cancellation

    def _failed_result(
        self, work_item: WorkItem, error: Exception, attempts: int, duration: float
    ) -> WorkItemResult:
        timed_out = isinstance(error, AttemptTimeoutError)
        return WorkItemResult(
            item_id=work_item.item_id,
            order=work_item.order,
            success=False,
            status=ItemStatus.TIMED_OUT if timed_out else ItemStatus.FAILED,
            error=format_error(error),
            attempts=attempts,
            duration=duration,
            prompt=work_item.prompt,
        )

    async def _record(self, result: WorkItemResult) -> None:
        """Append a result and update stats; logs progress every progress_interval items."""
        async with self._results_lock:
            self._results.append(result)

        async with self._stats_lock:
            self._stats.processed += 1
            if result.success:
                self._stats.succeeded += 1
            else:
                self._stats.failed += 1
                if result.status is ItemStatus.TIMED_OUT:
                    self._stats.timeouts += 1
                if result.error:
                    error_type = result.error.split(":")[0]
                    self._stats.error_counts[error_type] = (
                        self._stats.error_counts.get(error_type, 0) + 1
                    )
            self._stats.total_tokens += result.tokens_used

            should_log = self._stats.processed % self.config.progress_interval == 0
            stats_snapshot = self._stats.copy() if should_log else None

        if stats_snapshot is not None:
            self._log_progress(stats_snapshot)

    def _log_progress(self, stats: dict) -> None:
        elapsed = time.monotonic() - stats["start_time"]
        dispatched = max(self._dispatch_total, 1)
        rate = stats["processed"] / elapsed if elapsed > 0 else 0
        remaining = max(0, dispatched - stats["processed"])
        eta = remaining / rate if rate > 0 else 0

        error_breakdown = ""
        if stats["error_counts"]:
            error_strs = [f"{err}: {count}" for err, count in stats["error_counts"].items()]
            error_breakdown = f" | Errors: {', '.join(error_strs)}"

        logger.info(
            f"ℹ️  Progress: {stats['processed']}/{dispatched} "
            f"({stats['processed'] / dispatched * 100:.1f}%) | "
            f"Succeeded: {stats['succeeded']}, Failed: {stats['failed']}"
            f"{error_breakdown} | {rate:.2f} items/sec | "
            f"Tokens: {stats['total_tokens']:,} | ETA: {eta:.0f}s"
        )

    def _log_performance(self, result: BatchResult) -> None:
        minutes = max(result.elapsed / 60.0, 0.001)
        logger.info(
            f"✓ Batch processing complete: {result.succeeded}/{result.total} succeeded, "
            f"{result.failed} failed ({result.skipped} skipped, {result.cancelled} cancelled) "
            f"in {result.elapsed:.1f}s | "
            f"{result.succeeded / minutes:.1f} RPM, {result.total_tokens / minutes:,.0f} TPM"
        )

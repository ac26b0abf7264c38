"""Base classes and data model for batch agent processing."""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from .strategies.errors import CANCELLED_ERROR, SKIPPED_ERROR

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkItem:
    """
    Represents a single prompt to be dispatched to the agent.

    Attributes:
        item_id: Unique identifier for this work item within the run
        prompt: Message sent to the agent
        order: Position of the item in the input; fixes its output position
        line_number: 1-based source line the item was parsed from (0 if none)
    """

    item_id: str
    prompt: str
    order: int
    line_number: int = 0

    def __post_init__(self):
        """Validate work item fields."""
        if not self.item_id or not isinstance(self.item_id, str):
            raise ValueError(
                f"item_id must be a non-empty string (got {type(self.item_id).__name__}: {repr(self.item_id)}). "
                f"Provide a unique string identifier for this work item."
            )
        if not self.item_id.strip():
            raise ValueError(
                f"item_id cannot be whitespace only (got {repr(self.item_id)}). "
                f"Provide a non-whitespace string identifier."
            )
        if self.order < 0:
            raise ValueError(f"order must be >= 0 (got {self.order})")


class ItemStatus(Enum):
    """Terminal state of a work item."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass
class WorkItemResult:
    """
    Result of processing a single work item.

    Attributes:
        item_id: ID of the work item
        order: Input position of the work item
        success: Whether processing succeeded
        status: Terminal state (timed_out, skipped and cancelled are failures)
        output: Agent response text if successful, None if failed
        error: Error message if failed, None if successful
        tokens_used: Tokens reported by the agent for the successful attempt
        attempts: Number of dispatch attempts made
        duration: Seconds spent on the item, including retry delays
        prompt: The prompt that was sent
        warnings: Extra diagnostics (e.g. why an entry was skipped)
    """

    item_id: str
    order: int
    success: bool
    status: ItemStatus
    output: str | None = None
    error: str | None = None
    tokens_used: int = 0
    attempts: int = 0
    duration: float = 0.0
    prompt: str = ""
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def skipped(cls, item_id: str, order: int, reason: str | None = None) -> "WorkItemResult":
        return cls(
            item_id=item_id,
            order=order,
            success=False,
            status=ItemStatus.SKIPPED,
            error=SKIPPED_ERROR,
            warnings=[reason] if reason else [],
        )

    @classmethod
    def cancelled(cls, item: WorkItem) -> "WorkItemResult":
        return cls(
            item_id=item.item_id,
            order=item.order,
            success=False,
            status=ItemStatus.CANCELLED,
            error=CANCELLED_ERROR,
            prompt=item.prompt,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


def format_duration(seconds: float) -> str:
    """Render a duration for humans, e.g. '4.21s', '3m 5.0s', '1h 2m 3s'."""
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, secs = divmod(seconds, 60)
    if minutes < 60:
        return f"{int(minutes)}m {secs:.1f}s"
    hours, minutes = divmod(minutes, 60)
    return f"{int(hours)}h {int(minutes)}m {int(secs)}s"


@dataclass
class BatchResult:
    """
    Result of processing a batch of work items.

    Items are kept in input order regardless of completion order. Skipped and
    cancelled items count as failed, so succeeded + failed == total.

    Attributes:
        items: Individual work item results, sorted by order
        elapsed: Wall-clock duration of the run in seconds
        started_at: UTC time the run started
        finished_at: UTC time the run finished
    """

    items: list[WorkItemResult]
    elapsed: float = 0.0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    total: int = field(init=False)
    succeeded: int = field(init=False)
    failed: int = field(init=False)
    skipped: int = field(init=False)
    cancelled: int = field(init=False)
    timed_out: int = field(init=False)
    total_tokens: int = field(init=False)

    def __post_init__(self):
        """Sort items and calculate summary statistics."""
        self.items = sorted(self.items, key=lambda r: r.order)
        self.total = len(self.items)
        self.succeeded = sum(1 for r in self.items if r.success)
        self.failed = self.total - self.succeeded
        self.skipped = self._count(ItemStatus.SKIPPED)
        self.cancelled = self._count(ItemStatus.CANCELLED)
        self.timed_out = self._count(ItemStatus.TIMED_OUT)
        self.total_tokens = sum(r.tokens_used for r in self.items)

    def _count(self, status: ItemStatus) -> int:
        return sum(1 for r in self.items if r.status is status)

    def summary(self) -> str:
        """Fixed multi-line report of counts and elapsed time."""
        lines = [
            "=== Batch Processing Summary ===",
            f"Total:      {self.total}",
            f"Succeeded:  {self.succeeded}",
            f"Failed:     {self.failed}",
            f"Skipped:    {self.skipped}",
            f"Tokens:     {self.total_tokens:,}",
            f"Elapsed:    {format_duration(self.elapsed)}",
        ]
        return "\n".join(lines) + "\n"

    def failed_items(self) -> list[WorkItemResult]:
        """Failures worth diagnosing: everything unsuccessful except skipped entries."""
        return [
            r for r in self.items if not r.success and r.status is not ItemStatus.SKIPPED
        ]

    def failure_details(self) -> str:
        """Detail view listing failed item ids and their error messages."""
        return "\n".join(f"  - {r.item_id}: {r.error}" for r in self.failed_items())

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "total_tokens": self.total_tokens,
            "elapsed": round(self.elapsed, 3),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "items": [r.to_dict() for r in self.items],
        }

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    def write_json(self, path: str | Path) -> Path:
        """Serialize the full result as a single JSON document."""
        path = Path(path)
        path.write_text(self.to_json() + "\n", encoding="utf-8")
        logger.info(f"✓ Results saved to {path}")
        return path


@dataclass
class ProcessingStats:
    """Statistics for batch processing."""

    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retries: int = 0
    timeouts: int = 0
    total_tokens: int = 0
    start_time: float | None = None
    error_counts: dict[str, int] = field(default_factory=dict)

    def copy(self) -> dict[str, Any]:
        """Return a dictionary snapshot of the stats."""
        return {
            "total": self.total,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "retries": self.retries,
            "timeouts": self.timeouts,
            "total_tokens": self.total_tokens,
            "start_time": self.start_time,
            "error_counts": self.error_counts.copy(),
        }


class BatchProcessor(ABC):
    """
    Abstract base class for batch processing strategies.

    Work items are queued in input order and pulled by a fixed pool of
    workers. Results are appended as they complete and re-ordered when the
    BatchResult is built.
    """

    def __init__(self, max_workers: int = 3):
        """
        Initialize the batch processor.

        Args:
            max_workers: Maximum number of concurrent workers
        """
        self.max_workers = max_workers
        self._queue: asyncio.Queue[WorkItem | None] = asyncio.Queue()
        self._results: list[WorkItemResult] = []
        self._results_lock = asyncio.Lock()
        self._stats = ProcessingStats()
        self._workers: list[asyncio.Task] = []

    async def __aenter__(self):
        """Context manager entry - returns self for use in async with."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensures cleanup of resources."""
        await self.cleanup()
        return False  # Don't suppress exceptions

    async def cleanup(self):
        """
        Clean up resources: cancel pending workers and clear queue.

        This method should be called when you're done with the processor,
        or use the processor as an async context manager.
        """
        if self._workers:
            logger.debug(f"Cleaning up {len(self._workers)} workers")
            for worker in self._workers:
                if not worker.done():
                    worker.cancel()

            try:
                await asyncio.wait_for(
                    asyncio.gather(*self._workers, return_exceptions=True), timeout=2.0
                )
            except TimeoutError:
                logger.warning("⚠️  Some workers did not cancel within timeout")

        while not self._queue.empty():
            try:
                self._queue.get_nowait()
                self._queue.task_done()
            except asyncio.QueueEmpty:
                break

    def reset(self) -> None:
        """Discard results and stats from a previous run so the processor can be reused."""
        if any(not worker.done() for worker in self._workers):
            raise RuntimeError("Cannot reset a processor while a run is in progress")
        self._queue = asyncio.Queue()
        self._results = []
        self._stats = ProcessingStats()
        self._workers = []

    async def add_work(self, work_item: WorkItem):
        """
        Add a work item to the processing queue.

        Args:
            work_item: Work item to process
        """
        await self._queue.put(work_item)
        self._stats.total += 1

    async def add_result(self, result: WorkItemResult) -> None:
        """Record a result that needs no dispatch (e.g. a skipped entry)."""
        async with self._results_lock:
            self._results.append(result)
        self._stats.total += 1

    async def process_all(self) -> BatchResult:
        """
        Process all work items in the queue.

        Returns:
            BatchResult containing all results in input order
        """
        started_at = datetime.now(timezone.utc)
        self._stats.start_time = time.monotonic()

        worker_count = min(self.max_workers, self._queue.qsize())
        self._workers = [
            asyncio.create_task(self._worker(worker_id)) for worker_id in range(worker_count)
        ]

        try:
            await self._queue.join()
        finally:
            # Unblock workers even if queue.join() is cancelled or fails
            for _ in range(worker_count):
                self._queue.put_nowait(None)

        try:
            await asyncio.wait_for(asyncio.gather(*self._workers), timeout=30.0)
            logger.debug(f"✓ All {len(self._workers)} workers finished")
        except TimeoutError:
            logger.error(
                "⚠️  Workers did not finish within 30 seconds after queue.join(). "
                "Cancelling workers and proceeding..."
            )
            await self.cleanup()

        return BatchResult(
            items=self._results,
            elapsed=time.monotonic() - self._stats.start_time,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )

    @abstractmethod
    async def _worker(self, worker_id: int):
        """
        Worker coroutine that processes items from the queue.

        Args:
            worker_id: Unique identifier for this worker
        """
        pass

    @abstractmethod
    async def _process_item(self, work_item: WorkItem, worker_id: int) -> WorkItemResult:
        """
        Process a single work item, including retries.

        Args:
            work_item: Work item to process
            worker_id: Worker handling the item

        Returns:
            Terminal result for the work item
        """
        pass

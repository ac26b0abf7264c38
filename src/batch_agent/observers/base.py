"""Observer hooks for batch run events."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any


class ProcessingEvent(Enum):
    """
    Events emitted by ParallelBatchProcessor.

    Payload keys by event:
        BATCH_STARTED: total
        BATCH_COMPLETED: succeeded, failed
        BATCH_CANCELLED: cancelled
        WORKER_STARTED / WORKER_STOPPED: worker_id
        ITEM_STARTED: item_id, worker_id
        ITEM_RETRY: item_id, attempt (the attempt that just failed)
        ITEM_COMPLETED: item_id, duration, tokens
        ITEM_FAILED: item_id, error_type, timed_out
        ITEM_SKIPPED: item_id, reason
        ITEM_CANCELLED: item_id
    """

    BATCH_STARTED = "batch_started"
    BATCH_COMPLETED = "batch_completed"
    BATCH_CANCELLED = "batch_cancelled"
    WORKER_STARTED = "worker_started"
    WORKER_STOPPED = "worker_stopped"
    ITEM_STARTED = "item_started"
    ITEM_RETRY = "item_retry"
    ITEM_COMPLETED = "item_completed"
    ITEM_FAILED = "item_failed"
    ITEM_SKIPPED = "item_skipped"
    ITEM_CANCELLED = "item_cancelled"


class ProcessorObserver(ABC):
    """
    Receives processor events.

    Callbacks are awaited inline by the emitting worker and are cut off after
    5 seconds; errors they raise are logged and ignored.
    """

    @abstractmethod
    async def on_event(self, event: ProcessingEvent, data: dict[str, Any]) -> None:
        """
        Handle one event.

        Args:
            event: The event type
            data: Event payload (see ProcessingEvent)
        """


class BaseObserver(ProcessorObserver):
    """Observer that ignores every event; subclass and override on_event()."""

    async def on_event(self, event: ProcessingEvent, data: dict[str, Any]) -> None:
        return None

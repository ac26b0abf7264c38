"""Metrics collection observer."""

import asyncio
import json
from collections import Counter
from typing import Any

from .base import BaseObserver, ProcessingEvent

_COUNTERS = {
    ProcessingEvent.ITEM_RETRY: "retries",
    ProcessingEvent.ITEM_SKIPPED: "items_skipped",
    ProcessingEvent.ITEM_CANCELLED: "items_cancelled",
}


class MetricsObserver(BaseObserver):
    """
    Aggregate per-item events into run metrics.

    Skipped and cancelled items are counted separately and are not part of
    items_processed, which only covers items that were actually dispatched.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._reset()

    def _reset(self) -> None:
        self.metrics: dict[str, Any] = {
            "items_processed": 0,
            "items_succeeded": 0,
            "items_failed": 0,
            "items_skipped": 0,
            "items_cancelled": 0,
            "retries": 0,
            "timeouts": 0,
            "total_tokens": 0,
            "processing_times": [],
        }
        self._errors: Counter[str] = Counter()

    async def on_event(self, event: ProcessingEvent, data: dict[str, Any]) -> None:
        async with self._lock:
            if event in _COUNTERS:
                self.metrics[_COUNTERS[event]] += 1
            elif event == ProcessingEvent.ITEM_COMPLETED:
                self.metrics["items_processed"] += 1
                self.metrics["items_succeeded"] += 1
                self.metrics["total_tokens"] += data.get("tokens", 0)
                if "duration" in data:
                    self.metrics["processing_times"].append(data["duration"])
            elif event == ProcessingEvent.ITEM_FAILED:
                self.metrics["items_processed"] += 1
                self.metrics["items_failed"] += 1
                if data.get("timed_out"):
                    self.metrics["timeouts"] += 1
                self._errors[data.get("error_type", "unknown")] += 1

    async def get_metrics(self) -> dict[str, Any]:
        """Snapshot of the counters plus derived averages and rates."""
        async with self._lock:
            times = sorted(self.metrics["processing_times"])
            processed = self.metrics["items_processed"]
            return {
                **self.metrics,
                "processing_times": list(times),
                "error_counts": dict(self._errors),
                "avg_processing_time": sum(times) / len(times) if times else 0,
                "p95_processing_time": times[int(0.95 * (len(times) - 1))] if times else 0,
                "max_processing_time": times[-1] if times else 0,
                "success_rate": self.metrics["items_succeeded"] / processed if processed else 0,
            }

    def reset(self) -> None:
        """Clear all collected metrics."""
        self._reset()

    async def export_json(self) -> str:
        """Export metrics as JSON, replacing the raw duration list with its length."""
        metrics = await self.get_metrics()
        metrics["processing_times_count"] = len(metrics.pop("processing_times"))
        return json.dumps(metrics, indent=2)

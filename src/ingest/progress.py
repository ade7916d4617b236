"""Push-model import event publication.

The import thread publishes events without ever waiting on a consumer.
``ProgressChannel`` keeps the latest snapshot behind a lock and buffers
events in a bounded queue, dropping the oldest entry when it is full.
``ProgressLogSink`` turns progress snapshots into structured log events
for command-line runs.
"""

from __future__ import annotations

import queue
import threading
from typing import Protocol

from core.constants import DEFAULT_PROGRESS_QUEUE_SIZE, EVENT_IMPORT_PROGRESS
from core.logging_config import get_logger
from core.types import ProgressSnapshot

_LOGGER = get_logger(__name__)


class EventSink(Protocol):
    """Receiver for import events; implementations must not block."""

    def emit(self, event: str, payload: object) -> None: ...


class ProgressChannel:
    """Thread-safe latest-snapshot swap plus a bounded event queue."""

    def __init__(self, capacity: int = DEFAULT_PROGRESS_QUEUE_SIZE) -> None:
        self._lock = threading.Lock()
        self._latest: ProgressSnapshot | None = None
        self._events: queue.Queue[tuple[str, object]] = queue.Queue(maxsize=capacity)
        self._dropped = 0

    def emit(self, event: str, payload: object) -> None:
        if event == EVENT_IMPORT_PROGRESS and isinstance(payload, ProgressSnapshot):
            with self._lock:
                self._latest = payload
        self._put(event, payload)

    def latest(self) -> ProgressSnapshot | None:
        """Return the most recently published snapshot."""
        with self._lock:
            return self._latest

    def get(self, timeout: float | None = None) -> tuple[str, object] | None:
        """Pop the next event, or None when nothing arrives within ``timeout``."""
        try:
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[tuple[str, object]]:
        """Pop every buffered event without waiting."""
        events: list[tuple[str, object]] = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                return events

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def _put(self, event: str, payload: object) -> None:
        while True:
            try:
                self._events.put_nowait((event, payload))
                return
            except queue.Full:
                try:
                    self._events.get_nowait()
                except queue.Empty:
                    continue
                with self._lock:
                    self._dropped += 1


class ProgressLogSink:
    """Log one ``import_progress`` event per published snapshot."""

    def __init__(self, label: str) -> None:
        self._label = label

    def emit(self, event: str, payload: object) -> None:
        if event != EVENT_IMPORT_PROGRESS or not isinstance(payload, ProgressSnapshot):
            return
        _LOGGER.info(
            "import_progress",
            source=self._label,
            records_processed=payload.records_processed,
            total_estimate=payload.total_estimate,
            progress=_progress_fraction(payload),
            batches_completed=payload.batches_completed,
            destination=payload.destination,
            elapsed_ms=payload.elapsed_ms,
        )


def _progress_fraction(snapshot: ProgressSnapshot) -> float | None:
    if not snapshot.total_estimate:
        return None
    return round(min(snapshot.records_processed / snapshot.total_estimate, 1.0), 3)

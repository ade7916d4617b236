"""Cooperative cancellation and pause control for long-running imports.

The token is shared by reference between the import thread and an
interactive caller. The import polls it between batches; nothing is
interrupted mid-batch.
"""

from __future__ import annotations

import threading


class CancellationToken:
    """Thread-safe cancel and pause flags polled between batches."""

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._cancelled = False
        self._paused = False

    def cancel(self) -> None:
        """Request cancellation and wake any paused waiter."""
        with self._condition:
            self._cancelled = True
            self._condition.notify_all()

    @property
    def cancelled(self) -> bool:
        with self._condition:
            return self._cancelled

    def pause(self) -> None:
        """Hold the import at its next batch boundary until resumed."""
        with self._condition:
            self._paused = True

    def resume(self) -> None:
        with self._condition:
            self._paused = False
            self._condition.notify_all()

    @property
    def paused(self) -> bool:
        with self._condition:
            return self._paused

    def wait_if_paused(self, timeout: float | None = None) -> bool:
        """Block while paused.

        Args:
            timeout: Optional maximum seconds to wait in total.

        Returns:
            True when the import should continue, False when cancelled.
        """
        with self._condition:
            if self._paused and not self._cancelled:
                self._condition.wait_for(
                    lambda: not self._paused or self._cancelled, timeout=timeout
                )
            return not self._cancelled

"""
Coalescing timer without threads.

A ``Debouncer`` holds a pending flag and a deadline. ``trigger()`` (re)arms
it; whoever drives the loop calls ``poll()`` and the action runs once the
deadline has passed. Tests pass a fake clock instead of sleeping.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Optional


class Debouncer:
    """Run ``action`` once, ``delay`` seconds after the last trigger."""

    def __init__(
        self,
        delay: float,
        action: Callable[[], Any],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.delay = delay
        self.action = action
        self.clock = clock
        self._deadline: Optional[float] = None

    @property
    def pending(self) -> bool:
        return self._deadline is not None

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def trigger(self) -> None:
        """Arm the timer, pushing back any deadline already set."""
        self._deadline = self.clock() + self.delay

    def due(self) -> bool:
        return self._deadline is not None and self.clock() >= self._deadline

    def poll(self) -> bool:
        """Fire if due. Returns True when the action ran."""
        if not self.due():
            return False
        return self.flush()

    def flush(self) -> bool:
        """Fire now if pending, regardless of the deadline."""
        if self._deadline is None:
            return False
        self._deadline = None
        self.action()
        return True

    def cancel(self) -> bool:
        """Disarm without firing. Returns True if something was pending."""
        was_pending = self._deadline is not None
        self._deadline = None
        return was_pending

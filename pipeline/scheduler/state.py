"""
Scheduler-owned state: the in-flight guard and the rotation cursor.

Both are process-local and touched only by the ingestion scheduler.
"""

import threading
from typing import List, Sequence, TypeVar

T = TypeVar("T")


class CycleGuard:
    """Single-flight flag: a cycle may only begin when none is in progress."""

    def __init__(self, name: str = "cycle"):
        self.name = name
        self._lock = threading.Lock()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def try_begin_cycle(self) -> bool:
        """Mark a cycle as started; False when one is already running."""
        with self._lock:
            if self._running:
                return False
            self._running = True
            return True

    def end_cycle(self) -> None:
        with self._lock:
            self._running = False


class RotationCursor:
    """
    Round-robin batch selection over the active-sensor list.

    Each call returns up to `max_per_cycle` items starting at the cursor and
    advances the cursor by the batch size modulo the list length, so every
    item is served within ceil(len / max_per_cycle) calls.
    """

    def __init__(self, max_per_cycle: int):
        self.max_per_cycle = max(int(max_per_cycle), 1)
        self.position = 0

    def next_batch(self, items: Sequence[T]) -> List[T]:
        count = len(items)
        if count == 0:
            return []
        # The list can shrink between cycles
        start = self.position % count
        size = min(self.max_per_cycle, count)
        batch = [items[(start + i) % count] for i in range(size)]
        self.position = (start + size) % count
        return batch

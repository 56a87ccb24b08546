from __future__ import annotations
import logging
from typing import Generic, Sequence, TypeVar

_log = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_BATCH_SIZE = 50
DEFAULT_MAX_PENDING = 1000


class BatchQueue(Generic[T]):
    """Ordered pending buffer shared by the timer, overflow, hide and unload flush paths.

    None of the methods await, so on a single event loop each one is atomic:
    a flush that has taken its snapshot can never see (or resend) events
    enqueued while its request is in flight.
    """

    def __init__(self, *, batch_size: int = DEFAULT_BATCH_SIZE, max_pending: int = DEFAULT_MAX_PENDING):
        if batch_size < 1:
            raise ValueError('batch_size must be >= 1')
        if max_pending < batch_size:
            raise ValueError('max_pending must be >= batch_size')
        self.batch_size = batch_size
        self.max_pending = max_pending
        self._pending: list[T] = []
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._pending)

    def __bool__(self) -> bool:
        return bool(self._pending)

    def peek(self) -> list[T]:
        return list(self._pending)

    def enqueue(self, item: T) -> bool:
        """Append ``item``; True once the buffer holds ``batch_size`` or more."""
        self._pending.append(item)
        self._enforce_bound()
        return len(self._pending) >= self.batch_size

    def take(self) -> list[T]:
        """Snapshot and clear."""
        snapshot, self._pending = self._pending, []
        return snapshot

    def requeue(self, items: Sequence[T]) -> None:
        """Put a failed snapshot back in front of anything enqueued since, oldest first."""
        if not items:
            return
        self._pending = list(items) + self._pending
        self._enforce_bound()

    def _enforce_bound(self) -> None:
        excess = len(self._pending) - self.max_pending
        if excess <= 0:
            return
        del self._pending[:excess]
        self.dropped += excess
        _log.warning('telemetry queue over %d pending; dropped %d oldest events (%d total)', self.max_pending, excess, self.dropped)

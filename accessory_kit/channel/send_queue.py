"""Pending send queue for the message channel.

Provides a thread-safe, unbounded FIFO of encoded frames. A frame leaves
the queue only when the sender takes it; a failed write puts it back at the
tail, an abandoned attempt (connection gone before writing) at the head.
"""
import logging
import threading
from collections import deque
from typing import Optional

logger = logging.getLogger(__name__)


class SendQueue:
    """Thread-safe FIFO of outgoing frames."""

    def __init__(self):
        self._items = deque()
        self._cond = threading.Condition()
        self._requeue_count = 0

    def put(self, frame: bytes) -> None:
        """Append a frame and wake one waiting sender."""
        with self._cond:
            self._items.append(frame)
            self._cond.notify()

    def get(self, timeout: Optional[float] = None) -> Optional[bytes]:
        """Remove and return the oldest frame.

        Args:
            timeout: Seconds to wait when empty, None to wait forever

        Returns:
            The frame, or None if the queue stayed empty
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._items, timeout):
                return None
            return self._items.popleft()

    def requeue(self, frame: bytes) -> None:
        """Put a frame whose write failed back at the tail."""
        with self._cond:
            self._items.append(frame)
            self._requeue_count += 1
            if self._requeue_count % 100 == 1:  # Log periodically
                logger.warning(f"Requeued frame for retry ({self._requeue_count} total)")
            self._cond.notify()

    def unget(self, frame: bytes) -> None:
        """Return an untouched frame to the head."""
        with self._cond:
            self._items.appendleft(frame)
            self._cond.notify()

    def clear(self) -> int:
        """Drop every pending frame; returns how many were dropped."""
        with self._cond:
            count = len(self._items)
            self._items.clear()
            return count

    @property
    def size(self) -> int:
        """Current number of pending frames."""
        with self._cond:
            return len(self._items)

    @property
    def requeue_count(self) -> int:
        return self._requeue_count

    def __len__(self) -> int:
        return self.size

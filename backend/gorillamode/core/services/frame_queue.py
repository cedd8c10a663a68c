"""
Frame Queue

Bounded buffer between the capture side and the analysis loop.

When full, the oldest frame is dropped (and released) to make room, so
the pipeline never falls behind real time and the newest frame is never
stuck behind a backlog. push() never blocks.
"""

import asyncio
import logging
from collections import deque
from typing import Optional

from ..domain.pose import Frame

logger = logging.getLogger(__name__)


class FrameQueue:
    """
    Single-producer/single-consumer drop-oldest queue of frames.

    Usage:
        queue = FrameQueue(capacity=2)
        queue.push(frame)              # capture side
        frame = await queue.get()      # analysis loop, None once closed
    """

    def __init__(self, capacity: int = 2):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._frames: deque[Frame] = deque()
        self._available = asyncio.Event()
        self._closed = False
        self.pushed_count = 0
        self.dropped_count = 0

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, frame: Frame) -> Optional[Frame]:
        """
        Enqueue a frame, dropping the oldest one if the queue is full.

        Returns:
            The dropped frame (already released), or None
        """
        dropped = None
        if len(self._frames) >= self.capacity:
            dropped = self._frames.popleft()
            dropped.release()
            self.dropped_count += 1
            logger.debug(f"Frame queue full, dropped frame {dropped.frame_number}")

        self._frames.append(frame)
        self.pushed_count += 1
        self._available.set()
        return dropped

    def pop(self) -> Optional[Frame]:
        """Take the oldest queued frame without waiting."""
        if not self._frames:
            return None
        frame = self._frames.popleft()
        if not self._frames:
            self._available.clear()
        return frame

    async def get(self) -> Optional[Frame]:
        """Wait for a frame. Returns None once the queue is closed."""
        while not self._closed:
            frame = self.pop()
            if frame is not None:
                return frame
            await self._available.wait()
        return None

    def clear(self) -> int:
        """Release every queued frame. Returns how many were released."""
        count = 0
        while self._frames:
            self._frames.popleft().release()
            count += 1
        self._available.clear()
        return count

    def close(self) -> None:
        """Stop handing out frames and wake a waiting consumer."""
        self._closed = True
        self._available.set()

    def reopen(self) -> None:
        self._closed = False
        if not self._frames:
            self._available.clear()

"""Single-slot cancellation registry for the in-flight authorization.

At most one authorization attempt may run at a time. The registry holds the
cancellation handle of that attempt for exactly as long as the attempt runs,
and lets another thread (typically the GUI) cancel it.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from quickcal.auth.client.models.errors import (
    AlreadyInProgressError,
    NotInProgressError,
)

logger = logging.getLogger(__name__)


class CancellationHandle:
    """Cancellation signal for one authorization attempt.

    Must be created inside the event loop that runs the attempt. ``cancel``
    may be called from any thread.
    """

    def __init__(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._event = asyncio.Event()
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        self._loop.call_soon_threadsafe(self._event.set)

    async def wait(self) -> None:
        """Block until the handle is cancelled."""
        await self._event.wait()


class CancellationRegistry:
    """Holds zero or one live CancellationHandle.

    Register, cancel and clear are serialized by a lock. Cancellation requests
    made while nothing is registered fail and are not remembered.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handle: CancellationHandle | None = None

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._handle is not None

    def register(self) -> CancellationHandle:
        """Claim the slot with a fresh handle.

        Raises:
            AlreadyInProgressError: If another attempt holds the slot
        """
        with self._lock:
            if self._handle is not None:
                raise AlreadyInProgressError("Authorization is already in progress")
            self._handle = CancellationHandle()
            return self._handle

    def clear(self, handle: CancellationHandle) -> None:
        """Release the slot if it is still held by ``handle``."""
        with self._lock:
            if self._handle is handle:
                self._handle = None

    @contextmanager
    def acquire(self) -> Iterator[CancellationHandle]:
        """Hold the slot for the duration of the block, on every exit path."""
        handle = self.register()
        try:
            yield handle
        finally:
            self.clear(handle)

    def cancel(self) -> None:
        """Signal the in-flight attempt.

        Raises:
            NotInProgressError: If no attempt is in flight
        """
        with self._lock:
            if self._handle is None:
                logger.warning("No authorization in progress to cancel")
                raise NotInProgressError("Authorization is not in progress")
            logger.info("Cancellation of authorization requested")
            self._handle.cancel()

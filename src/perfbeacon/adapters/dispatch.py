"""Dispatchers that run delivery work off the caller's path."""

import logging
import queue
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

_STOP = object()


class BackgroundDispatcher:
    """Bounded pool of daemon worker threads.

    Work waits in a bounded queue. When the queue is full new work is
    dropped rather than blocking the caller, and ``submit`` returns False.

    Args:
        workers: Number of worker threads.
        max_pending: Maximum queued items.
        name: Thread name prefix.
    """

    def __init__(
        self, workers: int = 2, max_pending: int = 100, name: str = "perfbeacon-delivery"
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be positive")
        self._queue: queue.Queue[object] = queue.Queue(maxsize=max_pending)
        self._idle = threading.Condition()
        self._active = 0
        self._closed = False
        self._threads = [
            threading.Thread(target=self._run, name=f"{name}-{i}", daemon=True)
            for i in range(workers)
        ]
        for thread in self._threads:
            thread.start()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(self, fn: Callable[[], None]) -> bool:
        """Queue ``fn`` for a worker; return False if it was dropped."""
        if self._closed:
            return False
        with self._idle:
            self._active += 1
        try:
            self._queue.put_nowait(fn)
        except queue.Full:
            self._done()
            return False
        return True

    def _done(self) -> None:
        with self._idle:
            self._active -= 1
            if self._active == 0:
                self._idle.notify_all()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            try:
                item()  # type: ignore[operator]
            except Exception:
                logger.debug("Delivery task failed", exc_info=True)
            finally:
                self._done()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until all submitted work has finished.

        Returns:
            True if idle, False if the timeout elapsed first.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._active == 0, timeout=timeout)

    def close(self, timeout: float | None = 1.0) -> None:
        """Stop accepting work; workers exit once they reach the stop marker.

        Never blocks on a full queue. Workers that cannot be signalled are
        daemons and end with the interpreter.
        """
        if self._closed:
            return
        self._closed = True
        for _ in self._threads:
            try:
                self._queue.put_nowait(_STOP)
            except queue.Full:
                break
        for thread in self._threads:
            thread.join(timeout)


class InlineDispatcher:
    """Runs work immediately on the caller's thread. For tests and scripts."""

    def submit(self, fn: Callable[[], None]) -> bool:
        try:
            fn()
        except Exception:
            logger.debug("Delivery task failed", exc_info=True)
        return True

    def wait_idle(self, timeout: float | None = None) -> bool:
        return True

    def close(self, timeout: float | None = None) -> None:
        return None

"""
Background Dispatch
===================

Fire-and-forget execution for audit and metrics writes. Work is handed to a
small thread pool; failures are logged in the completion callback and never
reach the caller.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from threading import Lock
from typing import Any, Callable, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundDispatcher:
    """
    Runs callables off the request path.

    Usage:
        dispatcher = BackgroundDispatcher(max_workers=2)
        dispatcher.submit(audit.log_batch, events, description="clarification audit")
        ...
        dispatcher.shutdown()
    """

    def __init__(self, max_workers: int = 2, name: str = "audit"):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=f"{name}-dispatch")
        self._pending: Set[Future] = set()
        self._lock = Lock()
        self._closed = False
        self.failures = 0

    def submit(self, fn: Callable[..., Any], *args: Any, description: str = "background task",
               **kwargs: Any) -> Optional[Future]:
        """
        Schedule fn(*args, **kwargs); never raises.

        Returns:
            The future, or None if the task could not be scheduled
        """
        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except RuntimeError as e:
            # Executor already shut down
            logger.warning(f"Dropped {description}: {e}")
            return None

        with self._lock:
            self._pending.add(future)
        future.add_done_callback(lambda f: self._on_done(f, description))
        return future

    def _on_done(self, future: Future, description: str) -> None:
        with self._lock:
            self._pending.discard(future)
        exc = future.exception()
        if exc is not None:
            self.failures += 1
            logger.warning(f"{description} failed (ignored): {exc}")

    def flush(self, timeout: Optional[float] = 5.0) -> bool:
        """Wait for scheduled work; returns True if everything finished."""
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True) -> None:
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=wait_for_pending)

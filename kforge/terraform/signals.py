"""
Cancellation support for long-running operations.

A CancellationToken is shared by everything one command does: the executor
terminates its running Terraform process group when the token fires, and the
polling loops stop waiting and raise OperationCancelled.
"""

import logging
import signal
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from kforge.errors import OperationCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe, one-shot cancellation flag with callbacks."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Trigger cancellation and run registered callbacks once."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)

        for callback in callbacks:
            try:
                callback()
            except OSError as e:
                logger.warning(f"Cancellation callback failed: {e}")

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback to run on cancellation.

        If the token is already cancelled the callback runs immediately.

        Returns:
            A function that unregisters the callback
        """
        with self._lock:
            already = self._event.is_set()
            if not already:
                self._callbacks.append(callback)

        if already:
            callback()

        def remove() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return remove

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation cancelled by operator")

    def sleep(self, seconds: float) -> None:
        """Sleep for the given time, raising OperationCancelled if cancelled meanwhile."""
        if self._event.wait(seconds):
            raise OperationCancelled("Operation cancelled by operator")


@contextmanager
def interrupt_handler(token: CancellationToken) -> Iterator[Optional[CancellationToken]]:
    """
    Route SIGINT to the cancellation token for the duration of the block.

    Signal handlers can only be installed from the main thread; elsewhere
    the block runs without one.
    """
    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    def handle(signum, frame):
        logger.warning("Interrupt received, please wait for Terraform to terminate.")
        token.cancel()

    previous = signal.signal(signal.SIGINT, handle)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)

"""Background work that reports completion through a queue."""

import threading
from collections.abc import Callable
from queue import Queue
from typing import Any

from tidytop.logging_setup import logger


class SingleFlight:
    """
    Runs at most one unit of work at a time on a daemon thread.

    ``submit`` while work is outstanding is a no-op returning False, so
    duplicate requests coalesce into the one in flight. The completion
    message built by ``on_done`` (or ``on_error``) is put on ``outbox`` for
    the consumer to pick up on its next pass. Abandoned work still runs to
    its next cancellation check but its completion is never delivered.
    """

    def __init__(self, outbox: Queue[Any], name: str) -> None:
        self._outbox = outbox
        self._name = name
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._cancel = threading.Event()
        self._running = False

    @property
    def busy(self) -> bool:
        return self._running

    def submit(
        self,
        work: Callable[[threading.Event], Any],
        on_done: Callable[[Any], Any],
        on_error: Callable[[Exception], Any],
    ) -> bool:
        """Start ``work(cancel_event)`` unless something is already running."""
        with self._lock:
            if self.busy:
                logger.debug(f"{self._name}: request coalesced into the running one")
                return False
            cancel = threading.Event()
            self._cancel = cancel
            self._running = True
            self._thread = threading.Thread(
                target=self._run,
                args=(work, on_done, on_error, cancel),
                daemon=True,
                name=self._name,
            )
            self._thread.start()
            return True

    def _run(
        self,
        work: Callable[[threading.Event], Any],
        on_done: Callable[[Any], Any],
        on_error: Callable[[Exception], Any],
        cancel: threading.Event,
    ) -> None:
        message = None
        try:
            message = on_done(work(cancel))
        except Exception as e:
            logger.exception(f"{self._name}: background work failed")
            message = on_error(e)
        finally:
            # Idle again before the completion is visible to the consumer
            with self._lock:
                self._running = False
                if message is not None and not cancel.is_set():
                    self._outbox.put(message)

    def abandon(self) -> None:
        """Ask the running work to stop and drop its completion."""
        self._cancel.set()

    def join(self, timeout: float | None = None) -> None:
        """Wait for the running work, if any, to finish."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)

"""One-shot latch used while a process is being spawned.

The constructing thread performs the native spawn call and then waits on the
gate. The gate is opened either by the spawn path itself when the call fails
(after recording the error) or by the reaper thread as the first thing it
does, before it blocks waiting for the child. A constructor that returns has
therefore seen the spawn attempt conclude and, on success, a running reaper.
"""

from __future__ import annotations

import logging
import threading

__all__ = ["Gate"]

logger = logging.getLogger(__name__)


class Gate:
    """Thread-safe one-shot latch with a set-once error slot.

    Example:
        gate = Gate()

        def reaper():
            gate.open()
            ...

        threading.Thread(target=reaper, daemon=True).start()
        gate.wait_for_open()
        if gate.read_error() is not None:
            raise gate.read_error()
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._opened = False
        self._error: BaseException | None = None

    @property
    def opened(self) -> bool:
        """Whether open() has been called."""
        with self._cond:
            return self._opened

    def open(self) -> None:
        """Open the gate and release every thread in wait_for_open().

        Calling it again only repeats the wakeup.
        """
        with self._cond:
            self._opened = True
            self._cond.notify_all()

    def wait_for_open(self) -> None:
        """Block until the gate is open.

        A KeyboardInterrupt delivered while waiting does not end the wait.
        It is held and raised again once the gate has opened.
        """
        interrupted: KeyboardInterrupt | None = None
        with self._cond:
            while not self._opened:
                try:
                    self._cond.wait()
                except KeyboardInterrupt as e:
                    logger.debug("Interrupted while waiting for gate, deferring")
                    interrupted = e
        if interrupted is not None:
            raise interrupted

    def record_error(self, error: BaseException) -> None:
        """Save the failure of the spawn attempt. Only the first error is kept."""
        with self._cond:
            if self._error is None:
                self._error = error
            else:
                logger.debug(f"Gate already holds an error, ignoring {error!r}")

    def read_error(self) -> BaseException | None:
        """Return the recorded spawn failure, if any."""
        with self._cond:
            return self._error

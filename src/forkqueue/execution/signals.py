"""Signal wakeup - turn asynchronous signal delivery into a readable fd.

The controller never does real work inside a signal handler. Handlers only
bump a counter or record a signal number; ``signal.set_wakeup_fd`` makes the
interpreter write a byte into a self-pipe for every delivered signal, so the
controller can block on ``select`` until either a child exits (SIGCHLD) or a
termination is requested (SIGINT/SIGTERM), and then reconcile its tracking
state on the normal control path.

ARCHITECTURE
────────────
::

    SignalWakeup
      ├── .install(handlers)   ─ self-pipe + set_wakeup_fd + signal.signal
      ├── .wait(timeout)       ─ select() on the pipe, True if a signal woke us
      ├── .uninstall()         ─ restore previous handlers and wakeup fd
      └── .close_in_child()    ─ drop all of it inside a forked worker

    Handlers and the wakeup fd can only be set from the main thread. Off the
    main thread ``install`` returns False and ``wait`` degrades to a sleep,
    which turns every caller into a plain poll loop.
"""

from __future__ import annotations

import contextlib
import os
import select
import signal
import threading
import time
from collections.abc import Callable, Iterator
from typing import Any

from forkqueue.core.logging import get_logger

logger = get_logger(__name__)

SignalHandler = Callable[[int, Any], None]

# held back across fork until the child has dropped the controller's handlers
FORK_BLOCKED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGCHLD)


def reset_signal_dispositions(signums=FORK_BLOCKED_SIGNALS) -> None:
    """Give a freshly forked process default dispositions and no wakeup fd."""
    signal.set_wakeup_fd(-1)
    for signum in signums:
        signal.signal(signum, signal.SIG_DFL)


def block_fork_signals() -> set[signal.Signals]:
    """Block the controller's signals for a fork; returns the previous mask.

    A signal aimed at a worker between ``fork()`` and the reset of its
    dispositions stays pending instead of reaching the inherited controller
    handler, and is delivered with its default action once the worker calls
    ``restore_signal_mask``.
    """
    return signal.pthread_sigmask(signal.SIG_BLOCK, FORK_BLOCKED_SIGNALS)


def restore_signal_mask(previous: set[signal.Signals]) -> None:
    signal.pthread_sigmask(signal.SIG_SETMASK, previous)


class SignalWakeup:
    """Self-pipe woken by every signal delivered to the controller."""

    def __init__(self) -> None:
        self._read_fd = -1
        self._write_fd = -1
        self._previous_wakeup_fd: int | None = None
        self._previous_handlers: dict[int, Any] = {}

    @property
    def installed(self) -> bool:
        return self._read_fd >= 0

    def install(self, handlers: dict[int, SignalHandler]) -> bool:
        """Install ``handlers`` and route signal delivery into the pipe.

        Returns:
            True if installed, False when not running in the main thread.
        """
        if self.installed:
            return True
        if threading.current_thread() is not threading.main_thread():
            logger.debug("signals.not_main_thread", fallback="polling")
            return False

        read_fd, write_fd = os.pipe()
        os.set_blocking(read_fd, False)
        os.set_blocking(write_fd, False)
        self._read_fd, self._write_fd = read_fd, write_fd

        self._previous_wakeup_fd = signal.set_wakeup_fd(write_fd, warn_on_full_buffer=False)
        for signum, handler in handlers.items():
            self._previous_handlers[signum] = signal.signal(signum, handler)
        logger.debug("signals.installed", signals=[signal.Signals(s).name for s in handlers])
        return True

    def uninstall(self) -> None:
        """Restore the handlers and wakeup fd that were active before ``install``."""
        if not self.installed:
            return
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        self._previous_handlers.clear()
        signal.set_wakeup_fd(self._previous_wakeup_fd if self._previous_wakeup_fd is not None else -1)
        self._previous_wakeup_fd = None
        self._close_fds()

    @contextlib.contextmanager
    def installed_for(self, handlers: dict[int, SignalHandler]) -> Iterator[bool]:
        """Scope ``install``/``uninstall`` to a ``with`` block."""
        active = self.install(handlers)
        try:
            yield active
        finally:
            if active:
                self.uninstall()

    def wait(self, timeout: float) -> bool:
        """Block until a signal arrives or ``timeout`` seconds pass.

        Returns:
            True if woken by a signal, False on timeout.
        """
        if not self.installed:
            time.sleep(timeout)
            return False
        ready, _, _ = select.select([self._read_fd], [], [], timeout)
        if not ready:
            return False
        self._drain_pipe()
        return True

    def close_in_child(self) -> None:
        """Forget the controller's signal plumbing inside a forked worker.

        Handlers are reset to their defaults rather than restored, since the
        worker must be killable by SIGTERM and must never run the controller's
        termination logic.
        """
        if self.installed:
            reset_signal_dispositions(tuple(self._previous_handlers))
            self._previous_handlers.clear()
            self._previous_wakeup_fd = None
            self._close_fds()

    def _drain_pipe(self) -> None:
        while True:
            try:
                if not os.read(self._read_fd, 512):
                    return
            except BlockingIOError:
                return

    def _close_fds(self) -> None:
        for fd in (self._read_fd, self._write_fd):
            if fd >= 0:
                os.close(fd)
        self._read_fd = self._write_fd = -1

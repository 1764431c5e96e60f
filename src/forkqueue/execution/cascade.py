"""Termination cascade - tear down every worker when the controller is told to stop.

SIGINT/SIGTERM handlers only record which signal arrived. The controller
checks ``requested`` at each of its control points (before a spawn, while
waiting for a slot, during spawn backoff, while collecting) and then calls
``fire()``, which runs exactly once:

1. ``killpg(getpgrp(), SIGTERM)`` - every process in the controller's group;
2. ``kill(pid, SIGTERM)`` for each tracked worker - reaches workers that made
   themselves session leaders and so left the controller's group;
3. ``os._exit(128 + signum)`` - no waiting for children, no status flush.

Both deliveries are kept on purpose: neither one alone reaches every worker.
"""

from __future__ import annotations

import os
import signal
from typing import NoReturn

from forkqueue.core.logging import get_logger
from forkqueue.execution.models import RunningSet
from forkqueue.execution.detach import flush_std_streams

logger = get_logger(__name__)

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class TerminationCascade:
    """Signal-triggered, destructive teardown of the whole worker set."""

    def __init__(self, running: RunningSet) -> None:
        self._running = running
        self._signum: int | None = None

    @property
    def requested(self) -> bool:
        return self._signum is not None

    @property
    def signum(self) -> int | None:
        return self._signum

    def on_signal(self, signum, frame) -> None:
        if self._signum is None:
            self._signum = signum

    def handlers(self) -> dict:
        return {signum: self.on_signal for signum in TERMINATION_SIGNALS}

    def check(self) -> None:
        """Fire the cascade if a termination signal has been received."""
        if self._signum is not None:
            self.fire()

    def fire(self) -> NoReturn:
        signum = self._signum if self._signum is not None else signal.SIGTERM
        logger.warning(
            "cascade.terminating",
            signal=signal.Signals(signum).name,
            running=len(self._running),
        )

        # the group-wide signal comes back to us as well
        for sig in TERMINATION_SIGNALS:
            try:
                signal.signal(sig, signal.SIG_IGN)
            except ValueError:
                pass  # not the main thread; nothing was installed here

        pgid = os.getpgrp()
        try:
            os.killpg(pgid, signal.SIGTERM)
            logger.info("cascade.signaled_group", pgid=pgid)
        except (ProcessLookupError, PermissionError) as exc:
            logger.warning("cascade.group_signal_failed", pgid=pgid, error=str(exc))

        for pid in self._running.pids():
            try:
                os.kill(pid, signal.SIGTERM)
            except ProcessLookupError:
                continue
            logger.info("cascade.signaled_worker", pid=pid)

        flush_std_streams()
        os._exit(128 + signum)

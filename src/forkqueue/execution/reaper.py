"""Zombie reaper - collect terminated workers without blocking.

The SIGCHLD handler only increments ``pending``; it never touches the tracking
tables. ``drain()`` runs on the controller's control path, resets the counter
and then collects every tracked worker that has already exited, recording its
status and releasing its slot.

Only pids in the :class:`RunningSet` are waited for. Children the host process
created by other means (``subprocess``, a fire-and-forget dispatch) are left
to whoever owns them.

Example::

    reaper = ZombieReaper(running, statuses)
    with wakeup.installed_for(reaper.handlers()):
        ...
        if reaper.pending:
            freed = reaper.drain()
"""

from __future__ import annotations

import os
import signal

from forkqueue.core.logging import get_logger
from forkqueue.execution.models import JobStatusTable, RunningSet

logger = get_logger(__name__)

# recorded for a tracked worker that can no longer be waited for
LOST_STATUS = 255


def exit_status(wait_status: int) -> int:
    """Translate a raw ``waitpid`` status into 0-255.

    A normal exit yields its exit code; death by signal N yields ``128 + N``,
    the shell convention, so a killed worker never reads as a success.
    """
    code = os.waitstatus_to_exitcode(wait_status)
    if code < 0:
        return 128 - code
    return code


class ZombieReaper:
    """Non-blocking collector of terminated workers."""

    def __init__(self, running: RunningSet, statuses: JobStatusTable) -> None:
        self._running = running
        self._statuses = statuses
        self._pending = 0

    @property
    def pending(self) -> int:
        """Child terminations signalled since the last drain."""
        return self._pending

    def on_sigchld(self, signum, frame) -> None:
        self._pending += 1

    def handlers(self) -> dict:
        return {signal.SIGCHLD: self.on_sigchld}

    def drain(self) -> int:
        """Collect every tracked worker that has already terminated.

        Never blocks. Returns the number of workers collected; 0 leaves both
        tracking tables untouched.
        """
        self._pending = 0
        collected = 0
        for pid in self._running.pids():
            try:
                reaped, wait_status = os.waitpid(pid, os.WNOHANG)
            except ChildProcessError:
                self._record_lost(pid)
                collected += 1
                continue
            if reaped == 0:
                continue
            self.collect(pid, wait_status)
            collected += 1
        if collected:
            logger.debug("reaper.drained", collected=collected, running=len(self._running))
        return collected

    def collect(self, pid: int, wait_status: int) -> int:
        """Record the outcome of ``pid`` and release its slot."""
        status = exit_status(wait_status)
        worker = self._running.remove(pid)
        job_id = worker.job_id if worker else None
        self._statuses.record(pid, job_id, status)
        if status == 0:
            logger.debug("reaper.collected", pid=pid, job_id=job_id, status=status)
        else:
            logger.info("reaper.collected", pid=pid, job_id=job_id, status=status)
        return status

    def _record_lost(self, pid: int) -> None:
        worker = self._running.remove(pid)
        job_id = worker.job_id if worker else None
        self._statuses.record(pid, job_id, LOST_STATUS)
        logger.warning("reaper.lost_child", pid=pid, job_id=job_id, status=LOST_STATUS)

"""Fire-and-forget dispatch of a single detached worker.

``AsyncDispatcher.dispatch`` forks one worker that detaches exactly like a
pool worker (see :mod:`forkqueue.execution.detach`), optionally closes every
inherited descriptor above stderr, runs the callback and exits. The caller
gets nothing back: the pid is neither recorded nor waited for, and there is
no ceiling on how many such workers exist.

Example::

    AsyncDispatcher(chdir="/tmp", setsid=True).dispatch(send_report, {"to": "ops"})
"""

from __future__ import annotations

import os
import time
from typing import Any

from forkqueue.core.errors import SpawnError, classify_spawn_error
from forkqueue.core.logging import get_logger
from forkqueue.execution.config import DetachPolicy
from forkqueue.execution.detach import flush_std_streams
from forkqueue.execution.retry import ConstantBackoff
from forkqueue.execution.signals import block_fork_signals, restore_signal_mask
from forkqueue.execution.spawner import WorkFn, run_worker

logger = get_logger(__name__)

DEFAULT_JOB_NAME = "async"


class AsyncDispatcher:
    """Spawn detached, unsupervised workers.

    Args:
        chdir: Working directory of the worker (``/`` if missing).
        umask: File creation mask applied in the worker; inherited when None.
        setsid: Make the worker a session leader.
        redirect_output: Send the worker's stdout/stderr to the null device.
        close_fds: Close inherited descriptors 3-255 in the worker.
        job_name: Job id passed to the callback and used in log prefixes.
        spawn_backoff: Wait before retrying a transient fork failure.
        spawn_retries: Transient fork failures tolerated per dispatch.
    """

    def __init__(
        self,
        chdir: str | None = None,
        umask: int | None = None,
        setsid: bool = False,
        redirect_output: bool = True,
        close_fds: bool = True,
        job_name: str = DEFAULT_JOB_NAME,
        spawn_backoff: float = 5.0,
        spawn_retries: int = 10,
    ) -> None:
        self.policy = DetachPolicy(chdir=chdir, umask=umask, setsid=setsid)
        self.redirect_output = redirect_output
        self.close_fds = close_fds
        self.job_name = job_name
        self._retry = ConstantBackoff(max_retries=spawn_retries, delay=spawn_backoff)

    def dispatch(self, work_fn: WorkFn, args: Any = None) -> None:
        """Fork a detached worker running ``work_fn(job_name, args)``.

        Raises:
            SpawnError: The worker could not be created.
        """
        attempt = 0
        while True:
            flush_std_streams()
            previous_mask = block_fork_signals()
            try:
                pid = os.fork()
            except OSError as exc:
                restore_signal_mask(previous_mask)
                error = classify_spawn_error(exc, job_id=self.job_name, retry_after=self._retry.delay)
                if not self._retry.should_retry(attempt, error):
                    logger.error("async.spawn_failed", job_id=self.job_name, attempts=attempt + 1, **error.to_dict())
                    raise SpawnError(
                        error.message,
                        context=error.context,
                        cause=exc,
                    ) from exc
                attempt += 1
                logger.warning(
                    "async.spawn_retry",
                    job_id=self.job_name,
                    attempt=attempt,
                    delay_s=self._retry.delay,
                    error=error.message,
                )
                time.sleep(self._retry.next_delay(attempt))
                continue
            break

        if pid == 0:
            run_worker(
                self.job_name,
                work_fn,
                args,
                self.policy,
                output_path=os.devnull if self.redirect_output else None,
                close_fds=self.close_fds,
                signal_mask=previous_mask,
            )
        restore_signal_mask(previous_mask)

        logger.debug("async.dispatched", job_id=self.job_name, pid=pid)

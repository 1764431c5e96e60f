"""Process spawner - one forked worker per job.

ARCHITECTURE
────────────
::

    ProcessSpawner(work_fn, config, wakeup)
      └── .spawn(job_id) ─ fork
             │
             ├── parent: WorkerProcess(pid, job_id, started_at)
             └── child:  close signal plumbing
                         reset logging, set [CHILD job pid/ppid] prefix
                         detach_process(policy, output_path)
                         work_fn(job_id, args) -> exit 0 / 1
                         os._exit()  (never returns into the caller)

The child leaves through ``os._exit`` whatever happens inside the callback, so
it can never fall through into the controller's dispatch loop, run its
``finally`` blocks, or flush buffers it inherited from the controller.
"""

from __future__ import annotations

import os
import signal
import time
from collections.abc import Callable
from typing import Any, NoReturn

from forkqueue.core.errors import classify_spawn_error
from forkqueue.core.logging import get_logger, reset_after_fork, set_prefix
from forkqueue.execution.config import DetachPolicy, PoolConfig
from forkqueue.execution.detach import detach_process, flush_std_streams
from forkqueue.execution.models import WorkerProcess
from forkqueue.execution.signals import (
    SignalWakeup,
    block_fork_signals,
    reset_signal_dispositions,
    restore_signal_mask,
)

logger = get_logger(__name__)

WorkFn = Callable[[str, Any], Any]

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


def invoke_work(work_fn: WorkFn, job_id: str, args: Any) -> int:
    """Run the work callback and translate its outcome into an exit code."""
    logger.debug("worker.running", job_id=job_id)
    t0 = time.monotonic()
    try:
        status = work_fn(job_id, args)
    except SystemExit as exc:
        code = exc.code if isinstance(exc.code, int) else (EXIT_SUCCESS if exc.code is None else EXIT_FAILURE)
        if not 0 <= code <= 255:
            code = EXIT_FAILURE
        logger.debug("worker.exit_requested", job_id=job_id, exit_code=code)
        return code
    except Exception:
        logger.exception("worker.crashed", job_id=job_id, duration_s=round(time.monotonic() - t0, 3))
        return EXIT_FAILURE

    duration = round(time.monotonic() - t0, 3)
    if status:
        logger.debug("worker.succeeded", job_id=job_id, duration_s=duration)
        return EXIT_SUCCESS
    logger.warning("worker.failed", job_id=job_id, duration_s=duration)
    return EXIT_FAILURE


def run_worker(
    job_id: str,
    work_fn: WorkFn,
    args: Any,
    policy: DetachPolicy,
    *,
    output_path: str | None = None,
    close_fds: bool = False,
    wakeup: SignalWakeup | None = None,
    signal_mask: set[signal.Signals] | None = None,
) -> NoReturn:
    """Body of a forked worker: detach, run the job, exit.

    Must only be called in the child branch of ``os.fork()``. ``signal_mask``
    is the mask to restore once the controller's handlers are gone, as
    returned by ``block_fork_signals()`` before the fork.
    """
    code = EXIT_FAILURE
    try:
        if wakeup is not None and wakeup.installed:
            wakeup.close_in_child()
        else:
            reset_signal_dispositions()
        if signal_mask is not None:
            restore_signal_mask(signal_mask)

        reset_after_fork()
        set_prefix(f"[CHILD {job_id} {os.getpid()}/{os.getppid()}]")

        detach_process(policy, output_path=output_path, close_fds=close_fds)
        code = invoke_work(work_fn, job_id, args)
    except Exception:
        logger.exception("worker.setup_failed", job_id=job_id)
        code = EXIT_FAILURE
    finally:
        flush_std_streams()
        os._exit(code)


class ProcessSpawner:
    """Creates one detached worker process per job."""

    def __init__(
        self,
        work_fn: WorkFn,
        config: PoolConfig,
        wakeup: SignalWakeup | None = None,
    ) -> None:
        self._work_fn = work_fn
        self._config = config
        self._wakeup = wakeup

    def spawn(self, job_id: str) -> WorkerProcess:
        """Fork a worker for ``job_id`` and return it (parent side only).

        Raises:
            TransientSpawnError: fork failed for lack of resources; retry later.
            SpawnError: fork failed for any other reason.
        """
        flush_std_streams()
        previous_mask = block_fork_signals()
        try:
            pid = os.fork()
        except OSError as exc:
            restore_signal_mask(previous_mask)
            raise classify_spawn_error(exc, job_id=job_id, retry_after=self._config.spawn_backoff) from exc

        if pid == 0:
            run_worker(
                job_id,
                self._work_fn,
                self._config.args,
                self._config.detach,
                output_path=self._config.output_path(job_id),
                wakeup=self._wakeup,
                signal_mask=previous_mask,
            )
        restore_signal_mask(previous_mask)

        worker = WorkerProcess(pid=pid, job_id=job_id)
        logger.debug("spawner.forked", job_id=job_id, pid=pid)
        return worker

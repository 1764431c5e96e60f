"""Job queue dispatcher - run every job in its own process, never more than N at once.

Manifesto:
    A batch of independent jobs should use the machine's cores without
    overcommitting them. Each job runs in a forked worker, so a crash in one
    job cannot corrupt the controller or another job, and the controller
    needs no locks: only it ever touches the tracking tables.

ARCHITECTURE
────────────
::

    JobQueueDispatcher(jobs, work_fn, config)
      └── .run()
            ├── install SIGCHLD/SIGINT/SIGTERM handlers + wakeup fd
            ├── for each job, in order:
            │     ├── throttle: wait on the wakeup fd while running >= ceiling,
            │     │             draining the reaper after every wakeup
            │     ├── spawn:    ProcessSpawner.spawn(job)
            │     │             transient failure -> backoff, same job again
            │     │             hard failure      -> skip the job / abort
            │     └── stagger:  short pause before the next spawn
            ├── collect: wait until every worker has been reaped
            └── restore handlers, return success

    A SIGINT/SIGTERM seen at any of those waits fires the TerminationCascade,
    which kills every worker and exits the controller immediately.

Example::

    def work(job_id, args):
        return build(job_id, **args)

    dispatcher = JobQueueDispatcher(["a", "b", "c"], work, PoolConfig(concurrency=2))
    ok = dispatcher.run()
    print(dispatcher.summary().to_dict())
"""

from __future__ import annotations

import time
import uuid
from collections import Counter
from collections.abc import Iterable

from forkqueue.core.errors import InvalidConfigError, SpawnError
from forkqueue.core.logging import LogContext, get_logger
from forkqueue.execution.cascade import TerminationCascade
from forkqueue.execution.config import PoolConfig, SpawnFailurePolicy
from forkqueue.execution.models import (
    JobStatusTable,
    RunningSet,
    RunSummary,
    WorkerProcess,
)
from forkqueue.execution.reaper import ZombieReaper
from forkqueue.execution.retry import ConstantBackoff, RetryStrategy
from forkqueue.execution.signals import SignalWakeup
from forkqueue.execution.spawner import ProcessSpawner, WorkFn

logger = get_logger(__name__)


class JobQueueDispatcher:
    """Bounded-concurrency process pool over a fixed list of jobs.

    A dispatcher runs once. Its tracking state stays readable after ``run()``
    returns:

    - ``status_table``: exit status per reaped worker pid;
    - ``spawn_failures``: jobs whose worker could never be created;
    - ``summary()``: counts, retries and timing of the run.

    Job ids must be unique; a repeated id raises ``InvalidConfigError``.
    """

    def __init__(
        self,
        jobs: Iterable[str],
        work_fn: WorkFn,
        config: PoolConfig | None = None,
        run_id: str | None = None,
        retry_strategy: RetryStrategy | None = None,
    ) -> None:
        self._jobs = [str(job) for job in jobs]
        duplicates = sorted(job for job, count in Counter(self._jobs).items() if count > 1)
        if duplicates:
            raise InvalidConfigError("jobs", duplicates, f"Job ids must be unique, repeated: {duplicates}")
        self._config = config or PoolConfig()
        self.run_id = run_id or uuid.uuid4().hex[:12]

        self.running = RunningSet()
        self.status_table = JobStatusTable()
        self.spawn_failures: list[str] = []

        self._wakeup = SignalWakeup()
        self._reaper = ZombieReaper(self.running, self.status_table)
        self._cascade = TerminationCascade(self.running)
        self._spawner = ProcessSpawner(work_fn, self._config, self._wakeup)
        self._retry = retry_strategy or ConstantBackoff(
            max_retries=self._config.spawn_retries,
            delay=self._config.spawn_backoff,
        )

        self._dispatched = 0
        self._spawn_retries = 0
        self._started: float | None = None
        self._duration = 0.0
        self._success = False

    @property
    def config(self) -> PoolConfig:
        return self._config

    @property
    def jobs(self) -> list[str]:
        return list(self._jobs)

    # ── Public API ───────────────────────────────────────────────

    def run(self) -> bool:
        """Dispatch every job and wait for all workers.

        Returns:
            True iff every worker exited 0 and no worker failed to spawn.

        Raises:
            RuntimeError: The dispatcher has already run.
        """
        if self._started is not None:
            raise RuntimeError(f"Dispatcher {self.run_id} has already run")
        self._started = time.monotonic()

        cfg = self._config
        handlers = {**self._reaper.handlers(), **self._cascade.handlers()}
        with LogContext(run_id=self.run_id):
            logger.info(
                "dispatcher.started",
                jobs=len(self._jobs),
                concurrency=cfg.concurrency if not cfg.unbounded else "unbounded",
            )
            with self._wakeup.installed_for(handlers) as signals_active:
                if not signals_active:
                    logger.debug("dispatcher.polling", poll_interval=cfg.poll_interval)
                self._dispatch_all()
                self._collect_all()

            self._duration = time.monotonic() - self._started
            self._success = self.status_table.all_succeeded() and not self.spawn_failures
            if self._success:
                logger.debug("dispatcher.all_workers_succeeded", jobs=len(self._jobs))
            else:
                logger.error(
                    "dispatcher.failed",
                    failed_pids=sorted(self.status_table.failed()),
                    spawn_failures=list(self.spawn_failures),
                )
            logger.info("dispatcher.finished", **self.summary().to_dict())
        return self._success

    def summary(self) -> RunSummary:
        statuses = [status for _, _, status in self.status_table.outcomes()]
        return RunSummary(
            run_id=self.run_id,
            jobs_total=len(self._jobs),
            dispatched=self._dispatched,
            succeeded=sum(1 for status in statuses if status == 0),
            failed=sum(1 for status in statuses if status != 0),
            spawn_retries=self._spawn_retries,
            spawn_failures=list(self.spawn_failures),
            peak_running=self.running.high_water,
            duration_seconds=self._duration,
            success=self._success,
        )

    # ── Dispatch loop ────────────────────────────────────────────

    def _dispatch_all(self) -> None:
        cfg = self._config
        for index, job_id in enumerate(self._jobs):
            self._wait_for_slot()

            worker = self._spawn_with_retry(job_id)
            if worker is None:
                self.spawn_failures.append(job_id)
                if cfg.on_spawn_failure is SpawnFailurePolicy.ABORT:
                    logger.error(
                        "dispatcher.aborted",
                        job_id=job_id,
                        not_dispatched=len(self._jobs) - index - 1,
                    )
                    return
                continue

            self.running.add(worker)
            self._dispatched += 1
            logger.info(
                "dispatcher.spawned",
                job_id=job_id,
                pid=worker.pid,
                running=len(self.running),
            )
            self._pause(cfg.spawn_stagger)

    def _wait_for_slot(self) -> None:
        cfg = self._config
        self._cascade.check()
        while not cfg.unbounded and len(self.running) >= cfg.concurrency:
            self._wait(cfg.poll_interval)

    def _spawn_with_retry(self, job_id: str) -> WorkerProcess | None:
        attempt = 0
        while True:
            self._cascade.check()
            try:
                return self._spawner.spawn(job_id)
            except SpawnError as exc:
                if not self._retry.should_retry(attempt, exc):
                    logger.error(
                        "dispatcher.spawn_failed",
                        job_id=job_id,
                        attempts=attempt + 1,
                        **exc.to_dict(),
                    )
                    return None
                delay = self._retry.next_delay(attempt)
                attempt += 1
                self._spawn_retries += 1
                logger.warning(
                    "dispatcher.spawn_retry",
                    job_id=job_id,
                    attempt=attempt,
                    delay_s=delay,
                    error=exc.message,
                )
                self._pause(delay)

    def _collect_all(self) -> None:
        if len(self.running):
            logger.debug("dispatcher.collecting", running=len(self.running))
        while len(self.running):
            self._wait(self._config.poll_interval)

    # ── Waiting ──────────────────────────────────────────────────

    def _wait(self, timeout: float) -> None:
        """One bounded wait for a signal, then reconcile tracking state."""
        woken = self._wakeup.wait(timeout)
        self._cascade.check()
        if self._reaper.pending or not woken:
            self._reaper.drain()

    def _pause(self, seconds: float) -> None:
        """Sleep ``seconds`` while still reaping workers and honouring termination."""
        deadline = time.monotonic() + seconds
        while (remaining := deadline - time.monotonic()) > 0:
            self._wakeup.wait(min(remaining, self._config.poll_interval))
            self._cascade.check()
            if self._reaper.pending:
                self._reaper.drain()
        self._cascade.check()

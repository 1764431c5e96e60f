"""forkqueue execution -- forked workers, throttling, reaping, teardown.

ARCHITECTURE
────────────
::

    JobQueueDispatcher (one run over a fixed job list)
      ├── ProcessSpawner     ─ fork + detach + callback + os._exit
      ├── ZombieReaper       ─ SIGCHLD counter, non-blocking waitpid
      ├── TerminationCascade ─ SIGINT/SIGTERM -> kill group + workers, exit
      ├── SignalWakeup       ─ self-pipe wakeup for every blocking wait
      └── ConstantBackoff    ─ bounded retry of EAGAIN/ENOMEM fork failures

    AsyncDispatcher (fire-and-forget, unsupervised single worker)
"""

from forkqueue.execution.async_dispatch import AsyncDispatcher
from forkqueue.execution.cascade import TerminationCascade
from forkqueue.execution.config import DetachPolicy, PoolConfig, SpawnFailurePolicy
from forkqueue.execution.dispatcher import JobQueueDispatcher
from forkqueue.execution.models import JobStatusTable, RunningSet, RunSummary, WorkerProcess
from forkqueue.execution.reaper import ZombieReaper, exit_status
from forkqueue.execution.retry import ConstantBackoff, RetryStrategy
from forkqueue.execution.signals import SignalWakeup
from forkqueue.execution.spawner import ProcessSpawner

__all__ = [
    "AsyncDispatcher",
    "ConstantBackoff",
    "DetachPolicy",
    "JobQueueDispatcher",
    "JobStatusTable",
    "PoolConfig",
    "ProcessSpawner",
    "RetryStrategy",
    "RunningSet",
    "RunSummary",
    "SignalWakeup",
    "SpawnFailurePolicy",
    "TerminationCascade",
    "WorkerProcess",
    "ZombieReaper",
    "exit_status",
]

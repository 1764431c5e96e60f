"""forkqueue - run a list of jobs in forked worker processes, N at a time.

The public surface is re-exported here::

    from forkqueue import JobQueueDispatcher, PoolConfig

    ok = JobQueueDispatcher(jobs, work, PoolConfig(concurrency=4)).run()
"""

__version__ = "0.1.0"

from forkqueue.core.errors import (  # noqa: E402
    CallbackResolutionError,
    ConfigError,
    ForkQueueError,
    InvalidConfigError,
    SpawnError,
    TransientSpawnError,
)
from forkqueue.execution import (  # noqa: E402
    AsyncDispatcher,
    DetachPolicy,
    JobQueueDispatcher,
    PoolConfig,
    RunSummary,
    SpawnFailurePolicy,
)

__all__ = [
    "__version__",
    "AsyncDispatcher",
    "CallbackResolutionError",
    "ConfigError",
    "DetachPolicy",
    "ForkQueueError",
    "InvalidConfigError",
    "JobQueueDispatcher",
    "PoolConfig",
    "RunSummary",
    "SpawnError",
    "SpawnFailurePolicy",
    "TransientSpawnError",
]

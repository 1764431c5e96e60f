"""Immutable per-run configuration for the process pool.

``PoolConfig`` is fixed when a dispatcher is built and never changes during a
run. ``DetachPolicy`` carries the part of it that every forked worker applies
to itself before running its job, and is shared with
:class:`~forkqueue.execution.async_dispatch.AsyncDispatcher`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from forkqueue.core.errors import InvalidConfigError
from forkqueue.core.settings import ForkQueueSettings, default_concurrency


class SpawnFailurePolicy(str, Enum):
    """What the dispatcher does with a job whose worker cannot be forked."""

    SKIP = "skip"      # give the job up, keep dispatching, fail the run
    ABORT = "abort"    # stop dispatching, collect running workers, fail the run


@dataclass(frozen=True)
class DetachPolicy:
    """How a worker detaches itself from the controller after fork.

    Attributes:
        chdir: Directory to change into; ``/`` when it does not exist,
            untouched when ``None``.
        umask: File creation mask to apply; inherited when ``None``.
        setsid: Become the leader of a new session (and process group).
    """

    chdir: str | None = None
    umask: int | None = 0
    setsid: bool = False

    def __post_init__(self) -> None:
        if self.umask is not None and not 0 <= self.umask <= 0o777:
            raise InvalidConfigError("umask", self.umask)


@dataclass(frozen=True)
class PoolConfig:
    """Configuration of one :class:`JobQueueDispatcher` run.

    Attributes:
        concurrency: Max workers alive at once, ``0`` for unbounded.
        detach: Detachment steps applied inside every worker.
        redirect_output: Base path; stdout/stderr of job ``x`` are appended
            to ``<redirect_output>.x``. ``None`` keeps the inherited streams.
        args: Opaque payload handed to every callback invocation.
        poll_interval: Longest single wait for a free slot before re-checking.
        spawn_stagger: Pause after each successful spawn.
        spawn_backoff: Wait before retrying a transient fork failure.
        spawn_retries: Transient fork failures tolerated per job.
        on_spawn_failure: Fate of a job whose worker cannot be created.
    """

    concurrency: int = field(default_factory=default_concurrency)
    detach: DetachPolicy = field(default_factory=DetachPolicy)
    redirect_output: str | None = None
    args: Any = None
    poll_interval: float = 0.2
    spawn_stagger: float = 0.1
    spawn_backoff: float = 5.0
    spawn_retries: int = 10
    on_spawn_failure: SpawnFailurePolicy = SpawnFailurePolicy.SKIP

    def __post_init__(self) -> None:
        if self.concurrency < 0:
            raise InvalidConfigError("concurrency", self.concurrency, "concurrency must be >= 0 (0 = unbounded)")
        if self.poll_interval <= 0:
            raise InvalidConfigError("poll_interval", self.poll_interval)
        for key in ("spawn_stagger", "spawn_backoff", "spawn_retries"):
            if getattr(self, key) < 0:
                raise InvalidConfigError(key, getattr(self, key))
        # accept plain strings from callers and settings
        try:
            policy = SpawnFailurePolicy(self.on_spawn_failure)
        except ValueError as exc:
            raise InvalidConfigError("on_spawn_failure", self.on_spawn_failure) from exc
        object.__setattr__(self, "on_spawn_failure", policy)

    @property
    def unbounded(self) -> bool:
        return self.concurrency == 0

    def output_path(self, job_id: str) -> str | None:
        """Where job ``job_id`` writes stdout/stderr, if redirected."""
        if not self.redirect_output:
            return None
        return f"{self.redirect_output}.{job_id}"

    @classmethod
    def from_settings(cls, settings: ForkQueueSettings, args: Any = None) -> PoolConfig:
        return cls(
            concurrency=settings.concurrency,
            detach=DetachPolicy(
                chdir=settings.chdir,
                umask=settings.umask,
                setsid=settings.setsid,
            ),
            redirect_output=settings.redirect_output,
            args=args,
            poll_interval=settings.poll_interval,
            spawn_stagger=settings.spawn_stagger,
            spawn_backoff=settings.spawn_backoff,
            spawn_retries=settings.spawn_retries,
            on_spawn_failure=settings.on_spawn_failure,
        )

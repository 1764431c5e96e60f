"""Environment-driven settings for forkqueue.

``ForkQueueSettings`` collects every knob of a pool run so that a controller
can be configured from ``FORKQUEUE_*`` environment variables or a ``.env``
file. The execution layer turns it into an immutable
:class:`~forkqueue.execution.config.PoolConfig` via ``PoolConfig.from_settings``.

Examples:
    >>> from forkqueue.core.settings import ForkQueueSettings
    >>> settings = ForkQueueSettings(concurrency=4, setsid=True)
    >>> settings.concurrency
    4

Tags:
    settings, configuration, pydantic, environment
"""

from __future__ import annotations

import os
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_concurrency() -> int:
    """One worker per CPU, at least one."""
    return os.cpu_count() or 1


class ForkQueueSettings(BaseSettings):
    """Settings shared by the CLI and programmatic callers.

    Fields
    ──────
    concurrency       : Max simultaneous workers (0 = unbounded)
    chdir             : Working directory for workers (``/`` if missing)
    umask             : File creation mask applied in workers
    setsid            : Make every worker a session leader
    redirect_output   : Base path; worker output goes to ``<base>.<job>``
    poll_interval     : Upper bound for one throttle wait, seconds
    spawn_stagger     : Pause after each successful spawn, seconds
    spawn_backoff     : Wait before retrying a transient fork failure, seconds
    spawn_retries     : Transient fork failures tolerated per job
    on_spawn_failure  : ``skip`` the job or ``abort`` dispatching
    log_level         : Structlog log level
    log_format        : ``console`` or ``json`` (auto when unset)
    """

    model_config = SettingsConfigDict(
        env_prefix="FORKQUEUE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Pool ─────────────────────────────────────────────────────
    concurrency: int = Field(default_factory=default_concurrency, ge=0)
    chdir: str | None = None
    umask: int = Field(default=0, ge=0, le=0o777)
    setsid: bool = False
    redirect_output: str | None = None

    # ── Scheduling ───────────────────────────────────────────────
    poll_interval: float = Field(default=0.2, gt=0)
    spawn_stagger: float = Field(default=0.1, ge=0)
    spawn_backoff: float = Field(default=5.0, ge=0)
    spawn_retries: int = Field(default=10, ge=0)
    on_spawn_failure: Literal["skip", "abort"] = "skip"

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: Literal["console", "json"] | None = None

    @field_validator("umask", mode="before")
    @classmethod
    def _parse_octal_umask(cls, value):
        # "022" from the environment means octal, as it does for umask(1)
        if isinstance(value, str):
            return int(value, 8)
        return value

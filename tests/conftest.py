"""
Shared pytest fixtures and configuration for forkqueue tests.

This module provides:
- Logging reset between tests (structlog configuration, context, prefix)
- A ``PoolConfig`` factory tuned for fast tests (no stagger, no backoff)
- A scratch directory for marker files written by forked workers
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
import structlog

from forkqueue.core.logging import clear_context, clear_prefix
from forkqueue.execution.config import PoolConfig


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Undo any ``configure_logging`` call a test made."""
    root_handlers = list(logging.root.handlers)
    yield
    logging.root.handlers[:] = root_handlers
    structlog.reset_defaults()
    clear_context()
    clear_prefix()


@pytest.fixture
def job_dir(tmp_path: Path) -> Path:
    """Directory handed to worker callbacks as ``args["dir"]``."""
    path = tmp_path / "jobs"
    path.mkdir()
    return path


@pytest.fixture
def fast_config(job_dir: Path) -> Callable[..., PoolConfig]:
    """Build a ``PoolConfig`` with test-friendly timings.

    Usage::

        config = fast_config(concurrency=3, args={"sleep": 0.1})
    """

    def _make(**overrides) -> PoolConfig:
        args = {"dir": str(job_dir)}
        args.update(overrides.pop("args", {}))
        values = {
            "concurrency": 2,
            "poll_interval": 0.05,
            "spawn_stagger": 0.0,
            "spawn_backoff": 0.0,
            "args": args,
        }
        values.update(overrides)
        return PoolConfig(**values)

    return _make

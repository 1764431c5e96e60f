"""Tracking state owned by the controller.

``RunningSet`` and ``JobStatusTable`` are touched only on the controller's
normal control path; signal handlers never read or write them. Workers never
see them either: a forked worker gets a private copy and leaves it alone.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class WorkerProcess:
    """One forked worker: which job it runs and since when."""

    pid: int
    job_id: str
    started_at: datetime = field(default_factory=_utcnow)
    started_monotonic: float = field(default_factory=time.monotonic, repr=False)

    @property
    def runtime_seconds(self) -> float:
        return time.monotonic() - self.started_monotonic


class RunningSet:
    """Workers believed alive, keyed by pid.

    ``high_water`` remembers the largest size ever reached. Because a worker
    only leaves the set once it has been reaped, the value is an upper bound
    on the number of workers that were really alive at the same time.
    """

    def __init__(self) -> None:
        self._workers: dict[int, WorkerProcess] = {}
        self.high_water = 0

    def add(self, worker: WorkerProcess) -> None:
        self._workers[worker.pid] = worker
        self.high_water = max(self.high_water, len(self._workers))

    def remove(self, pid: int) -> WorkerProcess | None:
        return self._workers.pop(pid, None)

    def get(self, pid: int) -> WorkerProcess | None:
        return self._workers.get(pid)

    def pids(self) -> list[int]:
        """Snapshot of tracked pids, safe to iterate while removing."""
        return list(self._workers)

    def __contains__(self, pid: object) -> bool:
        return pid in self._workers

    def __len__(self) -> int:
        return len(self._workers)

    def __iter__(self) -> Iterator[WorkerProcess]:
        return iter(list(self._workers.values()))


class JobStatusTable:
    """Exit status per reaped worker pid.

    Outcomes are appended as workers are reaped and never removed during a
    run. Should the OS hand out the same pid twice within one run, both
    outcomes are kept: lookups by pid return the latest one, while
    ``all_succeeded``, ``failed`` and ``len`` count every outcome.
    """

    def __init__(self) -> None:
        self._outcomes: list[tuple[int, str | None, int]] = []
        self._latest: dict[int, int] = {}
        self._jobs: dict[int, str] = {}

    def record(self, pid: int, job_id: str | None, status: int) -> None:
        self._outcomes.append((pid, job_id, status))
        self._latest[pid] = status
        if job_id is not None:
            self._jobs[pid] = job_id

    def __getitem__(self, pid: int) -> int:
        return self._latest[pid]

    def __contains__(self, pid: object) -> bool:
        return pid in self._latest

    def __len__(self) -> int:
        return len(self._outcomes)

    def items(self):
        return self._latest.items()

    def outcomes(self) -> list[tuple[int, str | None, int]]:
        """Every ``(pid, job_id, status)`` in reaping order."""
        return list(self._outcomes)

    def job_for(self, pid: int) -> str | None:
        return self._jobs.get(pid)

    def by_job(self) -> dict[str, int]:
        """Exit status keyed by job id (pids of unknown jobs are skipped)."""
        return {job_id: status for _, job_id, status in self._outcomes if job_id is not None}

    def failed(self) -> dict[int, int]:
        return {pid: status for pid, _, status in self._outcomes if status != 0}

    def all_succeeded(self) -> bool:
        return all(status == 0 for _, _, status in self._outcomes)

    def to_dict(self) -> dict[int, int]:
        return dict(self._latest)


@dataclass
class RunSummary:
    """Outcome of one dispatcher run."""

    run_id: str
    jobs_total: int = 0
    dispatched: int = 0
    succeeded: int = 0
    failed: int = 0
    spawn_retries: int = 0
    spawn_failures: list[str] = field(default_factory=list)
    peak_running: int = 0
    duration_seconds: float = 0.0
    success: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "jobs_total": self.jobs_total,
            "dispatched": self.dispatched,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "spawn_retries": self.spawn_retries,
            "spawn_failures": list(self.spawn_failures),
            "peak_running": self.peak_running,
            "duration_seconds": round(self.duration_seconds, 3),
            "success": self.success,
        }

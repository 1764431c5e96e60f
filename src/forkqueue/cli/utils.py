"""
CLI utility helpers: callback resolution, ``--arg`` parsing and output.
"""

from __future__ import annotations

import importlib
import json
from collections.abc import Callable
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from forkqueue.core.errors import CallbackResolutionError
from forkqueue.execution.models import JobStatusTable, RunSummary

console = Console()
err_console = Console(stderr=True)


# ── Input helpers ────────────────────────────────────────────────────────


def resolve_callback(reference: str) -> Callable[..., Any]:
    """Import a work callback from ``module:function`` (or ``module.function``).

    Raises:
        CallbackResolutionError: The module or attribute cannot be loaded, or
            the attribute is not callable.
    """
    if ":" in reference:
        module_path, _, attr_path = reference.partition(":")
    else:
        module_path, _, attr_path = reference.rpartition(".")
    if not module_path or not attr_path:
        raise CallbackResolutionError(reference, "Callback must look like 'module:function'")

    try:
        target: Any = importlib.import_module(module_path)
    except ImportError as exc:
        raise CallbackResolutionError(reference, f"Cannot import module {module_path!r}", cause=exc) from exc

    for name in attr_path.split("."):
        try:
            target = getattr(target, name)
        except AttributeError as exc:
            raise CallbackResolutionError(
                reference, f"{module_path!r} has no attribute {attr_path!r}", cause=exc
            ) from exc

    if not callable(target):
        raise CallbackResolutionError(reference, f"{reference!r} is not callable")
    return target


def parse_key_values(pairs: list[str] | None) -> dict[str, str]:
    """Turn repeated ``key=value`` options into a dict (last one wins)."""
    result: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--arg")
        result[key.strip()] = value
    return result


# ── Output helpers ───────────────────────────────────────────────────────


def output_summary(
    summary: RunSummary,
    statuses: JobStatusTable,
    *,
    as_json: bool = False,
) -> None:
    """Render the outcome of a dispatcher run."""
    if as_json:
        payload = summary.to_dict()
        payload["statuses"] = [
            {"pid": pid, "job_id": job_id, "status": status}
            for pid, job_id, status in statuses.outcomes()
        ]
        console.print_json(json.dumps(payload, default=str))
        return

    table = Table(title=f"Run {summary.run_id}", show_lines=False, pad_edge=False)
    table.add_column("job", overflow="fold")
    table.add_column("pid", justify="right")
    table.add_column("status", justify="right")
    for pid, job_id, status in statuses.outcomes():
        style = "green" if status == 0 else "red"
        table.add_row(escape(job_id or "?"), str(pid), f"[{style}]{status}[/{style}]")
    for job_id in summary.spawn_failures:
        table.add_row(escape(job_id), "-", "[red]not spawned[/red]")
    console.print(table)

    verdict = "[bold green]succeeded[/bold green]" if summary.success else "[bold red]failed[/bold red]"
    console.print(
        f"{summary.dispatched}/{summary.jobs_total} dispatched, "
        f"{summary.succeeded} ok, {summary.failed} failed, "
        f"peak {summary.peak_running} running, "
        f"{summary.duration_seconds:.2f}s: {verdict}"
    )

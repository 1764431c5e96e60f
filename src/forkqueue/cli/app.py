"""
Root Typer application for the forkqueue CLI.

Two commands:

- ``run``    dispatch a list of jobs through a bounded worker pool and wait;
- ``detach`` fire one detached worker and return immediately.

Every option falls back to the matching ``FORKQUEUE_*`` environment variable
(see :class:`~forkqueue.core.settings.ForkQueueSettings`).
"""

from __future__ import annotations

import sys
from typing import Any

import typer
from pydantic import ValidationError
from rich.markup import escape

from forkqueue.cli.utils import (
    console,
    err_console,
    output_summary,
    parse_key_values,
    resolve_callback,
)
from forkqueue.core.errors import ForkQueueError
from forkqueue.core.logging import configure_logging
from forkqueue.core.settings import ForkQueueSettings

app = typer.Typer(
    name="forkqueue",
    help="forkqueue: run jobs in forked worker processes, N at a time.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from forkqueue import __version__

        typer.echo(f"forkqueue {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """forkqueue CLI: bounded-concurrency fork process pool."""


# ── Helpers ──────────────────────────────────────────────────────────────


def _load_settings(**overrides: Any) -> ForkQueueSettings:
    """Environment settings with explicitly passed options on top."""
    values = {key: value for key, value in overrides.items() if value is not None}
    try:
        settings = ForkQueueSettings(**values)
    except ValidationError as exc:
        err_console.print(f"[bold red]Invalid configuration[/bold red]: {escape(str(exc))}")
        raise typer.Exit(code=1) from exc

    json_format = None if settings.log_format is None else settings.log_format == "json"
    configure_logging(
        level=settings.log_level,
        json_format=json_format,
        cache_loggers=False,
        stream=sys.stderr,
    )
    return settings


def _fail(exc: ForkQueueError) -> typer.Exit:
    err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {escape(exc.message)}")
    return typer.Exit(code=1)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("run")
def run(
    jobs: list[str] = typer.Argument(..., help="Job ids, dispatched in the given order."),
    callback: str = typer.Option(..., "--callback", "-c", help="Work callback as module:function."),
    concurrency: int | None = typer.Option(  # noqa: UP007
        None, "--concurrency", "-n", help="Max simultaneous workers (0 = unbounded, default: CPU count)."
    ),
    chdir: str | None = typer.Option(None, "--chdir", help="Working directory of every worker."),  # noqa: UP007
    umask: str | None = typer.Option(None, "--umask", help="Octal file creation mask, e.g. 022."),  # noqa: UP007
    setsid: bool | None = typer.Option(  # noqa: UP007
        None, "--setsid/--no-setsid", help="Make every worker a session leader."
    ),
    redirect_output: str | None = typer.Option(  # noqa: UP007
        None, "--redirect-output", "-o", help="Append output of job X to <BASE>.X"
    ),
    arg: list[str] | None = typer.Option(  # noqa: UP007
        None, "--arg", "-a", help="key=value passed to the callback; repeatable."
    ),
    on_spawn_failure: str | None = typer.Option(  # noqa: UP007
        None, "--on-spawn-failure", help="skip (default) or abort when a worker cannot be created."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the summary as JSON."),
) -> None:
    """Run every job in its own worker process and wait for all of them.

    Exits 0 when every worker exited 0, 1 otherwise.

    Example::

        forkqueue run a b c --callback myapp.jobs:build --concurrency 2
        forkqueue run nightly --callback myapp.jobs:export -o /var/log/export --arg day=mon
    """
    from forkqueue.execution.config import PoolConfig
    from forkqueue.execution.dispatcher import JobQueueDispatcher

    settings = _load_settings(
        concurrency=concurrency,
        chdir=chdir,
        umask=umask,
        setsid=setsid,
        redirect_output=redirect_output,
        on_spawn_failure=on_spawn_failure,
    )
    args = parse_key_values(arg)

    try:
        work_fn = resolve_callback(callback)
        config = PoolConfig.from_settings(settings, args=args)
        dispatcher = JobQueueDispatcher(jobs, work_fn, config)
    except ForkQueueError as exc:
        raise _fail(exc) from exc

    success = dispatcher.run()

    output_summary(dispatcher.summary(), dispatcher.status_table, as_json=as_json)
    if not success:
        raise typer.Exit(code=1)


@app.command("detach")
def detach(
    callback: str = typer.Option(..., "--callback", "-c", help="Work callback as module:function."),
    arg: list[str] | None = typer.Option(  # noqa: UP007
        None, "--arg", "-a", help="key=value passed to the callback; repeatable."
    ),
    chdir: str | None = typer.Option(None, "--chdir", help="Working directory of the worker."),  # noqa: UP007
    setsid: bool = typer.Option(False, "--setsid", help="Make the worker a session leader."),
    keep_fds: bool = typer.Option(False, "--keep-fds", help="Do not close inherited descriptors above stderr."),
    job_name: str = typer.Option("async", "--name", help="Job id handed to the callback."),
) -> None:
    """Start one detached worker and return without waiting for it.

    Example::

        forkqueue detach --callback myapp.reports:send --arg to=ops --setsid
    """
    from forkqueue.execution.async_dispatch import AsyncDispatcher

    settings = _load_settings()
    args = parse_key_values(arg)

    try:
        work_fn = resolve_callback(callback)
        dispatcher = AsyncDispatcher(
            chdir=chdir,
            # inherit the caller's umask unless FORKQUEUE_UMASK is set
            umask=settings.umask if "umask" in settings.model_fields_set else None,
            setsid=setsid,
            close_fds=not keep_fds,
            job_name=job_name,
            spawn_backoff=settings.spawn_backoff,
            spawn_retries=settings.spawn_retries,
        )
        dispatcher.dispatch(work_fn, args)
    except ForkQueueError as exc:
        raise _fail(exc) from exc

    console.print(f"[green]Dispatched[/green] {escape(job_name)}")

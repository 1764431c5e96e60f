"""Detachment contract applied inside every freshly forked worker.

Steps, in order:

1. ignore SIGHUP, so a hangup on the controller's terminal cannot take the
   worker down;
2. ``setsid()`` when the policy asks for a new session;
3. change into the configured working directory, or ``/`` when it does not
   exist; leave the directory alone when none is configured;
4. apply the configured umask;
5. read standard input from the null device;
6. append standard output and standard error to ``output_path`` when given.

``close_fds`` additionally closes every inherited descriptor above the three
standard streams; only the fire-and-forget dispatcher asks for it. Whenever
descriptors are redirected or closed, ``sys.stdout`` and ``sys.stderr`` are
re-bound to descriptors 1 and 2 if the host had replaced them.
"""

from __future__ import annotations

import contextlib
import os
import signal
import sys

from forkqueue.core.logging import get_logger
from forkqueue.execution.config import DetachPolicy

logger = get_logger(__name__)

ROOT_DIR = "/"
# descriptors 3..255 are closed when close_fds is requested
CLOSE_FDS_UPTO = 256


def change_directory(target: str | None) -> str | None:
    """Change into ``target``, falling back to ``/`` when it is missing.

    Returns:
        The directory changed into, or None when no directory was configured.
    """
    if not target:
        return None
    if os.path.isdir(target):
        logger.debug("worker.chdir", path=target)
        os.chdir(target)
        return target
    logger.debug("worker.chdir", path=ROOT_DIR, missing=target)
    os.chdir(ROOT_DIR)
    return ROOT_DIR


def redirect_stdin() -> None:
    """Point file descriptor 0 at the null device."""
    null_fd = os.open(os.devnull, os.O_RDONLY)
    try:
        os.dup2(null_fd, 0)
    finally:
        os.close(null_fd)


def redirect_output(path: str) -> None:
    """Append file descriptors 1 and 2 to ``path``, creating it if needed."""
    logger.debug("worker.redirect_output", path=path)
    flush_std_streams()
    out_fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o666)
    try:
        os.dup2(out_fd, 1)
        os.dup2(out_fd, 2)
    finally:
        os.close(out_fd)


def flush_std_streams() -> None:
    """Flush Python-level stdout/stderr buffers.

    Called before fork so the child does not inherit (and later repeat)
    pending output, and before ``os._exit`` which skips interpreter cleanup.
    """
    for stream in (sys.stdout, sys.stderr):
        if stream is not None:
            # a closed or broken stream must not keep a worker from exiting
            with contextlib.suppress(OSError, ValueError):
                stream.flush()


def bind_std_streams() -> None:
    """Make ``sys.stdout``/``sys.stderr`` write to descriptors 1 and 2.

    A host may have swapped the Python-level streams for objects backed by
    other descriptors (output capture, a logging shim). Once a worker has
    redirected or closed descriptors, its Python output must follow 1 and 2.
    """
    for fd, name in ((1, "stdout"), (2, "stderr")):
        if not _writes_to(getattr(sys, name), fd):
            setattr(sys, name, open(fd, "w", buffering=1, closefd=False))


def _writes_to(stream, fd: int) -> bool:
    if stream is None:
        return False
    try:
        return stream.fileno() == fd
    except (AttributeError, OSError, ValueError):
        # no descriptor behind it (StringIO, capture buffers)
        return False


def detach_process(
    policy: DetachPolicy,
    *,
    output_path: str | None = None,
    close_fds: bool = False,
) -> None:
    """Detach the current process from its parent as described by ``policy``."""
    signal.signal(signal.SIGHUP, signal.SIG_IGN)

    if policy.setsid:
        logger.debug("worker.setsid")
        os.setsid()

    change_directory(policy.chdir)

    if policy.umask is not None:
        os.umask(policy.umask)

    redirect_stdin()
    if output_path:
        redirect_output(output_path)

    if output_path or close_fds:
        bind_std_streams()
    if close_fds:
        os.closerange(3, CLOSE_FDS_UPTO)

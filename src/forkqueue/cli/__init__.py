"""
CLI layer for forkqueue.

Provides a Typer application that wires command-line options and
``FORKQUEUE_*`` settings into the execution layer. All process handling
lives in ``forkqueue.execution``; this package handles only terminal
transport: argument parsing, callback import and summary output.

Entry point::

    forkqueue --help
"""

from forkqueue.cli.app import app

__all__ = ["app"]

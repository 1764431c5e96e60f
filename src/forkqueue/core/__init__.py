"""forkqueue core -- domain-agnostic primitives.

Architecture::

    errors.py      Structured error hierarchy (ForkQueueError, TransientSpawnError)
    logging.py     structlog configuration, context binding, fork-safe prefixes
    settings.py    pydantic-settings model for FORKQUEUE_* environment variables
"""

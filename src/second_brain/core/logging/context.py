"""Logging context utilities for structured logging.

Job-scoped fields (job id, job name) are kept in structlog's contextvars so
every log line emitted while running a job carries them, including lines from
deeper layers that never see the identifiers directly.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog


def get_log_context() -> dict[str, Any]:
    """Get a copy of the current logging context."""
    return dict(structlog.contextvars.get_contextvars())


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """Bind keys for the duration of a block, restoring the previous values after.

    Example:
        with log_context(job_id=job_id, job_name="canonicalize"):
            await handler(payload)
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield

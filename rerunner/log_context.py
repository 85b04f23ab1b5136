"""Logging context: ContextVar-based log enrichment for async operations.

Every log record is automatically enriched with an ``[op:generation]`` prefix
via a `ContextFilter` attached to the root logger handlers.

Operation codes: ``watch`` (batch consumer), ``run`` (primary job),
``then`` (chained follow-up job), ``stop`` (shutdown).
"""

from __future__ import annotations

import logging
from contextvars import ContextVar

# Cross-cutting context propagated through asyncio tasks.
ctx_operation: ContextVar[str | None] = ContextVar("ctx_operation", default=None)
ctx_generation: ContextVar[int | None] = ContextVar("ctx_generation", default=None)


class ContextFilter(logging.Filter):
    """Inject ContextVar values into every LogRecord as ``record.ctx``."""

    def filter(self, record: logging.LogRecord) -> bool:
        op = ctx_operation.get(None)
        generation = ctx_generation.get(None)
        parts: list[str] = []
        if op:
            parts.append(op)
        if generation is not None:
            parts.append(str(generation))
        record.ctx = f"[{':'.join(parts)}] " if parts else ""
        return True


def set_log_context(
    *,
    operation: str | None = None,
    generation: int | None = None,
) -> None:
    """Set logging context for the current asyncio task.

    Values propagate to all coroutines called within the same task.
    Each ``asyncio.create_task()`` copies the current context automatically,
    so a completion task keeps the generation of the run it awaits.
    """
    if operation is not None:
        ctx_operation.set(operation)
    if generation is not None:
        ctx_generation.set(generation)

"""
Async utilities for running coroutines in sync contexts.

The executor, backends and daemon client are asyncio-based; Flask views and
the operator CLI are synchronous and drive them through run_sync.

Usage:
    from core.async_utils import run_sync

    job = run_sync(service.execute_provision_job(job_id, actor="bob"))
"""

import asyncio
import contextvars
from typing import Any, Coroutine, TypeVar

T = TypeVar("T")


def run_sync(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run an async coroutine synchronously.

    Creates a new event loop, runs the coroutine to completion with the
    caller's contextvars (request id, actor) and closes the loop.
    """
    ctx = contextvars.copy_context()
    loop = asyncio.new_event_loop()
    try:
        return ctx.run(loop.run_until_complete, coro)
    finally:
        loop.close()

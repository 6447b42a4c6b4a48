"""Recurring background jobs on the event loop."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


async def run_periodically(
    job: Callable[[], Awaitable[Any]],
    interval: float,
    timeout: float,
    name: str = "job",
) -> None:
    """Run ``job`` every ``interval`` seconds until cancelled.

    Each run is bounded by ``timeout`` so a hung call cannot hold up the
    next run. Failures are logged and the loop keeps going.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.wait_for(job(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error("%s timed out after %ss", name, timeout)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s failed", name)


async def cancel_task(task: asyncio.Task | None) -> None:
    """Cancel a background task and wait for it to finish."""
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass

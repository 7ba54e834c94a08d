"""
Shared async task utilities.

Every wait in sparkbot goes through these helpers so that a stop event or a
wall-clock deadline can interrupt it at the next await point.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Coroutine
from typing import Any

from loguru import logger


class Deadline:
    """Wall-clock budget measured on the monotonic clock."""

    def __init__(self, seconds: float | None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.started = clock()
        self.seconds = seconds

    def elapsed(self) -> float:
        return self._clock() - self.started

    def remaining(self) -> float | None:
        if self.seconds is None:
            return None
        return max(0.0, self.seconds - self.elapsed())

    def expired(self) -> bool:
        return self.seconds is not None and self.elapsed() > self.seconds


def format_elapsed(seconds: float) -> str:
    """Format seconds as e.g. ``2m05s``."""
    whole = int(seconds)
    return f"{whole // 60}m{whole % 60:02d}s"


async def sleep_or_stop(
    seconds: float,
    stop_event: asyncio.Event | None = None,
    deadline: Deadline | None = None,
) -> bool:
    """
    Sleep for ``seconds`` unless stopped first.

    The sleep is shortened to the deadline's remaining budget.

    Returns:
        True if the stop event was set or the deadline has expired.
    """
    if deadline is not None:
        remaining = deadline.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)

    if stop_event is None:
        await asyncio.sleep(seconds)
    else:
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        except TimeoutError:
            pass

    stopped = stop_event is not None and stop_event.is_set()
    return stopped or (deadline is not None and deadline.expired())


async def run_periodic_task(
    name: str,
    callback: Callable[[], Coroutine[Any, Any, None]],
    interval: float,
    stop_event: asyncio.Event | None = None,
    max_runs: int | None = None,
) -> None:
    """
    Run a callback periodically until cancelled, stopped, or ``max_runs`` is reached.

    A failing callback is logged and the loop carries on with the next run.

    Args:
        name: Human-readable task name for logging
        callback: Async function to call each interval
        interval: Seconds between invocations
        stop_event: Optional event that ends the loop when set
        max_runs: Optional number of invocations after which the loop ends
    """
    runs = 0
    while stop_event is None or not stop_event.is_set():
        try:
            await callback()
        except asyncio.CancelledError:
            logger.info(f"{name} task cancelled")
            raise
        except Exception as e:
            logger.error(f"Error in {name}: {e}")

        runs += 1
        if max_runs is not None and runs >= max_runs:
            break
        if await sleep_or_stop(interval, stop_event):
            break

    logger.info(f"{name} task stopped")

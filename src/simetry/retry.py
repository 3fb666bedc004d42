"""Poll-until-present helper used by every backend's ``connect``."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

_logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_forever(
    attempt: Callable[[], Awaitable[T | None]],
    retry_delay: float,
    sim_name: str,
) -> T:
    """Await *attempt* until it returns something other than ``None``.

    Sleeps *retry_delay* seconds between attempts, so a missing sim costs at
    most one attempt per interval. Cancelling the caller stops the loop at
    whichever await it is suspended on.
    """
    if retry_delay <= 0:
        raise ValueError(f"retry_delay must be positive, got {retry_delay!r}")

    attempts = 0
    while True:
        attempts += 1
        result = await attempt()
        if result is not None:
            _logger.info("Connected to %s after %d attempt(s)", sim_name, attempts)
            return result
        _logger.debug(
            "%s not available (attempt %d), retrying in %.1fs", sim_name, attempts, retry_delay
        )
        await asyncio.sleep(retry_delay)

"""Connection race: connect to whichever supported sim shows up first."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, fields

from simetry.errors import NoSimAvailableError
from simetry.moment import Simetry
from simetry.sims import (
    acc,
    assetto_corsa,
    dirt_rally_2,
    generic_http,
    iracing,
    rfactor_2,
    truck_simulator,
)

_logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY = 5.0

_ENV_PREFIX = "SIMETRY_"


@dataclass(frozen=True)
class SimetryConnectionBuilder:
    """Per-backend endpoints plus the retry interval shared by all backends."""

    generic_http_uri: str = generic_http.DEFAULT_URI
    truck_simulator_uri: str = truck_simulator.DEFAULT_URI
    dirt_rally_2_uri: str = dirt_rally_2.DEFAULT_URI
    retry_delay: float = DEFAULT_RETRY_DELAY
    """Seconds between connection attempts while a sim is not running."""

    def __post_init__(self) -> None:
        if not self.retry_delay > 0:
            raise ValueError(f"retry_delay must be positive, got {self.retry_delay!r}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SimetryConnectionBuilder:
        """Build from ``SIMETRY_*`` environment variables, defaulting the rest.

        E.g. ``SIMETRY_DIRT_RALLY_2_URI=0.0.0.0:20777``, ``SIMETRY_RETRY_DELAY=2``.
        """
        env = os.environ if environ is None else environ
        kwargs: dict = {}
        for f in fields(cls):
            raw = env.get(_ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            if f.name == "retry_delay":
                try:
                    kwargs[f.name] = float(raw)
                except ValueError as exc:
                    raise ValueError(f"invalid {_ENV_PREFIX}RETRY_DELAY: {raw!r}") from exc
            else:
                kwargs[f.name] = raw
        return cls(**kwargs)

    def attempts(self) -> dict[str, Awaitable[Simetry]]:
        """One connection attempt per supported backend, keyed by sim name."""
        retry_delay = self.retry_delay
        return {
            iracing.NAME: iracing.IRacingClient.connect(retry_delay),
            acc.NAME: acc.ACCClient.connect(retry_delay),
            assetto_corsa.NAME: assetto_corsa.AssettoCorsaClient.connect(retry_delay),
            rfactor_2.NAME: rfactor_2.RFactor2Client.connect(retry_delay),
            dirt_rally_2.NAME: dirt_rally_2.DirtRally2Client.connect(
                self.dirt_rally_2_uri, retry_delay
            ),
            generic_http.NAME: generic_http.GenericHttpClient.connect(
                self.generic_http_uri, retry_delay
            ),
            truck_simulator.NAME: truck_simulator.TruckSimulatorClient.connect(
                self.truck_simulator_uri, retry_delay
            ),
        }

    async def connect(self) -> Simetry:
        """Connect to the first supported sim that is running.

        Never returns until some sim is found; wrap in ``asyncio.wait_for``
        to bound the wait.
        """
        return await race(self.attempts())


async def race(attempts: Mapping[str, Awaitable[Simetry]]) -> Simetry:
    """Run all *attempts* concurrently and return the first session.

    Every other attempt is cancelled and awaited before returning, so only the
    winner's transport stays open. Sessions that finish alongside the winner,
    or while the losers are being cancelled, are closed. An attempt that
    raises is logged and drops out; :class:`NoSimAvailableError` is raised
    only if all of them raise.
    """
    if not attempts:
        raise NoSimAvailableError("no backends to connect to")

    tasks: dict[asyncio.Task, str] = {
        asyncio.ensure_future(aw): name for name, aw in attempts.items()
    }
    pending = set(tasks)
    winner: Simetry | None = None
    extras: list[Simetry] = []
    last_error: BaseException | None = None
    try:
        while pending and winner is None:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in _in_start_order(done, tasks):
                if task.cancelled():
                    continue
                exc = task.exception()
                if exc is not None:
                    last_error = exc
                    _logger.error(
                        "%s connection attempt crashed", tasks[task], exc_info=exc
                    )
                    continue
                if winner is None:
                    winner = task.result()
                else:
                    extras.append(task.result())
    finally:
        # Losers are cancelled before anything else awaits, so none can
        # connect unnoticed.
        try:
            await _cancel_all(pending)
            for session in extras:
                await session.aclose()
        except BaseException:
            if winner is not None:
                await winner.aclose()
            raise

    if winner is None:
        raise NoSimAvailableError("every sim connection attempt crashed") from last_error
    _logger.info("Connected to %s", winner.name)
    return winner


async def connect() -> Simetry:
    """Connect to any running supported sim, using the default configuration."""
    return await SimetryConnectionBuilder().connect()


def _in_start_order(done: set[asyncio.Task], tasks: dict[asyncio.Task, str]) -> list[asyncio.Task]:
    return [task for task in tasks if task in done]


async def _cancel_all(pending: set[asyncio.Task]) -> None:
    """Cancel *pending*, wait for it, and close any session that got through."""
    for task in pending:
        task.cancel()
    if not pending:
        return
    try:
        await asyncio.gather(*pending, return_exceptions=True)
    finally:
        for task in pending:
            if not task.done() or task.cancelled() or task.exception() is not None:
                continue
            session = task.result()
            if isinstance(session, Simetry):
                _logger.debug(
                    "Closing %s, which connected after the race was decided", session.name
                )
                await session.aclose()


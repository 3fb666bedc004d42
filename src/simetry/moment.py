"""Session and snapshot contracts shared by every sim backend."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from simetry.flags import RacingFlags
from simetry.models import BasicTelemetry
from simetry.units import AngularVelocity

_logger = logging.getLogger(__name__)


class Moment:
    """Telemetry of a sim at a single instant.

    Backends subclass this and override only the queries their sim supports.
    Every other query returns the documented default below, so callers never
    need to special-case an unsupported datum.

    Boolean states default to normal driving (ignition on, starter off, no
    car alongside). Data-bearing queries default to ``None`` so that
    "unsupported" is never mistaken for a measured zero.
    """

    def vehicle_left(self) -> bool:
        """True if there is a vehicle to the left of the driver.

        Defaults to ``False``: without adjacency data no hazard is assumed.
        """
        return False

    def vehicle_right(self) -> bool:
        """True if there is a vehicle to the right of the driver.

        Defaults to ``False``.
        """
        return False

    def basic_telemetry(self) -> BasicTelemetry | None:
        """Gear, speed and engine data, or ``None`` if the sim has none."""
        return None

    def shift_point(self) -> AngularVelocity | None:
        """Optimal upshift engine speed, or ``None`` if unknown."""
        return None

    def flags(self) -> RacingFlags:
        """Race-control flags. Defaults to no flags active."""
        return RacingFlags()

    def vehicle_unique_id(self) -> str | None:
        """ID that uniquely identifies the current vehicle make and model.

        Use this to key behavior on a specific car. Defaults to ``None``.
        """
        return None

    def ignition_on(self) -> bool:
        """True if the ignition is on.

        Defaults to ``True``: sims without ignition modelling behave as if
        the engine is always running.
        """
        return True

    def starter_on(self) -> bool:
        """True if the starter motor is engaged. Defaults to ``False``."""
        return False


class Simetry(ABC):
    """A live connection to one sim, yielding a :class:`Moment` per tick.

    Subclasses implement :meth:`_next_moment` and :meth:`_close`. Once
    :meth:`next_moment` has returned ``None`` the session is exhausted: the
    transport is released and every later call returns ``None`` again.
    """

    def __init__(self) -> None:
        self._exhausted: bool = False
        self._closed: bool = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of the sim this session is connected to."""

    async def next_moment(self) -> Moment | None:
        """Wait for the next reading from the sim and return it.

        ``None`` means the connection is gone for good, like the end of an
        iterator.
        """
        if self._exhausted:
            return None
        moment = await self._next_moment()
        if moment is None:
            self._exhausted = True
            _logger.info("%s connection ended", self.name)
            await self.aclose()
        return moment

    async def aclose(self) -> None:
        """Release the underlying transport. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._exhausted = True
        await self._close()

    def __aiter__(self) -> Simetry:
        return self

    async def __anext__(self) -> Moment:
        moment = await self.next_moment()
        if moment is None:
            raise StopAsyncIteration
        return moment

    async def __aenter__(self) -> Simetry:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def _next_moment(self) -> Moment | None:
        """Read the next tick from the transport, ``None`` once it is lost."""

    @abstractmethod
    async def _close(self) -> None:
        """Release the transport."""

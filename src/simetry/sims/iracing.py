"""iRacing backend over the shared-memory SDK (``pyirsdk``)."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from simetry.flags import RacingFlags
from simetry.models import BasicTelemetry
from simetry.moment import Moment, Simetry
from simetry.retry import retry_forever
from simetry.sims._convert import as_float, as_int, sanitize, sanitize_int
from simetry.units import AngularVelocity, Velocity

_logger = logging.getLogger(__name__)

NAME = "iRacing"

# Telemetry variables copied out of the SDK buffer for each frame.
_FRAME_VARS: tuple[str, ...] = (
    "SessionTick",
    "Gear",
    "Speed",
    "RPM",
    "OnPitRoad",
    "EngineWarnings",
    "CarLeftRight",
    "SessionFlags",
)

_ENGINE_WARNING_PIT_LIMITER = 0x10

# CarLeftRight enum values
_CARS_LEFT = frozenset({2, 4, 5})  # car_left, car_left_right, two_cars_left
_CARS_RIGHT = frozenset({3, 4, 6})  # car_right, car_left_right, two_cars_right

# SessionFlags bits → RacingFlags field
_SESSION_FLAG_BITS: tuple[tuple[int, str], ...] = (
    (0x00000001, "checkered"),
    (0x00000002, "white"),
    (0x00000004, "green"),
    (0x00000008, "yellow"),
    (0x00000010, "red"),
    (0x00000020, "blue"),
    (0x00000100, "yellow"),  # yellow waving
    (0x00004000, "caution"),
    (0x00008000, "caution"),  # caution waving
    (0x00010000, "black"),
    (0x00100000, "repair"),
)


class IRacingConnection:
    """Manages the connection to the iRacing shared-memory SDK.

    Parameters
    ----------
    sdk:
        An iRacing SDK instance (``irsdk.IRSDK()``). Injected for testability;
        defaults to the real SDK when not provided.
    """

    def __init__(self, sdk: Any | None = None) -> None:
        if sdk is None:
            import irsdk  # lazy: irsdk is only needed at runtime

            sdk = irsdk.IRSDK()
        self._sdk = sdk
        self._connected: bool = False
        self._callbacks: list[Callable[[bool], None]] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        """True when the SDK has successfully connected to iRacing."""
        return self._connected

    def connect(self) -> bool:
        """Attempt to connect to iRacing.

        Returns
        -------
        bool
            True if iRacing is running and the connection succeeded.
            False otherwise (never raises).
        """
        try:
            initialized = bool(self._sdk.startup())
        except Exception as exc:
            _logger.debug("iRacing SDK startup failed: %s", exc)
            initialized = False

        self._set_connected(initialized)
        return self._connected

    def check_alive(self) -> bool:
        """Re-check the SDK and drop to disconnected if iRacing went away."""
        if not self._connected:
            return False
        try:
            alive = bool(self._sdk.is_connected)
        except Exception:
            alive = False
        self._set_connected(alive)
        return alive

    def disconnect(self) -> None:
        """Disconnect from iRacing and notify callbacks."""
        self._sdk.shutdown()
        self._set_connected(False)

    def register_callback(self, callback: Callable[[bool], None]) -> None:
        """Register *callback* to be called whenever connection state changes.

        The callback receives a single bool argument: True = connected,
        False = disconnected.
        """
        self._callbacks.append(callback)

    def read_frame(self) -> dict | None:
        """Copy one consistent frame of variables, or None if not connected.

        The SDK buffer is frozen while reading so all values come from the
        same tick.
        """
        if not self._connected:
            return None
        self._sdk.freeze_var_buffer_latest()
        try:
            frame = {name: self._sdk[name] for name in _FRAME_VARS}
            frame["DriverInfo"] = self._sdk["DriverInfo"] or {}
        finally:
            self._sdk.unfreeze_var_buffer_latest()
        return frame

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _set_connected(self, state: bool) -> None:
        if state != self._connected:
            self._connected = state
            self._fire_callbacks(state)

    def _fire_callbacks(self, state: bool) -> None:
        for cb in self._callbacks:
            cb(state)


class IRacingMoment(Moment):
    """One iRacing frame as returned by :meth:`IRacingConnection.read_frame`."""

    def __init__(self, frame: dict) -> None:
        self._frame = frame
        self._driver_info: dict = frame.get("DriverInfo") or {}

    def vehicle_left(self) -> bool:
        return as_int(self._frame.get("CarLeftRight")) in _CARS_LEFT

    def vehicle_right(self) -> bool:
        return as_int(self._frame.get("CarLeftRight")) in _CARS_RIGHT

    def basic_telemetry(self) -> BasicTelemetry | None:
        warnings = as_int(self._frame.get("EngineWarnings"))
        return BasicTelemetry(
            gear=sanitize_int(as_int(self._frame.get("Gear")), -1, 127),
            speed=Velocity.from_mps(sanitize(as_float(self._frame.get("Speed")), 0.0, None)),
            engine_rotation_speed=AngularVelocity.from_rpm(
                sanitize(as_float(self._frame.get("RPM")), 0.0, None)
            ),
            max_engine_rotation_speed=AngularVelocity.from_rpm(
                sanitize(as_float(self._driver_info.get("DriverCarRedLine")), 0.0, None)
            ),
            pit_limiter_engaged=bool(warnings & _ENGINE_WARNING_PIT_LIMITER),
            in_pit_lane=bool(self._frame.get("OnPitRoad")),
        )

    def shift_point(self) -> AngularVelocity | None:
        rpm = sanitize(as_float(self._driver_info.get("DriverCarSLShiftRPM")), 0.0, None)
        if rpm <= 0.0:
            return None
        return AngularVelocity.from_rpm(rpm)

    def flags(self) -> RacingFlags:
        bits = as_int(self._frame.get("SessionFlags"))
        return RacingFlags(**{name: True for mask, name in _SESSION_FLAG_BITS if bits & mask})

    def vehicle_unique_id(self) -> str | None:
        car_idx = self._driver_info.get("DriverCarIdx")
        for driver in self._driver_info.get("Drivers") or []:
            if driver.get("CarIdx") == car_idx:
                return driver.get("CarPath") or None
        return None


class IRacingClient(Simetry):
    """Session reading iRacing frames at *poll_interval* until the sim exits."""

    def __init__(self, connection: IRacingConnection, poll_interval: float = 1.0 / 60.0) -> None:
        super().__init__()
        self._connection = connection
        self._poll_interval = poll_interval
        self._last_tick: object = None

    @property
    def name(self) -> str:
        return NAME

    @classmethod
    async def connect(
        cls,
        retry_delay: float = 5.0,
        sdk: Any | None = None,
        poll_interval: float = 1.0 / 60.0,
    ) -> IRacingClient:
        """Wait until iRacing is running and return a connected session."""
        connection = IRacingConnection(sdk)

        async def attempt() -> IRacingConnection | None:
            return connection if connection.connect() else None

        try:
            await retry_forever(attempt, retry_delay, NAME)
        except asyncio.CancelledError:
            connection.disconnect()
            raise
        return cls(connection, poll_interval)

    async def _next_moment(self) -> Moment | None:
        while self._connection.check_alive():
            frame = self._connection.read_frame()
            if frame is not None and frame.get("SessionTick") != self._last_tick:
                self._last_tick = frame.get("SessionTick")
                return IRacingMoment(frame)
            await asyncio.sleep(self._poll_interval)
        return None

    async def _close(self) -> None:
        self._connection.disconnect()

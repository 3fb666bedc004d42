"""Assetto Corsa Competizione backend over Windows named shared memory."""

from __future__ import annotations

from simetry.flags import RacingFlags
from simetry.models import BasicTelemetry
from simetry.moment import Moment
from simetry.sims._convert import as_float, as_int, sanitize, sanitize_int
from simetry.sims._shared_memory import (
    ACPMF_GRAPHICS,
    ACPMF_PHYSICS,
    ACPMF_STATIC,
    SharedMemoryClient,
    SharedMemoryConnection,
    is_competizione,
    mapping_exists,
    read_float,
    read_int,
    read_shared_memory,
    read_versions,
    read_wstr,
)
from simetry.units import AngularVelocity, Velocity

NAME = "Assetto Corsa Competizione"

# ---------------------------------------------------------------------------
# Shared memory layout constants (ACC SDK offsets, all bytes)
# ---------------------------------------------------------------------------

_PHYS_SIZE = 784

_OFF_PACKET_ID = 0      # int32
_OFF_GEAR = 16          # int32 (0=R, 1=N, 2=1st ...)
_OFF_RPMS = 20          # int32
_OFF_SPEED = 28         # float (km/h)
_OFF_PIT_LIMITER = 248  # int32
_OFF_MAX_RPM = 588      # int32 (currentMaxRpm)
_OFF_IGNITION = 772     # int32
_OFF_STARTER = 776      # int32

_GRAP_SIZE = 1240

_OFF_STATUS = 4           # int32 (0=off, 1=replay, 2=live, 3=pause)
_OFF_FLAG = 1224          # int32
_OFF_IS_IN_PIT_LANE = 1236  # int32

_STAT_SIZE = 134

_OFF_CAR_MODEL = 68     # wchar[33]
_CAR_MODEL_CHARS = 33

# graphics.flag value → RacingFlags field
_FLAG_NAMES: dict[int, str] = {
    1: "blue",
    2: "yellow",
    3: "black",
    4: "white",
    5: "checkered",
    6: "black",   # penalty
    7: "green",
    8: "repair",  # orange
}


class ACCSharedMemory:
    """Reads ACC telemetry from Windows named shared memory.

    No persistent handles are held between reads. An instance can be
    replaced with a mock for unit testing.
    """

    def is_available(self) -> bool:
        """True if the AC-family shared memory exists (AC or ACC is running)."""
        return mapping_exists(ACPMF_PHYSICS)

    def read_physics(self) -> dict:
        buf = read_shared_memory(ACPMF_PHYSICS, _PHYS_SIZE)
        if buf is None:
            return {}
        return {
            "packetId": read_int(buf, _OFF_PACKET_ID),
            "gear": read_int(buf, _OFF_GEAR),
            "rpms": read_int(buf, _OFF_RPMS),
            "speedKmh": read_float(buf, _OFF_SPEED),
            "pitLimiterOn": read_int(buf, _OFF_PIT_LIMITER),
            "currentMaxRpm": read_int(buf, _OFF_MAX_RPM),
            "ignitionOn": read_int(buf, _OFF_IGNITION),
            "starterEngineOn": read_int(buf, _OFF_STARTER),
        }

    def read_graphics(self) -> dict:
        buf = read_shared_memory(ACPMF_GRAPHICS, _GRAP_SIZE)
        if buf is None:
            return {}
        return {
            "status": read_int(buf, _OFF_STATUS),
            "flag": read_int(buf, _OFF_FLAG),
            "isInPitLane": read_int(buf, _OFF_IS_IN_PIT_LANE),
        }

    def read_static(self) -> dict:
        """Read session-constant fields (versions, car model) as a plain dict."""
        buf = read_shared_memory(ACPMF_STATIC, _STAT_SIZE)
        if buf is None:
            return {}
        return {
            **read_versions(buf),
            "carModel": read_wstr(buf, _OFF_CAR_MODEL, _CAR_MODEL_CHARS),
        }

    def close(self) -> None:
        """No-op: no persistent handles are held between reads."""


class ACCLiveConnection(SharedMemoryConnection):
    """Connection to ACC shared memory; ignores the same pages published by AC.

    Parameters
    ----------
    reader:
        An :class:`ACCSharedMemory` instance. Injected for testability;
        defaults to the real implementation when not provided.
    """

    sim_name = NAME

    def __init__(self, reader: ACCSharedMemory | None = None) -> None:
        super().__init__(reader if reader is not None else ACCSharedMemory())

    def _is_this_sim(self) -> bool:
        return is_competizione(self._reader.read_static()) is True

    def _read_pages(self) -> dict:
        return {
            **self._reader.read_physics(),
            **self._reader.read_graphics(),
            **self._reader.read_static(),
        }


class ACCMoment(Moment):
    """One ACC frame as returned by :meth:`ACCLiveConnection.read_frame`."""

    def __init__(self, frame: dict) -> None:
        self._frame = frame

    def basic_telemetry(self) -> BasicTelemetry | None:
        # ACC counts gears from reverse: 0=R, 1=N, 2=1st
        gear = sanitize_int(as_int(self._frame.get("gear")) - 1, -1, 127)
        speed_kmh = sanitize(as_float(self._frame.get("speedKmh")), 0.0, None)
        return BasicTelemetry(
            gear=gear,
            speed=Velocity.from_kmh(speed_kmh),
            engine_rotation_speed=AngularVelocity.from_rpm(
                sanitize(as_float(self._frame.get("rpms")), 0.0, None)
            ),
            max_engine_rotation_speed=AngularVelocity.from_rpm(
                sanitize(as_float(self._frame.get("currentMaxRpm")), 0.0, None)
            ),
            pit_limiter_engaged=bool(as_int(self._frame.get("pitLimiterOn"))),
            in_pit_lane=bool(as_int(self._frame.get("isInPitLane"))),
        )

    def flags(self) -> RacingFlags:
        name = _FLAG_NAMES.get(as_int(self._frame.get("flag")))
        if name is None:
            return RacingFlags()
        return RacingFlags(**{name: True})

    def vehicle_unique_id(self) -> str | None:
        return self._frame.get("carModel") or None

    def ignition_on(self) -> bool:
        return bool(as_int(self._frame.get("ignitionOn")))

    def starter_on(self) -> bool:
        return bool(as_int(self._frame.get("starterEngineOn")))


class ACCClient(SharedMemoryClient):
    """Session reading ACC frames until the shared memory goes away."""

    NAME = NAME
    PACKET_KEY = "packetId"

    @classmethod
    def _make_connection(cls, reader: ACCSharedMemory | None) -> ACCLiveConnection:
        return ACCLiveConnection(reader)

    def _make_moment(self, frame: dict) -> Moment:
        return ACCMoment(frame)

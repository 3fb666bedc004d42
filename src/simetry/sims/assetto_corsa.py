"""Assetto Corsa (the original) backend over Windows named shared memory.

AC publishes the same ``acpmf_*`` mappings as Competizione but with shorter
pages: the physics page ends long before ACC's ``currentMaxRpm``, and the
redline lives in the static page instead. The static page's ``smVersion``
tells the two apart.
"""

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

NAME = "Assetto Corsa"

# Only the prefix of each page up to the last field read is mapped, so older
# AC builds with shorter pages still work.

_PHYS_SIZE = 252

_OFF_PACKET_ID = 0      # int32
_OFF_GEAR = 16          # int32 (0=R, 1=N, 2=1st ...)
_OFF_RPMS = 20          # int32
_OFF_SPEED = 28         # float (km/h)
_OFF_PIT_LIMITER = 248  # int32

_GRAP_SIZE = 280

_OFF_STATUS = 4             # int32 (0=off, 1=replay, 2=live, 3=pause)
_OFF_FLAG = 268             # int32
_OFF_IS_IN_PIT_LANE = 276   # int32

_STAT_SIZE = 416

_OFF_CAR_MODEL = 68     # wchar[33]
_CAR_MODEL_CHARS = 33
_OFF_MAX_RPM = 412      # int32

# graphics.flag value → RacingFlags field
_FLAG_NAMES: dict[int, str] = {
    1: "blue",
    2: "yellow",
    3: "black",
    4: "white",
    5: "checkered",
    6: "black",  # penalty
}


class AssettoCorsaSharedMemory:
    """Reads AC telemetry from Windows named shared memory.

    Same page readers as :class:`~simetry.sims.acc.ACCSharedMemory`, with
    AC's offsets.
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
        buf = read_shared_memory(ACPMF_STATIC, _STAT_SIZE)
        if buf is None:
            return {}
        return {
            **read_versions(buf),
            "carModel": read_wstr(buf, _OFF_CAR_MODEL, _CAR_MODEL_CHARS),
            "maxRpm": read_int(buf, _OFF_MAX_RPM),
        }

    def close(self) -> None:
        """No-op: no persistent handles are held between reads."""


class AssettoCorsaConnection(SharedMemoryConnection):
    """Connection to AC shared memory; ignores the pages when ACC owns them."""

    sim_name = NAME

    def __init__(self, reader: AssettoCorsaSharedMemory | None = None) -> None:
        super().__init__(reader if reader is not None else AssettoCorsaSharedMemory())

    def _is_this_sim(self) -> bool:
        return is_competizione(self._reader.read_static()) is False

    def _read_pages(self) -> dict:
        return {
            **self._reader.read_physics(),
            **self._reader.read_graphics(),
            **self._reader.read_static(),
        }


class AssettoCorsaMoment(Moment):
    def __init__(self, frame: dict) -> None:
        self._frame = frame

    def basic_telemetry(self) -> BasicTelemetry | None:
        gear = sanitize_int(as_int(self._frame.get("gear")) - 1, -1, 127)
        return BasicTelemetry(
            gear=gear,
            speed=Velocity.from_kmh(sanitize(as_float(self._frame.get("speedKmh")), 0.0, None)),
            engine_rotation_speed=AngularVelocity.from_rpm(
                sanitize(as_float(self._frame.get("rpms")), 0.0, None)
            ),
            max_engine_rotation_speed=AngularVelocity.from_rpm(
                sanitize(as_float(self._frame.get("maxRpm")), 0.0, None)
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


class AssettoCorsaClient(SharedMemoryClient):
    """Session reading AC frames until the shared memory goes away."""

    NAME = NAME
    PACKET_KEY = "packetId"

    @classmethod
    def _make_connection(
        cls, reader: AssettoCorsaSharedMemory | None
    ) -> AssettoCorsaConnection:
        return AssettoCorsaConnection(reader)

    def _make_moment(self, frame: dict) -> Moment:
        return AssettoCorsaMoment(frame)

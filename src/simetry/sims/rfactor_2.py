"""rFactor 2 backend over the rF2SharedMemoryMapPlugin buffers.

The plugin publishes ``$rFactor2SMMP_Telemetry$`` and ``$rFactor2SMMP_Scoring$``.
Telemetry holds one entry per vehicle; the scoring buffer says which one is
the player's (``mIsPlayer``), and both are matched up by ``mID``. Every
buffer starts with ``mVersionUpdateBegin``/``mVersionUpdateEnd``; a copy
whose two counters differ was taken mid-update and is read again.
"""

from __future__ import annotations

import logging
import math

from simetry.flags import RacingFlags
from simetry.models import BasicTelemetry
from simetry.moment import Moment
from simetry.sims._convert import as_float, as_int, sanitize, sanitize_int
from simetry.sims._shared_memory import (
    SharedMemoryClient,
    SharedMemoryConnection,
    mapping_exists,
    read_byte,
    read_double,
    read_int,
    read_shared_memory,
    read_str,
    read_uint,
)
from simetry.units import AngularVelocity, Velocity

_logger = logging.getLogger(__name__)

NAME = "rFactor 2"

_TELEMETRY_MAP_NAME = "$rFactor2SMMP_Telemetry$"
_SCORING_MAP_NAME = "$rFactor2SMMP_Scoring$"

_MAX_VEHICLES = 128
_MAX_READ_ATTEMPTS = 3

_OFF_VERSION_BEGIN = 0  # uint32
_OFF_VERSION_END = 4    # uint32

# ---------------------------------------------------------------------------
# Telemetry buffer: 16-byte header, then rF2VehicleTelemetry[mNumVehicles]
# ---------------------------------------------------------------------------

_TEL_HEADER_SIZE = 16
_TEL_OFF_NUM_VEHICLES = 12
_TEL_VEHICLE_SIZE = 1888

_TV_ID = 0                  # int32
_TV_VEHICLE_NAME = 32       # char[64]
_TV_VEHICLE_NAME_LEN = 64
_TV_LOCAL_VEL = 184         # double[3], m/s
_TV_GEAR = 352              # int32 (-1=R, 0=N)
_TV_ENGINE_RPM = 356        # double
_TV_ENGINE_MAX_RPM = 532    # double
_TV_SPEED_LIMITER = 604     # uint8
_TV_IGNITION_STARTER = 619  # uint8 (0=off, 1=ignition, 2=ignition+starter)

# ---------------------------------------------------------------------------
# Scoring buffer: 12-byte header, rF2ScoringInfo, then rF2VehicleScoring[]
# ---------------------------------------------------------------------------

_SCO_HEADER_SIZE = 560
_SCO_OFF_NUM_VEHICLES = 116  # int32
_SCO_OFF_GAME_PHASE = 120    # uint8
_SCO_VEHICLE_SIZE = 584

_SV_ID = 0            # int32
_SV_IS_PLAYER = 196   # bool
_SV_IN_PITS = 198     # bool
_SV_FLAG = 504        # uint8

# mGamePhase → RacingFlags fields
_GAME_PHASE_FLAGS: dict[int, tuple[str, ...]] = {
    5: ("green",),
    6: ("yellow", "caution"),  # full course yellow
    7: ("red",),               # session stopped
    8: ("checkered",),         # session over
}
_VEHICLE_FLAG_BLUE = 6

_IGNITION_ON = 1
_STARTER_ON = 2


def _read_consistent(
    name: str, header_size: int, count_offset: int, item_size: int
) -> bytes | None:
    """Copy the header plus ``mNumVehicles`` entries, retrying torn copies."""
    for _ in range(_MAX_READ_ATTEMPTS):
        head = read_shared_memory(name, header_size)
        if head is None:
            return None
        count = min(max(read_int(head, count_offset), 0), _MAX_VEHICLES)
        buf = read_shared_memory(name, header_size + count * item_size)
        if buf is None:
            return None
        if read_uint(buf, _OFF_VERSION_BEGIN) == read_uint(buf, _OFF_VERSION_END):
            return buf
    _logger.debug("Gave up on a consistent copy of %s", name)
    return None


class RFactor2SharedMemory:
    """Reads rF2 telemetry and scoring from the plugin's shared memory.

    No persistent handles are held between reads. An instance can be
    replaced with a mock for unit testing.
    """

    def is_available(self) -> bool:
        """True if the plugin's telemetry buffer exists (rF2 is running)."""
        return mapping_exists(_TELEMETRY_MAP_NAME)

    def read_scoring(self) -> dict:
        """Session phase plus the player's id, pit and flag state."""
        buf = _read_consistent(
            _SCORING_MAP_NAME, _SCO_HEADER_SIZE, _SCO_OFF_NUM_VEHICLES, _SCO_VEHICLE_SIZE
        )
        if buf is None:
            return {}
        scoring = {"gamePhase": read_byte(buf, _SCO_OFF_GAME_PHASE)}
        count = (len(buf) - _SCO_HEADER_SIZE) // _SCO_VEHICLE_SIZE
        for i in range(count):
            base = _SCO_HEADER_SIZE + i * _SCO_VEHICLE_SIZE
            if read_byte(buf, base + _SV_IS_PLAYER):
                scoring.update(
                    playerId=read_int(buf, base + _SV_ID),
                    inPits=read_byte(buf, base + _SV_IN_PITS),
                    vehicleFlag=read_byte(buf, base + _SV_FLAG),
                )
                break
        return scoring

    def read_telemetry(self, vehicle_id: int) -> dict:
        """Telemetry of the vehicle with ``mID == vehicle_id``, or ``{}``."""
        buf = _read_consistent(
            _TELEMETRY_MAP_NAME, _TEL_HEADER_SIZE, _TEL_OFF_NUM_VEHICLES, _TEL_VEHICLE_SIZE
        )
        if buf is None:
            return {}
        count = (len(buf) - _TEL_HEADER_SIZE) // _TEL_VEHICLE_SIZE
        for i in range(count):
            base = _TEL_HEADER_SIZE + i * _TEL_VEHICLE_SIZE
            if read_int(buf, base + _TV_ID) != vehicle_id:
                continue
            return {
                "version": read_uint(buf, _OFF_VERSION_BEGIN),
                "vehicleName": read_str(buf, base + _TV_VEHICLE_NAME, _TV_VEHICLE_NAME_LEN),
                "localVel": tuple(
                    read_double(buf, base + _TV_LOCAL_VEL + 8 * axis) for axis in range(3)
                ),
                "gear": read_int(buf, base + _TV_GEAR),
                "engineRpm": read_double(buf, base + _TV_ENGINE_RPM),
                "engineMaxRpm": read_double(buf, base + _TV_ENGINE_MAX_RPM),
                "speedLimiter": read_byte(buf, base + _TV_SPEED_LIMITER),
                "ignitionStarter": read_byte(buf, base + _TV_IGNITION_STARTER),
            }
        return {}

    def close(self) -> None:
        """No-op: no persistent handles are held between reads."""


class RFactor2Connection(SharedMemoryConnection):
    """Connection to the rF2 plugin buffers.

    Parameters
    ----------
    reader:
        An :class:`RFactor2SharedMemory` instance. Injected for testability;
        defaults to the real implementation when not provided.
    """

    sim_name = NAME

    def __init__(self, reader: RFactor2SharedMemory | None = None) -> None:
        super().__init__(reader if reader is not None else RFactor2SharedMemory())

    def _read_pages(self) -> dict:
        # No player vehicle (e.g. still in the menus) means no frame.
        scoring = self._reader.read_scoring()
        if scoring.get("playerId") is None:
            return {}
        telemetry = self._reader.read_telemetry(scoring["playerId"])
        if not telemetry:
            return {}
        return {**scoring, **telemetry}


class RFactor2Moment(Moment):
    """The player's vehicle at one telemetry update."""

    def __init__(self, frame: dict) -> None:
        self._frame = frame

    def basic_telemetry(self) -> BasicTelemetry | None:
        vel = self._frame.get("localVel") or (0.0, 0.0, 0.0)
        speed = math.sqrt(sum(as_float(v) ** 2 for v in vel))
        return BasicTelemetry(
            gear=sanitize_int(as_int(self._frame.get("gear")), -1, 127),
            speed=Velocity.from_mps(sanitize(speed, 0.0, None)),
            engine_rotation_speed=AngularVelocity.from_rpm(
                sanitize(as_float(self._frame.get("engineRpm")), 0.0, None)
            ),
            max_engine_rotation_speed=AngularVelocity.from_rpm(
                sanitize(as_float(self._frame.get("engineMaxRpm")), 0.0, None)
            ),
            pit_limiter_engaged=bool(as_int(self._frame.get("speedLimiter"))),
            in_pit_lane=bool(as_int(self._frame.get("inPits"))),
        )

    def flags(self) -> RacingFlags:
        phase = as_int(self._frame.get("gamePhase"))
        names = dict.fromkeys(_GAME_PHASE_FLAGS.get(phase, ()), True)
        if as_int(self._frame.get("vehicleFlag")) == _VEHICLE_FLAG_BLUE:
            names["blue"] = True
        return RacingFlags(**names)

    def vehicle_unique_id(self) -> str | None:
        return self._frame.get("vehicleName") or None

    def ignition_on(self) -> bool:
        return as_int(self._frame.get("ignitionStarter")) >= _IGNITION_ON

    def starter_on(self) -> bool:
        return as_int(self._frame.get("ignitionStarter")) == _STARTER_ON


class RFactor2Client(SharedMemoryClient):
    """Session reading the player's rF2 telemetry until the plugin buffers go away."""

    NAME = NAME
    PACKET_KEY = "version"

    @classmethod
    def _make_connection(cls, reader: RFactor2SharedMemory | None) -> RFactor2Connection:
        return RFactor2Connection(reader)

    def _make_moment(self, frame: dict) -> Moment:
        return RFactor2Moment(frame)

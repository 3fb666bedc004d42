"""Generic HTTP backend for sims bridged by a small JSON server.

The server returns one JSON document per request, shaped like the
:class:`~simetry.moment.Moment` menu. Every key is optional; missing keys
take the same defaults as an unsupported query::

    {
      "sim_name": "My Sim",
      "vehicle_left": false,
      "basic_telemetry": {"gear": 3, "speed": {"meters_per_second": 45.0}, ...},
      "shift_point_rpm": 7800,
      "flags": {"yellow": true},
      "vehicle_unique_id": "my_car",
      "ignition_on": true,
      "starter_on": false
    }
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from simetry.flags import RacingFlags
from simetry.models import BasicTelemetry
from simetry.moment import Moment
from simetry.sims._http import HttpPollingClient
from simetry.units import AngularVelocity

NAME = "Generic HTTP"
DEFAULT_URI = "http://127.0.0.1:25055/"


class GenericPayload(BaseModel):
    """JSON document served by a generic HTTP bridge."""

    model_config = ConfigDict(extra="ignore")

    sim_name: str | None = None
    vehicle_left: bool = False
    vehicle_right: bool = False
    basic_telemetry: BasicTelemetry | None = None
    shift_point_rpm: float | None = Field(default=None, gt=0)
    flags: RacingFlags = Field(default_factory=RacingFlags)
    vehicle_unique_id: str | None = None
    ignition_on: bool = True
    starter_on: bool = False


class GenericHttpMoment(Moment):
    def __init__(self, payload: GenericPayload) -> None:
        self._payload = payload

    def vehicle_left(self) -> bool:
        return self._payload.vehicle_left

    def vehicle_right(self) -> bool:
        return self._payload.vehicle_right

    def basic_telemetry(self) -> BasicTelemetry | None:
        return self._payload.basic_telemetry

    def shift_point(self) -> AngularVelocity | None:
        if self._payload.shift_point_rpm is None:
            return None
        return AngularVelocity.from_rpm(self._payload.shift_point_rpm)

    def flags(self) -> RacingFlags:
        return self._payload.flags

    def vehicle_unique_id(self) -> str | None:
        return self._payload.vehicle_unique_id or None

    def ignition_on(self) -> bool:
        return self._payload.ignition_on

    def starter_on(self) -> bool:
        return self._payload.starter_on


class GenericHttpClient(HttpPollingClient[GenericPayload]):
    """Session polling a generic JSON bridge."""

    PAYLOAD = GenericPayload
    DEFAULT_NAME = NAME

    def _name_for(self, payload: GenericPayload) -> str:
        return payload.sim_name or NAME

    def _make_moment(self, payload: GenericPayload) -> Moment:
        return GenericHttpMoment(payload)

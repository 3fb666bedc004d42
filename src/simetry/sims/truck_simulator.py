"""Euro Truck Simulator 2 / American Truck Simulator backend.

Reads the JSON published by the ets2-telemetry-server plugin bridge.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from simetry.models import BasicTelemetry
from simetry.moment import Moment
from simetry.sims._convert import sanitize, sanitize_int
from simetry.sims._http import HttpPollingClient
from simetry.units import AngularVelocity, Velocity

NAME = "Truck Simulator"
DEFAULT_URI = "http://127.0.0.1:25555/api/ets2/telemetry"


class TruckGame(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    connected: bool = False
    game_name: str | None = Field(default=None, alias="gameName")


class TruckState(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = ""
    speed: float = 0.0
    """km/h, negative while reversing."""
    engine_rpm: float = Field(default=0.0, alias="engineRpm")
    engine_rpm_max: float = Field(default=0.0, alias="engineRpmMax")
    displayed_gear: int = Field(default=0, alias="displayedGear")
    electric_on: bool = Field(default=True, alias="electricOn")


class TruckPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    game: TruckGame = Field(default_factory=TruckGame)
    truck: TruckState = Field(default_factory=TruckState)


class TruckSimulatorMoment(Moment):
    def __init__(self, payload: TruckPayload) -> None:
        self._truck = payload.truck

    def basic_telemetry(self) -> BasicTelemetry | None:
        truck = self._truck
        return BasicTelemetry(
            gear=sanitize_int(truck.displayed_gear, -128, 127),
            speed=Velocity.from_kmh(sanitize(abs(truck.speed), 0.0, None)),
            engine_rotation_speed=AngularVelocity.from_rpm(sanitize(truck.engine_rpm, 0.0, None)),
            max_engine_rotation_speed=AngularVelocity.from_rpm(
                sanitize(truck.engine_rpm_max, 0.0, None)
            ),
        )

    def vehicle_unique_id(self) -> str | None:
        return self._truck.id or None

    def ignition_on(self) -> bool:
        return self._truck.electric_on


class TruckSimulatorClient(HttpPollingClient[TruckPayload]):
    """Session polling the truck telemetry server until the game disconnects."""

    PAYLOAD = TruckPayload
    DEFAULT_NAME = NAME

    @classmethod
    def _is_live(cls, payload: TruckPayload) -> bool:
        return payload.game.connected

    def _name_for(self, payload: TruckPayload) -> str:
        return payload.game.game_name or NAME

    def _make_moment(self, payload: TruckPayload) -> Moment:
        return TruckSimulatorMoment(payload)

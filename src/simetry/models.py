"""Normalized telemetry data models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from simetry.units import AngularVelocity, Velocity


class BasicTelemetry(BaseModel):
    """Telemetry values that almost every sim can provide.

    Physical quantities carry their unit in their type. The default instance
    is zero/false everywhere.
    """

    model_config = ConfigDict(frozen=True)

    gear: int = Field(default=0, ge=-128, le=127)
    """Gear position: negative = reverse, 0 = neutral, positive = forward."""

    speed: Velocity = Field(default_factory=Velocity)

    engine_rotation_speed: AngularVelocity = Field(default_factory=AngularVelocity)

    max_engine_rotation_speed: AngularVelocity = Field(default_factory=AngularVelocity)
    """Redline of the current vehicle."""

    pit_limiter_engaged: bool = False

    in_pit_lane: bool = False

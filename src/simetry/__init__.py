"""Uniform async telemetry from whichever racing sim is running.

Public API
----------
connect                  - connect to the first running sim (default config)
SimetryConnectionBuilder - endpoints + retry interval, then ``connect()``
race                     - run connection attempts, keep the first session
Simetry                  - a live session yielding Moments
Moment                   - telemetry at one instant, with documented defaults
BasicTelemetry           - gear, speed and engine data
RacingFlags              - race-control flags
Velocity, AngularVelocity - unit-typed quantities
"""

from simetry.connection import SimetryConnectionBuilder, connect, race
from simetry.errors import NoSimAvailableError, SimetryError
from simetry.flags import RacingFlags
from simetry.models import BasicTelemetry
from simetry.moment import Moment, Simetry
from simetry.units import AngularVelocity, Velocity

__version__ = "0.1.0"

__all__ = [
    "AngularVelocity",
    "BasicTelemetry",
    "Moment",
    "NoSimAvailableError",
    "RacingFlags",
    "Simetry",
    "SimetryConnectionBuilder",
    "SimetryError",
    "Velocity",
    "connect",
    "race",
]

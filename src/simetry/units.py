"""Unit-typed physical quantities.

Every quantity stores a single SI value and converts on the way in and out,
so a speed can never be mixed up with an engine speed or a bare float.
"""

from __future__ import annotations

import math
from functools import total_ordering
from typing import ClassVar

from pydantic import BaseModel, ConfigDict

_KMH_PER_MPS = 3.6
_MPH_PER_MPS = 2.2369362920544
_RPM_PER_RAD_S = 60.0 / (2.0 * math.pi)


@total_ordering
class _Quantity(BaseModel):
    """Shared arithmetic for single-value quantities of one unit type.

    Subclasses name their one SI field in ``_si_field``.
    """

    model_config = ConfigDict(frozen=True)

    _si_field: ClassVar[str]

    def _si(self) -> float:
        return getattr(self, self._si_field)

    def _make(self, si: float):
        return type(self)(**{self._si_field: si})

    def _same_type(self, other: object) -> bool:
        return type(other) is type(self)

    def __add__(self, other: object):
        if not self._same_type(other):
            return NotImplemented
        return self._make(self._si() + other._si())  # type: ignore[attr-defined]

    def __sub__(self, other: object):
        if not self._same_type(other):
            return NotImplemented
        return self._make(self._si() - other._si())  # type: ignore[attr-defined]

    def __lt__(self, other: object) -> bool:
        if not self._same_type(other):
            return NotImplemented
        return self._si() < other._si()  # type: ignore[attr-defined]


class Velocity(_Quantity):
    """Linear velocity, stored in metres per second."""

    _si_field: ClassVar[str] = "meters_per_second"

    meters_per_second: float = 0.0

    @classmethod
    def from_mps(cls, value: float) -> Velocity:
        return cls(meters_per_second=float(value))

    @classmethod
    def from_kmh(cls, value: float) -> Velocity:
        return cls(meters_per_second=float(value) / _KMH_PER_MPS)

    @property
    def kmh(self) -> float:
        return self.meters_per_second * _KMH_PER_MPS

    @property
    def mph(self) -> float:
        return self.meters_per_second * _MPH_PER_MPS


class AngularVelocity(_Quantity):
    """Angular velocity, stored in radians per second."""

    _si_field: ClassVar[str] = "radians_per_second"

    radians_per_second: float = 0.0

    @classmethod
    def from_rad_s(cls, value: float) -> AngularVelocity:
        return cls(radians_per_second=float(value))

    @classmethod
    def from_rpm(cls, value: float) -> AngularVelocity:
        """Build from revolutions per minute, the unit every sim reports."""
        return cls(radians_per_second=float(value) / _RPM_PER_RAD_S)

    @property
    def rpm(self) -> float:
        return self.radians_per_second * _RPM_PER_RAD_S

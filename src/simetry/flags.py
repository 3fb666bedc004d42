"""Race-control flags shown to the driver."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class RacingFlags(BaseModel):
    """Set of race-control flags currently shown to the player.

    The default instance has no flag active, which is the neutral state used
    for sims that do not report flags at all.
    """

    model_config = ConfigDict(frozen=True)

    green: bool = False
    yellow: bool = False
    blue: bool = False
    white: bool = False
    red: bool = False
    black: bool = False
    checkered: bool = False
    caution: bool = False
    repair: bool = False
    """Mechanical black flag ("meatball"): the car must pit for repairs."""

    def active(self) -> list[str]:
        """Return the names of all set flags in declaration order."""
        return [name for name in type(self).model_fields if getattr(self, name)]

    def any_active(self) -> bool:
        return any(getattr(self, name) for name in type(self).model_fields)

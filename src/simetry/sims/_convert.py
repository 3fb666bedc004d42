"""Sanitizing helpers for raw sim values."""

from __future__ import annotations

import math


def sanitize(value: float, lo: float | None, hi: float | None) -> float:
    """Return value clamped to [lo, hi], with NaN/Inf replaced by lo (or 0)."""
    if not math.isfinite(value):
        value = lo if lo is not None else 0.0
    if lo is not None and value < lo:
        value = lo
    if hi is not None and value > hi:
        value = hi
    return value


def sanitize_int(value: int, lo: int | None, hi: int | None) -> int:
    if lo is not None and value < lo:
        value = lo
    if hi is not None and value > hi:
        value = hi
    return value


def as_float(raw: object) -> float:
    """Coerce an SDK value to float; ``None`` and junk become 0.0."""
    try:
        return float(raw or 0.0)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0


def as_int(raw: object) -> int:
    try:
        return int(raw or 0)  # type: ignore[call-overload]
    except (TypeError, ValueError, OverflowError):
        return 0

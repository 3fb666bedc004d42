"""Exceptions raised by simetry."""

from __future__ import annotations


class SimetryError(Exception):
    """Base exception for all simetry errors."""


class NoSimAvailableError(SimetryError):
    """Raised when every backend connection attempt crashed.

    An absent sim is never an error; attempts simply keep waiting. This only
    surfaces when no backend is left that could still connect.
    """

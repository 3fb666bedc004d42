"""Shared test doubles for simetry sessions."""

from __future__ import annotations

import asyncio

import pytest

from simetry.moment import Moment, Simetry


class ScriptedSession(Simetry):
    """Session that yields a fixed list of moments, then ends."""

    def __init__(
        self,
        moments: list[Moment] | None = None,
        name: str = "Scripted",
        close_delay: float = 0.0,
    ) -> None:
        super().__init__()
        self._close_delay = close_delay
        self._moments = list(moments or [])
        self._name = name
        self.reads = 0
        self.close_calls = 0

    @property
    def name(self) -> str:
        return self._name

    async def _next_moment(self) -> Moment | None:
        self.reads += 1
        if not self._moments:
            return None
        return self._moments.pop(0)

    async def _close(self) -> None:
        self.close_calls += 1
        if self._close_delay:
            await asyncio.sleep(self._close_delay)


@pytest.fixture()
def scripted_session():
    """Factory fixture: ``scripted_session([m1, m2], name="X")``."""
    return ScriptedSession

"""Shared base for sims that publish telemetry as JSON over HTTP."""

from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from typing import Generic, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from simetry.moment import Moment, Simetry
from simetry.retry import retry_forever

_logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 2.0

P = TypeVar("P", bound=BaseModel)


def _default_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=DEFAULT_TIMEOUT,
        headers={"Accept": "application/json"},
    )


class HttpPollingClient(Simetry, Generic[P]):
    """Polls a JSON endpoint and turns each response into a :class:`Moment`.

    Subclasses set :attr:`PAYLOAD` and :attr:`DEFAULT_NAME` and implement
    :meth:`_make_moment`. A failed request ends the session; a response that
    does not validate is skipped.
    """

    PAYLOAD: type[P]
    DEFAULT_NAME: str

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        uri: str,
        first_payload: P,
        poll_interval: float,
    ) -> None:
        super().__init__()
        self._client = http_client
        self._uri = uri
        self._pending: P | None = first_payload
        self._poll_interval = poll_interval
        self._name = self._name_for(first_payload)

    @property
    def name(self) -> str:
        return self._name

    @classmethod
    async def connect(
        cls,
        uri: str,
        retry_delay: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
        poll_interval: float = 1.0 / 30.0,
    ) -> HttpPollingClient:
        """Poll *uri* every *retry_delay* seconds until the sim answers.

        The returned session takes over *http_client*. If connecting fails or
        is cancelled, a caller-supplied client is left open.
        """
        owns_client = http_client is None
        client = _default_client() if http_client is None else http_client

        async def attempt() -> P | None:
            try:
                payload = await cls._fetch(client, uri)
            except (httpx.HTTPError, ValidationError) as exc:
                _logger.debug("%s poll of %s failed: %s", cls.DEFAULT_NAME, uri, exc)
                return None
            return payload if cls._is_live(payload) else None

        try:
            payload = await retry_forever(attempt, retry_delay, cls.DEFAULT_NAME)
        except BaseException:
            if owns_client:
                await client.aclose()
            raise
        return cls(client, uri, payload, poll_interval)

    async def _next_moment(self) -> Moment | None:
        while True:
            if self._pending is not None:
                payload, self._pending = self._pending, None
                return self._make_moment(payload)

            await asyncio.sleep(self._poll_interval)
            try:
                payload = await self._fetch(self._client, self._uri)
            except httpx.HTTPError as exc:
                _logger.info("%s stopped answering: %s", self.name, exc)
                return None
            except ValidationError as exc:
                _logger.debug("Skipping malformed %s payload: %s", self.name, exc)
                continue
            if not self._is_live(payload):
                return None
            return self._make_moment(payload)

    async def _close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    @classmethod
    async def _fetch(cls, client: httpx.AsyncClient, uri: str) -> P:
        response = await client.get(uri)
        response.raise_for_status()
        return cls.PAYLOAD.model_validate_json(response.content)

    @classmethod
    def _is_live(cls, payload: P) -> bool:
        """Whether *payload* shows the sim actually running."""
        return True

    def _name_for(self, payload: P) -> str:
        return self.DEFAULT_NAME

    @abstractmethod
    def _make_moment(self, payload: P) -> Moment:
        ...


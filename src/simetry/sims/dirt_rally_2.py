"""DiRT Rally 2.0 backend over its UDP telemetry stream.

Enable it in ``hardware_settings_config.xml`` with
``<udp enabled="true" extradata="3" ip="127.0.0.1" port="20777" .../>``.
Each datagram is 66 little-endian floats.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import struct

from simetry.models import BasicTelemetry
from simetry.moment import Moment, Simetry
from simetry.retry import retry_forever
from simetry.sims._convert import sanitize, sanitize_int
from simetry.units import AngularVelocity, Velocity

_logger = logging.getLogger(__name__)

NAME = "DiRT Rally 2.0"
DEFAULT_URI = "127.0.0.1:20777"

_PACKET = struct.Struct("<66f")

_IDX_SPEED = 7      # m/s
_IDX_GEAR = 33      # 0=N, 10=R
_IDX_RPM = 37       # rpm / 10
_IDX_MAX_RPM = 63   # rpm / 10

_GEAR_REVERSE = 10
_RPM_SCALE = 10.0


def parse_uri(uri: str) -> tuple[str, int]:
    """Split ``"host:port"`` into its parts."""
    host, sep, port = uri.rpartition(":")
    if not sep or not host:
        raise ValueError(f"expected host:port, got {uri!r}")
    return host, int(port)


class _PacketProtocol(asyncio.DatagramProtocol):
    """Buffers datagrams; when the queue is full the oldest is dropped."""

    def __init__(self, queue_maxsize: int = 8) -> None:
        self.packets: asyncio.Queue[bytes] = asyncio.Queue(maxsize=queue_maxsize)

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        try:
            self.packets.put_nowait(data)
        except asyncio.QueueFull:
            with contextlib.suppress(asyncio.QueueEmpty):
                self.packets.get_nowait()
            with contextlib.suppress(asyncio.QueueFull):
                self.packets.put_nowait(data)

    def error_received(self, exc: Exception) -> None:
        _logger.debug("DiRT Rally 2.0 socket error: %s", exc)


class DirtRally2Moment(Moment):
    """One decoded telemetry datagram."""

    def __init__(self, values: tuple[float, ...]) -> None:
        self._values = values

    @classmethod
    def from_packet(cls, data: bytes) -> DirtRally2Moment | None:
        """Decode *data*, or return None if it is too short."""
        if len(data) < _PACKET.size:
            return None
        return cls(_PACKET.unpack_from(data))

    def basic_telemetry(self) -> BasicTelemetry | None:
        raw_gear = sanitize(self._values[_IDX_GEAR], 0.0, None)
        gear = -1 if round(raw_gear) == _GEAR_REVERSE else sanitize_int(round(raw_gear), 0, 127)
        return BasicTelemetry(
            gear=gear,
            speed=Velocity.from_mps(sanitize(self._values[_IDX_SPEED], 0.0, None)),
            engine_rotation_speed=AngularVelocity.from_rpm(
                sanitize(self._values[_IDX_RPM], 0.0, None) * _RPM_SCALE
            ),
            max_engine_rotation_speed=AngularVelocity.from_rpm(
                sanitize(self._values[_IDX_MAX_RPM], 0.0, None) * _RPM_SCALE
            ),
        )


class DirtRally2Client(Simetry):
    """Session over the UDP stream; ends after *disconnect_timeout* s of silence."""

    def __init__(
        self,
        transport: asyncio.DatagramTransport,
        protocol: _PacketProtocol,
        disconnect_timeout: float = 5.0,
    ) -> None:
        super().__init__()
        self._transport = transport
        self._protocol = protocol
        self._disconnect_timeout = disconnect_timeout

    @property
    def name(self) -> str:
        return NAME

    @property
    def local_address(self) -> tuple:
        return self._transport.get_extra_info("sockname")

    @classmethod
    async def connect(
        cls,
        uri: str = DEFAULT_URI,
        retry_delay: float = 5.0,
        disconnect_timeout: float = 5.0,
    ) -> DirtRally2Client:
        """Listen on *uri* and return once the first datagram has arrived.

        Binding is retried as well, in case another program holds the port.
        """
        host, port = parse_uri(uri)
        loop = asyncio.get_running_loop()
        transport: asyncio.DatagramTransport | None = None
        protocol: _PacketProtocol | None = None

        async def attempt() -> bool | None:
            nonlocal transport, protocol
            if transport is None:
                try:
                    transport, protocol = await loop.create_datagram_endpoint(
                        _PacketProtocol, local_addr=(host, port)
                    )
                except OSError as exc:
                    _logger.debug("Cannot listen on %s: %s", uri, exc)
                    return None
            return True if not protocol.packets.empty() else None

        try:
            await retry_forever(attempt, retry_delay, NAME)
        except BaseException:
            if transport is not None:
                transport.close()
            raise
        return cls(transport, protocol, disconnect_timeout)

    async def _next_moment(self) -> Moment | None:
        while True:
            try:
                data = await asyncio.wait_for(
                    self._protocol.packets.get(), timeout=self._disconnect_timeout
                )
            except asyncio.TimeoutError:
                _logger.info("No %s packet for %.1fs", NAME, self._disconnect_timeout)
                return None
            moment = DirtRally2Moment.from_packet(data)
            if moment is None:
                _logger.debug("Skipping short %s packet (%d bytes)", NAME, len(data))
                continue
            return moment

    async def _close(self) -> None:
        self._transport.close()

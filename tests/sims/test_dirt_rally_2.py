"""Tests for the DiRT Rally 2.0 UDP backend."""

from __future__ import annotations

import asyncio
import socket
import struct

import pytest

from simetry.sims.dirt_rally_2 import (
    DirtRally2Client,
    DirtRally2Moment,
    _PacketProtocol,
    parse_uri,
)


def make_packet(
    speed: float = 20.0, gear: float = 3.0, rpm: float = 550.0, max_rpm: float = 780.0
) -> bytes:
    values = [0.0] * 66
    values[7] = speed
    values[33] = gear
    values[37] = rpm
    values[63] = max_rpm
    return struct.pack("<66f", *values)


def _free_udp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def test_parse_uri():
    assert parse_uri("127.0.0.1:20777") == ("127.0.0.1", 20777)


@pytest.mark.parametrize("uri", ["20777", ":20777", "localhost:port"])
def test_parse_uri_rejects_malformed(uri):
    with pytest.raises(ValueError):
        parse_uri(uri)


def test_packet_decodes_to_basic_telemetry():
    t = DirtRally2Moment.from_packet(make_packet()).basic_telemetry()
    assert t.gear == 3
    assert t.speed.meters_per_second == pytest.approx(20.0)
    assert t.engine_rotation_speed.rpm == pytest.approx(5500.0)
    assert t.max_engine_rotation_speed.rpm == pytest.approx(7800.0)
    assert t.pit_limiter_engaged is False
    assert t.in_pit_lane is False


@pytest.mark.parametrize(("raw", "gear"), [(0.0, 0), (10.0, -1), (6.0, 6)])
def test_gear_encoding(raw, gear):
    assert DirtRally2Moment.from_packet(make_packet(gear=raw)).basic_telemetry().gear == gear


def test_short_packet_is_rejected():
    assert DirtRally2Moment.from_packet(make_packet()[:100]) is None


def test_longer_packet_is_accepted():
    assert DirtRally2Moment.from_packet(make_packet() + b"\x00" * 16) is not None


def test_unsupported_queries_use_defaults():
    m = DirtRally2Moment.from_packet(make_packet())
    assert m.flags().any_active() is False
    assert m.vehicle_unique_id() is None
    assert m.shift_point() is None
    assert m.ignition_on() is True


@pytest.mark.asyncio
async def test_protocol_drops_oldest_when_full():
    proto = _PacketProtocol(queue_maxsize=2)
    for data in (b"a", b"b", b"c"):
        proto.datagram_received(data, ("127.0.0.1", 1))
    assert proto.packets.get_nowait() == b"b"
    assert proto.packets.get_nowait() == b"c"


# ---------------------------------------------------------------------------
# DirtRally2Client over a real localhost socket
# ---------------------------------------------------------------------------


async def _send_until(port: int, packet: bytes, done: asyncio.Future) -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        while not done.done():
            s.sendto(packet, ("127.0.0.1", port))
            await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_client_connects_on_first_packet_and_times_out():
    port = _free_udp_port()
    connect_task = asyncio.create_task(
        DirtRally2Client.connect(f"127.0.0.1:{port}", retry_delay=0.02, disconnect_timeout=0.1)
    )
    await _send_until(port, make_packet(gear=2.0), connect_task)
    client = connect_task.result()

    assert client.name == "DiRT Rally 2.0"
    first = await client.next_moment()
    assert first.basic_telemetry().gear == 2

    # Drain what the sender left behind, then the stream goes silent.
    while (moment := await client.next_moment()) is not None:
        assert moment.basic_telemetry().gear == 2
    assert client._transport.is_closing()
    assert await client.next_moment() is None


@pytest.mark.asyncio
async def test_client_skips_short_packets():
    port = _free_udp_port()
    connect_task = asyncio.create_task(
        DirtRally2Client.connect(f"127.0.0.1:{port}", retry_delay=0.02, disconnect_timeout=0.2)
    )
    await _send_until(port, b"\x00" * 8, connect_task)
    client = connect_task.result()

    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        s.sendto(make_packet(gear=4.0), ("127.0.0.1", port))
        moment = await client.next_moment()

    assert moment.basic_telemetry().gear == 4
    await client.aclose()


@pytest.mark.asyncio
async def test_cancelled_connect_frees_the_port():
    port = _free_udp_port()
    uri = f"127.0.0.1:{port}"
    task = asyncio.create_task(DirtRally2Client.connect(uri, retry_delay=0.01))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await asyncio.sleep(0.01)

    # The port can be bound again, so the cancelled attempt released it.
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        s.bind(("127.0.0.1", port))

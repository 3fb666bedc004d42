"""Tests for the ACC backend: shared memory decoding and connection management."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock, call

import pytest

from simetry.flags import RacingFlags
from simetry.sims import _shared_memory, acc
from simetry.sims.acc import ACCClient, ACCLiveConnection, ACCMoment, ACCSharedMemory

_PHYSICS_SAMPLE = {
    "packetId": 100,
    "gear": 4,  # 3rd gear (0=R, 1=N)
    "rpms": 6500,
    "speedKmh": 180.0,
    "pitLimiterOn": 0,
    "currentMaxRpm": 8500,
    "ignitionOn": 1,
    "starterEngineOn": 0,
}

_GRAPHICS_SAMPLE = {
    "status": 2,
    "flag": 0,
    "isInPitLane": 0,
}

_STATIC_SAMPLE = {"smVersion": "1.9", "acVersion": "1.9.8", "carModel": "porsche_992_gt3_r"}


def make_reader(available: bool = True) -> MagicMock:
    """Create a mock ACCSharedMemory."""
    reader = MagicMock()
    reader.is_available.return_value = available
    reader.read_physics.return_value = _PHYSICS_SAMPLE.copy()
    reader.read_graphics.return_value = _GRAPHICS_SAMPLE.copy()
    reader.read_static.return_value = _STATIC_SAMPLE.copy()
    return reader


def make_frame(**overrides) -> dict:
    return {**_PHYSICS_SAMPLE, **_GRAPHICS_SAMPLE, **_STATIC_SAMPLE, **overrides}


# ---------------------------------------------------------------------------
# ACCSharedMemory
# ---------------------------------------------------------------------------


def test_shared_memory_unavailable_off_windows(monkeypatch):
    monkeypatch.setattr(_shared_memory.sys, "platform", "linux")
    mem = ACCSharedMemory()
    assert mem.is_available() is False
    assert mem.read_physics() == {}
    assert mem.read_graphics() == {}
    assert mem.read_static() == {}


def test_offsets_fit_inside_mapped_sizes():
    assert acc._OFF_STARTER + 4 <= acc._PHYS_SIZE
    assert acc._OFF_IS_IN_PIT_LANE + 4 <= acc._GRAP_SIZE
    assert acc._OFF_CAR_MODEL + acc._CAR_MODEL_CHARS * 2 <= acc._STAT_SIZE


# ---------------------------------------------------------------------------
# ACCLiveConnection
# ---------------------------------------------------------------------------


def test_connect_returns_true_when_acc_running():
    conn = ACCLiveConnection(reader=make_reader(available=True))
    assert conn.connect() is True


def test_connect_returns_false_when_acc_not_running():
    conn = ACCLiveConnection(reader=make_reader(available=False))
    assert conn.connect() is False


def test_connect_ignores_pages_published_by_assetto_corsa():
    reader = make_reader(available=True)
    reader.read_static.return_value = {**_STATIC_SAMPLE, "smVersion": "1.7"}
    assert ACCLiveConnection(reader=reader).connect() is False


def test_connect_waits_until_static_page_is_filled_in():
    reader = make_reader(available=True)
    reader.read_static.side_effect = [{}, {"smVersion": ""}, _STATIC_SAMPLE.copy()]
    conn = ACCLiveConnection(reader=reader)
    assert conn.connect() is False
    assert conn.connect() is False
    assert conn.connect() is True


def test_connect_does_not_raise_when_reader_raises():
    reader = MagicMock()
    reader.is_available.side_effect = OSError("shared memory not available")
    conn = ACCLiveConnection(reader=reader)
    assert conn.connect() is False


def test_callbacks_on_connect_and_disconnect():
    reader = make_reader(available=True)
    conn = ACCLiveConnection(reader=reader)
    cb = MagicMock()
    conn.register_callback(cb)
    conn.connect()
    conn.disconnect()
    assert cb.call_args_list == [call(True), call(False)]
    reader.close.assert_called_once()


def test_read_frame_none_when_not_connected():
    assert ACCLiveConnection(reader=make_reader()).read_frame() is None


def test_read_frame_merges_all_pages():
    conn = ACCLiveConnection(reader=make_reader())
    conn.connect()
    assert conn.read_frame() == make_frame()


# ---------------------------------------------------------------------------
# ACCMoment
# ---------------------------------------------------------------------------


def test_basic_telemetry_mapping():
    t = ACCMoment(make_frame(pitLimiterOn=1, isInPitLane=1)).basic_telemetry()
    assert t.gear == 3
    assert t.speed.kmh == pytest.approx(180.0)
    assert t.engine_rotation_speed.rpm == pytest.approx(6500)
    assert t.max_engine_rotation_speed.rpm == pytest.approx(8500)
    assert t.pit_limiter_engaged is True
    assert t.in_pit_lane is True


@pytest.mark.parametrize(("raw", "gear"), [(0, -1), (1, 0), (2, 1), (8, 7)])
def test_gear_offset(raw, gear):
    assert ACCMoment(make_frame(gear=raw)).basic_telemetry().gear == gear


def test_negative_speed_clamped():
    assert ACCMoment(make_frame(speedKmh=-3.0)).basic_telemetry().speed.kmh == 0.0


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (0, RacingFlags()),
        (1, RacingFlags(blue=True)),
        (2, RacingFlags(yellow=True)),
        (5, RacingFlags(checkered=True)),
        (7, RacingFlags(green=True)),
        (8, RacingFlags(repair=True)),
        (99, RacingFlags()),
    ],
)
def test_flag_mapping(raw, expected):
    assert ACCMoment(make_frame(flag=raw)).flags() == expected


def test_vehicle_unique_id_from_car_model():
    assert ACCMoment(make_frame()).vehicle_unique_id() == "porsche_992_gt3_r"
    assert ACCMoment(make_frame(carModel="")).vehicle_unique_id() is None


def test_ignition_and_starter():
    m = ACCMoment(make_frame(ignitionOn=0, starterEngineOn=1))
    assert m.ignition_on() is False
    assert m.starter_on() is True


def test_adjacency_and_shift_point_use_defaults():
    m = ACCMoment(make_frame())
    assert m.vehicle_left() is False
    assert m.vehicle_right() is False
    assert m.shift_point() is None


# ---------------------------------------------------------------------------
# ACCClient
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_client_connect_retries_until_available():
    reader = make_reader()
    reader.is_available.side_effect = [False, False, True]
    client = await ACCClient.connect(retry_delay=0.01, reader=reader)
    assert reader.is_available.call_count == 3
    assert client.name == "Assetto Corsa Competizione"


@pytest.mark.asyncio
async def test_client_session_ends_when_assetto_corsa_takes_over_the_pages():
    reader = make_reader()
    reader.read_static.side_effect = [
        _STATIC_SAMPLE.copy(),  # connect
        _STATIC_SAMPLE.copy(),  # first poll
        _STATIC_SAMPLE.copy(),  # first frame
        {**_STATIC_SAMPLE, "smVersion": "1.7"},
    ]
    client = await ACCClient.connect(retry_delay=0.01, reader=reader, poll_interval=0.001)

    assert await client.next_moment() is not None
    assert await client.next_moment() is None


@pytest.mark.asyncio
async def test_client_emits_new_packets_only_then_none():
    reader = make_reader()
    # connect, then one availability check per loop iteration
    reader.is_available.side_effect = [True, True, True, True, True, False]
    reader.read_physics.side_effect = [
        {**_PHYSICS_SAMPLE, "packetId": 1, "gear": 2},
        {**_PHYSICS_SAMPLE, "packetId": 1, "gear": 3},
        {**_PHYSICS_SAMPLE, "packetId": 2, "gear": 4},
        {**_PHYSICS_SAMPLE, "packetId": 3, "gear": 5},
    ]
    client = await ACCClient.connect(retry_delay=0.01, reader=reader, poll_interval=0.001)

    gears = [m.basic_telemetry().gear async for m in client]

    assert gears == [1, 3, 4]
    reader.close.assert_called_once()


@pytest.mark.asyncio
async def test_cancelled_connect_releases_reader():
    reader = make_reader(available=False)
    task = asyncio.create_task(ACCClient.connect(retry_delay=0.01, reader=reader))
    await asyncio.sleep(0.03)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    reader.close.assert_called_once()

"""Print live telemetry from whichever supported sim is running.

Start any supported sim, then:
    uv run python scripts/watch_telemetry.py
    uv run python scripts/watch_telemetry.py --retry-delay 2 --verbose
    uv run python scripts/watch_telemetry.py --timeout 60   # give up after 60 s

Endpoint overrides are read from SIMETRY_* variables (a .env file works too).

Quit with Ctrl+C.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace

from dotenv import load_dotenv

load_dotenv()

from simetry import Moment, SimetryConnectionBuilder  # noqa: E402


def _format_moment(moment: Moment) -> str:
    telemetry = moment.basic_telemetry()
    if telemetry is None:
        line = "(no basic telemetry)"
    else:
        line = (
            f"{telemetry.speed.kmh:>7.1f} km/h "
            f"gear {telemetry.gear:>2d} "
            f"{telemetry.engine_rotation_speed.rpm:>6.0f}/"
            f"{telemetry.max_engine_rotation_speed.rpm:<6.0f} rpm"
        )
        if telemetry.pit_limiter_engaged:
            line += " [limiter]"
        if telemetry.in_pit_lane:
            line += " [pit lane]"

    shift = moment.shift_point()
    if shift is not None:
        line += f" shift@{shift.rpm:.0f}"
    if moment.vehicle_left():
        line += " <car"
    if moment.vehicle_right():
        line += " car>"
    flags = moment.flags().active()
    if flags:
        line += " flags=" + ",".join(flags)
    if not moment.ignition_on():
        line += " [ignition off]"
    if moment.starter_on():
        line += " [starter]"
    return line


async def _watch(builder: SimetryConnectionBuilder, timeout: float | None) -> int:
    print("Waiting for a supported sim...", flush=True)
    try:
        session = await asyncio.wait_for(builder.connect(), timeout=timeout)
    except asyncio.TimeoutError:
        print(f"No sim found within {timeout:.0f}s.", file=sys.stderr)
        return 1

    async with session:
        print(f"Connected to {session.name}.", flush=True)
        vehicle: str | None = None
        async for moment in session:
            vehicle_id = moment.vehicle_unique_id()
            if vehicle_id != vehicle:
                vehicle = vehicle_id
                print(f"\nVehicle: {vehicle or 'unknown'}")
            print(_format_moment(moment), end="\r", flush=True)

    print(f"\n{session.name} disconnected.")
    return 0


def main() -> None:
    ap = argparse.ArgumentParser(description="Print live sim telemetry")
    ap.add_argument("--retry-delay", type=float, default=None, help="Seconds between attempts")
    ap.add_argument("--timeout", type=float, default=None, help="Give up after this many seconds")
    ap.add_argument("--verbose", action="store_true", help="Log connection attempts")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    builder = SimetryConnectionBuilder.from_env()
    if args.retry_delay is not None:
        builder = replace(builder, retry_delay=args.retry_delay)

    try:
        sys.exit(asyncio.run(_watch(builder, args.timeout)))
    except KeyboardInterrupt:
        print("\nStopped.")


if __name__ == "__main__":
    main()

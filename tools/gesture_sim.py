from __future__ import annotations

import argparse
import asyncio
import json
import math
import time

import websockets


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Simulate phone taps and shakes against a navaid host")
    parser.add_argument("--server", default="ws://127.0.0.1:8765", help="ws://host:port")
    sub = parser.add_subparsers(dest="mode", required=True)

    taps = sub.add_parser("taps", help="Send a burst of taps to /events")
    taps.add_argument("--count", type=int, default=3)
    taps.add_argument("--interval-ms", type=int, default=200)

    shake = sub.add_parser("shake", help="Stream accelerometer samples to /motion")
    shake.add_argument("--permission", choices=["granted", "denied"], default="granted")
    shake.add_argument("--amplitude", type=float, default=12.0, help="Peak acceleration per axis (m/s^2)")
    shake.add_argument("--shake-hz", type=float, default=4.0)
    shake.add_argument("--rate-hz", type=float, default=50.0, help="Samples per second")
    shake.add_argument("--duration-s", type=float, default=3.0)

    cue = sub.add_parser("cue", help="Request a navigation cue on /events")
    cue.add_argument("direction", choices=["left", "right", "straight"])
    return parser


def _shake_samples(amplitude: float, shake_hz: float, rate_hz: float, duration_s: float):
    total = int(rate_hz * duration_s)
    two_pi_f = 2.0 * math.pi * shake_hz
    for i in range(total):
        t = i / rate_hz
        s = math.sin(two_pi_f * t) * amplitude
        yield {"type": "motion", "x": round(s, 3), "y": round(s * 0.5, 3), "z": round(9.81 + s * 0.25, 3)}


async def _send_taps(server: str, count: int, interval_ms: int) -> None:
    async with websockets.connect(f"{server}/events") as ws:
        for i in range(max(0, count)):
            await ws.send(json.dumps({"type": "tap"}))
            print(f"tap {i + 1}/{count}")
            await asyncio.sleep(interval_ms / 1000.0)
        # Stay connected past the debounce so the alert comes back to us.
        try:
            while True:
                msg = await asyncio.wait_for(ws.recv(), timeout=1.5)
                if '"alert.emergency"' in msg:
                    print(msg)
        except asyncio.TimeoutError:
            pass


async def _send_shake(server: str, args: argparse.Namespace) -> None:
    async with websockets.connect(f"{server}/motion") as ws:
        await ws.send(json.dumps({"v": 1, "type": "hello", "motionPermission": args.permission}))
        period_s = 1.0 / max(1.0, args.rate_hz)
        next_time = time.monotonic()
        for sample in _shake_samples(args.amplitude, args.shake_hz, args.rate_hz, args.duration_s):
            await ws.send(json.dumps(sample))
            next_time += period_s
            sleep = next_time - time.monotonic()
            if sleep > 0:
                await asyncio.sleep(sleep)


async def main() -> None:
    args = build_parser().parse_args()
    server = str(args.server).rstrip("/")
    if args.mode == "taps":
        await _send_taps(server, args.count, args.interval_ms)
    elif args.mode == "shake":
        await _send_shake(server, args)
    else:
        async with websockets.connect(f"{server}/events") as ws:
            await ws.send(json.dumps({"type": "cue", "direction": args.direction}))


if __name__ == "__main__":
    asyncio.run(main())

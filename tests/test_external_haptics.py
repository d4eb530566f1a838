from __future__ import annotations

import asyncio

import pytest
import websockets

from navaid.external_haptics import ExternalHapticsClient, encode_buzz, pattern_segments
from navaid.models import VibrationPattern


def test_pattern_segments_pair_on_and_off() -> None:
    assert pattern_segments(VibrationPattern.SOS_SHAKE) == [(300, 200), (300, 0)]
    assert pattern_segments([200, 100, 200, 100, 200]) == [(200, 100), (200, 100), (200, 0)]
    assert pattern_segments(150) == [(150, 0)]
    assert pattern_segments([]) == []


@pytest.mark.parametrize(
    "fmt,expected",
    [("csv", "200,255"), ("json", "[200,255]"), ("tuple", "(200,255)")],
)
def test_encode_formats(fmt: str, expected: str) -> None:
    assert encode_buzz(200, 255, fmt) == expected


def test_encode_clamps() -> None:
    assert encode_buzz(-5, 999) == "0,255"
    assert encode_buzz(120_000, 10) == "60000,10"


def test_new_pattern_replaces_pending() -> None:
    client = ExternalHapticsClient(name="t", url="ws://127.0.0.1:1")
    client.vibrate(VibrationPattern.STRONG)
    client.vibrate(VibrationPattern.LIGHT)
    assert client.pending_segments == [(100, 0)]
    client.vibrate(0)
    assert client.pending_segments == []


def test_client_sends_each_on_segment() -> None:
    async def scenario() -> list[str]:
        received: list[str] = []
        got_two = asyncio.Event()

        async def handler(ws) -> None:  # type: ignore[no-untyped-def]
            async for msg in ws:
                received.append(msg)
                if len(received) >= 2:
                    got_two.set()

        async with websockets.serve(handler, "127.0.0.1", 0) as server:
            port = server.sockets[0].getsockname()[1]
            stop = asyncio.Event()
            client = ExternalHapticsClient(name="t", url=f"ws://127.0.0.1:{port}", intensity=200)
            task = asyncio.create_task(client.run(stop))
            client.vibrate([30, 20, 40])
            await asyncio.wait_for(got_two.wait(), timeout=5.0)
            stop.set()
            await asyncio.wait_for(task, timeout=5.0)
        return received

    assert asyncio.run(scenario()) == ["30,200", "40,200"]

from __future__ import annotations

import asyncio
import collections
import json
import logging
import random
import time
from typing import Sequence

import websockets


def _clamp_int(v: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, int(v)))


def pattern_segments(pattern: int | Sequence[int]) -> list[tuple[int, int]]:
    """Split an on/off millisecond pattern into (on_ms, off_ms) pairs."""
    if isinstance(pattern, int):
        values = [pattern]
    else:
        values = [int(v) for v in pattern]
    segments: list[tuple[int, int]] = []
    for i in range(0, len(values), 2):
        on_ms = max(0, values[i])
        off_ms = max(0, values[i + 1]) if i + 1 < len(values) else 0
        segments.append((on_ms, off_ms))
    return segments


def encode_buzz(duration_ms: int, intensity: int, payload_format: str = "csv") -> str:
    duration_ms_i = _clamp_int(duration_ms, 0, 60_000)
    intensity_i = _clamp_int(intensity, 0, 255)
    if payload_format == "json":
        return json.dumps([duration_ms_i, intensity_i], separators=(",", ":"))
    if payload_format == "tuple":
        return f"({duration_ms_i},{intensity_i})"
    # Default: easiest for small devices to parse.
    return f"{duration_ms_i},{intensity_i}"


class ExternalHapticsClient:
    """Maintain a WS connection to a haptics device and play vibration patterns on it.

    Each "on" segment of a pattern goes out as one (durationMs, intensity) command;
    the next command waits for that segment's on+off time. Calling `vibrate` again
    replaces whatever is still pending, and `vibrate(0)` cancels it.
    """

    def __init__(
        self,
        *,
        name: str,
        url: str,
        payload_format: str = "csv",
        intensity: int = 255,
        open_timeout_s: float = 15.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._name = name
        self._url = url
        self._payload_format = (payload_format or "csv").strip().lower()
        self._intensity = _clamp_int(intensity, 0, 255)
        self._open_timeout_s = float(max(0.1, open_timeout_s))
        self._pending: collections.deque[tuple[int, int]] = collections.deque()
        self._wake = asyncio.Event()
        self._logger = logger or logging.getLogger("navaid.external_haptics")

        self.connected: bool = False
        self._last_err_log_s: float = 0.0

    @property
    def url(self) -> str:
        return self._url

    @property
    def pending_segments(self) -> list[tuple[int, int]]:
        return list(self._pending)

    def vibrate(self, pattern: int | Sequence[int]) -> None:
        self._pending.clear()
        self._pending.extend(seg for seg in pattern_segments(pattern) if seg != (0, 0))
        self._wake.set()

    def encode(self, duration_ms: int) -> str:
        return encode_buzz(duration_ms, self._intensity, self._payload_format)

    async def _next_segment(self, stop: asyncio.Event) -> tuple[int, int] | None:
        if not self._pending:
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=1.0)
            except asyncio.TimeoutError:
                return None
        if stop.is_set() or not self._pending:
            return None
        return self._pending.popleft()

    async def _hold(self, seconds: float) -> None:
        # Returns early when a new pattern replaces the current one.
        self._wake.clear()
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            pass

    async def run(self, stop: asyncio.Event) -> None:
        backoff_s = 0.5
        while not stop.is_set():
            try:
                # ESP32 websocket servers are simplistic: no ping/pong, small queue, drain replies.
                async with websockets.connect(
                    self._url,
                    open_timeout=self._open_timeout_s,
                    ping_interval=None,
                    close_timeout=2,
                    max_size=64 * 1024,
                    max_queue=8,
                ) as ws:
                    self.connected = True
                    backoff_s = 0.5
                    self._logger.info("External haptics %s connected url=%s", self._name, self._url)

                    async def drain_incoming() -> None:
                        while not stop.is_set():
                            try:
                                await ws.recv()
                            except asyncio.CancelledError:
                                raise
                            except Exception:
                                return

                    drain_task = asyncio.create_task(drain_incoming(), name=f"external_haptics_{self._name}_drain")
                    try:
                        while not stop.is_set():
                            segment = await self._next_segment(stop)
                            if segment is None:
                                continue
                            on_ms, off_ms = segment
                            if on_ms > 0:
                                await ws.send(self.encode(on_ms))
                            await self._hold((on_ms + off_ms) / 1000.0)
                    finally:
                        drain_task.cancel()
                        await asyncio.gather(drain_task, return_exceptions=True)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                now_s = time.monotonic()
                if (now_s - self._last_err_log_s) > 3.0:
                    self._last_err_log_s = now_s
                    self._logger.info(
                        "External haptics %s disconnected url=%s err=%s (%s); retrying",
                        self._name,
                        self._url,
                        getattr(e, "errno", None),
                        type(e).__name__,
                    )
            finally:
                if self.connected:
                    self.connected = False
                    self._logger.info("External haptics %s disconnected url=%s", self._name, self._url)

            if stop.is_set():
                break
            # Jittered backoff to avoid synchronized reconnect storms.
            await asyncio.sleep(backoff_s + random.random() * 0.2)
            backoff_s = min(backoff_s * 1.7, 5.0)

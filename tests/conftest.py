from __future__ import annotations

import heapq
import itertools
from typing import Any, Callable

import pytest

from navaid.models import MotionSample


class FakeHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Manual clock with the loop's time()/call_later() surface."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = float(start)
        self._seq = itertools.count()
        self._queue: list[tuple[float, int, FakeHandle, Callable[..., Any], tuple[Any, ...]]] = []

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> FakeHandle:
        handle = FakeHandle()
        heapq.heappush(self._queue, (self.now + float(delay), next(self._seq), handle, callback, args))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for _, _, h, _, _ in self._queue if not h.cancelled)

    def advance_ms(self, ms: float) -> None:
        self.advance_to(self.now + ms / 1000.0)

    def advance_to(self, t: float) -> None:
        while self._queue and self._queue[0][0] <= t:
            when, _, handle, callback, args = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.now = when
            callback(*args)
        self.now = t


class RecordingCapture:
    def __init__(self, supported: bool = True) -> None:
        self.is_supported = supported
        self.configured: dict[str, Any] | None = None
        self.on_result: Callable[[str], None] | None = None
        self.on_error: Callable[[str], None] | None = None
        self.on_end: Callable[[], None] | None = None
        self.starts = 0
        self.stops = 0

    def configure(self, *, language: str, continuous: bool, interim_results: bool) -> None:
        self.configured = {"language": language, "continuous": continuous, "interim_results": interim_results}

    def bind(self, on_result, on_error, on_end) -> None:  # type: ignore[no-untyped-def]
        self.on_result = on_result
        self.on_error = on_error
        self.on_end = on_end

    def start(self) -> None:
        self.starts += 1

    def stop(self) -> None:
        self.stops += 1

    def result(self, text: str) -> None:
        assert self.on_result is not None
        self.on_result(text)

    def error(self, code: str) -> None:
        assert self.on_error is not None
        self.on_error(code)

    def end(self) -> None:
        assert self.on_end is not None
        self.on_end()


class RecordingSynthesizer:
    def __init__(self, supported: bool = True) -> None:
        self.is_supported = supported
        self.calls: list[tuple[str, Any]] = []

    @property
    def spoken(self) -> list[str]:
        return [arg for name, arg in self.calls if name == "speak"]

    def speak(self, text: str, *, rate: float, pitch: float, volume: float) -> None:
        self.calls.append(("speak", text))
        self.last_params = {"rate": rate, "pitch": pitch, "volume": volume}

    def cancel(self) -> None:
        self.calls.append(("cancel", None))


class RecordingHaptics:
    def __init__(self) -> None:
        self.patterns: list[tuple[int, ...]] = []

    def vibrate(self, pattern) -> None:  # type: ignore[no-untyped-def]
        self.patterns.append(tuple(pattern) if not isinstance(pattern, int) else (pattern,))


class RecordingAudioOutput:
    def __init__(self, supported: bool = True) -> None:
        self.is_supported = supported
        self.played: list[tuple[Any, int]] = []

    def play(self, frames, sample_rate: int) -> None:  # type: ignore[no-untyped-def]
        self.played.append((frames, sample_rate))


class FakeMotionSensor:
    def __init__(self, *, supported: bool = True, grant: bool | Exception = True) -> None:
        self.is_supported = supported
        self._grant = grant
        self.listeners: list[Callable[[MotionSample], None]] = []
        self.requests = 0

    async def request_permission(self) -> bool:
        self.requests += 1
        if isinstance(self._grant, Exception):
            raise self._grant
        return bool(self._grant)

    def add_listener(self, listener: Callable[[MotionSample], None]) -> None:
        self.listeners.append(listener)

    def remove_listener(self, listener: Callable[[MotionSample], None]) -> None:
        self.listeners.remove(listener)

    def emit(self, x: float, y: float, z: float) -> None:
        for listener in list(self.listeners):
            listener(MotionSample(x, y, z))


class FakeConnection:
    def __init__(self) -> None:
        self.sent: list[str] = []

    async def send(self, payload: str) -> None:
        self.sent.append(payload)


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def capture() -> RecordingCapture:
    return RecordingCapture()


@pytest.fixture
def synth() -> RecordingSynthesizer:
    return RecordingSynthesizer()


@pytest.fixture
def haptics() -> RecordingHaptics:
    return RecordingHaptics()


@pytest.fixture
def audio_output() -> RecordingAudioOutput:
    return RecordingAudioOutput()

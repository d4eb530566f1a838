from __future__ import annotations

import asyncio
import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, Protocol

import numpy as np

from navaid.config import AudioCueConfig
from navaid.models import NAVIGATION_CUES, AudioCueRequest, Direction, NavigationCue

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore[assignment]


class AudioOutput(Protocol):
    @property
    def is_supported(self) -> bool: ...

    def play(self, frames: np.ndarray, sample_rate: int) -> None: ...


def pan_for(direction: Direction | str, side_pan: float = 0.8) -> float:
    d = Direction.parse(direction)
    if d is Direction.LEFT:
        return -float(side_pan)
    if d is Direction.RIGHT:
        return float(side_pan)
    return 0.0


@dataclass(frozen=True, slots=True)
class ToneGenerator:
    frequency: float
    waveform: str = "sine"

    def render(self, frame_count: int, sample_rate: int) -> np.ndarray:
        t = np.arange(frame_count, dtype=np.float64) / float(sample_rate)
        return np.sin(2.0 * np.pi * float(self.frequency) * t)


@dataclass(frozen=True, slots=True)
class GainEnvelope:
    """Exponential ramp from start to end across the whole cue."""

    start: float = 0.3
    end: float = 0.01

    def render(self, frame_count: int) -> np.ndarray:
        if frame_count <= 0:
            return np.zeros((0,), dtype=np.float64)
        if frame_count == 1:
            return np.array([self.start], dtype=np.float64)
        return np.geomspace(self.start, self.end, frame_count)


@dataclass(frozen=True, slots=True)
class StereoPanner:
    """Equal-power mono-to-stereo panner; pan is in [-1, 1]."""

    pan: float = 0.0

    def __post_init__(self) -> None:
        if not -1.0 <= self.pan <= 1.0:
            raise ValueError(f"pan must be within [-1, 1] (got {self.pan})")

    @property
    def gains(self) -> tuple[float, float]:
        x = (self.pan + 1.0) / 2.0
        return math.cos(x * math.pi / 2.0), math.sin(x * math.pi / 2.0)

    def apply(self, mono: np.ndarray) -> np.ndarray:
        left, right = self.gains
        return np.stack([mono * left, mono * right], axis=1)


@dataclass(frozen=True, slots=True)
class AudioGraph:
    tone: ToneGenerator
    envelope: GainEnvelope
    panner: StereoPanner
    sample_rate: int
    duration_ms: int

    @property
    def frame_count(self) -> int:
        return int(round(self.sample_rate * (self.duration_ms / 1000.0)))

    def render(self) -> np.ndarray:
        """Return (frame_count, 2) float32 stereo frames."""
        n = self.frame_count
        mono = self.tone.render(n, self.sample_rate) * self.envelope.render(n)
        return self.panner.apply(mono).astype(np.float32)


class SoundDeviceOutput:
    """Plays each cue on its own PortAudio output stream so overlapping cues mix."""

    def __init__(self, *, device: int | str | None = None, logger: logging.Logger | None = None) -> None:
        self._device = device
        self._logger = logger or logging.getLogger("navaid.audio_output")
        self._lock = threading.Lock()
        self._streams: set[Any] = set()

    @property
    def is_supported(self) -> bool:
        return sd is not None

    @property
    def active_streams(self) -> int:
        with self._lock:
            return len(self._streams)

    def play(self, frames: np.ndarray, sample_rate: int) -> None:
        if sd is None:
            return
        self._purge()
        data = np.ascontiguousarray(frames, dtype=np.float32)
        if data.ndim == 1:
            data = data.reshape(-1, 1)
        cursor = 0

        def callback(outdata, frame_count, time_info, status) -> None:  # type: ignore[no-untyped-def]
            nonlocal cursor
            chunk = data[cursor : cursor + frame_count]
            outdata[: len(chunk)] = chunk
            if len(chunk) < frame_count:
                outdata[len(chunk) :] = 0
                raise sd.CallbackStop
            cursor += frame_count

        try:
            loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        def finished() -> None:
            if loop is not None and not loop.is_closed():
                loop.call_soon_threadsafe(self._purge)

        try:
            stream = sd.OutputStream(
                device=self._device,
                samplerate=int(sample_rate),
                channels=int(data.shape[1]),
                dtype="float32",
                callback=callback,
                finished_callback=finished,
            )
            stream.start()
        except Exception as e:
            # Typically the host refused another stream; the cue is dropped.
            self._logger.warning("Audio cue dropped; output stream failed (%s: %s)", type(e).__name__, e)
            return

        with self._lock:
            self._streams.add(stream)

    def _purge(self) -> None:
        with self._lock:
            done = [s for s in self._streams if not s.active]
            for s in done:
                self._streams.discard(s)
        for s in done:
            try:
                s.close()
            except Exception:
                self._logger.debug("Audio stream close failed", exc_info=True)

    def close(self) -> None:
        with self._lock:
            streams = list(self._streams)
            self._streams.clear()
        for s in streams:
            try:
                s.abort()
                s.close()
            except Exception:
                self._logger.debug("Audio stream close failed", exc_info=True)


class SpatialAudioCueEngine:
    """Short panned sine cues for left/right/straight guidance."""

    def __init__(
        self,
        output: AudioOutput | None,
        *,
        config: AudioCueConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._output = output
        self._config = config or AudioCueConfig()
        self._logger = logger or logging.getLogger("navaid.spatial_audio")

    @property
    def is_supported(self) -> bool:
        return self._output is not None and bool(self._output.is_supported)

    def build_graph(self, request: AudioCueRequest) -> AudioGraph:
        cfg = self._config
        return AudioGraph(
            tone=ToneGenerator(frequency=request.frequency),
            envelope=GainEnvelope(start=cfg.start_gain, end=cfg.end_gain),
            panner=StereoPanner(pan=pan_for(request.direction, cfg.side_pan)),
            sample_rate=cfg.sample_rate_hz,
            duration_ms=request.duration_ms,
        )

    def play_directional_sound(
        self,
        direction: Direction | str,
        frequency: float | None = None,
        duration_ms: int | None = None,
    ) -> AudioGraph | None:
        request = AudioCueRequest(
            direction=Direction.parse(direction),
            frequency=self._config.default_frequency_hz if frequency is None else float(frequency),
            duration_ms=self._config.default_duration_ms if duration_ms is None else int(duration_ms),
        )
        return self._play(request)

    def play_navigation_cue(self, cue: NavigationCue | str) -> AudioGraph | None:
        key = cue if isinstance(cue, NavigationCue) else NavigationCue(str(cue).strip().lower())
        return self._play(NAVIGATION_CUES[key])

    def _play(self, request: AudioCueRequest) -> AudioGraph | None:
        if not self.is_supported:
            self._logger.debug("Audio output unavailable; cue skipped direction=%s", request.direction.value)
            return None
        graph = self.build_graph(request)
        self._logger.debug(
            "Audio cue direction=%s freq=%.0fHz durationMs=%d pan=%.2f",
            request.direction.value,
            request.frequency,
            request.duration_ms,
            graph.panner.pan,
        )
        self._output.play(graph.render(), graph.sample_rate)
        return graph

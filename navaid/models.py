from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable


class Direction(str, enum.Enum):
    LEFT = "left"
    RIGHT = "right"
    CENTER = "center"

    @classmethod
    def parse(cls, raw: str | Direction) -> Direction:
        if isinstance(raw, Direction):
            return raw
        value = str(raw).strip().lower()
        if value == "straight":
            return cls.CENTER
        return cls(value)


class NavigationCue(str, enum.Enum):
    LEFT = "left"
    RIGHT = "right"
    STRAIGHT = "straight"


class PermissionState(str, enum.Enum):
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"
    UNSUPPORTED = "unsupported"


class VibrationPattern:
    """Alternating on/off millisecond sequences."""

    LIGHT: tuple[int, ...] = (100,)
    MEDIUM: tuple[int, ...] = (200, 100, 200)
    STRONG: tuple[int, ...] = (300, 200, 300, 200, 300)
    SOS_TAP: tuple[int, ...] = (200, 100, 200, 100, 200)
    SOS_SHAKE: tuple[int, ...] = (300, 200, 300)
    BEACON: tuple[int, ...] = (100, 50, 100)

    @classmethod
    def named(cls, name: str) -> tuple[int, ...]:
        key = str(name).strip().upper()
        value = getattr(cls, key, None)
        if not isinstance(value, tuple):
            raise ValueError(f"Unknown vibration pattern {name!r}")
        return value


@dataclass(frozen=True, slots=True)
class CommandSpec:
    pattern: str
    action: Callable[[], Any]
    description: str

    def __post_init__(self) -> None:
        normalized = str(self.pattern).strip().lower()
        if not normalized:
            raise ValueError("CommandSpec pattern must not be empty")
        object.__setattr__(self, "pattern", normalized)

    def matches(self, transcript: str) -> bool:
        return self.pattern in transcript


@dataclass(slots=True)
class RecognitionState:
    listening: bool = False
    last_transcript: str = ""
    restarts: int = 0


@dataclass(slots=True)
class TapState:
    count: int = 0
    last_tap_at: float | None = None


@dataclass(frozen=True, slots=True)
class MotionSample:
    x: float
    y: float
    z: float
    at: float = 0.0

    @classmethod
    def from_payload(cls, obj: dict[str, Any], at: float = 0.0) -> MotionSample:
        # Axes can be null on some devices; treat them as zero.
        def axis(key: str) -> float:
            raw = obj.get(key)
            return float(raw) if raw is not None else 0.0

        return cls(x=axis("x"), y=axis("y"), z=axis("z"), at=float(at))

    def delta_sum(self, other: MotionSample) -> float:
        return abs(self.x - other.x) + abs(self.y - other.y) + abs(self.z - other.z)


ORIGIN_SAMPLE = MotionSample(0.0, 0.0, 0.0)


@dataclass(frozen=True, slots=True)
class AudioCueRequest:
    direction: Direction
    frequency: float = 440.0
    duration_ms: int = 500

    def __post_init__(self) -> None:
        object.__setattr__(self, "direction", Direction.parse(self.direction))
        if self.frequency <= 0:
            raise ValueError(f"frequency must be > 0 (got {self.frequency})")
        if self.duration_ms <= 0:
            raise ValueError(f"duration_ms must be > 0 (got {self.duration_ms})")


NAVIGATION_CUES: dict[NavigationCue, AudioCueRequest] = {
    NavigationCue.LEFT: AudioCueRequest(Direction.LEFT, 300.0, 300),
    NavigationCue.RIGHT: AudioCueRequest(Direction.RIGHT, 500.0, 300),
    NavigationCue.STRAIGHT: AudioCueRequest(Direction.CENTER, 400.0, 200),
}


@dataclass(slots=True)
class EmergencyStats:
    count: int = 0
    last_source: str | None = None
    by_source: dict[str, int] = field(default_factory=dict)

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _parse_bool(raw: str | None, default: bool = False) -> bool:
    if raw is None:
        return bool(default)
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_str(name: str, default: str) -> str:
    return (os.environ.get(name) or default).strip()


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return float(default)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None


@dataclass(frozen=True, slots=True)
class VoiceConfig:
    language: str = "en-US"
    speech_rate: float = 0.9
    pitch: float = 1.0
    volume: float = 0.8

    @classmethod
    def from_env(cls) -> VoiceConfig:
        return cls(
            language=_env_str("VOICE_LANGUAGE", "en-US"),
            speech_rate=_env_float("VOICE_SPEECH_RATE", 0.9),
            pitch=_env_float("VOICE_PITCH", 1.0),
            volume=_env_float("VOICE_VOLUME", 0.8),
        )


@dataclass(frozen=True, slots=True)
class GestureConfig:
    tap_window_ms: int = 500
    tap_debounce_ms: int = 500
    tap_trigger_count: int = 3
    shake_threshold: float = 15.0
    shake_cooldown_ms: int = 2000
    haptics_enabled: bool = True

    @classmethod
    def from_env(cls) -> GestureConfig:
        return cls(
            tap_window_ms=_env_int("GESTURE_TAP_WINDOW_MS", 500),
            tap_debounce_ms=_env_int("GESTURE_TAP_DEBOUNCE_MS", 500),
            tap_trigger_count=_env_int("GESTURE_TAP_TRIGGER_COUNT", 3),
            shake_threshold=_env_float("GESTURE_SHAKE_THRESHOLD", 15.0),
            shake_cooldown_ms=_env_int("GESTURE_SHAKE_COOLDOWN_MS", 2000),
            haptics_enabled=_parse_bool(os.environ.get("GESTURE_HAPTICS"), True),
        )


@dataclass(frozen=True, slots=True)
class AudioCueConfig:
    sample_rate_hz: int = 44100
    start_gain: float = 0.3
    end_gain: float = 0.01
    side_pan: float = 0.8
    default_frequency_hz: float = 440.0
    default_duration_ms: int = 500

    def __post_init__(self) -> None:
        # Exponential ramps cannot reach or cross zero.
        if self.start_gain <= 0 or self.end_gain <= 0:
            raise ValueError("AudioCueConfig gains must be > 0")
        if not 0.0 <= self.side_pan <= 1.0:
            raise ValueError(f"side_pan must be within [0, 1] (got {self.side_pan})")

    @classmethod
    def from_env(cls) -> AudioCueConfig:
        return cls(
            sample_rate_hz=_env_int("AUDIO_CUE_SAMPLE_RATE_HZ", 44100),
            start_gain=_env_float("AUDIO_CUE_START_GAIN", 0.3),
            end_gain=_env_float("AUDIO_CUE_END_GAIN", 0.01),
            side_pan=_env_float("AUDIO_CUE_SIDE_PAN", 0.8),
            default_frequency_hz=_env_float("AUDIO_CUE_DEFAULT_FREQUENCY_HZ", 440.0),
            default_duration_ms=_env_int("AUDIO_CUE_DEFAULT_DURATION_MS", 500),
        )


@dataclass(frozen=True, slots=True)
class HapticsConfig:
    enabled: bool = False
    url: str = "ws://192.168.4.1:81"
    payload_format: str = "csv"
    intensity: int = 255
    open_timeout_s: float = 15.0

    @classmethod
    def from_env(cls) -> HapticsConfig:
        return cls(
            enabled=_parse_bool(os.environ.get("EXTERNAL_HAPTICS"), False),
            url=_env_str("EXTERNAL_HAPTICS_URL", "ws://192.168.4.1:81"),
            payload_format=_env_str("EXTERNAL_HAPTICS_FORMAT", "csv").lower(),
            intensity=_env_int("EXTERNAL_HAPTICS_INTENSITY", 255),
            open_timeout_s=_env_float("EXTERNAL_HAPTICS_OPEN_TIMEOUT_S", 15.0),
        )


@dataclass(frozen=True, slots=True)
class SttConfig:
    api_key: str = ""
    host: str = "api.elevenlabs.io"
    model_id: str | None = None
    commit_strategy: str = "vad"
    vad_silence_threshold_secs: float = 1.2
    session_max_s: float = 60.0
    no_speech_timeout_s: float = 8.0
    sample_rate_hz: int = 16000
    frame_ms: int = 20
    input_device: str | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_env(cls) -> SttConfig:
        return cls(
            api_key=(os.environ.get("ELEVENLABS_API_KEY") or "").strip(),
            host=_env_str("STT_HOST", "api.elevenlabs.io"),
            model_id=(os.environ.get("STT_MODEL_ID") or None),
            commit_strategy=_env_str("STT_COMMIT_STRATEGY", "vad"),
            vad_silence_threshold_secs=_env_float("STT_VAD_SILENCE_THRESHOLD_SECS", 1.2),
            session_max_s=_env_float("STT_SESSION_MAX_S", 60.0),
            no_speech_timeout_s=_env_float("STT_NO_SPEECH_TIMEOUT_S", 8.0),
            sample_rate_hz=_env_int("STT_SAMPLE_RATE_HZ", 16000),
            frame_ms=_env_int("STT_FRAME_MS", 20),
            input_device=(os.environ.get("STT_INPUT_DEVICE") or None),
        )


@dataclass(frozen=True, slots=True)
class CoreConfig:
    voice: VoiceConfig = field(default_factory=VoiceConfig)
    gestures: GestureConfig = field(default_factory=GestureConfig)
    audio_cues: AudioCueConfig = field(default_factory=AudioCueConfig)
    haptics: HapticsConfig = field(default_factory=HapticsConfig)
    stt: SttConfig = field(default_factory=SttConfig)
    speech_output: bool = True
    audio_output: bool = True

    @classmethod
    def from_env(cls) -> CoreConfig:
        return cls(
            voice=VoiceConfig.from_env(),
            gestures=GestureConfig.from_env(),
            audio_cues=AudioCueConfig.from_env(),
            haptics=HapticsConfig.from_env(),
            stt=SttConfig.from_env(),
            speech_output=_parse_bool(os.environ.get("SPEECH_OUTPUT"), True),
            audio_output=_parse_bool(os.environ.get("AUDIO_OUTPUT"), True),
        )

from __future__ import annotations

import logging
from typing import Callable, Iterable, Protocol

from navaid.config import VoiceConfig
from navaid.errors import ErrorHandling, classify_recognition_error
from navaid.models import CommandSpec, RecognitionState

ACTIVATED = "Voice commands activated. I am listening."
DEACTIVATED = "Voice commands deactivated"
NOT_RECOGNIZED = "Command not recognized. Please try again."
UNEXPECTED_ABORT = "Voice recognition stopped unexpectedly. Restarting..."
NO_SPEECH_PROMPT = "Listening for your command"
RECOGNITION_FAILED = "Voice recognition error. Please try again."


class SpeechCapture(Protocol):
    @property
    def is_supported(self) -> bool: ...

    def configure(self, *, language: str, continuous: bool, interim_results: bool) -> None: ...

    def bind(
        self,
        on_result: Callable[[str], None] | None,
        on_error: Callable[[str], None] | None,
        on_end: Callable[[], None] | None,
    ) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...


class SpeechSynthesizer(Protocol):
    @property
    def is_supported(self) -> bool: ...

    def speak(self, text: str, *, rate: float, pitch: float, volume: float) -> None: ...

    def cancel(self) -> None: ...


class VoiceCommandEngine:
    """Continuous voice command recognizer with spoken feedback.

    Matching is substring containment against the lower-cased transcript, first
    registered pattern wins. Overlapping phrases ("sign" vs "sign in") resolve by
    registration order, so register the longer phrase first.
    """

    def __init__(
        self,
        commands: Iterable[CommandSpec],
        capture: SpeechCapture | None,
        synthesizer: SpeechSynthesizer | None = None,
        *,
        config: VoiceConfig | None = None,
        on_transcript: Callable[[str], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._commands: tuple[CommandSpec, ...] = tuple(commands)
        self._capture = capture
        self._synthesizer = synthesizer
        self._on_transcript = on_transcript
        self._config = config or VoiceConfig()
        self._logger = logger or logging.getLogger("navaid.voice")
        self._speech_rate = float(self._config.speech_rate)
        self._state = RecognitionState()
        self._closed = False

        if self.is_supported:
            capture.configure(language=self._config.language, continuous=True, interim_results=False)
            capture.bind(self._on_result, self._on_error, self._on_end)

    # ---- observable state ------------------------------------------------

    @property
    def is_supported(self) -> bool:
        return self._capture is not None and bool(self._capture.is_supported)

    @property
    def listening(self) -> bool:
        return self._state.listening

    @property
    def last_transcript(self) -> str:
        return self._state.last_transcript

    @property
    def restarts(self) -> int:
        return self._state.restarts

    @property
    def speech_rate(self) -> float:
        return self._speech_rate

    @property
    def commands(self) -> tuple[CommandSpec, ...]:
        return self._commands

    # ---- control -----------------------------------------------------------

    def start(self) -> None:
        if self._closed:
            return
        if not self.is_supported:
            self._logger.warning("Speech capture unsupported; voice commands disabled")
            return
        if self._state.listening:
            return
        self._state.listening = True
        self._capture.start()
        self._logger.info("Voice commands listening language=%s", self._config.language)
        self.speak(ACTIVATED)

    def stop(self) -> None:
        if not self.is_supported or not self._state.listening:
            return
        # Clear the flag first so the end-of-session event does not restart.
        self._state.listening = False
        self._capture.stop()
        self._logger.info("Voice commands stopped")
        self.speak(DEACTIVATED)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.is_supported:
            was_listening = self._state.listening
            self._state.listening = False
            if was_listening:
                self._capture.stop()
            self._capture.bind(None, None, None)

    def __enter__(self) -> VoiceCommandEngine:
        return self

    def __exit__(self, *_) -> None:
        self.close()

    def speak(
        self,
        text: str,
        *,
        rate: float | None = None,
        pitch: float | None = None,
        volume: float | None = None,
    ) -> None:
        synth = self._synthesizer
        if synth is None or not synth.is_supported:
            self._logger.debug("Speech synthesis unavailable; dropped utterance %r", text)
            return
        synth.cancel()
        synth.speak(
            text,
            rate=self._speech_rate if rate is None else float(rate),
            pitch=float(self._config.pitch) if pitch is None else float(pitch),
            volume=float(self._config.volume) if volume is None else float(volume),
        )

    def set_speech_rate(self, rate: float) -> None:
        self._speech_rate = float(rate)

    def match(self, transcript: str) -> CommandSpec | None:
        normalized = transcript.lower().strip()
        for spec in self._commands:
            if spec.matches(normalized):
                return spec
        return None

    # ---- capture events ------------------------------------------------------

    def _on_result(self, transcript: str) -> None:
        normalized = str(transcript).lower().strip()
        self._state.last_transcript = normalized
        if self._on_transcript is not None:
            try:
                self._on_transcript(normalized)
            except Exception:
                self._logger.exception("Transcript listener failed")
        spec = self.match(normalized)
        if spec is None:
            self._logger.info("No command matched transcript=%r", normalized)
            self.speak(NOT_RECOGNIZED)
            return

        self._logger.info("Command matched pattern=%r transcript=%r", spec.pattern, normalized)
        self.speak(f"Executing {spec.description}")
        try:
            spec.action()
        except Exception:
            self._logger.exception("Voice command action failed pattern=%r", spec.pattern)

    def _on_error(self, code: str) -> None:
        handling = classify_recognition_error(code, self._state.listening)
        if handling is ErrorHandling.ABORTED_INTENTIONAL:
            return
        if handling is ErrorHandling.ABORTED_UNEXPECTED:
            self._logger.warning("Speech recognition error: %s", code)
            self.speak(UNEXPECTED_ABORT)
            return
        if handling is ErrorHandling.NO_SPEECH:
            self.speak(NO_SPEECH_PROMPT)
            return

        self._logger.warning("Speech recognition error: %s", code)
        was_listening = self._state.listening
        self._state.listening = False
        if was_listening:
            self._capture.stop()
        self.speak(RECOGNITION_FAILED)

    def _on_end(self) -> None:
        if not self._state.listening:
            return
        self._state.restarts += 1
        self._logger.debug("Capture session ended; restarting (restarts=%d)", self._state.restarts)
        try:
            self._capture.start()
        except Exception:
            self._logger.exception("Failed to restart speech capture")
            self._state.listening = False
            self.speak(RECOGNITION_FAILED)

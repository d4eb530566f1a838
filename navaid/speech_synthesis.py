from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

try:
    import pyttsx3
except Exception:  # pragma: no cover
    pyttsx3 = None  # type: ignore[assignment]

BASE_WORDS_PER_MINUTE = 200


def words_per_minute(rate: float, base: int = BASE_WORDS_PER_MINUTE) -> int:
    return max(1, int(round(float(rate) * base)))


@dataclass(frozen=True, slots=True)
class _Utterance:
    text: str
    rate: float
    pitch: float
    volume: float


class Pyttsx3Synthesizer:
    """Offline text-to-speech; one worker thread owns the pyttsx3 engine.

    Only the most recent utterance is kept: `speak` replaces anything not yet
    started, and `cancel` also interrupts the one being spoken.
    """

    def __init__(self, *, voice_id: str | None = None, logger: logging.Logger | None = None) -> None:
        self._voice_id = voice_id
        self._logger = logger or logging.getLogger("navaid.speech_synthesis")
        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._pending: _Utterance | None = None
        self._engine = None
        self._speaking = False
        self._failed = False
        self._closed = False
        self._thread: threading.Thread | None = None
        self._pitch_unsupported = False

    @property
    def is_supported(self) -> bool:
        return pyttsx3 is not None and not self._failed

    def speak(self, text: str, *, rate: float = 1.0, pitch: float = 1.0, volume: float = 1.0) -> None:
        if not self.is_supported or self._closed:
            return
        with self._lock:
            self._pending = _Utterance(str(text), float(rate), float(pitch), float(volume))
        self._ensure_thread()
        self._wake.set()

    def cancel(self) -> None:
        with self._lock:
            self._pending = None
            engine = self._engine if self._speaking else None
        if engine is not None:
            try:
                engine.stop()
            except Exception:
                self._logger.debug("pyttsx3 stop failed", exc_info=True)

    def close(self) -> None:
        self._closed = True
        self.cancel()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)

    def _ensure_thread(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._worker, name="pyttsx3_worker", daemon=True)
        self._thread.start()

    def _worker(self) -> None:
        try:
            engine = pyttsx3.init()
            if self._voice_id:
                engine.setProperty("voice", self._voice_id)
        except Exception:
            self._logger.exception("pyttsx3 init failed; speech output disabled")
            self._failed = True
            return
        with self._lock:
            self._engine = engine

        while not self._closed:
            self._wake.wait()
            self._wake.clear()
            with self._lock:
                item = self._pending
                self._pending = None
                if item is not None:
                    self._speaking = True
            if item is None:
                continue
            try:
                self._say(engine, item)
            except Exception:
                self._logger.exception("Speech synthesis failed text=%r", item.text)
            finally:
                with self._lock:
                    self._speaking = False

    def _say(self, engine, item: _Utterance) -> None:  # type: ignore[no-untyped-def]
        engine.setProperty("rate", words_per_minute(item.rate))
        engine.setProperty("volume", max(0.0, min(1.0, item.volume)))
        if not self._pitch_unsupported:
            try:
                engine.setProperty("pitch", item.pitch)
            except Exception:
                self._pitch_unsupported = True
                self._logger.debug("pyttsx3 driver has no pitch control")
        engine.say(item.text)
        engine.runAndWait()

from __future__ import annotations

import enum


class RecognitionErrorKind(str, enum.Enum):
    """Error codes reported by a speech capture device."""

    ABORTED = "aborted"
    NO_SPEECH = "no-speech"
    AUDIO_CAPTURE = "audio-capture"
    NETWORK = "network"
    NOT_ALLOWED = "not-allowed"
    SERVICE_NOT_ALLOWED = "service-not-allowed"
    LANGUAGE_NOT_SUPPORTED = "language-not-supported"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: str | RecognitionErrorKind) -> RecognitionErrorKind:
        if isinstance(raw, RecognitionErrorKind):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.OTHER


class ErrorHandling(str, enum.Enum):
    ABORTED_INTENTIONAL = "aborted-intentional"
    ABORTED_UNEXPECTED = "aborted-unexpected"
    NO_SPEECH = "no-speech"
    FATAL = "other"


def classify_recognition_error(code: str | RecognitionErrorKind, listening: bool) -> ErrorHandling:
    kind = RecognitionErrorKind.parse(code)
    if kind is RecognitionErrorKind.ABORTED:
        return ErrorHandling.ABORTED_UNEXPECTED if listening else ErrorHandling.ABORTED_INTENTIONAL
    if kind is RecognitionErrorKind.NO_SPEECH:
        return ErrorHandling.NO_SPEECH
    return ErrorHandling.FATAL

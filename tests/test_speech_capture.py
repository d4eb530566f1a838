from __future__ import annotations

import asyncio
import socket

from navaid.config import SttConfig
from navaid.errors import ErrorHandling, RecognitionErrorKind, classify_recognition_error
from navaid.speech_capture import RealtimeSpeechCapture


async def _silence():
    while True:
        await asyncio.sleep(0.02)
        yield b"\x00\x00" * 320


def _capture(**cfg) -> tuple[RealtimeSpeechCapture, dict[str, list]]:
    events: dict[str, list] = {"result": [], "error": [], "end": []}
    cap = RealtimeSpeechCapture(SttConfig(api_key="k", **cfg), frame_source=_silence)
    cap.bind(events["result"].append, events["error"].append, lambda: events["end"].append(True))
    return cap, events


def test_supported_only_with_key() -> None:
    assert not RealtimeSpeechCapture(SttConfig(), frame_source=_silence).is_supported
    assert RealtimeSpeechCapture(SttConfig(api_key="k"), frame_source=_silence).is_supported


def test_uri_carries_language_and_format() -> None:
    cap, _ = _capture(model_id="scribe_v2_realtime")
    cap.configure(language="en-US", continuous=True, interim_results=False)
    uri = cap.build_uri()
    assert uri.startswith("wss://api.elevenlabs.io/v1/speech-to-text/realtime?")
    assert "model_id=scribe_v2_realtime" in uri
    assert "language_code=en" in uri
    assert "audio_format=pcm_16000" in uri


def test_committed_transcript_is_a_result() -> None:
    cap, events = _capture()
    cap.configure(language="en-US", continuous=True, interim_results=False)
    assert cap.handle_message({"message_type": "partial_transcript", "text": "turn"}) == (False, None)
    assert cap.handle_message({"message_type": "committed_transcript", "text": " turn left "}) == (False, None)
    assert cap.handle_message({"message_type": "committed_transcript", "text": "   "}) == (False, None)
    assert events["result"] == ["turn left"]


def test_single_shot_session_ends_after_result() -> None:
    cap, events = _capture()
    cap.configure(language="en-US", continuous=False, interim_results=False)
    assert cap.handle_message({"message_type": "committed_transcript", "text": "stop"}) == (True, None)


def test_service_errors_map_to_recognizer_codes() -> None:
    cap, _ = _capture()
    assert cap.handle_message({"message_type": "auth_error", "error": "bad key"}) == (True, "not-allowed")
    assert cap.handle_message({"message_type": "quota_exceeded"}) == (True, "service-not-allowed")
    assert cap.handle_message({"message_type": "error"}) == (True, "other")


def test_connection_failure_reports_network_then_end() -> None:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]

    async def scenario() -> dict[str, list]:
        cap, events = _capture(host=f"127.0.0.1:{port}")
        done = asyncio.Event()
        cap.bind(events["result"].append, events["error"].append, done.set)
        cap.start()
        await asyncio.wait_for(done.wait(), timeout=15.0)
        assert not cap.active
        return events

    events = asyncio.run(scenario())
    assert events["error"] == ["network"]


def test_stop_cancels_and_reports_end() -> None:
    async def scenario() -> dict[str, list]:
        cap, events = _capture()
        cap.start()
        assert cap.active
        cap.stop()
        await asyncio.sleep(0.05)
        assert not cap.active
        return events

    events = asyncio.run(scenario())
    assert events["end"] == [True]
    assert events["error"] == []


def test_error_classification() -> None:
    assert classify_recognition_error("aborted", listening=False) is ErrorHandling.ABORTED_INTENTIONAL
    assert classify_recognition_error("aborted", listening=True) is ErrorHandling.ABORTED_UNEXPECTED
    assert classify_recognition_error("no-speech", listening=True) is ErrorHandling.NO_SPEECH
    assert classify_recognition_error("network", listening=True) is ErrorHandling.FATAL
    assert RecognitionErrorKind.parse("made-up") is RecognitionErrorKind.OTHER

from __future__ import annotations

import pytest

from navaid.config import VoiceConfig
from navaid.models import CommandSpec
from navaid.voice import (
    ACTIVATED,
    DEACTIVATED,
    NO_SPEECH_PROMPT,
    NOT_RECOGNIZED,
    RECOGNITION_FAILED,
    UNEXPECTED_ABORT,
    VoiceCommandEngine,
)

from conftest import RecordingCapture, RecordingSynthesizer


def _engine(capture, synth, commands=(), **kwargs):
    return VoiceCommandEngine(list(commands), capture, synth, **kwargs)


def test_capture_configured_for_continuous_final_results(capture, synth) -> None:
    _engine(capture, synth)
    assert capture.configured == {"language": "en-US", "continuous": True, "interim_results": False}
    assert capture.on_result is not None


def test_start_announces_and_listens(capture, synth) -> None:
    engine = _engine(capture, synth)
    engine.start()
    assert engine.listening
    assert capture.starts == 1
    assert synth.calls == [("cancel", None), ("speak", ACTIVATED)]
    assert synth.last_params == {"rate": 0.9, "pitch": 1.0, "volume": 0.8}


def test_start_twice_is_idempotent(capture, synth) -> None:
    engine = _engine(capture, synth)
    engine.start()
    engine.start()
    assert capture.starts == 1


def test_first_registered_pattern_wins(capture, synth) -> None:
    fired: list[str] = []
    commands = [
        CommandSpec("help", lambda: fired.append("help"), "Call for help"),
        CommandSpec("help me", lambda: fired.append("help me"), "Help me"),
    ]
    engine = _engine(capture, synth, commands)
    engine.start()
    capture.result("Please HELP me")
    assert fired == ["help"]
    assert synth.spoken[-1] == "Executing Call for help"
    assert engine.last_transcript == "please help me"


def test_emergency_phrase_inside_sentence(capture, synth) -> None:
    fired: list[int] = []
    commands = [CommandSpec("emergency", lambda: fired.append(1), "Open Emergency")]
    engine = _engine(capture, synth, commands)
    engine.start()
    capture.result("please help emergency now")
    assert fired == [1]
    assert synth.spoken[-1] == "Executing Open Emergency"


def test_unmatched_transcript_prompts_retry(capture, synth) -> None:
    engine = _engine(capture, synth, [CommandSpec("left", lambda: None, "Turn left")])
    engine.start()
    capture.result("what time is it")
    assert synth.spoken[-1] == NOT_RECOGNIZED


def test_every_utterance_cancels_the_previous_one(capture, synth) -> None:
    engine = _engine(capture, synth)
    engine.start()
    capture.result("anything")
    names = [name for name, _ in synth.calls]
    assert names == ["cancel", "speak", "cancel", "speak"]


def test_no_speech_keeps_listening_without_restart(capture, synth) -> None:
    engine = _engine(capture, synth)
    engine.start()
    capture.error("no-speech")
    assert engine.listening
    assert capture.starts == 1
    assert capture.stops == 0
    assert synth.spoken[-1] == NO_SPEECH_PROMPT


def test_unexpected_abort_is_announced(capture, synth) -> None:
    engine = _engine(capture, synth)
    engine.start()
    capture.error("aborted")
    assert engine.listening
    assert synth.spoken[-1] == UNEXPECTED_ABORT


def test_stop_then_abort_is_silent(capture, synth) -> None:
    engine = _engine(capture, synth)
    engine.start()
    engine.stop()
    assert synth.spoken[-1] == DEACTIVATED
    before = list(synth.calls)
    capture.error("aborted")
    capture.end()
    assert synth.calls == before
    assert capture.starts == 1


@pytest.mark.parametrize("code", ["network", "not-allowed", "audio-capture", "something-new"])
def test_other_errors_force_idle(capture, synth, code: str) -> None:
    engine = _engine(capture, synth)
    engine.start()
    capture.error(code)
    assert not engine.listening
    assert capture.stops == 1
    assert synth.spoken[-1] == RECOGNITION_FAILED
    capture.end()
    assert capture.starts == 1


def test_session_end_while_listening_restarts_once(capture, synth) -> None:
    engine = _engine(capture, synth)
    engine.start()
    capture.end()
    assert capture.starts == 2
    assert engine.restarts == 1
    assert engine.listening


def test_session_end_while_idle_does_not_restart(capture, synth) -> None:
    engine = _engine(capture, synth)
    engine.start()
    engine.stop()
    capture.end()
    assert capture.starts == 1
    assert engine.restarts == 0


def test_unsupported_capture_is_inert(synth) -> None:
    capture = RecordingCapture(supported=False)
    engine = _engine(capture, synth)
    assert not engine.is_supported
    engine.start()
    assert not engine.listening
    assert capture.starts == 0
    assert capture.configured is None


def test_missing_synthesizer_does_not_break_dispatch(capture) -> None:
    fired: list[int] = []
    engine = VoiceCommandEngine([CommandSpec("stop", lambda: fired.append(1), "Stop")], capture, None)
    engine.start()
    capture.result("please stop")
    assert fired == [1]


def test_unsupported_synthesizer_is_skipped(capture) -> None:
    synth = RecordingSynthesizer(supported=False)
    engine = _engine(capture, synth)
    engine.start()
    assert synth.calls == []


def test_failing_action_is_contained(capture, synth) -> None:
    def boom() -> None:
        raise RuntimeError("boom")

    engine = _engine(capture, synth, [CommandSpec("go", boom, "Go")])
    engine.start()
    capture.result("go")
    assert engine.listening
    assert synth.spoken[-1] == "Executing Go"


def test_speech_rate_applies_to_later_utterances(capture, synth) -> None:
    engine = _engine(capture, synth, config=VoiceConfig(speech_rate=1.2))
    engine.speak("hello")
    assert synth.last_params["rate"] == pytest.approx(1.2)
    engine.set_speech_rate(0.5)
    engine.speak("hello", volume=0.3)
    assert synth.last_params == {"rate": 0.5, "pitch": 1.0, "volume": 0.3}


def test_close_stops_and_unbinds(capture, synth) -> None:
    with _engine(capture, synth) as engine:
        engine.start()
    assert not engine.listening
    assert capture.stops == 1
    assert capture.on_result is None and capture.on_end is None
    engine.start()
    assert capture.starts == 1


def test_transcript_hook_sees_normalized_text(capture, synth) -> None:
    seen: list[str] = []
    engine = _engine(capture, synth, on_transcript=seen.append)
    engine.start()
    capture.result("  Turn LEFT ")
    assert seen == ["turn left"]


def test_empty_pattern_rejected() -> None:
    with pytest.raises(ValueError):
        CommandSpec("   ", lambda: None, "Nothing")


def test_patterns_are_normalized() -> None:
    spec = CommandSpec("  Emergency ", lambda: None, "Open Emergency")
    assert spec.pattern == "emergency"
    assert spec.matches("call emergency now")


def test_engines_do_not_share_state() -> None:
    first_capture, second_capture = RecordingCapture(), RecordingCapture()
    first = _engine(first_capture, RecordingSynthesizer())
    second = _engine(second_capture, RecordingSynthesizer())

    second.start()
    first.start()
    first.stop()
    first.start()
    first_capture.error("network")

    assert not first.listening
    assert (first_capture.starts, first_capture.stops) == (2, 2)
    assert second.listening
    assert (second_capture.starts, second_capture.stops) == (1, 0)
    second_capture.end()
    assert second.restarts == 1
    assert first.restarts == 0

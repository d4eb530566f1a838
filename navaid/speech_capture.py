from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import ssl
import time
from typing import Any, AsyncIterator, Callable

import certifi
import websockets
from websockets.exceptions import WebSocketException

from navaid.config import SttConfig

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore[assignment]


# Realtime service message types mapped onto recognizer error codes.
SERVICE_ERRORS: dict[str, str] = {
    "auth_error": "not-allowed",
    "quota_exceeded": "service-not-allowed",
    "rate_limited": "service-not-allowed",
    "input_error": "other",
    "error": "other",
}


class MicrophoneError(RuntimeError):
    pass


def _queue_put_drop_oldest(q: asyncio.Queue[bytes], frame: bytes) -> None:
    if q.full():
        try:
            _ = q.get_nowait()
        except asyncio.QueueEmpty:
            pass
    try:
        q.put_nowait(frame)
    except asyncio.QueueFull:
        # Best-effort; drop frame.
        pass


def resolve_input_device(device_arg: str | None) -> int | None:
    if sd is None:
        raise MicrophoneError("sounddevice is not installed")
    if device_arg is None or not device_arg.strip():
        return None
    try:
        return int(device_arg)
    except ValueError:
        pass

    needle = device_arg.strip().lower()
    matches: list[int] = []
    for i, d in enumerate(sd.query_devices()):
        if int(d.get("max_input_channels") or 0) <= 0:
            continue
        if needle in str(d.get("name") or "").lower():
            matches.append(i)
    if not matches:
        raise MicrophoneError(f'No input device matches "{device_arg}"')
    if len(matches) > 1:
        raise MicrophoneError(f'Multiple input devices match "{device_arg}": {matches}')
    return matches[0]


async def microphone_frames(
    cfg: SttConfig,
    *,
    max_frames: int = 50,
    logger: logging.Logger | None = None,
) -> AsyncIterator[bytes]:
    """Yield mono PCM16 frames of cfg.frame_ms from the selected input device."""
    log = logger or logging.getLogger("navaid.speech_capture.mic")
    device = resolve_input_device(cfg.input_device)
    loop = asyncio.get_running_loop()
    q: asyncio.Queue[bytes] = asyncio.Queue(maxsize=max(1, int(max_frames)))

    def callback(indata, frames, time_info, status) -> None:  # type: ignore[no-untyped-def]
        if status:
            loop.call_soon_threadsafe(log.warning, "Audio status: %s", status)
        loop.call_soon_threadsafe(_queue_put_drop_oldest, q, bytes(indata))

    blocksize = int(cfg.sample_rate_hz * (cfg.frame_ms / 1000.0))
    try:
        stream = sd.RawInputStream(
            device=device,
            samplerate=cfg.sample_rate_hz,
            channels=1,
            dtype="int16",
            blocksize=blocksize,
            callback=callback,
        )
    except Exception as e:
        raise MicrophoneError(f"Cannot open input device {device!r}: {e}") from e

    log.info("Mic capture device=%s rate=%dHz frameMs=%d", device if device is not None else "(default)", cfg.sample_rate_hz, cfg.frame_ms)
    with stream:
        while True:
            yield await q.get()


def _ssl_context(logger: logging.Logger) -> ssl.SSLContext:
    if os.environ.get("ELEVENLABS_INSECURE_SSL") == "1":
        logger.warning("ELEVENLABS_INSECURE_SSL=1; TLS verification disabled (unsafe)")
        return ssl._create_unverified_context()
    cafile = (os.environ.get("SSL_CERT_FILE") or os.environ.get("REQUESTS_CA_BUNDLE") or "").strip()
    if cafile:
        logger.info("Using TLS CA bundle from env: %s", cafile)
        return ssl.create_default_context(cafile=cafile)
    ca = certifi.where()
    logger.debug("Using certifi CA bundle: %s", ca)
    return ssl.create_default_context(cafile=ca)


class RealtimeSpeechCapture:
    """Speech capture backed by the ElevenLabs realtime speech-to-text websocket.

    Behaves like a browser recognizer: each `start()` opens one session that ends
    after `session_max_s`, after a service error, or after `no_speech_timeout_s`
    without any transcript. Committed transcripts are reported as results; the
    end of every session is reported through `on_end`.
    """

    def __init__(
        self,
        cfg: SttConfig,
        *,
        frame_source: Callable[[], AsyncIterator[bytes]] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._cfg = cfg
        self._logger = logger or logging.getLogger("navaid.speech_capture")
        self._frame_source = frame_source or (lambda: microphone_frames(cfg, logger=self._logger))
        self._has_mic = frame_source is not None or sd is not None
        self._language_code: str | None = None
        self._continuous = True
        self._on_result: Callable[[str], None] | None = None
        self._on_error: Callable[[str], None] | None = None
        self._on_end: Callable[[], None] | None = None
        self._task: asyncio.Task[None] | None = None
        self._last_activity_s = 0.0

    @property
    def is_supported(self) -> bool:
        return self._cfg.enabled and self._has_mic

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def configure(self, *, language: str, continuous: bool, interim_results: bool) -> None:
        # The service wants ISO-639 codes ("en"), not BCP-47 tags ("en-US").
        code = (language or "").split("-")[0].strip().lower()
        self._language_code = code or None
        self._continuous = bool(continuous)
        if interim_results:
            self._logger.debug("Interim results requested; only committed transcripts are reported")

    def bind(
        self,
        on_result: Callable[[str], None] | None,
        on_error: Callable[[str], None] | None,
        on_end: Callable[[], None] | None,
    ) -> None:
        self._on_result = on_result
        self._on_error = on_error
        self._on_end = on_end

    def start(self) -> None:
        if self.active:
            return
        self._task = asyncio.get_running_loop().create_task(self._session(), name="stt_session")

    def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        asyncio.get_running_loop().call_soon(self._emit_end)

    def build_uri(self) -> str:
        parts: list[str] = []
        if self._cfg.model_id:
            parts.append(f"model_id={self._cfg.model_id}")
        if self._language_code:
            parts.append(f"language_code={self._language_code}")
        parts.append(f"audio_format=pcm_{int(self._cfg.sample_rate_hz)}")
        if self._cfg.commit_strategy:
            parts.append(f"commit_strategy={self._cfg.commit_strategy}")
        if self._cfg.vad_silence_threshold_secs:
            parts.append(f"vad_silence_threshold_secs={self._cfg.vad_silence_threshold_secs}")
        return f"wss://{self._cfg.host}/v1/speech-to-text/realtime?" + "&".join(parts)

    def handle_message(self, obj: dict[str, Any]) -> tuple[bool, str | None]:
        """Process one service message; returns (session_over, error_code)."""
        msg_type = obj.get("message_type")
        if msg_type == "partial_transcript":
            self._last_activity_s = time.monotonic()
            return False, None
        if msg_type in ("committed_transcript", "committed_transcript_with_timestamps"):
            self._last_activity_s = time.monotonic()
            text = str(obj.get("text") or "").strip()
            if not text:
                return False, None
            if self._on_result is not None:
                self._on_result(text)
            return (not self._continuous), None
        if msg_type == "session_started":
            self._logger.debug("STT session started")
            return False, None
        if msg_type in SERVICE_ERRORS:
            self._logger.info("STT service error type=%s detail=%s", msg_type, obj.get("error"))
            return True, SERVICE_ERRORS[msg_type]
        return False, None

    async def _session(self) -> None:
        task = asyncio.current_task()
        code: str | None = None
        try:
            code = await self._run_once()
        except asyncio.CancelledError:
            raise
        except MicrophoneError as e:
            self._logger.warning("Microphone unavailable: %s", e)
            code = "audio-capture"
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self._logger.info("STT connection failed (%s: %s)", type(e).__name__, e)
            code = "network"
        except Exception:
            self._logger.exception("STT session error")
            code = "other"

        if self._task is not task:
            return
        self._task = None
        if code is not None and self._on_error is not None:
            self._on_error(code)
        self._emit_end()

    async def _run_once(self) -> str | None:
        uri = self.build_uri()
        self._logger.info("Connecting STT: %s", uri)
        outcome: list[str] = []

        async with websockets.connect(
            uri,
            additional_headers={"xi-api-key": self._cfg.api_key},
            ssl=_ssl_context(self._logger),
            max_size=2 * 1024 * 1024,
            ping_interval=20,
            ping_timeout=20,
        ) as ws:
            self._last_activity_s = time.monotonic()

            async def sender() -> None:
                frames = self._frame_source()
                try:
                    async for frame in frames:
                        payload = {
                            "message_type": "input_audio_chunk",
                            "audio_base_64": base64.b64encode(frame).decode("ascii"),
                            "commit": False,
                            "sample_rate": self._cfg.sample_rate_hz,
                        }
                        await ws.send(json.dumps(payload, separators=(",", ":")))
                finally:
                    aclose = getattr(frames, "aclose", None)
                    if aclose is not None:
                        await aclose()

            async def receiver() -> None:
                async for msg in ws:
                    if not isinstance(msg, str):
                        continue
                    try:
                        obj = json.loads(msg)
                    except Exception:
                        continue
                    over, code = self.handle_message(obj)
                    if code is not None:
                        outcome.append(code)
                    if over:
                        return

            async def watchdog() -> None:
                deadline = time.monotonic() + float(self._cfg.session_max_s)
                while time.monotonic() < deadline:
                    await asyncio.sleep(0.25)
                    if (time.monotonic() - self._last_activity_s) > float(self._cfg.no_speech_timeout_s):
                        outcome.append("no-speech")
                        return
                self._logger.debug("STT session reached max duration")

            tasks = [
                asyncio.create_task(sender(), name="stt_sender"),
                asyncio.create_task(receiver(), name="stt_receiver"),
                asyncio.create_task(watchdog(), name="stt_watchdog"),
            ]
            try:
                done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for t in tasks:
                    t.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
            for t in done:
                if not t.cancelled() and t.exception() is not None:
                    raise t.exception()
        return outcome[0] if outcome else None

    def _emit_end(self) -> None:
        if self._on_end is not None:
            self._on_end()

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

import websockets
from websockets.asyncio.server import ServerConnection

from navaid.config import CoreConfig
from navaid.emergency import EmergencyDispatch, emergency_command
from navaid.external_haptics import ExternalHapticsClient
from navaid.gestures import GestureTriggerDetector, HapticActuator
from navaid.logging_utils import setup_logging
from navaid.models import CommandSpec, MotionSample, NavigationCue, PermissionState, VibrationPattern
from navaid.motion_sensor import StreamMotionSensor
from navaid.protocol import ClientHello, dumps, emergency_alert, loads, transcript_message
from navaid.spatial_audio import AudioOutput, SoundDeviceOutput, SpatialAudioCueEngine
from navaid.speech_capture import RealtimeSpeechCapture
from navaid.speech_synthesis import Pyttsx3Synthesizer
from navaid.voice import SpeechCapture, SpeechSynthesizer, VoiceCommandEngine


def navigation_commands(audio: SpatialAudioCueEngine) -> list[CommandSpec]:
    return [
        CommandSpec("turn left", lambda: audio.play_navigation_cue(NavigationCue.LEFT), "Turn left"),
        CommandSpec("turn right", lambda: audio.play_navigation_cue(NavigationCue.RIGHT), "Turn right"),
        CommandSpec("go straight", lambda: audio.play_navigation_cue(NavigationCue.STRAIGHT), "Go straight"),
    ]


class CoreServer:
    """Websocket host that wires a phone client to the voice, gesture and audio cores.

    Paths: /events (taps, cues, voice control; emergency alerts and status out),
    /motion (permission hello and accelerometer samples), /stt (final transcripts).
    """

    def __init__(
        self,
        host: str,
        port: int,
        log_level: str = "INFO",
        *,
        config: CoreConfig | None = None,
        on_emergency: Callable[[], Any] | None = None,
        capture: SpeechCapture | None = None,
        synthesizer: SpeechSynthesizer | None = None,
        audio_output: AudioOutput | None = None,
        haptics: HapticActuator | None = None,
    ) -> None:
        setup_logging(log_level)
        self._logger = logging.getLogger("navaid")

        self._host = host
        self._port = port
        self._config = config or CoreConfig.from_env()
        self._stop = asyncio.Event()
        self._bg_tasks: set[asyncio.Task[Any]] = set()

        self._events_clients: set[ServerConnection] = set()
        self._stt_clients: set[ServerConnection] = set()
        self._motion_clients: set[ServerConnection] = set()

        cfg = self._config
        self._external_haptics: ExternalHapticsClient | None = None
        if haptics is None and cfg.haptics.enabled:
            self._external_haptics = ExternalHapticsClient(
                name="wrist",
                url=cfg.haptics.url,
                payload_format=cfg.haptics.payload_format,
                intensity=cfg.haptics.intensity,
                open_timeout_s=cfg.haptics.open_timeout_s,
                logger=logging.getLogger("navaid.external_haptics"),
            )
            haptics = self._external_haptics

        if audio_output is None and cfg.audio_output:
            audio_output = SoundDeviceOutput()
        if synthesizer is None and cfg.speech_output:
            synthesizer = Pyttsx3Synthesizer()
        if capture is None and cfg.stt.enabled:
            capture = RealtimeSpeechCapture(cfg.stt)

        self.emergency = EmergencyDispatch(on_emergency or self._default_emergency)
        self.emergency.add_listener(self._on_emergency_triggered)
        self.audio = SpatialAudioCueEngine(audio_output, config=cfg.audio_cues)
        self.motion = StreamMotionSensor()
        self.gestures = GestureTriggerDetector(
            self.emergency.trigger,
            motion_sensor=self.motion,
            haptics=haptics,
            config=cfg.gestures,
        )
        commands = [
            emergency_command(self.emergency),
            emergency_command(self.emergency, pattern="आपातकाल", description="Open emergency contacts in Hindi"),
            *navigation_commands(self.audio),
        ]
        self.voice = VoiceCommandEngine(
            commands,
            capture,
            synthesizer,
            config=cfg.voice,
            on_transcript=self._on_transcript,
        )
        self._synthesizer = synthesizer
        self._audio_output = audio_output
        self._haptics = haptics

    def stop(self) -> None:
        self._stop.set()

    async def run(self) -> None:
        self._logger.info("Starting server on %s:%s", self._host, self._port)
        if not self.voice.is_supported:
            self._logger.warning("ELEVENLABS_API_KEY not set or no microphone; voice commands disabled")
        status_task = asyncio.create_task(self._status_loop(), name="status_loop")
        motion_task = asyncio.create_task(self.gestures.start_motion(), name="motion_permission")
        tasks: list[asyncio.Task[Any]] = [status_task, motion_task]
        if self._external_haptics is not None:
            tasks.append(asyncio.create_task(self._external_haptics.run(self._stop), name="external_haptics"))
        else:
            self._logger.info("External haptics disabled (set EXTERNAL_HAPTICS=1 to enable)")
        try:
            async with websockets.serve(self._route, self._host, self._port, max_size=2 * 1024 * 1024):
                await self._stop.wait()
        finally:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self.voice.close()
            self.gestures.close()
            close_synth = getattr(self._synthesizer, "close", None)
            if close_synth is not None:
                close_synth()
            close_output = getattr(self._audio_output, "close", None)
            if close_output is not None:
                close_output()

    async def _route(self, conn: ServerConnection) -> None:
        path = conn.request.path.split("?", 1)[0]
        if path == "/events":
            await self._handle_events(conn)
            return
        if path == "/motion":
            await self._handle_motion(conn)
            return
        if path == "/stt":
            await self._handle_stt(conn)
            return

        self._logger.warning("Unknown websocket path %s from %s", conn.request.path, conn.remote_address)
        await conn.close(code=1008, reason="Unknown path")

    # ---- /events ---------------------------------------------------------------

    async def _handle_events(self, conn: ServerConnection) -> None:
        self._events_clients.add(conn)
        self._logger.info("/events connected from %s", conn.remote_address)
        try:
            await conn.send(dumps({"type": "status", "server": "connected"}))
            async for msg in conn:
                if not isinstance(msg, str):
                    continue
                try:
                    obj = loads(msg)
                except Exception:
                    continue
                if isinstance(obj, dict):
                    await self.handle_event_message(conn, obj)
        finally:
            self._events_clients.discard(conn)
            self._logger.info("/events disconnected from %s", conn.remote_address)

    async def handle_event_message(self, conn: Any, obj: dict[str, Any]) -> None:
        msg_type = obj.get("type")
        if msg_type == "tap":
            self.gestures.handle_tap()
        elif msg_type == "cue":
            raw = str(obj.get("direction") or "").strip().lower()
            try:
                cue = NavigationCue(raw)
            except ValueError:
                await conn.send(dumps({"type": "error", "message": f"unknown cue direction {raw!r}"}))
                return
            self.audio.play_navigation_cue(cue)
        elif msg_type == "voice":
            action = str(obj.get("action") or "").strip().lower()
            if action == "start":
                self.voice.start()
            elif action == "stop":
                self.voice.stop()
            else:
                await conn.send(dumps({"type": "error", "message": f"unknown voice action {action!r}"}))
                return
            await self._broadcast_stt({"type": "status", "listening": self.voice.listening})
        elif msg_type == "haptics.test":
            name = str(obj.get("pattern") or "").strip().lower()
            try:
                pattern = VibrationPattern.named(name)
            except ValueError:
                await conn.send(dumps({"type": "error", "message": f"unknown vibration pattern {name!r}"}))
                return
            if self._haptics is not None:
                self._haptics.vibrate(pattern)
            self.voice.speak(f"{name} vibration pattern activated")
        elif msg_type == "status.request":
            await conn.send(dumps(self.build_status_payload()))

    # ---- /motion ---------------------------------------------------------------

    async def _handle_motion(self, conn: ServerConnection) -> None:
        self._motion_clients.add(conn)
        self._logger.info("/motion connected from %s", conn.remote_address)
        try:
            async for msg in conn:
                if not isinstance(msg, str):
                    continue
                try:
                    obj = loads(msg)
                except Exception:
                    continue
                if isinstance(obj, dict):
                    self.handle_motion_message(obj)
        finally:
            self._motion_clients.discard(conn)
            self._logger.info("/motion disconnected from %s", conn.remote_address)

    def handle_motion_message(self, obj: dict[str, Any]) -> None:
        msg_type = obj.get("type")
        if msg_type == "hello":
            hello = ClientHello.from_obj(obj)
            self.motion.set_permission(hello.motion_permission)
            # A phone that connects after the startup request timed out can still enable shake.
            if not self.gestures.motion_active and self.motion.permission is PermissionState.GRANTED:
                self._spawn(self._start_motion())
        elif msg_type == "motion":
            try:
                sample = MotionSample.from_payload(obj, at=asyncio.get_running_loop().time())
            except (TypeError, ValueError):
                return
            self.motion.feed(sample)

    # ---- /stt ------------------------------------------------------------------

    async def _handle_stt(self, conn: ServerConnection) -> None:
        self._stt_clients.add(conn)
        self._logger.info("/stt connected from %s", conn.remote_address)
        try:
            await conn.send(dumps({"type": "status", "listening": self.voice.listening}))
            await conn.wait_closed()
        finally:
            self._stt_clients.discard(conn)
            self._logger.info("/stt disconnected from %s", conn.remote_address)

    # ---- outbound --------------------------------------------------------------

    async def _start_motion(self) -> None:
        await self.gestures.start_motion()

    def _default_emergency(self) -> None:
        self._logger.warning("Emergency contacts requested; no emergency handler configured")

    def _on_emergency_triggered(self, source: str, count: int) -> None:
        self._spawn(self._broadcast_events(emergency_alert(source, count)))

    def _on_transcript(self, text: str) -> None:
        self._spawn(self._broadcast_stt(transcript_message(text)))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._bg_tasks.add(task)
        task.add_done_callback(self._bg_tasks.discard)

    async def _broadcast_events(self, obj: dict[str, Any]) -> None:
        if not self._events_clients:
            return
        await self._broadcast(self._events_clients, dumps(obj))

    async def _broadcast_stt(self, obj: dict[str, Any]) -> None:
        if not self._stt_clients:
            return
        await self._broadcast(self._stt_clients, dumps(obj))

    async def _broadcast(self, conns: set[Any], payload: str) -> None:
        dead: list[Any] = []
        for c in list(conns):
            try:
                await c.send(payload)
            except Exception:
                dead.append(c)
        for c in dead:
            conns.discard(c)

    def build_status_payload(self) -> dict[str, Any]:
        stats = self.emergency.stats
        return {
            "type": "status",
            "server": "ok",
            "clients": {
                "events": len(self._events_clients),
                "motion": len(self._motion_clients),
                "stt": len(self._stt_clients),
            },
            "voice": {
                "supported": self.voice.is_supported,
                "listening": self.voice.listening,
                "lastTranscript": self.voice.last_transcript,
                "restarts": self.voice.restarts,
            },
            "gestures": {
                "tapCount": self.gestures.tap_count,
                "shakeCooldown": self.gestures.shake_cooldown,
                "motionPermission": self.gestures.motion_permission.value,
                "motionActive": self.gestures.motion_active,
            },
            "audio": {"supported": self.audio.is_supported},
            "emergency": {"count": stats.count, "lastSource": stats.last_source, "bySource": dict(stats.by_source)},
            "externalHaptics": {
                "enabled": self._external_haptics is not None,
                "connected": bool(self._external_haptics and self._external_haptics.connected),
            },
        }

    async def _status_loop(self) -> None:
        while True:
            await asyncio.sleep(1.0)
            await self._broadcast_events(self.build_status_payload())

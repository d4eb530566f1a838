from __future__ import annotations

import logging
from typing import Callable, Protocol, Sequence

from navaid.config import GestureConfig
from navaid.models import ORIGIN_SAMPLE, MotionSample, PermissionState, TapState, VibrationPattern
from navaid.timers import OneShotTimer, Scheduler, resolve_scheduler


class HapticActuator(Protocol):
    def vibrate(self, pattern: int | Sequence[int]) -> None: ...


class MotionSensor(Protocol):
    @property
    def is_supported(self) -> bool: ...

    async def request_permission(self) -> bool: ...

    def add_listener(self, listener: Callable[[MotionSample], None]) -> None: ...

    def remove_listener(self, listener: Callable[[MotionSample], None]) -> None: ...


class GestureTriggerDetector:
    """Turns tap bursts and device shakes into a single emergency signal."""

    def __init__(
        self,
        on_emergency: Callable[[str], None],
        *,
        motion_sensor: MotionSensor | None = None,
        haptics: HapticActuator | None = None,
        scheduler: Scheduler | None = None,
        config: GestureConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._on_emergency = on_emergency
        self._motion_sensor = motion_sensor
        self._haptics = haptics
        self._scheduler = scheduler
        self._config = config or GestureConfig()
        self._logger = logger or logging.getLogger("navaid.gestures")

        self._taps = TapState()
        self._tap_timer = OneShotTimer(self._clock, self._on_tap_debounce)

        self._last_sample = ORIGIN_SAMPLE
        self._shake_cooldown = False
        self._cooldown_timer = OneShotTimer(self._clock, self._clear_shake_cooldown)

        self._listening_motion = False
        self._closed = False
        self.motion_permission = PermissionState.UNKNOWN

    def _clock(self) -> Scheduler:
        return resolve_scheduler(self._scheduler)

    # ---- observable state ----------------------------------------------------

    @property
    def tap_count(self) -> int:
        return self._taps.count

    @property
    def shake_cooldown(self) -> bool:
        return self._shake_cooldown

    @property
    def motion_active(self) -> bool:
        return self._listening_motion

    # ---- triple tap ----------------------------------------------------------

    def handle_tap(self) -> None:
        if self._closed:
            return
        now = self._clock().time()
        window_s = self._config.tap_window_ms / 1000.0
        last = self._taps.last_tap_at
        if last is not None and (now - last) < window_s:
            self._taps.count += 1
        else:
            self._taps.count = 1
        self._taps.last_tap_at = now
        self._tap_timer.arm(self._config.tap_debounce_ms / 1000.0)

    def _on_tap_debounce(self) -> None:
        count = self._taps.count
        self._taps.count = 0
        if count >= self._config.tap_trigger_count:
            self._logger.info("Tap burst detected taps=%d", count)
            self._fire("tap", VibrationPattern.SOS_TAP)

    # ---- shake -----------------------------------------------------------------

    def handle_motion(self, sample: MotionSample) -> None:
        if self._closed:
            return
        magnitude = sample.delta_sum(self._last_sample)
        if magnitude > self._config.shake_threshold and not self._shake_cooldown:
            self._logger.info("Shake detected delta=%.2f", magnitude)
            self._fire("shake", VibrationPattern.SOS_SHAKE)
            self._shake_cooldown = True
            self._cooldown_timer.arm(self._config.shake_cooldown_ms / 1000.0)
        self._last_sample = sample

    def _clear_shake_cooldown(self) -> None:
        self._shake_cooldown = False

    async def start_motion(self) -> PermissionState:
        sensor = self._motion_sensor
        if sensor is None or not sensor.is_supported:
            self.motion_permission = PermissionState.UNSUPPORTED
            return self.motion_permission
        if self._listening_motion:
            return self.motion_permission

        try:
            granted = bool(await sensor.request_permission())
        except Exception:
            self._logger.exception("Motion permission request failed")
            granted = False

        if not granted:
            # The shake path stays inert; callers only see motion_permission.
            self.motion_permission = PermissionState.DENIED
            self._logger.info("Motion permission denied; shake detection disabled")
            return self.motion_permission

        self.motion_permission = PermissionState.GRANTED
        if self._closed:
            return self.motion_permission
        sensor.add_listener(self.handle_motion)
        self._listening_motion = True
        return self.motion_permission

    # ---- lifecycle -------------------------------------------------------------

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._listening_motion and self._motion_sensor is not None:
            self._motion_sensor.remove_listener(self.handle_motion)
        self._listening_motion = False
        self._tap_timer.cancel()
        self._cooldown_timer.cancel()
        self._taps = TapState()

    async def __aenter__(self) -> GestureTriggerDetector:
        await self.start_motion()
        return self

    async def __aexit__(self, *_) -> None:
        self.close()

    def _fire(self, source: str, pattern: Sequence[int]) -> None:
        try:
            self._on_emergency(source)
        except Exception:
            self._logger.exception("Emergency callback failed source=%s", source)
        if self._haptics is not None and self._config.haptics_enabled:
            self._haptics.vibrate(pattern)

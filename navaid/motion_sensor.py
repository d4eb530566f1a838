from __future__ import annotations

import asyncio
import logging
from typing import Callable

from navaid.models import MotionSample, PermissionState


class StreamMotionSensor:
    """Motion sensor backed by samples a phone client pushes over the event host.

    The phone answers the platform permission prompt itself and reports the outcome
    in its hello message; `request_permission` waits for that report.
    """

    def __init__(self, *, permission_timeout_s: float = 30.0, logger: logging.Logger | None = None) -> None:
        self._permission_timeout_s = float(permission_timeout_s)
        self._logger = logger or logging.getLogger("navaid.motion")
        self._listeners: list[Callable[[MotionSample], None]] = []
        self._permission = PermissionState.UNKNOWN
        self._permission_known = asyncio.Event()
        self.samples_seen = 0

    @property
    def is_supported(self) -> bool:
        return True

    @property
    def permission(self) -> PermissionState:
        return self._permission

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def set_permission(self, raw: str | PermissionState | None) -> None:
        if raw is None:
            return
        try:
            state = PermissionState(str(getattr(raw, "value", raw)).strip().lower())
        except ValueError:
            self._logger.info("Ignoring unknown motion permission %r", raw)
            return
        if state is PermissionState.UNKNOWN:
            return
        self._permission = state
        self._permission_known.set()
        self._logger.info("Motion permission reported: %s", state.value)

    async def request_permission(self) -> bool:
        if not self._permission_known.is_set():
            try:
                await asyncio.wait_for(self._permission_known.wait(), timeout=self._permission_timeout_s)
            except asyncio.TimeoutError:
                self._logger.info("No motion permission report within %.0fs", self._permission_timeout_s)
                return False
        return self._permission is PermissionState.GRANTED

    def add_listener(self, listener: Callable[[MotionSample], None]) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[MotionSample], None]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def feed(self, sample: MotionSample) -> None:
        self.samples_seen += 1
        for listener in list(self._listeners):
            try:
                listener(sample)
            except Exception:
                self._logger.exception("Motion listener failed")

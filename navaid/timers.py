from __future__ import annotations

import asyncio
from typing import Any, Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """The subset of the asyncio event loop the core schedules against."""

    def time(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


def resolve_scheduler(scheduler: Scheduler | None) -> Scheduler:
    if scheduler is not None:
        return scheduler
    return asyncio.get_running_loop()


class OneShotTimer:
    """A single pending callback; arming again replaces the previous one."""

    def __init__(self, scheduler: Callable[[], Scheduler], callback: Callable[[], None]) -> None:
        self._scheduler = scheduler
        self._callback = callback
        self._handle: TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def arm(self, delay_s: float) -> None:
        self.cancel()
        self._handle = self._scheduler().call_later(max(0.0, float(delay_s)), self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._callback()

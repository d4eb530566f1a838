from __future__ import annotations

import logging
from typing import Any, Callable

from navaid.models import CommandSpec, EmergencyStats


class EmergencyDispatch:
    """Shared SOS sink for the gesture and voice paths.

    No de-duplication happens here: a tap burst and a voice command in quick
    succession invoke the callback twice, so the callback must tolerate that.
    """

    def __init__(self, callback: Callable[[], Any], *, logger: logging.Logger | None = None) -> None:
        self._callback = callback
        self._logger = logger or logging.getLogger("navaid.emergency")
        self._listeners: list[Callable[[str, int], None]] = []
        self.stats = EmergencyStats()

    def add_listener(self, listener: Callable[[str, int], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[str, int], None]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def trigger(self, source: str) -> None:
        self.stats.count += 1
        self.stats.last_source = source
        self.stats.by_source[source] = self.stats.by_source.get(source, 0) + 1
        self._logger.warning("Emergency triggered source=%s count=%d", source, self.stats.count)

        try:
            self._callback()
        except Exception:
            self._logger.exception("Emergency callback failed source=%s", source)

        for listener in list(self._listeners):
            try:
                listener(source, self.stats.count)
            except Exception:
                self._logger.exception("Emergency listener failed source=%s", source)

    def trigger_from(self, source: str) -> Callable[[], None]:
        def _fire() -> None:
            self.trigger(source)

        return _fire


def emergency_command(
    dispatch: EmergencyDispatch,
    *,
    pattern: str = "emergency",
    description: str = "Open emergency contacts",
) -> CommandSpec:
    return CommandSpec(pattern=pattern, action=dispatch.trigger_from("voice"), description=description)

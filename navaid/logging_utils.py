from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str | int = "INFO") -> None:
    if isinstance(level, str):
        resolved = getattr(logging, level.strip().upper(), None)
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level {level!r}")
    else:
        resolved = int(level)

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=resolved, format=_FORMAT)
    root.setLevel(resolved)
    # websockets logs every handshake at INFO.
    logging.getLogger("websockets").setLevel(max(resolved, logging.WARNING))

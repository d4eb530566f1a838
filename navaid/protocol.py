from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class ClientHello:
    v: int
    type: str
    motion_permission: str | None = None

    @classmethod
    def from_obj(cls, obj: dict[str, Any]) -> ClientHello:
        raw_perm = obj.get("motionPermission")
        return cls(
            v=int(obj.get("v") or 1),
            type=str(obj.get("type") or ""),
            motion_permission=str(raw_perm).strip().lower() if raw_perm is not None else None,
        )


def dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def loads(text: str) -> Any:
    return json.loads(text)


def emergency_alert(source: str, count: int) -> dict[str, Any]:
    return {"type": "alert.emergency", "source": source, "count": int(count)}


def transcript_message(text: str) -> dict[str, Any]:
    return {"type": "final", "text": text}

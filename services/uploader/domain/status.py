from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

TERMINAL_SIGNALS = frozenset(
    {"complete", "completed", "failed", "error", "jobcompleted", "jobfailed"}
)


@dataclass(frozen=True)
class StatusEvent:
    stream_id: str
    raw: str
    payload: Optional[Mapping[str, Any]] = None
    terminal: bool = False

    @property
    def status(self) -> str | None:
        if self.payload is None:
            return None
        value = self.payload.get("status")
        return str(value) if value is not None else None


def is_terminal_payload(payload: Mapping[str, Any] | None) -> bool:
    if not payload:
        return False
    for key in ("status", "type", "event"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip().lower() in TERMINAL_SIGNALS:
            return True
    return False

from __future__ import annotations

from dataclasses import dataclass

from elmdiag.core.models import Protocol


@dataclass(frozen=True)
class LiveSampleEvent:
    tick: int
    session: str
    protocol: Protocol
    field: str
    value: float
    unit: str

    def to_dict(self) -> dict[str, object]:
        # Stable key order for JSONL streaming.
        return {
            "event": "live_value",
            "tick": int(self.tick),
            "session": self.session,
            "protocol": self.protocol,
            "field": self.field,
            "value": self.value,
            "unit": self.unit,
        }

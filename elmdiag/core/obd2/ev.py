from __future__ import annotations

from dataclasses import dataclass

from elmdiag.core.obd2.codec import build_read_did, build_read_pid, require_messages
from elmdiag.core.obd2.pids import find_positive_response


@dataclass(frozen=True)
class EvParam:
    field: str
    command: str
    service: int
    ident: bytes
    length: int
    scale: float = 1.0
    bias: float = 0.0
    unit: str = ""

    def decode(self, response: str) -> float | None:
        data = find_positive_response(require_messages(response, self.service), self.service, self.ident)
        if data is None or len(data) < self.length:
            return None
        raw = int.from_bytes(data[: self.length], "big")
        return round(raw * self.scale + self.bias, 3)


def _pid(field: str, pid: int, length: int, **kw: object) -> EvParam:
    return EvParam(field=field, command=build_read_pid(pid), service=0x41, ident=bytes([pid]), length=length, **kw)  # type: ignore[arg-type]


def _did(field: str, did: int, length: int, **kw: object) -> EvParam:
    ident = bytes([(did >> 8) & 0xFF, did & 0xFF])
    return EvParam(field=field, command=build_read_did(did), service=0x62, ident=ident, length=length, **kw)  # type: ignore[arg-type]


# Hybrid/EV battery pack parameters. 015B is standard; the 22xxxx DIDs are
# the common Hyundai/Kia layout.
EV_PARAMS: tuple[EvParam, ...] = (
    _pid("state_of_charge", 0x5B, 1, scale=100.0 / 255.0, unit="%"),
    _did("state_of_health", 0x0101, 2, scale=0.01, unit="%"),
    _did("battery_voltage", 0x0102, 2, scale=0.1, unit="V"),
    _did("battery_current", 0x0105, 2, scale=0.1, bias=-100.0, unit="A"),
    _did("battery_temperature", 0x0106, 1, bias=-40.0, unit="°C"),
)

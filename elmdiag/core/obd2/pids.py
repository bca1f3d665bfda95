from __future__ import annotations

from dataclasses import dataclass

from elmdiag.core.obd2.codec import ResponseMessage, require_messages


@dataclass(frozen=True)
class PidSpec:
    """Mode 01 PID with a linear decode: value = raw * scale + bias.

    `raw` is the big-endian integer formed by the first `length` data bytes.
    """

    pid: int
    field: str
    length: int
    scale: float = 1.0
    bias: float = 0.0
    unit: str = ""

    def decode(self, data: bytes) -> float | None:
        if len(data) < self.length:
            return None
        raw = int.from_bytes(data[: self.length], "big")
        return raw * self.scale + self.bias


_DEFAULT_PIDS: list[PidSpec] = [
    PidSpec(pid=0x0C, field="rpm", length=2, scale=0.25, unit="rpm"),
    PidSpec(pid=0x0D, field="speed", length=1, unit="km/h"),
    PidSpec(pid=0x05, field="coolant_temp", length=1, bias=-40.0, unit="°C"),
    PidSpec(pid=0x04, field="engine_load", length=1, scale=100.0 / 255.0, unit="%"),
    PidSpec(pid=0x0A, field="fuel_pressure", length=1, scale=3.0, unit="kPa"),
    PidSpec(pid=0x0F, field="intake_temp", length=1, bias=-40.0, unit="°C"),
    PidSpec(pid=0x10, field="maf", length=2, scale=0.01, unit="g/s"),
    PidSpec(pid=0x11, field="throttle_position", length=1, scale=100.0 / 255.0, unit="%"),
    PidSpec(pid=0x2F, field="fuel_level", length=1, scale=100.0 / 255.0, unit="%"),
    PidSpec(pid=0xA6, field="odometer", length=4, scale=0.1, unit="km"),
]

LIVE_PIDS: tuple[PidSpec, ...] = tuple(_DEFAULT_PIDS)

_PID_TABLE: dict[int, PidSpec] = {spec.pid: spec for spec in _DEFAULT_PIDS}


def spec_for_pid(pid: int) -> PidSpec | None:
    return _PID_TABLE.get(int(pid) & 0xFF)


def find_positive_response(messages: list[ResponseMessage], service: int, ident: bytes) -> bytes | None:
    """Return the data bytes that follow `service + ident` in the first message carrying it."""
    marker = bytes([service]) + ident
    for message in messages:
        idx = message.data.find(marker)
        if idx >= 0:
            return message.data[idx + len(marker) :]
    return None


def decode_pid_response(spec: PidSpec, response: str) -> float | None:
    """Decode one Mode 01 reply.

    Returns None (field absent) when the reply is too short or carries no
    positive response for the PID; raises DecodeError when it has no hex
    payload at all.
    """

    data = find_positive_response(require_messages(response, 0x41), 0x41, bytes([spec.pid]))
    if data is None:
        return None
    value = spec.decode(data)
    if value is None:
        return None
    return round(value, 3)

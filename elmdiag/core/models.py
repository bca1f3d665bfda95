from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Mapping, Union


Protocol = Literal["obd2", "j1939"]
Severity = Literal["critical", "warning", "info"]

PROTOCOLS: tuple[Protocol, ...] = ("obd2", "j1939")


def parse_protocol(value: str) -> Protocol:
    raw = (value or "").strip().lower()
    if raw not in PROTOCOLS:
        raise ValueError(f"invalid profile {value!r} (expected obd2 or j1939)")
    return raw  # type: ignore[return-value]


@dataclass(frozen=True)
class Obd2Fault:
    code: str
    raw: str
    severity: Severity
    occurrence_count: int = 1
    protocol: Literal["obd2"] = field(default="obd2", init=False)

    @property
    def system(self) -> str:
        return self.code[0]

    def to_dict(self) -> dict[str, object]:
        return {
            "protocol": self.protocol,
            "code": self.code,
            "raw": self.raw,
            "system": self.system,
            "severity": self.severity,
            "occurrence_count": int(self.occurrence_count),
        }


@dataclass(frozen=True)
class J1939Fault:
    spn: int
    fmi: int
    occurrence_count: int
    severity: Severity
    source: str
    description: str
    fmi_description: str
    protocol: Literal["j1939"] = field(default="j1939", init=False)

    @property
    def code(self) -> str:
        return f"SPN {self.spn} / FMI {self.fmi}"

    def to_dict(self) -> dict[str, object]:
        return {
            "protocol": self.protocol,
            "code": self.code,
            "spn": int(self.spn),
            "fmi": int(self.fmi),
            "occurrence_count": int(self.occurrence_count),
            "severity": self.severity,
            "source": self.source,
            "description": self.description,
            "fmi_description": self.fmi_description,
        }


FaultRecord = Union[Obd2Fault, J1939Fault]


@dataclass(frozen=True)
class LiveDataSample:
    """Decoded live values keyed by semantic field name.

    A missing key means the field was not decoded this cycle, never zero.
    """

    protocol: Protocol
    values: Mapping[str, float]
    units: Mapping[str, str]

    def __getitem__(self, name: str) -> float:
        return self.values[name]

    def __contains__(self, name: object) -> bool:
        return name in self.values

    def get(self, name: str, default: float | None = None) -> float | None:
        return self.values.get(name, default)

    def to_dict(self) -> dict[str, object]:
        return {
            "protocol": self.protocol,
            "values": {k: self.values[k] for k in sorted(self.values)},
            "units": {k: self.units[k] for k in sorted(self.values) if k in self.units},
        }


@dataclass(frozen=True)
class EvBatteryRecord:
    state_of_charge: float | None = None
    state_of_health: float | None = None
    battery_voltage: float | None = None
    battery_current: float | None = None
    battery_temperature: float | None = None

    def is_empty(self) -> bool:
        return all(v is None for v in self.to_dict().values())

    def to_dict(self) -> dict[str, object]:
        return {
            "state_of_charge": self.state_of_charge,
            "state_of_health": self.state_of_health,
            "battery_voltage": self.battery_voltage,
            "battery_current": self.battery_current,
            "battery_temperature": self.battery_temperature,
        }

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class SpnDecode:
    """Byte extraction for an SPN inside its PGN payload.

    J1939-71 parameters are little-endian: value = raw * scale + bias.
    """

    offset: int
    length: int
    scale: float = 1.0
    bias: float = 0.0

    def __call__(self, data: bytes) -> float | None:
        chunk = data[self.offset : self.offset + self.length]
        if len(chunk) < self.length:
            return None
        if all(b == 0xFF for b in chunk):
            # "Not available" marker.
            return None
        raw = int.from_bytes(chunk, "little")
        return round(raw * self.scale + self.bias, 3)


@dataclass(frozen=True)
class SpnDescriptor:
    spn: int
    name: str
    unit: str
    system: str
    pgn: str | None = None
    decode: SpnDecode | None = None


def _d(spn: int, name: str, unit: str, system: str, pgn: str | None = None, decode: SpnDecode | None = None) -> SpnDescriptor:
    return SpnDescriptor(spn=spn, name=name, unit=unit, system=system, pgn=pgn, decode=decode)


# Common SPNs on Class 6-8 trucks (Cummins, Detroit, PACCAR, Volvo, CAT).
_SPNS: list[SpnDescriptor] = [
    # Engine
    _d(84, "Vehicle Speed", "km/h", "Vehicle", "FEF1", SpnDecode(0, 2, scale=1 / 256)),
    _d(91, "Accelerator Pedal Position", "%", "Engine"),
    _d(92, "Engine Load", "%", "Engine", "F003", SpnDecode(2, 1)),
    _d(100, "Engine Oil Pressure", "kPa", "Engine", "FEEF", SpnDecode(0, 1, scale=4)),
    _d(102, "Boost Pressure", "kPa", "Engine", "FEF6", SpnDecode(0, 1, scale=2)),
    _d(105, "Intake Manifold Temperature", "°C", "Engine"),
    _d(108, "Barometric Pressure", "kPa", "Engine"),
    _d(110, "Engine Coolant Temperature", "°C", "Engine", "FEEE", SpnDecode(0, 1, bias=-40)),
    _d(157, "Fuel Rail Pressure", "kPa", "Fuel"),
    _d(158, "Battery Voltage", "V", "Electrical"),
    _d(168, "Battery Potential", "V", "Electrical"),
    _d(171, "Ambient Air Temperature", "°C", "Engine"),
    _d(174, "Fuel Temperature", "°C", "Fuel"),
    _d(175, "Engine Oil Temperature", "°C", "Engine"),
    _d(183, "Fuel Rate", "L/hr", "Fuel", "FEF2", SpnDecode(0, 2, scale=0.05)),
    _d(190, "Engine Speed (RPM)", "rpm", "Engine", "F004", SpnDecode(2, 2, scale=0.125)),
    _d(235, "Total Engine Hours", "hr", "Vehicle", "FEE5", SpnDecode(0, 4, scale=0.05)),
    _d(245, "Total Vehicle Distance", "km", "Vehicle"),
    _d(247, "Total Engine Fuel Used", "L", "Vehicle"),
    # Transmission
    _d(161, "Transmission Input Shaft Speed", "rpm", "Transmission"),
    _d(162, "Transmission Output Shaft Speed", "rpm", "Transmission"),
    _d(177, "Transmission Oil Temperature", "°C", "Transmission", "FE6C", SpnDecode(0, 2, scale=0.03125, bias=-273)),
    _d(523, "Transmission Current Gear", "gear", "Transmission", "F005", SpnDecode(0, 1, bias=-125)),
    _d(524, "Transmission Selected Gear", "gear", "Transmission"),
    # Air brakes
    _d(46, "Pneumatic Supply Pressure", "kPa", "Air Brakes", "FEAE", SpnDecode(0, 1, scale=8)),
    _d(116, "Service Brake Air Pressure (Circuit 1)", "kPa", "Air Brakes"),
    _d(117, "Service Brake Air Pressure (Circuit 2)", "kPa", "Air Brakes"),
    # Aftertreatment / emissions (EPA 2010+)
    _d(1761, "Aftertreatment DPF Soot Load", "%", "Aftertreatment"),
    _d(3031, "Aftertreatment DPF Regen Status", "status", "Aftertreatment"),
    _d(3226, "Aftertreatment SCR Catalyst Efficiency", "%", "Aftertreatment"),
    _d(3363, "Aftertreatment DEF Tank Level", "%", "Aftertreatment", "FE56", SpnDecode(0, 1, scale=0.4)),
    _d(3364, "Aftertreatment DEF Tank Temperature", "°C", "Aftertreatment"),
    _d(4094, "NOx Sensor (Outlet)", "ppm", "Aftertreatment"),
    _d(4360, "Aftertreatment DPF Ash Load", "%", "Aftertreatment"),
    _d(3556, "Aftertreatment Exhaust Gas Temperature", "°C", "Aftertreatment"),
    # ABS / stability
    _d(561, "ABS Active", "boolean", "ABS"),
    _d(563, "ABS Warning Lamp", "lamp", "ABS"),
    _d(571, "Wheel Speed Sensor", "km/h", "ABS"),
    _d(575, "Retarder Active", "boolean", "Brakes"),
    _d(1592, "Park Brake Status", "status", "Air Brakes"),
    # Network
    _d(625, "CAN Communication Error", "", "Communication"),
    _d(639, "J1939 Network Error", "", "Communication"),
    # Exhaust
    _d(412, "EGR Temperature", "°C", "Emissions"),
    _d(411, "EGR Valve Position", "%", "Emissions"),
    _d(414, "Exhaust Pressure", "kPa", "Emissions"),
    _d(2659, "Turbo Compressor Outlet Temperature", "°C", "Engine"),
]

SPN_DATABASE: Mapping[int, SpnDescriptor] = MappingProxyType({d.spn: d for d in _SPNS})

# SAE J1939-73 failure mode identifiers.
FMI_DESCRIPTIONS: Mapping[int, str] = MappingProxyType(
    {
        0: "Data valid but above normal operational range (most severe)",
        1: "Data valid but below normal operational range (most severe)",
        2: "Data erratic, intermittent, or incorrect",
        3: "Voltage above normal or shorted to high source",
        4: "Voltage below normal or shorted to low source",
        5: "Current below normal or open circuit",
        6: "Current above normal or grounded circuit",
        7: "Mechanical system not responding or out of adjustment",
        8: "Abnormal frequency or pulse width or period",
        9: "Abnormal update rate",
        10: "Abnormal rate of change",
        11: "Root cause not known",
        12: "Bad intelligent device or component",
        13: "Out of calibration",
        14: "Special instructions",
        15: "Data valid but above normal operating range (least severe)",
        16: "Data valid but above normal operating range (moderately severe)",
        17: "Data valid but below normal operating range (least severe)",
        18: "Data valid but below normal operating range (moderately severe)",
        19: "Received network data in error",
        20: "Data drifted high",
        21: "Data drifted low",
        31: "Condition exists",
    }
)

# Parameter groups requested with "00 <pgn>".
J1939_PGNS: Mapping[str, str] = MappingProxyType(
    {
        "engine_speed": "F004",  # EEC1
        "engine_load": "F003",  # EEC2
        "vehicle_speed": "FEF1",  # CCVS
        "coolant_temp": "FEEE",  # ET1
        "oil_pressure": "FEEF",  # EFL/P1
        "oil_temp": "FD7C",  # ET3
        "fuel_rate": "FEF2",  # LFE
        "boost_pressure": "FEF6",  # IC1
        "battery_voltage": "FEF7",  # VEP1
        "total_hours": "FEE5",  # HOURS
        "total_distance": "FEC1",  # VDHR
        "total_fuel": "FEE9",  # LFC
        "trans_temp": "FE6C",  # TRF1
        "trans_gear": "F005",  # ETC2
        "air_supply_pressure": "FEAE",  # AIR1
        "brake_pressure": "FE4E",
        "dpf_status": "FDB8",
        "def_level": "FE56",  # AT1T1I
        "exhaust_temp": "FE4D",
        "active_dtc": "FECA",  # DM1
        "previously_active_dtc": "FECB",  # DM2
    }
)

DM1_PGN = J1939_PGNS["active_dtc"]
DM2_PGN = J1939_PGNS["previously_active_dtc"]


@dataclass(frozen=True)
class LiveField:
    field: str
    spn: int

    @property
    def descriptor(self) -> SpnDescriptor:
        return SPN_DATABASE[self.spn]

    @property
    def pgn(self) -> str:
        assert self.descriptor.pgn is not None
        return self.descriptor.pgn


# Polled in this order; the bus does not cope well with back-to-back bursts.
LIVE_FIELDS: tuple[LiveField, ...] = (
    LiveField("rpm", 190),
    LiveField("engine_load", 92),
    LiveField("coolant_temp", 110),
    LiveField("oil_pressure", 100),
    LiveField("boost_pressure", 102),
    LiveField("vehicle_speed", 84),
    LiveField("fuel_rate", 183),
    LiveField("trans_temp", 177),
    LiveField("trans_gear", 523),
    LiveField("primary_air_pressure", 46),
    LiveField("def_level", 3363),
    LiveField("total_engine_hours", 235),
)


def lookup_spn(spn: int) -> SpnDescriptor | None:
    return SPN_DATABASE.get(int(spn))


def describe_spn(spn: int) -> str:
    desc = lookup_spn(spn)
    return desc.name if desc is not None else f"SPN {int(spn)}"


def lookup_fmi(fmi: int) -> str | None:
    return FMI_DESCRIPTIONS.get(int(fmi))


def describe_fmi(fmi: int) -> str:
    return lookup_fmi(fmi) or f"FMI {int(fmi)}"

from __future__ import annotations

from elmdiag.core.j1939.codec import (
    build_clear_faults,
    build_request,
    decode_clear_response,
    decode_dm_hex,
    decode_dm_response,
    decode_live_field,
    severity_for_fmi,
)
from elmdiag.core.j1939.spn import (
    DM1_PGN,
    DM2_PGN,
    FMI_DESCRIPTIONS,
    J1939_PGNS,
    LIVE_FIELDS,
    SPN_DATABASE,
    SpnDescriptor,
    describe_fmi,
    describe_spn,
    lookup_fmi,
    lookup_spn,
)

__all__ = [
    "DM1_PGN",
    "DM2_PGN",
    "FMI_DESCRIPTIONS",
    "J1939_PGNS",
    "LIVE_FIELDS",
    "SPN_DATABASE",
    "SpnDescriptor",
    "build_clear_faults",
    "build_request",
    "decode_clear_response",
    "decode_dm_hex",
    "decode_dm_response",
    "decode_live_field",
    "describe_fmi",
    "describe_spn",
    "lookup_fmi",
    "lookup_spn",
    "severity_for_fmi",
]

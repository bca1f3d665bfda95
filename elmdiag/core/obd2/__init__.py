from __future__ import annotations

from elmdiag.core.obd2.codec import (
    build_clear_faults,
    build_read_pid,
    build_read_stored_faults,
    decode_clear_ack,
    decode_dtc_hex,
    decode_stored_faults,
)
from elmdiag.core.obd2.ev import EV_PARAMS
from elmdiag.core.obd2.pids import LIVE_PIDS, PidSpec, decode_pid_response, spec_for_pid

__all__ = [
    "EV_PARAMS",
    "LIVE_PIDS",
    "PidSpec",
    "build_clear_faults",
    "build_read_pid",
    "build_read_stored_faults",
    "decode_clear_ack",
    "decode_dtc_hex",
    "decode_pid_response",
    "decode_stored_faults",
    "spec_for_pid",
]

from __future__ import annotations

import re

from elmdiag.core.errors import DecodeError
from elmdiag.core.j1939.spn import LiveField, describe_fmi, lookup_spn
from elmdiag.core.models import J1939Fault, Severity


_NON_HEX_RE = re.compile(r"[^0-9A-Fa-f]")
_HEX_LINE_RE = re.compile(r"^[0-9A-F]+$")

SPN_NOT_AVAILABLE = 0x7FFFF
_CRITICAL_FMIS = frozenset({0, 1, 2, 7, 12})

# Transport protocol PDU formats and the BAM control byte.
_TP_CM = "EC"
_TP_DT = "EB"
_TP_BAM = 0x20


def build_request(pgn: str) -> str:
    return f"00 {pgn.upper()}"


def build_clear_faults() -> str:
    # DM11 (PGN FED3) to the global address.
    return "18 FED3 FF"


def severity_for_fmi(fmi: int) -> Severity:
    if fmi in _CRITICAL_FMIS:
        return "critical"
    if 15 <= fmi <= 18:
        return "info"
    return "warning"


def make_fault(spn: int, fmi: int, oc: int) -> J1939Fault:
    desc = lookup_spn(spn)
    return J1939Fault(
        spn=spn,
        fmi=fmi,
        occurrence_count=oc,
        severity=severity_for_fmi(fmi),
        source=desc.system if desc is not None else "Unknown",
        description=desc.name if desc is not None else f"SPN {spn}",
        fmi_description=describe_fmi(fmi),
    )


def decode_dm_hex(data: str) -> list[J1939Fault]:
    """Decode a DM1/DM2 payload: 2 lamp-status bytes, then 4-byte DTC records.

    SPN is 19 bits (byte3[7:5] + byte2 + byte1), FMI byte3[4:0], OC byte4[6:0].
    Empty and not-available slots are skipped.
    """

    hexstr = _NON_HEX_RE.sub("", data or "")
    faults: list[J1939Fault] = []
    for i in range(4, len(hexstr) - 7, 8):
        b1, b2, b3, b4 = (int(hexstr[i + k : i + k + 2], 16) for k in (0, 2, 4, 6))
        spn = ((b3 & 0xE0) << 11) | (b2 << 8) | b1
        fmi = b3 & 0x1F
        oc = b4 & 0x7F
        if spn == 0 and fmi == 0:
            continue
        if spn == SPN_NOT_AVAILABLE:
            continue
        faults.append(make_fault(spn, fmi, oc))
    return faults


def _hex_lines(response: str) -> list[str]:
    out: list[str] = []
    for line in (response or "").upper().splitlines():
        compact = "".join(line.split())
        if compact and _HEX_LINE_RE.match(compact):
            out.append(compact)
    return out


def _has_header(line: str, pgn: str) -> bool:
    # 29-bit CAN id printed with ATH1: priority(1) PGN(2) source address(1).
    # A frame carries at most 8 data bytes, so a longer line has an id in front.
    return len(line) > 16 or (len(line) >= 8 and line[2:6] == pgn)


def pgn_payloads(response: str, pgn: str) -> list[str]:
    """Hex payload of each message in `response` that belongs to `pgn`.

    With headers on, frames for other PGNs are dropped and a BAM transfer
    (TP.CM announce on EC, TP.DT packets on EB) naming `pgn` is reassembled
    into one payload. A reply without headers is taken as-is. Raises
    DecodeError when the reply has no hex content at all.
    """

    lines = _hex_lines(response)
    if not lines:
        raise DecodeError(f"no hex payload in response to PGN {pgn}: {response!r}", raw=response)
    pgn = pgn.upper()
    if not any(_has_header(line, pgn) for line in lines):
        return lines

    target = int(pgn, 16)
    slots: list[tuple[bytearray, int]] = []
    transfers: dict[str, int] = {}
    for line in lines:
        body = line[8:]
        if len(body) % 2:
            body = body[:-1]
        data = bytes.fromhex(body)
        source = line[6:8]
        if line[2:6] == pgn:
            slots.append((bytearray(data), len(data)))
        elif line[2:4] == _TP_CM and len(data) >= 8 and data[0] == _TP_BAM:
            if int.from_bytes(data[5:8], "little") == target:
                transfers[source] = len(slots)
                slots.append((bytearray(), data[1] | (data[2] << 8)))
            else:
                transfers.pop(source, None)
        elif line[2:4] == _TP_DT and source in transfers and data:
            slots[transfers[source]][0].extend(data[1:8])
    return [bytes(buf[:size]).hex().upper() for buf, size in slots if buf and size]


def decode_dm_response(response: str, pgn: str) -> list[J1939Fault]:
    faults: list[J1939Fault] = []
    seen: set[tuple[int, int]] = set()
    for payload in pgn_payloads(response, pgn):
        for fault in decode_dm_hex(payload):
            key = (fault.spn, fault.fmi)
            if key in seen:
                continue
            seen.add(key)
            faults.append(fault)
    return faults


def decode_live_field(field: LiveField, response: str) -> float | None:
    decode = field.descriptor.decode
    assert decode is not None
    payloads = pgn_payloads(response, field.pgn)
    if not payloads:
        return None
    payload = payloads[0]
    if len(payload) % 2:
        payload = payload[:-1]
    return decode(bytes.fromhex(payload))


def decode_clear_response(response: str) -> None:
    """DM11 is a broadcast; any frame back (usually an ACK on PGN E8FF) is fine."""
    if not _hex_lines(response):
        raise DecodeError(f"unexpected reply to DM11: {response!r}", raw=response)

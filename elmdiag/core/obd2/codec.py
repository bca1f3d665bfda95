from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator

from elmdiag.core.errors import DecodeError
from elmdiag.core.models import Obd2Fault, Severity


_DTC_PREFIX = {0: "P", 1: "C", 2: "B", 3: "U"}

# Status lines the adapter interleaves with data.
_NOISE = ("SEARCHING...", "BUS INIT: ...OK", "BUS INIT:...OK", "STOPPED")

_HEX_RE = re.compile(r"^[0-9A-F]+$")
# With headers off and CAF1, a multi-frame reply is a byte-count line ("00A")
# followed by indexed data lines ("0:...", "1:...").
_BYTE_COUNT_RE = re.compile(r"^[0-9A-F]{3}$")
_FRAME_INDEX_RE = re.compile(r"^([0-9A-F]):([0-9A-F]*)$")

# Second header byte of ISO 9141-2 / KWP2000 / J1850 replies.
_NON_CAN_TARGETS = (0x6B, 0xF1)

SERVICE_STORED_DTCS = 0x43
SERVICE_CLEAR_DTCS = 0x44
NEGATIVE_RESPONSE = 0x7F


def build_read_stored_faults() -> str:
    return "03"


def build_clear_faults() -> str:
    return "04"


def build_read_pid(pid: int) -> str:
    return f"01{int(pid) & 0xFF:02X}"


def build_read_did(did: int) -> str:
    return f"22{int(did) & 0xFFFF:04X}"


def dtc_from_bytes(b1: int, b2: int) -> str:
    prefix = _DTC_PREFIX[(b1 >> 6) & 0x3]
    return f"{prefix}{((b1 & 0x3F) << 8) | b2:04X}"


def _dtc_pairs(data: bytes) -> Iterator[tuple[str, str]]:
    for i in range(0, len(data) - 1, 2):
        b1, b2 = data[i], data[i + 1]
        if b1 == 0 and b2 == 0:
            continue
        yield dtc_from_bytes(b1, b2), f"{b1:02X}{b2:02X}"


def decode_dtc_hex(data: str) -> list[str]:
    """Decode a run of 2-byte DTC pairs; `00 00` padding slots are skipped."""
    compact = "".join(data.split())
    if len(compact) % 4:
        compact = compact[: len(compact) - len(compact) % 4]
    return [code for code, _ in _dtc_pairs(bytes.fromhex(compact))]


@dataclass(frozen=True)
class ResponseMessage:
    """One ECU's reply with the link framing removed.

    `data` starts at the response service byte. `can` is None when the
    adapter printed no headers, so the framing is unknown.
    """

    source: str
    data: bytes
    can: bool | None = None


class _Assembler:
    def __init__(self, service: int) -> None:
        self.service = service
        self._slots: list[tuple[str, bytearray, bool | None, int]] = []
        self._open: dict[str, int] = {}
        self._next_seq: dict[str, int] = {}

    def _add(self, source: str, data: bytes, can: bool | None, length: int) -> int:
        self._slots.append((source, bytearray(data), can, length))
        return len(self._slots) - 1

    def can_frame(self, source: str, frame: bytes) -> None:
        # ISO-TP: 0N single frame, 1L LL first frame, 2N consecutive frame.
        if not frame:
            return
        kind, low = frame[0] >> 4, frame[0] & 0x0F
        if kind == 0 and low:
            self._open.pop(source, None)
            self._add(source, frame[1 : 1 + low], True, low)
        elif kind == 1 and len(frame) >= 2:
            self._open[source] = self._add(source, frame[2:], True, (low << 8) | frame[1])
            self._next_seq[source] = 1
        elif kind == 2 and source in self._open:
            if low != self._next_seq[source]:
                # Out of sequence: keep what arrived in order.
                del self._open[source]
                return
            self._next_seq[source] = (low + 1) & 0x0F
            self._slots[self._open[source]][1].extend(frame[1:])

    def byte_count(self, count: int) -> None:
        self._open[""] = self._add("", b"", True, count)

    def indexed(self, data: bytes) -> None:
        if "" in self._open:
            self._slots[self._open[""]][1].extend(data)

    def plain(self, data: bytes) -> None:
        expected = (self.service, NEGATIVE_RESPONSE)
        if len(data) >= 5 and data[1] in _NON_CAN_TARGETS and data[3] in expected:
            # 3 header bytes in front, checksum at the end.
            self._add(f"{data[2]:02X}", data[3:-1], False, len(data) - 4)
        else:
            self._add("", data, None, len(data))

    def messages(self) -> list[ResponseMessage]:
        return [
            ResponseMessage(source=source, data=bytes(data[:length]), can=can)
            for source, data, can, length in self._slots
            if length
        ]


def _clean_lines(response: str) -> Iterator[str]:
    for line in (response or "").upper().splitlines():
        for noise in _NOISE:
            line = line.replace(noise, "")
        compact = "".join(line.split())
        if compact:
            yield compact


def response_messages(response: str, service: int) -> list[ResponseMessage]:
    """Reassemble an adapter reply into per-ECU messages.

    Handles CAN with headers (11-bit `7E8` or 29-bit `18DAF1xx` ids followed
    by ISO-TP frames), CAN multi-frame without headers (byte count plus
    `N:` lines), non-CAN with headers (`48 6B 10 ... checksum`) and plain
    headerless lines. `service` is the expected positive response byte; it
    tells a non-CAN header apart from data. Lines that are not hex at all
    (`UNABLE TO CONNECT`, `CAN ERROR`, ...) are ignored.
    """

    asm = _Assembler(service)
    for line in _clean_lines(response):
        indexed = _FRAME_INDEX_RE.match(line)
        if indexed:
            body = indexed.group(2)
            if _HEX_RE.match(body) and len(body) % 2 == 0:
                asm.indexed(bytes.fromhex(body))
            continue
        if not _HEX_RE.match(line):
            continue
        if _BYTE_COUNT_RE.match(line):
            asm.byte_count(int(line, 16))
        elif len(line) % 2:
            asm.can_frame(line[:3], bytes.fromhex(line[3:]))
        elif line.startswith("18DA") and len(line) >= 10:
            asm.can_frame(line[:8], bytes.fromhex(line[8:]))
        else:
            asm.plain(bytes.fromhex(line))
    return asm.messages()


def require_messages(response: str, service: int) -> list[ResponseMessage]:
    messages = response_messages(response, service)
    if not messages:
        raise DecodeError(f"no hex payload in response: {response!r}", raw=response)
    return messages


def decode_stored_faults(response: str) -> list[Obd2Fault]:
    faults: list[Obd2Fault] = []
    seen: set[str] = set()
    for message in require_messages(response, SERVICE_STORED_DTCS):
        if not message.data or message.data[0] != SERVICE_STORED_DTCS:
            continue
        body = message.data[1:]
        has_count = message.can if message.can is not None else len(body) % 2 == 1
        if has_count and body:
            # CAN replies carry a DTC count byte before the pairs.
            count, body = body[0], body[1:]
            body = body[: 2 * count]
        for code, raw in _dtc_pairs(body):
            if code in seen:
                continue
            seen.add(code)
            faults.append(Obd2Fault(code=code, raw=raw, severity=_severity(code)))
    return faults


def decode_clear_ack(response: str) -> None:
    for message in require_messages(response, SERVICE_CLEAR_DTCS):
        if message.data[:1] == bytes([SERVICE_CLEAR_DTCS]):
            return None
    raise DecodeError(f"no 44 acknowledgement in clear response: {response!r}", raw=response)


def _severity(code: str) -> Severity:
    system = code[0]
    if system == "U":
        return "warning"
    if code.startswith("P0"):
        return "warning"
    return "info"

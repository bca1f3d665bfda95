from __future__ import annotations

import argparse
import asyncio
import logging
from dataclasses import dataclass, field

from elmdiag.logging import parse_log_level, setup_logging


log = logging.getLogger(__name__)

ELM_ID = "ELM327 v1.5"
PROMPT = ">"

_DTC_LETTERS = {"P": 0, "C": 1, "B": 2, "U": 3}

# ATSP digits the simulator can answer on; "0" (auto) resolves to `auto_protocol`.
PROTOCOL_NAMES = {
    "3": "ISO 9141-2",
    "6": "ISO 15765-4 (CAN 11/500)",
    "A": "SAE J1939 (CAN 29/250)",
}


def encode_obd2_dtc(code: str) -> tuple[int, int]:
    letter = _DTC_LETTERS[code[0].upper()]
    body = int(code[1:5], 16)
    return (letter << 6) | ((body >> 8) & 0x3F), body & 0xFF


def pack_j1939_dtc(spn: int, fmi: int, oc: int) -> bytes:
    """Pack one DM1/DM2 record (SPN conversion method 4)."""
    spn = int(spn) & 0x7FFFF
    return bytes(
        [
            spn & 0xFF,
            (spn >> 8) & 0xFF,
            ((spn >> 11) & 0xE0) | (int(fmi) & 0x1F),
            int(oc) & 0x7F,
        ]
    )


@dataclass
class CarState:
    stored_dtcs: list[str] = field(default_factory=lambda: ["P0106", "P0420"])
    pids: dict[int, bytes] = field(
        default_factory=lambda: {
            0x04: bytes([0x40]),
            0x05: bytes([0x82]),
            0x0A: bytes([0x1E]),
            0x0C: bytes([0x1F, 0x40]),
            0x0D: bytes([0x3C]),
            0x0F: bytes([0x41]),
            0x10: bytes([0x01, 0xF4]),
            0x11: bytes([0x33]),
            0x2F: bytes([0x80]),
        }
    )
    # Manufacturer DIDs (service 0x22) and PID 5B, only present on EV profiles.
    ev_pids: dict[int, bytes] = field(default_factory=dict)
    ev_dids: dict[int, bytes] = field(default_factory=dict)


@dataclass
class TruckState:
    active: list[tuple[int, int, int]] = field(default_factory=lambda: [(110, 0, 3), (3363, 18, 1)])
    previous: list[tuple[int, int, int]] = field(default_factory=lambda: [(100, 1, 2)])
    lamps: bytes = b"\x44\xFF"
    pgns: dict[str, bytes] = field(
        default_factory=lambda: {
            "F004": bytes([0xFF, 0xFF, 0xE0, 0x2E, 0xFF, 0xFF, 0xFF, 0xFF]),
            "F003": bytes([0xFF, 0xFF, 0x32, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF]),
            "FEEE": bytes([0x82, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF]),
            "FEF1": bytes([0x00, 0x58, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF]),
            "FEEF": bytes([0x64, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF]),
            "FEF6": bytes([0x5A, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF]),
            "FEF2": bytes([0x90, 0x01, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF]),
            "FE6C": bytes([0x20, 0x2C, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF]),
            "F005": bytes([0x87, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF]),
            "FEAE": bytes([0x6E, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF]),
            "FE56": bytes([0xC8, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF]),
            "FEE5": bytes([0x80, 0xC4, 0x03, 0x00, 0xFF, 0xFF, 0xFF, 0xFF]),
        }
    )


def ev_car() -> CarState:
    car = CarState(stored_dtcs=[])
    car.ev_pids = {0x5B: bytes([0xCC])}
    car.ev_dids = {
        0x0101: bytes([0x25, 0x1C]),
        0x0102: bytes([0x0E, 0x74]),
        0x0105: bytes([0x03, 0x52]),
        0x0106: bytes([0x41]),
    }
    return car


class ElmSimulator:
    """Deterministic ELM327-style adapter.

    Tracks echo/linefeed/space/header settings the way the chip does, and
    answers OBD-II requests from a `CarState` or J1939 PGN requests from a
    `TruckState` depending on the selected protocol.

    `overrides` maps a normalized command (no spaces, upper case) to a list of
    canned reply bodies consumed in order; a `None` entry means "stay silent".

    `auto_protocol` is what ATSP0 settles on: "6" answers as a CAN ECU (ISO-TP
    frames, `7E8` header) and "3" as an ISO 9141-2 ECU (`48 6B 10` header and
    checksum). Long J1939 replies go out as a BAM transfer when headers are on.
    """

    def __init__(
        self,
        *,
        car: CarState | None = None,
        truck: TruckState | None = None,
        overrides: dict[str, list[str | None]] | None = None,
        auto_protocol: str = "6",
    ) -> None:
        if auto_protocol not in ("3", "6"):
            raise ValueError(f"unsupported OBD-II protocol: {auto_protocol!r}")
        self.car = car or CarState()
        self.truck = truck or TruckState()
        self.auto_protocol = auto_protocol
        self.overrides: dict[str, list[str | None]] = {k.replace(" ", "").upper(): list(v) for k, v in (overrides or {}).items()}
        self.commands: list[str] = []
        self._reset()

    def _reset(self) -> None:
        self.echo = True
        self.linefeed = True
        self.spaces = True
        self.headers = False
        self.protocol = "0"
        self.header_bytes = "18EAF9"
        self._searched = False

    @property
    def j1939(self) -> bool:
        return self.protocol == "A"

    @property
    def can(self) -> bool:
        return (self.auto_protocol if self.protocol == "0" else self.protocol) != "3"

    def handle(self, line: str) -> str | None:
        """Return the full reply text for one command line, or None for silence."""
        raw = line.strip()
        cmd = raw.replace(" ", "").upper()
        self.commands.append(cmd)
        echo = (raw + "\r") if self.echo else ""

        queued = self.overrides.get(cmd)
        if queued:
            body = queued.pop(0)
            if body is None:
                return None
            return self._frame(echo, [body])

        if not cmd:
            return PROMPT
        if cmd.startswith("AT"):
            lines = self._at(cmd[2:])
        elif all(c in "0123456789ABCDEF" for c in cmd) and len(cmd) % 2 == 0:
            lines = self._j1939(cmd) if self.j1939 else self._obd(cmd)
        else:
            lines = ["?"]
        return self._frame(echo, lines)

    def _frame(self, echo: str, lines: list[str]) -> str:
        eol = "\r\n" if self.linefeed else "\r"
        return echo + eol.join(lines) + eol + eol + PROMPT

    def _hex(self, data: bytes) -> str:
        sep = " " if self.spaces else ""
        return sep.join(f"{b:02X}" for b in data)

    def _at(self, cmd: str) -> list[str]:
        if cmd in ("Z", "WS"):
            self._reset()
            return ["", ELM_ID]
        if cmd == "I":
            return [ELM_ID]
        if cmd == "DP":
            if self.protocol == "0":
                return ["AUTO, " + PROTOCOL_NAMES[self.auto_protocol]]
            return [PROTOCOL_NAMES.get(self.protocol, "?")]
        flags = {"E0": ("echo", False), "E1": ("echo", True), "L0": ("linefeed", False), "L1": ("linefeed", True)}
        flags.update({"S0": ("spaces", False), "S1": ("spaces", True), "H0": ("headers", False), "H1": ("headers", True)})
        if cmd in flags:
            attr, value = flags[cmd]
            setattr(self, attr, value)
            return ["OK"]
        if cmd.startswith("SP") and len(cmd) == 3:
            self.protocol = cmd[2]
            self._searched = False
            return ["OK"]
        if cmd.startswith("SH"):
            self.header_bytes = cmd[2:]
            return ["OK"]
        if cmd in ("CAF0", "CAF1") or cmd.startswith("ST") or cmd.startswith("AT"):
            return ["OK"]
        return ["?"]

    def _obd(self, cmd: str) -> list[str]:
        data = bytes.fromhex(cmd)
        lines: list[str] = []
        if self.protocol == "0" and not self._searched:
            self._searched = True
            lines.append("SEARCHING...")
        messages = self._obd_messages(data)
        if not messages:
            lines.append("NO DATA")
            return lines
        for payload in messages:
            lines.extend(self._can_lines(payload) if self.can else self._iso9141_lines(payload))
        return lines

    def _obd_messages(self, data: bytes) -> list[bytes]:
        service = data[0]
        if service == 0x01 and len(data) == 2:
            pid = data[1]
            value = self.car.pids.get(pid, self.car.ev_pids.get(pid))
            if value is None:
                return []
            return [bytes([0x41, pid]) + value]
        if service == 0x03 and len(data) == 1:
            pairs = [bytes(encode_obd2_dtc(code)) for code in self.car.stored_dtcs]
            if self.can:
                return [bytes([0x43, len(pairs)]) + b"".join(pairs)]
            # No count byte; three codes per message, zero padded.
            chunks = [pairs[i : i + 3] for i in range(0, len(pairs), 3)] or [[]]
            return [bytes([0x43]) + b"".join(chunk).ljust(6, b"\x00") for chunk in chunks]
        if service == 0x04 and len(data) == 1:
            self.car.stored_dtcs = []
            return [bytes([0x44])]
        if service == 0x22 and len(data) == 3:
            did = (data[1] << 8) | data[2]
            value = self.car.ev_dids.get(did)
            if value is None:
                return [bytes([0x7F, 0x22, 0x31])]
            return [bytes([0x62, data[1], data[2]]) + value]
        return []

    def _can_lines(self, payload: bytes) -> list[str]:
        sep = " " if self.spaces else ""
        if len(payload) <= 7:
            if not self.headers:
                return [self._hex(payload)]
            return ["7E8" + sep + self._hex(bytes([len(payload)]) + payload)]

        # ISO-TP first frame plus consecutive frames, 00 padded to 8 bytes.
        frames = [bytes([0x10 | (len(payload) >> 8), len(payload) & 0xFF]) + payload[:6]]
        for seq, i in enumerate(range(6, len(payload), 7), start=1):
            frames.append(bytes([0x20 | (seq & 0x0F)]) + payload[i : i + 7].ljust(7, b"\x00"))
        if self.headers:
            return ["7E8" + sep + self._hex(frame) for frame in frames]
        lines = [f"{len(payload):03X}", "0:" + sep + self._hex(frames[0][2:])]
        for seq, frame in enumerate(frames[1:], start=1):
            lines.append(f"{seq & 0x0F:X}:" + sep + self._hex(frame[1:]))
        return lines

    def _iso9141_lines(self, payload: bytes) -> list[str]:
        if not self.headers:
            return [self._hex(payload)]
        frame = bytes([0x48, 0x6B, 0x10]) + payload
        return [self._hex(frame + bytes([sum(frame) & 0xFF]))]

    def _j1939(self, cmd: str) -> list[str]:
        if cmd == "18FED3FF":
            # DM11: clear active, keep them as previously active.
            self.truck.previous.extend(self.truck.active)
            self.truck.active = []
            return [self._j1939_frame("18E8FF00", bytes([0x00, 0xFF, 0xFF, 0xFF, 0xF9, 0xD3, 0xFE, 0x00]))]
        if not (cmd.startswith("00") and len(cmd) == 6):
            return ["?"]
        pgn = cmd[2:]
        if pgn in ("FECA", "FECB"):
            faults = self.truck.active if pgn == "FECA" else self.truck.previous
            payload = self.truck.lamps + b"".join(pack_j1939_dtc(*f) for f in faults)
            if not faults:
                payload += b"\x00\x00\x00\x00"
            return self._j1939_lines(pgn, payload)
        data = self.truck.pgns.get(pgn)
        if data is None:
            return ["NO DATA"]
        return self._j1939_lines(pgn, data)

    def _j1939_lines(self, pgn: str, payload: bytes) -> list[str]:
        if len(payload) <= 8:
            return [self._j1939_frame("18" + pgn + "00", payload.ljust(8, b"\xFF"))]
        if not self.headers:
            return [self._hex(payload)]
        # BAM: TP.CM announces size, packet count and PGN; TP.DT carries 7 bytes each.
        value = int(pgn, 16)
        packets = (len(payload) + 6) // 7
        announce = bytes(
            [0x20, len(payload) & 0xFF, len(payload) >> 8, packets, 0xFF, value & 0xFF, (value >> 8) & 0xFF, value >> 16]
        )
        lines = [self._j1939_frame("1CECFF00", announce)]
        for seq in range(packets):
            chunk = payload[seq * 7 : seq * 7 + 7].ljust(7, b"\xFF")
            lines.append(self._j1939_frame("1CEBFF00", bytes([seq + 1]) + chunk))
        return lines

    def _j1939_frame(self, header: str, payload: bytes) -> str:
        body = self._hex(payload)
        if not self.headers:
            return body
        return self._hex(bytes.fromhex(header)) + (" " if self.spaces else "") + body


async def _serve_client(sim: ElmSimulator, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    peer = writer.get_extra_info("peername")
    log.info("Simulator client connected", extra={"peer": str(peer)})
    buf = ""
    try:
        while True:
            chunk = await reader.read(256)
            if not chunk:
                break
            buf += chunk.decode("ascii", errors="ignore")
            while "\r" in buf:
                line, buf = buf.split("\r", 1)
                reply = sim.handle(line)
                log.debug("Simulator command", extra={"cmd": line.strip(), "silent": reply is None})
                if reply is not None:
                    writer.write(reply.encode("ascii"))
                    await writer.drain()
    finally:
        writer.close()
        log.info("Simulator client disconnected", extra={"peer": str(peer)})


async def start_server(host: str, port: int, sim: ElmSimulator) -> asyncio.AbstractServer:
    return await asyncio.start_server(lambda r, w: _serve_client(sim, r, w), host, port)


async def serve(host: str, port: int, sim: ElmSimulator) -> None:
    server = await start_server(host, port, sim)
    log.info("Simulator listening", extra={"host": host, "port": port})
    async with server:
        await server.serve_forever()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="ELM327 adapter simulator (TCP, WiFi-adapter style)")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=35000)
    parser.add_argument("--ev", action="store_true", help="Answer EV battery PIDs")
    parser.add_argument("--iso9141", action="store_true", help="Answer as an ISO 9141-2 car instead of CAN")
    parser.add_argument("--log-level", choices=["error", "warning", "info", "debug", "trace"], default="info")
    args = parser.parse_args(argv)

    setup_logging(level=parse_log_level(args.log_level))
    sim = ElmSimulator(car=ev_car() if args.ev else None, auto_protocol="3" if args.iso9141 else "6")
    try:
        asyncio.run(serve(args.host, args.port, sim))
    except KeyboardInterrupt:
        return None


if __name__ == "__main__":
    main()

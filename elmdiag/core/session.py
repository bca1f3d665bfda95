from __future__ import annotations

import enum
import logging

from elmdiag.config import EngineConfig
from elmdiag.core import j1939, obd2
from elmdiag.core.channel import CommandChannel
from elmdiag.core.errors import (
    ChannelBusy,
    CommandTimeout,
    ConnectionFailed,
    DecodeError,
    NotReady,
    TransportError,
    UnsupportedOperation,
)
from elmdiag.core.models import EvBatteryRecord, FaultRecord, LiveDataSample, Protocol
from elmdiag.core.policy import query
from elmdiag.core.transport.base import Transport


log = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    INITIALIZING = "initializing"
    READY = "ready"


def _rejected(reply: str) -> bool:
    return any(line.strip() == "?" for line in reply.splitlines())


class AdapterSession:
    """One adapter, one protocol profile, one command channel.

    Drives the AT init sequence and dispatches the high-level operations to
    the OBD-II or J1939 codec. Retry/fallback rules come from `policy.query`.
    """

    def __init__(
        self,
        protocol: Protocol,
        transport: Transport,
        *,
        config: EngineConfig | None = None,
        name: str | None = None,
    ) -> None:
        self.protocol: Protocol = protocol
        self.config = config or EngineConfig()
        self.name = name or transport.name
        self.channel = CommandChannel(transport, quiet_period_ms=self.config.quiet_period_ms, name=self.name)
        self._state = SessionState.DISCONNECTED
        self.adapter_id: str | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def command_timeout_ms(self) -> int:
        return self.config.command_timeout_ms(self.protocol)

    def init_sequence(self) -> list[tuple[str, int]]:
        init_ms = self.config.init_timeout_ms
        steps = [("ATZ", self.config.reset_timeout_ms)]
        steps += [(cmd, init_ms) for cmd in ("ATE0", "ATL0", "ATS0", "ATH1")]
        if self.protocol == "j1939":
            # SAE J1939 (CAN 29-bit, 250 kbps), auto-formatting, requests from tool address F9.
            steps += [("ATSPA", init_ms), ("ATCAF1", init_ms), ("ATSH18EAF9", init_ms)]
        else:
            steps.append(("ATSP0", init_ms))
        return steps

    async def connect(self) -> None:
        if self._state is SessionState.READY:
            return None
        if self._state is not SessionState.DISCONNECTED:
            raise ConnectionFailed(f"{self.name}: connect already in progress ({self._state.value})")

        log.info("Connecting adapter", extra={"transport": self.channel.transport.name, "profile": self.protocol})
        self._state = SessionState.CONNECTING
        try:
            await self.channel.open()
            self._state = SessionState.INITIALIZING
            for command, timeout_ms in self.init_sequence():
                reply = await self.channel.execute(command, timeout_ms)
                if _rejected(reply):
                    raise ConnectionFailed(f"{self.name}: adapter rejected {command}")
                if command == "ATZ":
                    self.adapter_id = _banner(reply)
        except ConnectionFailed:
            await self._abort()
            raise
        except (TransportError, CommandTimeout, ChannelBusy) as exc:
            await self._abort()
            raise ConnectionFailed(f"{self.name}: adapter init failed: {exc}") from exc

        self._state = SessionState.READY
        log.info("Adapter ready", extra={"profile": self.protocol, "adapter": self.adapter_id})

    async def disconnect(self) -> None:
        if self._state is SessionState.DISCONNECTED and not self.channel.is_open:
            return None
        await self._abort()
        log.info("Adapter disconnected", extra={"profile": self.protocol})

    async def read_faults(self) -> list[FaultRecord]:
        self._require_ready()
        if self.protocol == "obd2":
            reply = await self._query(obd2.build_read_stored_faults())
            return list(obd2.decode_stored_faults(reply)) if reply is not None else []
        reply = await self._query(j1939.build_request(j1939.DM1_PGN))
        return list(j1939.decode_dm_response(reply, j1939.DM1_PGN)) if reply is not None else []

    async def read_previous_faults(self) -> list[FaultRecord]:
        self._require_ready()
        if self.protocol != "j1939":
            raise UnsupportedOperation("previously active faults (DM2) exist only on J1939")
        reply = await self._query(j1939.build_request(j1939.DM2_PGN))
        return list(j1939.decode_dm_response(reply, j1939.DM2_PGN)) if reply is not None else []

    async def clear_faults(self) -> None:
        self._require_ready()
        if self.protocol == "obd2":
            reply = await self._query(obd2.build_clear_faults())
            if reply is None:
                raise DecodeError("clear not acknowledged (no data)", raw="")
            obd2.decode_clear_ack(reply)
        else:
            reply = await self._query(j1939.build_clear_faults())
            # Nodes are not required to answer a DM11 broadcast.
            if reply is not None:
                j1939.decode_clear_response(reply)
        log.info("Fault codes cleared", extra={"profile": self.protocol})

    async def read_live_data(self) -> LiveDataSample:
        self._require_ready()
        values: dict[str, float] = {}
        units: dict[str, str] = {}
        if self.protocol == "obd2":
            for spec in obd2.LIVE_PIDS:
                reply = await self._poll(obd2.build_read_pid(spec.pid))
                value = obd2.decode_pid_response(spec, reply) if reply is not None else None
                if value is not None:
                    values[spec.field] = value
                    units[spec.field] = spec.unit
        else:
            for live in j1939.LIVE_FIELDS:
                reply = await self._poll(j1939.build_request(live.pgn))
                value = j1939.decode_live_field(live, reply) if reply is not None else None
                if value is not None:
                    values[live.field] = value
                    units[live.field] = live.descriptor.unit
        return LiveDataSample(protocol=self.protocol, values=values, units=units)

    async def read_ev_battery(self) -> EvBatteryRecord | None:
        self._require_ready()
        if self.protocol != "obd2":
            raise UnsupportedOperation("EV battery parameters are read over OBD-II")
        fields: dict[str, float] = {}
        for param in obd2.EV_PARAMS:
            reply = await self._poll(param.command)
            value = param.decode(reply) if reply is not None else None
            if value is not None:
                fields[param.field] = value
        record = EvBatteryRecord(**fields)
        return None if record.is_empty() else record

    async def adapter_info(self) -> dict[str, object]:
        """ATI / ATDP identification, best effort."""
        self._require_ready()
        info: dict[str, object] = {"profile": self.protocol, "adapter": self.adapter_id, "protocol_name": None}
        for key, command in (("adapter", "ATI"), ("protocol_name", "ATDP")):
            try:
                reply = await self.channel.execute(command, self.config.init_timeout_ms)
            except CommandTimeout:
                continue
            except TransportError:
                await self._abort()
                raise
            if reply and not _rejected(reply):
                info[key] = reply.splitlines()[-1].strip()
        return info

    def _require_ready(self) -> None:
        if self._state is not SessionState.READY:
            raise NotReady(f"{self.name}: session is {self._state.value}")

    async def _query(self, command: str) -> str | None:
        try:
            return await query(self.channel, command, self.command_timeout_ms, retries=self.config.retries)
        except TransportError:
            await self._abort()
            raise

    async def _poll(self, command: str) -> str | None:
        # Live-data reads: one silent PID/PGN only loses that field.
        try:
            return await self._query(command)
        except CommandTimeout as exc:
            log.warning("Live data request timed out", extra={"cmd": command, "timeout_ms": exc.timeout_ms})
            return None

    async def _abort(self) -> None:
        self._state = SessionState.DISCONNECTED
        try:
            await self.channel.close()
        except (TransportError, OSError) as exc:
            log.debug("Transport close failed", extra={"error": str(exc)})


def _banner(reply: str) -> str | None:
    for line in reversed(reply.splitlines()):
        line = line.strip()
        if line and line.upper() != "ATZ":
            return line
    return None

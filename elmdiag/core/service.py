from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass

from elmdiag.config import EngineConfig
from elmdiag.core.errors import UnknownSession
from elmdiag.core.models import EvBatteryRecord, FaultRecord, LiveDataSample, Protocol, parse_protocol
from elmdiag.core.session import AdapterSession
from elmdiag.core.transport.base import Transport
from elmdiag.logging import session_context


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionHandle:
    id: str
    profile: Protocol
    transport: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "profile": self.profile, "transport": self.transport}


class DiagnosticEngine:
    """High-level diagnostic API used by all frontends (CLI, live watcher).

    Each `connect()` creates an independent session (own transport, channel
    and buffer) addressed through the returned handle.
    """

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()
        self._sessions: dict[str, AdapterSession] = {}
        self._ids = itertools.count(1)

    @property
    def handles(self) -> list[str]:
        return list(self._sessions)

    async def connect(self, profile: str, transport: Transport) -> SessionHandle:
        protocol = parse_protocol(profile)
        handle = SessionHandle(id=f"s{next(self._ids)}", profile=protocol, transport=transport.name)
        session = AdapterSession(protocol, transport, config=self.config, name=handle.id)
        with session_context(handle.id):
            await session.connect()
        self._sessions[handle.id] = session
        return handle

    def session(self, handle: SessionHandle | str) -> AdapterSession:
        key = handle.id if isinstance(handle, SessionHandle) else str(handle)
        session = self._sessions.get(key)
        if session is None:
            raise UnknownSession(f"unknown session: {key}")
        return session

    async def read_fault_codes(self, handle: SessionHandle) -> list[FaultRecord]:
        session = self.session(handle)
        with session_context(session.name):
            log.info("Read fault codes", extra={"profile": session.protocol})
            faults = await session.read_faults()
            log.info("Read fault codes complete", extra={"fault_count": len(faults)})
        return faults

    async def read_previous_fault_codes(self, handle: SessionHandle) -> list[FaultRecord]:
        session = self.session(handle)
        with session_context(session.name):
            log.info("Read previously active fault codes", extra={"profile": session.protocol})
            faults = await session.read_previous_faults()
            log.info("Read previously active fault codes complete", extra={"fault_count": len(faults)})
        return faults

    async def clear_fault_codes(self, handle: SessionHandle) -> None:
        session = self.session(handle)
        with session_context(session.name):
            log.info("Clear fault codes", extra={"profile": session.protocol})
            await session.clear_faults()

    async def read_live_data(self, handle: SessionHandle) -> LiveDataSample:
        session = self.session(handle)
        with session_context(session.name):
            sample = await session.read_live_data()
            log.debug("Live data", extra={"field_count": len(sample.values)})
        return sample

    async def read_ev_battery(self, handle: SessionHandle) -> EvBatteryRecord | None:
        session = self.session(handle)
        with session_context(session.name):
            record = await session.read_ev_battery()
            log.info("EV battery read", extra={"supported": record is not None})
        return record

    async def adapter_info(self, handle: SessionHandle) -> dict[str, object]:
        session = self.session(handle)
        with session_context(session.name):
            return await session.adapter_info()

    async def disconnect(self, handle: SessionHandle | str) -> None:
        key = handle.id if isinstance(handle, SessionHandle) else str(handle)
        session = self._sessions.pop(key, None)
        if session is None:
            return None
        with session_context(key):
            await session.disconnect()

    async def close(self) -> None:
        for key in list(self._sessions):
            await self.disconnect(key)

from __future__ import annotations

import asyncio

from elmdiag.core.errors import TransportError
from elmdiag.core.transport.base import DataCallback, LostCallback, Transport
from elmdiag.emulator.elm_sim import ElmSimulator


class MockTransport(Transport):
    """In-memory transport backed by the ELM327 simulator.

    Replies are delivered asynchronously in small chunks, the way a BLE
    notify characteristic splits them, after `latency_ms`.
    """

    def __init__(
        self,
        simulator: ElmSimulator | None = None,
        *,
        latency_ms: int = 5,
        chunk_size: int = 20,
    ) -> None:
        self.simulator = simulator or ElmSimulator()
        self.latency_ms = int(latency_ms)
        self.chunk_size = max(1, int(chunk_size))
        self.writes: list[bytes] = []
        self._on_data: DataCallback | None = None
        self._on_lost: LostCallback | None = None
        self._rx_line = ""
        self._handles: list[asyncio.TimerHandle] = []
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self, on_data: DataCallback, on_lost: LostCallback | None = None) -> None:
        self._on_data = on_data
        self._on_lost = on_lost
        self._open = True

    async def write(self, data: bytes) -> None:
        if not self._open:
            raise TransportError("mock transport is closed")
        self.writes.append(bytes(data))
        self._rx_line += data.decode("ascii", errors="ignore")
        while "\r" in self._rx_line:
            line, self._rx_line = self._rx_line.split("\r", 1)
            reply = self.simulator.handle(line)
            if reply is not None:
                self._schedule(reply.encode("ascii"))

    def inject(self, data: bytes, *, delay_ms: int = 0) -> None:
        """Deliver unsolicited bytes, e.g. a late reply."""
        loop = asyncio.get_running_loop()
        self._handles.append(loop.call_later(delay_ms / 1000.0, self._deliver, bytes(data)))

    def drop(self, exc: BaseException | None = None) -> None:
        """Simulate the link going away."""
        self._cancel_pending()
        self._open = False
        if self._on_lost is not None:
            self._on_lost(exc)

    async def close(self) -> None:
        self._cancel_pending()
        self._open = False

    def _schedule(self, payload: bytes) -> None:
        loop = asyncio.get_running_loop()
        self._handles.append(loop.call_later(self.latency_ms / 1000.0, self._deliver, payload))

    def _deliver(self, payload: bytes) -> None:
        for offset in range(0, len(payload), self.chunk_size):
            if not self._open or self._on_data is None:
                return
            self._on_data(payload[offset : offset + self.chunk_size])

    def _cancel_pending(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()

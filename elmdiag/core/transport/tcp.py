from __future__ import annotations

import asyncio
import logging

from elmdiag.core.errors import TransportError
from elmdiag.core.transport.base import DataCallback, LostCallback, Transport


log = logging.getLogger(__name__)


class TcpTransport(Transport):
    """WiFi adapters expose the ELM327 command interface as a raw TCP socket."""

    def __init__(self, host: str = "192.168.0.10", port: int = 35000, *, connect_timeout_s: float = 5.0) -> None:
        self.host = host
        self.port = int(port)
        self._connect_timeout_s = float(connect_timeout_s)
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._task: asyncio.Task[None] | None = None
        self._closing = False

    @property
    def name(self) -> str:
        return f"tcp://{self.host}:{self.port}"

    async def open(self, on_data: DataCallback, on_lost: LostCallback | None = None) -> None:
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self._connect_timeout_s
            )
        except (OSError, asyncio.TimeoutError) as exc:
            raise TransportError(f"cannot connect to {self.host}:{self.port}: {exc}") from exc
        self._closing = False
        log.debug("TCP connected", extra={"host": self.host, "port": self.port})
        self._task = asyncio.create_task(self._read_loop(on_data, on_lost))

    async def write(self, data: bytes) -> None:
        if self._writer is None or self._writer.is_closing():
            raise TransportError("tcp transport is closed")
        if log.isEnabledFor(5):
            log.trace("TCP TX", extra={"host": self.host, "data": data})  # type: ignore[attr-defined]
        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as exc:
            raise TransportError(str(exc)) from exc

    async def close(self) -> None:
        self._closing = True
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self._writer is not None:
            writer, self._writer = self._writer, None
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    async def _read_loop(self, on_data: DataCallback, on_lost: LostCallback | None) -> None:
        assert self._reader is not None
        error: BaseException | None = None
        try:
            while True:
                chunk = await self._reader.read(1024)
                if not chunk:
                    break
                if log.isEnabledFor(5):
                    log.trace("TCP RX", extra={"host": self.host, "data": chunk})  # type: ignore[attr-defined]
                on_data(chunk)
        except OSError as exc:
            error = exc
        if not self._closing:
            log.warning("TCP link lost", extra={"host": self.host, "port": self.port, "error": str(error or "eof")})
            if on_lost is not None:
                on_lost(error)

from __future__ import annotations

import asyncio
import logging
import threading

import serial

from elmdiag.core.errors import TransportError
from elmdiag.core.transport.base import DataCallback, LostCallback, Transport


log = logging.getLogger(__name__)


class SerialTransport(Transport):
    """Serial port transport (Bluetooth SPP via /dev/rfcommX, USB adapters).

    `device` is a port path or any pyserial URL (`loop://`, `socket://host:port`).

    pyserial is blocking, so a reader thread hands chunks back to the event
    loop with `call_soon_threadsafe`.
    """

    def __init__(self, device: str = "/dev/rfcomm0", baudrate: int = 38400) -> None:
        self.device = device
        self.baudrate = int(baudrate)
        self._serial: serial.Serial | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    @property
    def name(self) -> str:
        return f"serial://{self.device}"

    async def open(self, on_data: DataCallback, on_lost: LostCallback | None = None) -> None:
        self._loop = asyncio.get_running_loop()
        try:
            self._serial = await self._loop.run_in_executor(
                None, lambda: serial.serial_for_url(self.device, baudrate=self.baudrate, timeout=0.05)
            )
        except (serial.SerialException, OSError) as exc:
            raise TransportError(f"cannot open {self.device}: {exc}") from exc
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._reader,
            args=(on_data, on_lost),
            name=f"elmdiag-serial-{self.device}",
            daemon=True,
        )
        self._thread.start()
        log.debug("Serial port open", extra={"device": self.device, "baudrate": self.baudrate})

    async def write(self, data: bytes) -> None:
        if self._serial is None or self._loop is None:
            raise TransportError("serial transport is closed")
        if log.isEnabledFor(5):
            log.trace("Serial TX", extra={"device": self.device, "data": data})  # type: ignore[attr-defined]
        try:
            await self._loop.run_in_executor(None, self._serial.write, data)
        except (serial.SerialException, OSError) as exc:
            raise TransportError(str(exc)) from exc

    async def close(self) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and self._loop is not None:
            await self._loop.run_in_executor(None, thread.join, 1.0)
        if self._serial is not None:
            port, self._serial = self._serial, None
            port.close()

    def _reader(self, on_data: DataCallback, on_lost: LostCallback | None) -> None:
        assert self._serial is not None and self._loop is not None
        port, loop = self._serial, self._loop
        while not self._stop.is_set():
            try:
                chunk = port.read(port.in_waiting or 1)
            except (serial.SerialException, OSError) as exc:
                if not self._stop.is_set():
                    log.warning("Serial link lost", extra={"device": self.device, "error": str(exc)})
                    if on_lost is not None:
                        loop.call_soon_threadsafe(on_lost, exc)
                return
            if chunk:
                if log.isEnabledFor(5):
                    log.trace("Serial RX", extra={"device": self.device, "data": chunk})  # type: ignore[attr-defined]
                loop.call_soon_threadsafe(on_data, bytes(chunk))

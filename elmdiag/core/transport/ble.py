from __future__ import annotations

import asyncio
import logging

from bleak import BleakClient
from bleak.exc import BleakError

from elmdiag.core.errors import TransportError
from elmdiag.core.transport.base import DataCallback, LostCallback, Transport


log = logging.getLogger(__name__)

# (write characteristic, notify characteristic) pairs seen on common adapters.
CHARACTERISTIC_PAIRS: list[tuple[str, str]] = [
    # OBDLink MX+ and most clones
    ("0000fff1-0000-1000-8000-00805f9b34fb", "0000fff1-0000-1000-8000-00805f9b34fb"),
    # HM-10 style modules (Veepeak, Vgate)
    ("0000ffe1-0000-1000-8000-00805f9b34fb", "0000ffe1-0000-1000-8000-00805f9b34fb"),
    # Nordic UART service
    ("6e400002-b5a3-f393-e0a9-e50e24dcca9e", "6e400003-b5a3-f393-e0a9-e50e24dcca9e"),
]


class BleTransport(Transport):
    """Bluetooth LE transport: writes go to a GATT characteristic, replies
    arrive as notifications."""

    def __init__(self, address: str, *, connect_timeout_s: float = 10.0) -> None:
        self.address = address
        self._connect_timeout_s = float(connect_timeout_s)
        self._client: BleakClient | None = None
        self._write_char: str | None = None
        self._notify_char: str | None = None
        self._on_data: DataCallback | None = None
        self._on_lost: LostCallback | None = None
        self._closing = False

    @property
    def name(self) -> str:
        return f"ble://{self.address}"

    async def open(self, on_data: DataCallback, on_lost: LostCallback | None = None) -> None:
        self._on_data = on_data
        self._on_lost = on_lost
        self._closing = False
        client = BleakClient(self.address, disconnected_callback=self._handle_disconnect, timeout=self._connect_timeout_s)
        try:
            await client.connect()
            self._write_char, self._notify_char = self._resolve_characteristics(client)
            await client.start_notify(self._notify_char, self._handle_notify)
        except (BleakError, TransportError, asyncio.TimeoutError, OSError) as exc:
            self._closing = True
            try:
                await client.disconnect()
            except (BleakError, OSError):
                pass
            raise TransportError(f"cannot connect to {self.address}: {exc}") from exc
        self._client = client
        log.debug(
            "BLE connected",
            extra={"address": self.address, "write_char": self._write_char, "notify_char": self._notify_char},
        )

    async def write(self, data: bytes) -> None:
        if self._client is None or self._write_char is None:
            raise TransportError("ble transport is closed")
        if log.isEnabledFor(5):
            log.trace("BLE TX", extra={"address": self.address, "data": data})  # type: ignore[attr-defined]
        try:
            await self._client.write_gatt_char(self._write_char, data, response=False)
        except (BleakError, OSError) as exc:
            raise TransportError(str(exc)) from exc

    async def close(self) -> None:
        self._closing = True
        client, self._client = self._client, None
        if client is None:
            return None
        try:
            if self._notify_char is not None:
                await client.stop_notify(self._notify_char)
        except (BleakError, OSError):
            pass
        finally:
            try:
                await client.disconnect()
            except (BleakError, OSError) as exc:
                log.debug("BLE disconnect failed", extra={"address": self.address, "error": str(exc)})

    def _resolve_characteristics(self, client: BleakClient) -> tuple[str, str]:
        for write_uuid, notify_uuid in CHARACTERISTIC_PAIRS:
            if client.services.get_characteristic(write_uuid) and client.services.get_characteristic(notify_uuid):
                return write_uuid, notify_uuid
        raise TransportError(f"{self.address}: no known OBD characteristic found")

    def _handle_notify(self, _sender: object, data: bytearray) -> None:
        if log.isEnabledFor(5):
            log.trace("BLE RX", extra={"address": self.address, "data": bytes(data)})  # type: ignore[attr-defined]
        if self._on_data is not None:
            self._on_data(bytes(data))

    def _handle_disconnect(self, _client: BleakClient) -> None:
        if self._closing:
            return None
        log.warning("BLE link lost", extra={"address": self.address})
        self._client = None
        if self._on_lost is not None:
            self._on_lost(None)

"""
Tests for the serial and BLE transports without adapter hardware.

Serial runs against pyserial's `loop://` port; BLE runs against a stand-in
BleakClient that answers writes with notifications.
"""

import asyncio

import pytest

from elmdiag.core.errors import TransportError
from elmdiag.core.transport import ble as ble_module
from elmdiag.core.transport.ble import CHARACTERISTIC_PAIRS, BleTransport
from elmdiag.core.transport.serial import SerialTransport


async def _wait_for(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestSerialTransport:
    async def test_loopback_round_trip(self):
        received = []
        transport = SerialTransport("loop://")
        await transport.open(received.append)
        try:
            await transport.write(b"ATI\r")
            await _wait_for(lambda: b"".join(received) == b"ATI\r")
        finally:
            await transport.close()

    async def test_write_after_close(self):
        transport = SerialTransport("loop://")
        await transport.open(lambda chunk: None)
        await transport.close()
        with pytest.raises(TransportError):
            await transport.write(b"ATZ\r")

    async def test_bad_device(self):
        transport = SerialTransport("/dev/elmdiag-no-such-port")
        with pytest.raises(TransportError):
            await transport.open(lambda chunk: None)


class _Services:
    def __init__(self, uuids):
        self._uuids = set(uuids)

    def get_characteristic(self, uuid):
        return uuid if uuid in self._uuids else None


class _FakeClient:
    """Echoes every write back as a notification followed by a prompt."""

    instances = []
    uuids = [CHARACTERISTIC_PAIRS[2][0], CHARACTERISTIC_PAIRS[2][1]]

    def __init__(self, address, disconnected_callback=None, timeout=10.0):
        self.address = address
        self.disconnected_callback = disconnected_callback
        self.services = _Services(self.uuids)
        self.writes = []
        self.connected = False
        self._notify = None
        _FakeClient.instances.append(self)

    async def connect(self):
        self.connected = True

    async def start_notify(self, uuid, callback):
        self._notify = callback

    async def stop_notify(self, uuid):
        self._notify = None

    async def write_gatt_char(self, uuid, data, response=False):
        self.writes.append((uuid, bytes(data), response))
        self._notify(uuid, bytearray(data + b">"))

    async def disconnect(self):
        self.connected = False

    def lose_link(self):
        self.connected = False
        self.disconnected_callback(self)


@pytest.fixture
def fake_bleak(monkeypatch):
    _FakeClient.instances = []
    monkeypatch.setattr(ble_module, "BleakClient", _FakeClient)
    return _FakeClient


class TestBleTransport:
    async def test_write_and_notify(self, fake_bleak):
        received = []
        transport = BleTransport("AA:BB:CC:DD:EE:FF")
        await transport.open(received.append)
        await transport.write(b"ATZ\r")

        client = fake_bleak.instances[0]
        assert client.writes == [("6e400002-b5a3-f393-e0a9-e50e24dcca9e", b"ATZ\r", False)]
        assert received == [b"ATZ\r>"]
        assert transport.name == "ble://AA:BB:CC:DD:EE:FF"

        await transport.close()
        assert not client.connected

    async def test_link_loss_reported_once(self, fake_bleak):
        lost = []
        transport = BleTransport("AA:BB:CC:DD:EE:FF")
        await transport.open(lambda chunk: None, lost.append)
        fake_bleak.instances[0].lose_link()
        assert lost == [None]
        with pytest.raises(TransportError):
            await transport.write(b"ATI\r")

    async def test_close_does_not_report_loss(self, fake_bleak):
        lost = []
        transport = BleTransport("AA:BB:CC:DD:EE:FF")
        await transport.open(lambda chunk: None, lost.append)
        client = fake_bleak.instances[0]
        await transport.close()
        client.disconnected_callback(client)
        assert lost == []

    async def test_unknown_adapter_characteristics(self, fake_bleak, monkeypatch):
        monkeypatch.setattr(fake_bleak, "uuids", ["0000abcd-0000-1000-8000-00805f9b34fb"])
        transport = BleTransport("AA:BB:CC:DD:EE:FF")
        with pytest.raises(TransportError):
            await transport.open(lambda chunk: None)
        assert not fake_bleak.instances[0].connected

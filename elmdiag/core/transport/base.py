from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional


DataCallback = Callable[[bytes], None]
LostCallback = Callable[[Optional[BaseException]], None]


class Transport(ABC):
    """Minimal async byte-stream interface to a diagnostic adapter.

    The core uses this to stay agnostic of how the adapter is reached.
    Concrete transports can be:
    - BLE GATT characteristic (write + notify)
    - TCP socket (WiFi adapters)
    - serial port (Bluetooth SPP, USB)
    - mock (in-memory simulator)
    - recorder wrapper

    `open()` returns once the link is established. Inbound chunks are
    delivered to `on_data` on the event loop thread; `on_lost` is called once
    if the link drops without `close()` having been requested.
    """

    @abstractmethod
    async def open(self, on_data: DataCallback, on_lost: LostCallback | None = None) -> None:
        raise NotImplementedError

    @abstractmethod
    async def write(self, data: bytes) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None

    @property
    def name(self) -> str:
        return type(self).__name__

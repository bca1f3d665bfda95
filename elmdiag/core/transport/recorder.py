from __future__ import annotations

import json

from elmdiag.core.transport.base import DataCallback, LostCallback, Transport


class RecordingTransport(Transport):
    def __init__(self, inner: Transport, path: str) -> None:
        self._inner = inner
        self._path = path
        self._tick = 0
        self._file = open(path, "w", encoding="utf-8")

    @property
    def name(self) -> str:
        return self._inner.name

    async def open(self, on_data: DataCallback, on_lost: LostCallback | None = None) -> None:
        def _rx(chunk: bytes) -> None:
            self._write_event("rx", chunk)
            on_data(chunk)

        await self._inner.open(_rx, on_lost)

    async def write(self, data: bytes) -> None:
        await self._inner.write(data)
        self._write_event("tx", data)

    async def close(self) -> None:
        try:
            await self._inner.close()
        finally:
            if not self._file.closed:
                self._file.close()

    def _write_event(self, direction: str, data: bytes) -> None:
        if self._file.closed:
            return None
        # One JSONL event per chunk, in arrival order, for offline analysis of adapter traffic.
        event = {
            "t": self._tick,
            "dir": direction,
            "data": data.hex(),
            "text": data.decode("ascii", errors="replace"),
        }
        self._tick += 1
        self._file.write(json.dumps(event, separators=(",", ":")) + "\n")
        self._file.flush()

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Iterable, Literal

from elmdiag.core.errors import ChannelBusy
from elmdiag.core.live.events import LiveSampleEvent
from elmdiag.core.service import DiagnosticEngine, SessionHandle


log = logging.getLogger(__name__)

EmitMode = Literal["changed", "always"]


class LiveWatcher:
    """Polls live data on one session and turns samples into per-field events.

    A tick that finds the channel busy (another caller holds it) is skipped
    rather than queued.
    """

    def __init__(
        self,
        engine: DiagnosticEngine,
        handle: SessionHandle,
        *,
        fields: Iterable[str] | None = None,
        emit_mode: EmitMode = "changed",
        tick_ms: int = 1000,
    ) -> None:
        self._engine = engine
        self._handle = handle
        self._fields = set(fields) if fields else None
        self._emit_mode: EmitMode = emit_mode
        self._tick_ms = int(tick_ms)
        self._last: dict[str, float] = {}

    async def tick(self, tick: int) -> list[LiveSampleEvent]:
        try:
            sample = await self._engine.read_live_data(self._handle)
        except ChannelBusy:
            log.debug("Channel busy, skipping tick", extra={"tick": tick})
            return []
        events: list[LiveSampleEvent] = []
        for name in sorted(sample.values):
            if self._fields is not None and name not in self._fields:
                continue
            value = sample.values[name]
            prev = self._last.get(name)
            emit = self._emit_mode == "always" or prev is None or prev != value
            self._last[name] = value
            if emit:
                events.append(
                    LiveSampleEvent(
                        tick=int(tick),
                        session=self._handle.id,
                        protocol=sample.protocol,
                        field=name,
                        value=value,
                        unit=sample.units.get(name, ""),
                    )
                )
        return events

    async def run_ticks(self, *, max_ticks: int | None = None, sleep: bool = True) -> AsyncIterator[LiveSampleEvent]:
        tick = 0
        while max_ticks is None or tick < int(max_ticks):
            tick += 1
            for evt in await self.tick(tick):
                yield evt
            if sleep and self._tick_ms > 0:
                await asyncio.sleep(self._tick_ms / 1000.0)

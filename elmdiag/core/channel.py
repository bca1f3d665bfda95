from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass

from elmdiag.core.errors import ChannelBusy, CommandTimeout, TransportError
from elmdiag.core.transport.base import Transport


log = logging.getLogger(__name__)

PROMPT = b">"


@dataclass
class PendingCommand:
    text: str
    issued_at: float
    timeout_ms: int
    seq: int
    future: asyncio.Future[str]


def _clean(raw: bytes) -> str:
    text = raw.decode("ascii", errors="replace").replace("\r\n", "\n").replace("\r", "\n")
    return text.strip()


class CommandChannel:
    """One-command-at-a-time request/response pipe over a Transport.

    A command completes when the adapter prompt `>` arrives, or when the line
    has gone quiet for `quiet_period_ms` after at least one byte. Completion
    callbacks carry the sequence number of the command they were armed for, so
    a late reply can never resolve a newer command.
    """

    def __init__(self, transport: Transport, *, quiet_period_ms: int = 150, name: str | None = None) -> None:
        self.transport = transport
        self.quiet_period_ms = int(quiet_period_ms)
        self.name = name or transport.name
        self._seq = itertools.count(1)
        self._pending: PendingCommand | None = None
        self._buffer = bytearray()
        self._quiet: asyncio.TimerHandle | None = None
        self._open = False
        # Bumped by close(); an open() that spans a close() must not succeed.
        self._generation = 0

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def busy(self) -> bool:
        return self._pending is not None

    @property
    def buffered(self) -> bytes:
        return bytes(self._buffer)

    async def open(self) -> None:
        generation = self._generation
        await self.transport.open(self._on_data, self._on_lost)
        if self._generation != generation:
            # close() ran while the link was coming up.
            await self.transport.close()
            raise TransportError(f"channel {self.name} closed while opening")
        self._open = True
        log.debug("Channel open", extra={"channel": self.name})

    async def execute(self, command: str, timeout_ms: int) -> str:
        if self._pending is not None:
            raise ChannelBusy(f"{command!r} rejected: {self._pending.text!r} still in flight")
        if not self._open:
            raise TransportError(f"channel {self.name} is closed")

        loop = asyncio.get_running_loop()
        pending = PendingCommand(
            text=command,
            issued_at=time.monotonic(),
            timeout_ms=int(timeout_ms),
            seq=next(self._seq),
            future=loop.create_future(),
        )
        self._pending = pending
        self._reset_buffer()
        log.trace("TX", extra={"channel": self.name, "seq": pending.seq, "cmd": command})  # type: ignore[attr-defined]

        try:
            await self.transport.write((command + "\r").encode("ascii"))
            try:
                return await asyncio.wait_for(pending.future, timeout=pending.timeout_ms / 1000.0)
            except asyncio.TimeoutError:
                log.debug(
                    "Command timed out",
                    extra={"channel": self.name, "cmd": command, "timeout_ms": pending.timeout_ms, "partial": self.buffered},
                )
                raise CommandTimeout(command, pending.timeout_ms) from None
        finally:
            if self._pending is pending:
                self._pending = None
                self._reset_buffer()
            if not pending.future.done():
                pending.future.cancel()

    async def close(self) -> None:
        was_open = self._open
        self._generation += 1
        self._open = False
        self._fail_pending(TransportError(f"channel {self.name} closed"))
        await self.transport.close()
        if was_open:
            log.debug("Channel closed", extra={"channel": self.name})

    def _on_data(self, chunk: bytes) -> None:
        pending = self._pending
        if pending is None:
            log.trace("Dropping unsolicited bytes", extra={"channel": self.name, "data": chunk})  # type: ignore[attr-defined]
            return None
        self._buffer.extend(chunk)
        log.trace("RX", extra={"channel": self.name, "seq": pending.seq, "data": chunk})  # type: ignore[attr-defined]

        idx = self._buffer.find(PROMPT)
        if idx >= 0:
            self._complete(pending.seq, _clean(bytes(self._buffer[:idx])))
            return None

        if self._quiet is not None:
            self._quiet.cancel()
        loop = asyncio.get_running_loop()
        self._quiet = loop.call_later(self.quiet_period_ms / 1000.0, self._on_quiet, pending.seq)

    def _on_quiet(self, seq: int) -> None:
        self._complete(seq, _clean(bytes(self._buffer)))

    def _complete(self, seq: int, text: str) -> None:
        pending = self._pending
        if pending is None or pending.seq != seq or pending.future.done():
            return None
        elapsed_ms = int((time.monotonic() - pending.issued_at) * 1000)
        log.trace("Response", extra={"channel": self.name, "seq": seq, "elapsed_ms": elapsed_ms, "text": text})  # type: ignore[attr-defined]
        pending.future.set_result(text)

    def _on_lost(self, exc: BaseException | None) -> None:
        self._open = False
        log.warning("Transport lost", extra={"channel": self.name, "error": str(exc) if exc else "closed by peer"})
        self._fail_pending(TransportError(f"channel {self.name}: link lost" + (f" ({exc})" if exc else "")))

    def _fail_pending(self, exc: TransportError) -> None:
        pending = self._pending
        if pending is not None and not pending.future.done():
            pending.future.set_exception(exc)
        self._reset_buffer()

    def _reset_buffer(self) -> None:
        if self._quiet is not None:
            self._quiet.cancel()
            self._quiet = None
        self._buffer.clear()

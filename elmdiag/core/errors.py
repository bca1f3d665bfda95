from __future__ import annotations


class ElmDiagError(Exception):
    pass


class ConfigError(ElmDiagError):
    pass


class TransportError(ElmDiagError):
    """The underlying byte channel is closed or failed."""


class ChannelBusy(ElmDiagError):
    """A command was issued while another one is still in flight."""


class CommandTimeout(ElmDiagError):
    def __init__(self, command: str, timeout_ms: int) -> None:
        super().__init__(f"no response to {command!r} within {int(timeout_ms)} ms")
        self.command = command
        self.timeout_ms = int(timeout_ms)


class SessionError(ElmDiagError):
    pass


class ConnectionFailed(SessionError):
    pass


class NotReady(SessionError):
    pass


class UnsupportedOperation(SessionError):
    pass


class UnknownSession(SessionError):
    pass


class DecodeError(ElmDiagError):
    """Response did not match the byte layout expected for the request.

    The raw adapter text is kept for diagnostics.
    """

    def __init__(self, message: str, *, raw: str) -> None:
        super().__init__(message)
        self.raw = raw

from __future__ import annotations

from elmdiag.core.transport.base import Transport
from elmdiag.core.transport.mock import MockTransport
from elmdiag.core.transport.recorder import RecordingTransport
from elmdiag.core.transport.tcp import TcpTransport

__all__ = [
    "MockTransport",
    "RecordingTransport",
    "TcpTransport",
    "Transport",
]

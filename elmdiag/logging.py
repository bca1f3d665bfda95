from __future__ import annotations

import contextlib
import contextvars
import datetime as _dt
import json
import logging
import os
import sys
import traceback
from typing import Any, Iterator

# Raw adapter TX/RX goes out at TRACE, below DEBUG.
TRACE_LEVEL = 5
logging.addLevelName(TRACE_LEVEL, "TRACE")


def _logger_trace(self: logging.Logger, msg: str, *args: Any, **kwargs: Any) -> None:
    if self.isEnabledFor(TRACE_LEVEL):
        self._log(TRACE_LEVEL, msg, args, **kwargs)


if not hasattr(logging.Logger, "trace"):
    logging.Logger.trace = _logger_trace  # type: ignore[attr-defined]


LOG_FORMATS = ("pretty", "json")

# Loggers of the adapter link libraries; silenced below DEBUG.
QUIET_LOGGERS = ("bleak", "serial", "asyncio")

_session_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("elmdiag_session", default=None)


@contextlib.contextmanager
def session_context(session_id: str) -> Iterator[None]:
    """Tag every record logged inside the block with `session=<id>`."""
    token = _session_var.set(str(session_id))
    try:
        yield
    finally:
        _session_var.reset(token)


def get_session_id() -> str | None:
    return _session_var.get()


class _ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 (filter)
        if not hasattr(record, "session"):
            record.session = get_session_id()  # type: ignore[attr-defined]
        return True


# Everything a bare LogRecord carries is not an `extra`.
_STANDARD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "taskName"}


def _printable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        # Adapter traffic is ASCII; \r and friends stay visible.
        return bytes(value).decode("ascii", errors="replace").encode("unicode_escape").decode("ascii")
    return value


def _structured(record: logging.LogRecord) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a record into its fixed header fields and its `extra` fields."""
    header = {
        "ts": _dt.datetime.fromtimestamp(record.created, tz=_dt.timezone.utc).astimezone().isoformat(timespec="milliseconds"),
        "level": record.levelname,
        "logger": record.name,
        "msg": record.getMessage(),
    }
    extras = {
        key: _printable(value)
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }
    return header, extras


def _exc_text(record: logging.LogRecord) -> str | None:
    if not record.exc_info:
        return None
    return "".join(traceback.format_exception(*record.exc_info)).rstrip()


_LEVEL_COLORS = (
    (logging.ERROR, "31"),
    (logging.WARNING, "33"),
    (logging.INFO, "32"),
    (logging.DEBUG, "36"),
)


def _colorize(levelno: int, text: str) -> str:
    color = next((code for floor, code in _LEVEL_COLORS if levelno >= floor), "90")
    return f"\x1b[{color}m{text}\x1b[0m"


class PrettyFormatter(logging.Formatter):
    """`<ts> <LEVEL> <logger> <msg> session=<id> key=value ...` on one line."""

    def __init__(self, *, use_color: bool) -> None:
        super().__init__()
        self._use_color = bool(use_color)

    def format(self, record: logging.LogRecord) -> str:
        header, extras = _structured(record)
        words = list(header.values())
        session = extras.pop("session", None)
        if session:
            words.append(f"session={session}")
        words += [f"{key}={extras[key]}" for key in sorted(extras)]

        text = " ".join(str(w) for w in words)
        exc = _exc_text(record)
        if exc:
            text = f"{text}\n{exc}"
        return _colorize(record.levelno, text) if self._use_color else text


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        header, extras = _structured(record)
        header["level"] = header["level"].lower()
        payload = {**{k: v for k, v in extras.items() if v is not None}, **header}
        exc = _exc_text(record)
        if exc:
            payload["exc"] = exc
        return json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str)


_LEVELS = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE_LEVEL,
}


def parse_log_level(value: str | None) -> int:
    raw = (value or "").strip().lower() or "info"
    try:
        return _LEVELS[raw]
    except KeyError:
        raise ValueError(f"invalid log level: {value!r}") from None


def _handler(handler: logging.Handler, formatter: logging.Formatter) -> logging.Handler:
    handler.setFormatter(formatter)
    handler.addFilter(_ContextFilter())
    return handler


def setup_logging(
    *,
    level: int = logging.INFO,
    log_format: str = "pretty",
    log_file: str | None = None,
    no_color: bool = False,
) -> None:
    """Configure root logging for the CLI and the simulator.

    Records go to stderr and, with `log_file`, to that file as well (never
    colored). Stdout carries command results only.
    """

    fmt = (log_format or "pretty").strip().lower()
    if fmt not in LOG_FORMATS:
        raise ValueError(f"invalid log format: {log_format!r}")

    def make(color: bool) -> logging.Formatter:
        return JsonFormatter() if fmt == "json" else PrettyFormatter(use_color=color)

    tty = bool(getattr(sys.stderr, "isatty", lambda: False)())
    handlers = [_handler(logging.StreamHandler(stream=sys.stderr), make(tty and not no_color))]
    if log_file:
        path = os.path.expanduser(str(log_file))
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        handlers.append(_handler(logging.FileHandler(path, encoding="utf-8"), make(False)))

    logging.basicConfig(level=int(level), handlers=handlers, force=True)

    link_level = logging.DEBUG if int(level) <= logging.DEBUG else logging.WARNING
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(link_level)

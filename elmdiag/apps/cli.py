from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from elmdiag.config import load_config
from elmdiag.core.errors import ElmDiagError
from elmdiag.core.live.watch import LiveWatcher
from elmdiag.core.service import DiagnosticEngine
from elmdiag.core.transport.base import Transport
from elmdiag.core.transport.mock import MockTransport
from elmdiag.core.transport.recorder import RecordingTransport
from elmdiag.core.transport.tcp import TcpTransport
from elmdiag.emulator.elm_sim import ElmSimulator, ev_car
from elmdiag.logging import LOG_FORMATS, TRACE_LEVEL, parse_log_level, setup_logging


log = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="elmdiag", description="ELM327 vehicle diagnostics (OBD-II and J1939).")
    _add_logging_args(parser)

    sub = parser.add_subparsers(dest="cmd", required=True)

    info_p = sub.add_parser("info", help="Connect and report adapter identification")
    _add_session_args(info_p)

    dtc_p = sub.add_parser("dtc", help="Fault code operations")
    _add_logging_args(dtc_p)
    dtc_sub = dtc_p.add_subparsers(dest="dtc_cmd", required=True)
    dtc_read_p = dtc_sub.add_parser("read", help="Read active/stored fault codes (Mode 03 / DM1)")
    _add_session_args(dtc_read_p)
    dtc_prev_p = dtc_sub.add_parser("previous", help="Read previously active fault codes (DM2, J1939 only)")
    _add_session_args(dtc_prev_p)
    dtc_clear_p = dtc_sub.add_parser("clear", help="Clear fault codes (Mode 04 / DM11)")
    _add_session_args(dtc_clear_p)

    live_p = sub.add_parser("live", help="Read one live-data sample")
    _add_session_args(live_p)

    ev_p = sub.add_parser("ev", help="Read EV/hybrid battery parameters (OBD-II)")
    _add_session_args(ev_p)

    watch_p = sub.add_parser("watch", help="Poll live data and stream events (JSONL)")
    _add_session_args(watch_p)
    watch_p.add_argument("--fields", default=None, help="Comma-separated field names (default: all)")
    watch_p.add_argument("--emit", choices=["changed", "always"], default="changed")
    watch_p.add_argument("--ticks", type=int, default=10)
    watch_p.add_argument("--tick-ms", type=int, default=1000)

    args = parser.parse_args(argv)

    # Logs on stderr (and --log-file); stdout is for JSON results.
    setup_logging(
        level=_log_level(args),
        log_format=str(getattr(args, "log_format", "pretty") or "pretty"),
        log_file=getattr(args, "log_file", None),
        no_color=bool(getattr(args, "no_color", False)),
    )
    log.debug("CLI start", extra={"cmd": args.cmd})
    _dispatch(args)


def _dispatch(args: argparse.Namespace) -> None:
    if args.cmd == "watch":
        fields = [f.strip() for f in (args.fields or "").split(",") if f.strip()]
        response = asyncio.run(_watch_inprocess(args, fields=fields))
        if not response.get("ok"):
            _print_json(response)
        raise SystemExit(0 if response.get("ok") else 1)

    if args.cmd == "dtc":
        op = {"read": "read_faults", "previous": "read_previous_faults", "clear": "clear_faults"}[args.dtc_cmd]
    else:
        op = {"info": "info", "live": "live", "ev": "ev"}.get(args.cmd, "")
    if not op:
        raise SystemExit("error: unknown command")

    response = asyncio.run(_run_inprocess(args, op=op))
    _print_json(response)
    raise SystemExit(0 if response.get("ok") else 1)


def _add_session_args(parser: argparse.ArgumentParser) -> None:
    _add_logging_args(parser)
    parser.add_argument("--profile", choices=["obd2", "j1939"], default="obd2", help="Diagnostic protocol")
    parser.add_argument("--transport", choices=["mock", "tcp", "serial", "ble"], default="mock")
    parser.add_argument("--host", default="192.168.0.10", help="WiFi adapter address (tcp)")
    parser.add_argument("--port", type=int, default=35000, help="WiFi adapter port (tcp)")
    parser.add_argument("--device", default="/dev/rfcomm0", help="Serial device (serial)")
    parser.add_argument("--baudrate", type=int, default=38400, help="Serial baud rate (serial)")
    parser.add_argument("--address", default=None, help="BLE device address (ble)")
    parser.add_argument("--sim-ev", action="store_true", help="Simulate an EV (mock transport)")
    parser.add_argument("--record", default=None, help="Record adapter traffic to a JSONL file")
    parser.add_argument("--config", dest="config_path", default=None, help="Config file (default: elmdiag.json in config dir)")
    parser.add_argument("--obd2-timeout-ms", type=int, default=None)
    parser.add_argument("--j1939-timeout-ms", type=int, default=None)
    parser.add_argument("--quiet-period-ms", type=int, default=None)
    parser.add_argument("--retries", type=int, default=None)


def _log_level(args: argparse.Namespace) -> int:
    if getattr(args, "trace", False):
        return TRACE_LEVEL
    if getattr(args, "verbose", False):
        return logging.DEBUG
    return parse_log_level(getattr(args, "log_level", None))


def _add_logging_args(parser: argparse.ArgumentParser) -> None:
    # SUPPRESS defaults so that flags placed before the subcommand are not
    # overwritten by subparser defaults.
    parser.add_argument(
        "--log-level",
        choices=["error", "warning", "info", "debug", "trace"],
        default=argparse.SUPPRESS,
        help="Logging level (default: info)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", default=argparse.SUPPRESS, help="Alias for --log-level=debug")
    parser.add_argument("--trace", action="store_true", default=argparse.SUPPRESS, help="Alias for --log-level=trace")
    parser.add_argument("--log-file", default=argparse.SUPPRESS, help="Optional log file path")
    parser.add_argument(
        "--log-format",
        choices=list(LOG_FORMATS),
        default=argparse.SUPPRESS,
        help="pretty key=value lines or one JSON object per line (default: pretty)",
    )
    parser.add_argument("--no-color", action="store_true", default=argparse.SUPPRESS, help="Disable ANSI colors in pretty logs")


def _print_json(payload: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload, sort_keys=True, indent=2) + "\n")


def _build_transport(args: argparse.Namespace) -> Transport:
    kind = args.transport
    transport: Transport
    if kind == "mock":
        transport = MockTransport(ElmSimulator(car=ev_car() if args.sim_ev else None))
    elif kind == "tcp":
        transport = TcpTransport(args.host, args.port)
    elif kind == "serial":
        from elmdiag.core.transport.serial import SerialTransport

        transport = SerialTransport(args.device, args.baudrate)
    elif kind == "ble":
        if not args.address:
            raise ValueError("--address is required for the ble transport")
        from elmdiag.core.transport.ble import BleTransport

        transport = BleTransport(args.address)
    else:
        raise ValueError(f"unknown transport: {kind}")
    if args.record:
        transport = RecordingTransport(transport, args.record)
    return transport


def _engine(args: argparse.Namespace) -> DiagnosticEngine:
    config = load_config(
        {
            "obd2_timeout_ms": args.obd2_timeout_ms,
            "j1939_timeout_ms": args.j1939_timeout_ms,
            "quiet_period_ms": args.quiet_period_ms,
            "retries": args.retries,
        },
        config_path=args.config_path,
    )
    return DiagnosticEngine(config)


async def _run_inprocess(args: argparse.Namespace, *, op: str) -> dict[str, Any]:
    engine: DiagnosticEngine | None = None
    try:
        engine = _engine(args)
        handle = await engine.connect(args.profile, _build_transport(args))
        out: dict[str, Any] = {"ok": True, "session": handle.to_dict()}
        if op == "info":
            out["adapter"] = await engine.adapter_info(handle)
        elif op == "read_faults":
            out["faults"] = [f.to_dict() for f in await engine.read_fault_codes(handle)]
        elif op == "read_previous_faults":
            out["faults"] = [f.to_dict() for f in await engine.read_previous_fault_codes(handle)]
        elif op == "clear_faults":
            await engine.clear_fault_codes(handle)
        elif op == "live":
            out["sample"] = (await engine.read_live_data(handle)).to_dict()
        elif op == "ev":
            record = await engine.read_ev_battery(handle)
            out["battery"] = record.to_dict() if record is not None else None
        else:
            return {"ok": False, "error": "invalid operation"}
        return out
    except (ElmDiagError, ValueError) as exc:
        log.debug("Command failed", extra={"op": op, "error_type": type(exc).__name__})
        return {"ok": False, "error": str(exc), "error_type": type(exc).__name__}
    finally:
        if engine is not None:
            await engine.close()


async def _watch_inprocess(args: argparse.Namespace, *, fields: list[str]) -> dict[str, Any]:
    engine: DiagnosticEngine | None = None
    try:
        engine = _engine(args)
        handle = await engine.connect(args.profile, _build_transport(args))
        watch = LiveWatcher(engine, handle, fields=fields or None, emit_mode=args.emit, tick_ms=args.tick_ms)
        async for evt in watch.run_ticks(max_ticks=int(args.ticks)):
            sys.stdout.write(json.dumps(evt.to_dict(), sort_keys=True, separators=(",", ":")) + "\n")
            sys.stdout.flush()
        return {"ok": True}
    except (ElmDiagError, ValueError) as exc:
        return {"ok": False, "error": str(exc), "error_type": type(exc).__name__}
    finally:
        if engine is not None:
            await engine.close()


if __name__ == "__main__":
    main()

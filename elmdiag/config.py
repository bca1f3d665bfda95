from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

from elmdiag.core.errors import ConfigError


CONFIG_FILENAME = "elmdiag.json"

# field name -> environment variable
_ENV_VARS = {
    "reset_timeout_ms": "ELMDIAG_RESET_TIMEOUT_MS",
    "init_timeout_ms": "ELMDIAG_INIT_TIMEOUT_MS",
    "obd2_timeout_ms": "ELMDIAG_OBD2_TIMEOUT_MS",
    "j1939_timeout_ms": "ELMDIAG_J1939_TIMEOUT_MS",
    "quiet_period_ms": "ELMDIAG_QUIET_PERIOD_MS",
    "retries": "ELMDIAG_RETRIES",
}


@dataclass(frozen=True)
class EngineConfig:
    """Timing knobs for adapter sessions (all durations in milliseconds)."""

    reset_timeout_ms: int = 1000
    init_timeout_ms: int = 300
    obd2_timeout_ms: int = 300
    j1939_timeout_ms: int = 400
    quiet_period_ms: int = 150
    retries: int = 1

    def command_timeout_ms(self, protocol: str) -> int:
        return self.j1939_timeout_ms if protocol == "j1939" else self.obd2_timeout_ms

    def to_dict(self) -> dict[str, int]:
        return {f.name: int(getattr(self, f.name)) for f in fields(self)}


def _xdg_config_home() -> Path:
    env = (os.getenv("XDG_CONFIG_HOME", "") or "").strip()
    if env:
        return Path(env).expanduser()
    return Path("~/.config").expanduser()


def config_dir(explicit: str | Path | None = None) -> Path:
    if explicit is not None:
        return Path(explicit).expanduser()
    env = (os.getenv("ELMDIAG_CONFIG_DIR", "") or "").strip()
    if env:
        return Path(env).expanduser()
    return _xdg_config_home() / "elmdiag"


def _coerce(name: str, value: Any, source: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{source}: {name} must be an integer")
    try:
        out = int(str(value).strip(), 10) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{source}: {name} must be an integer, got {value!r}") from None
    if out < 0 or (name != "retries" and out == 0):
        raise ConfigError(f"{source}: {name} out of range: {out}")
    return out


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        obj = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"{path}: {exc}") from exc
    if not isinstance(obj, dict):
        raise ConfigError(f"{path}: expected a JSON object")
    return obj


def load_config(
    overrides: Mapping[str, Any] | None = None,
    *,
    config_path: str | Path | None = None,
) -> EngineConfig:
    """Resolve the engine configuration.

    Precedence (highest to lowest):
    1) explicit overrides (typically CLI flags); `None` values are ignored
    2) env vars ELMDIAG_*_TIMEOUT_MS, ELMDIAG_QUIET_PERIOD_MS, ELMDIAG_RETRIES
    3) elmdiag.json in the config dir ($ELMDIAG_CONFIG_DIR or $XDG_CONFIG_HOME/elmdiag)
    4) defaults
    """

    path = Path(config_path).expanduser() if config_path is not None else config_dir() / CONFIG_FILENAME
    resolved: dict[str, int] = {}

    for key, value in _read_config_file(path).items():
        if key not in _ENV_VARS:
            raise ConfigError(f"{path}: unknown key {key!r}")
        resolved[key] = _coerce(key, value, str(path))

    for key, env_name in _ENV_VARS.items():
        env = (os.getenv(env_name, "") or "").strip()
        if env:
            resolved[key] = _coerce(key, env, env_name)

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key not in _ENV_VARS:
            raise ConfigError(f"unknown config option {key!r}")
        resolved[key] = _coerce(key, value, "argument")

    return replace(EngineConfig(), **resolved)

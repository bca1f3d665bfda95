"""
Shared fixtures: fast timings and sessions over the in-memory ELM327 simulator.
"""

import pytest

from elmdiag.config import EngineConfig
from elmdiag.core.service import DiagnosticEngine
from elmdiag.core.transport.mock import MockTransport
from elmdiag.emulator.elm_sim import ElmSimulator


FAST = EngineConfig(
    reset_timeout_ms=200,
    init_timeout_ms=100,
    obd2_timeout_ms=100,
    j1939_timeout_ms=100,
    quiet_period_ms=30,
    retries=1,
)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep a developer's ~/.config/elmdiag and ELMDIAG_* env out of the tests."""
    monkeypatch.setenv("ELMDIAG_CONFIG_DIR", str(tmp_path / "config"))
    for name in (
        "ELMDIAG_RESET_TIMEOUT_MS",
        "ELMDIAG_INIT_TIMEOUT_MS",
        "ELMDIAG_OBD2_TIMEOUT_MS",
        "ELMDIAG_J1939_TIMEOUT_MS",
        "ELMDIAG_QUIET_PERIOD_MS",
        "ELMDIAG_RETRIES",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config():
    return FAST


@pytest.fixture
def engine(config):
    return DiagnosticEngine(config)


@pytest.fixture
def sim():
    return ElmSimulator()


@pytest.fixture
def transport(sim):
    return MockTransport(sim)

"""
Tests for the elmdiag command line over the mock transport.
"""

import json
import logging

import pytest

from elmdiag.apps.cli import main


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _run(capsys, argv):
    with pytest.raises(SystemExit) as excinfo:
        main(argv + ["--log-level", "error"])
    return excinfo.value.code, capsys.readouterr().out


class TestOneShotCommands:
    def test_live(self, capsys):
        code, out = _run(capsys, ["live"])
        assert code == 0
        payload = json.loads(out)
        assert payload["ok"] is True
        assert payload["session"]["profile"] == "obd2"
        assert payload["sample"]["values"]["rpm"] == 2000.0

    def test_dtc_read_j1939(self, capsys):
        code, out = _run(capsys, ["dtc", "read", "--profile", "j1939"])
        assert code == 0
        faults = json.loads(out)["faults"]
        assert [(f["spn"], f["fmi"]) for f in faults] == [(110, 0), (3363, 18)]

    def test_unsupported_operation_exits_nonzero(self, capsys):
        code, out = _run(capsys, ["dtc", "previous"])
        assert code == 1
        payload = json.loads(out)
        assert payload["ok"] is False
        assert payload["error_type"] == "UnsupportedOperation"

    def test_ev_simulation(self, capsys):
        code, out = _run(capsys, ["ev", "--sim-ev"])
        assert code == 0
        assert json.loads(out)["battery"]["state_of_charge"] == 80.0

    def test_info(self, capsys):
        code, out = _run(capsys, ["info"])
        assert code == 0
        assert json.loads(out)["adapter"]["adapter"] == "ELM327 v1.5"

    def test_bad_config_value(self, capsys):
        code, out = _run(capsys, ["live", "--retries", "-1"])
        assert code == 1
        assert json.loads(out)["error_type"] == "ConfigError"

    def test_record(self, capsys, tmp_path):
        path = tmp_path / "trace.jsonl"
        code, _ = _run(capsys, ["dtc", "read", "--record", str(path)])
        assert code == 0
        events = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert events[0]["dir"] == "tx"
        assert events[0]["text"] == "ATZ\r"


class TestWatch:
    def test_streams_jsonl(self, capsys):
        code, out = _run(capsys, ["watch", "--ticks", "2", "--tick-ms", "0", "--emit", "always", "--fields", "rpm"])
        assert code == 0
        events = [json.loads(line) for line in out.splitlines()]
        assert [(e["tick"], e["field"], e["value"]) for e in events] == [(1, "rpm", 2000.0), (2, "rpm", 2000.0)]
        assert all(e["event"] == "live_value" for e in events)

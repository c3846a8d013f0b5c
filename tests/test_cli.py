"""
Crowchiper CLI Tests
"""

import json

import pytest
from structlog.testing import capture_logs

from crowchiper import cli
from guests import RETURN_TEXT


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep log lines out of the command output."""
    monkeypatch.setattr(cli, "setup_logging", lambda level: None)
    with capture_logs():
        yield


class TestCli:
    """Tests for the crowchiper-plugins command."""

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_check_prints_summaries(self, good_plugin, capsys):
        assert cli.main(["--plugin", f"{good_plugin}:net", "check"]) == 0

        result = json.loads(capsys.readouterr().out)
        assert result == [
            {
                "name": "good",
                "version": "0.1.0",
                "target": "server",
                "hooks": ["server.ip-change"],
                "spec": f"{good_plugin}:net",
            }
        ]

    def test_invalid_spec_is_usage_error(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--plugin", "p.wasm:bogus", "check"])

        assert exc_info.value.code == 2
        assert "unknown permission 'bogus'" in capsys.readouterr().err

    def test_abort_on_load_failure(self, tmp_path, capsys):
        missing = tmp_path / "missing.wasm"

        assert cli.main(["--plugin", str(missing), "check"]) == 1
        assert "plugin load error" in capsys.readouterr().err

    def test_warn_skips_load_failure(self, good_plugin, tmp_path, capsys):
        missing = tmp_path / "missing.wasm"
        argv = ["--plugin", str(missing), "--plugin", str(good_plugin), "--plugin-error", "warn", "check"]

        assert cli.main(argv) == 0
        assert [p["name"] for p in json.loads(capsys.readouterr().out)] == ["good"]

    def test_fire_delivers_hook(self, good_plugin, capsys):
        argv = ["--plugin", str(good_plugin), "fire", "server.ip-change", "old=1.1.1.1", "new=2.2.2.2"]

        assert cli.main(argv) == 0
        assert json.loads(capsys.readouterr().out) == {
            "hook": "server.ip-change",
            "delivered_to": ["good"],
        }

    def test_fire_failure_still_exits_cleanly(self, build_plugin, capsys):
        failing = build_plugin("failing", hook_body=RETURN_TEXT, text=b"nope")

        assert cli.main(["--plugin", str(failing), "fire", "server.ip-change"]) == 0

    def test_fire_without_subscribers(self, capsys):
        assert cli.main(["fire", "server.ip-change"]) == 0
        assert "No plugin is registered" in capsys.readouterr().out

    def test_fire_rejects_unknown_hook(self):
        with pytest.raises(SystemExit):
            cli.main(["fire", "server.reboot"])

    def test_fire_rejects_malformed_value(self):
        with pytest.raises(SystemExit):
            cli.main(["fire", "server.ip-change", "novalue"])

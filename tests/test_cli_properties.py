"""
Tests for the command-line entry point.
"""

import json
import tempfile
from pathlib import Path

import pytest

from serdo.cli import create_parser, main


@pytest.fixture
def config_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "config.json"
        path.write_text(json.dumps({
            "security": {"auth_secret": "cli-secret"},
            "persistence": {"data_dir": str(Path(tmpdir) / "data")},
        }), encoding="utf-8")
        yield path


class TestParserProperty:
    def test_check_defaults(self) -> None:
        args = create_parser().parse_args(["check", "servers", "tenant-1"])
        assert args.kind == "servers"
        assert args.trigger == "manual"

    def test_no_command_prints_help(self, capsys) -> None:
        assert main([]) == 0
        assert "serdo" in capsys.readouterr().out


class TestCommandsProperty:
    def test_config_validate(self, config_file, capsys) -> None:
        assert main(["config", "validate", "-c", str(config_file)]) == 0
        report = json.loads(capsys.readouterr().out)
        assert report == {"valid": True, "errors": [], "warnings": []}

    def test_empty_tenant_logs_and_status(self, config_file, capsys) -> None:
        assert main(["logs", "-c", str(config_file), "tenant-1", "--type", "domain"]) == 0
        page = json.loads(capsys.readouterr().out)
        assert page["pagination"]["total"] == 0

        assert main(["status", "-c", str(config_file), "tenant-1"]) == 0
        status = json.loads(capsys.readouterr().out)
        assert status["server"]["nextCheckAt"] == 0

    def test_check_empty_tenant(self, config_file, capsys) -> None:
        assert main(["check", "servers", "-c", str(config_file), "tenant-1"]) == 0
        output = json.loads(capsys.readouterr().out)
        assert output["results"] == []
        assert output["summary"] == "Checked 0 servers: 0 up, 0 down"

    def test_errors_are_json_on_stderr(self, config_file, capsys) -> None:
        assert main(["sync", "-c", str(config_file), "tenant-1", "missing"]) == 2
        error = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert error["code"] == "not_found"
        assert error["status"] == 404

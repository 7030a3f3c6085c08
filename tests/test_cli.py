"""Tests for the dispatch CLI: commands dispatch and persist."""

import json
from pathlib import Path

import pytest

from dispatch.cli import build_parser, main


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def _run(tmp_path: Path, *argv: str) -> int:
    return main(["--config", str(CONFIG_DIR), "--data", str(tmp_path), *argv])


def _register(tmp_path: Path, provider_id: str = "f1", lat: str = "40.7128") -> int:
    return _run(
        tmp_path, "register-provider", "--id", provider_id, "--name", "Ana",
        "--height", "182", "--weight", "84", "--professional", "--years", "2",
        "--discipline", "mma", "--lat", lat, "--lng", "-74.0060",
    )


class TestCLIParsing:
    def test_status_command(self) -> None:
        args = build_parser().parse_args(["status"])
        assert args.command == "status"

    def test_caller_flag(self) -> None:
        args = build_parser().parse_args(["complete", "--as", "f1", "--mission", "3"])
        assert args.caller == "f1"
        assert args.mission == 3

    def test_create_mission_defaults(self) -> None:
        args = build_parser().parse_args([
            "create-mission", "--as", "c1", "--lat", "1.5", "--lng", "2.5",
            "--deposit", "1000",
        ])
        assert args.tier == "novice"
        assert args.location_hash is None

    def test_resolve_requires_side(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([
                "resolve-dispute", "--as", "admin", "--mission", "1", "--favor", "nobody",
            ])


class TestCLIExecution:
    def test_no_command_shows_help(self, capsys) -> None:
        assert main([]) == 0

    def test_status_runs(self, tmp_path, capsys) -> None:
        assert _run(tmp_path, "status") == 0
        status = json.loads(capsys.readouterr().out)
        assert status["providers"]["total"] == 0

    def test_full_flow_persists_between_runs(self, tmp_path, capsys) -> None:
        assert _register(tmp_path) == 0
        assert _run(
            tmp_path, "create-mission", "--as", "c1", "--lat", "40.71",
            "--lng", "-74.0", "--tier", "warrior", "--deposit", "1000",
        ) == 0
        assert _run(tmp_path, "assign-nearest", "--as", "c1", "--mission", "1") == 0
        assert _run(tmp_path, "complete", "--as", "f1", "--mission", "1") == 0
        out = capsys.readouterr().out
        assert "Mission 1 assigned to f1" in out
        assert "fighter_payment: 950 -> f1" in out

        assert _run(tmp_path, "show-mission", "--mission", "1") == 0
        shown = json.loads(capsys.readouterr().out)
        assert shown["state"] == "completed"
        assert shown["settlement"]["mission_id"] == 1

        assert _run(tmp_path, "check-invariants") == 0
        assert "passed" in capsys.readouterr().out

    def test_failure_exit_code(self, tmp_path, capsys) -> None:
        assert _run(tmp_path, "cancel", "--as", "c1", "--mission", "9") == 1
        assert "Mission not found" in capsys.readouterr().err

    def test_dispute_commands(self, tmp_path, capsys) -> None:
        _register(tmp_path)
        _run(tmp_path, "create-mission", "--as", "c1", "--lat", "0", "--lng", "0",
             "--deposit", "500")
        _run(tmp_path, "assign", "--as", "c1", "--mission", "1", "--provider", "f1")
        assert _run(tmp_path, "dispute", "--as", "f1", "--mission", "1") == 0
        assert _run(
            tmp_path, "resolve-dispute", "--as", "c1", "--mission", "1", "--favor", "client",
        ) == 1
        assert _run(
            tmp_path, "resolve-dispute", "--as", "admin", "--mission", "1", "--favor", "client",
        ) == 0
        assert "resolved: favor_client" in capsys.readouterr().out

    def test_admin_commands(self, tmp_path, capsys) -> None:
        _register(tmp_path)
        assert _run(tmp_path, "suspend", "--as", "admin", "--provider", "f1") == 0
        assert _run(tmp_path, "reinstate", "--as", "admin", "--provider", "f1") == 0
        assert _run(
            tmp_path, "update-location", "--as", "geo-gateway", "--provider", "f1",
            "--lat", "1.0", "--lng", "1.0",
        ) == 0
        assert _run(tmp_path, "sweep-stale", "--as", "admin", "--max-age", "0") == 0
        assert "Invalidated" in capsys.readouterr().out

    def test_env_overrides_data_dir(self, tmp_path, monkeypatch, capsys) -> None:
        monkeypatch.setenv("DISPATCH_CONFIG_DIR", str(CONFIG_DIR))
        monkeypatch.setenv("DISPATCH_DATA_DIR", str(tmp_path))
        assert main(["status"]) == 0
        assert (tmp_path / "state.json").exists() is False
        assert main([
            "create-mission", "--as", "c1", "--lat", "0", "--lng", "0", "--deposit", "10",
        ]) == 0
        assert (tmp_path / "state.json").exists()

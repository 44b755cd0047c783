"""Tests for the pollsource command line.

Covers:
- run: emits JSON lines to stdout and saves checkpoints
- check: connectivity test
- checkpoint show/list/clear
"""

import json
import subprocess
import sys
from pathlib import Path

import pytest

from pollsource.__main__ import build_parser, main

PROJECT_ROOT = Path(__file__).resolve().parents[2]


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep main() from reconfiguring the root logger during tests."""
    monkeypatch.setattr("pollsource.__main__.setup_logging", lambda **kwargs: None)


@pytest.fixture
def orders_yaml(tmp_path, orders_db):
    path = tmp_path / "orders.yaml"
    path.write_text(
        "source:\n"
        "  name: orders\n"
        f"  storeUrl: {orders_db}\n"
        "  driverIdentifier: sqlite3\n"
        "  tableName: orders\n"
        "  orderBy: [id]\n"
        "  columns: [id, name]\n"
    )
    return path


class TestCLIHelp:
    def test_help_flag(self):
        result = subprocess.run(
            [sys.executable, "-m", "pollsource", "--help"],
            capture_output=True,
            text=True,
            cwd=PROJECT_ROOT,
        )

        assert result.returncode == 0
        assert "pollsource" in result.stdout

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestRunCommand:
    def test_run_writes_json_lines(self, orders_yaml, tmp_path, capsys):
        code = main(["--state-dir", str(tmp_path / "state"), "run", str(orders_yaml)])

        lines = capsys.readouterr().out.strip().splitlines()
        assert code == 0
        assert [json.loads(line) for line in lines] == [
            {"id": 1, "name": "alpha"},
            {"id": 2, "name": "beta"},
            {"id": 3, "name": "gamma"},
        ]

    def test_run_with_name_saves_checkpoint(self, orders_yaml, tmp_path, capsys):
        state_dir = tmp_path / "state"

        main(["--state-dir", str(state_dir), "run", str(orders_yaml), "--name", "orders"])
        capsys.readouterr()
        main(["--state-dir", str(state_dir), "checkpoint", "show", "orders"])

        record = json.loads(capsys.readouterr().out)
        assert record["last_tuple"] == {"id": 3, "name": "gamma"}
        assert record["window_id"] == 0

    def test_missing_config_returns_error(self, tmp_path, capsys):
        assert main(["run", str(tmp_path / "nope.yaml")]) == 1

    def test_run_subprocess(self, orders_yaml, tmp_path):
        result = subprocess.run(
            [
                sys.executable, "-m", "pollsource",
                "--state-dir", str(tmp_path / "state"),
                "run", str(orders_yaml), "--windows", "2",
            ],
            capture_output=True,
            text=True,
            cwd=PROJECT_ROOT,
        )

        assert result.returncode == 0, result.stderr
        assert len(result.stdout.strip().splitlines()) == 6
        assert "Run complete: 2 windows, 6 tuples" in result.stderr


class TestCheckCommand:
    def test_check_ok(self, orders_yaml, capsys):
        assert main(["check", str(orders_yaml)]) == 0
        assert "OK: connected to orders" in capsys.readouterr().out

    def test_check_bad_driver(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("storeUrl: x\ndriver: no_such_driver_qq\ntable: t\n")

        assert main(["check", str(path)]) == 1


class TestCheckpointCommand:
    def test_show_missing(self, tmp_path, capsys):
        assert main(["--state-dir", str(tmp_path), "checkpoint", "show", "ghost"]) == 1

    def test_name_required(self, tmp_path):
        assert main(["--state-dir", str(tmp_path), "checkpoint", "clear"]) == 2

    def test_list_and_clear(self, orders_yaml, tmp_path, capsys):
        state_dir = str(tmp_path / "state")
        main(["--state-dir", state_dir, "run", str(orders_yaml), "--name", "orders"])
        capsys.readouterr()

        main(["--state-dir", state_dir, "checkpoint", "list"])
        assert "orders: 3 tuples" in capsys.readouterr().out

        main(["--state-dir", state_dir, "checkpoint", "clear", "orders"])
        assert "Deleted" in capsys.readouterr().out
        main(["--state-dir", state_dir, "checkpoint", "list"])
        assert capsys.readouterr().out == ""

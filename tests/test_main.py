"""Tests for the click entry point (no UI is started)."""

import json

import pytest
from click.testing import CliRunner

import main
from config import app_config, openai_config


@pytest.fixture()
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    monkeypatch.setattr(app_config, "home_dir", tmp_path)
    monkeypatch.setattr(app_config, "connections_file", None)
    monkeypatch.setattr(main, "setup_logger", lambda *args, **kwargs: None)
    return tmp_path


class TestCommands:
    def test_all_expected_commands_registered(self):
        assert {"tui", "simple", "version", "connections"} <= set(main.cli.commands)

    def test_version(self, runner):
        result = runner.invoke(main.cli, ["version"])
        assert result.exit_code == 0
        assert app_config.version in result.output
        assert openai_config.model in result.output

    def test_connections_empty(self, runner):
        result = runner.invoke(main.cli, ["connections"])
        assert result.exit_code == 0
        assert "No database connections configured" in result.output

    def test_connections_lists_saved_entries(self, runner, isolated_home):
        (isolated_home / "connections.json").write_text(json.dumps({
            "shop": {"name": "shop", "type": "mysql", "host": "m", "database": "shop",
                     "password": "hunter2", "last_used": "2024-06-01T00:00:00Z"},
            "main": {"name": "main", "type": "postgresql", "host": "db", "database": "app"},
        }))
        result = runner.invoke(main.cli, ["connections"])
        assert result.exit_code == 0
        assert "* shop [mysql] (m:3306/shop)" in result.output
        assert "  main [postgresql] (db:5432/app) - last used never" in result.output
        assert "hunter2" not in result.output


class TestStartupChecks:
    @pytest.mark.parametrize("command", [["simple"], ["tui"]])
    def test_missing_api_key_exits_non_zero(self, runner, monkeypatch, command):
        monkeypatch.setattr(openai_config, "api_key", "")
        result = runner.invoke(main.cli, command)
        assert result.exit_code == 1
        assert "OPENAI_API_KEY" in result.output

    def test_unreadable_connections_file_exits_non_zero(self, runner, monkeypatch, isolated_home):
        monkeypatch.setattr(openai_config, "api_key", "sk-test")
        # a directory where the file should be cannot be read
        (isolated_home / "connections.json").mkdir()
        result = runner.invoke(main.cli, ["simple"])
        assert result.exit_code == 1

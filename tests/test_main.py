"""
Tests for the command-line interface.
"""

import json

import pytest
from pathlib import Path
from typing import List

from typer.testing import CliRunner

from rampart.core.domain.configuration import BotConfiguration
from rampart.main import cli

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_environment(monkeypatch: pytest.MonkeyPatch, plenty_of_memory: None) -> None:
    monkeypatch.setattr("rampart.main.setup_logging", lambda settings: None)
    monkeypatch.setenv("DISCORD_BOT_TOKEN", "discord.token-value")
    monkeypatch.setenv("GOOGLE_API_KEY", "google_api_key_value")
    for name in ("GEMINI_API_KEY", "GEMINI_TIMEOUT_MS", "NODE_ENV", "RAMPART_ENVIRONMENT"):
        monkeypatch.delenv(name, raising=False)


def invoke(*args: str):
    return runner.invoke(cli, list(args))


def data_args(tmp_path: Path) -> List[str]:
    return ["--data-dir", str(tmp_path)]


class TestInitAndValidate:
    """Test cases for offline configuration commands."""

    def test_init_config(self, tmp_path: Path) -> None:
        target = tmp_path / "bot-config.json"

        first = invoke("init-config", "--output", str(target))
        second = invoke("init-config", "--output", str(target))
        forced = invoke("init-config", "--output", str(target), "--force")

        assert first.exit_code == 0
        assert json.loads(target.read_text()) == BotConfiguration().to_dict()
        assert second.exit_code == 1
        assert "already exists" in second.output
        assert forced.exit_code == 0

    def test_validate_valid_file(self, tmp_path: Path) -> None:
        target = tmp_path / "bot-config.json"
        target.write_text(json.dumps(BotConfiguration().to_dict()))

        result = invoke("validate", str(target))

        assert result.exit_code == 0
        assert "is valid" in result.output

    def test_validate_invalid_file(self, tmp_path: Path) -> None:
        data = BotConfiguration().to_dict()
        data['rate_limiting']['rpm'] = 1000
        target = tmp_path / "bot-config.yaml"
        target.write_text(json.dumps(data))

        result = invoke("validate", str(target))

        assert result.exit_code == 1
        assert "rate_limiting.rpm" in result.output

    def test_validate_unreadable_files(self, tmp_path: Path) -> None:
        broken = tmp_path / "broken.json"
        broken.write_text("{ nope")

        assert invoke("validate", str(broken)).exit_code == 1
        assert invoke("validate", str(tmp_path / "missing.json")).exit_code == 1

        missing_managed = invoke("validate", *data_args(tmp_path))
        assert missing_managed.exit_code == 1
        assert "not found" in missing_managed.output


class TestServiceCommands:
    """Test cases for commands that load the managed configuration."""

    def test_health_json(self, tmp_path: Path) -> None:
        result = invoke("health", "--json", *data_args(tmp_path))

        assert result.exit_code == 0
        status = json.loads(result.output)
        assert status['overall'] == 'healthy'
        assert (tmp_path / "data" / "bot-config.json").exists()

    def test_health_fails_without_credentials(self, tmp_path: Path,
                                              monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DISCORD_BOT_TOKEN")

        result = invoke("health", *data_args(tmp_path))

        assert result.exit_code == 1
        assert "api_keys" in result.output

    def test_readiness(self, tmp_path: Path) -> None:
        result = invoke("readiness", *data_args(tmp_path))

        assert result.exit_code == 0
        assert "[x] api keys configured" in result.output
        assert "production ready" in result.output

    def test_readiness_report(self, tmp_path: Path) -> None:
        result = invoke("readiness", "--report", *data_args(tmp_path))

        assert result.exit_code == 0
        assert "# Configuration Health Report" in result.output

    def test_history_and_rollback(self, tmp_path: Path) -> None:
        assert "No archived versions" in invoke("history", *data_args(tmp_path)).output

        result = invoke("rollback", "v20000101T000000000000Z", *data_args(tmp_path))

        assert result.exit_code == 1
        assert "Error [" in result.output

    def test_export_and_audit(self, tmp_path: Path) -> None:
        stdout_export = invoke("export", "--format", "yaml", *data_args(tmp_path))
        file_export = invoke("export", "--output", str(tmp_path / "out.json"), *data_args(tmp_path))

        assert stdout_export.exit_code == 0
        assert "rate_limiting:" in stdout_export.output
        assert file_export.exit_code == 0
        assert json.loads((tmp_path / "out.json").read_text())['rate_limiting']['rpm'] == 10

        table = invoke("audit", "--action", "export", *data_args(tmp_path))
        assert table.exit_code == 0
        assert table.output.count("export") == 2

        report = tmp_path / "audit.csv"
        exported = invoke("audit", "--format", "csv", "--output", str(report), *data_args(tmp_path))
        assert exported.exit_code == 0
        assert report.read_text().startswith("timestamp,action,path")

    def test_audit_filters(self, tmp_path: Path) -> None:
        assert invoke("audit", "--action", "bogus", *data_args(tmp_path)).exit_code == 1

        empty = invoke("audit", "--significant", "--days", "1", *data_args(tmp_path))
        assert empty.exit_code == 0
        assert "No matching audit entries" in empty.output

        markdown = invoke("audit", "--format", "markdown", *data_args(tmp_path))
        assert markdown.exit_code == 0

"""Tests for the qbolink CLI and service wiring."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from qbolink import __version__
from qbolink.auth import FernetSecretCodec
from qbolink.cli import app
from qbolink.clients import QuickBooksClient
from qbolink.link import QBOLink
from qbolink.storage import Database

runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    db_path = tmp_path / "cli.db"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("QBOLINK_DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("QBOLINK_CLIENT_ID", "cli-client")
    monkeypatch.setenv("QBOLINK_CLIENT_SECRET", "cli-secret")
    monkeypatch.setenv("QBOLINK_ENCRYPTION_KEY", "cli-encryption-key")
    return db_path


class TestCLICommands:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_help_lists_commands(self) -> None:
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("connect", "callback", "status", "pull", "push", "delete", "init-db"):
            assert command in result.stdout

    def test_init_db(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["init-db"])
        assert result.exit_code == 0
        assert "Schema ready" in result.stdout
        assert cli_env.exists()

    def test_connect_prints_consent_url(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["connect", "--user", "42"])
        assert result.exit_code == 0
        assert "Open this URL" in result.stdout

        link = QBOLink.from_config(None)
        try:
            assert link.states.count_for_user("42") == 1
        finally:
            link.db.dispose()

    def test_status_not_connected(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["status", "--user", "42"])
        assert result.exit_code == 0
        assert "Connected" in result.stdout

    def test_callback_with_bad_state(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["callback", "https://app.example/cb?code=abc&realmId=1&state=forged"])
        assert result.exit_code == 1
        assert "invalid or has expired" in result.stdout

    def test_callback_with_oauth_error(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["callback", "?error=access_denied&error_description=Declined"])
        assert result.exit_code == 1
        assert "not completed" in result.stdout

    def test_pull_without_connection(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["pull", "customer", "--user", "42"])
        assert result.exit_code == 1
        assert "not connected" in result.stdout

    def test_pull_unknown_entity(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["pull", "vendor", "--user", "42"])
        assert result.exit_code == 1
        assert "Unknown entity" in result.stdout

    def test_delete_missing_record(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["delete", "customer", "7", "--user", "42"])
        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_disconnect_without_connection(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["disconnect", "--user", "42"])
        assert result.exit_code == 1

    def test_cleanup_states(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["cleanup-states"])
        assert result.exit_code == 0
        assert "Removed 0" in result.stdout

    def test_missing_encryption_key(self, cli_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("QBOLINK_ENCRYPTION_KEY")
        result = runner.invoke(app, ["status", "--user", "42"])
        assert result.exit_code == 1
        assert "Configuration error" in result.stdout


class TestQBOLinkWiring:
    @pytest.mark.asyncio
    async def test_from_config(self, tmp_path: Path) -> None:
        link = QBOLink.from_config(
            None,
            database_url=f"sqlite:///{tmp_path / 'link.db'}",
            tokens={"encryption_key": "wiring-secret"},
        )
        try:
            assert isinstance(link.client, QuickBooksClient)
            assert isinstance(link.db, Database)
            assert isinstance(link.tokens._codec, FernetSecretCodec)
            assert link.flow.gate is link.gate
            assert link.engine("customer").entity_type == "customer"
            assert link.engine("invoice").adapter.remote_type_name == "Invoice"
            with pytest.raises(KeyError):
                link.engine("vendor")
        finally:
            await link.close()

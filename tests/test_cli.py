"""Tests for the l2h CLI."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from l2h.cli import main
from l2h.core.exceptions import DuplicatePath
from l2h.security.credentials import is_hashed
from l2h.storage.store import BindingStore


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "cli.db")


def _open(db_path: str) -> BindingStore:
    store = BindingStore(db_path)
    store.initialize()
    return store


class TestCLIBasics:
    """Basic CLI tests."""

    def test_help(self, runner: CliRunner) -> None:
        """Test --help lists the commands."""
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        for command in ("serve", "init", "paths", "keys", "link", "register"):
            assert command in result.output

    def test_version_command(self, runner: CliRunner) -> None:
        """Test version command."""
        result = runner.invoke(main, ["version"])

        assert result.exit_code == 0
        assert "Version: 0.1.0" in result.output
        assert "Python:" in result.output

    def test_invalid_role(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--role", "middle", "version"])
        assert result.exit_code != 0


class TestInitCommand:
    """Tests for init."""

    def test_init_with_prompts(self, runner: CliRunner, db_path: str) -> None:
        result = runner.invoke(
            main,
            ["--db", db_path, "init"],
            input="console\nroot\ns3cret\ns3cret\nops@example.com\n",
        )

        assert result.exit_code == 0, result.output
        assert "Admin console configured." in result.output
        assert "/console/" in result.output

        store = _open(db_path)
        settings = store.get_settings()
        store.close()
        assert settings.admin_path == "console"
        assert settings.email == "ops@example.com"
        assert is_hashed(settings.password)

    def test_init_with_options(self, runner: CliRunner, db_path: str) -> None:
        result = runner.invoke(
            main,
            [
                "--db", db_path, "init",
                "--admin-path", "/panel/",
                "--username", "root",
                "--password", "s3cret",
                "--email", "",
            ],
        )

        assert result.exit_code == 0, result.output
        store = _open(db_path)
        assert store.get_settings().admin_path == "panel"
        assert store.get_settings().email is None
        store.close()

    def test_init_warns_on_guessable_path(self, runner: CliRunner, db_path: str) -> None:
        result = runner.invoke(
            main,
            ["--db", db_path, "init", "--admin-path", "admin", "--username", "root",
             "--password", "s3cret", "--email", ""],
        )
        assert result.exit_code == 0
        assert "Warning" in result.output

    def test_init_rejects_invalid_path(self, runner: CliRunner, db_path: str) -> None:
        result = runner.invoke(
            main,
            ["--db", db_path, "init", "--admin-path", "my console", "--username", "root",
             "--password", "s3cret", "--email", ""],
        )
        assert result.exit_code == 1
        assert "invalid admin path" in result.output

    def test_init_rejects_bad_email(self, runner: CliRunner, db_path: str) -> None:
        result = runner.invoke(
            main,
            ["--db", db_path, "init", "--admin-path", "console", "--username", "root",
             "--password", "s3cret", "--email", "nope"],
        )
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_init_rejects_short_password(self, runner: CliRunner, db_path: str) -> None:
        result = runner.invoke(
            main,
            ["--db", db_path, "init", "--admin-path", "console", "--username", "root",
             "--password", "pw", "--email", ""],
        )
        assert result.exit_code == 1
        assert "at least 6 characters" in result.output

        store = _open(db_path)
        assert store.get_settings() is None
        store.close()


class TestPathsCommands:
    """Tests for paths add/list/delete."""

    def test_add_list_delete(self, runner: CliRunner, db_path: str) -> None:
        result = runner.invoke(main, ["--db", db_path, "paths", "add", "shop", "9001"])
        assert result.exit_code == 0, result.output
        assert "/shop -> 9001" in result.output

        result = runner.invoke(
            main, ["--db", db_path, "paths", "add", "vip", "9002", "--password", "secret"]
        )
        assert result.exit_code == 0

        result = runner.invoke(main, ["--db", db_path, "paths", "list", "--json"])
        assert result.exit_code == 0
        bindings = json.loads(result.output)
        assert [(b["path"], b["has_password"]) for b in bindings] == [
            ("vip", True),
            ("shop", False),
        ]

        result = runner.invoke(main, ["--db", db_path, "paths", "list"])
        assert result.exit_code == 0
        assert "/shop" in result.output
        assert "9002" in result.output

        shop_id = next(b["id"] for b in bindings if b["path"] == "shop")
        result = runner.invoke(main, ["--db", db_path, "paths", "delete", str(shop_id)])
        assert result.exit_code == 0
        assert f"Deleted binding {shop_id}" in result.output

        result = runner.invoke(main, ["--db", db_path, "paths", "delete", str(shop_id)])
        assert result.exit_code == 1
        assert "binding not found" in result.output

    def test_list_empty(self, runner: CliRunner, db_path: str) -> None:
        result = runner.invoke(main, ["--db", db_path, "paths", "list"])
        assert result.exit_code == 0
        assert "No paths registered" in result.output

    def test_duplicate(self, runner: CliRunner, db_path: str) -> None:
        runner.invoke(main, ["--db", db_path, "paths", "add", "shop", "9001"])
        result = runner.invoke(main, ["--db", db_path, "paths", "add", "shop", "9002"])

        assert result.exit_code == 1
        assert "path already registered" in result.output

    def test_invalid_port(self, runner: CliRunner, db_path: str) -> None:
        result = runner.invoke(main, ["--db", db_path, "paths", "add", "shop", "70000"])
        assert result.exit_code == 1

    @pytest.mark.parametrize("path", ["secret-stuff", "my/admin", "api"])
    def test_add_rejects_sensitive_word(self, runner: CliRunner, db_path: str, path: str) -> None:
        result = runner.invoke(main, ["--db", db_path, "paths", "add", path, "9001"])
        assert result.exit_code == 1
        assert "sensitive word" in result.output

        store = _open(db_path)
        assert store.list_bindings() == []
        store.close()


class TestKeysCommands:
    """Tests for API key management."""

    def test_create_list_delete(self, runner: CliRunner, db_path: str) -> None:
        result = runner.invoke(main, ["--db", db_path, "keys", "create", "back-node", "--days", "30"])
        assert result.exit_code == 0, result.output
        assert "expires in 30 days" in result.output

        store = _open(db_path)
        api_key = store.list_api_keys()[0]
        store.close()
        assert api_key.key in result.output

        result = runner.invoke(main, ["--db", db_path, "keys", "list"])
        assert result.exit_code == 0
        assert "back-node" in result.output
        assert api_key.key[:8] in result.output

        result = runner.invoke(main, ["--db", db_path, "keys", "delete", str(api_key.id)])
        assert result.exit_code == 0

        result = runner.invoke(main, ["--db", db_path, "keys", "list"])
        assert "No API keys" in result.output

    def test_negative_days(self, runner: CliRunner, db_path: str) -> None:
        result = runner.invoke(main, ["--db", db_path, "keys", "create", "x", "--days", "-1"])
        assert result.exit_code == 1


class TestLinkAndRegister:
    """Tests for back node link/register."""

    def test_link(self, runner: CliRunner, db_path: str) -> None:
        result = runner.invoke(
            main, ["--role", "back", "--db", db_path, "link", "https://front.example/", "KEY"]
        )
        assert result.exit_code == 0
        assert "https://front.example" in result.output

        store = _open(db_path)
        link = store.get_server_link()
        store.close()
        assert link.server_url == "https://front.example"
        assert link.api_key == "KEY"

    def test_register_without_link(self, runner: CliRunner, db_path: str) -> None:
        result = runner.invoke(main, ["--role", "back", "--db", db_path, "register", "shop", "9001"])
        assert result.exit_code == 1
        assert "no front node linked" in result.output

    def test_register(self, runner: CliRunner, db_path: str) -> None:
        runner.invoke(main, ["--role", "back", "--db", db_path, "link", "https://front.example", "KEY"])

        with patch(
            "l2h.client.registrar.FrontNodeClient.register", new_callable=AsyncMock
        ) as mock_register:
            result = runner.invoke(
                main,
                ["--role", "back", "--db", db_path, "register", "shop", "9001", "--password", "pw"],
            )

        assert result.exit_code == 0, result.output
        assert "https://front.example/shop -> local port 9001" in result.output
        mock_register.assert_awaited_once_with("shop", 9001, "pw")

    def test_register_conflict(self, runner: CliRunner, db_path: str) -> None:
        runner.invoke(main, ["--role", "back", "--db", db_path, "link", "https://front.example", "KEY"])

        with patch(
            "l2h.client.registrar.FrontNodeClient.register",
            new_callable=AsyncMock,
            side_effect=DuplicatePath("path already registered"),
        ):
            result = runner.invoke(
                main, ["--role", "back", "--db", db_path, "register", "shop", "9001"]
            )

        assert result.exit_code == 1
        assert "path already registered" in result.output

    def test_register_rejects_sensitive_word(self, runner: CliRunner, db_path: str) -> None:
        runner.invoke(main, ["--role", "back", "--db", db_path, "link", "https://front.example", "KEY"])

        with patch(
            "l2h.client.registrar.FrontNodeClient.register", new_callable=AsyncMock
        ) as mock_register:
            result = runner.invoke(
                main, ["--role", "back", "--db", db_path, "register", "login", "9001"]
            )

        assert result.exit_code == 1
        assert "sensitive word" in result.output
        mock_register.assert_not_awaited()


class TestConfigOption:
    def test_config_file(self, runner: CliRunner, tmp_path) -> None:
        db = tmp_path / "from-file.db"
        config = tmp_path / "node.yaml"
        config.write_text(f"db_path: {db}\n")

        result = runner.invoke(main, ["--config", str(config), "paths", "add", "shop", "9001"])

        assert result.exit_code == 0, result.output
        assert db.exists()

"""Tests for the vaultsync CLI via Click's test runner."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from vaultsync.cli import main
from vaultsync.config import BackendType, load_config

PASSPHRASE = "correct horse"
ENV = {"VAULTSYNC_PASSPHRASE": PASSPHRASE, "VAULTSYNC_CONFIRM": PASSPHRASE}


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def cli_home(tmp_path) -> str:
    return str(tmp_path / "home")


@pytest.fixture
def invoke(runner, cli_home):
    """Run a command against the temporary home."""

    def _invoke(*args: str, env=None, input=None):
        return runner.invoke(
            main, [*args, "--home", cli_home], env=ENV if env is None else env, input=input,
        )

    return _invoke


@pytest.fixture
def initialized(invoke):
    result = invoke("init", "alice")
    assert result.exit_code == 0, result.output
    return invoke


class TestAccountCommands:
    """init, unlock, status, wipe."""

    def test_version(self, runner) -> None:
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "vaultsync" in result.output

    def test_init(self, invoke) -> None:
        result = invoke("init", "alice")
        assert result.exit_code == 0
        assert "Created" in result.output
        assert "6 default labels" in result.output

    def test_init_prompts_for_confirmation(self, invoke) -> None:
        result = invoke(
            "init", "alice", env={"VAULTSYNC_PASSPHRASE": PASSPHRASE}, input=f"{PASSPHRASE}\n",
        )
        assert result.exit_code == 0, result.output
        assert "Created" in result.output

    def test_init_mismatch(self, invoke) -> None:
        result = invoke(
            "init", "alice", env={"VAULTSYNC_PASSPHRASE": PASSPHRASE, "VAULTSYNC_CONFIRM": "nope!!"},
        )
        assert result.exit_code == 1
        assert "do not match" in result.output

    def test_init_twice(self, initialized) -> None:
        result = initialized("init", "alice")
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_unlock(self, initialized) -> None:
        result = initialized("unlock")
        assert result.exit_code == 0
        assert "Unlocked" in result.output
        assert "Local only" in result.output

    def test_unlock_wrong_passphrase(self, initialized) -> None:
        result = initialized("unlock", env={"VAULTSYNC_PASSPHRASE": "wrong one"})
        assert result.exit_code == 1
        assert "Invalid master key" in result.output

    def test_unlock_without_account(self, invoke) -> None:
        result = invoke("unlock")
        assert result.exit_code == 1
        assert "No active account" in result.output

    def test_status(self, initialized) -> None:
        result = initialized("status", env={})
        assert result.exit_code == 0
        assert "Version" in result.output
        assert "never synced" in result.output

    def test_wipe(self, initialized) -> None:
        result = initialized("wipe", "--yes")
        assert result.exit_code == 0
        assert "Wiped" in result.output
        assert initialized("status", "--account", "alice").exit_code == 1


class TestRecordCommands:
    """add, list, edit, rm, reveal, label."""

    def test_add_and_list(self, initialized) -> None:
        result = initialized("add", "mail", "--login", "alice", "--secret", "topsecret42")
        assert result.exit_code == 0, result.output
        assert "Added" in result.output

        listing = initialized("list")
        assert listing.exit_code == 0
        assert "mail" in listing.output
        assert "topsecret42" not in listing.output

        shown = initialized("list", "--show")
        assert "topsecret42" in shown.output

    def test_add_prompts_secret(self, initialized) -> None:
        result = initialized("add", "bank", input="hidden-value\n")
        assert result.exit_code == 0, result.output
        assert "hidden-value" in initialized("list", "--show").output

    def test_edit(self, initialized) -> None:
        initialized("add", "mail", "--secret", "one")
        result = initialized("edit", "1", "--login", "new-login")
        assert result.exit_code == 0
        assert "new-login" in initialized("list").output

    def test_edit_nothing(self, initialized) -> None:
        initialized("add", "mail", "--secret", "one")
        result = initialized("edit", "1")
        assert "Nothing to change" in result.output

    def test_rm(self, initialized) -> None:
        initialized("add", "mail", "--secret", "one")
        result = initialized("rm", "1", "--yes")
        assert result.exit_code == 0
        assert "Deleted" in result.output
        assert "No records" in initialized("list").output

    def test_rm_out_of_range(self, initialized) -> None:
        result = initialized("rm", "4")
        assert result.exit_code == 1
        assert "No record #4" in result.output

    def test_rm_asks_first(self, initialized) -> None:
        initialized("add", "mail", "--secret", "one")
        declined = initialized("rm", "1", input="n\n")
        assert declined.exit_code == 0
        assert "Aborted" in declined.output
        assert "No records" not in initialized("list").output

        accepted = initialized("rm", "1", input="y\n")
        assert "Deleted" in accepted.output

    def test_rm_without_confirm_flag(self, initialized) -> None:
        initialized("add", "mail", "--secret", "one")
        initialized("set", "delete_without_confirm", "true")
        result = initialized("rm", "1")
        assert result.exit_code == 0
        assert "Deleted" in result.output

    def test_label_rm_asks_first(self, initialized) -> None:
        result = initialized("label", "rm", "Games", input="n\n")
        assert "Aborted" in result.output
        assert "Games" in initialized("list").output

    def test_list_search(self, initialized) -> None:
        initialized("add", "inbox", "--login", "alice", "--secret", "one", "--category", "Email")
        initialized("add", "piggy", "--note", "salary account", "--secret", "two", "--category", "Banks")
        initialized("add", "steam", "--secret", "three", "--category", "Games")

        found = initialized("list", "--search", "SALARY").output
        assert "piggy" in found
        assert "inbox" not in found

        by_labels = initialized("list", "--label", "email", "--label", "games").output
        assert "inbox" in by_labels
        assert "steam" in by_labels
        assert "piggy" not in by_labels

        assert "No records" in initialized("list", "--search", "nothing").output

    def test_reveal(self, initialized) -> None:
        initialized("add", "mail", "--secret", "topsecret42")
        assert "shown" in initialized("reveal", "1").output
        assert "topsecret42" in initialized("list").output

    def test_labels(self, initialized) -> None:
        assert initialized("label", "add", "Travel").exit_code == 0
        duplicate = initialized("label", "add", "travel")
        assert duplicate.exit_code == 1
        assert "already exists" in duplicate.output
        assert initialized("label", "rm", "Games", "--yes").exit_code == 0
        listing = initialized("list").output
        assert "Travel" in listing
        assert "Games" not in listing

    def test_set_flag(self, initialized) -> None:
        result = initialized("set", "delete_without_confirm", "true")
        assert result.exit_code == 0
        assert "delete_without_confirm = True" in result.output


class TestSyncCommands:
    """Folder remote end to end."""

    def test_link_local_writes_config(self, invoke, cli_home, tmp_path) -> None:
        result = invoke("sync", "link-local", str(tmp_path / "remote"), env={})
        assert result.exit_code == 0
        config = load_config(tmp_path / "home")
        assert config.backend == BackendType.LOCAL
        assert config.local_remote_path == str((tmp_path / "remote").resolve())

    def test_signin_without_remote(self, invoke) -> None:
        result = invoke("signin", "--account", "alice@example.com")
        assert result.exit_code == 1
        assert "No remote configured" in result.output

    def test_signin_then_sync(self, invoke, tmp_path) -> None:
        invoke("sync", "link-local", str(tmp_path / "remote"), env={})
        result = invoke("signin", "--account", "alice@example.com")
        assert result.exit_code == 0, result.output
        assert "new account" in result.output
        assert (tmp_path / "remote" / "password_manager_data.json").exists()

        again = invoke("sync", "now")
        assert again.exit_code == 0, again.output
        assert "up to date" in again.output

        invoke("add", "mail", "--secret", "pw")
        status = invoke("sync", "status")
        assert "v2" in status.output

    def test_sync_local_only(self, initialized) -> None:
        result = initialized("sync", "now")
        assert result.exit_code == 0
        assert "Local only" in result.output

    def test_unlink(self, invoke, tmp_path) -> None:
        invoke("sync", "link-local", str(tmp_path / "remote"), env={})
        invoke("signin", "--account", "alice@example.com")
        result = invoke("sync", "unlink")
        assert result.exit_code == 0
        assert "Local only" in result.output
        assert "sign in to a remote first" in invoke("sync", "now").output


class TestLogCommand:
    def test_log(self, initialized) -> None:
        initialized("add", "mail", "--secret", "pw")
        result = initialized("log", env={})
        assert result.exit_code == 0
        assert "SAVE" in result.output
        assert "ACCOUNT_CREATE" in result.output

    def test_log_empty(self, invoke) -> None:
        result = invoke("log", env={})
        assert "No events" in result.output

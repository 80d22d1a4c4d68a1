"""Tests for the journal command-line interface."""

import re
from datetime import datetime, timezone

import pytest
from typer.testing import CliRunner

from cryptjournal.cli import app
from cryptjournal.config import load_config

from tests.conftest import ALICE, BOB


runner = CliRunner()


def invoke(*args, input=None):
    return runner.invoke(app, list(args), input=input)


def _short_id(output: str) -> str:
    match = re.search(r"Entry added: ([0-9a-f]{8})", output)
    assert match, output
    return match.group(1)


@pytest.fixture
def personal(config_dir, tmp_path):
    """A configured default journal named 'personal' using the fake provider."""
    path = tmp_path / "personal"
    result = invoke("init", "-n", "personal", "-p", str(path), "-r", ALICE, "--provider", "fake")
    assert result.exit_code == 0, result.output
    return path


class TestInit:
    """journal init"""

    def test_creates_and_registers(self, personal, config_dir):
        assert (personal / ".sops.yaml").exists()
        config = load_config(config_dir)
        assert config.default_journal == "personal"
        assert config.get_journal("personal").provider == "fake"

    def test_output(self, config_dir, tmp_path):
        result = invoke("init", "-n", "j", "-p", str(tmp_path / "j"), "-r", f"{ALICE},{BOB}", "--provider", "fake")
        assert result.exit_code == 0
        assert "Journal 'j' initialized at" in result.output
        assert "Recipients: 2" in result.output

    def test_requires_recipients(self, config_dir, tmp_path):
        result = invoke("init", "-n", "j", "-p", str(tmp_path / "j"), "-r", " , ", "--provider", "fake")
        assert result.exit_code == 1
        assert "at least one public key" in result.output

    def test_unknown_provider(self, config_dir, tmp_path):
        result = invoke("init", "-n", "j", "-p", str(tmp_path / "j"), "-r", ALICE, "--provider", "rot13")
        assert result.exit_code == 1
        assert "Unknown encryption provider" in result.output
        assert not (tmp_path / "j" / ".sops.yaml").exists()

    def test_reinit_updates_path(self, personal, config_dir, tmp_path):
        moved = tmp_path / "moved"
        result = invoke("init", "-n", "personal", "-p", str(moved), "-r", ALICE, "--provider", "fake")
        assert result.exit_code == 0
        assert "already exists" in result.output
        assert load_config(config_dir).get_journal("personal").path == moved


class TestEntries:
    """add / show / update / delete / list"""

    def test_add_and_show(self, personal):
        result = invoke("add", "Shipped", "the", "release", "-t", "work,launch")
        assert result.exit_code == 0, result.output
        assert "Tags: work, launch" in result.output
        short = _short_id(result.output)

        result = invoke("show", short)
        assert result.exit_code == 0, result.output
        assert "Shipped the release" in result.output
        assert "Tags: work, launch" in result.output

    def test_add_repeated_tag_options(self, personal):
        result = invoke("add", "x", "-t", "a,b", "-t", "c", "-t", "a")
        assert "Tags: a, b, c" in result.output

    def test_add_from_stdin(self, personal):
        result = invoke("add", "-", input="Written elsewhere\nsecond line\n")
        assert result.exit_code == 0, result.output
        short = _short_id(result.output)
        assert "second line" in invoke("show", short).output

    def test_add_requires_text(self, personal):
        result = invoke("add")
        assert result.exit_code == 1
        assert "entry text is required" in result.output

    def test_show_short_prefix(self, personal):
        short = _short_id(invoke("add", "x").output)
        result = invoke("show", short[:7])
        assert result.exit_code == 1
        assert "too short" in result.output

    def test_show_unknown(self, personal):
        result = invoke("show", "deadbeef")
        assert result.exit_code == 1
        assert "entry not found" in result.output

    def test_update(self, personal):
        short = _short_id(invoke("add", "draft", "-t", "old").output)
        result = invoke("update", short, "final", "text", "-t", "new")
        assert result.exit_code == 0, result.output
        shown = invoke("show", short).output
        assert "final text" in shown
        assert "Tags: new" in shown

    def test_update_clear_tags(self, personal):
        short = _short_id(invoke("add", "body", "-t", "old").output)
        assert invoke("update", short, "--clear-tags").exit_code == 0
        assert "Tags:" not in invoke("show", short).output

    def test_update_needs_changes(self, personal):
        short = _short_id(invoke("add", "body").output)
        result = invoke("update", short)
        assert result.exit_code == 1

    def test_delete(self, personal):
        short = _short_id(invoke("add", "bye").output)
        result = invoke("delete", short)
        assert result.exit_code == 0
        assert f"Entry {short} deleted" in result.output
        assert invoke("show", short).exit_code == 1

    def test_list(self, personal):
        assert "No entries found" in invoke("list").output
        first = _short_id(invoke("add", "one").output)
        second = _short_id(invoke("add", "two", "-t", "x").output)

        output = invoke("list").output
        assert first in output and second in output
        assert "Tags: x" in output
        assert "one" not in output

        limited = invoke("list", "-n", "1").output
        assert len(re.findall(r"^\[\d{4}-\d\d-\d\d \d\d:\d\d\] ", limited, re.MULTILINE)) == 1


class TestSearch:
    """journal search"""

    @pytest.fixture
    def entries(self, personal):
        invoke("add", "Planning", "-t", "work,meeting")
        invoke("add", "Groceries", "-t", "home")
        return personal

    def test_by_tag(self, entries):
        result = invoke("search", "--tag", "home")
        assert result.exit_code == 0
        assert "Found 1 entries:" in result.output
        assert "Groceries" in result.output

    def test_by_tags(self, entries):
        result = invoke("search", "--tags", "work, meeting")
        assert "Planning" in result.output
        assert "Groceries" not in result.output

    def test_on_today(self, entries):
        today = datetime.now(timezone.utc).date().isoformat()
        result = invoke("search", "--on", today)
        assert "Found 2 entries:" in result.output

    def test_last_days(self, entries):
        assert "Found 2 entries:" in invoke("search", "--last", "1").output

    def test_from_without_to(self, entries):
        assert "Found 2 entries:" in invoke("search", "--from", "2000-01-01").output

    def test_to_without_from(self, entries):
        today = datetime.now(timezone.utc).date().isoformat()
        assert "Found 2 entries:" in invoke("search", "--to", today).output
        assert "No entries found" in invoke("search", "--to", "2000-01-01").output

    def test_no_matches(self, entries):
        result = invoke("search", "--tag", "nothing")
        assert result.exit_code == 0
        assert "No entries found" in result.output

    def test_invalid_date(self, entries):
        result = invoke("search", "--on", "15/01/2024")
        assert result.exit_code == 1
        assert "YYYY-MM-DD" in result.output

    def test_requires_criteria(self, entries):
        result = invoke("search")
        assert result.exit_code == 1
        assert "specify search criteria" in result.output


class TestMaintenance:
    """rebuild / re-encrypt / recipients"""

    def test_rebuild(self, personal):
        invoke("add", "one")
        invoke("add", "two")
        (personal / "index.yaml").unlink()
        result = invoke("rebuild")
        assert result.exit_code == 0, result.output
        assert "Index rebuilt successfully: 2 entries" in result.output
        assert "Found 2 entries" in invoke("search", "--last", "1").output

    def test_add_and_remove_recipient(self, personal):
        invoke("add", "shared")
        result = invoke("add-recipient", BOB)
        assert result.exit_code == 0, result.output
        assert "Successfully added recipient" in result.output
        assert invoke("recipients").output.split() == [ALICE, BOB]

        result = invoke("remove-recipient", ALICE)
        assert result.exit_code == 0, result.output
        assert invoke("recipients").output.split() == [BOB]

    def test_remove_last_recipient(self, personal):
        result = invoke("remove-recipient", ALICE)
        assert result.exit_code == 1
        assert "cannot remove last recipient" in result.output

    def test_re_encrypt(self, personal):
        invoke("add", "one")
        result = invoke("re-encrypt")
        assert result.exit_code == 0, result.output
        assert "Files re-encrypted: 1/1" in result.output


class TestJournals:
    """Multiple journals and their configuration."""

    @pytest.fixture
    def two(self, personal, tmp_path):
        result = invoke("init", "-n", "work", "-p", str(tmp_path / "work"), "-r", ALICE, "--provider", "fake")
        assert result.exit_code == 0, result.output
        return personal

    def test_no_journals(self, config_dir):
        result = invoke("list")
        assert result.exit_code == 1
        assert "no journals configured" in result.output
        assert "journal init" in result.output

    def test_corrupted_config(self, config_dir):
        config_dir.mkdir(parents=True)
        (config_dir / "config.toml").write_text('config = "oops"\n')
        result = invoke("list")
        assert result.exit_code == 1
        assert "'config' is not a table" in result.output

    def test_list_journals(self, two):
        output = invoke("list-journals").output
        assert "personal (default)" in output
        assert "work" in output
        assert "Recipients: 1" in output

    def test_list_journals_empty(self, config_dir):
        assert "No journals configured" in invoke("list-journals").output

    def test_select_journal(self, two):
        invoke("add", "for work", "-j", "work")
        invoke("-j", "work", "add", "also work")
        assert "No entries found" in invoke("list").output
        assert "Found 2 entries" in invoke("search", "--last", "1", "-j", "work").output

    def test_unknown_journal(self, two):
        result = invoke("list", "-j", "nope")
        assert result.exit_code == 1
        assert "journal nope not found" in result.output

    def test_set_default(self, two, config_dir):
        result = invoke("set-default", "work")
        assert result.exit_code == 0
        assert load_config(config_dir).default_journal == "work"
        assert invoke("set-default", "nope").exit_code == 1

    def test_remove_journal(self, two, config_dir):
        result = invoke("remove-journal", "personal")
        assert result.exit_code == 1
        assert "cannot remove default journal" in result.output

        result = invoke("remove-journal", "work")
        assert result.exit_code == 0
        assert load_config(config_dir).list_journals() == ["personal"]


def test_version():
    result = invoke("--version")
    assert result.exit_code == 0
    assert result.output.startswith("journal ")

"""Tests for the .sops.yaml recipient directory."""

import pytest
import yaml

from cryptjournal.errors import RecipientError
from cryptjournal.recipients import (
    ENTRIES_PATH_REGEX,
    INDEX_PATH_REGEX,
    RecipientDirectory,
    parse_recipient_list,
)

from tests.conftest import ALICE, BOB, CAROL


@pytest.fixture
def directory(tmp_path):
    d = RecipientDirectory(tmp_path)
    d.write([ALICE, BOB])
    return d


class TestReadWrite:
    """Reading and writing the rule document."""

    def test_roundtrip(self, directory):
        assert directory.read() == [ALICE, BOB]

    def test_rules_cover_index_and_entries(self, directory):
        doc = yaml.safe_load(directory.path.read_text())
        rules = doc["creation_rules"]
        assert [r["path_regex"] for r in rules] == [INDEX_PATH_REGEX, ENTRIES_PATH_REGEX]
        assert all(r["age"] == f"{ALICE},{BOB}" for r in rules)

    def test_write_dedupes(self, tmp_path):
        d = RecipientDirectory(tmp_path)
        assert d.write([ALICE, f" {ALICE} ", BOB, ""]) == [ALICE, BOB]
        assert d.read() == [ALICE, BOB]

    def test_write_empty_rejected(self, tmp_path):
        with pytest.raises(RecipientError, match="no recipients provided"):
            RecipientDirectory(tmp_path).write([])

    def test_read_missing(self, tmp_path):
        with pytest.raises(RecipientError, match="not found"):
            RecipientDirectory(tmp_path).read()

    def test_read_trims_hand_edited_list(self, tmp_path):
        (tmp_path / ".sops.yaml").write_text(
            f"creation_rules:\n  - path_regex: x\n    age: ' {ALICE} , {BOB} ,'\n"
        )
        assert RecipientDirectory(tmp_path).read() == [ALICE, BOB]

    def test_read_no_rules(self, tmp_path):
        (tmp_path / ".sops.yaml").write_text("creation_rules: []\n")
        with pytest.raises(RecipientError, match="no creation rules"):
            RecipientDirectory(tmp_path).read()

    def test_read_no_recipients(self, tmp_path):
        (tmp_path / ".sops.yaml").write_text("creation_rules:\n  - path_regex: x\n    age: ''\n")
        with pytest.raises(RecipientError, match="no age recipients"):
            RecipientDirectory(tmp_path).read()


class TestPrepare:
    """Computing new recipient sets without writing."""

    def test_prepare_add(self, directory):
        assert directory.prepare_add_recipient(CAROL) == [ALICE, BOB, CAROL]
        assert directory.read() == [ALICE, BOB]

    def test_prepare_add_duplicate(self, directory):
        with pytest.raises(RecipientError, match="already exists"):
            directory.prepare_add_recipient(BOB)

    def test_prepare_remove(self, directory):
        assert directory.prepare_remove_recipient(ALICE) == [BOB]
        assert directory.read() == [ALICE, BOB]

    def test_prepare_remove_unknown(self, directory):
        with pytest.raises(RecipientError, match="recipient not found"):
            directory.prepare_remove_recipient(CAROL)

    def test_prepare_remove_last(self, tmp_path):
        d = RecipientDirectory(tmp_path)
        d.write([ALICE])
        with pytest.raises(RecipientError, match="cannot remove last recipient"):
            d.prepare_remove_recipient(ALICE)


class TestBackup:
    """Backup, restore, discard."""

    def test_restore_is_byte_identical(self, directory):
        original = directory.path.read_bytes()
        backup = directory.backup()
        assert directory.has_backup()

        directory.write([CAROL])
        directory.restore(backup)
        assert directory.path.read_bytes() == original

        directory.discard_backup(backup)
        assert not directory.has_backup()

    def test_backup_without_rules(self, tmp_path):
        with pytest.raises(RecipientError):
            RecipientDirectory(tmp_path).backup()

    def test_restore_missing_backup(self, directory):
        with pytest.raises(RecipientError, match="failed to restore"):
            directory.restore(directory.backup_path)


def test_parse_recipient_list():
    assert parse_recipient_list(f"{ALICE}, {BOB},,{ALICE}") == [ALICE, BOB]
    assert parse_recipient_list("") == []

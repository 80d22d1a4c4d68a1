"""
Recipient directory for a journal.

The set of age public keys allowed to decrypt a journal lives in the
journal's ``.sops.yaml``. Every rule carries the same comma-joined list:
one rule covers the index file, one covers the record files.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Iterable

import yaml

from .errors import RecipientError

logger = logging.getLogger(__name__)

SOPS_CONFIG_FILENAME = ".sops.yaml"
BACKUP_SUFFIX = ".backup"

INDEX_PATH_REGEX = r"index\.yaml$"
ENTRIES_PATH_REGEX = r"entries/.*\.yaml$"


def normalize_recipients(recipients: Iterable[str]) -> list[str]:
    """Trim, drop empties and duplicates, preserve order."""
    result: list[str] = []
    for r in recipients:
        r = r.strip()
        if r and r not in result:
            result.append(r)
    return result


def parse_recipient_list(value: str) -> list[str]:
    """Split a comma-separated recipient list."""
    return normalize_recipients(value.split(","))


class RecipientDirectory:
    """
    Reads and writes the recipient rules of one journal.

    Also owns the backup file used by recipient rotation: a copy of the
    rules taken before they change, restored if re-encryption fails.
    """

    def __init__(self, journal_path: Path):
        self._journal_path = Path(journal_path)

    @property
    def path(self) -> Path:
        return self._journal_path / SOPS_CONFIG_FILENAME

    @property
    def backup_path(self) -> Path:
        return self._journal_path / (SOPS_CONFIG_FILENAME + BACKUP_SUFFIX)

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> list[str]:
        """
        Current recipients, in configured order.

        Raises:
            RecipientError: If the file is missing, unparseable, or lists no recipients
        """
        try:
            data = self.path.read_bytes()
        except FileNotFoundError as e:
            raise RecipientError(
                f"{SOPS_CONFIG_FILENAME} not found in {self._journal_path}; "
                "initialize the journal with recipients first"
            ) from e
        except OSError as e:
            raise RecipientError(f"failed to read {SOPS_CONFIG_FILENAME}: {e}") from e

        try:
            doc = yaml.safe_load(data) or {}
        except yaml.YAMLError as e:
            raise RecipientError(f"failed to parse {SOPS_CONFIG_FILENAME}: {e}") from e

        rules = doc.get("creation_rules") if isinstance(doc, dict) else None
        if not rules:
            raise RecipientError(f"no creation rules found in {SOPS_CONFIG_FILENAME}")

        recipients = parse_recipient_list(str(rules[0].get("age") or ""))
        if not recipients:
            raise RecipientError(f"no age recipients found in {SOPS_CONFIG_FILENAME}")
        return recipients

    def write(self, recipients: Iterable[str]) -> list[str]:
        """Replace the recipient rules. Returns the normalized list written."""
        recipients = normalize_recipients(recipients)
        if not recipients:
            raise RecipientError("no recipients provided")

        joined = ",".join(recipients)
        doc = {
            "creation_rules": [
                {"path_regex": INDEX_PATH_REGEX, "age": joined},
                {"path_regex": ENTRIES_PATH_REGEX, "age": joined},
            ]
        }
        data = yaml.safe_dump(doc, sort_keys=False, default_flow_style=False)

        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self._journal_path.mkdir(parents=True, exist_ok=True)
            tmp.write_text(data, encoding="utf-8")
            os.chmod(tmp, 0o644)
            os.replace(tmp, self.path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise RecipientError(f"failed to write {SOPS_CONFIG_FILENAME}: {e}") from e
        logger.info("Recipients written to %s (%d)", self.path, len(recipients))
        return recipients

    # -------------------------------------------------------------------------
    # Change planning
    # -------------------------------------------------------------------------

    def prepare_add_recipient(self, recipient: str) -> list[str]:
        """Recipient list with *recipient* appended (not written)."""
        recipient = recipient.strip()
        if not recipient:
            raise RecipientError("recipient is required")
        current = self.read()
        if recipient in current:
            raise RecipientError("recipient already exists")
        return current + [recipient]

    def prepare_remove_recipient(self, recipient: str) -> list[str]:
        """Recipient list without *recipient* (not written)."""
        recipient = recipient.strip()
        current = self.read()
        if recipient not in current:
            raise RecipientError("recipient not found")
        remaining = [r for r in current if r != recipient]
        if not remaining:
            raise RecipientError("cannot remove last recipient")
        return remaining

    # -------------------------------------------------------------------------
    # Backup for rotation
    # -------------------------------------------------------------------------

    def backup(self) -> Path:
        """Copy the current rules to the backup file, byte for byte."""
        if not self.path.exists():
            raise RecipientError(f"{SOPS_CONFIG_FILENAME} not found in {self._journal_path}")
        try:
            shutil.copy2(self.path, self.backup_path)
        except OSError as e:
            raise RecipientError(f"failed to back up {SOPS_CONFIG_FILENAME}: {e}") from e
        return self.backup_path

    def restore(self, backup_path: Path) -> None:
        """Put the backed-up rules back in place."""
        try:
            shutil.copy2(backup_path, self.path)
        except OSError as e:
            raise RecipientError(f"failed to restore {SOPS_CONFIG_FILENAME} from {backup_path}: {e}") from e

    def discard_backup(self, backup_path: Path) -> None:
        try:
            Path(backup_path).unlink(missing_ok=True)
        except OSError as e:
            raise RecipientError(f"failed to remove backup {backup_path}: {e}") from e

    def has_backup(self) -> bool:
        return self.backup_path.exists()

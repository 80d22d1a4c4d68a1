"""
Shared pytest fixtures for journal tests.

Provides a fake encryption provider so no test needs the sops binary.
"""

import base64
from pathlib import Path
from typing import Sequence

import pytest
import yaml

from cryptjournal.journal import initialize_journal
from cryptjournal.providers.base import get_registry


ALICE = "age1alice0000000000000000000000000000000000000000000000000000"
BOB = "age1bob000000000000000000000000000000000000000000000000000000"
CAROL = "age1carol00000000000000000000000000000000000000000000000000000"


def _peek(plaintext: bytes):
    try:
        return yaml.safe_load(plaintext)
    except yaml.YAMLError:
        return None


def _is_index(doc) -> bool:
    return isinstance(doc, dict) and isinstance(doc.get("entries"), dict)


class FakeEncryptionProvider:
    """
    Deterministic stand-in for sops.

    Ciphertext is a YAML envelope naming its recipients with the plaintext
    base64-encoded inside. Decryption succeeds only if one of the envelope's
    recipients is among ``identities`` (None means every identity is held).

    Failures can be injected per record id or for the index.
    """

    def __init__(self, identities: Sequence[str] | None = None):
        self.identities = None if identities is None else set(identities)
        self.fail_encrypt_ids: set[str] = set()
        self.fail_decrypt_ids: set[str] = set()
        self.fail_index = False
        self.encrypt_calls = 0
        self.decrypt_calls = 0

    def encrypt(self, plaintext: bytes, recipients: Sequence[str]) -> bytes:
        self.encrypt_calls += 1
        doc = _peek(plaintext)
        if _is_index(doc):
            if self.fail_index:
                raise RuntimeError("simulated index encryption failure")
        elif isinstance(doc, dict) and doc.get("id") in self.fail_encrypt_ids:
            raise RuntimeError(f"simulated encryption failure for {doc['id']}")

        envelope = {
            "fake_sops": {"recipients": list(recipients)},
            "payload": base64.b64encode(plaintext).decode("ascii"),
        }
        return yaml.safe_dump(envelope, sort_keys=False).encode("utf-8")

    def decrypt(self, ciphertext: bytes) -> bytes:
        self.decrypt_calls += 1
        envelope = yaml.safe_load(ciphertext)
        if not isinstance(envelope, dict) or "fake_sops" not in envelope:
            raise RuntimeError("not an encrypted document")

        recipients = set(envelope["fake_sops"]["recipients"])
        if self.identities is not None and not (self.identities & recipients):
            raise RuntimeError("no identity could decrypt the data key")

        plaintext = base64.b64decode(envelope["payload"])
        doc = _peek(plaintext)
        if isinstance(doc, dict) and doc.get("id") in self.fail_decrypt_ids:
            raise RuntimeError(f"simulated decryption failure for {doc['id']}")
        return plaintext


def envelope_recipients(path: Path) -> list[str]:
    """Recipients a fake ciphertext file was encrypted for."""
    return yaml.safe_load(path.read_bytes())["fake_sops"]["recipients"]


# Lets configured journals (and the CLI) select the fake by name
get_registry().register_encryption("fake", FakeEncryptionProvider)


@pytest.fixture
def provider():
    """A fake provider that holds every identity."""
    return FakeEncryptionProvider()


@pytest.fixture
def journal_path(tmp_path):
    return tmp_path / "journal"


@pytest.fixture
def journal(journal_path, provider):
    """An initialized journal encrypted for ALICE."""
    j = initialize_journal(journal_path, [ALICE], provider)
    yield j
    j.close()


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    """Point the global configuration (and error log) at a temp directory."""
    path = tmp_path / "config"
    monkeypatch.setenv("JOURNAL_CONFIG_DIR", str(path))
    monkeypatch.delenv("JOURNAL_NAME", raising=False)
    return path

"""
Encryption provider backed by the ``sops`` binary with age recipients.

Plaintext is passed on stdin and never touches the disk. Decryption keys
come from the environment the way sops normally finds them
(``SOPS_AGE_KEY_FILE``, ``SOPS_AGE_KEY``, or the default keys.txt).
"""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from .base import get_registry

logger = logging.getLogger(__name__)

# sops reads the document from this path; stdin is a pipe we fill
STDIN_PATH = "/dev/stdin"


class SopsEncryption:
    """
    Runs ``sops --encrypt`` / ``sops --decrypt`` as a subprocess.

    Args:
        binary: sops executable name or path
        age_key_file: Identity file exported as SOPS_AGE_KEY_FILE
        timeout: Seconds before a sops invocation is abandoned
    """

    def __init__(
        self,
        binary: str = "sops",
        age_key_file: Optional[str] = None,
        timeout: float = 60.0,
    ):
        self.binary = binary
        self.age_key_file = str(Path(age_key_file).expanduser()) if age_key_file else None
        self.timeout = timeout

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self.age_key_file:
            env["SOPS_AGE_KEY_FILE"] = self.age_key_file
        return env

    def _run(self, args: list[str], data: bytes, action: str) -> bytes:
        cmd = [self.binary, *args, "--input-type", "yaml", "--output-type", "yaml", STDIN_PATH]
        logger.debug("Running %s", " ".join(cmd[:2]))
        try:
            proc = subprocess.run(
                cmd,
                input=data,
                capture_output=True,
                env=self._env(),
                timeout=self.timeout,
                check=True,
            )
        except FileNotFoundError as e:
            raise RuntimeError(
                f"sops executable not found: {self.binary!r}. Install sops and ensure it is on PATH."
            ) from e
        except subprocess.TimeoutExpired as e:
            raise RuntimeError(f"sops {action} timed out after {self.timeout}s") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or b"").decode("utf-8", errors="replace").strip()
            raise RuntimeError(f"sops {action} failed (exit {e.returncode}): {stderr}") from e
        return proc.stdout

    def encrypt(self, plaintext: bytes, recipients: Sequence[str]) -> bytes:
        if not recipients:
            raise RuntimeError("no recipients to encrypt for")
        return self._run(["--encrypt", "--age", ",".join(recipients)], plaintext, "encrypt")

    def decrypt(self, ciphertext: bytes) -> bytes:
        return self._run(["--decrypt"], ciphertext, "decrypt")

    def available(self) -> bool:
        """True if the sops binary can be found."""
        return shutil.which(self.binary) is not None


# Register providers
_registry = get_registry()
_registry.register_encryption("sops", SopsEncryption)

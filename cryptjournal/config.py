"""
Configuration management for journals.

The configuration is stored as a TOML file in the configuration directory
(``$JOURNAL_CONFIG_DIR``, default ``~/.journal/``). It names every known
journal, where it lives, and which encryption provider it uses.
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import tomli_w

from .errors import ConfigError, NotFoundError


CONFIG_FILENAME = "config.toml"
CONFIG_VERSION = 1
DEFAULT_PROVIDER = "sops"


def get_config_dir() -> Path:
    """Configuration directory, respecting JOURNAL_CONFIG_DIR."""
    env_dir = os.environ.get("JOURNAL_CONFIG_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".journal"


def expand_path(path: str | Path) -> Path:
    """Expand ``~`` and make absolute (without resolving symlinks)."""
    return Path(os.path.abspath(Path(path).expanduser()))


@dataclass
class JournalConfig:
    """Configuration for a single journal."""
    name: str
    path: Path
    provider: str = DEFAULT_PROVIDER
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class Config:
    """All configured journals and the default one."""
    config_dir: Path
    version: int = CONFIG_VERSION
    default_journal: str = ""
    journals: dict[str, JournalConfig] = field(default_factory=dict)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.config_dir / CONFIG_FILENAME

    def add_journal(self, journal: JournalConfig) -> None:
        """Add a journal. The first journal added becomes the default."""
        if not journal.name:
            raise ConfigError("journal name is required")
        if journal.name in self.journals:
            raise ConfigError(f"journal {journal.name} already exists")
        self.journals[journal.name] = journal
        if len(self.journals) == 1:
            self.default_journal = journal.name

    def get_journal(self, name: str) -> JournalConfig:
        if not self.journals:
            raise NotFoundError("no journals configured")
        journal = self.journals.get(name)
        if journal is None:
            raise NotFoundError(f"journal {name} not found")
        return journal

    def get_default_journal(self) -> JournalConfig:
        if not self.journals:
            raise NotFoundError("no journals configured")
        if not self.default_journal:
            raise NotFoundError("no default journal set")
        return self.get_journal(self.default_journal)

    def set_default_journal(self, name: str) -> None:
        self.get_journal(name)
        self.default_journal = name

    def remove_journal(self, name: str) -> JournalConfig:
        """Forget a journal (its files are left alone)."""
        journal = self.get_journal(name)
        if self.default_journal == name:
            raise ConfigError(
                f"cannot remove default journal {name}; use set-default to change default first"
            )
        del self.journals[name]
        return journal

    def list_journals(self) -> list[str]:
        return sorted(self.journals)


def load_config(config_dir: Optional[Path] = None) -> Config:
    """
    Load configuration from the configuration directory.

    A missing file is an empty configuration.

    Raises:
        ConfigError: If the file is unreadable, empty, unparseable, or from a newer version
    """
    config_dir = Path(config_dir) if config_dir is not None else get_config_dir()
    config_path = config_dir / CONFIG_FILENAME

    if not config_path.exists():
        return Config(config_dir=config_dir)

    try:
        raw = config_path.read_bytes()
    except OSError as e:
        raise ConfigError(f"failed to read config {config_path}: {e}") from e
    if not raw.strip():
        raise ConfigError(f"config file is empty (possibly corrupted): {config_path}")

    try:
        data = tomllib.loads(raw.decode("utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
        raise ConfigError(f"failed to parse config {config_path}: {e}") from e

    # Validate version
    section = data.get("config", {})
    if not isinstance(section, dict):
        raise ConfigError(f"config file is corrupted: 'config' is not a table: {config_path}")
    version = section.get("version", 1)
    if type(version) is not int:
        raise ConfigError(f"config version must be an integer, got {version!r}: {config_path}")
    if version > CONFIG_VERSION:
        raise ConfigError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    journals_section = data.get("journals", {})
    if not isinstance(journals_section, dict):
        raise ConfigError(f"config file is corrupted: 'journals' is not a table: {config_path}")

    journals = {}
    for name, entry in journals_section.items():
        if not isinstance(entry, dict) or not entry.get("path"):
            raise ConfigError(f"journal {name} has no path in {config_path}")
        journals[name] = JournalConfig(
            name=name,
            path=Path(entry["path"]),
            provider=entry.get("provider", DEFAULT_PROVIDER),
            params=dict(entry.get("params", {})),
        )

    return Config(
        config_dir=config_dir,
        version=version,
        default_journal=section.get("default_journal", ""),
        journals=journals,
    )


def save_config(config: Config) -> None:
    """
    Save configuration to the configuration directory.

    Creates the directory if it doesn't exist.
    """

    def journal_to_dict(j: JournalConfig) -> dict:
        d: dict[str, Any] = {"path": str(j.path), "provider": j.provider}
        if j.params:
            d["params"] = dict(j.params)
        return d

    data = {
        "config": {
            "version": config.version,
            "default_journal": config.default_journal,
        },
        "journals": {name: journal_to_dict(j) for name, j in sorted(config.journals.items())},
    }

    tmp = config.config_path.with_name(CONFIG_FILENAME + ".tmp")
    try:
        config.config_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            tomli_w.dump(data, f)
        os.replace(tmp, config.config_path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise ConfigError(f"failed to write config {config.config_path}: {e}") from e

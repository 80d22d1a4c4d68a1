"""
CLI interface for the encrypted journal.

Usage:
    journal init -n personal -p ~/journal -r age1...
    journal add "Shipped the release" -t work
    journal search --tag work
"""

import atexit
import os
import select
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import NoReturn, Optional

import typer
from typing_extensions import Annotated

from .config import DEFAULT_PROVIDER, JournalConfig, expand_path, load_config, save_config
from .errors import JournalError, NotFoundError, RotationError
from .journal import Journal, LoadResult, initialize_journal
from .logging_config import configure_quiet_mode, enable_debug_mode
from .providers.base import get_registry
from .recipients import RecipientDirectory, parse_recipient_list
from .transaction import ReEncryptResult
from .types import MIN_PREFIX_LENGTH, IndexEntry, Record, parse_utc_timestamp


def _has_stdin_data() -> bool:
    """Check if stdin has data available without blocking.

    Returns True only when stdin is a pipe with data ready to read.
    """
    if sys.stdin.isatty():
        return False
    try:
        ready, _, _ = select.select([sys.stdin], [], [], 0)
        return bool(ready)
    except (ValueError, OSError):
        return False


# Quiet by default; JOURNAL_VERBOSE=1 turns on debug output
if os.environ.get("JOURNAL_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"journal {version('cryptjournal')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global --journal selection, overridable per command
_journal_override: Optional[str] = None


def _journal_callback(value: Optional[str]):
    global _journal_override
    _journal_override = value


app = typer.Typer(
    name="journal",
    help="Encrypted, searchable journal.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    journal: Annotated[Optional[str], typer.Option(
        "--journal", "-j",
        envvar="JOURNAL_NAME",
        help="Journal to use (default: the configured default journal)",
        callback=_journal_callback,
        is_eager=True,
    )] = None,
):
    """Encrypted, searchable journal."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

JournalOption = Annotated[
    Optional[str],
    typer.Option(
        "--journal", "-j",
        help="Journal to use (default: the configured default journal)"
    )
]

TagsOption = Annotated[
    Optional[list[str]],
    typer.Option(
        "--tags", "-t",
        help="Tags (comma-separated, repeatable)"
    )
]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _fail(message: object) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


def _get_journal(name: Optional[str]) -> Journal:
    """Open the named journal, or the default one, exiting cleanly on failure."""
    actual = name if name is not None else _journal_override
    try:
        config = load_config()
        if actual:
            journal_config = config.get_journal(actual)
        else:
            journal_config = config.get_default_journal()
        journal = Journal.from_config(journal_config, ops_log_dir=config.config_dir)
    except NotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        typer.echo("Use 'journal init' to create a journal", err=True)
        raise typer.Exit(1)
    except (JournalError, ValueError) as e:
        _fail(e)
    atexit.register(journal.close)
    return journal


def _parse_tags(values: Optional[list[str]]) -> list[str]:
    tags: list[str] = []
    for value in values or ():
        for tag in value.split(","):
            tag = tag.strip()
            if tag and tag not in tags:
                tags.append(tag)
    return tags


def _read_content(words: Optional[list[str]]) -> Optional[str]:
    """Entry body from arguments, or stdin for '-' or piped input."""
    if words == ["-"] or (not words and _has_stdin_data()):
        try:
            return sys.stdin.read()
        except UnicodeDecodeError:
            _fail("stdin contains binary data (not valid UTF-8)")
    if not words:
        return None
    return " ".join(words)


def _parse_day(value: str, flag: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        _fail(f"invalid {flag} date {value!r}: use YYYY-MM-DD")


def _stamp(created_at: datetime, seconds: bool = False) -> str:
    fmt = "%Y-%m-%d %H:%M:%S" if seconds else "%Y-%m-%d %H:%M"
    return parse_utc_timestamp(created_at).strftime(fmt)


def _echo_entry_header(entry: IndexEntry | Record) -> None:
    typer.echo(f"\n[{_stamp(entry.created_at)}] {entry.id[:MIN_PREFIX_LENGTH]}")
    if entry.tags:
        typer.echo(f"Tags: {', '.join(entry.tags)}")


def _echo_failures(result: LoadResult) -> None:
    for failure in result.failures:
        typer.echo(f"Warning: could not load {failure.id[:MIN_PREFIX_LENGTH]}: {failure.error}", err=True)


def _echo_rotation(result: ReEncryptResult) -> None:
    typer.echo("Re-encryption complete")
    typer.echo(f"Files re-encrypted: {result.successful_files}/{result.total_files}")


def _rotation_failed(e: RotationError) -> NoReturn:
    typer.echo(f"Error: {e}", err=True)
    if e.rollback_failed:
        typer.echo("CRITICAL: recipient rules could not be restored; repair the journal manually", err=True)
    raise typer.Exit(1)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def init(
    name: Annotated[str, typer.Option(
        "--name", "-n",
        help="Journal name",
    )],
    path: Annotated[Path, typer.Option(
        "--path", "-p",
        help="Journal directory",
    )],
    recipients: Annotated[str, typer.Option(
        "--recipients", "-r",
        help="Age public keys (comma-separated)",
    )],
    provider: Annotated[str, typer.Option(
        "--provider",
        help="Encryption provider",
    )] = DEFAULT_PROVIDER,
    age_key_file: Annotated[Optional[Path], typer.Option(
        "--age-key-file",
        help="Age identity file used to decrypt (default: sops' own lookup)",
    )] = None,
):
    """
    Initialize a journal and register it in the configuration.

    \b
    Example:
        journal init -n work -p ~/work-journal -r age1key1...,age1key2...
    """
    recipient_list = parse_recipient_list(recipients)
    if not recipient_list:
        _fail("--recipients must name at least one public key")

    journal_path = expand_path(path)
    params = {"age_key_file": str(expand_path(age_key_file))} if age_key_file else {}

    try:
        config = load_config()
        encryption = get_registry().create_encryption(provider, params)
        journal = initialize_journal(journal_path, recipient_list, encryption, name=name)
        journal.close()

        existing = config.journals.get(name)
        if existing is not None:
            typer.echo(f"Warning: A journal named '{name}' already exists at {existing.path}", err=True)
            typer.echo(f"Updating journal location to: {journal_path}", err=True)
            existing.path = journal_path
            existing.provider = provider
            existing.params = params
        else:
            config.add_journal(JournalConfig(name=name, path=journal_path, provider=provider, params=params))
        save_config(config)
    except (JournalError, ValueError) as e:
        _fail(e)

    typer.echo(f"Journal '{name}' initialized at {journal_path}")
    typer.echo(f"Recipients: {len(recipient_list)}")
    typer.echo("\nNext steps:")
    typer.echo("1. Ensure SOPS_AGE_KEY_FILE environment variable is set")
    typer.echo("2. (Optional) Initialize git:")
    typer.echo(f"   cd {journal_path} && git init")
    typer.echo('3. Start adding entries: journal add "Your first entry"')


@app.command()
def add(
    content: Annotated[Optional[list[str]], typer.Argument(
        help="Entry text, or '-' to read stdin",
    )] = None,
    tags: TagsOption = None,
    journal: JournalOption = None,
):
    """
    Add a new entry.

    \b
    Examples:
        journal add "Today was great!"
        journal add "Team meeting" -j work -t meeting,notes
        echo "From a pipe" | journal add -
    """
    text = _read_content(content)
    if text is None or not text.strip():
        _fail("entry text is required")
    tag_list = _parse_tags(tags)

    j = _get_journal(journal)
    try:
        record = j.add(text, tag_list)
    except JournalError as e:
        _fail(e)

    typer.echo(f"Entry added: {record.id[:MIN_PREFIX_LENGTH]}")
    typer.echo(f"Date: {_stamp(record.created_at, seconds=True)}")
    if record.tags:
        typer.echo(f"Tags: {', '.join(record.tags)}")


@app.command()
def show(
    id: Annotated[str, typer.Argument(help="Entry id or unique prefix (8+ characters)")],
    journal: JournalOption = None,
):
    """Show one entry."""
    j = _get_journal(journal)
    try:
        record = j.get(id)
    except JournalError as e:
        _fail(e)

    typer.echo(f"ID: {record.id}")
    typer.echo(f"Date: {_stamp(record.created_at, seconds=True)}")
    if record.tags:
        typer.echo(f"Tags: {', '.join(record.tags)}")
    typer.echo(f"\n{record.content}")


@app.command()
def update(
    id: Annotated[str, typer.Argument(help="Entry id or unique prefix (8+ characters)")],
    content: Annotated[Optional[list[str]], typer.Argument(
        help="New entry text, or '-' to read stdin",
    )] = None,
    tags: TagsOption = None,
    clear_tags: Annotated[bool, typer.Option(
        "--clear-tags",
        help="Remove all tags",
    )] = False,
    journal: JournalOption = None,
):
    """Replace an entry's text and/or tags."""
    text = _read_content(content)
    if clear_tags and tags:
        _fail("--tags and --clear-tags are mutually exclusive")
    new_tags = [] if clear_tags else (_parse_tags(tags) if tags else None)
    if text is None and new_tags is None:
        _fail("specify new text, --tags, or --clear-tags")

    j = _get_journal(journal)
    try:
        record = j.update(id, content=text, tags=new_tags)
    except JournalError as e:
        _fail(e)
    typer.echo(f"Entry {record.id[:MIN_PREFIX_LENGTH]} updated")


@app.command()
def delete(
    id: Annotated[str, typer.Argument(help="Entry id or unique prefix (8+ characters)")],
    journal: JournalOption = None,
):
    """Delete an entry."""
    j = _get_journal(journal)
    try:
        entry = j.delete(id)
    except JournalError as e:
        _fail(e)
    typer.echo(f"Entry {entry.id[:MIN_PREFIX_LENGTH]} deleted")


@app.command("list")
def list_entries(
    count: Annotated[int, typer.Option(
        "--count", "-n",
        help="Number of entries to show (0 for all)",
    )] = 10,
    journal: JournalOption = None,
):
    """List recent entries (newest first)."""
    j = _get_journal(journal)
    entries = j.list_all()
    if count > 0:
        entries = entries[:count]

    if not entries:
        typer.echo("No entries found")
        return
    for entry in entries:
        _echo_entry_header(entry)


@app.command()
def search(
    on: Annotated[Optional[str], typer.Option(
        "--on",
        help="Entries on a specific date (YYYY-MM-DD)",
    )] = None,
    from_date: Annotated[Optional[str], typer.Option(
        "--from",
        help="Entries from date (YYYY-MM-DD)",
    )] = None,
    to_date: Annotated[Optional[str], typer.Option(
        "--to",
        help="Entries up to date (YYYY-MM-DD)",
    )] = None,
    last: Annotated[int, typer.Option(
        "--last",
        help="Entries from the last N days",
    )] = 0,
    tag: Annotated[Optional[str], typer.Option(
        "--tag",
        help="Entries with this tag",
    )] = None,
    tags: Annotated[Optional[str], typer.Option(
        "--tags",
        help="Entries with all of these tags (comma-separated)",
    )] = None,
    journal: JournalOption = None,
):
    """
    Search entries by date, date range, or tags. Dates are UTC days.

    \b
    Examples:
        journal search --on 2024-01-15
        journal search --from 2024-01-01 --to 2024-01-31
        journal search --last 7
        journal search --tags work,meeting
    """
    today = datetime.now(timezone.utc).date()

    if on:
        day = _parse_day(on, "--on")
        j = _get_journal(journal)
        result = j.search_by_date(day)
    elif from_date or to_date:
        end = _parse_day(to_date, "--to") if to_date else today
        j = _get_journal(journal)
        if from_date:
            start = _parse_day(from_date, "--from")
        else:
            start = j.index.earliest_date() or end
        result = j.search_by_date_range(start, end)
    elif last > 0:
        j = _get_journal(journal)
        result = j.search_by_date_range(today - timedelta(days=last), today)
    elif tag:
        j = _get_journal(journal)
        result = j.search_by_tag(tag.strip())
    elif tags:
        tag_list = _parse_tags([tags])
        if not tag_list:
            _fail("--tags needs at least one tag")
        j = _get_journal(journal)
        result = j.search_by_tags(tag_list)
    else:
        _fail("specify search criteria: --on, --from/--to, --last, --tag, or --tags")

    _echo_failures(result)
    if not result.records:
        typer.echo("No entries found")
        return

    typer.echo(f"Found {len(result.records)} entries:")
    for record in result.records:
        _echo_entry_header(record)
        typer.echo(record.content)


@app.command()
def rebuild(
    journal: JournalOption = None,
):
    """Rebuild the search index from all entry files."""
    j = _get_journal(journal)
    typer.echo("Rebuilding index...")
    try:
        result = j.rebuild_index()
    except JournalError as e:
        _fail(e)

    for skipped in result.skipped:
        typer.echo(f"Warning: skipped {skipped.filepath}: {skipped.error}", err=True)
    typer.echo(f"Index rebuilt successfully: {result.indexed} entries")


@app.command("re-encrypt")
def re_encrypt(
    journal: JournalOption = None,
):
    """
    Re-encrypt all entries for the recipients in .sops.yaml.

    Use this after editing recipients by hand.
    """
    j = _get_journal(journal)
    typer.echo(f"Re-encrypting journal '{j.name}'...")
    try:
        result = j.re_encrypt()
    except RotationError as e:
        _rotation_failed(e)
    except JournalError as e:
        _fail(e)
    _echo_rotation(result)


@app.command()
def recipients(
    journal: JournalOption = None,
):
    """List the recipients of a journal."""
    j = _get_journal(journal)
    try:
        keys = j.list_recipients()
    except JournalError as e:
        _fail(e)
    for key in keys:
        typer.echo(key)


@app.command("add-recipient")
def add_recipient(
    key: Annotated[str, typer.Argument(help="Age public key")],
    journal: JournalOption = None,
):
    """Add a recipient and re-encrypt every entry for it."""
    j = _get_journal(journal)
    typer.echo(f"Adding recipient to journal '{j.name}'")
    typer.echo("Re-encrypting all entries with new recipient...")
    try:
        result = j.add_recipient(key)
    except RotationError as e:
        _rotation_failed(e)
    except JournalError as e:
        _fail(e)
    _echo_rotation(result)
    typer.echo(f"Successfully added recipient to journal '{j.name}'")


@app.command("remove-recipient")
def remove_recipient(
    key: Annotated[str, typer.Argument(help="Age public key")],
    journal: JournalOption = None,
):
    """Remove a recipient and re-encrypt every entry without it."""
    j = _get_journal(journal)
    typer.echo(f"Removing recipient from journal '{j.name}'")
    typer.echo("Re-encrypting all entries without removed recipient...")
    try:
        result = j.remove_recipient(key)
    except RotationError as e:
        _rotation_failed(e)
    except JournalError as e:
        _fail(e)
    _echo_rotation(result)
    typer.echo(f"Successfully removed recipient from journal '{j.name}'")


@app.command("list-journals")
def list_journals():
    """List configured journals."""
    try:
        config = load_config()
    except JournalError as e:
        _fail(e)

    if not config.journals:
        typer.echo("No journals configured")
        typer.echo("\nUse 'journal init' to create a journal")
        return

    typer.echo("Configured journals:")
    for name in config.list_journals():
        entry = config.journals[name]
        marker = " (default)" if name == config.default_journal else ""
        typer.echo(f"\n  {name}{marker}")
        typer.echo(f"    Path: {entry.path}")
        try:
            count = len(RecipientDirectory(entry.path).read())
        except JournalError:
            typer.echo("    Recipients: unavailable")
        else:
            typer.echo(f"    Recipients: {count}")


@app.command("set-default")
def set_default(
    name: Annotated[str, typer.Argument(help="Journal name")],
):
    """Set the default journal."""
    try:
        config = load_config()
        config.set_default_journal(name)
        save_config(config)
    except JournalError as e:
        _fail(e)
    typer.echo(f"Default journal set to: {name}")


@app.command("remove-journal")
def remove_journal(
    name: Annotated[str, typer.Argument(help="Journal name")],
):
    """Forget a journal. Its files are left on disk."""
    try:
        config = load_config()
        removed = config.remove_journal(name)
        save_config(config)
    except JournalError as e:
        _fail(e)
    typer.echo(f"Journal '{name}' removed from configuration (files kept at {removed.path})")


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        raise SystemExit(130)
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="journal CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()

"""CLI interface for tunescan."""

import logging
import sys
import threading
import time
from datetime import datetime, timedelta
from pathlib import Path

import click

from tunescan.config import Config
from tunescan.database import RootKind
from tunescan.extractor import ExiftoolNotFoundError, get_extractor
from tunescan.library import MediaLibrary
from tunescan.roots import RootRegistryError, normalize_root_key
from tunescan.scanner import (
    Cancelled,
    Complete,
    DirectoryDocumentTree,
    Error,
    Progress,
    ScanCancelledError,
    ScanError,
    ScanFailedError,
)
from tunescan.scanner.events import Subscription
from tunescan.scanner.reconcile import now_ms

database_option = click.option(
    "--database", type=click.Path(path_type=Path), help="Path to database file"
)


def _parse_mounts(ctx, param, values: tuple[str, ...]) -> DirectoryDocumentTree:
    # pylint: disable=unused-argument
    mounts: dict[str, Path] = {}
    for value in values:
        handle, sep, directory = value.partition("=")
        kind, key = normalize_root_key(handle)
        if not sep or not directory or kind is not RootKind.DOCUMENT_TREE:
            raise click.BadParameter(f"expected scheme://HANDLE=DIR, got {value!r}")
        mounts[key] = Path(directory).expanduser().absolute()
    return DirectoryDocumentTree(mounts)


mount_option = click.option(
    "--mount",
    "documents",
    multiple=True,
    callback=_parse_mounts,
    metavar="HANDLE=DIR",
    help="Serve a document-tree root from a local directory (repeatable)",
)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = Config()


def _config(ctx: click.Context, database: Path | None) -> Config:
    config: Config = ctx.obj["config"]
    if database is not None:
        config.database_path = database
    return config


@cli.command()
@click.option(
    "--extractor",
    "extractor_name",
    type=click.Choice(["mutagen", "exiftool"]),
    default="mutagen",
    help="Metadata extractor to use",
)
@click.option("--workers", type=int, default=None, help="Parallel metadata extraction workers")
@click.option("--progress-interval", type=int, default=None, help="Print status every N files")
@click.option("--timeout", type=float, default=None, help="Stop the scan after N seconds")
@mount_option
@database_option
@click.pass_context
def scan(
    ctx: click.Context,
    extractor_name: str,
    workers: int | None,
    progress_interval: int | None,
    timeout: float | None,
    documents: DirectoryDocumentTree,
    database: Path | None,
) -> None:
    """Scan every enabled root and update the cache."""
    config = _config(ctx, database)
    if workers is not None:
        config.scanner.extraction_workers = workers
    interval = progress_interval or config.scanner.progress_interval

    try:
        extractor = get_extractor(extractor_name)
        with MediaLibrary(config, extractor=extractor, documents=documents) as library:
            roots = library.registry.enabled_roots()
            if not roots:
                click.echo("No enabled scan roots. Add one with 'tunescan roots add PATH'.")
                return
            _warn_unmounted(library, documents)

            started = time.monotonic()
            subscription = library.subscribe()
            printer = threading.Thread(
                target=_print_progress, args=(subscription, interval), daemon=True
            )
            printer.start()
            try:
                outcome = library.scan_all(timeout=timeout)
            finally:
                subscription.close()
                printer.join()

            click.echo(
                f"\nScan complete: {outcome.added:,} added, {outcome.updated:,} updated, "
                f"{outcome.removed:,} removed ({_format_duration(time.monotonic() - started)})"
            )
            click.echo(f"Cached tracks: {library.cached_count():,}")
    except ExiftoolNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except ScanCancelledError as e:
        click.echo(
            f"\nScan stopped ({e.reason}) after {e.outcome.added:,} added, "
            f"{e.outcome.updated:,} updated. Written batches are kept.",
            err=True,
        )
        sys.exit(1)
    except ScanFailedError as e:
        click.echo(f"Error: scan failed: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nScan interrupted.", err=True)
        sys.exit(130)


def _warn_unmounted(library: MediaLibrary, documents: DirectoryDocumentTree) -> None:
    for root in library.registry.enabled_roots():
        if root.kind is RootKind.DOCUMENT_TREE and not documents.can_read(root.key):
            click.echo(
                f"Warning: {root.key} is not mounted; its cached tracks will be marked "
                f"removed. Pass --mount {root.key}=DIR to scan it.",
                err=True,
            )


def _print_progress(subscription: Subscription, interval: int) -> None:
    last_reported = 0
    for state in subscription:
        if isinstance(state, Progress):
            if state.current - last_reported >= interval or state.current == state.total:
                click.echo(
                    f"[{state.current:,}/{state.total:,} files] {state.file_name}", err=True
                )
                last_reported = state.current
        elif isinstance(state, Error):
            click.echo(f"Scan error: {state.reason}", err=True)


@cli.command()
@database_option
@click.pass_context
def status(ctx: click.Context, database: Path | None) -> None:
    """Show cache statistics and scan roots."""
    config = _config(ctx, database)

    if not config.database_path.exists():
        click.echo("No database found. Run 'tunescan scan' first.")
        return

    with MediaLibrary(config) as library:
        stats = library.store.stats()
        click.echo("\nCache:")
        click.echo(f"  Valid tracks: {stats.valid:,}")
        click.echo(f"  Awaiting purge: {stats.invalid:,}")
        click.echo(f"  Total size: {_format_bytes(stats.total_bytes)}")
        click.echo(f"  Last scan: {_format_relative_time(stats.last_scan_ms)}")
        _echo_roots(library)


def _echo_roots(library: MediaLibrary) -> None:
    roots = library.registry.list_roots()
    if not roots:
        click.echo("\nNo scan roots.")
        return

    click.echo("\nScan Roots:")
    click.echo("-" * 80)
    header = "Location".ljust(50) + "Kind".ljust(10) + "Origin".ljust(10) + "Enabled"
    click.echo(header)
    click.echo("-" * 80)
    for root in roots:
        location = _truncate(root.key, 49)
        kind = "folder" if root.location_path is not None else "tree"
        origin = "default" if root.is_default else "user"
        enabled = "yes" if root.is_enabled else "no"
        click.echo(f"{location:<50}{kind:<10}{origin:<10}{enabled}")


@cli.command()
@click.argument("query")
@click.option("--limit", type=int, default=50, help="Maximum results to show")
@database_option
@click.pass_context
def search(ctx: click.Context, query: str, limit: int, database: Path | None) -> None:
    """Find cached tracks by title, artist or album."""
    config = _config(ctx, database)

    with MediaLibrary(config) as library:
        with library.search(query) as live:
            results = live.results()

    if not results:
        click.echo("No matching tracks.")
        return

    for record in results[:limit]:
        artist = record.artist or "Unknown Artist"
        album = f" [{record.album}]" if record.album else ""
        click.echo(f"{artist} - {record.title}{album}")
        click.echo(f"    {record.canonical_path}")
    if len(results) > limit:
        click.echo(f"... and {len(results) - limit:,} more")


@cli.group()
def roots() -> None:
    """Manage the folders and document trees that get scanned."""


@roots.command("list")
@database_option
@click.pass_context
def roots_list(ctx: click.Context, database: Path | None) -> None:
    config = _config(ctx, database)
    with MediaLibrary(config) as library:
        _echo_roots(library)


@roots.command("add")
@click.argument("location")
@click.option("--name", default=None, help="Display name for the root")
@database_option
@click.pass_context
def roots_add(ctx: click.Context, location: str, name: str | None, database: Path | None) -> None:
    """Add a folder path or a document-tree handle (scheme://...)."""
    config = _config(ctx, database)
    with MediaLibrary(config) as library:
        root = library.registry.add_user_root(location, name)
    click.echo(f"Scan root: {root.key}")
    if root.kind is RootKind.DOCUMENT_TREE:
        click.echo(f"Scan it with: tunescan scan --mount {root.key}=DIR")


@roots.command("remove")
@click.argument("location")
@database_option
@click.pass_context
def roots_remove(ctx: click.Context, location: str, database: Path | None) -> None:
    config = _config(ctx, database)
    with MediaLibrary(config) as library:
        removed = library.registry.remove_user_root(location)
    if not removed:
        click.echo(f"Error: not a user scan root: {location}", err=True)
        sys.exit(1)
    click.echo(f"Removed: {location}")


@roots.command("enable")
@click.argument("location")
@database_option
@click.pass_context
def roots_enable(ctx: click.Context, location: str, database: Path | None) -> None:
    _set_enabled(ctx, location, True, database)


@roots.command("disable")
@click.argument("location")
@database_option
@click.pass_context
def roots_disable(ctx: click.Context, location: str, database: Path | None) -> None:
    _set_enabled(ctx, location, False, database)


def _set_enabled(ctx: click.Context, location: str, enabled: bool, database: Path | None) -> None:
    config = _config(ctx, database)
    try:
        with MediaLibrary(config) as library:
            library.registry.set_enabled(location, enabled)
    except RootRegistryError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"{'Enabled' if enabled else 'Disabled'}: {location}")


@cli.command()
@click.option("--days", type=int, default=None, help="Purge entries invalid for longer than N days")
@database_option
@click.pass_context
def purge(ctx: click.Context, days: int | None, database: Path | None) -> None:
    """Delete cache entries for files that disappeared long enough ago."""
    config = _config(ctx, database)
    retention = timedelta(days=days if days is not None else config.scanner.retention_days)
    cutoff = now_ms() - int(retention.total_seconds() * 1000)

    with MediaLibrary(config) as library:
        purged = library.store.purge_invalid(cutoff)
    click.echo(f"Purged {purged:,} entries")


@cli.command("clear-cache")
@click.confirmation_option(prompt="Delete every cached track?")
@database_option
@click.pass_context
def clear_cache(ctx: click.Context, database: Path | None) -> None:
    config = _config(ctx, database)
    with MediaLibrary(config) as library:
        library.clear_cache()
    click.echo("Cache cleared")


@cli.command()
@click.option("--interval-hours", type=float, default=None, help="Hours between scans")
@click.option(
    "--extractor",
    "extractor_name",
    type=click.Choice(["mutagen", "exiftool"]),
    default="mutagen",
    help="Metadata extractor to use",
)
@mount_option
@database_option
@click.pass_context
def watch(
    ctx: click.Context,
    interval_hours: float | None,
    extractor_name: str,
    documents: DirectoryDocumentTree,
    database: Path | None,
) -> None:
    """Scan now and then periodically until interrupted."""
    config = _config(ctx, database)
    hours = interval_hours if interval_hours is not None else config.scanner.scan_interval_hours

    try:
        extractor = get_extractor(extractor_name)
        with MediaLibrary(config, extractor=extractor, documents=documents) as library:
            _warn_unmounted(library, documents)
            with library.subscribe() as subscription:
                library.schedule_auto(timedelta(hours=hours))
                click.echo(f"Scanning every {hours:g}h. Press Ctrl+C to stop.")
                for state in subscription:
                    _echo_terminal_state(state)
    except ExiftoolNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except ScanError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nStopped.")


def _echo_terminal_state(state) -> None:
    stamp = datetime.now().strftime("%Y-%m-%d %H:%M")
    if isinstance(state, Complete):
        click.echo(
            f"[{stamp}] Scan complete: {state.added:,} added, "
            f"{state.updated:,} updated, {state.removed:,} removed"
        )
    elif isinstance(state, Cancelled):
        click.echo(f"[{stamp}] Scan stopped: {state.reason}")
    elif isinstance(state, Error):
        click.echo(f"[{stamp}] Scan failed: {state.reason}", err=True)


def _format_relative_time(timestamp_ms: int | None) -> str:
    if not timestamp_ms:
        return "never"

    now = datetime.now()
    then = datetime.fromtimestamp(timestamp_ms / 1000)
    delta = now - then

    if delta.days > 1:
        return f"{delta.days} days ago"
    if delta.days == 1:
        return "yesterday"
    if delta.seconds > 3600:
        hours = delta.seconds // 3600
        return f"{hours}h ago"
    if delta.seconds > 60:
        minutes = delta.seconds // 60
        return f"{minutes}m ago"
    return "just now"


def _format_duration(seconds: float) -> str:
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)

    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def _format_bytes(size: int | None) -> str:
    if size is None:
        return "0 B"
    size_f = float(size)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_f < 1024:
            return f"{size_f:.1f} {unit}"
        size_f /= 1024
    return f"{size_f:.1f} PB"


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return "..." + text[-(max_len - 3) :]


def main() -> None:
    """Entry point for the CLI."""
    cli(standalone_mode=True)  # pylint: disable=no-value-for-parameter


if __name__ == "__main__":
    main()

"""
Command-line interface for media-sync.

This module implements the CLI using Click, with rich-click for the
help and error colors.

Commands:
    media-sync sync                        Full sync of the active server
    media-sync sync --server <name>        Full sync of a specific server
    media-sync sync --playlists-only       Reconcile playlists only
    media-sync liked                       Mirror liked tracks
    media-sync servers                     List configured servers
    media-sync activate <name>             Make a server the active one
    media-sync stats                       Show cached library counts
    media-sync prune                       Delete offline copies of uncached tracks

Global Options:
    --config <path>                        config.yaml location (default: ./config.yaml)
    --verbose                              Show DEBUG messages on the console

Exit Codes:
    0    success
    1    configuration error or unexpected error
    2    local cache (database) error
    3    media server error
    4    any other media-sync error (e.g. sync cancelled)
    130  interrupted by user
"""

import asyncio
import sys
from pathlib import Path
from typing import Callable, Optional

import rich_click as click

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = ""
click.rich_click.MAX_WIDTH = 100
click.rich_click.COMMAND_GROUPS = {
    "cli": [
        {
            "name": "Sync",
            "commands": ["sync", "liked"],
        },
        {
            "name": "Servers",
            "commands": ["servers", "activate", "stats", "prune"],
        },
    ],
}

from media_sync import __version__
from media_sync.core import (
    Config,
    ConfigError,
    LibraryStore,
    MediaSyncError,
    PersistenceError,
    RemoteError,
    SourceNotFoundError,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from media_sync.core.models import Source
from media_sync.core.progress import SyncProgressBar
from media_sync.downloads import OfflineDownloadManager
from media_sync.remote import MediaServerClient
from media_sync.sync import SyncCoordinator, SyncReport

logger = get_logger(__name__)


@click.group()
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Path to config.yaml (default: ./config.yaml)"
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Show debug messages on the console"
)
@click.version_option(__version__, prog_name="media-sync")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], verbose: bool) -> None:
    """
    media-sync: keep a local library cache in step with your media servers.

    \b
    BASIC USAGE:
        media-sync sync                        # Full sync of the active server
        media-sync sync --server home          # Full sync of a named server
        media-sync sync --playlists-only       # Playlists only
        media-sync liked                       # Liked tracks only

    \b
    SERVERS:
        media-sync servers                     # List servers
        media-sync activate home               # Switch the active server
        media-sync stats                       # Cached library counts
        media-sync prune                       # Drop stale offline copies
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


# =============================================================================
# Commands
# =============================================================================

@cli.command()
@click.option(
    "--server", "server_name",
    type=str,
    default=None,
    metavar="<name>",
    help="Server to sync (default: the active one)"
)
@click.option(
    "--playlists-only",
    is_flag=True,
    help="Reconcile playlists without a full catalog sync"
)
@click.pass_obj
def sync(options: dict, server_name: Optional[str], playlists_only: bool) -> None:
    """Reconcile the local cache with a media server."""
    def action(config: Config, store: LibraryStore) -> None:
        source = _resolve_source(store, server_name)
        if playlists_only:
            counts = asyncio.run(_sync_playlists(config, store, source))
            logger.info(f"Playlists: {counts}")
        else:
            report = asyncio.run(_full_sync(config, store, source))
            _print_sync_report(report)

    _execute(options, action)


@cli.command()
@click.option(
    "--server", "server_name",
    type=str,
    default=None,
    metavar="<name>",
    help="Server to sync (default: the active one)"
)
@click.pass_obj
def liked(options: dict, server_name: Optional[str]) -> None:
    """Mirror the server's liked tracks into the cache."""
    def action(config: Config, store: LibraryStore) -> None:
        source = _resolve_source(store, server_name)
        changed = asyncio.run(_sync_liked(config, store, source))
        logger.info(f"Liked status updated for {changed} tracks")

    _execute(options, action)


@cli.command()
@click.pass_obj
def servers(options: dict) -> None:
    """List configured servers and their last full sync."""
    def action(config: Config, store: LibraryStore) -> None:
        for source in store.list_sources():
            marker = "*" if source.is_active else " "
            last_sync = source.last_full_sync or "never"
            click.echo(
                f"{marker} {source.name:<20} {source.kind.value:<9} "
                f"{source.url}  (last full sync: {last_sync})"
            )

    _execute(options, action)


@cli.command()
@click.argument("name")
@click.pass_obj
def activate(options: dict, name: str) -> None:
    """Make NAME the active server."""
    def action(config: Config, store: LibraryStore) -> None:
        source = _resolve_source(store, name)
        store.set_active_source(source.id)
        logger.info(f"Active server is now '{source.name}'")

    _execute(options, action)


@cli.command()
@click.option(
    "--server", "server_name",
    type=str,
    default=None,
    metavar="<name>",
    help="Server to report on (default: the active one)"
)
@click.pass_obj
def stats(options: dict, server_name: Optional[str]) -> None:
    """Show cached library counts."""
    def action(config: Config, store: LibraryStore) -> None:
        source = _resolve_source(store, server_name)
        _print_library_stats(store, source)

    _execute(options, action)


@cli.command()
@click.pass_obj
def prune(options: dict) -> None:
    """Delete offline copies whose track is no longer cached."""
    def action(config: Config, store: LibraryStore) -> None:
        downloads = OfflineDownloadManager(config.storage.downloads_directory)
        # The download directory is shared by every server
        cached = {
            track.remote_id
            for source in store.list_sources()
            for track in store.list_tracks(source.id)
        }
        removed = downloads.cleanup_orphaned_downloads(cached)
        logger.info(f"Deleted {len(removed)} offline copies")

    _execute(options, action)


# =============================================================================
# Execution
# =============================================================================

def _execute(options: dict, action: Callable[[Config, LibraryStore], None]) -> None:
    """
    Run a command body with configuration, logging and the cache set up.

    Maps every failure to an error message and exit code.

    Args:
        options: Global options from the click context.
        action: Command body.

    Raises:
        SystemExit: On fatal errors (with appropriate exit code).
    """
    store: LibraryStore | None = None

    try:
        config = load_config(options["config_path"])

        setup_logging(config.storage.directory, verbose=options["verbose"])
        logger.debug(f"media-sync {__version__} starting")

        store = LibraryStore(config.storage.database_path)
        store.ensure_sources(config.servers)

        action(config, store)

    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)

    except PersistenceError as e:
        click.echo(f"Database error: {e.message}", err=True)
        logger.error(f"Database error: {e.message}", exc_info=True)
        sys.exit(2)

    except RemoteError as e:
        click.echo(f"Server error: {e.message}", err=True)
        if e.is_auth_error:
            click.echo("Check access_token and user_id in config.yaml", err=True)
        logger.error(f"Server error: {e.message}", exc_info=True)
        sys.exit(3)

    except MediaSyncError as e:
        click.echo(f"Error: {e.message}", err=True)
        logger.error(f"Error: {e.message}", exc_info=True)
        sys.exit(4)

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        logger.info("Interrupted by user")
        sys.exit(130)

    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        logger.exception("Unexpected error")
        sys.exit(1)

    finally:
        if store is not None:
            store.close()
        shutdown_logging()


def _resolve_source(store: LibraryStore, server_name: Optional[str]) -> Source:
    """
    The named source, or the active one.

    Raises:
        SourceNotFoundError: If the name is unknown or no source is active.
    """
    if server_name:
        source = store.get_source_by_name(server_name)
        if source is None:
            raise SourceNotFoundError(
                f"No server named '{server_name}' in config.yaml",
                details={"server": server_name}
            )
        return source

    source = store.get_active_source()
    if source is None:
        raise SourceNotFoundError("No active server")
    return source


async def _full_sync(config: Config, store: LibraryStore, source: Source) -> SyncReport:
    downloads = OfflineDownloadManager(config.storage.downloads_directory)

    async with MediaServerClient(config.get_server(source.name), config.sync) as client:
        coordinator = SyncCoordinator(
            store,
            lambda _source: client,
            download_manager=downloads,
            sync_config=config.sync,
        )
        with SyncProgressBar(description=source.name) as bar:
            report = await coordinator.perform_full_sync(source, on_progress=bar.update)
        await coordinator.wait_for_cleanup()

    return report


async def _sync_playlists(config: Config, store: LibraryStore, source: Source):
    async with MediaServerClient(config.get_server(source.name), config.sync) as client:
        coordinator = SyncCoordinator(store, lambda _source: client, sync_config=config.sync)
        return await coordinator.sync_playlists(source)


async def _sync_liked(config: Config, store: LibraryStore, source: Source) -> int:
    async with MediaServerClient(config.get_server(source.name), config.sync) as client:
        coordinator = SyncCoordinator(store, lambda _source: client, sync_config=config.sync)
        return await coordinator.sync_liked_tracks(source)


# =============================================================================
# Output
# =============================================================================

def _print_sync_report(report: SyncReport) -> None:
    """
    Print the per-entity outcome of a full sync.

    Counts read +created ~updated -deleted.
    """
    logger.info("=" * 60)
    logger.info(f"SYNC COMPLETE: {report.source_name}")
    logger.info("=" * 60)
    logger.info(f"Artists:           {report.artists}")
    logger.info(f"Albums:            {report.albums}")
    logger.info(f"Genres:            {report.genres}")
    logger.info(f"Tracks:            {report.tracks}")
    logger.info(f"Playlists:         {report.playlists}")
    logger.info(f"Duration:          {report.duration:.1f}s")
    logger.info("=" * 60)


def _print_library_stats(store: LibraryStore, source: Source) -> None:
    stats = store.get_library_stats(source.id)

    logger.info("=" * 60)
    logger.info(f"LIBRARY STATISTICS: {source.name}")
    logger.info("=" * 60)
    logger.info(f"Artists:           {stats['artists']}")
    if stats["placeholder_artists"]:
        logger.info(f"  placeholders:    {stats['placeholder_artists']}")
    logger.info(f"Albums:            {stats['albums']}")
    logger.info(f"Genres:            {stats['genres']}")
    logger.info(f"Tracks:            {stats['tracks']}")
    logger.info(f"Liked:             {stats['liked_tracks']}")
    logger.info(f"Playlists:         {stats['playlists']}")
    logger.info(f"Last full sync:    {source.last_full_sync or 'never'}")
    logger.info("=" * 60)


def main() -> None:
    """
    Entry point for the CLI.

    Called when running `media-sync` from the command line.
    """
    cli()


if __name__ == "__main__":
    main()

"""CLI for contactsync."""

import asyncio
import logging

import click

from contactsync import __version__
from contactsync.config import Settings, get_settings
from contactsync.exceptions import ConfigurationError, ContactSyncError
from contactsync.google.client import GoogleContactsClient
from contactsync.google.source import GoogleSource
from contactsync.sources.base import ExternalSource
from contactsync.store import ContactStore, FileStorage
from contactsync.sync.synchronizer import Synchronizer


def _open_store(settings: Settings) -> tuple[ContactStore, FileStorage]:
    storage = FileStorage(settings.data_dir)
    store = ContactStore(
        storage,
        debounce_seconds=settings.debounce_seconds,
        history_retention=settings.history_retention,
    )
    return store, storage


def _build_sources(settings: Settings) -> list[ExternalSource]:
    """External sources reachable from the command line."""
    if not settings.google_refresh_token:
        raise ConfigurationError(
            "GOOGLE_REFRESH_TOKEN not set in .env. Run 'contactsync auth' first."
        )
    return [GoogleSource(GoogleContactsClient(settings))]


def _require_settings(ctx: click.Context) -> Settings:
    settings: Settings | None = ctx.obj.get("settings")
    if settings is None:
        click.echo(f"Error loading settings: {ctx.obj.get('settings_error')}", err=True)
        ctx.exit(1)
    return settings


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Reconcile and sync contacts across sources."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    ctx.ensure_object(dict)

    try:
        ctx.obj["settings"] = get_settings()
    except Exception as e:
        ctx.obj["settings_error"] = str(e)


@main.command()
@click.option("--port", default=36133, show_default=True, help="Local OAuth callback port")
@click.pass_context
def auth(ctx: click.Context, port: int) -> None:
    """Authorize with Google to get a refresh token.

    Opens a browser for Google OAuth authorization, then displays
    the refresh token to add to your .env file.
    """
    settings = _require_settings(ctx)

    click.echo("Opening browser for Google authorization...")
    click.echo(f"(Make sure 'http://localhost:{port}/callback' is set as a redirect URI)")
    click.echo()

    google_client = GoogleContactsClient(settings)
    try:
        tokens = google_client.authorize(port=port)
    except Exception as e:
        click.echo(f"Authorization failed: {e}", err=True)
        ctx.exit(1)

    click.echo()
    click.echo("Authorization successful! Add this to your .env file:")
    click.echo(f'GOOGLE_REFRESH_TOKEN={tokens["refresh_token"]}')


@main.command()
@click.option("--limit", default=20, show_default=True, help="Maximum pairs to show")
@click.pass_context
def duplicates(ctx: click.Context, limit: int) -> None:
    """List likely duplicate contacts, most similar first."""
    settings = _require_settings(ctx)

    async def run() -> None:
        store, _ = _open_store(settings)
        await store.load()
        candidates = store.find_duplicates()

        if not candidates:
            click.echo("No duplicates found.")
            return

        click.echo(f"Found {len(candidates)} possible duplicates:\n")
        for candidate in candidates[:limit]:
            click.echo(f"{candidate.similarity:>3}  {candidate.a.name} [{candidate.a.id}]")
            click.echo(f"     {candidate.b.name} [{candidate.b.id}]")
            click.echo(f"     {', '.join(candidate.reasons)}")
        if len(candidates) > limit:
            click.echo(f"\n... and {len(candidates) - limit} more")

    asyncio.run(run())


@main.command()
@click.argument("primary_id")
@click.argument("secondary_id")
@click.pass_context
def merge(ctx: click.Context, primary_id: str, secondary_id: str) -> None:
    """Merge SECONDARY_ID into PRIMARY_ID and delete the secondary."""
    settings = _require_settings(ctx)

    async def run() -> None:
        store, _ = _open_store(settings)
        await store.load()
        primary = store.require(primary_id)
        secondary = store.require(secondary_id)

        result = store.merge_into(primary.id, secondary.id)
        if not result.ok:
            raise ContactSyncError(f"Cannot merge {primary_id} with itself")
        await store.close()

        merged = result.record
        click.echo(f"Merged '{secondary.name}' into '{merged.name}'")
        click.echo(f"  Phones: {len(merged.phone_numbers)}  Emails: {len(merged.email_addresses)}")

    try:
        asyncio.run(run())
    except ContactSyncError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)


@main.command()
@click.option("--pull-only", is_flag=True, help="Only pull external changes in")
@click.option("--push-only", is_flag=True, help="Only push local contacts out")
@click.pass_context
def sync(ctx: click.Context, pull_only: bool, push_only: bool) -> None:
    """Sync local contacts with every configured source.

    Default: pull from each source, then push back to it.
    """
    if pull_only and push_only:
        click.echo("Error: Cannot use both --pull-only and --push-only", err=True)
        ctx.exit(1)

    settings = _require_settings(ctx)

    async def run() -> bool:
        store, storage = _open_store(settings)
        await store.load()
        synchronizer = Synchronizer.for_sources(
            store, _build_sources(settings), storage, batch_size=settings.pull_batch_size
        )
        ok = True
        try:
            await synchronizer.load_state()
            for name in synchronizer.sources:
                if pull_only:
                    results = [await synchronizer.pull_all(name)]
                elif push_only:
                    results = [await synchronizer.push_all(name)]
                else:
                    results = await synchronizer.sync_source(name)

                for result in results:
                    ok = ok and result.success
                    click.echo(f"{name} {result.direction}: {result.summary()}")
                    for error in result.errors[:5]:
                        click.echo(f"    - {error}")
                    if len(result.errors) > 5:
                        click.echo(f"    ... and {len(result.errors) - 5} more")
        finally:
            await synchronizer.close()
            await store.close()
        return ok

    try:
        ok = asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("\nSync interrupted by user")
        ctx.exit(130)
    except ContactSyncError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)

    if not ok:
        ctx.exit(1)


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show contact statistics and sync state."""
    settings = _require_settings(ctx)

    async def run() -> None:
        store, storage = _open_store(settings)
        await store.load()
        stats = store.stats()

        click.echo(f"Data directory: {settings.data_dir}\n")
        click.echo(f"Total contacts: {stats.total}")
        click.echo(f"  Favorites: {stats.favorites}")
        click.echo(f"  VIP: {stats.vip}")
        click.echo(f"  Emergency: {stats.emergency}")
        click.echo(f"  Groups: {len(stats.groups)}")
        click.echo(f"  Recently contacted: {stats.recent}")

        try:
            sources = _build_sources(settings)
        except ConfigurationError:
            click.echo("\nNo sync sources configured.")
            return

        synchronizer = Synchronizer.for_sources(store, sources, storage)
        try:
            await synchronizer.load_state()
            for state in synchronizer.states():
                click.echo(f"\n{state.source}: {state.status.value}")
                if state.stats.last_sync_time:
                    click.echo(f"  Last sync: {state.stats.last_sync_time:%Y-%m-%d %H:%M}")
                click.echo(
                    f"  Synced: {state.stats.synced_contacts}/{state.stats.total_contacts}"
                    f"  Failed: {state.stats.failed_contacts}"
                )
        finally:
            await synchronizer.close()

    asyncio.run(run())


if __name__ == "__main__":
    main()

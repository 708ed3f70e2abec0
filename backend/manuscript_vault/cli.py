"""Storage maintenance CLI.

Usage:
    manuscript-vault-storage stats
    manuscript-vault-storage cleanup --target 0.6
    manuscript-vault-storage orphans
"""
import asyncio
from typing import Optional

import typer

from manuscript_vault.database import async_session, engine
from manuscript_vault.exceptions import StorageError
from manuscript_vault.services.blob_store import blob_store
from manuscript_vault.services.storage import OrphanScanner, ReclamationEngine, UsageAccountant, UsageSnapshot
from manuscript_vault.services.storage.limits import storage_limits
from manuscript_vault.services.storage.usage import MB, STATUS_CRITICAL, STATUS_HIGH, STATUS_WARNING

app = typer.Typer(help="Inspect and reclaim blob store space.", no_args_is_help=True)

STATUS_HINTS = {
    STATUS_CRITICAL: "WARNING: Storage is at critical level! Immediate cleanup recommended.",
    STATUS_HIGH: "WARNING: Storage usage is high. Cleanup recommended.",
    STATUS_WARNING: "Storage usage is approaching limit. Consider cleanup.",
}


def _print_stats(title: str, snapshot: UsageSnapshot) -> None:
    typer.echo(f"=== {title} ===")
    typer.echo(f"Total Storage Used: {snapshot.total_bytes / MB:.2f} MB / {snapshot.max_bytes / MB:.2f} MB")
    typer.echo(f"Usage: {snapshot.usage_percent:.2f}%")
    typer.echo(f"Available: {snapshot.available_bytes / MB:.2f} MB")
    typer.echo(f"File Count: {snapshot.file_count}")
    typer.echo(f"Status: {snapshot.status.upper()}")
    if snapshot.status in STATUS_HINTS:
        typer.echo(f"\n{STATUS_HINTS[snapshot.status]}")
    typer.echo("")


def _run(coro) -> None:
    async def runner():
        try:
            await coro
        finally:
            await engine.dispose()

    try:
        asyncio.run(runner())
    except (StorageError, ValueError) as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


async def _stats() -> None:
    _print_stats("Storage Statistics", await UsageAccountant(blob_store, storage_limits).compute_usage())


async def _cleanup(target: Optional[float]) -> None:
    async with async_session() as db:
        result = await ReclamationEngine(db, blob_store, storage_limits).reclaim_to(target)
    typer.echo(result.message)
    typer.echo(f"  Files deleted: {len(result.deleted_records)}")
    typer.echo(f"  Space freed: {result.freed_bytes / MB:.2f} MB")
    typer.echo(f"  Initial usage: {result.initial.usage_percent:.2f}%")
    typer.echo(f"  Final usage: {result.final.usage_percent:.2f}%")
    for deleted in result.deleted_records:
        typer.echo(f"  - {deleted.file_name} ({deleted.freed_bytes / 1024:.2f} KB)")
    for error in result.errors:
        typer.echo(f"  ! {error['file_id'] or 'cleanup'}: {error['error']}")
    typer.echo("")
    _print_stats("Final Storage Statistics", result.final)


async def _orphans() -> None:
    async with async_session() as db:
        result = await OrphanScanner(db, blob_store).reclaim_orphans()
    typer.echo(result.message)
    typer.echo(f"  Deleted: {result.deleted_count} blobs")
    typer.echo(f"  Freed: {result.freed_bytes / MB:.2f} MB\n")
    _print_stats("Final Storage Statistics", await UsageAccountant(blob_store, storage_limits).compute_usage())


@app.command()
def stats():
    """Show current storage statistics."""
    _run(_stats())


@app.command()
def cleanup(
    target: Optional[float] = typer.Option(
        None, "--target", min=0.01, max=1.0,
        help="Target usage fraction after cleanup (default: STORAGE_TARGET_AFTER_CLEANUP).",
    ),
):
    """Delete failed, stale and then oldest completed files until usage reaches the target."""
    _run(_cleanup(target))


@app.command()
def orphans():
    """Delete blobs that no file record references."""
    _run(_orphans())


if __name__ == "__main__":
    app()

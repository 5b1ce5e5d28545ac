"""CLI commands for diagcache.

Provides command-line maintenance for the cache subsystem using Typer:
- diagcache health: Cache round-trip health check
- diagcache stats: Cache key count, memory and hit rate
- diagcache process-queue: Process one invalidation batch
- diagcache queue-stats: Invalidation queue counts
- diagcache reset-frozen: Return frozen invalidations to the queue
- diagcache init-db: Create the durable tables (development only)
- diagcache run-processor: Run the invalidation processor until interrupted

Configuration comes from the environment (REDIS_URL, REDIS_TOKEN,
DATABASE_URL, DIAGCACHE_*).
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer

from diagcache.invalidation.queue import InvalidationItem
from diagcache.observability.logging import configure_logging
from diagcache.runtime import CacheSystem, create_cache_system

T = TypeVar("T")

app = typer.Typer(
    name="diagcache",
    help="diagcache: cache acceleration and invalidation maintenance",
    no_args_is_help=True,
)


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _run(operation: Callable[[CacheSystem], Awaitable[T]]) -> T:
    """Run an operation against a fresh CacheSystem, closing it afterwards."""

    async def runner() -> T:
        system = create_cache_system()
        try:
            return await operation(system)
        finally:
            await system.audit.flush()
            await system.cache.store.close()
            await system.database.dispose()

    return asyncio.run(runner())


@app.callback()
def callback(
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="Log level"),
) -> None:
    """diagcache: cache acceleration and invalidation maintenance."""
    configure_logging(json_format=False, level=log_level.upper())


@app.command()
def health() -> None:
    """Round-trip a key through the cache and report latency."""

    async def check(system: CacheSystem) -> dict[str, Any]:
        return (await system.cache.health_check()).to_dict()

    result = _run(check)
    _echo_json(result)
    if result["status"] == "unhealthy":
        raise typer.Exit(code=1)


@app.command()
def stats() -> None:
    """Show cache key count, memory usage and hit rate."""

    async def collect(system: CacheSystem) -> dict[str, Any]:
        return (await system.cache.get_stats()).to_dict()

    _echo_json(_run(collect))


@app.command("process-queue")
def process_queue() -> None:
    """Process one batch of pending invalidations."""

    async def process(system: CacheSystem) -> dict[str, int]:
        return (await system.processor.process_queue()).to_dict()

    _echo_json(_run(process))


@app.command("queue-stats")
def queue_stats() -> None:
    """Show pending, frozen and processed-today counts."""

    async def collect(system: CacheSystem) -> dict[str, int]:
        return await system.processor.get_stats()

    _echo_json(_run(collect))


@app.command("reset-frozen")
def reset_frozen(
    item_ids: Optional[list[str]] = typer.Argument(
        None, help="Queue item IDs to reset (all frozen items if omitted)"
    ),
    list_only: bool = typer.Option(
        False, "--list", help="List frozen items instead of resetting them"
    ),
) -> None:
    """Return frozen invalidations to the pending state."""
    from rich.console import Console
    from rich.table import Table

    console = Console()

    if list_only:

        async def collect(system: CacheSystem) -> list[InvalidationItem]:
            return await system.queue.list_frozen()

        items = _run(collect)
        if not items:
            console.print("[green]No frozen invalidation items[/green]")
            return

        table = Table(title="Frozen invalidations")
        table.add_column("ID", style="cyan")
        table.add_column("Key", style="green")
        table.add_column("Type", style="yellow")
        table.add_column("Retries", style="magenta")
        table.add_column("Error", style="red")
        for item in items:
            table.add_row(
                item.id,
                item.cache_key,
                item.cache_type,
                str(item.retry_count),
                item.error_message or "-",
            )
        console.print(table)
        console.print(f"[bold]{len(items)} frozen invalidation items[/bold]")
        return

    async def reset(system: CacheSystem) -> int:
        return await system.queue.reset_frozen(item_ids or None)

    count = _run(reset)
    console.print(f"[green]Reset {count} frozen invalidation items[/green]")


@app.command("init-db")
def init_db() -> None:
    """Create the queue and audit tables if missing.

    For production, run the Alembic migrations instead.
    """

    async def create(system: CacheSystem) -> None:
        await system.database.create_all()

    _run(create)
    typer.echo("Database tables created")


@app.command("run-processor")
def run_processor(
    interval: Optional[float] = typer.Option(
        None, "--interval", "-i", help="Poll interval in seconds"
    ),
) -> None:
    """Run the invalidation processor until SIGINT/SIGTERM."""

    async def serve() -> None:
        system = create_cache_system()
        if interval is not None:
            system.processor.poll_interval = interval

        await system.start()
        if not system.processor.is_running:
            system.processor.start()
        typer.echo(f"Invalidation processor running (interval: {system.processor.poll_interval}s)")
        try:
            await system.wait_for_shutdown()
        finally:
            await system.stop()

    asyncio.run(serve())


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()

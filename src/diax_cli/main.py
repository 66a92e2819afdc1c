"""CLI entrypoint using typer."""

from __future__ import annotations

import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table

from diax_client.factories import CacheRuntime, create_cache_runtime
from diax_client.observability import configure_logging
from diax_core.config.settings import Settings
from diax_core.exceptions import DiaxError
from diax_core.interfaces.auth import static_token

app = typer.Typer(
    name="diax",
    help="Warm and inspect the DiaX client data cache",
)
console = Console()


def _load_settings(verbose: bool) -> Settings:
    settings = Settings()
    if verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)
    return settings


def _runtime(settings: Settings) -> CacheRuntime:
    token = settings.api_token.get_secret_value() if settings.api_token else None
    return create_cache_runtime(settings, static_token(token))


def _render_entries(runtime: CacheRuntime) -> Table:
    table = Table(title="Entry store")
    table.add_column("Key")
    table.add_column("Age (s)", justify="right")
    table.add_column("In flight")
    now = runtime.store.now()
    for key in runtime.store.keys():
        entry = runtime.store.get(key)
        if entry is None:
            continue
        in_flight = "yes" if runtime.tracker.is_in_flight(key) else ""
        table.add_row(key, f"{entry.age(now):.2f}", in_flight)
    return table


async def _warm(settings: Settings, paths: list[str]) -> CacheRuntime:
    runtime = _runtime(settings)
    try:
        await runtime.navigation.prefetch_multiple_pages(paths)
    finally:
        await runtime.aclose()
    return runtime


async def _stats(settings: Settings, days: int) -> object:
    runtime = _runtime(settings)
    try:
        return await runtime.health.get_health_stats(days)
    finally:
        await runtime.aclose()


@app.command()
def warm(
    paths: list[str] = typer.Argument(..., help="Page paths, e.g. /dashboard/health"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Enable debug logging"),
) -> None:
    """Prefetch the data behind one or more pages and show what got cached."""
    settings = _load_settings(verbose)
    runtime = asyncio.run(_warm(settings, paths))

    console.print(_render_entries(runtime))
    expected = {key for path in paths for key in runtime.navigation.endpoints_for(path)}
    missing = sorted(key for key in expected if key not in runtime.store)
    if missing:
        console.print(f"[yellow]Not cached: {len(missing)}[/yellow]")
        for key in missing:
            console.print(f"  {key}")
        raise typer.Exit(code=1)


@app.command()
def stats(
    days: int = typer.Option(30, "--days", help="Window in days"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Enable debug logging"),
) -> None:
    """Fetch health statistics (with retry) and print them as JSON."""
    settings = _load_settings(verbose)
    try:
        data = asyncio.run(_stats(settings, days))
    except DiaxError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    console.print_json(json.dumps(data))


@app.command()
def version() -> None:
    """Show version."""
    console.print("diax-cache v0.1.0")


if __name__ == "__main__":
    app()

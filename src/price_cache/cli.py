"""Click-based CLI for price-cache.

Thin wrapper around library modules. Every command delegates to library
code; nothing here decides how prices are cached.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from price_cache.core import load_config

        config = load_config(config_path=ctx.obj.get("config_path"))
        store_override = ctx.obj.get("store")
        if store_override:
            config = config.model_copy(
                update={"store": config.store.model_copy(update={"backend": store_override})}
            )
        ctx.obj["config"] = config
    return ctx.obj["config"]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _create_store(config):
    """Create the time-series store selected by config."""
    from price_cache.core import StoreBackend
    from price_cache.prices import InMemoryTimeSeriesStore, RedisTimeSeriesStore

    if config.store.backend == StoreBackend.MEMORY:
        return InMemoryTimeSeriesStore()
    return RedisTimeSeriesStore(config.store)


@asynccontextmanager
async def _store_session(config) -> AsyncIterator:
    """Connect the configured store, yield it, close it even if connect failed."""
    store = _create_store(config)
    try:
        await store.connect()
        yield store
    finally:
        await store.close()


@asynccontextmanager
async def _engine_session(config) -> AsyncIterator:
    """Open store and adapters, yield an engine, close everything after."""
    from price_cache.cache import PriceCacheEngine
    from price_cache.prices import HttpPriceSource, StellarExpertRanking

    if not config.source.url:
        raise click.UsageError(
            "No quote endpoint configured. Set source.url or PRICE_CACHE_SOURCE__URL."
        )

    async with AsyncExitStack() as stack:
        store = await stack.enter_async_context(_store_session(config))
        source = await stack.enter_async_context(HttpPriceSource(config.source))
        ranking = await stack.enter_async_context(StellarExpertRanking(config.ranking))
        yield PriceCacheEngine(store, source, ranking, config.cache)


def _print_init_report(report) -> None:
    table = Table(title="Price Cache Initialization")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Tracked assets", str(report.initialized))
    table.add_row("Seeded", str(report.seeded))
    table.add_row("Failures", str(len(report.failures)))
    console.print(table)

    if report.failures:
        failures = Table(title="Failed Assets")
        failures.add_column("Asset")
        failures.add_column("Kind")
        failures.add_column("Message")
        for f in report.failures:
            failures.add_row(f.asset, f.kind.value, f.message)
        console.print(failures)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="PRICE_CACHE_CONFIG",
    default=None,
    help="Path to price-cache.yml config file.",
)
@click.option(
    "--store",
    type=click.Choice(["redis", "memory"], case_sensitive=False),
    default=None,
    help="Override the configured store backend.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging.",
)
@click.version_option(package_name="price-cache")
@click.pass_context
def cli(ctx: click.Context, config: str | None, store: str | None, verbose: bool) -> None:
    """price-cache: time-series token price cache worker."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["store"] = store.lower() if store else None
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console
    _configure_logging(verbose)


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Initialize the cache and refresh it until interrupted."""
    from price_cache.cache import PriceCacheScheduler
    from price_cache.core import PriceCacheError

    config = _load_config(ctx)

    async def _run():
        async with _engine_session(config) as engine:
            scheduler = PriceCacheScheduler(engine, config.cache)
            await scheduler.run_forever()

    try:
        _run_async(_run())
    except PriceCacheError as e:
        console.print(f"[red]Worker aborted: {e}[/red]")
        raise SystemExit(1)
    except KeyboardInterrupt:
        console.print("Stopped.")


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="Exit non-zero if any asset failed to initialize.",
)
@click.pass_context
def init(ctx: click.Context, strict: bool) -> None:
    """Initialize the tracked universe once and report."""
    from price_cache.core import PriceCacheError

    config = _load_config(ctx)

    async def _run():
        async with _engine_session(config) as engine:
            return await engine.initialize_cache()

    try:
        report = _run_async(_run())
    except PriceCacheError as e:
        console.print(f"[red]Initialization failed: {e}[/red]")
        raise SystemExit(1)

    _print_init_report(report)
    if strict:
        try:
            report.raise_if_partial()
        except PriceCacheError as e:
            console.print(f"[red]{e}[/red]")
            raise SystemExit(1)


# ---------------------------------------------------------------------------
# refresh
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def refresh(ctx: click.Context) -> None:
    """Initialize, then run a single refresh cycle."""
    from price_cache.core import PriceCacheError

    config = _load_config(ctx)

    async def _run():
        async with _engine_session(config) as engine:
            await engine.initialize_cache()
            return await engine.refresh_prices()

    try:
        report = _run_async(_run())
    except PriceCacheError as e:
        console.print(f"[red]Refresh failed: {e}[/red]")
        raise SystemExit(1)

    console.print(
        f"[green]✓[/green] Wrote {report.written} prices at {report.timestamp} "
        f"in {report.duration_ms} ms"
        + (f" ({len(report.skipped)} skipped)" if report.skipped else "")
    )


# ---------------------------------------------------------------------------
# price
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("asset")
@click.pass_context
def price(ctx: click.Context, asset: str) -> None:
    """Show the cached price and 24h change for ASSET.

    Read-only: only the store is opened, nothing is fetched or written.
    """
    from price_cache.cache import PriceCacheEngine
    from price_cache.core import PriceCacheError

    config = _load_config(ctx)

    async def _run():
        async with _store_session(config) as store:
            engine = PriceCacheEngine(store, config=config.cache)
            if not await engine.attach([asset]):
                return None
            return await engine.get_price(asset)

    try:
        data = _run_async(_run())
    except PriceCacheError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)

    if data is None:
        console.print(f"[yellow]No price data yet for {asset}[/yellow]")
        raise SystemExit(1)

    change = data.percentage_price_change_24h
    click.echo(f"{asset}\t{data.current_price}\t{'n/a' if change is None else f'{change:.2f}%'}")


# ---------------------------------------------------------------------------
# metrics
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("query")
@click.option("--start", required=True, help="Range start (RFC 3339 or unix seconds).")
@click.option("--end", required=True, help="Range end (RFC 3339 or unix seconds).")
@click.option("--step", default="60", show_default=True, help="Resolution step.")
@click.pass_context
def metrics(ctx: click.Context, query: str, start: str, end: str, step: str) -> None:
    """Run a range QUERY against the configured metrics backend."""
    from price_cache.integrations import PrometheusQuery

    config = _load_config(ctx)
    if not config.metrics.prometheus_url:
        raise click.UsageError(
            "No metrics backend configured. Set metrics.prometheus_url or "
            "PRICE_CACHE_METRICS__PROMETHEUS_URL."
        )

    async def _run():
        async with PrometheusQuery(config.metrics.prometheus_url) as prom:
            return await prom.query_range(query, start, end, step=step)

    result = _run_async(_run())
    if result is None:
        console.print("[red]Metrics query failed[/red]")
        raise SystemExit(1)
    click.echo(json.dumps(result, indent=2))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()

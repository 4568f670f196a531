"""
Polymarket Mirror Trading - Main Entry Point

Usage:
    polymirror run        # Mirror the configured traders
    polymirror status     # Show handled events and tracked purchases
    polymirror sell-all   # Liquidate every open position
"""

import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from loguru import logger

from .api_client import PolymarketDataClient, ResilientFetcher
from .circuit_breaker import CircuitBreaker
from .config import Settings, get_settings
from .exchange import ClobExchange
from .humanize import Pacer
from .ledger import PurchaseLedger
from .models import ExecutionStatus, init_db
from .onchain_client import OnChainClient
from .trade_executor import TradeExecutor
from .trade_store import TradeStore
from .trader_tracker import CopyTradingBot, TradeMonitor

LOG_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)

console = Console()


def setup_logging(settings: Settings):
    """Console sink plus a rotating file sink"""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=settings.log_level.upper())
    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            settings.log_file,
            format=LOG_FORMAT,
            level="DEBUG",
            rotation="10 MB",
            retention="7 days",
            enqueue=True
        )


@dataclass
class Services:
    """Shared services, constructed once per process"""
    settings: Settings
    store: TradeStore
    fetcher: ResilientFetcher
    data_client: PolymarketDataClient
    breaker: CircuitBreaker
    exchange: ClobExchange
    executor: TradeExecutor
    pacer: Pacer

    async def close(self):
        await self.data_client.close()
        await self.store.engine.dispose()


async def build_services(settings: Settings) -> Services:
    engine = await init_db(settings.database_url)
    store = TradeStore(engine)
    pacer = Pacer()
    fetcher = ResilientFetcher(settings, pacer=pacer)
    breaker = CircuitBreaker(
        threshold=settings.block_threshold,
        pause_seconds=settings.block_pause_minutes * 60,
        backoff_base=settings.block_backoff_base_seconds,
        backoff_max=settings.block_backoff_max_seconds,
        pacer=pacer
    )
    exchange = ClobExchange(settings)
    await exchange.connect()

    executor = TradeExecutor(
        exchange,
        store,
        PurchaseLedger(store),
        breaker,
        settings=settings,
        pacer=pacer
    )
    return Services(
        settings=settings,
        store=store,
        fetcher=fetcher,
        data_client=PolymarketDataClient(fetcher, settings),
        breaker=breaker,
        exchange=exchange,
        executor=executor,
        pacer=pacer
    )


# CLI Commands
@click.group()
@click.pass_context
def cli(ctx):
    """Polymarket Mirror Trading"""
    settings = get_settings()
    setup_logging(settings)
    ctx.obj = settings


@cli.command()
@click.pass_obj
def run(settings: Settings):
    """Start mirroring the configured traders"""
    if not settings.tracked_addresses:
        console.print("[red]No traders configured. Set USER_ADDRESSES in .env[/red]")
        sys.exit(1)
    if not settings.proxy_wallet:
        console.print("[red]PROXY_WALLET is not set[/red]")
        sys.exit(1)

    async def _run():
        services = await build_services(settings)
        monitor = TradeMonitor(services.data_client, services.store, settings, breaker=services.breaker)
        bot = CopyTradingBot(monitor, services.executor, OnChainClient(settings), settings)

        console.print(Panel(
            f"[bold]Mirror Trading Started[/bold]\n"
            f"Wallet: {settings.proxy_wallet}\n"
            f"Tracking: {len(settings.tracked_addresses)} trader(s)\n"
            f"Strategy: {settings.copy_strategy} {settings.copy_size}\n"
            f"Proxies: {len(services.fetcher.proxy_rotator)}\n"
            f"Press Ctrl+C to stop",
            title="Status"
        ))

        try:
            await bot.run()
        finally:
            bot.stop()
            await services.close()
            console.print("[green]Bot stopped[/green]")

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@cli.command()
@click.pass_obj
def status(settings: Settings):
    """Show handled events and tracked purchases"""
    async def _status():
        engine = await init_db(settings.database_url)
        store = TradeStore(engine)
        try:
            counts = await store.status_counts()
            ledger = await store.ledger_summary()
        finally:
            await engine.dispose()

        counts_text = "\n".join(
            f"{name.capitalize()}: {count}" for name, count in sorted(counts.items())
        ) or "No events recorded"
        console.print(Panel(counts_text, title="Trade Events"))

        if ledger:
            table = Table(title="Tracked Purchases")
            table.add_column("Market")
            table.add_column("Asset")
            table.add_column("Buys", justify="right")
            table.add_column("Tokens", justify="right")

            for row in ledger:
                table.add_row(
                    (row["title"] or row["condition_id"])[:40],
                    f"{row['asset'][:10]}...",
                    str(row["purchases"]),
                    f"{row['tokens']:.2f}"
                )

            console.print(table)
        else:
            console.print("[yellow]No tracked purchases[/yellow]")

    asyncio.run(_status())


@cli.command("sell-all")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt")
@click.pass_obj
def sell_all(settings: Settings, yes: bool):
    """Liquidate every open position at the best bids"""
    if not settings.proxy_wallet:
        console.print("[red]PROXY_WALLET is not set[/red]")
        sys.exit(1)
    if not yes:
        click.confirm("Sell ALL open positions?", abort=True)

    async def _sell_all():
        services = await build_services(settings)
        try:
            positions = await services.data_client.get_positions(settings.proxy_wallet)
            if not positions:
                console.print("[yellow]No open positions[/yellow]")
                return

            table = Table(title="Liquidation")
            table.add_column("Market")
            table.add_column("Size", justify="right")
            table.add_column("Sold", justify="right")
            table.add_column("Result")

            for index, position in enumerate(positions):
                if index:
                    await services.pacer.jitter(2.0, 1.0)
                console.print(f"Selling {position.size:.2f} tokens of {position.title or position.asset[:12]}...")
                result = await services.executor.liquidate(position)
                color = "green" if result.sold_tokens > 0 else "red"
                table.add_row(
                    (position.title or position.condition_id)[:40],
                    f"{position.size:.2f}",
                    f"{result.sold_tokens:.2f}",
                    f"[{color}]{result.label}[/{color}]"
                )
                if result.status == ExecutionStatus.PAUSED:
                    console.print("[red]Trading paused after venue blocks, stopping[/red]")
                    break

            console.print(table)
        finally:
            await services.close()

    asyncio.run(_sell_all())


if __name__ == "__main__":
    cli()

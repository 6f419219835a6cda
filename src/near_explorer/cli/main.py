"""CLI for the NEAR RPC explorer."""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from pathlib import Path
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.traceback import install

from near_explorer.config import ExplorerConfig, load_config
from near_explorer.core.exceptions import AllProvidersFailedError, ApplicationError, ExplorerError
from near_explorer.core.explorer import Explorer
from near_explorer.core.formatting import describe_action, format_near, format_timestamp, shorten
from near_explorer.core.models import Block, FailoverEvent, FailoverEventType, Network, Transaction

install(show_locals=False)

T = TypeVar("T")

app = typer.Typer(
    name="near-explorer",
    help="Explore NEAR blocks and transactions over resilient multi-provider RPC",
    add_completion=False,
)

console = Console()

_state: dict[str, Any] = {"config": None, "debug": False}


class Direction(StrEnum):
    """Priority move direction."""

    UP = "up"
    DOWN = "down"


@app.callback()
def main(
    config: Path | None = typer.Option(None, "--config", "-c", help="YAML configuration file"),
    network: Network | None = typer.Option(None, "--network", "-n", help="Network to use for this run"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug output"),
) -> None:
    """Configure logging and load settings shared by every command."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=debug, rich_tracebacks=True)],
        force=True,
    )
    loaded = load_config(config)
    if network is not None:
        loaded.network = network
    _state["config"] = loaded
    _state["debug"] = debug


def _config() -> ExplorerConfig:
    return _state["config"] or load_config()


def _run(action: Callable[[Explorer], Awaitable[T]], *, show_failover: bool = False) -> T:
    """Build an explorer, run one async action, and report terminal errors."""

    async def runner() -> T:
        explorer = Explorer.from_config(_config())
        if show_failover or _state["debug"]:
            explorer.on_failover_event(_print_failover_event)
        try:
            return await action(explorer)
        finally:
            await explorer.aclose()

    try:
        return asyncio.run(runner())
    except ApplicationError as e:
        console.print(f"[bold red]RPC error:[/bold red] {e}")
        if _state["debug"]:
            raise
        raise typer.Exit(1) from e
    except AllProvidersFailedError as e:
        console.print(f"[bold red]All providers failed:[/bold red] {e}")
        console.print("[yellow]Enable more providers with 'near-explorer toggle <id>' or check connectivity[/yellow]")
        if _state["debug"]:
            raise
        raise typer.Exit(1) from e
    except ExplorerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        if _state["debug"]:
            raise
        raise typer.Exit(1) from e


def _print_failover_event(event: FailoverEvent) -> None:
    if event.type == FailoverEventType.PROVIDER_SWITCH:
        console.print(f"[yellow]↻ Switched to {event.provider_id}[/yellow] [dim]{event.provider_url}[/dim]")
    elif event.type == FailoverEventType.RETRY:
        console.print(f"[dim]Retrying {event.provider_id} (attempt {event.attempt})[/dim]")
    elif event.type == FailoverEventType.ERROR:
        console.print(f"[dim red]{event.provider_id}: {event.error}[/dim red]")


def _parse_block_id(value: str) -> int | str:
    return int(value) if value.isdigit() else value


# Chain queries


@app.command()
def status() -> None:
    """Show node status and the provider that answered."""

    async def action(explorer: Explorer) -> None:
        node_status = await explorer.get_status()
        info = explorer.get_current_provider_info()

        table = Table(title="Network Status", show_header=False)
        table.add_column("Field", style="bold cyan")
        table.add_column("Value", style="white")
        table.add_row("Chain", node_status.chain_id)
        table.add_row("Latest height", str(node_status.sync_info.latest_block_height))
        table.add_row("Latest hash", node_status.sync_info.latest_block_hash)
        table.add_row("Latest time", node_status.sync_info.latest_block_time)
        table.add_row("Syncing", "yes" if node_status.sync_info.syncing else "no")
        if info.provider:
            table.add_row("Provider", f"{info.provider.name} ({info.provider.url})")
        if info.health and info.health.response_time is not None:
            table.add_row("Response time", f"{info.health.response_time}ms")
        console.print(table)

    _run(action)


@app.command()
def block(
    block_id: str = typer.Argument(..., help="Block height or hash"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Show a block and its transactions."""

    async def action(explorer: Explorer) -> None:
        fetched = await explorer.get_block(_parse_block_id(block_id))
        transactions, complete = await explorer.get_block_transactions(fetched)
        if as_json:
            console.print_json(json.dumps(fetched.model_dump(mode="json")))
            return
        _print_block(fetched)
        _print_transactions(transactions, title=f"Transactions in block {fetched.height}")
        if not complete:
            console.print("[yellow]Some chunks could not be fetched; the list may be incomplete[/yellow]")

    _run(action)


@app.command()
def latest() -> None:
    """Show the latest final block."""

    async def action(explorer: Explorer) -> None:
        _print_block(await explorer.get_latest_block())

    _run(action)


@app.command()
def transactions(
    from_height: int | None = typer.Option(None, "--from", help="First block height (at most 10 sync windows back)"),
    to_height: int | None = typer.Option(None, "--to", help="Last block height"),
    account: str | None = typer.Option(None, "--account", "-a", help="Filter by signer or receiver"),
) -> None:
    """List transactions of a height range, or of the recent window."""

    async def action(explorer: Explorer) -> None:
        with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console) as progress:
            task = progress.add_task("Scanning blocks...", total=None)
            if from_height is not None or to_height is not None:
                latest_height = to_height if to_height is not None else (await explorer.get_latest_block()).height
                start = from_height if from_height is not None else latest_height
                found = await explorer.get_transactions_in_range(start, latest_height)
                if account:
                    needle = account.lower()
                    found = [tx for tx in found if needle in tx.signer_id.lower() or needle in tx.receiver_id.lower()]
            else:
                await explorer.sync_recent_transactions()
                found = explorer.get_recent_transactions(account)
            progress.update(task, description=f"✓ Found {len(found)} transactions")
        _print_transactions(found)

    _run(action)


@app.command()
def watch(
    interval: float | None = typer.Option(None, "--interval", "-i", help="Seconds between polls"),
    ticks: int | None = typer.Option(None, "--ticks", help="Stop after this many polls"),
) -> None:
    """Follow the chain and print new transactions as blocks arrive."""

    async def action(explorer: Explorer) -> None:
        seen: set[str] = set()

        def on_block(latest_block: Block) -> None:
            console.print(f"[dim]Latest block {latest_block.height}[/dim]")
            fresh = [tx for tx in explorer.get_recent_transactions() if tx.hash not in seen]
            seen.update(tx.hash for tx in fresh)
            for tx in reversed(fresh):
                console.print(f"[cyan]{tx.block_height}[/cyan] {shorten(tx.hash)} {tx.signer_id} → {tx.receiver_id}")

        poller = explorer.poller(interval=interval or _config().sync.poll_interval, on_block=on_block)
        await poller.run(max_ticks=ticks)

    try:
        _run(action, show_failover=True)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")


@app.command()
def tx(
    tx_hash: str = typer.Argument(..., help="Transaction hash"),
    account: str | None = typer.Option(None, "--account", "-a", help="Signer account id"),
) -> None:
    """Show the status of a transaction."""

    async def action(explorer: Explorer) -> None:
        result = await explorer.find_transaction(tx_hash, account)
        console.print_json(json.dumps(result))

    _run(action)


@app.command()
def account(account_id: str = typer.Argument(..., help="Account id")) -> None:
    """Show an account's balance and storage usage."""

    async def action(explorer: Explorer) -> None:
        view = await explorer.get_account(account_id)
        table = Table(title=account_id, show_header=False)
        table.add_column("Field", style="bold cyan")
        table.add_column("Value", style="white")
        table.add_row("Balance", f"{format_near(view.get('amount', '0'))} NEAR")
        table.add_row("Locked", f"{format_near(view.get('locked', '0'))} NEAR")
        table.add_row("Storage", f"{view.get('storage_usage', 0)} bytes")
        table.add_row("Block", str(view.get("block_height", "")))
        console.print(table)

    _run(action)


# Provider management


@app.command()
def providers(network: Network | None = typer.Argument(None, help="Network to list")) -> None:
    """List providers of a network with their last known health."""

    async def action(explorer: Explorer) -> None:
        target = network or explorer.registry.get_selected_network()
        table = Table(title=f"{target} providers", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="cyan")
        table.add_column("Name", style="white")
        table.add_column("URL", style="blue")
        table.add_column("Priority", justify="right")
        table.add_column("Enabled", style="green")
        table.add_column("Health")
        for provider in explorer.registry.get_all_providers(target):
            health = explorer.health.get_health(provider.id)
            if health is None:
                health_str = "[dim]unknown[/dim]"
            elif health.is_healthy:
                health_str = f"[green]✓ {health.response_time}ms[/green]"
            else:
                health_str = f"[red]✗ {health.error}[/red]"
            table.add_row(
                provider.id,
                provider.name + (" [dim](custom)[/dim]" if provider.is_custom else ""),
                provider.url,
                str(provider.priority),
                "✓" if provider.enabled else "-",
                health_str,
            )
        console.print(table)

    _run(action)


@app.command("test-provider")
def test_provider(provider_id: str | None = typer.Argument(None, help="Provider id; all providers if omitted")) -> None:
    """Probe providers with a status call."""

    async def action(explorer: Explorer) -> None:
        if provider_id:
            results = {provider_id: await explorer.health.test_provider(provider_id)}
        else:
            results = await explorer.health.test_all()
        for pid, health in results.items():
            if health.is_healthy:
                console.print(f"[green]✓ {pid}[/green] healthy ({health.response_time}ms)")
            else:
                console.print(f"[red]✗ {pid}[/red] {health.error}")

    _run(action)


@app.command("add-provider")
def add_provider(
    name: str = typer.Argument(..., help="Display name"),
    url: str = typer.Argument(..., help="Endpoint URL (http:// or https://)"),
    network: Network | None = typer.Option(None, "--network", help="Target network"),
) -> None:
    """Add a custom provider."""

    async def action(explorer: Explorer) -> None:
        provider = explorer.registry.add_custom_provider(name, url, network)
        console.print(f"[green]Added custom provider {provider.id}[/green] for {provider.network}")

    _run(action)


@app.command("remove-provider")
def remove_provider(provider_id: str = typer.Argument(..., help="Custom provider id")) -> None:
    """Remove a custom provider."""

    async def action(explorer: Explorer) -> None:
        explorer.registry.remove_custom_provider(provider_id)
        console.print(f"Removed {provider_id}")

    _run(action)


@app.command()
def toggle(provider_id: str = typer.Argument(..., help="Provider id in the selected network")) -> None:
    """Enable or disable a provider."""

    async def action(explorer: Explorer) -> None:
        provider = explorer.registry.toggle_provider(provider_id)
        console.print(f"{provider.id}: {'enabled' if provider.enabled else 'disabled'}")

    _run(action)


@app.command("enable-all")
def enable_all() -> None:
    """Enable every provider of the selected network."""

    async def action(explorer: Explorer) -> None:
        explorer.registry.enable_all_in_network()
        console.print(f"Enabled all {explorer.registry.get_selected_network()} providers")

    _run(action)


@app.command("disable-all")
def disable_all() -> None:
    """Disable every provider of the selected network."""

    async def action(explorer: Explorer) -> None:
        explorer.registry.disable_all_in_network()
        console.print(f"Disabled all {explorer.registry.get_selected_network()} providers")

    _run(action)


@app.command()
def move(
    provider_id: str = typer.Argument(..., help="Provider id"),
    direction: Direction = typer.Argument(..., help="Move towards higher or lower priority"),
) -> None:
    """Move a provider up or down in priority."""

    async def action(explorer: Explorer) -> None:
        explorer.registry.move_provider(provider_id, direction.value)
        order = ", ".join(p.id for p in explorer.registry.get_all_providers())
        console.print(f"Order: {order}")

    _run(action)


@app.command("use-network")
def use_network(network: Network = typer.Argument(..., help="Network to select")) -> None:
    """Persistently switch the selected network."""

    async def action(explorer: Explorer) -> None:
        explorer.registry.set_selected_network(network)
        console.print(f"Switched to {network} network")

    _run(action)


@app.command("reset-providers")
def reset_providers(yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")) -> None:
    """Restore the built-in providers and drop custom ones."""
    if not yes and not typer.confirm("Reset to default providers? This removes all custom providers."):
        raise typer.Exit(0)

    async def action(explorer: Explorer) -> None:
        explorer.registry.reset_to_defaults()
        console.print("Reset to default providers")

    _run(action)


# Output helpers


def _print_block(fetched: Block) -> None:
    table = Table(title=f"Block #{fetched.height}", show_header=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value", style="white")
    table.add_row("Hash", fetched.hash)
    table.add_row("Parent", fetched.header.prev_hash)
    table.add_row("Author", fetched.author)
    table.add_row("Time", format_timestamp(fetched.header.timestamp_nanosec))
    table.add_row("Chunks", str(len(fetched.chunks)))
    table.add_row("Gas price", fetched.header.gas_price)
    console.print(table)


def _print_transactions(found: list[Transaction], title: str = "Transactions") -> None:
    if not found:
        console.print("\n[yellow]No transactions found[/yellow]")
        return

    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Block", style="cyan", justify="right")
    table.add_column("Hash", style="white")
    table.add_column("Signer", style="green")
    table.add_column("Receiver", style="blue")
    table.add_column("Actions", style="yellow")
    for tx in found:
        actions = ", ".join(describe_action(a) for a in tx.actions) or "-"
        table.add_row(str(tx.block_height), shorten(tx.hash), tx.signer_id, tx.receiver_id, actions)
    console.print(table)


if __name__ == "__main__":
    app()

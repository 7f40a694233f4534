"""
Main CLI application for wallet balances, swap quotes and transaction packaging.
"""

from typing import List, Optional
from pathlib import Path
import logging

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .amm import classify_price_impact, format_swap_quote, ImpactSeverity
from .config import Config, default_watchlist
from .models import TokenOption, TransactionPackage, WalletDetails, WatchedToken
from .node import get_block_height, describe_error
from .pairs import NATIVE_SYMBOL
from .packaging import package_transfer_eip4527, render_qr
from .runtime import (
    AppState,
    BackgroundRunner,
    Command,
    connect_command,
    load_details_command,
    package_swap_command,
    package_transfer_command,
    quote_command,
)
from .utils import format_eth, format_token, is_valid_ethereum_address, shorten_address

logger = logging.getLogger(__name__)


app = typer.Typer(
    name="eth-swap",
    help="Wallet balances, Uniswap V2 swap quotes and unsigned transaction packages for QR signing."
)

console = Console()


def load_config(verbose: bool = False) -> Config:
    """Load application configuration and set up logging."""
    try:
        config = Config.from_env()
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        console.print(
            "\n[yellow]Check the values in your .env file (run `eth-swap setup` for a template).[/yellow]")
        raise typer.Exit(1)

    level = "DEBUG" if verbose else (config.log_level if config.log_enabled else "WARNING")
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    return config


def run_with_spinner(runner: BackgroundRunner, state: AppState, description: str,
                     command: Command, timeout: float):
    """Submit one command and apply its result while showing a spinner."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(description, total=None)
        runner.submit(command)
        # Allow the command's own deadline plus scheduling slack
        runner.run_until_idle(state, timeout=timeout + 5)


def open_connection(runner: BackgroundRunner, state: AppState, config: Config):
    state.connecting = True
    run_with_spinner(runner, state, f"Connecting to {config.rpc_url}...",
                     connect_command(config.rpc_url, config.connect_timeout),
                     config.connect_timeout)
    if state.connection is None:
        console.print(
            f"[red]RPC connection failed: {state.connection_error or 'timed out'}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓ RPC connected to {state.connection.url}[/green]")


def watchlist_token_options(watchlist: List[WatchedToken]) -> List[TokenOption]:
    """ETH plus every watched token, for quoting without a loaded wallet."""
    options = [TokenOption(symbol=NATIVE_SYMBOL, decimals=18, is_native=True)]
    options.extend(TokenOption(symbol=t.symbol, decimals=t.decimals) for t in watchlist)
    return options


def token_index(tokens: List[TokenOption], symbol: str) -> int:
    for i, token in enumerate(tokens):
        if token.symbol.lower() == symbol.lower():
            return i
    known = ", ".join(t.symbol for t in tokens)
    console.print(f"[red]Unknown token {symbol}. Known tokens: {known}[/red]")
    raise typer.Exit(1)


def display_details(details: WalletDetails):
    """Display wallet balances in a rich table."""
    console.print(Panel(
        f"Address: [yellow]{details.address}[/yellow]\n"
        f"ETH: [green]{format_eth(details.native_balance)}[/green]\n"
        f"Loaded: {details.loaded_at.strftime('%Y-%m-%d %H:%M:%S')}",
        title="Wallet",
        expand=False
    ))

    if details.error_message:
        console.print(f"[red]{details.error_message}[/red]")
        return

    if not details.tokens:
        console.print("[yellow]No watched token balances.[/yellow]")
        return

    table = Table(title="Token Balances")
    table.add_column("Symbol", style="cyan", no_wrap=True)
    table.add_column("Balance", style="green", justify="right")
    table.add_column("Raw", style="white", justify="right")
    for token in details.tokens:
        table.add_row(token.symbol, format_token(token.balance, token.decimals, token.symbol),
                      str(token.balance))
    console.print(table)


def display_package(package: TransactionPackage):
    if package.error:
        console.print(f"[red]Transaction packaging failed: {package.error}[/red]")
        raise typer.Exit(1)

    console.print(Panel(package.display_text, title=f"Transaction ({package.format})",
                        expand=False))
    if package.raw_hex:
        console.print(f"Raw unsigned tx: [yellow]{package.raw_hex}[/yellow]")
    console.print(f"QR payload: [cyan]{package.qr_payload}[/cyan]")
    console.print(render_qr(package.qr_payload), highlight=False, markup=False)


def fetch_quote(runner: BackgroundRunner, state: AppState, config: Config,
                from_symbol: str, to_symbol: str, amount: str, reverse: bool):
    swap = state.swap
    swap.from_token_index = token_index(swap.tokens, from_symbol)
    swap.to_token_index = token_index(swap.tokens, to_symbol)

    if reverse:
        request = swap.set_to_amount(amount)
    else:
        request = swap.set_from_amount(amount)

    if request is None:
        if swap.pair_warning:
            console.print(f"[yellow]{swap.pair_warning}[/yellow]")
        else:
            console.print("[yellow]Nothing to quote for these parameters.[/yellow]")
        raise typer.Exit(1)

    run_with_spinner(runner, state, "Fetching swap quote...",
                     quote_command(state.connection, request, config.call_timeout),
                     config.call_timeout * 3)

    if swap.quote_error:
        console.print(f"[red]Swap quote error: {swap.quote_error}[/red]")
        raise typer.Exit(1)
    if swap.quote is None:
        console.print("[red]No quote received before the deadline.[/red]")
        raise typer.Exit(1)


def display_quote(state: AppState):
    swap = state.swap
    quote = swap.quote
    from_token, to_token = swap.from_token, swap.to_token

    table = Table(title=f"Swap Quote ({swap.mode.value})")
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="green", justify="right")
    table.add_row("Amount In", f"{swap.from_amount} {from_token.symbol}")
    table.add_row("Amount Out", f"{swap.to_amount} {to_token.symbol}")
    table.add_row("Price Impact", f"{quote.price_impact_percent:.4f}%")
    table.add_row("Effective Price (raw units)", f"{quote.effective_price:.12g}")
    table.add_row("Reserve0", str(quote.reserve0))
    table.add_row("Reserve1", str(quote.reserve1))
    console.print(table)

    console.print(format_swap_quote(quote, from_token.symbol, to_token.symbol,
                                    from_token.decimals, to_token.decimals))
    if swap.price_impact_warning:
        color = "red" if classify_price_impact(
            quote.price_impact_percent) is ImpactSeverity.HIGH else "yellow"
        console.print(f"[{color}]{swap.price_impact_warning}[/{color}]")


@app.command()
def balances(
    address: Optional[str] = typer.Argument(
        None, help="Wallet address (defaults to WALLET_ADDRESS / the active wallet)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Show ETH and watched token balances for a wallet."""
    config = load_config(verbose)
    address = address or config.wallet_address
    if not address or not is_valid_ethereum_address(address):
        console.print(f"[red]Invalid or missing wallet address: {address}[/red]")
        raise typer.Exit(1)

    runner = BackgroundRunner()
    state = AppState()
    try:
        open_connection(runner, state, config)
        state.loading = True
        run_with_spinner(runner, state, f"Loading balances for {shorten_address(address)}...",
                         load_details_command(state.connection, address,
                                              default_watchlist(), config.balance_timeout),
                         config.balance_timeout)
    finally:
        runner.shutdown()

    if state.details is None:
        console.print("[red]Balance load did not finish.[/red]")
        raise typer.Exit(1)
    display_details(state.details)


@app.command()
def quote(
    from_token: str = typer.Argument(..., help="Symbol to sell (e.g. ETH)"),
    to_token: str = typer.Argument(..., help="Symbol to buy (e.g. USDC)"),
    amount: str = typer.Argument(..., help="Decimal amount"),
    reverse: bool = typer.Option(
        False, "--reverse", "-r", help="Treat AMOUNT as the desired output and quote the input"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Quote a Uniswap V2 swap (forward or reverse)."""
    config = load_config(verbose)
    runner = BackgroundRunner()
    state = AppState()
    state.swap.set_tokens(watchlist_token_options(default_watchlist()))
    try:
        open_connection(runner, state, config)
        fetch_quote(runner, state, config, from_token, to_token, amount, reverse)
    finally:
        runner.shutdown()
    display_quote(state)


@app.command("package-swap")
def package_swap_cmd(
    from_address: str = typer.Argument(..., help="Sender address"),
    from_token: str = typer.Argument(..., help="Symbol to sell"),
    to_token: str = typer.Argument(..., help="Symbol to buy"),
    amount: str = typer.Argument(..., help="Decimal amount to sell"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Quote a swap and package it for QR signing with the quoted output as minimum."""
    config = load_config(verbose)
    runner = BackgroundRunner()
    state = AppState()
    state.swap.set_tokens(watchlist_token_options(default_watchlist()))
    try:
        open_connection(runner, state, config)
        fetch_quote(runner, state, config, from_token, to_token, amount, reverse=False)
        display_quote(state)

        swap = state.swap
        state.packaging = True
        run_with_spinner(runner, state, "Packaging swap...",
                         package_swap_command(from_address, swap.from_token, swap.to_token,
                                              swap.from_amount, swap.quote.amount_out),
                         config.call_timeout)
    finally:
        runner.shutdown()
    display_package(state.transaction)


@app.command("package-transfer")
def package_transfer_cmd(
    from_address: str = typer.Argument(..., help="Sender address"),
    to_address: str = typer.Argument(..., help="Recipient address"),
    amount: str = typer.Argument(..., help="ETH amount, e.g. 0.5"),
    eip4527: bool = typer.Option(
        False, "--eip4527", help="Emit EIP-4527 style JSON instead of an EIP-681 URI"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Package an unsigned ETH transfer for QR signing."""
    config = load_config(verbose)

    if eip4527:
        with console.status("Packaging transfer..."):
            package = package_transfer_eip4527(from_address, to_address, amount, config.rpc_url)
        display_package(package)
        return

    runner = BackgroundRunner()
    state = AppState()
    try:
        state.packaging = True
        run_with_spinner(runner, state, "Packaging transfer...",
                         package_transfer_command(from_address, to_address, amount, config.rpc_url),
                         config.connect_timeout + 3 * config.call_timeout)
    finally:
        runner.shutdown()
    if state.transaction is None:
        console.print("[red]Packaging did not finish.[/red]")
        raise typer.Exit(1)
    display_package(state.transaction)


@app.command("block-height")
def block_height(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Show the latest block number of the configured node."""
    config = load_config(verbose)
    runner = BackgroundRunner()
    state = AppState()
    try:
        open_connection(runner, state, config)
    finally:
        runner.shutdown()

    try:
        height = get_block_height(state.connection, config.block_height_timeout)
    except Exception as e:
        console.print(f"[red]Failed to get block height: {describe_error(e)}[/red]")
        raise typer.Exit(1)
    console.print(f"Block height: [green]{height:,}[/green]")


@app.command()
def setup():
    """Setup the application by creating a .env file template."""
    env_content = """# Wallet swap configuration

# JSON-RPC endpoint (http(s)://, ws(s):// or a .ipc path)
ETH_RPC_URL=https://ethereum-rpc.publicnode.com

# Optional: default wallet for `eth-swap balances`
# WALLET_ADDRESS=0x...

# Optional: JSON document with rpc_urls / wallets; its active entries win
# WALLET_CONFIG=~/.config/wallet/config.json

# Timeouts in seconds
CONNECT_TIMEOUT=8
BALANCE_TIMEOUT=12
CALL_TIMEOUT=10

# Logging
LOGGER=false
LOG_LEVEL=INFO
"""

    env_path = Path(".env")
    if env_path.exists():
        console.print("[yellow].env file already exists![/yellow]")
        if not typer.confirm("Overwrite existing .env file?"):
            return

    with open(env_path, 'w') as f:
        f.write(env_content)

    console.print(f"[green]Created .env file at {env_path.absolute()}[/green]")
    console.print(
        "\n[yellow]Edit ETH_RPC_URL to point at your node, then run:[/yellow]")
    console.print("  eth-swap balances <address>")
    console.print("  eth-swap quote ETH USDC 1.0")


if __name__ == "__main__":
    app()

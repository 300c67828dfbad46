"""
SolWallet - Solana wallet with a page-facing provider bridge.

Command-line entry point. Each invocation is short-lived: commands that need
keys prompt for the password and unlock for the duration of the command.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from errors import WalletError
from models import WalletStore
from networks import NETWORKS, SolanaNetworkClient, format_address
from services import INTERNAL_SENDER, Operation, WalletService
from services.logging import configure_logging, load_recent_logs
from settings import load_settings
from utils import get_wallet_path
from wallet import KdfParams, KeyManager

app = typer.Typer(
    name="solwallet",
    help="Solana wallet: create, import and manage accounts, sign and send.",
    no_args_is_help=True,
)
console = Console()


def _build_service() -> WalletService:
    settings = load_settings()
    kdf_params = KdfParams(
        time_cost=settings.kdf_time_cost,
        memory_cost=settings.kdf_memory_cost,
        parallelism=settings.kdf_parallelism,
    )
    key_manager = KeyManager(WalletStore(get_wallet_path()), kdf_params)
    return WalletService(key_manager, SolanaNetworkClient(settings.custom_rpcs), settings=settings)


def _run(action):
    """Run `action(service)` on a fresh service, converting wallet errors to Exit(1)."""
    async def _main():
        service = _build_service()
        try:
            return await action(service)
        finally:
            await service.network_client.close()

    try:
        return asyncio.run(_main())
    except (WalletError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _check(response: dict) -> dict:
    if not response.get("success"):
        console.print(f"[bold red]Error:[/bold red] {response.get('error')}")
        raise typer.Exit(1)
    return response


def _password(prompt: str = "Password", confirm: bool = False) -> str:
    return typer.prompt(prompt, hide_input=True, confirmation_prompt=confirm)


@app.callback()
def _setup(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")):
    settings = load_settings()
    configure_logging(
        logging.DEBUG if verbose else logging.WARNING,
        retention_days=settings.log_retention_days,
    )


# ------------------------------------------------------------------
# create / import
# ------------------------------------------------------------------


@app.command()
def create(
    words: int = typer.Option(12, "--words", "-w", help="Seed phrase length (12 or 24)"),
):
    """Create a new wallet and show its seed phrase."""
    password = _password("New password", confirm=True)

    async def _create(service: WalletService):
        phrase = await service.create_wallet(password, words)
        return phrase, service.key_manager.current_address()

    phrase, address = _run(_create)
    console.print(Panel(
        f"[bold]{phrase}[/bold]\n\n"
        f"Write these words down and keep them offline.\n"
        f"Anyone with them controls this wallet.",
        title="Seed Phrase",
    ))
    console.print(f"[bold green]Wallet created[/bold green] {address}")


@app.command("import-phrase")
def import_phrase():
    """Import a wallet from a BIP-39 seed phrase."""
    phrase = typer.prompt("Seed phrase", hide_input=True)
    password = _password("New password", confirm=True)
    address = _run(lambda service: service.import_seed_phrase(phrase, password))
    console.print(f"[bold green]Wallet imported[/bold green] {address}")


@app.command("import-key")
def import_key():
    """Import a single account from a private key (base58 or JSON byte array)."""
    private_key = typer.prompt("Private key", hide_input=True)
    password = _password("New password", confirm=True)
    address = _run(lambda service: service.import_private_key(private_key, password))
    console.print(f"[bold green]Key imported[/bold green] {address}")


# ------------------------------------------------------------------
# accounts
# ------------------------------------------------------------------


@app.command()
def accounts():
    """List the wallet's accounts."""
    password = _password()

    async def _accounts(service: WalletService):
        current = await service.unlock(password)
        return current, service.key_manager.accounts

    current, items = _run(_accounts)
    table = Table(title="Accounts")
    table.add_column("", style="bold green")
    table.add_column("Index", justify="right")
    table.add_column("Address", style="cyan")
    for account in items:
        table.add_row("*" if account.index == current.index else "", str(account.index), account.address)
    console.print(table)


@app.command("add-account")
def add_account():
    """Derive the next account and switch to it."""
    password = _password()

    async def _add(service: WalletService):
        await service.unlock(password)
        return await service.add_account()

    account = _run(_add)
    console.print(f"[bold green]Account {account.index}[/bold green] {account.address}")


@app.command()
def use(index: int = typer.Argument(help="Account index to switch to")):
    """Switch the current account."""
    password = _password()

    async def _use(service: WalletService):
        await service.unlock(password)
        return await service.select_account(index)

    account = _run(_use)
    console.print(f"Now using account {account.index}: [cyan]{account.address}[/cyan]")


@app.command()
def network(name: Optional[str] = typer.Argument(None, help="Network to switch to")):
    """Show or switch the active network."""
    if name:
        selected = _run(lambda service: service.set_network(name))
        console.print(f"Network set to [bold]{selected}[/bold]")
        return

    async def _current(service: WalletService):
        return service.key_manager.network

    current = _run(_current)
    table = Table(title="Networks")
    table.add_column("", style="bold green")
    table.add_column("Name", style="bold")
    table.add_column("RPC")
    table.add_column("Testnet", style="dim")
    for config in NETWORKS.values():
        table.add_row(
            "*" if config.name == current else "",
            config.name,
            config.rpc_url,
            "yes" if config.is_testnet else "no",
        )
    console.print(table)


# ------------------------------------------------------------------
# chain
# ------------------------------------------------------------------


@app.command()
def balance():
    """Show the current account's balance."""
    response = _check(_run(lambda service: service.handle(
        {"operation": Operation.GET_BALANCE.value}, INTERNAL_SENDER
    )))
    console.print(f"[bold]{response['balance']:.9f} SOL[/bold] on {response['network']}")


@app.command()
def history(limit: int = typer.Option(10, "--limit", "-n", help="Number of transactions")):
    """Show recent transactions."""
    response = _check(_run(lambda service: service.handle(
        {"operation": Operation.GET_TRANSACTIONS.value, "limit": limit}, INTERNAL_SENDER
    )))

    transactions = response["transactions"]
    if not transactions:
        console.print("[yellow]No transactions yet.[/yellow]")
        return

    table = Table(title=f"Recent Activity ({response['network']})")
    table.add_column("Time")
    table.add_column("Type")
    table.add_column("Amount (SOL)", justify="right")
    table.add_column("Fee", justify="right", style="dim")
    table.add_column("Status")
    table.add_column("Signature", style="cyan")
    for tx in transactions:
        when = "pending"
        if tx["timestamp"] is not None:
            when = datetime.fromtimestamp(tx["timestamp"], tz=timezone.utc).strftime("%Y-%m-%d %H:%M")
        style = "green" if tx["type"] == "received" else "red"
        table.add_row(
            when,
            f"[{style}]{tx['type']}[/{style}]",
            f"{tx['amount']:.9f}",
            f"{tx['fee']:.6f}",
            tx["status"] or "",
            format_address(tx["signature"], 8),
        )
    console.print(table)


@app.command()
def send(
    recipient: str = typer.Argument(help="Recipient address"),
    amount: float = typer.Argument(help="Amount in SOL"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Send SOL from the current account."""
    if not yes:
        typer.confirm(f"Send {amount} SOL to {recipient}?", abort=True)
    password = _password()

    async def _send(service: WalletService):
        await service.unlock(password)
        return await service.handle(
            {"operation": Operation.TRANSFER.value, "recipient": recipient, "amount": amount},
            INTERNAL_SENDER,
        )

    response = _check(_run(_send))
    console.print(f"[bold green]Sent[/bold green] {response['signature']}")
    console.print(response["explorerUrl"])


# ------------------------------------------------------------------
# secrets
# ------------------------------------------------------------------


@app.command("export-seed")
def export_seed():
    """Reveal the seed phrase."""
    typer.confirm("Anyone who sees the seed phrase controls all accounts. Continue?", abort=True)
    password = _password()

    async def _export(service: WalletService):
        await service.unlock(password)
        return await service.export_seed_phrase(password)

    console.print(Panel(f"[bold]{_run(_export)}[/bold]", title="Seed Phrase"))


@app.command("export-key")
def export_key():
    """Reveal the current account's private key."""
    typer.confirm("Anyone who sees the private key controls this account. Continue?", abort=True)
    password = _password()

    async def _export(service: WalletService):
        await service.unlock(password)
        return await service.export_private_key(password)

    console.print(Panel(f"[bold]{_run(_export)}[/bold]", title="Private Key"))


@app.command("change-password")
def change_password():
    """Re-encrypt the wallet under a new password."""
    old = _password("Current password")
    new = _password("New password", confirm=True)
    _run(lambda service: service.change_password(old, new))
    console.print("[bold green]Password changed[/bold green]")


@app.command()
def forget(yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")):
    """Delete all wallet data from this machine."""
    if not yes:
        typer.confirm("This removes the wallet from this machine. Continue?", abort=True)
    _run(lambda service: service.forget())
    console.print("[bold red]Wallet data removed[/bold red]")


@app.command()
def logs(lines: int = typer.Option(50, "--lines", "-n", help="Number of lines")):
    """Show recent log lines."""
    recent = load_recent_logs(lines)
    if not recent:
        console.print("[yellow]No logs yet.[/yellow]")
        return
    for line in recent:
        console.print(line, markup=False, highlight=False)


def main():
    """Application entry point."""
    app()


if __name__ == "__main__":
    main()

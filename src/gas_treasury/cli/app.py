"""CLI for gas-treasury - deploy Kazar, fund its treasury, top up and mint."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from gas_treasury.config import DEFAULT_CONFIG_NAME, ConfigError, Settings, load_settings, save_settings

app = typer.Typer(
    name="gas-treasury",
    help="Fund child wallets with gas from a contract-held treasury and mint Kazar NFTs.",
    no_args_is_help=True,
)
console = Console()

_config_path: Optional[Path] = None
_env_file: Optional[Path] = None


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"gas-treasury {version('gas-treasury')}")
        raise typer.Exit()


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"YAML config file (default: ./{DEFAULT_CONFIG_NAME} if present)",
        envvar="GAS_TREASURY_CONFIG",
    ),
    env_file: Optional[Path] = typer.Option(None, "--env-file", help="Load variables from this .env file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Fund child wallets with gas from a contract-held treasury and mint Kazar NFTs."""
    global _config_path, _env_file
    _config_path = config
    _env_file = env_file
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _settings() -> Settings:
    try:
        return load_settings(_config_path, env_file=_env_file)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _manager(contract: bool = True):
    from gas_treasury.chain.manager import GasManager

    try:
        return GasManager.from_settings(_settings(), contract=contract)
    except (ConfigError, KeyError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _resolve(manager, who: str) -> str:
    """Accept either an 0x address or a username from the user store."""
    if who.lower().startswith("0x"):
        return who
    from gas_treasury.chain.manager import UserNotFound

    try:
        return manager.user(who).address
    except UserNotFound as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _print_tx(manager, label: str, tx_hash: str) -> None:
    link = manager.explorer_link(tx_hash)
    console.print(f"{label} [cyan]{tx_hash}[/cyan]" + (f"\n[dim]{link}[/dim]" if link else ""))


def _print_short(err) -> None:
    from gas_treasury.chain.manager import format_ether

    table = Table(title="Recipients below threshold")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Recipient", style="cyan")
    table.add_column("Balance", justify="right")
    table.add_column("Top-up", justify="right")
    for s in err.short:
        table.add_row(str(s.index), str(s.recipient_id), format_ether(s.current_balance), format_ether(s.amount))
    console.print(table)
    console.print(
        f"[red]Treasury holds {format_ether(err.available)} but needs "
        f"{format_ether(err.required)} (short {format_ether(err.shortfall)}).[/red] "
        "Fund the contract and retry."
    )


# ------------------------------------------------------------------
# Deploy / demo
# ------------------------------------------------------------------


@app.command()
def demo(
    artifact: Path = typer.Option(..., "--artifact", "-a", help="solc JSON output containing Kazar"),
):
    """Deploy Kazar, fund it, top up a fresh child from the treasury and mint."""
    from gas_treasury.chain.manager import format_ether

    manager = _manager(contract=False)
    try:
        report = manager.run_demo(artifact, on_step=lambda msg: console.print(f"[dim]>[/dim] {msg}"))
    except Exception as e:
        console.print(f"[red]Demo failed: {e}[/red]")
        raise typer.Exit(1)

    console.print(Panel(
        f"Contract : [cyan]{report.contract}[/cyan]\n"
        f"Treasury : {format_ether(report.treasury)}\n"
        f"Child    : [cyan]{report.child_address}[/cyan]\n"
        f"  before : {format_ether(report.child_balance_start)}\n"
        f"  after  : {format_ether(report.child_balance_after)}\n\n"
        f"Token ID : {report.token_id}\n"
        f"Owner    : {report.token_owner}\n"
        f"Balance  : {report.token_balance}\n"
        f"tokenURI : {report.token_uri}",
        title="Final State",
    ))


@app.command()
def deploy(
    artifact: Path = typer.Option(..., "--artifact", "-a", help="solc JSON output containing Kazar"),
):
    """Deploy the Kazar contract from a compiled artifact."""
    manager = _manager(contract=False)
    try:
        address = manager.deploy(artifact)
    except Exception as e:
        console.print(f"[red]Deploy failed: {e}[/red]")
        raise typer.Exit(1)
    console.print(Panel(
        f"[bold green]Kazar deployed![/bold green]\n\n"
        f"Address: [cyan]{address}[/cyan]\n\n"
        f"[dim]Set CONTRACT_ADDRESS={address} to use it.[/dim]",
        title="Deploy",
    ))


# ------------------------------------------------------------------
# Treasury
# ------------------------------------------------------------------


@app.command()
def treasury():
    """Show chain, contract owner and treasury balance."""
    manager = _manager()
    try:
        info = manager.health()
    except Exception as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(
        f"[bold]Chain {info['chainId']}[/bold] ({info['network'] or 'custom'})  contract [cyan]{info['contract']}[/cyan]\n"
        f"Owner: {info['owner']}\nTreasury: [bold]{info['treasury']}[/bold]"
    )


@app.command()
def fund(amount: str = typer.Argument(help="Native amount to send to the treasury (e.g. 0.5)")):
    """Send native value from the owner wallet to the contract treasury."""
    manager = _manager()
    try:
        result = manager.fund_contract(amount)
    except Exception as e:
        console.print(f"[red]Funding failed: {e}[/red]")
        raise typer.Exit(1)
    _print_tx(manager, "Funded. Tx", result["hash"])
    console.print(f"Treasury now [bold]{result['treasury']}[/bold]")


@app.command()
def topup(
    recipients: List[str] = typer.Argument(help="Addresses or usernames"),
    amount: str = typer.Option(..., "--amount", help="Native amount per recipient"),
    threshold: str = typer.Option(..., "--threshold", help="Only recipients below this balance are paid"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without sending"),
):
    """Top up recipients below a threshold from the contract treasury."""
    from gas_treasury.chain.manager import format_ether, to_wei
    from gas_treasury.policy import InsufficientTreasury

    manager = _manager()
    addresses = [_resolve(manager, r) for r in recipients]
    try:
        if dry_run:
            plan = manager.kazar.preview_distribution(addresses, to_wei(amount), to_wei(threshold))
            outcomes, tx_hash = plan.outcomes, None
        else:
            result = manager.top_up(addresses, to_wei(amount), to_wei(threshold))
            outcomes, tx_hash = result.plan.outcomes, result.tx_hash
    except InsufficientTreasury as e:
        _print_short(e)
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"[red]Top-up failed: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Top-up plan" if dry_run else "Top-up")
    table.add_column("Recipient", style="cyan")
    table.add_column("Status")
    table.add_column("Amount", justify="right")
    for o in outcomes:
        status = "[green]paid[/green]" if o.sent else f"[dim]skipped ({o.reason.value})[/dim]"
        table.add_row(str(o.recipient_id), status, format_ether(o.amount))
    console.print(table)
    if tx_hash:
        _print_tx(manager, "Tx:", tx_hash)


@app.command()
def sweep(
    amount: str = typer.Argument(help="Native amount to withdraw"),
    to: str = typer.Option(..., "--to", "-t", help="Destination address or username"),
):
    """Withdraw from the treasury unconditionally (owner only)."""
    manager = _manager()
    dest = _resolve(manager, to)
    typer.confirm(f"Sweep {amount} from the treasury to {dest}?", abort=True)
    try:
        result = manager.sweep(dest, amount)
    except Exception as e:
        console.print(f"[red]Sweep failed: {e}[/red]")
        raise typer.Exit(1)
    _print_tx(manager, "Swept. Tx", result["hash"])
    console.print(f"Treasury now [bold]{result['treasury']}[/bold]")


# ------------------------------------------------------------------
# Tokens
# ------------------------------------------------------------------


@app.command()
def mint(
    username: str = typer.Argument(help="User to mint to"),
    token_id: Optional[int] = typer.Option(None, "--token-id", help="Token id (default: first free)"),
    start_id: int = typer.Option(1, "--start-id", help="Where to start scanning for a free id"),
    scan_limit: int = typer.Option(1000, "--scan-limit", help="How many ids to scan"),
):
    """Mint a token to a user, topping up their gas from the treasury first."""
    from gas_treasury.chain.manager import MintError, UserNotFound

    manager = _manager()
    try:
        result = manager.mint(username, token_id, start_id, scan_limit)
    except UserNotFound as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except MintError as e:
        console.print(f"[red]{e}: {e.detail}[/red]")
        raise typer.Exit(1)

    for w in result["warnings"]:
        console.print(f"[yellow]warning:[/yellow] {w}")
    console.print(Panel(json.dumps(result, indent=2), title=f"Minted token {result['tokenId']}"))


@app.command()
def checkin(
    username: str = typer.Argument(help="Token holder"),
    token_id: int = typer.Argument(help="Token id to check in"),
):
    """Emit a check-in for a token the user owns."""
    manager = _manager()
    try:
        result = manager.check_in(username, token_id)
    except Exception as e:
        console.print(f"[red]Check-in failed: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"Checked in. Tx [cyan]{result['tx']}[/cyan]")


# ------------------------------------------------------------------
# Server
# ------------------------------------------------------------------


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port"),
):
    """Run the REST API."""
    from gas_treasury.api.server import run_server

    manager = _manager()
    settings = manager.settings
    bind_host = host or settings.api.host
    bind_port = port or settings.api.port
    console.print(f"[bold]API listening on :{bind_port}[/bold]  open http://localhost:{bind_port}/")
    run_server(manager, host=bind_host, port=bind_port)


# ------------------------------------------------------------------
# minter sub-commands
# ------------------------------------------------------------------

minter_app = typer.Typer(name="minter", help="Manage minting rights.", no_args_is_help=True)
app.add_typer(minter_app, name="minter")


@minter_app.command("add")
def minter_add(who: str = typer.Argument(help="Address or username")):
    """Grant minting rights (no-op if already a minter)."""
    manager = _manager()
    address = _resolve(manager, who)
    try:
        added = manager.ensure_minter(address)
    except Exception as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    if added:
        console.print(f"Minter added: [cyan]{address}[/cyan]")
    else:
        console.print(f"[dim]{address} is already a minter.[/dim]")


@minter_app.command("remove")
def minter_remove(who: str = typer.Argument(help="Address or username")):
    """Revoke minting rights."""
    manager = _manager()
    address = _resolve(manager, who)
    try:
        manager.remove_minter(address)
    except Exception as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(f"Minter removed: [cyan]{address}[/cyan]")


@minter_app.command("check")
def minter_check(who: str = typer.Argument(help="Address or username")):
    """Show whether an address may mint."""
    manager = _manager()
    address = _resolve(manager, who)
    is_minter = manager.kazar.is_minter(address)
    console.print(f"{address}: {'[green]minter[/green]' if is_minter else '[yellow]not a minter[/yellow]'}")


# ------------------------------------------------------------------
# user sub-commands
# ------------------------------------------------------------------

user_app = typer.Typer(name="user", help="Manage demo users and their wallets.", no_args_is_help=True)
app.add_typer(user_app, name="user")


def _store():
    from gas_treasury.storage import UserStore

    return UserStore(Path(_settings().storage.users_db))


@user_app.command("create")
def user_create(username: str = typer.Argument(help="New username")):
    """Create a user with a fresh wallet (dev only: key stored in clear)."""
    record, created = _store().create(username)
    if created:
        console.print(f"Created [bold]{username}[/bold]: [cyan]{record.address}[/cyan]")
    else:
        console.print(f"[yellow]{username} exists[/yellow]: [cyan]{record.address}[/cyan]")


@user_app.command("show")
def user_show(username: str = typer.Argument(help="Username")):
    """Show a user's wallet address."""
    record = _store().get(username)
    if record is None:
        console.print(f"[red]User '{username}' not found.[/red]")
        raise typer.Exit(1)
    console.print(f"{username}: [cyan]{record.address}[/cyan]")


@user_app.command("list")
def user_list():
    """List all users."""
    users = _store().list_users()
    if not users:
        console.print("[dim]No users yet.[/dim]")
        return
    table = Table(title="Users")
    table.add_column("Username", style="bold")
    table.add_column("Address", style="cyan")
    table.add_column("Created", style="dim")
    for name, record in users.items():
        table.add_row(name, record.address, record.created_at.strftime("%Y-%m-%d %H:%M"))
    console.print(table)


# ------------------------------------------------------------------
# config sub-commands
# ------------------------------------------------------------------

config_app = typer.Typer(name="config", help="Inspect or write configuration.", no_args_is_help=True)
app.add_typer(config_app, name="config")


@config_app.command("show")
def config_show():
    """Print the effective configuration (private key hidden)."""
    data = _settings().model_dump(mode="json")
    if data["chain"]["parent_pk"]:
        data["chain"]["parent_pk"] = "***"
    console.print_json(json.dumps(data))


@config_app.command("init")
def config_init(
    path: Path = typer.Argument(Path(DEFAULT_CONFIG_NAME), help="Where to write the config"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
):
    """Write a config file from the current settings."""
    if path.exists() and not force:
        console.print(f"[yellow]{path} exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)
    save_settings(_settings(), path)
    console.print(f"Wrote [cyan]{path}[/cyan]")


if __name__ == "__main__":
    app()

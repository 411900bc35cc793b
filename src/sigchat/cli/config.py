"""CLI: sigchat config show|init"""

from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from sigchat.config import Config, config_path, save_config

console = Console()


def _load_config() -> Config:
    from sigchat.cli.main import _load_config
    return _load_config()


@click.group()
def config():
    """Configuration commands."""


@config.command("show")
def config_show():
    """Show the current configuration."""
    cfg = _load_config()
    table = Table(title=str(config_path()))
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in cfg.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


@config.command("init")
@click.option("--user-number", required=True, help="Your account's phone number")
@click.option("--user-name", default=None, help="Name shown on your own messages")
@click.option("--storage-root", default=None, help="Daemon data folder holding attachments/")
@click.option("--daemon-socket", default=None, help="host:port or unix socket path of a running daemon")
def config_init(user_number: str, user_name: Optional[str], storage_root: Optional[str], daemon_socket: Optional[str]):
    """Write the account settings."""
    cfg = _load_config()
    updates = {"user_number": user_number}
    if user_name:
        updates["user_name"] = user_name
    if storage_root:
        updates["storage_root"] = storage_root
    if daemon_socket:
        updates["daemon_socket"] = daemon_socket
    path = save_config(cfg.model_copy(update=updates))
    console.print(f"[green]Configured {user_number}[/green]")
    console.print(f"[dim]Saved to {path}[/dim]")

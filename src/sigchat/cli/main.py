"""
sigchat CLI — `sigchat` command.

Commands:
  sigchat listen                        Print incoming messages as they arrive
  sigchat send <recipient> <message>    One-shot message
  sigchat chat <recipient>              Interactive REPL chat
  sigchat config <cmd>                  Show or initialise configuration
"""

import asyncio
import logging
from typing import Optional

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install sigchat[cli]")

from sigchat.client import AsyncSignalClient
from sigchat.config import Config, load_config
from sigchat.errors import ConfigError

console = Console()


def _setup_logging(level: str, log_file: Optional[str]) -> None:
    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    else:
        handler = RichHandler(console=Console(stderr=True), show_path=False)
    logging.basicConfig(level=level.upper(), handlers=[handler], force=True)


def _load_config() -> Config:
    ctx = click.get_current_context(silent=True)
    if ctx is not None and isinstance(ctx.obj, Config):
        return ctx.obj
    try:
        return load_config()
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)


def _get_client(cfg: Optional[Config] = None) -> AsyncSignalClient:
    if cfg is None:
        cfg = _load_config()
    if not cfg.user_number:
        console.print("[red]No account configured. Run `sigchat config init` first.[/red]")
        raise SystemExit(1)
    return AsyncSignalClient.from_config(cfg)


def _run(coro):
    return asyncio.run(coro)


@click.group()
@click.version_option("0.1.0")
@click.option("--debug", is_flag=True, help="Log at DEBUG level")
@click.option("--log-file", default=None, type=click.Path(dir_okay=False), help="Write logs to a file")
@click.pass_context
def main(ctx: click.Context, debug: bool, log_file: Optional[str]):
    """sigchat — chat with your contacts through a messaging daemon."""
    try:
        cfg = load_config()
        ctx.obj = cfg
    except ConfigError:
        # reported by the subcommand that needs it
        cfg = Config()
    level = "DEBUG" if debug else cfg.log_level
    _setup_logging(level, log_file or cfg.log_file)


# Register subcommands from separate modules
from sigchat.cli.chat import chat_cmd, listen_cmd, send_cmd
from sigchat.cli.config import config

main.add_command(listen_cmd)
main.add_command(send_cmd)
main.add_command(chat_cmd)
main.add_command(config)


if __name__ == "__main__":
    main()

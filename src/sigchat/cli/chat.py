"""CLI: sigchat listen, sigchat send, sigchat chat"""

import asyncio
from datetime import datetime
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape

from sigchat.client import AsyncSignalClient
from sigchat.config import Config
from sigchat.contacts import Contact
from sigchat.conversations import Message
from sigchat.errors import AttachmentError, SigchatError
from sigchat.models.events import EngineEvent, NotifierEvent

console = Console()


def _load_config():
    from sigchat.cli.main import _load_config
    return _load_config()


def _get_client(cfg: Optional[Config] = None) -> AsyncSignalClient:
    from sigchat.cli.main import _get_client
    return _get_client(cfg)


def _run(coro):
    from sigchat.cli.main import _run
    return _run(coro)


def _status_mark(msg: Message) -> str:
    if not msg.from_self:
        return ""
    if msg.send_failed:
        return " [red]✗[/red]"
    if msg.read:
        return " [green]✓✓[/green]"
    if msg.delivered:
        return " [green]✓[/green]"
    return " [dim]…[/dim]"


def format_message(client: AsyncSignalClient, contact: Contact, msg: Message, hide_numbers: bool = False) -> str:
    when = datetime.fromtimestamp(msg.timestamp / 1000).strftime("%H:%M")
    if msg.from_self:
        who = escape(msg.sender)
    else:
        who = escape(contact.display if (hide_numbers or contact.name) else contact.address)
        if contact.color:
            who = f"[{contact.color}]{who}[/{contact.color}]"
        else:
            who = f"[cyan]{who}[/cyan]"
    line = f"[dim]{when}[/dim] {who}: {escape(msg.content)}{_status_mark(msg)}"
    for attachment in msg.attachments:
        line += f"\n    📎 {escape(client.attachment_path(attachment))}"
    return line


class _Printer:
    """Prints messages that arrived since the last update for each contact."""

    def __init__(self, client: AsyncSignalClient, hide_numbers: bool, only: Optional[Contact] = None):
        self._client = client
        self._hide_numbers = hide_numbers
        self._only = only
        self._seen: dict[str, int] = {}

    def skip_existing(self, contact: Contact) -> None:
        self._seen[contact.address] = len(self._client.store.messages(contact))

    def handle(self, event: EngineEvent) -> bool:
        """Print one event. Returns False when the stream is gone."""
        if event.type == NotifierEvent.ERROR:
            console.print(f"[red]🔥{escape(str(event.error))}[/red]")
            return not event.fatal
        contact = event.contact
        if contact is None:
            return True
        if event.type == NotifierEvent.CALL:
            console.print(f"[yellow]📞 call signalling from {escape(contact.display)}[/yellow]")
            return True
        messages = self._client.store.messages(contact)
        start = self._seen.get(contact.address, 0)
        self._seen[contact.address] = len(messages)
        if self._only is not None and contact.address != self._only.address:
            if len(messages) > start:
                console.print(f"[dim]* new message from {escape(contact.display)}[/dim]")
            return True
        for msg in messages[start:]:
            console.print(format_message(self._client, contact, msg, self._hide_numbers))
        if self._only is not None:
            self._client.store.mark_viewed(contact)
        return True


@click.command("listen")
def listen_cmd():
    """Print incoming messages as they arrive (Ctrl+C to exit)."""
    cfg = _load_config()
    client = _get_client(cfg)

    async def _listen():
        printer = _Printer(client, cfg.hide_phone_numbers)
        await client.connect()
        console.print(f"[dim]Listening as {cfg.user_number}[/dim]")
        try:
            async for event in client.events():
                if not printer.handle(event):
                    break
        finally:
            await client.disconnect()

    try:
        _run(_listen())
    except KeyboardInterrupt:
        pass
    except SigchatError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise SystemExit(1)


@click.command("send")
@click.argument("recipient")
@click.argument("message", default="")
@click.option("-a", "--attach", "attachments", multiple=True, type=click.Path(), help="File to attach")
def send_cmd(recipient: str, message: str, attachments: tuple[str, ...]):
    """Send a one-shot message."""

    client = _get_client()

    async def _send() -> Message:
        contact = client.contact(recipient)
        for path in attachments:
            client.attach(contact.address, path)
        await client.connect()
        try:
            msg = client.send(contact.address, message)
        finally:
            await client.disconnect()
        if any(m.send_failed for m in client.store.messages(contact) if m.key == msg.key):
            raise SigchatError("send_failed", f"Failed to send to {recipient}")
        return msg

    try:
        msg = _run(_send())
    except (SigchatError, ValueError) as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise SystemExit(1)
    console.print(f"[green]Sent to {escape(recipient)} ({msg.timestamp})[/green]")


@click.command("chat")
@click.argument("recipient")
def chat_cmd(recipient: str):
    """Interactive chat with one contact. /attach PATH, /open, /link, /quit."""
    cfg = _load_config()
    client = _get_client(cfg)

    async def _chat():
        contact = client.contact(recipient)
        client.activate(contact.address)
        printer = _Printer(client, cfg.hide_phone_numbers, only=contact)
        await client.connect()

        async def _print_events():
            async for event in client.events():
                if not printer.handle(event):
                    return

        printing = asyncio.get_running_loop().create_task(_print_events())
        console.print(f"[cyan]Chatting with {escape(contact.display)} (/quit to exit)[/cyan]\n")
        try:
            while not printing.done():
                text = await asyncio.to_thread(click.prompt, "", prompt_suffix="> ", default="", show_default=False)
                text = text.strip()
                if text in ("/quit", "/exit"):
                    break
                if text.startswith("/attach "):
                    try:
                        attachment = client.attach(contact.address, text[len("/attach "):].strip())
                    except AttachmentError as e:
                        console.print(f"[red]📎 {escape(str(e))}[/red]")
                        continue
                    pending = len(client.store.pending_attachments(contact))
                    console.print(f"[dim]📎({pending}) {escape(attachment.filename or '')}[/dim]")
                    continue
                if text == "/open":
                    path = client.last_attachment_path(contact.address)
                    console.print(f"[dim]📎 {escape(path) if path else '<NO MATCHES>'}[/dim]")
                    continue
                if text == "/link":
                    link = client.last_link(contact.address)
                    if link is None:
                        console.print("[dim]🔗 <NO MATCHES>[/dim]")
                    else:
                        console.print(f"[dim]🔗 {escape(link)}[/dim]")
                        click.launch(link)
                    continue
                if not text:
                    continue
                try:
                    client.send(contact.address, text)
                except SigchatError as e:
                    console.print(f"[red]{escape(str(e))}[/red]")
                    break
        except (KeyboardInterrupt, EOFError, click.Abort):
            pass
        finally:
            await client.disconnect()
            await printing

    try:
        _run(_chat())
    except KeyboardInterrupt:
        pass

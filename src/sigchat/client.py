"""
AsyncSignalClient — wires the contact registry, conversation store,
attachment resolver, notifier, daemon transport, ingestion loop and send
dispatcher into one object the UI holds.
"""

import logging
from pathlib import Path
from typing import AsyncGenerator, Optional, Sequence, Union

from sigchat.attachments import DEFAULT_STORAGE_ROOT, AttachmentResolver
from sigchat.config import Config
from sigchat.contacts import Contact, ContactRegistry
from sigchat.conversations import Conversation, ConversationStore, Message
from sigchat.dispatch import SendDispatcher
from sigchat.errors import TransportError
from sigchat.ingest import IngestionLoop
from sigchat.models.envelope import Attachment
from sigchat.models.events import EngineEvent
from sigchat.notifier import EventNotifier
from sigchat.transport.daemon import LineTransport

logger = logging.getLogger(__name__)


class AsyncSignalClient:
    """Async client for a messaging daemon (primary entry point)."""

    def __init__(
        self,
        user_number: str,
        *,
        user_name: str = "me",
        storage_root: Union[str, Path] = DEFAULT_STORAGE_ROOT,
        daemon_command: Optional[Sequence[str]] = None,
        daemon_socket: Optional[tuple[str, Optional[int]]] = None,
        contacts: Optional[dict[str, str]] = None,
        contact_colors: Optional[dict[str, str]] = None,
        transport: Optional[LineTransport] = None,
    ):
        self.user_number = user_number
        self.user_name = user_name
        self._daemon_command = list(daemon_command) if daemon_command else None
        self._daemon_socket = daemon_socket

        self.registry = ContactRegistry(colors=contact_colors)
        self.store = ConversationStore()
        self.resolver = AttachmentResolver(storage_root)
        self.notifier = EventNotifier()

        self._transport = transport
        self._ingest: Optional[IngestionLoop] = None
        self._dispatcher: Optional[SendDispatcher] = None

        for address, name in (contacts or {}).items():
            self.store.ensure(self.registry.upsert(address, name))

    @classmethod
    def from_config(cls, cfg: Config, transport: Optional[LineTransport] = None) -> "AsyncSignalClient":
        return cls(
            cfg.require_user(),
            user_name=cfg.user_name,
            storage_root=cfg.storage_root,
            daemon_command=None if cfg.daemon_socket else cfg.daemon_argv(),
            daemon_socket=cfg.socket_address(),
            contacts=cfg.contacts,
            contact_colors=cfg.contact_colors,
            transport=transport,
        )

    @property
    def connected(self) -> bool:
        return self._ingest is not None and self._ingest.running

    async def _open_transport(self) -> LineTransport:
        if self._transport is not None and not self._transport.closed:
            return self._transport
        if self._daemon_socket is not None:
            host, port = self._daemon_socket
            if port is None:
                return await LineTransport.open_unix(host)
            return await LineTransport.open_tcp(host, port)
        if self._daemon_command:
            return await LineTransport.spawn(self._daemon_command)
        raise TransportError("No daemon command, socket or transport configured")

    async def connect(self) -> None:
        if self.connected:
            return
        if self.notifier.closed:
            self.notifier = EventNotifier()
        self._transport = await self._open_transport()
        self._ingest = IngestionLoop(
            self._transport, self.registry, self.store, self.notifier,
            self_address=self.user_number, self_name=self.user_name,
        )
        self._dispatcher = SendDispatcher(
            self._transport, self.store, self.notifier,
            self_address=self.user_number, self_name=self.user_name,
        )
        self._ingest.start()
        logger.info(f"Connected as {self.user_number}")

    async def disconnect(self, drain_timeout: Optional[float] = 30.0) -> None:
        """Stop ingestion, let in-flight sends finish, then release the daemon."""
        if self._ingest is not None:
            await self._ingest.stop()
            self._ingest = None
        if self._dispatcher is not None:
            await self._dispatcher.drain(timeout=drain_timeout)
            self._dispatcher = None
        if self._transport is not None:
            await self._transport.close()
            self._transport = None
        self.notifier.close()

    def contact(self, address: str, name: Optional[str] = None) -> Contact:
        """Look up or register a contact and make sure it has a conversation."""
        contact = self.registry.upsert(address, name)
        self.store.ensure(contact)
        return contact

    def contacts(self) -> list[Contact]:
        return self.registry.all()

    def activate(self, address: str) -> Conversation:
        return self.store.activate(self.registry.by_address(address))

    def attach(self, address: str, path: Union[str, Path]) -> Attachment:
        return self.store.add_pending_attachment(self.registry.by_address(address), path)

    def send(self, address: str, text: str) -> Message:
        self._ensure_connected()
        return self._dispatcher.send(self.registry.by_address(address), text)  # type: ignore[union-attr]

    def attachment_path(self, attachment: Attachment) -> str:
        return self.resolver.resolve(attachment)

    def last_attachment_path(self, address: str) -> Optional[str]:
        """Path of the most recent attachment in the conversation, if any."""
        attachments = self.store.attachments(self.registry.by_address(address))
        if not attachments:
            return None
        return self.resolver.resolve(attachments[-1])

    def links(self, address: str) -> list[str]:
        return self.store.links(self.registry.by_address(address))

    def last_link(self, address: str) -> Optional[str]:
        """Most recent URL mentioned in the conversation, if any."""
        links = self.links(address)
        return links[-1] if links else None

    async def events(self) -> AsyncGenerator[EngineEvent, None]:
        """Yield notifier events until the client disconnects."""
        while True:
            event = await self.notifier.get()
            if event is None:
                return
            yield event

    def _ensure_connected(self) -> None:
        if self._dispatcher is None or not self.connected:
            raise TransportError("Not connected. Call connect() first.")

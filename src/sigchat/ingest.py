"""
Ingestion loop — reads envelopes from the daemon and applies them to the
conversation store.

- data message: incoming message from the envelope source
- synced sent message: message by the local account, filed under its destination
- receipt: delivery/read flags on previously sent messages
- call: forwarded to the notifier only, never stored

A malformed line is logged and skipped. Losing the stream ends the loop and
raises a fatal TransportError on the notifier; reconnecting is up to the
caller.
"""

import asyncio
import contextlib
import logging
from typing import Optional

from sigchat.contacts import Contact, ContactRegistry
from sigchat.conversations import ConversationStore, Message
from sigchat.errors import DecodeError, SigchatError, TransportError
from sigchat.models.envelope import DataMessage, Envelope, PayloadKind, SentMessage
from sigchat.notifier import EventNotifier
from sigchat.transport.daemon import LineTransport
from sigchat.transport.envelope import decode

logger = logging.getLogger(__name__)


class IngestionLoop:
    def __init__(
        self,
        transport: LineTransport,
        registry: ContactRegistry,
        store: ConversationStore,
        notifier: EventNotifier,
        self_address: str,
        self_name: str = "me",
    ):
        self._transport = transport
        self._registry = registry
        self._store = store
        self._notifier = notifier
        self._self_address = self_address
        self._self_name = self_name
        self._task: Optional[asyncio.Task[None]] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "asyncio.Task[None]":
        if self.running:
            return self._task  # type: ignore[return-value]
        self._stopping = False
        self._task = asyncio.get_running_loop().create_task(self.run(), name="sigchat-ingest")
        return self._task

    async def stop(self) -> None:
        """Stop reading. The transport itself is closed by its owner."""
        self._stopping = True
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def run(self) -> None:
        logger.info("Ingestion started")
        while not self._stopping:
            try:
                line = await self._transport.read_line()
            except TransportError as e:
                self._fatal(e)
                return
            if line is None:
                if not self._stopping:
                    self._fatal(TransportError("Daemon stream closed"))
                return
            if not line.strip():
                continue
            self.handle_line(line)
        logger.info("Ingestion stopped")

    def _fatal(self, error: TransportError) -> None:
        logger.error(f"Ingestion terminated: {error}")
        self._notifier.error(error, fatal=True)

    def handle_line(self, line: bytes) -> Optional[Contact]:
        try:
            envelope = decode(line)
        except DecodeError as e:
            logger.warning(f"Skipping envelope: {e}")
            return None
        try:
            return self.apply(envelope)
        except SigchatError as e:
            logger.error(f"Failed to apply envelope from {envelope.source}: {e}")
            self._notifier.error(e)
            return None

    def apply(self, envelope: Envelope) -> Optional[Contact]:
        """Apply one decoded envelope. Returns the affected contact, if any."""
        kind = envelope.kind
        if kind == PayloadKind.EMPTY:
            logger.debug(f"Ignoring empty envelope from {envelope.source}")
            return None

        if kind == PayloadKind.SENT:
            return self._apply_sent(envelope, envelope.sent_message)  # type: ignore[arg-type]

        if not envelope.source:
            logger.warning(f"Ignoring {kind.value} envelope without source")
            return None
        contact = self._discover(envelope.source)

        if kind == PayloadKind.DATA:
            self._store.apply_incoming(contact, self._data_message(envelope, envelope.data_message, contact))  # type: ignore[arg-type]
        elif kind == PayloadKind.RECEIPT:
            changed = self._store.apply_receipt(contact, envelope.receipt_message)  # type: ignore[arg-type]
            logger.debug(f"Receipt from {contact.address} updated {changed} message(s)")
        elif kind == PayloadKind.CALL:
            self._notifier.call(contact, envelope.call_message.raw)  # type: ignore[union-attr]
            return contact

        self._notifier.contact_updated(contact)
        return contact

    def _discover(self, address: str) -> Contact:
        contact = self._registry.upsert(address)
        self._store.ensure(contact)
        return contact

    def _apply_sent(self, envelope: Envelope, sent: SentMessage) -> Optional[Contact]:
        if not sent.destination:
            # group sends carry no single destination
            logger.debug(f"Ignoring synced message {sent.timestamp} without destination")
            return None
        contact = self._discover(sent.destination)
        message = Message(
            envelope.source or self._self_address,
            sent.timestamp or envelope.timestamp,
            sent.message or "",
            sender=self._self_name,
            from_self=True,
            attachments=sent.attachments,
            group_info=sent.group_info.raw if sent.group_info is not None else None,
            expires_in_seconds=sent.expires_in_seconds,
        )
        self._store.apply_incoming(contact, message)
        self._notifier.contact_updated(contact)
        return contact

    @staticmethod
    def _data_message(envelope: Envelope, data: DataMessage, contact: Contact) -> Message:
        return Message(
            contact.address,
            data.timestamp or envelope.timestamp,
            data.message or "",
            sender=contact.display,
            from_self=False,
            attachments=data.attachments,
            group_info=data.group_info.raw if data.group_info is not None else None,
            expires_in_seconds=data.expires_in_seconds,
        )

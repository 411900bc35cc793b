"""
Send dispatcher — optimistic local echo plus fire-and-forget transmission.

The echo is stored under ``(self_address, timestamp)`` and the same timestamp
goes to the daemon, so the synced copy the daemon later emits is dropped as a
duplicate. A failed transmission keeps the echo, flags it ``send_failed`` and
reports a TransportError through the notifier.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

import emoji

from sigchat.contacts import Contact
from sigchat.conversations import ConversationStore, Message
from sigchat.errors import TransportError
from sigchat.notifier import EventNotifier
from sigchat.transport.daemon import LineTransport
from sigchat.transport.envelope import build_send_request

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class SendDispatcher:
    def __init__(
        self,
        transport: LineTransport,
        store: ConversationStore,
        notifier: EventNotifier,
        self_address: str,
        self_name: str = "me",
        clock: Callable[[], int] = now_ms,
    ):
        self._transport = transport
        self._store = store
        self._notifier = notifier
        self._self_address = self_address
        self._self_name = self_name
        self._clock = clock
        self._in_flight: set[asyncio.Task[None]] = set()
        self._last_timestamp = 0

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def _next_timestamp(self) -> int:
        # two sends in the same millisecond would otherwise share an identity
        ts = max(self._clock(), self._last_timestamp + 1)
        self._last_timestamp = ts
        return ts

    def send(self, contact: Contact, text: str) -> Message:
        """Echo ``text`` into the store and transmit it in the background.

        Emoji shortcodes such as ``:thumbsup:`` are expanded first. Pending
        attachments of the conversation go out with this message.
        """
        text = emoji.emojize(text, language="alias")
        attachments = self._store.take_pending_attachments(contact)
        if not text and not attachments:
            raise ValueError("Nothing to send: empty message without attachments")

        message = Message(
            self._self_address,
            self._next_timestamp(),
            text,
            sender=self._self_name,
            from_self=True,
            attachments=attachments,
        )
        self._store.apply_incoming(contact, message)
        self._notifier.contact_updated(contact)

        task = asyncio.get_running_loop().create_task(self._transmit(contact, message))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        logger.info(f"Sending message {message.timestamp} to {contact.address}")
        return message

    async def _transmit(self, contact: Contact, message: Message) -> None:
        request = build_send_request(contact.address, message.content, message.timestamp, message.attachments)
        try:
            await self._transport.send(request)
        except TransportError as e:
            self._failed(contact, message, e)
        except Exception as e:
            self._failed(contact, message, TransportError(f"Send failed: {e}", contact=contact.address))

    def _failed(self, contact: Contact, message: Message, error: TransportError) -> None:
        logger.error(f"Send of {message.timestamp} to {contact.address} failed: {error}")
        if error.contact is None:
            error.contact = contact.address
        self._store.mark_send_failed(contact, message.key)
        self._notifier.error(error, contact=contact)
        self._notifier.contact_updated(contact)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight sends to finish. They are never cancelled."""
        if not self._in_flight:
            return
        pending = list(self._in_flight)
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            logger.warning(f"{len(not_done)} send(s) still in flight after {timeout}s")

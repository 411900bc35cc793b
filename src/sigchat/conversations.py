"""
Conversation store — per-contact message logs with deduplication and receipt
reconciliation.

Messages are keyed by ``(source, timestamp)``; the wire format carries no
durable message ID. Each conversation keeps a key -> message mapping and an
arrival-ordered key list that always hold the same keys. Arrival order is
never re-sorted by timestamp.

All access goes through one store-wide lock. Reads hand out copies so callers
can render without holding it.
"""

import logging
import re
import threading
from pathlib import Path
from typing import Any, Optional, Union

from sigchat.attachments import local_attachment
from sigchat.contacts import Contact
from sigchat.errors import NotFoundError
from sigchat.models.envelope import Attachment, ReceiptMessage

logger = logging.getLogger(__name__)

MessageKey = tuple[str, int]

URL_PATTERN = re.compile(
    r"https?://(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b(?:[-a-zA-Z0-9()@:%_+.~#?&/=]*)"
)


class Message:
    __slots__ = (
        "source", "timestamp", "sender", "content", "from_self", "delivered", "read",
        "attachments", "group_info", "expires_in_seconds", "send_failed",
    )

    def __init__(
        self,
        source: str,
        timestamp: int,
        content: str = "",
        *,
        sender: str = "",
        from_self: bool = False,
        delivered: bool = False,
        read: bool = False,
        attachments: Optional[list[Attachment]] = None,
        group_info: Any = None,
        expires_in_seconds: int = 0,
        send_failed: bool = False,
    ):
        self.source = source
        self.timestamp = timestamp
        self.sender = sender or source
        self.content = content
        self.from_self = from_self
        self.delivered = delivered
        self.read = read
        self.attachments = list(attachments or [])
        self.group_info = group_info
        self.expires_in_seconds = expires_in_seconds
        self.send_failed = send_failed

    @property
    def key(self) -> MessageKey:
        return (self.source, self.timestamp)

    def copy(self) -> "Message":
        return Message(
            self.source, self.timestamp, self.content,
            sender=self.sender, from_self=self.from_self,
            delivered=self.delivered, read=self.read,
            attachments=[a.model_copy() for a in self.attachments],
            group_info=self.group_info,
            expires_in_seconds=self.expires_in_seconds,
            send_failed=self.send_failed,
        )

    def __repr__(self) -> str:
        return f"Message(source={self.source!r}, timestamp={self.timestamp}, from_self={self.from_self})"


class Conversation:
    __slots__ = ("contact", "messages", "order", "has_new_message", "pending_attachments")

    def __init__(self, contact: Contact):
        self.contact = contact
        self.messages: dict[MessageKey, Message] = {}
        self.order: list[MessageKey] = []
        self.has_new_message = False
        self.pending_attachments: list[Attachment] = []

    def ordered(self) -> list[Message]:
        return [self.messages[k] for k in self.order]

    @property
    def last_message(self) -> Optional[Message]:
        if not self.order:
            return None
        return self.messages[self.order[-1]]

    def all_attachments(self) -> list[Attachment]:
        return [a for msg in self.ordered() for a in msg.attachments]

    def copy(self) -> "Conversation":
        snap = Conversation(self.contact)
        snap.messages = {k: m.copy() for k, m in self.messages.items()}
        snap.order = list(self.order)
        snap.has_new_message = self.has_new_message
        snap.pending_attachments = [a.model_copy() for a in self.pending_attachments]
        return snap

    def __len__(self) -> int:
        return len(self.order)

    def __repr__(self) -> str:
        return f"Conversation(contact={self.contact.address!r}, messages={len(self.order)})"


class ConversationStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._conversations: dict[str, Conversation] = {}
        self._active: Optional[str] = None

    def _get(self, contact: Contact) -> Conversation:
        conv = self._conversations.get(contact.address)
        if conv is None:
            raise NotFoundError(f"No conversation for contact: {contact.address}", address=contact.address)
        return conv

    def ensure(self, contact: Contact) -> Conversation:
        """Create an empty conversation for ``contact`` if there is none. Returns a snapshot."""
        with self._lock:
            conv = self._conversations.get(contact.address)
            if conv is None:
                conv = Conversation(contact)
                self._conversations[contact.address] = conv
            return conv.copy()

    def has(self, contact: Contact) -> bool:
        with self._lock:
            return contact.address in self._conversations

    def conversation(self, contact: Contact) -> Conversation:
        with self._lock:
            return self._get(contact).copy()

    def conversations(self) -> list[Conversation]:
        """Snapshots of every conversation, in contact index order."""
        with self._lock:
            convs = [c.copy() for c in self._conversations.values()]
        return sorted(convs, key=lambda c: c.contact.index)

    def apply_incoming(self, contact: Contact, message: Message) -> bool:
        """Append ``message`` unless one with the same identity is already stored.

        Returns True if the message was added.
        """
        with self._lock:
            conv = self._get(contact)
            key = message.key
            if key in conv.messages:
                logger.debug(f"Dropping duplicate message {key} for {contact.address}")
                return False
            conv.messages[key] = message.copy()
            conv.order.append(key)
            if self._active != contact.address:
                conv.has_new_message = True
            return True

    def apply_receipt(self, contact: Contact, receipt: ReceiptMessage) -> int:
        """Flip delivered/read on self-sent messages matching the receipt's timestamps.

        Unmatched timestamps are ignored; the message may have been sent from
        another linked device. Returns the number of messages changed.
        """
        wanted = set(receipt.timestamps)
        changed = 0
        with self._lock:
            conv = self._get(contact)
            for msg in conv.messages.values():
                if not msg.from_self or msg.timestamp not in wanted:
                    continue
                before = (msg.delivered, msg.read)
                if receipt.is_delivery:
                    msg.delivered = True
                if receipt.is_read:
                    msg.read = True
                if (msg.delivered, msg.read) != before:
                    changed += 1
        return changed

    @property
    def active(self) -> Optional[str]:
        return self._active

    def activate(self, contact: Contact) -> Conversation:
        """Make ``contact``'s conversation the displayed one and mark it viewed."""
        with self._lock:
            conv = self._get(contact)
            self._active = contact.address
            conv.has_new_message = False
            return conv.copy()

    def deactivate(self) -> None:
        with self._lock:
            self._active = None

    def mark_viewed(self, contact: Contact) -> None:
        with self._lock:
            self._get(contact).has_new_message = False

    def has_new_message(self, contact: Contact) -> bool:
        with self._lock:
            return self._get(contact).has_new_message

    def unread(self) -> list[Contact]:
        with self._lock:
            contacts = [c.contact for c in self._conversations.values() if c.has_new_message]
        return sorted(contacts, key=lambda c: c.index)

    def next_unread(self) -> Optional[Contact]:
        unread = self.unread()
        return unread[0] if unread else None

    def add_pending_attachment(self, contact: Contact, path: Union[str, Path]) -> Attachment:
        """Queue a local file for the next send to ``contact``.

        Raises AttachmentError (state unchanged) if the file cannot be read.
        """
        with self._lock:
            conv = self._get(contact)
            attachment = local_attachment(path)
            conv.pending_attachments.append(attachment)
            return attachment.model_copy()

    def pending_attachments(self, contact: Contact) -> list[Attachment]:
        with self._lock:
            return [a.model_copy() for a in self._get(contact).pending_attachments]

    def take_pending_attachments(self, contact: Contact) -> list[Attachment]:
        with self._lock:
            conv = self._get(contact)
            taken, conv.pending_attachments = conv.pending_attachments, []
            return taken

    def mark_send_failed(self, contact: Contact, key: MessageKey) -> bool:
        with self._lock:
            msg = self._get(contact).messages.get(key)
            if msg is None:
                return False
            msg.send_failed = True
            return True

    def messages(self, contact: Contact) -> list[Message]:
        with self._lock:
            return [m.copy() for m in self._get(contact).ordered()]

    def last_message(self, contact: Contact) -> Optional[Message]:
        with self._lock:
            last = self._get(contact).last_message
            return last.copy() if last is not None else None

    def attachments(self, contact: Contact) -> list[Attachment]:
        """Every attachment across the conversation's messages, in arrival order."""
        with self._lock:
            return [a.model_copy() for a in self._get(contact).all_attachments()]

    def links(self, contact: Contact) -> list[str]:
        """URLs found in the conversation's message text, in arrival order."""
        with self._lock:
            texts = [m.content for m in self._get(contact).ordered()]
        return [match.group(0) for text in texts for match in URL_PATTERN.finditer(text)]

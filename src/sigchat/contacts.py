"""
Contact registry — phone-number identities, display names and a stable
first-seen ordering index.
"""

import logging
import threading
from typing import Iterator, Mapping, Optional

from sigchat.errors import NotFoundError

logger = logging.getLogger(__name__)


class Contact:
    __slots__ = ("address", "name", "index", "color")

    def __init__(self, address: str, index: int, name: Optional[str] = None, color: Optional[str] = None):
        self.address = address
        self.index = index
        self.name = name
        self.color = color

    @property
    def display(self) -> str:
        return self.name or self.address

    def __str__(self) -> str:
        return self.display

    def __repr__(self) -> str:
        return f"Contact(address={self.address!r}, name={self.name!r}, index={self.index})"


class ContactRegistry:
    """Owns every Contact for the lifetime of the process.

    Index assignment is monotonically increasing in first-seen order and is
    never reused or persisted.
    """

    def __init__(self, colors: Optional[Mapping[str, str]] = None) -> None:
        self._lock = threading.Lock()
        self._contacts: dict[str, Contact] = {}
        self._next_index = 0
        self._colors = dict(colors or {})

    def upsert(self, address: str, name: Optional[str] = None) -> Contact:
        """Return the contact for ``address``, creating it on first sight.

        An existing name is only replaced by a non-empty, longer one.
        """
        if not address:
            raise ValueError("contact address must be non-empty")
        with self._lock:
            contact = self._contacts.get(address)
            if contact is None:
                contact = Contact(address, self._next_index, name or None, self._colors.get(address))
                self._contacts[address] = contact
                self._next_index += 1
                logger.debug(f"New contact {address} at index {contact.index}")
            elif name and len(name) > len(contact.name or ""):
                contact.name = name
            return contact

    def seed(self, names: Mapping[str, str]) -> None:
        for address, name in names.items():
            self.upsert(address, name)

    def by_address(self, address: str) -> Contact:
        with self._lock:
            contact = self._contacts.get(address)
        if contact is None:
            raise NotFoundError(f"Unknown contact: {address}", address=address)
        return contact

    def all(self) -> list[Contact]:
        with self._lock:
            return sorted(self._contacts.values(), key=lambda c: c.index)

    def search(self, text: str) -> list[Contact]:
        """Contacts whose name or address contains ``text`` (case-insensitive)."""
        needle = text.lower()
        return [c for c in self.all() if needle in c.address.lower() or needle in (c.name or "").lower()]

    def __contains__(self, address: object) -> bool:
        with self._lock:
            return address in self._contacts

    def __len__(self) -> int:
        with self._lock:
            return len(self._contacts)

    def __iter__(self) -> Iterator[Contact]:
        return iter(self.all())

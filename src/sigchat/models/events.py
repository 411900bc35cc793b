"""
Events delivered from the engine to the UI layer.
"""

from typing import Any, Optional

from sigchat.contacts import Contact


class NotifierEvent:
    CONTACT_UPDATED = "contact:updated"
    ERROR = "error"
    CALL = "call"


class EngineEvent:
    """One notification. The payload is a hint; consumers re-read the store."""

    __slots__ = ("type", "contact", "error", "payload", "fatal")

    def __init__(
        self,
        type: str,
        contact: Optional[Contact] = None,
        error: Optional[BaseException] = None,
        payload: Any = None,
        fatal: bool = False,
    ):
        self.type = type
        self.contact = contact
        self.error = error
        self.payload = payload
        self.fatal = fatal

    def __repr__(self) -> str:
        who = self.contact.address if self.contact is not None else None
        return f"EngineEvent(type={self.type!r}, contact={who!r}, fatal={self.fatal})"

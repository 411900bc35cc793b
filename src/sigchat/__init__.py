"""
sigchat — terminal client engine for a secure messaging daemon.

Ingests envelopes from the daemon, keeps per-contact conversations and sends
messages through it.
"""

from sigchat.client import AsyncSignalClient
from sigchat.config import Config, load_config
from sigchat.contacts import Contact, ContactRegistry
from sigchat.conversations import Conversation, ConversationStore, Message
from sigchat.errors import (
    SigchatError,
    DecodeError,
    TransportError,
    NotFoundError,
    AttachmentError,
    ConfigError,
)
from sigchat.models.envelope import Attachment, Envelope, PayloadKind
from sigchat.models.events import EngineEvent, NotifierEvent

__version__ = "0.1.0"
__all__ = [
    "AsyncSignalClient",
    "Config",
    "load_config",
    "Contact",
    "ContactRegistry",
    "Conversation",
    "ConversationStore",
    "Message",
    "SigchatError",
    "DecodeError",
    "TransportError",
    "NotFoundError",
    "AttachmentError",
    "ConfigError",
    "Attachment",
    "Envelope",
    "PayloadKind",
    "EngineEvent",
    "NotifierEvent",
]

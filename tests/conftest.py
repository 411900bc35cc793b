"""Shared test fixtures."""

import asyncio
import json
from typing import Any, Optional, Union

import pytest

from sigchat.contacts import ContactRegistry
from sigchat.conversations import ConversationStore, Message
from sigchat.models.envelope import SendRequest
from sigchat.notifier import EventNotifier

SELF = "+1999"


class FakeTransport:
    """In-memory stand-in for LineTransport."""

    def __init__(self, lines: tuple[Union[bytes, str], ...] = ()) -> None:
        self.incoming: asyncio.Queue[Optional[bytes]] = asyncio.Queue()
        self.sent: list[SendRequest] = []
        self.fail_with: Optional[Exception] = None
        self.closed = False
        for line in lines:
            self.feed(line)

    def feed(self, line: Union[bytes, str]) -> None:
        self.incoming.put_nowait(line.encode() if isinstance(line, str) else line)

    def end(self) -> None:
        self.incoming.put_nowait(None)

    async def read_line(self) -> Optional[bytes]:
        return await self.incoming.get()

    async def send(self, request: SendRequest) -> None:
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(request)

    async def close(self) -> None:
        self.closed = True
        self.incoming.put_nowait(None)


def envelope_line(**envelope: Any) -> str:
    return json.dumps({"envelope": envelope})


def data_line(source: str, timestamp: int, text: str, **extra: Any) -> str:
    data = {"timestamp": timestamp, "message": text, "expiresInSeconds": 0}
    data.update(extra)
    return envelope_line(source=source, sourceDevice=1, timestamp=timestamp, isReceipt=False, dataMessage=data)


def sent_line(destination: Optional[str], timestamp: int, text: str, source: str = SELF, **extra: Any) -> str:
    sent = {"timestamp": timestamp, "message": text, "expiresInSeconds": 0, "destination": destination}
    sent.update(extra)
    return envelope_line(source=source, sourceDevice=2, timestamp=timestamp, syncMessage={"sentMessage": sent})


def receipt_line(source: str, timestamps: list[int], delivery: bool = True, read: bool = False, when: int = 2000) -> str:
    receipt = {"when": when, "isDelivery": delivery, "isRead": read, "timestamps": timestamps}
    return envelope_line(source=source, sourceDevice=1, timestamp=when, isReceipt=True, receiptMessage=receipt)


def make_message(source: str, timestamp: int, text: str = "hello", from_self: bool = False, **kwargs: Any) -> Message:
    return Message(source, timestamp, text, from_self=from_self, **kwargs)


@pytest.fixture
def registry() -> ContactRegistry:
    return ContactRegistry()


@pytest.fixture
def store() -> ConversationStore:
    return ConversationStore()


@pytest.fixture
def notifier() -> EventNotifier:
    return EventNotifier()


@pytest.fixture
def contact(registry, store):
    c = registry.upsert("+1555", "Alice")
    store.ensure(c)
    return c


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()

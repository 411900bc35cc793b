"""Ingestion loop: classification, dedup, receipts and stream failure."""

import asyncio
import json

import pytest

from sigchat.errors import TransportError
from sigchat.ingest import IngestionLoop
from sigchat.models.events import NotifierEvent

from conftest import SELF, FakeTransport, data_line, envelope_line, receipt_line, sent_line


def make_loop(transport, registry, store, notifier):
    return IngestionLoop(transport, registry, store, notifier, self_address=SELF, self_name="Me")


async def run_to_end(transport, registry, store, notifier):
    transport.end()
    await asyncio.wait_for(make_loop(transport, registry, store, notifier).run(), timeout=2)


@pytest.mark.asyncio
async def test_data_message_creates_conversation(transport, registry, store, notifier):
    transport.feed(data_line("+1555", 1000, "hi"))
    await run_to_end(transport, registry, store, notifier)

    contact = registry.by_address("+1555")
    messages = store.messages(contact)
    assert len(messages) == 1
    assert messages[0].content == "hi"
    assert messages[0].from_self is False
    assert messages[0].sender == "+1555"
    assert store.has_new_message(contact)


@pytest.mark.asyncio
async def test_redelivered_envelope_is_deduplicated(transport, registry, store, notifier):
    line = data_line("+1555", 1000, "hi")
    transport.feed(line)
    transport.feed(line)
    await run_to_end(transport, registry, store, notifier)
    assert len(store.messages(registry.by_address("+1555"))) == 1


@pytest.mark.asyncio
async def test_sender_uses_known_name(transport, registry, store, notifier):
    registry.upsert("+1555", "Alice")
    transport.feed(data_line("+1555", 1, "hi"))
    await run_to_end(transport, registry, store, notifier)
    assert store.last_message(registry.by_address("+1555")).sender == "Alice"


@pytest.mark.asyncio
async def test_synced_sent_message_is_from_self(transport, registry, store, notifier):
    transport.feed(sent_line("+1555", 42, "sent from my phone"))
    await run_to_end(transport, registry, store, notifier)

    msg = store.last_message(registry.by_address("+1555"))
    assert msg.from_self is True
    assert msg.source == SELF
    assert msg.sender == "Me"
    assert msg.content == "sent from my phone"
    assert SELF not in registry


@pytest.mark.asyncio
async def test_synced_message_without_destination_is_skipped(transport, registry, store, notifier):
    transport.feed(sent_line(None, 42, "to a group", groupInfo={"groupId": "abc"}))
    await run_to_end(transport, registry, store, notifier)
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_receipt_marks_self_sent_message(transport, registry, store, notifier):
    transport.feed(sent_line("+1555", 1000, "mine"))
    transport.feed(receipt_line("+1555", [1000], delivery=True, when=2000))
    await run_to_end(transport, registry, store, notifier)

    msg = store.last_message(registry.by_address("+1555"))
    assert msg.delivered is True
    assert msg.read is False


@pytest.mark.asyncio
async def test_receipt_for_unknown_message_is_ignored(transport, registry, store, notifier):
    transport.feed(receipt_line("+1555", [777], delivery=True, read=True))
    await run_to_end(transport, registry, store, notifier)
    assert store.messages(registry.by_address("+1555")) == []
    errors = [e for e in notifier.drain() if e.type == NotifierEvent.ERROR and not e.fatal]
    assert errors == []


@pytest.mark.asyncio
async def test_call_is_notified_not_stored(transport, registry, store, notifier):
    transport.feed(envelope_line(source="+1555", timestamp=5, callMessage={"offerMessage": {"id": 1}}))
    await run_to_end(transport, registry, store, notifier)

    assert store.messages(registry.by_address("+1555")) == []
    calls = [e for e in notifier.drain() if e.type == NotifierEvent.CALL]
    assert len(calls) == 1
    assert calls[0].payload == {"offerMessage": {"id": 1}}


@pytest.mark.asyncio
async def test_malformed_lines_are_skipped(transport, registry, store, notifier):
    transport.feed(b"{not json")
    transport.feed(b"")
    transport.feed(json.dumps({"envelope": {"timestamp": "later"}}))
    transport.feed(envelope_line(timestamp=3, dataMessage={"timestamp": 3, "message": "no source"}))
    transport.feed(envelope_line(source="+1555", timestamp=4))
    transport.feed(data_line("+1555", 1000, "still here"))
    await run_to_end(transport, registry, store, notifier)
    assert [m.content for m in store.messages(registry.by_address("+1555"))] == ["still here"]


@pytest.mark.asyncio
async def test_null_fields_do_not_drop_messages(transport, registry, store, notifier):
    transport.feed(envelope_line(
        source="+1555", sourceDevice=None, timestamp=1000, isReceipt=None,
        dataMessage={"timestamp": 1000, "message": "hi", "expiresInSeconds": None},
    ))
    transport.feed(sent_line("+1555", 2000, "mine", expiresInSeconds=None))
    transport.feed(envelope_line(source="+1555", timestamp=3000, receiptMessage={
        "when": 3000, "isDelivery": True, "isRead": None, "timestamps": [2000],
    }))
    transport.feed(envelope_line(source="+1555", timestamp=3001, receiptMessage={
        "when": None, "isDelivery": None, "isRead": True, "timestamps": None,
    }))
    await run_to_end(transport, registry, store, notifier)

    messages = store.messages(registry.by_address("+1555"))
    assert [m.content for m in messages] == ["hi", "mine"]
    assert messages[0].expires_in_seconds == 0
    assert messages[1].delivered is True
    assert messages[1].read is False


@pytest.mark.asyncio
async def test_updates_are_signalled(transport, registry, store, notifier):
    transport.feed(data_line("+1555", 1, "a"))
    transport.feed(data_line("+1666", 2, "b"))
    await run_to_end(transport, registry, store, notifier)
    updated = [e.contact.address for e in notifier.drain() if e.type == NotifierEvent.CONTACT_UPDATED]
    assert updated == ["+1555", "+1666"]


@pytest.mark.asyncio
async def test_end_of_stream_is_fatal(transport, registry, store, notifier):
    await run_to_end(transport, registry, store, notifier)
    events = notifier.drain()
    assert len(events) == 1
    assert events[0].fatal is True
    assert isinstance(events[0].error, TransportError)


@pytest.mark.asyncio
async def test_transport_failure_is_fatal(registry, store, notifier):
    class BrokenTransport(FakeTransport):
        async def read_line(self):
            raise TransportError("broken pipe")

    await asyncio.wait_for(make_loop(BrokenTransport(), registry, store, notifier).run(), timeout=1)
    events = notifier.drain()
    assert [str(e.error) for e in events] == ["broken pipe"]
    assert events[0].fatal


@pytest.mark.asyncio
async def test_stop_cancels_reading_without_fatal_error(transport, registry, store, notifier):
    loop = make_loop(transport, registry, store, notifier)
    loop.start()
    transport.feed(data_line("+1555", 1, "hi"))
    for _ in range(20):
        await asyncio.sleep(0)
        if "+1555" in registry:
            break
    assert loop.running
    await loop.stop()
    assert not loop.running
    assert [e for e in notifier.drain() if e.type == NotifierEvent.ERROR] == []
    assert len(store.messages(registry.by_address("+1555"))) == 1


@pytest.mark.asyncio
async def test_out_of_order_delivery_keeps_arrival_order(transport, registry, store, notifier):
    for ts in (3000, 1000, 2000):
        transport.feed(data_line("+1555", ts, str(ts)))
    await run_to_end(transport, registry, store, notifier)
    contact = registry.by_address("+1555")
    assert [m.content for m in store.messages(contact)] == ["3000", "1000", "2000"]
    assert store.last_message(contact).content == "2000"


@pytest.mark.asyncio
async def test_incoming_attachments_resolve(transport, registry, store, notifier, tmp_path):
    from sigchat.attachments import AttachmentResolver

    att = {"contentType": "image/jpeg", "filename": "cat.jpg", "id": "4242", "size": 9}
    transport.feed(data_line("+1555", 1, "", attachments=[att]))
    await run_to_end(transport, registry, store, notifier)
    attachments = store.attachments(registry.by_address("+1555"))
    assert AttachmentResolver(tmp_path).resolve(attachments[-1]) == str(tmp_path / "attachments" / "4242")

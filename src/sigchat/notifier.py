"""
Event notifier — a queue carrying "contact updated", "error" and "call"
events from the engine to a single UI consumer.

Producers never block and never run consumer code, so no store lock is held
while callbacks execute. Contact updates are coalesced while one for the same
contact is still waiting in the queue.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from sigchat.contacts import Contact
from sigchat.models.events import EngineEvent, NotifierEvent

logger = logging.getLogger(__name__)

UpdateHandler = Callable[[Contact], Union[None, Awaitable[None]]]
ErrorHandler = Callable[[BaseException, Optional[Contact], bool], Union[None, Awaitable[None]]]
CallHandler = Callable[[Contact, Any], Union[None, Awaitable[None]]]


class EventNotifier:
    def __init__(self) -> None:
        self._queue: asyncio.Queue[Optional[EngineEvent]] = asyncio.Queue()
        self._queued_updates: set[str] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def contact_updated(self, contact: Contact) -> None:
        if self._closed or contact.address in self._queued_updates:
            return
        self._queued_updates.add(contact.address)
        self._queue.put_nowait(EngineEvent(NotifierEvent.CONTACT_UPDATED, contact=contact))

    def error(self, error: BaseException, contact: Optional[Contact] = None, fatal: bool = False) -> None:
        if self._closed:
            logger.error(f"Error after notifier closed: {error}")
            return
        self._queue.put_nowait(EngineEvent(NotifierEvent.ERROR, contact=contact, error=error, fatal=fatal))

    def call(self, contact: Contact, payload: Any) -> None:
        if self._closed:
            return
        self._queue.put_nowait(EngineEvent(NotifierEvent.CALL, contact=contact, payload=payload))

    def close(self) -> None:
        """Wake consumers with an end-of-stream marker."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    def _taken(self, event: EngineEvent) -> EngineEvent:
        if event.type == NotifierEvent.CONTACT_UPDATED and event.contact is not None:
            self._queued_updates.discard(event.contact.address)
        return event

    async def get(self) -> Optional[EngineEvent]:
        """Next event, or None once the notifier is closed and empty."""
        event = await self._queue.get()
        if event is None:
            # keep the marker for any other waiter
            self._queue.put_nowait(None)
            return None
        return self._taken(event)

    def drain(self) -> list[EngineEvent]:
        """All events currently queued, without waiting."""
        events: list[EngineEvent] = []
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if event is None:
                self._queue.put_nowait(None)
                break
            events.append(self._taken(event))
        return events

    async def dispatch(
        self,
        on_update: UpdateHandler,
        on_error: ErrorHandler,
        on_call: Optional[CallHandler] = None,
    ) -> None:
        """Feed events to the callbacks until the notifier is closed.

        A failing callback is logged and does not stop dispatch.
        """
        while True:
            event = await self.get()
            if event is None:
                return
            try:
                if event.type == NotifierEvent.CONTACT_UPDATED:
                    result = on_update(event.contact)  # type: ignore[arg-type]
                elif event.type == NotifierEvent.ERROR:
                    result = on_error(event.error, event.contact, event.fatal)  # type: ignore[arg-type]
                elif on_call is not None:
                    result = on_call(event.contact, event.payload)  # type: ignore[arg-type]
                else:
                    continue
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Event handler failed for {event!r}: {e}")

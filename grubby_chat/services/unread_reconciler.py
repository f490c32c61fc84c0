import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Union

from pydantic import ValidationError

from grubby_chat.repositories.participant_repository import ParticipantRepository
from grubby_chat.schemas.events import (
    MESSAGES_CREATED_CHANNEL,
    PARTICIPANTS_UPDATED_CHANNEL,
    MessageCreatedEvent,
    ReadMarkerUpdatedEvent,
    parse_event,
)
from grubby_chat.services.unread_service import UnreadService


logger = logging.getLogger(__name__)

CountListener = Callable[[int], Union[None, Awaitable[None]]]


def _as_utc(value: datetime) -> datetime:
    # Mongo hands back naive datetimes unless the client is tz_aware
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UnreadCountReconciler:
    """
    Live unread-message total for one signed-in session.

    The baseline comes from a full reconciliation. New messages from other
    senders bump the total by one after a participant lookup; the user's own
    read-marker updates throw the running total away and reconcile again.
    Bus payloads are parsed into event variants and queued to a single actor
    task, so events are applied one at a time in delivery order.

    Every reconciliation takes a generation number. Results (and increments
    whose lookup started) from an older generation are discarded, and nothing
    is applied once the reconciler is torn down.
    """

    def __init__(
        self,
        user_id: Optional[str],
        unread_service: UnreadService,
        participant_repo: ParticipantRepository,
        bus: Any,
        on_change: Optional[CountListener] = None,
    ) -> None:
        self._user_id = user_id
        self._unread_service = unread_service
        self._participant_repo = participant_repo
        self._bus = bus
        self._on_change = on_change
        self._count = 0
        self._generation = 0
        self._closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._subscriptions: List[Any] = []
        self._tasks: List[asyncio.Task] = []

    @property
    def count(self) -> int:
        return self._count

    @property
    def closed(self) -> bool:
        return self._closed

    async def initialize(self) -> int:
        if self._closed:
            return self._count
        if not self._user_id:
            await self._emit(0)
            return 0

        for channel in (MESSAGES_CREATED_CHANNEL, PARTICIPANTS_UPDATED_CHANNEL):
            try:
                subscription = await self._bus.subscribe(channel, self._deliver)
            except Exception:
                # transport reconnection is the bus's job; still serve the baseline
                logger.exception("Failed to subscribe to %s, live updates unavailable", channel)
                continue
            if self._closed:
                # torn down while subscribing
                await self._cancel_subscription(subscription)
                return self._count
            self._subscriptions.append(subscription)
            self._tasks.append(asyncio.create_task(subscription.run()))
        if self._closed:
            return self._count
        self._tasks.append(asyncio.create_task(self._run_actor()))

        return await self.reconcile()

    async def reconcile(self) -> int:
        """Recompute the total from backend state and replace the running value."""
        if self._closed or not self._user_id:
            return self._count
        self._generation += 1
        generation = self._generation

        total = await self._unread_service.total_unread(self._user_id)

        if self._closed:
            return self._count
        if generation != self._generation:
            logger.debug("Discarding unread reconciliation %s, superseded by %s", generation, self._generation)
            return self._count
        await self._emit(total)
        return total

    async def on_message_created(self, event: MessageCreatedEvent) -> None:
        if self._closed or not self._user_id:
            return
        if event.sender_id == self._user_id:
            return

        generation = self._generation
        try:
            participant = await self._participant_repo.get(event.room_id, self._user_id)
        except Exception:
            logger.exception("Participant lookup failed for room %s", event.room_id)
            return

        if participant is None:
            logger.debug("User %s is not a participant of room %s", self._user_id, event.room_id)
            return
        if self._closed or generation != self._generation:
            return

        last_read_at = participant.get("last_read_at")
        if last_read_at is not None and _as_utc(event.created_at) <= _as_utc(last_read_at):
            return
        await self._emit(self._count + 1)

    async def on_read_marker_updated(self, event: ReadMarkerUpdatedEvent) -> None:
        if self._closed or not self._user_id:
            return
        if event.user_id != self._user_id:
            return
        await self.reconcile()

    async def handle(self, event: Union[MessageCreatedEvent, ReadMarkerUpdatedEvent]) -> None:
        if isinstance(event, MessageCreatedEvent):
            await self.on_message_created(event)
        elif isinstance(event, ReadMarkerUpdatedEvent):
            await self.on_read_marker_updated(event)

    async def wait_idle(self) -> None:
        await self._inbox.join()

    async def teardown(self) -> None:
        if self._closed:
            return
        self._closed = True

        for subscription in self._subscriptions:
            await self._cancel_subscription(subscription)
        self._subscriptions.clear()

        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        # release anyone blocked in wait_idle()
        while not self._inbox.empty():
            self._inbox.get_nowait()
            self._inbox.task_done()

    async def _cancel_subscription(self, subscription: Any) -> None:
        try:
            await subscription.cancel()
        except Exception:
            logger.warning("Failed to cancel unread subscription", exc_info=True)

    async def _deliver(self, raw: str) -> None:
        if self._closed:
            return
        try:
            event = parse_event(raw)
        except ValidationError:
            logger.warning("Ignoring malformed unread event: %r", raw)
            return
        self._inbox.put_nowait(event)

    async def _run_actor(self) -> None:
        while True:
            event = await self._inbox.get()
            try:
                await self.handle(event)
            except Exception:
                logger.exception("Error applying %s event", event.type)
            finally:
                self._inbox.task_done()

    async def _emit(self, count: int) -> None:
        self._count = count
        if self._on_change is None:
            return
        try:
            result = self._on_change(count)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Unread count listener failed")

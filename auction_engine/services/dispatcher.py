import asyncio
import logging
from collections import deque

from auction_engine.errors import DispatchFailure
from auction_engine.services.events import NotificationEvent
from auction_engine.services.notifier import BaseNotifier

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Fans events out to the notifier's channels in background tasks.

    ``dispatch`` only schedules work, so the bid and resolution paths never
    wait on delivery. Each channel runs in isolation: its failure is logged
    as a DispatchFailure and does not stop the other channels.
    """

    def __init__(self, notifier: BaseNotifier, failure_history: int = 100):
        self.notifier = notifier
        self.failures: deque[DispatchFailure] = deque(maxlen=failure_history)
        # In-flight deliveries, kept referenced until they finish
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, event: NotificationEvent) -> asyncio.Task:
        task = asyncio.create_task(self._deliver(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def dispatch_all(self, events: list[NotificationEvent]):
        for event in events:
            self.dispatch(event)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self):
        """Wait for every in-flight delivery, including ones scheduled meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _deliver(self, event: NotificationEvent):
        # The stored record's id rides along on the live and mobile payloads
        notification_id = await self._run("persist", event, self.notifier.persist, event)

        channels = [
            self._run("live", event, self.notifier.push_live, event, notification_id),
            self._run("mobile", event, self.notifier.push_mobile, event, notification_id),
        ]
        if event.is_high_value:
            channels.append(self._run("external", event, self.notifier.send_external_message, event))
        await asyncio.gather(*channels)

    async def _run(self, channel: str, event: NotificationEvent, send, *args):
        try:
            return await send(*args)
        except Exception as e:
            failure = DispatchFailure(channel, event.user_id, event.kind.value, e)
            self.failures.append(failure)
            logger.error(f"[Dispatch] auction {event.auction_id}: {failure}")
            return None

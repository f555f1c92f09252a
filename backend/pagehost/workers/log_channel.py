"""In-process fan-out of run log entries to stream subscribers.

One channel per run id. Publishing never blocks the run, subscribers come
and go freely, and a channel is closed exactly once when its run ends.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime

logger = logging.getLogger(__name__)

_CLOSED = object()
# Remember this many finished runs so late subscribers end immediately
_CLOSED_HISTORY = 1000


@dataclass(frozen=True)
class LogEvent:
    seq: int
    timestamp: datetime
    level: str
    message: str


class Subscription:
    def __init__(self, broker: "RunLogBroker", run_id: str, queue: asyncio.Queue):
        self._broker = broker
        self.run_id = run_id
        self._queue = queue
        self.final_status: str | None = None
        self._done = False

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> LogEvent:
        if self._done:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._done = True
            self.final_status = self._broker.final_status(self.run_id)
            self.close()
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        self._broker._unsubscribe(self.run_id, self._queue)


class RunLogBroker:
    def __init__(self) -> None:
        self._subscribers: dict[str, set[asyncio.Queue]] = {}
        self._closed: OrderedDict[str, str] = OrderedDict()

    def is_closed(self, run_id: str) -> bool:
        return run_id in self._closed

    def final_status(self, run_id: str) -> str | None:
        return self._closed.get(run_id)

    def subscriber_count(self, run_id: str) -> int:
        return len(self._subscribers.get(run_id, ()))

    def publish(self, run_id: str, event: LogEvent) -> None:
        for queue in list(self._subscribers.get(run_id, ())):
            queue.put_nowait(event)

    def close(self, run_id: str, status: str) -> bool:
        """Close the channel. Returns False if it was already closed."""
        if run_id in self._closed:
            return False
        self._closed[run_id] = status
        while len(self._closed) > _CLOSED_HISTORY:
            self._closed.popitem(last=False)
        for queue in self._subscribers.pop(run_id, set()):
            queue.put_nowait(_CLOSED)
        logger.debug("Closed log channel for run %s (%s)", run_id, status)
        return True

    def subscribe(self, run_id: str) -> Subscription:
        queue: asyncio.Queue = asyncio.Queue()
        if run_id in self._closed:
            queue.put_nowait(_CLOSED)
        else:
            self._subscribers.setdefault(run_id, set()).add(queue)
        return Subscription(self, run_id, queue)

    def _unsubscribe(self, run_id: str, queue: asyncio.Queue) -> None:
        subscribers = self._subscribers.get(run_id)
        if subscribers is not None:
            subscribers.discard(queue)
            if not subscribers:
                del self._subscribers[run_id]

# kht/realtime.py
"""
In-process change feed for table rows.

Subscribers register a (table, column, value) filter and receive every
INSERT/UPDATE published for a matching row on their own asyncio queue.
Publishers are usually sync route handlers running in the threadpool, so
delivery goes through ``loop.call_soon_threadsafe``.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set, Tuple

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Subscription:
    table: str
    column: str
    value: str
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)

    @property
    def topic(self) -> Tuple[str, str, str]:
        return (self.table, self.column, self.value)


class Broker:
    def __init__(self):
        self._lock = threading.Lock()
        self._subs: Dict[Tuple[str, str, str], Set[Subscription]] = {}

    def subscribe(self, table: str, column: str, value: str) -> Subscription:
        """Must be called from the event loop that will consume the queue."""
        sub = Subscription(table=table, column=column, value=str(value), loop=asyncio.get_running_loop())
        with self._lock:
            self._subs.setdefault(sub.topic, set()).add(sub)
        logger.debug("Subscribed to %s", sub.topic)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subs.get(sub.topic)
            if subs:
                subs.discard(sub)
                if not subs:
                    del self._subs[sub.topic]
        logger.debug("Unsubscribed from %s", sub.topic)

    def subscriber_count(self, table: Optional[str] = None) -> int:
        with self._lock:
            return sum(len(s) for topic, s in self._subs.items() if table is None or topic[0] == table)

    def publish(self, table: str, event: str, row: Dict[str, Any]) -> int:
        """Fan a row change out to every matching subscription. Returns the delivery count."""
        message = {"event": event, "schema": "public", "table": table, "new": row}
        with self._lock:
            targets = [
                sub
                for (t, column, value), subs in self._subs.items()
                if t == table and str(row.get(column)) == value
                for sub in subs
            ]
        delivered = 0
        for sub in targets:
            if sub.loop.is_closed():
                continue
            sub.loop.call_soon_threadsafe(sub.queue.put_nowait, message)
            delivered += 1
        return delivered


broker = Broker()

# gamemarket/services/change_feed.py
import asyncio
import json
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Set

CHANNEL = "order_status"

class ChangeFeed:
    """Fans out order status notifications to in-process subscribers"""

    def __init__(self, db):
        self.db = db
        self._conn = None
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)
        self.logger = logging.getLogger(__name__)

    async def start(self):
        self._conn = await self.db.pool.acquire()
        await self._conn.add_listener(CHANNEL, self._on_notify)
        self.logger.info(f"Listening on channel {CHANNEL}")

    async def stop(self):
        if self._conn is None:
            return
        await self._conn.remove_listener(CHANNEL, self._on_notify)
        await self.db.pool.release(self._conn)
        self._conn = None

    def _on_notify(self, connection, pid, channel, payload):
        try:
            event = json.loads(payload)
        except ValueError:
            self.logger.error(f"Malformed notification on {channel}: {payload!r}")
            return
        self.dispatch(event)

    def dispatch(self, event: Dict[str, Any]):
        for queue in self._subscribers.get(str(event.get("order_id")), ()):
            queue.put_nowait(event)

    def subscriber_count(self, order_id) -> int:
        return len(self._subscribers.get(str(order_id), ()))

    @asynccontextmanager
    async def subscribe(self, order_id):
        """Queue of status events for one order, removed on exit"""
        key = str(order_id)
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[key].add(queue)
        try:
            yield queue
        finally:
            self._subscribers[key].discard(queue)
            if not self._subscribers[key]:
                del self._subscribers[key]

    @staticmethod
    async def publish(conn, order_id, status: str, previous: Optional[str] = None):
        """Queue a notification; delivered when the transaction commits"""
        payload = json.dumps({
            "order_id": str(order_id),
            "status": status,
            "previous": previous,
        })
        await conn.execute("SELECT pg_notify($1, $2)", CHANNEL, payload)

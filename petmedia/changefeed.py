"""
In-process change feed for the document collections.

Stores publish a change after every committed write; live subscriptions
register a watch on one collection with a predicate over the changed
document. A watch only carries "something you care about changed" signals;
subscribers re-read the full filtered set themselves.
"""

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Predicate = Callable[[Document], bool]

# Wakes a waiting watch without a change attached
_CLOSED = object()


class Watch:
    """
    A registration on the change feed, bound to the event loop that created it.

    ``notify`` may be called from any thread; the signal is handed to the
    owning loop with ``call_soon_threadsafe``.
    """

    def __init__(
        self,
        feed: "ChangeFeed",
        collection: str,
        predicate: Optional[Predicate],
        loop: asyncio.AbstractEventLoop,
    ):
        self.feed = feed
        self.collection = collection
        self.predicate = predicate
        self.closed = False
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()

    def matches(self, collection: str, document: Document) -> bool:
        if self.closed or collection != self.collection:
            return False
        return self.predicate is None or self.predicate(document)

    def notify(self, document: Document) -> None:
        self._put(document)

    def _put(self, item: Any) -> None:
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # Owning loop already closed; nobody is left to wake
            self.closed = True

    async def wait(self) -> Optional[Document]:
        """
        Wait for the next matching change.

        Changes that queued up in the meantime are drained, so one wake-up
        stands for all of them. Returns None once the watch is closed.
        """
        item = await self._queue.get()
        while not self._queue.empty():
            queued = self._queue.get_nowait()
            if queued is _CLOSED:
                item = _CLOSED
        if item is _CLOSED or self.closed:
            return None
        return item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.feed.unregister(self)
        self._put(_CLOSED)


class ChangeFeed:
    """Fan-out of committed document changes to registered watches."""

    def __init__(self):
        self._watches: list[Watch] = []
        self._lock = threading.Lock()

    def register(
        self,
        collection: str,
        predicate: Optional[Predicate] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> Watch:
        """
        Register a watch on a collection.

        Args:
            collection: Collection name (threads, messages, map_spots, users)
            predicate: Optional filter over the changed document
            loop: Loop to deliver on; defaults to the running loop

        Returns:
            The new Watch
        """
        if loop is None:
            loop = asyncio.get_running_loop()
        watch = Watch(self, collection, predicate, loop)
        with self._lock:
            self._watches.append(watch)
        logger.debug(f"Watch registered on {collection}, active watches: {len(self._watches)}")
        return watch

    def unregister(self, watch: Watch) -> None:
        with self._lock:
            if watch in self._watches:
                self._watches.remove(watch)
        logger.debug(f"Watch removed from {watch.collection}")

    def publish(self, collection: str, document: Document) -> int:
        """
        Deliver a committed change to every matching watch.

        Returns:
            Number of watches notified
        """
        with self._lock:
            watches = list(self._watches)

        notified = 0
        for watch in watches:
            if watch.matches(collection, document):
                watch.notify(document)
                notified += 1
        if notified:
            logger.debug(f"Change on {collection} delivered to {notified} watch(es)")
        return notified

    def close(self) -> None:
        """Close every watch, waking any subscriber still waiting."""
        with self._lock:
            watches = list(self._watches)
        for watch in watches:
            watch.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._watches)

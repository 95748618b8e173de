"""
Live snapshot subscriptions over the document collections.

A Subscription is an async iterator of complete, sorted snapshots of one
filtered set: the current state first, then a fresh snapshot after every
committed change to that set. Subscribers never merge deltas.

The callback helpers (subscribe_messages, subscribe_map_markers,
subscribe_threads) run a Subscription on the current event loop and return
an idempotent ``unsubscribe``.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from petmedia.changefeed import Predicate
from petmedia.errors import PetMediaError, SubscriptionError
from petmedia.map_spots import MapSpotStore
from petmedia.messages import MessageStore
from petmedia.metrics import subscription_closed, subscription_opened
from petmedia.storage import Backend
from petmedia.threads import ThreadStore

logger = logging.getLogger(__name__)

Snapshot = list[Any]
OnChange = Callable[[Snapshot], None]
OnError = Callable[[SubscriptionError], None]


class Subscription:
    """
    Stream of full snapshots for one collection and filter.

    Snapshots are fetched one at a time by the consuming task, each after the
    previous one, so a later snapshot never reflects older state than an
    earlier one. ``close`` is idempotent and ends iteration.
    """

    def __init__(
        self,
        backend: Backend,
        collection: str,
        fetch: Callable[[], Snapshot],
        predicate: Optional[Predicate] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.collection = collection
        self._fetch = fetch
        self._watch = backend.changes.register(collection, predicate, loop=loop)
        self._primed = False
        self.closed = False
        subscription_opened(collection)
        logger.debug(f"Subscription opened on {collection}")

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Snapshot:
        if self.closed:
            raise StopAsyncIteration

        if self._primed:
            change = await self._watch.wait()
            if change is None or self.closed:
                self.close()
                raise StopAsyncIteration
        self._primed = True

        try:
            snapshot = self._fetch()
        except (PetMediaError, SQLAlchemyError) as e:
            logger.error(f"Subscription on {self.collection} failed: {e}")
            self.close()
            raise SubscriptionError(f"Could not refresh {self.collection}: {e}", self.collection) from e

        logger.debug(f"Subscription on {self.collection} delivering {len(snapshot)} item(s)")
        return snapshot

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._watch.close()
        subscription_closed(self.collection)
        logger.debug(f"Subscription closed on {self.collection}")


class LiveSync:
    """Opens live subscriptions on messages, threads and map spots."""

    def __init__(
        self,
        backend: Backend,
        threads: ThreadStore,
        messages: MessageStore,
        map_spots: MapSpotStore,
    ):
        self.backend = backend
        self.threads = threads
        self.messages = messages
        self.map_spots = map_spots

    # -------------------------------------------------------------------------
    # Streams
    # -------------------------------------------------------------------------

    def open_messages(self, thread_id: str) -> Subscription:
        """Messages of one thread, oldest first."""
        return Subscription(
            self.backend,
            "messages",
            fetch=lambda: self.messages.list_for_thread(thread_id),
            predicate=lambda document: document.get("thread_id") == thread_id,
        )

    def open_threads(self, user_id: str) -> Subscription:
        """Threads of one user, most recently active first, with unread counts."""
        return Subscription(
            self.backend,
            "threads",
            fetch=lambda: self.messages.with_unread_counts(self.threads.list_for_user(user_id), user_id),
            predicate=lambda document: user_id in document.get("participants", ()),
        )

    def open_map_spots(self) -> Subscription:
        """All community map points, newest first."""
        return Subscription(self.backend, "map_spots", fetch=self.map_spots.list_all)

    # -------------------------------------------------------------------------
    # Callback adaptors
    # -------------------------------------------------------------------------

    def subscribe_messages(self, thread_id: str, on_change: OnChange, on_error: OnError) -> Callable[[], None]:
        return self._run(self.open_messages(thread_id), on_change, on_error)

    def subscribe_threads(self, user_id: str, on_change: OnChange, on_error: OnError) -> Callable[[], None]:
        return self._run(self.open_threads(user_id), on_change, on_error)

    def subscribe_map_markers(self, on_change: OnChange, on_error: OnError) -> Callable[[], None]:
        return self._run(self.open_map_spots(), on_change, on_error)

    def _run(self, subscription: Subscription, on_change: OnChange, on_error: OnError) -> Callable[[], None]:
        """
        Pump a subscription into callbacks on the running loop.

        Errors reach ``on_error`` and are not raised to the caller; the
        subscription is over at that point and the caller may resubscribe.
        """
        task = asyncio.get_running_loop().create_task(_pump(subscription, on_change, on_error))

        def unsubscribe() -> None:
            subscription.close()
            if not task.done():
                task.cancel()

        return unsubscribe


async def _pump(subscription: Subscription, on_change: OnChange, on_error: OnError) -> None:
    try:
        async for snapshot in subscription:
            try:
                on_change(snapshot)
            except Exception:
                logger.exception(f"on_change handler for {subscription.collection} raised")
    except SubscriptionError as e:
        try:
            on_error(e)
        except Exception:
            logger.exception(f"on_error handler for {subscription.collection} raised")
    finally:
        subscription.close()

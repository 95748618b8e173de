"""
Tests for live snapshot subscriptions.

Tests cover:
- Initial snapshot followed by a fresh full snapshot after each change
- Filtering by thread / participant
- Callback adaptor: delivery, errors through on_error, idempotent unsubscribe
- Map spot and thread list ordering in snapshots
- Shutdown of the backend ending open streams
"""

import asyncio

import pytest

from petmedia.errors import SubscriptionError, TransientBackendError
from petmedia.schemas import Coordinates

TIMEOUT = 2.0


def run(coro):
    return asyncio.run(coro)


async def next_snapshot(subscription, timeout: float = TIMEOUT):
    return await asyncio.wait_for(subscription.__anext__(), timeout)


@pytest.fixture
def thread_id(threads, people):
    return threads.get_or_create("u1", "u2")


class TestMessageStream:
    """Subscriptions on a thread's messages."""

    def test_initial_then_updated_snapshot(self, livesync, messages, thread_id):
        async def scenario():
            subscription = livesync.open_messages(thread_id)
            try:
                assert await next_snapshot(subscription) == []

                messages.send(thread_id, "u1", "Merhaba")
                snapshot = await next_snapshot(subscription)
                assert [message.text for message in snapshot] == ["Merhaba"]

                messages.send(thread_id, "u2", "Selam")
                snapshot = await next_snapshot(subscription)
                assert [message.text for message in snapshot] == ["Merhaba", "Selam"]
            finally:
                subscription.close()

        run(scenario())

    def test_other_threads_do_not_wake_subscription(self, livesync, messages, threads, thread_id):
        other = threads.get_or_create("u3", "u4")

        async def scenario():
            subscription = livesync.open_messages(thread_id)
            try:
                await next_snapshot(subscription)

                messages.send(other, "u3", "not for you")
                with pytest.raises(asyncio.TimeoutError):
                    await next_snapshot(subscription, timeout=0.2)

                messages.send(thread_id, "u1", "for you")
                snapshot = await next_snapshot(subscription)
                assert [message.text for message in snapshot] == ["for you"]
            finally:
                subscription.close()

        run(scenario())

    def test_read_receipts_produce_snapshot(self, livesync, messages, thread_id):
        messages.send(thread_id, "u1", "one")
        messages.send(thread_id, "u1", "two")

        async def scenario():
            subscription = livesync.open_messages(thread_id)
            try:
                await next_snapshot(subscription)

                messages.mark_read(thread_id, "u2")
                snapshot = await next_snapshot(subscription)
                assert all("u2" in message.read_by for message in snapshot)
            finally:
                subscription.close()

        run(scenario())

    def test_close_is_idempotent_and_ends_iteration(self, livesync, backend, thread_id):
        async def scenario():
            subscription = livesync.open_messages(thread_id)
            await next_snapshot(subscription)
            subscription.close()
            subscription.close()

            with pytest.raises(StopAsyncIteration):
                await next_snapshot(subscription)
            assert len(backend.changes) == 0

        run(scenario())

    def test_backend_close_ends_stream(self, livesync, backend, thread_id):
        async def scenario():
            subscription = livesync.open_messages(thread_id)
            await next_snapshot(subscription)

            backend.close()
            with pytest.raises(StopAsyncIteration):
                await next_snapshot(subscription)
            subscription.close()

        run(scenario())

    def test_fetch_failure_raises_subscription_error(self, livesync, backend, messages, thread_id, monkeypatch):
        async def scenario():
            subscription = livesync.open_messages(thread_id)
            await next_snapshot(subscription)

            def unavailable(thread_id):
                raise TransientBackendError("store offline")

            monkeypatch.setattr(messages, "list_for_thread", unavailable)
            backend.changes.publish("messages", {"id": "m-x", "thread_id": thread_id, "sender_id": "u1"})

            with pytest.raises(SubscriptionError):
                await next_snapshot(subscription)
            assert subscription.closed

        run(scenario())


class TestCallbackSubscriptions:
    """subscribe_* adaptors with on_change / on_error."""

    def test_subscribe_messages_delivers_snapshots(self, livesync, messages, thread_id):
        async def scenario():
            received = []
            errors = []
            arrived = asyncio.Event()

            def on_change(snapshot):
                received.append([message.text for message in snapshot])
                arrived.set()

            unsubscribe = livesync.subscribe_messages(thread_id, on_change, errors.append)

            await asyncio.wait_for(arrived.wait(), TIMEOUT)
            arrived.clear()
            messages.send(thread_id, "u1", "Merhaba")
            await asyncio.wait_for(arrived.wait(), TIMEOUT)

            unsubscribe()
            unsubscribe()

            messages.send(thread_id, "u1", "after unsubscribe")
            await asyncio.sleep(0.1)

            assert received == [[], ["Merhaba"]]
            assert errors == []

        run(scenario())

    def test_errors_go_to_on_error(self, livesync, messages, thread_id, monkeypatch):
        async def scenario():
            received = []
            errors = []
            failed = asyncio.Event()

            def on_error(error):
                errors.append(error)
                failed.set()

            def unavailable(thread_id):
                raise TransientBackendError("store offline")

            monkeypatch.setattr(messages, "list_for_thread", unavailable)

            unsubscribe = livesync.subscribe_messages(thread_id, received.append, on_error)
            await asyncio.wait_for(failed.wait(), TIMEOUT)

            assert received == []
            assert len(errors) == 1
            assert isinstance(errors[0], SubscriptionError)
            assert errors[0].collection == "messages"

            # Already finished; unsubscribing is still safe
            unsubscribe()

        run(scenario())

    def test_failing_on_change_does_not_end_subscription(self, livesync, messages, thread_id):
        async def scenario():
            calls = []
            arrived = asyncio.Event()

            def on_change(snapshot):
                calls.append(len(snapshot))
                arrived.set()
                if len(calls) == 1:
                    raise RuntimeError("render failed")

            unsubscribe = livesync.subscribe_messages(thread_id, on_change, lambda error: None)
            await asyncio.wait_for(arrived.wait(), TIMEOUT)
            arrived.clear()

            messages.send(thread_id, "u1", "hi")
            await asyncio.wait_for(arrived.wait(), TIMEOUT)
            unsubscribe()

            assert calls == [0, 1]

        run(scenario())

    def test_subscribe_map_markers_newest_first(self, livesync, map_spots):
        map_spots.create("u1", "food", "Mama kabı", Coordinates(latitude=41.0, longitude=29.0))

        async def scenario():
            snapshots = []
            arrived = asyncio.Event()

            def on_change(snapshot):
                snapshots.append([spot.title for spot in snapshot])
                arrived.set()

            unsubscribe = livesync.subscribe_map_markers(on_change, lambda error: None)
            await asyncio.wait_for(arrived.wait(), TIMEOUT)
            arrived.clear()

            map_spots.create("u2", "water", "Su kabı", Coordinates(latitude=41.1, longitude=29.1))
            await asyncio.wait_for(arrived.wait(), TIMEOUT)
            unsubscribe()

            assert snapshots == [["Mama kabı"], ["Su kabı", "Mama kabı"]]

        run(scenario())

    def test_subscribe_threads_reorders_on_activity(self, livesync, threads, messages, people):
        older = threads.get_or_create("u1", "u2")
        newer = threads.get_or_create("u1", "u3")

        async def scenario():
            snapshots = []
            arrived = asyncio.Event()

            def on_change(snapshot):
                snapshots.append([thread.id for thread in snapshot])
                arrived.set()

            unsubscribe = livesync.subscribe_threads("u1", on_change, lambda error: None)
            await asyncio.wait_for(arrived.wait(), TIMEOUT)
            arrived.clear()

            messages.send(older, "u2", "hey")
            await asyncio.wait_for(arrived.wait(), TIMEOUT)
            unsubscribe()

            assert snapshots[0] == [newer, older]
            assert snapshots[-1] == [older, newer]

        run(scenario())

    def test_thread_snapshots_track_unread_counts(self, livesync, threads, messages, people):
        thread_id = threads.get_or_create("u1", "u2")

        async def scenario():
            snapshots = []
            arrived = asyncio.Event()

            def on_change(snapshot):
                snapshots.append([thread.unread_count for thread in snapshot])
                arrived.set()

            unsubscribe = livesync.subscribe_threads("u2", on_change, lambda error: None)
            await asyncio.wait_for(arrived.wait(), TIMEOUT)
            arrived.clear()

            messages.send(thread_id, "u1", "Merhaba")
            await asyncio.wait_for(arrived.wait(), TIMEOUT)
            arrived.clear()

            messages.mark_read(thread_id, "u2")
            await asyncio.wait_for(arrived.wait(), TIMEOUT)
            unsubscribe()

            assert snapshots == [[0], [1], [0]]

        run(scenario())

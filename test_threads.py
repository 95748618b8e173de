"""
Tests for the thread store.

Tests cover:
- Lazy creation with denormalized participant snapshots
- Idempotent get-or-create from either side
- Placeholder names when profiles are missing or unavailable
- Repair of legacy records with missing names
- Listing order (last message, falling back to creation time)
- Last-message cache updates
"""

import pytest
from sqlalchemy.exc import OperationalError

from petmedia import models
from petmedia.errors import NotFoundError, TransientBackendError, ValidationError


def count_threads(backend) -> int:
    with backend.session() as db:
        return db.query(models.Thread).count()


class TestGetOrCreate:
    """Thread creation and resolution."""

    def test_creates_thread_with_snapshot(self, threads, people):
        thread_id = threads.get_or_create("u1", "u2")

        assert thread_id == "u1_u2"
        thread = threads.get_by_id(thread_id)
        assert thread.participants == ["u1", "u2"]
        assert thread.user1_id == "u1"
        assert thread.user1_name == "Ayşe"
        assert thread.user1_photo == "https://img/u1.png"
        assert thread.user2_id == "u2"
        assert thread.user2_name == "Mehmet"
        assert thread.user2_photo == ""
        assert thread.last_message_text is None
        assert thread.last_message_at is None
        assert thread.created_at == thread.updated_at

    def test_repeat_call_is_idempotent(self, backend, threads, people):
        first = threads.get_or_create("u1", "u2")
        second = threads.get_or_create("u1", "u2")

        assert first == second
        assert count_threads(backend) == 1

    def test_either_side_resolves_same_thread(self, backend, threads, people):
        assert threads.get_or_create("u2", "u1") == threads.get_or_create("u1", "u2")
        assert count_threads(backend) == 1

    def test_initiator_is_user1(self, threads, people):
        thread_id = threads.get_or_create("u2", "u1")

        thread = threads.get_by_id(thread_id)
        assert thread.id == "u1_u2"
        assert thread.user1_id == "u2"
        assert thread.user1_name == "Mehmet"

    def test_concurrent_creators_converge(self, backend, threads, people, monkeypatch):
        create = threads._create

        def create_after_other_writer(thread_id, user_a, user_b):
            # The other side of the pair commits its record first
            with backend.session() as db:
                db.add(models.Thread(
                    id=thread_id,
                    participants=["u1", "u2"],
                    user1_id="u2",
                    user1_name="Mehmet",
                    user1_photo="",
                    user2_id="u1",
                    user2_name="Ayşe",
                    user2_photo="https://img/u1.png",
                    created_at="2025-01-15T09:00:00.000000Z",
                    updated_at="2025-01-15T09:00:00.000000Z",
                ))
                db.commit()
            create(thread_id, user_a, user_b)

        monkeypatch.setattr(threads, "_create", create_after_other_writer)

        thread_id = threads.get_or_create("u1", "u2")

        assert thread_id == "u1_u2"
        assert count_threads(backend) == 1
        thread = threads.get_by_id(thread_id)
        assert thread.user1_id == "u2"
        assert thread.created_at == "2025-01-15T09:00:00.000000Z"

    def test_self_thread_rejected(self, backend, threads, people):
        with pytest.raises(ValidationError):
            threads.get_or_create("u1", "u1")
        assert count_threads(backend) == 0

    def test_missing_profiles_use_placeholder(self, threads):
        thread_id = threads.get_or_create("ghost1", "ghost2")

        thread = threads.get_by_id(thread_id)
        assert thread.user1_name == "Kullanıcı"
        assert thread.user2_name == "Kullanıcı"

    def test_profile_lookup_failure_does_not_block_creation(self, threads, users, people, monkeypatch):
        def unavailable(user_id):
            raise TransientBackendError("profile service down")

        monkeypatch.setattr(users, "get_profile", unavailable)

        thread_id = threads.get_or_create("u1", "u2")

        thread = threads.get_by_id(thread_id)
        assert thread.user1_name == "Kullanıcı"
        assert thread.user2_name == "Kullanıcı"

    def test_name_falls_back_to_email(self, threads, users):
        users.ensure_user("u3", email="deniz@example.com")
        users.update_profile("u3", display_name="")
        users.ensure_user("u4", display_name="Can")

        thread = threads.get_by_id(threads.get_or_create("u3", "u4"))
        assert thread.user1_name == "deniz@example.com"


class TestSnapshotRepair:
    """Repair-on-read of legacy records."""

    @pytest.fixture
    def legacy_thread(self, backend):
        with backend.session() as db:
            db.add(models.Thread(
                id="u1_u2",
                participants=["u1", "u2"],
                user1_id="u1",
                user1_name="",
                user1_photo="",
                user2_id="u2",
                user2_name="",
                user2_photo="",
                created_at="2024-12-01T08:00:00.000000Z",
                updated_at="2024-12-01T08:00:00.000000Z",
            ))
            db.commit()
        return "u1_u2"

    def test_missing_names_are_repaired(self, threads, people, legacy_thread):
        assert threads.get_or_create("u1", "u2") == legacy_thread

        thread = threads.get_by_id(legacy_thread)
        assert thread.user1_name == "Ayşe"
        assert thread.user1_photo == "https://img/u1.png"
        assert thread.user2_name == "Mehmet"
        assert thread.updated_at > thread.created_at

    def test_repair_failure_still_returns_thread(self, threads, people, legacy_thread):
        def broken_clock():
            raise OperationalError("UPDATE threads", {}, Exception("database is locked"))

        threads.clock = broken_clock

        assert threads.get_or_create("u1", "u2") == legacy_thread
        assert threads.get_by_id(legacy_thread).user1_name == ""

    def test_complete_record_is_left_alone(self, threads, users, people):
        thread_id = threads.get_or_create("u1", "u2")
        users.update_profile("u1", display_name="Ayşe Y.")

        threads.get_or_create("u1", "u2")

        assert threads.get_by_id(thread_id).user1_name == "Ayşe"


class TestLookupAndListing:
    """get_by_id and list_for_user."""

    def test_get_by_id_missing_returns_none(self, threads):
        assert threads.get_by_id("nobody_nothing") is None

    def test_list_for_user_orders_by_activity(self, threads):
        first = threads.get_or_create("u1", "u2")
        second = threads.get_or_create("u1", "u3")
        third = threads.get_or_create("u4", "u1")
        threads.get_or_create("u2", "u3")

        # Latest activity on the oldest thread moves it to the top
        threads.touch_last_message(first, "selam", threads.clock())

        listed = [thread.id for thread in threads.list_for_user("u1")]
        assert listed == [first, third, second]

    def test_list_for_user_excludes_other_threads(self, threads):
        threads.get_or_create("u2", "u3")

        assert threads.list_for_user("u1") == []

    def test_touch_updates_cache(self, threads, people):
        thread_id = threads.get_or_create("u1", "u2")

        threads.touch_last_message(thread_id, "Merhaba", "2025-02-01T09:00:00.000000Z")

        thread = threads.get_by_id(thread_id)
        assert thread.last_message_text == "Merhaba"
        assert thread.last_message_at == "2025-02-01T09:00:00.000000Z"
        assert thread.updated_at == "2025-02-01T09:00:00.000000Z"

    def test_touch_missing_thread_raises(self, threads):
        with pytest.raises(NotFoundError):
            threads.touch_last_message("u1_u2", "hi", "2025-02-01T09:00:00.000000Z")

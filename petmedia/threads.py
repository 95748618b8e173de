"""
Thread store.

Creates conversation records lazily on first contact, keeps a denormalized
snapshot of both participants on the record, and caches the latest message
so thread lists render without touching the messages collection.
"""

import logging
from typing import Callable, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from petmedia import models, schemas
from petmedia.errors import NotFoundError, PetMediaError, TransientBackendError
from petmedia.identity import derive_thread_id
from petmedia.metrics import record_thread_outcome
from petmedia.storage import Backend
from petmedia.users import UserDirectory
from petmedia.utils import parse_timestamp, utc_now

logger = logging.getLogger(__name__)


def thread_activity_key(thread: schemas.Thread):
    """Sort key: last message time, or creation time for threads with no messages."""
    return parse_timestamp(thread.last_message_at or thread.created_at)


def sort_threads(threads: list[schemas.Thread]) -> list[schemas.Thread]:
    """Most recently active first. Done client-side so the query needs no composite index."""
    return sorted(threads, key=thread_activity_key, reverse=True)


class ThreadStore:
    """Reads and writes the threads collection."""

    def __init__(
        self,
        backend: Backend,
        users: UserDirectory,
        placeholder_name: str = "Kullanıcı",
        clock: Callable[[], str] = utc_now,
    ):
        self.backend = backend
        self.users = users
        self.placeholder_name = placeholder_name
        self.clock = clock

    # -------------------------------------------------------------------------
    # Participant snapshots
    # -------------------------------------------------------------------------

    def _participant_snapshot(self, user_id: str) -> tuple[str, str]:
        """
        (display name, photo) for a participant.

        Lookup failures and missing profiles fall back to the placeholder
        name so a conversation can always be opened.
        """
        try:
            profile = self.users.get_profile(user_id)
        except PetMediaError as e:
            logger.warning(f"Profile lookup failed for {user_id}, using placeholder: {e}")
            return self.placeholder_name, ""

        if profile is None:
            logger.warning(f"No profile for {user_id}, using placeholder name")
            return self.placeholder_name, ""
        name = profile.display_name or profile.email or self.placeholder_name
        return name, profile.photo_url or ""

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def get_or_create(self, user_a: str, user_b: str) -> str:
        """
        Resolve the conversation between two users, creating it on first contact.

        Args:
            user_a: User opening the conversation (stored as user1)
            user_b: User being messaged (stored as user2)

        Returns:
            The canonical thread id

        Raises:
            ValidationError: If the ids are empty or identical
            TransientBackendError: If the store cannot be reached
        """
        thread_id = derive_thread_id(user_a, user_b)
        logger.info(f"Resolving thread {thread_id} for {user_a} -> {user_b}")

        try:
            with self.backend.session() as db:
                existing = db.get(models.Thread, thread_id)
                exists = existing is not None
                missing_names = exists and (not existing.user1_name or not existing.user2_name)
        except OperationalError as e:
            raise TransientBackendError(f"Could not resolve thread {thread_id}: {e}") from e

        if not exists:
            self._create(thread_id, user_a, user_b)
        elif missing_names:
            self._repair_snapshot(thread_id)
        else:
            logger.debug(f"Thread already exists: {thread_id}")
            record_thread_outcome("existing")

        return thread_id

    def _create(self, thread_id: str, user_a: str, user_b: str) -> None:
        logger.info(f"Thread does not exist, creating: {thread_id}")
        user1_name, user1_photo = self._participant_snapshot(user_a)
        user2_name, user2_photo = self._participant_snapshot(user_b)
        now = self.clock()

        try:
            with self.backend.session() as db:
                thread = models.Thread(
                    id=thread_id,
                    participants=sorted([user_a, user_b]),
                    user1_id=user_a,
                    user1_name=user1_name,
                    user1_photo=user1_photo,
                    user2_id=user_b,
                    user2_name=user2_name,
                    user2_photo=user2_photo,
                    last_message_text=None,
                    last_message_at=None,
                    created_at=now,
                    updated_at=now,
                )
                db.add(thread)
                try:
                    db.commit()
                except IntegrityError:
                    # Another caller created the same pair first; its record is equivalent
                    db.rollback()
                    logger.info(f"Thread created concurrently, using existing: {thread_id}")
                    record_thread_outcome("existing")
                    return
                document = thread.to_document()
        except OperationalError as e:
            raise TransientBackendError(f"Could not create thread {thread_id}: {e}") from e

        logger.info(f"Created thread: {thread_id}")
        record_thread_outcome("created")
        self.backend.changes.publish("threads", document)

    def _repair_snapshot(self, thread_id: str) -> None:
        """
        Refill participant names/photos on a legacy or partial record.

        Best effort: failures are logged and the thread is still returned.
        """
        logger.info(f"Repairing participant snapshot on thread {thread_id}")
        try:
            with self.backend.session() as db:
                thread = db.get(models.Thread, thread_id)
                if thread is None:
                    return
                user1_id, user2_id = thread.user1_id, thread.user2_id

            user1_name, user1_photo = self._participant_snapshot(user1_id)
            user2_name, user2_photo = self._participant_snapshot(user2_id)

            with self.backend.session() as db:
                thread = db.get(models.Thread, thread_id)
                if thread is None:
                    return
                thread.user1_name, thread.user1_photo = user1_name, user1_photo
                thread.user2_name, thread.user2_photo = user2_name, user2_photo
                thread.updated_at = self.clock()
                db.commit()
                document = thread.to_document()
        except SQLAlchemyError as e:
            logger.warning(f"Could not repair participant snapshot on {thread_id}: {e}")
            return

        record_thread_outcome("repaired")
        self.backend.changes.publish("threads", document)

    def get_by_id(self, thread_id: str) -> Optional[schemas.Thread]:
        """
        Look up a thread.

        Returns:
            The thread, or None when it does not exist
        """
        logger.debug(f"Looking up thread by ID: {thread_id}")
        try:
            with self.backend.session() as db:
                thread = db.get(models.Thread, thread_id)
                if thread is None:
                    logger.info(f"Thread not found: {thread_id}")
                    return None
                return schemas.Thread.model_validate(thread)
        except OperationalError as e:
            raise TransientBackendError(f"Could not load thread {thread_id}: {e}") from e

    def list_for_user(self, user_id: str) -> list[schemas.Thread]:
        """
        All threads the user participates in, most recently active first.

        The query is an unordered equality filter; ordering happens here.
        """
        logger.info(f"Getting threads for user: {user_id}")
        try:
            with self.backend.session() as db:
                rows = (
                    db.query(models.Thread)
                    .filter(or_(models.Thread.user1_id == user_id, models.Thread.user2_id == user_id))
                    .all()
                )
                threads = [schemas.Thread.model_validate(row) for row in rows]
        except OperationalError as e:
            raise TransientBackendError(f"Could not list threads for {user_id}: {e}") from e

        logger.info(f"Returning {len(threads)} sorted threads for {user_id}")
        return sort_threads(threads)

    def touch_last_message(self, thread_id: str, text: str, at: str) -> None:
        """
        Update the last-message cache after a send.

        Raises:
            NotFoundError: If the thread does not exist
            TransientBackendError: If the store cannot be reached
        """
        try:
            with self.backend.session() as db:
                thread = db.get(models.Thread, thread_id)
                if thread is None:
                    raise NotFoundError(f"Thread {thread_id} not found", "threads", thread_id)
                thread.last_message_text = text
                thread.last_message_at = at
                thread.updated_at = at
                db.commit()
                document = thread.to_document()
        except OperationalError as e:
            raise TransientBackendError(f"Could not update thread {thread_id}: {e}") from e

        logger.debug(f"Last-message cache updated on {thread_id}")
        self.backend.changes.publish("threads", document)

    def announce_change(self, thread_id: str) -> None:
        """
        Notify thread watchers that something derived from the thread changed.

        Used after read receipts, which alter unread counts without touching
        the thread record itself. A missing thread announces nothing.
        """
        try:
            with self.backend.session() as db:
                thread = db.get(models.Thread, thread_id)
                if thread is None:
                    return
                document = thread.to_document()
        except OperationalError as e:
            raise TransientBackendError(f"Could not load thread {thread_id}: {e}") from e

        self.backend.changes.publish("threads", document)

"""
Message store: append-only per-thread log with per-message read tracking.

Messages live in their own collection keyed by a generated id and point at
their thread through ``thread_id``, so one thread can be watched without
loading any other. Queries filter on ``thread_id`` only; ordering is applied
here after the fetch.
"""

import logging
import uuid
from typing import Callable

from sqlalchemy.exc import OperationalError

from petmedia import models, schemas
from petmedia.errors import PetMediaError, TransientBackendError, ValidationError
from petmedia.metrics import record_message_outcome, record_read_receipts
from petmedia.storage import Backend
from petmedia.threads import ThreadStore
from petmedia.utils import parse_timestamp, utc_now

logger = logging.getLogger(__name__)


def sort_messages(messages: list[schemas.Message]) -> list[schemas.Message]:
    """Oldest first by created_at instant; equal timestamps keep no particular order."""
    return sorted(messages, key=lambda message: parse_timestamp(message.created_at))


class MessageStore:
    """Reads and writes the messages collection."""

    def __init__(
        self,
        backend: Backend,
        threads: ThreadStore,
        max_length: int = 1000,
        clock: Callable[[], str] = utc_now,
    ):
        self.backend = backend
        self.threads = threads
        self.max_length = max_length
        self.clock = clock

    def validate_text(self, text: str) -> None:
        """
        Reject blank or oversized message text.

        Raises:
            ValidationError: If the text is empty after trimming or longer than max_length
        """
        if text is None or not text.strip():
            raise ValidationError("message text must not be empty")
        if len(text) > self.max_length:
            raise ValidationError(f"message text must be at most {self.max_length} characters")

    def send(self, thread_id: str, sender_id: str, text: str) -> str:
        """
        Append a message to a thread and refresh the thread's last-message cache.

        The sender has read their own message. The cache update runs after
        the message is stored and its failure never undoes the send.

        Args:
            thread_id: Target thread
            sender_id: Sending user
            text: Message text

        Returns:
            The new message id

        Raises:
            ValidationError: If the text is blank or too long (nothing is written)
            TransientBackendError: If the message could not be stored
        """
        try:
            self.validate_text(text)
        except ValidationError:
            record_message_outcome("validation_error")
            raise

        message_id = uuid.uuid4().hex
        now = self.clock()
        logger.info(f"Sending message {message_id} to thread {thread_id} from {sender_id}")

        try:
            with self.backend.session() as db:
                message = models.Message(
                    id=message_id,
                    thread_id=thread_id,
                    sender_id=sender_id,
                    text=text,
                    read_by=[sender_id],
                    created_at=now,
                )
                db.add(message)
                db.commit()
                document = message.to_document()
        except OperationalError as e:
            record_message_outcome("error")
            raise TransientBackendError(f"Could not send message to {thread_id}: {e}") from e

        self.backend.changes.publish("messages", document)
        record_message_outcome("sent")

        try:
            self.threads.touch_last_message(thread_id, text, now)
        except PetMediaError as e:
            logger.warning(f"Message {message_id} sent but thread cache not updated: {e}")

        return message_id

    def list_for_thread(self, thread_id: str) -> list[schemas.Message]:
        """
        All messages of a thread, oldest first.

        Raises:
            TransientBackendError: If the store cannot be reached
        """
        try:
            with self.backend.session() as db:
                rows = db.query(models.Message).filter(models.Message.thread_id == thread_id).all()
                messages = [schemas.Message.model_validate(row) for row in rows]
        except OperationalError as e:
            raise TransientBackendError(f"Could not load messages for {thread_id}: {e}") from e

        logger.debug(f"Loaded {len(messages)} messages for thread {thread_id}")
        return sort_messages(messages)

    def mark_read(self, thread_id: str, user_id: str) -> int:
        """
        Add ``user_id`` to read_by on every message of the thread that lacks it.

        Each message is a separate union, so repeated or concurrent calls
        commute; a call with nothing unread writes nothing.

        Returns:
            Number of messages newly marked as read
        """
        try:
            with self.backend.session() as db:
                rows = db.query(models.Message).filter(models.Message.thread_id == thread_id).all()
                unread = [row for row in rows if user_id not in (row.read_by or [])]
                for row in unread:
                    # Assign a new list so the JSON column is flagged dirty
                    row.read_by = [*(row.read_by or []), user_id]
                if unread:
                    db.commit()
                documents = [row.to_document() for row in unread]
        except OperationalError as e:
            raise TransientBackendError(f"Could not mark {thread_id} read for {user_id}: {e}") from e

        if documents:
            logger.info(f"Marked {len(documents)} message(s) in {thread_id} read by {user_id}")
            record_read_receipts(len(documents))
            for document in documents:
                self.backend.changes.publish("messages", document)
            try:
                self.threads.announce_change(thread_id)
            except PetMediaError as e:
                logger.warning(f"Read receipts stored but thread watchers not notified: {e}")
        return len(documents)

    def unread_count(self, thread_id: str, user_id: str) -> int:
        """Messages in the thread that ``user_id`` has not read yet."""
        return sum(1 for message in self.list_for_thread(thread_id) if user_id not in message.read_by)

    def with_unread_counts(self, threads: list[schemas.Thread], user_id: str) -> list[schemas.Thread]:
        """Copies of ``threads`` carrying the user's unread count, order kept."""
        return [
            thread.model_copy(update={"unread_count": self.unread_count(thread.id, user_id)})
            for thread in threads
        ]

"""
SQLAlchemy ORM models for the document collections.

This module contains database table definitions using SQLAlchemy.
For Pydantic snapshots and request/response schemas, see schemas.py.
Timestamps are stored as ISO-8601 UTC strings (see utils.utc_now).
"""

from sqlalchemy import JSON, Column, Float, Integer, String, Text

from petmedia.storage import Base


class User(Base):
    """
    Profile record; source of the denormalized participant snapshot in threads.

    Table: users
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, default="")
    display_name = Column(String, nullable=False, default="")
    photo_url = Column(String, nullable=False, default="")
    city = Column(String, nullable=False, default="")
    bio = Column(Text, nullable=False, default="")
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)

    def to_document(self) -> dict:
        return {"id": self.id, "display_name": self.display_name, "email": self.email}


class Thread(Base):
    """
    Conversation between exactly two users.

    Table: threads
    Primary Key: id, derived from the sorted participant pair (one row per pair)
    """
    __tablename__ = "threads"

    id = Column(String, primary_key=True)
    participants = Column(JSON, nullable=False)  # sorted [user_a, user_b]

    # Denormalized participant snapshot, user1 is whoever opened the thread
    user1_id = Column(String, nullable=False, index=True)
    user1_name = Column(String, nullable=False, default="")
    user1_photo = Column(String, nullable=False, default="")
    user2_id = Column(String, nullable=False, index=True)
    user2_name = Column(String, nullable=False, default="")
    user2_photo = Column(String, nullable=False, default="")

    # Best-effort cache of the latest message
    last_message_text = Column(Text, nullable=True)
    last_message_at = Column(String, nullable=True)

    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)

    def to_document(self) -> dict:
        return {
            "id": self.id,
            "participants": list(self.participants or []),
            "last_message_at": self.last_message_at,
        }


class Message(Base):
    """
    One chat line. Immutable after insert except for read_by growth.

    Table: messages
    """
    __tablename__ = "messages"

    id = Column(String, primary_key=True)
    thread_id = Column(String, nullable=False, index=True)
    sender_id = Column(String, nullable=False)
    text = Column(Text, nullable=False)
    read_by = Column(JSON, nullable=False)  # set semantics, only ever unioned
    created_at = Column(String, nullable=False)

    def to_document(self) -> dict:
        return {"id": self.id, "thread_id": self.thread_id, "sender_id": self.sender_id}


class MapSpot(Base):
    """
    Community resource point (food, water, shelter...) on the map.

    Table: map_spots
    """
    __tablename__ = "map_spots"

    id = Column(String, primary_key=True)
    creator_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    note = Column(Text, nullable=False, default="")
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    photo_url = Column(String, nullable=False, default="")
    contributors_count = Column(Integer, nullable=False, default=1)
    created_at = Column(String, nullable=False)
    last_updated_at = Column(String, nullable=False)

    def to_document(self) -> dict:
        return {"id": self.id, "creator_id": self.creator_id, "type": self.type}

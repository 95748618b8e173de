"""
Pydantic schemas for snapshots and request/response validation.

This module contains:
- Snapshot models returned by the stores (detached copies of ORM rows)
- Request models for incoming data validation
- Response models for API responses
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Snapshot Models
# =============================================================================

class UserProfile(BaseModel):
    """Profile fields used for participant snapshots and the user list."""
    id: str = Field(..., description="User identifier")
    email: str = Field(default="", description="Email address")
    display_name: str = Field(default="", description="Display name")
    photo_url: str = Field(default="", description="Avatar reference")
    city: str = Field(default="", description="City")
    bio: str = Field(default="", description="Free-text bio")
    created_at: str = Field(..., description="Creation time (ISO-8601 UTC)")
    updated_at: str = Field(..., description="Last update time (ISO-8601 UTC)")

    model_config = {"from_attributes": True}


class Thread(BaseModel):
    """
    Snapshot of a conversation record.

    The user1/user2 fields are a denormalized copy of each participant's
    profile taken when the thread was created (or repaired), not a live view.
    """
    id: str = Field(..., description="Deterministic thread id (sorted ids joined by '_')")
    participants: list[str] = Field(..., description="Both participant ids, sorted")
    user1_id: str
    user1_name: str = ""
    user1_photo: str = ""
    user2_id: str
    user2_name: str = ""
    user2_photo: str = ""
    last_message_text: Optional[str] = Field(None, description="Most recent message text (cache)")
    last_message_at: Optional[str] = Field(None, description="Most recent message time (cache)")
    created_at: str
    updated_at: str
    unread_count: Optional[int] = Field(
        None,
        ge=0,
        description="Messages not yet read by the requesting user (thread list only)"
    )

    model_config = {"from_attributes": True}


class Message(BaseModel):
    """Snapshot of one chat message."""
    id: str = Field(..., description="Store-generated message id")
    thread_id: str = Field(..., description="Owning thread id")
    sender_id: str = Field(..., description="Sender user id")
    text: str = Field(..., description="Message text")
    read_by: list[str] = Field(default_factory=list, description="Users who have read the message")
    created_at: str = Field(..., description="Send time (ISO-8601 UTC)")

    model_config = {"from_attributes": True}


class MapSpotType(str, Enum):
    """Kinds of community resource points."""
    FOOD = "food"
    WATER = "water"
    BOTH = "both"
    VETERINARY = "veterinary"
    SHELTER = "shelter"


class Coordinates(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class MapSpot(BaseModel):
    """Snapshot of a community map point."""
    id: str
    creator_id: str
    type: MapSpotType
    title: str
    note: str = ""
    coords: Coordinates
    photo_url: str = ""
    contributors_count: int = Field(..., ge=0)
    created_at: str
    last_updated_at: str

    @classmethod
    def from_record(cls, record) -> "MapSpot":
        """Build a snapshot from a models.MapSpot row (coords are stored as two columns)."""
        return cls(
            id=record.id,
            creator_id=record.creator_id,
            type=record.type,
            title=record.title,
            note=record.note or "",
            coords=Coordinates(latitude=record.latitude, longitude=record.longitude),
            photo_url=record.photo_url or "",
            contributors_count=record.contributors_count,
            created_at=record.created_at,
            last_updated_at=record.last_updated_at,
        )


# =============================================================================
# Pydantic Request Models
# =============================================================================

class EnsureUserRequest(BaseModel):
    """Register a signed-in user's profile if it does not exist yet."""
    id: str = Field(..., min_length=1, description="User identifier")
    email: str = Field(default="", description="Email address")
    display_name: str = Field(default="", description="Display name")
    photo_url: str = Field(default="", description="Avatar reference")


class UpdateProfileRequest(BaseModel):
    """Partial profile update; omitted fields are left untouched."""
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    city: Optional[str] = None
    bio: Optional[str] = None


class CreateThreadRequest(BaseModel):
    """Open (or find) the conversation between two users."""
    user_id: str = Field(..., min_length=1, description="User starting the conversation")
    other_user_id: str = Field(..., min_length=1, description="User being messaged")

    model_config = {
        "json_schema_extra": {
            "examples": [{"user_id": "u1", "other_user_id": "u2"}]
        }
    }


class SendMessageRequest(BaseModel):
    """
    Message send payload.

    Text length and blankness are checked by the message store so the
    configured limit applies to every caller, not just HTTP.
    """
    sender_id: str = Field(..., min_length=1, description="Sender user id")
    text: str = Field(..., description="Message text")

    model_config = {
        "json_schema_extra": {
            "examples": [{"sender_id": "u1", "text": "Merhaba"}]
        }
    }


class MarkReadRequest(BaseModel):
    user_id: str = Field(..., min_length=1, description="Reader user id")


class CreateMapSpotRequest(BaseModel):
    """Payload for adding a community map point."""
    creator_id: str = Field(..., min_length=1)
    type: MapSpotType
    title: str = Field(..., min_length=1, max_length=200)
    note: str = Field(default="", max_length=1000)
    coords: Coordinates
    photo_url: str = ""


# =============================================================================
# Pydantic Response Models
# =============================================================================

class CreateThreadResponse(BaseModel):
    thread_id: str = Field(..., description="Canonical thread id")


class SendMessageResponse(BaseModel):
    message_id: str = Field(..., description="Id of the stored message")


class MarkReadResponse(BaseModel):
    updated: int = Field(..., ge=0, description="Messages newly marked as read")


class ThreadListResponse(BaseModel):
    """Threads for a user, most recently active first."""
    data: list[Thread] = Field(default_factory=list)
    total: int = Field(..., ge=0)


class MessageListResponse(BaseModel):
    """Messages of a thread, oldest first."""
    data: list[Message] = Field(default_factory=list)
    total: int = Field(..., ge=0)


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class SendFailureResponse(BaseModel):
    """Returned when a send fails transiently; carries the unsent text for retry."""
    detail: str = Field(..., description="Error description")
    text: str = Field(..., description="The text that was not sent")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")

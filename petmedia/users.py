"""
User directory: profile records that threads snapshot their participants from.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError, OperationalError

from petmedia import models, schemas
from petmedia.errors import NotFoundError, TransientBackendError, ValidationError
from petmedia.storage import Backend
from petmedia.utils import utc_now

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("display_name", "photo_url", "city", "bio")


def default_display_name(email: str) -> str:
    """Local part of the email address, used when no display name was given."""
    return email.split("@")[0] if email else ""


class UserDirectory:
    """Reads and writes the users collection."""

    def __init__(self, backend: Backend):
        self.backend = backend

    def ensure_user(
        self,
        user_id: str,
        email: str = "",
        display_name: str = "",
        photo_url: str = "",
    ) -> schemas.UserProfile:
        """
        Create the profile if it does not exist yet; existing profiles are left as-is.

        Returns:
            The stored profile
        """
        logger.info(f"Ensuring user profile: {user_id}")
        try:
            with self.backend.session() as db:
                user = db.get(models.User, user_id)
                if user is not None:
                    logger.debug(f"User already exists: {user_id}")
                    return schemas.UserProfile.model_validate(user)

                now = utc_now()
                user = models.User(
                    id=user_id,
                    email=email,
                    display_name=display_name or default_display_name(email),
                    photo_url=photo_url,
                    city="",
                    bio="",
                    created_at=now,
                    updated_at=now,
                )
                db.add(user)
                try:
                    db.commit()
                except IntegrityError:
                    # Created concurrently; the other writer's record stands
                    db.rollback()
                    logger.info(f"User created concurrently: {user_id}")
                    return schemas.UserProfile.model_validate(db.get(models.User, user_id))
                profile = schemas.UserProfile.model_validate(user)
                document = user.to_document()
        except OperationalError as e:
            raise TransientBackendError(f"Could not ensure user {user_id}: {e}") from e

        logger.info(f"User created: {user_id}")
        self.backend.changes.publish("users", document)
        return profile

    def get_profile(self, user_id: str) -> Optional[schemas.UserProfile]:
        """
        Look up a profile.

        Returns:
            The profile, or None when no such user exists
        """
        try:
            with self.backend.session() as db:
                user = db.get(models.User, user_id)
                if user is None:
                    logger.debug(f"User not found: {user_id}")
                    return None
                return schemas.UserProfile.model_validate(user)
        except OperationalError as e:
            raise TransientBackendError(f"Could not load user {user_id}: {e}") from e

    def update_profile(self, user_id: str, **fields) -> schemas.UserProfile:
        """
        Merge the given profile fields into the stored record.

        Existing threads keep their old participant snapshot until repaired.

        Raises:
            NotFoundError: If the user does not exist
            ValidationError: If a field is not updatable
        """
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {sorted(unknown)}")

        logger.info(f"Updating profile for user: {user_id}")
        logger.debug(f"Profile fields: {sorted(fields)}")
        try:
            with self.backend.session() as db:
                user = db.get(models.User, user_id)
                if user is None:
                    raise NotFoundError(f"User {user_id} not found", "users", user_id)
                for name, value in fields.items():
                    if value is not None:
                        setattr(user, name, value)
                user.updated_at = utc_now()
                db.commit()
                profile = schemas.UserProfile.model_validate(user)
                document = user.to_document()
        except OperationalError as e:
            raise TransientBackendError(f"Could not update user {user_id}: {e}") from e

        self.backend.changes.publish("users", document)
        return profile

    def list_users(self, exclude_user_id: Optional[str] = None) -> list[schemas.UserProfile]:
        """
        All users sorted case-insensitively by display name, then email.

        Args:
            exclude_user_id: Typically the caller, left out of the list
        """
        try:
            with self.backend.session() as db:
                query = db.query(models.User)
                if exclude_user_id:
                    query = query.filter(models.User.id != exclude_user_id)
                users = [schemas.UserProfile.model_validate(user) for user in query.all()]
        except OperationalError as e:
            raise TransientBackendError(f"Could not list users: {e}") from e

        users.sort(key=lambda user: (user.display_name or user.email).lower())
        logger.info(f"Returning {len(users)} users")
        return users

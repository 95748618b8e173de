"""
Community map points (food, water, veterinary, shelter).
"""

import logging
import uuid
from typing import Callable

from sqlalchemy.exc import OperationalError

from petmedia import models, schemas
from petmedia.errors import NotFoundError, TransientBackendError, ValidationError
from petmedia.storage import Backend
from petmedia.utils import parse_timestamp, utc_now

logger = logging.getLogger(__name__)


def sort_newest_first(spots: list[schemas.MapSpot]) -> list[schemas.MapSpot]:
    return sorted(spots, key=lambda spot: parse_timestamp(spot.created_at), reverse=True)


class MapSpotStore:
    """Reads and writes the map_spots collection."""

    def __init__(self, backend: Backend, clock: Callable[[], str] = utc_now):
        self.backend = backend
        self.clock = clock

    def create(
        self,
        creator_id: str,
        type: str,
        title: str,
        coords: schemas.Coordinates,
        note: str = "",
        photo_url: str = "",
    ) -> schemas.MapSpot:
        """
        Add a map point. The creator counts as its first contributor.

        Raises:
            ValidationError: If the type is unknown or the title is blank
        """
        try:
            spot_type = schemas.MapSpotType(type)
        except ValueError as e:
            raise ValidationError(f"unknown map spot type: {type}") from e
        if not title or not title.strip():
            raise ValidationError("map spot title must not be empty")
        if not creator_id:
            raise ValidationError("map spot creator is required")

        now = self.clock()
        logger.info(f"Creating map spot: creator={creator_id}, type={spot_type.value}")
        try:
            with self.backend.session() as db:
                spot = models.MapSpot(
                    id=uuid.uuid4().hex,
                    creator_id=creator_id,
                    type=spot_type.value,
                    title=title.strip(),
                    note=note or "",
                    latitude=coords.latitude,
                    longitude=coords.longitude,
                    photo_url=photo_url or "",
                    contributors_count=1,
                    created_at=now,
                    last_updated_at=now,
                )
                db.add(spot)
                db.commit()
                snapshot = schemas.MapSpot.from_record(spot)
                document = spot.to_document()
        except OperationalError as e:
            raise TransientBackendError(f"Could not create map spot: {e}") from e

        logger.info(f"Map spot created with ID: {snapshot.id}")
        self.backend.changes.publish("map_spots", document)
        return snapshot

    def list_all(self) -> list[schemas.MapSpot]:
        """Every map point, newest first."""
        try:
            with self.backend.session() as db:
                spots = [schemas.MapSpot.from_record(row) for row in db.query(models.MapSpot).all()]
        except OperationalError as e:
            raise TransientBackendError(f"Could not list map spots: {e}") from e

        logger.debug(f"Found {len(spots)} total map spots")
        return sort_newest_first(spots)

    def list_for_user(self, creator_id: str) -> list[schemas.MapSpot]:
        try:
            with self.backend.session() as db:
                rows = db.query(models.MapSpot).filter(models.MapSpot.creator_id == creator_id).all()
                spots = [schemas.MapSpot.from_record(row) for row in rows]
        except OperationalError as e:
            raise TransientBackendError(f"Could not list map spots for {creator_id}: {e}") from e

        return sort_newest_first(spots)

    def count_for_user(self, creator_id: str) -> int:
        return len(self.list_for_user(creator_id))

    def contribute(self, spot_id: str) -> schemas.MapSpot:
        """
        Record one more contributor on a map point.

        Raises:
            NotFoundError: If the map spot does not exist
        """
        logger.info(f"Contributing to spot: {spot_id}")
        try:
            with self.backend.session() as db:
                spot = db.get(models.MapSpot, spot_id)
                if spot is None:
                    raise NotFoundError(f"Map spot {spot_id} not found", "map_spots", spot_id)
                spot.contributors_count = (spot.contributors_count or 0) + 1
                spot.last_updated_at = self.clock()
                db.commit()
                snapshot = schemas.MapSpot.from_record(spot)
                document = spot.to_document()
        except OperationalError as e:
            raise TransientBackendError(f"Could not update map spot {spot_id}: {e}") from e

        self.backend.changes.publish("map_spots", document)
        return snapshot

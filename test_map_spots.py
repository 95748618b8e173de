"""
Tests for the community map spot store.
"""

import pytest

from petmedia.errors import NotFoundError, ValidationError
from petmedia.schemas import Coordinates

KADIKOY = Coordinates(latitude=40.99, longitude=29.03)


class TestCreate:

    def test_create_sets_defaults(self, map_spots):
        spot = map_spots.create("u1", "shelter", "Barınak", KADIKOY, note="Kapı arkada")

        assert spot.type.value == "shelter"
        assert spot.title == "Barınak"
        assert spot.note == "Kapı arkada"
        assert spot.coords == KADIKOY
        assert spot.photo_url == ""
        assert spot.contributors_count == 1
        assert spot.created_at == spot.last_updated_at

    def test_unknown_type_rejected(self, map_spots):
        with pytest.raises(ValidationError):
            map_spots.create("u1", "playground", "Park", KADIKOY)

    def test_blank_title_rejected(self, map_spots):
        with pytest.raises(ValidationError):
            map_spots.create("u1", "food", "   ", KADIKOY)


class TestListing:

    def test_list_all_newest_first(self, map_spots):
        map_spots.create("u1", "food", "first", KADIKOY)
        map_spots.create("u2", "water", "second", KADIKOY)
        map_spots.create("u1", "both", "third", KADIKOY)

        assert [spot.title for spot in map_spots.list_all()] == ["third", "second", "first"]

    def test_list_for_user(self, map_spots):
        map_spots.create("u1", "food", "mine", KADIKOY)
        map_spots.create("u2", "water", "theirs", KADIKOY)

        assert [spot.title for spot in map_spots.list_for_user("u1")] == ["mine"]
        assert map_spots.count_for_user("u1") == 1
        assert map_spots.count_for_user("u3") == 0


class TestContribute:

    def test_contribute_increments_count(self, map_spots):
        spot = map_spots.create("u1", "veterinary", "Klinik", KADIKOY)

        updated = map_spots.contribute(spot.id)
        updated = map_spots.contribute(spot.id)

        assert updated.contributors_count == 3
        assert updated.last_updated_at > spot.last_updated_at

    def test_contribute_unknown_spot(self, map_spots):
        with pytest.raises(NotFoundError):
            map_spots.contribute("missing")

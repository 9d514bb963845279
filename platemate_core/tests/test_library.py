import pytest

from platemate_core.agents.library import COMMON_QUERIES, UserLibrary, filter_restaurants
from platemate_core.domain.geo import Coordinate
from platemate_core.domain.models import RestaurantRecord


def _record(rid, cuisine, rating, price, distance=None):
    return RestaurantRecord(
        id=rid,
        name=f"{cuisine} House",
        address="1 Oak St",
        rating=rating,
        price_level=price,
        cuisines=[cuisine],
        coordinates=Coordinate(0.0, 0.0),
        distance_meters=distance,
    )


def test_recent_searches_dedupe_and_cap():
    lib = UserLibrary(max_recent_searches=10)
    for i in range(12):
        lib.add_recent_search(f"q{i}")
    lib.add_recent_search("q5")
    assert lib.recent_searches[0] == "q5"
    assert lib.recent_searches.count("q5") == 1
    assert len(lib.recent_searches) == 10


def test_suggestions_fall_back_to_common_queries():
    lib = UserLibrary()
    assert lib.suggested_queries() == list(COMMON_QUERIES[:6])


def test_state_roundtrip_keeps_favorites():
    lib = UserLibrary()
    rec = _record("r1", "Greek", 4.0, 2)
    lib.toggle_favorite(rec)
    lib.set_sort_option("price")

    other = UserLibrary()
    other.load_state(lib.to_state())
    assert other.is_favorite(rec)
    assert other.preferences.sort_preference == "price"
    assert other.preferences.favorite_restaurants == ["r1"]

    with pytest.raises(ValueError):
        other.set_sort_option("popularity")


def test_filter_and_sort():
    near = _record("a", "Thai", 3.5, 3, distance=100.0)
    far = _record("b", "Thai", 4.8, 1, distance=900.0)
    unknown = _record("c", "Greek", 4.1, 2)

    assert filter_restaurants([unknown, far, near], "distance") == [near, far, unknown]
    assert filter_restaurants([near, far, unknown], "rating") == [far, unknown, near]
    assert filter_restaurants([near, far, unknown], "price") == [far, unknown, near]
    assert filter_restaurants([near, far, unknown], max_price=2, min_rating=4.5) == [far]

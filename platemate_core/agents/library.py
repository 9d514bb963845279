"""用户偏好、收藏与最近搜索。

UserLibrary 只保存数据并提供纯逻辑操作，是否持久化由 SessionController
决定（每次修改后整体写回 PersistenceStore）。
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence

from platemate_core.domain.models import SORT_OPTIONS, RestaurantRecord, SortOption, UserPreferences


COMMON_QUERIES: Sequence[str] = (
    "Italian restaurants nearby",
    "Best sushi places",
    "Restaurants open now",
    "Outdoor dining options",
    "Family-friendly restaurants",
    "Vegan restaurants",
    "Restaurants with gluten-free options",
)

AVAILABLE_CUISINES: Sequence[str] = (
    "Italian", "Chinese", "Mexican", "Indian", "Japanese", "Thai",
    "French", "American", "Mediterranean", "Greek", "Korean", "Vietnamese",
    "Spanish", "Turkish", "Lebanese", "Ethiopian", "German", "Brazilian",
)

MAX_SUGGESTIONS = 6


class UserLibrary:
    def __init__(self, max_recent_searches: int = 10):
        self.max_recent_searches = max_recent_searches
        self.preferences = UserPreferences()
        self.favorites: List[RestaurantRecord] = []

    @property
    def recent_searches(self) -> List[str]:
        return list(self.preferences.recent_searches)

    def add_recent_search(self, query: str) -> None:
        """去重后插到最前面，超出上限的旧记录丢弃。"""

        searches = [s for s in self.preferences.recent_searches if s != query]
        searches.insert(0, query)
        self.preferences.recent_searches = searches[: self.max_recent_searches]

    def toggle_favorite(self, record: RestaurantRecord) -> bool:
        """切换收藏状态，返回切换后是否为收藏。"""

        if self.is_favorite(record):
            self.favorites = [r for r in self.favorites if r.id != record.id]
            self.preferences.favorite_restaurants = [
                rid for rid in self.preferences.favorite_restaurants if rid != record.id
            ]
            return False
        self.favorites.append(record)
        self.preferences.favorite_restaurants.append(record.id)
        return True

    def is_favorite(self, record: RestaurantRecord) -> bool:
        return any(r.id == record.id for r in self.favorites)

    def set_sort_option(self, option: SortOption) -> None:
        if option not in SORT_OPTIONS:
            raise ValueError(f"Unknown sort option: {option!r}")
        self.preferences.sort_preference = option

    def suggested_queries(self) -> List[str]:
        suggestions = list(self.preferences.recent_searches)
        for query in COMMON_QUERIES:
            if query not in suggestions:
                suggestions.append(query)
        return suggestions[:MAX_SUGGESTIONS]

    def to_state(self) -> Dict[str, Any]:
        return {
            "preferences": self.preferences.to_dict(),
            "favorite_restaurants": [r.to_dict() for r in self.favorites],
        }

    def load_state(self, state: Dict[str, Any]) -> None:
        prefs = state.get("preferences")
        if isinstance(prefs, dict):
            self.preferences = UserPreferences.from_dict(prefs)
            self.preferences.recent_searches = self.preferences.recent_searches[: self.max_recent_searches]
        favorites: List[RestaurantRecord] = []
        for raw in state.get("favorite_restaurants") or []:
            try:
                favorites.append(RestaurantRecord.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                continue
        self.favorites = favorites


def filter_restaurants(
    restaurants: Iterable[RestaurantRecord],
    sort_option: SortOption = "distance",
    query: Optional[str] = None,
    cuisines: Optional[Sequence[str]] = None,
    max_price: Optional[int] = None,
    min_rating: Optional[float] = None,
) -> List[RestaurantRecord]:
    """按名称/菜系/价格/评分过滤后排序。

    距离排序时没有距离的餐厅排在最后，相对顺序不变。
    """

    filtered = list(restaurants)
    if query:
        q = query.lower()
        filtered = [
            r for r in filtered
            if q in r.name.lower() or any(q in c.lower() for c in r.cuisines)
        ]
    if cuisines:
        wanted = set(cuisines)
        filtered = [r for r in filtered if any(c in wanted for c in r.cuisines)]
    if max_price is not None:
        filtered = [r for r in filtered if r.price_level <= max_price]
    if min_rating is not None:
        filtered = [r for r in filtered if r.rating >= min_rating]

    if sort_option == "distance":
        filtered.sort(key=lambda r: (r.distance_meters is None, r.distance_meters or 0.0))
    elif sort_option == "rating":
        filtered.sort(key=lambda r: r.rating, reverse=True)
    elif sort_option == "price":
        filtered.sort(key=lambda r: r.price_level)
    return filtered

"""从模型回复中抽取餐厅实体。

这是一个有界启发式，而不是真正的检索：

1. 回复中不出现任何场所关键词（restaurant、bistro 等）时不抽取。
2. 否则按出现顺序取前 5 个不同的菜系关键词。
3. 每个菜系按固定模板合成一条 RestaurantRecord，坐标落在定位点 ±0.01° 内。

菜系只会来自固定词表，不会凭空生成。所有随机字段都走传入的
random.Random，固定种子即可得到完全一致的输出（包括 id）。
"""

import random
import uuid
from typing import List, Optional, Tuple

from platemate_core.domain.geo import DEFAULT_COORDINATE, Coordinate, LocationFix, great_circle_distance
from platemate_core.domain.models import RestaurantRecord


VENUE_KEYWORDS: Tuple[str, ...] = (
    "restaurant",
    "café",
    "cafe",
    "bistro",
    "diner",
    "eatery",
    "place",
    "bar",
    "grill",
)

CUISINES: Tuple[str, ...] = (
    "Italian",
    "Chinese",
    "Mexican",
    "Indian",
    "Japanese",
    "Thai",
    "French",
    "American",
    "Mediterranean",
    "Greek",
)

MAX_ENTITIES = 5
JITTER_DEGREES = 0.01

_NAME_SUFFIXES = ("Delight", "Express", "Garden", "House", "Palace", "Bistro", "Kitchen")
_STREETS = ("Main", "Oak", "Pine", "Maple", "Cedar")
_HIGHLIGHTS = ("signature dishes", "fresh ingredients", "vibrant atmosphere", "chef specials")
_HOURS = ["Mon-Fri: 11:00 AM - 10:00 PM", "Sat-Sun: 10:00 AM - 11:00 PM"]


def mentions_venue(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in VENUE_KEYWORDS)


def find_cuisines(text: str, limit: int = MAX_ENTITIES) -> List[str]:
    """按首次出现位置排序返回文中的菜系（不区分大小写）。"""

    lowered = text.lower()
    positions = []
    for cuisine in CUISINES:
        idx = lowered.find(cuisine.lower())
        if idx >= 0:
            positions.append((idx, cuisine))
    positions.sort()
    return [cuisine for _, cuisine in positions[:limit]]


def extract_restaurants(
    response_text: str,
    current_fix: Optional[LocationFix] = None,
    rng: Optional[random.Random] = None,
) -> Tuple[List[RestaurantRecord], str]:
    """返回 (entities, passthrough_text)，passthrough_text 与输入完全相同。"""

    if not mentions_venue(response_text):
        return [], response_text

    rng = rng or random.Random()
    records = [
        _synthesize(cuisine, index, current_fix, rng)
        for index, cuisine in enumerate(find_cuisines(response_text))
    ]
    return records, response_text


def _synthesize(
    cuisine: str,
    index: int,
    current_fix: Optional[LocationFix],
    rng: random.Random,
) -> RestaurantRecord:
    if current_fix is not None:
        coordinate = Coordinate(
            latitude=current_fix.latitude + rng.uniform(-JITTER_DEGREES, JITTER_DEGREES),
            longitude=current_fix.longitude + rng.uniform(-JITTER_DEGREES, JITTER_DEGREES),
        )
        distance = great_circle_distance(current_fix.coordinate, coordinate)
    else:
        coordinate = DEFAULT_COORDINATE
        distance = None

    return RestaurantRecord(
        id=f"rest_{uuid.UUID(int=rng.getrandbits(128), version=4)}",
        name=f"{cuisine} {rng.choice(_NAME_SUFFIXES)}",
        address=f"{rng.randint(10, 999)} {rng.choice(_STREETS)} St",
        phone=f"(555) {rng.randint(100, 999)}-{rng.randint(1000, 9999)}",
        website=f"https://{cuisine.lower()}restaurant.example.com",
        rating=round(rng.uniform(3.0, 5.0), 1),
        price_level=rng.randint(1, 4),
        cuisines=[cuisine],
        coordinates=coordinate,
        image_url=f"https://example.com/{cuisine}_{index}.jpg",
        hours=list(_HOURS),
        description=(
            f"Authentic {cuisine} cuisine with a modern twist. "
            f"Popular for their {rng.choice(_HIGHLIGHTS)}."
        ),
        distance_meters=distance,
    )

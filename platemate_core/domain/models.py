"""聊天历史与餐厅实体的数据模型。

本模块定义了会话控制层与展示层共享的标准数据结构：

- ChatMessage: 历史中的一条消息（用户或助手）。
- RestaurantRecord: 从模型回复中抽取出的餐厅实体。
- UserPreferences: 收藏、最近搜索、排序方式等用户偏好。

所有模型都提供 to_dict / from_dict，供 JsonStateStore 序列化使用。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from platemate_core.domain.geo import Coordinate


Sender = Literal["user", "assistant"]

# 消息类型，与展示层的渲染方式一一对应
MessageKind = Literal["text", "restaurantList", "locationRequest", "error", "welcome"]

SortOption = Literal["distance", "rating", "price"]
SORT_OPTIONS: tuple = ("distance", "rating", "price")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass
class RestaurantRecord:
    """一家餐厅。

    仅由 EntityExtractor 创建；之后只有 distance_meters 会在新定位到来时被
    SessionController 重新计算。相等性按 id 判断。
    """

    id: str
    name: str
    address: str
    rating: float
    price_level: int
    cuisines: List[str]
    coordinates: Coordinate
    phone: Optional[str] = None
    website: Optional[str] = None
    hours: Optional[List[str]] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    distance_meters: Optional[float] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.rating <= 5.0:
            raise ValueError(f"rating out of range: {self.rating}")
        if not 1 <= self.price_level <= 4:
            raise ValueError(f"price_level out of range: {self.price_level}")
        # cuisines 按集合语义去重，保留原顺序
        self.cuisines = list(dict.fromkeys(self.cuisines))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RestaurantRecord):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "website": self.website,
            "rating": self.rating,
            "price_level": self.price_level,
            "cuisines": list(self.cuisines),
            "coordinates": self.coordinates.to_dict(),
            "hours": list(self.hours) if self.hours is not None else None,
            "description": self.description,
            "image_url": self.image_url,
            "distance_meters": self.distance_meters,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RestaurantRecord":
        return cls(
            id=data["id"],
            name=data["name"],
            address=data.get("address") or "",
            phone=data.get("phone"),
            website=data.get("website"),
            rating=float(data.get("rating", 0.0)),
            price_level=int(data.get("price_level", 1)),
            cuisines=list(data.get("cuisines") or []),
            coordinates=Coordinate.from_dict(data["coordinates"]),
            hours=data.get("hours"),
            description=data.get("description"),
            image_url=data.get("image_url"),
            distance_meters=data.get("distance_meters"),
        )


@dataclass
class ChatMessage:
    """历史中的一条消息。

    - sender: user 或 assistant。
    - kind: 渲染类型；restaurantList 时 entities 非空。
    - entities: 该消息携带的餐厅列表（有序）。
    """

    text: str
    sender: Sender
    kind: MessageKind = "text"
    entities: List[RestaurantRecord] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def is_user(self) -> bool:
        return self.sender == "user"

    @property
    def contains_restaurants(self) -> bool:
        return bool(self.entities)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "sender": self.sender,
            "timestamp": _iso(self.timestamp),
            "kind": self.kind,
            "entities": [r.to_dict() for r in self.entities],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(
            id=data["id"],
            text=data.get("text") or "",
            sender=data["sender"],
            timestamp=_parse_iso(data["timestamp"]),
            kind=data.get("kind") or "text",
            entities=[RestaurantRecord.from_dict(r) for r in data.get("entities") or []],
        )


@dataclass
class UserPreferences:
    favorite_restaurants: List[str] = field(default_factory=list)
    dietary_preferences: List[str] = field(default_factory=list)
    price_preference: Optional[int] = None
    cuisine_preferences: List[str] = field(default_factory=list)
    distance_preference: Optional[float] = 5000.0
    sort_preference: SortOption = "distance"
    recent_searches: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "favorite_restaurants": list(self.favorite_restaurants),
            "dietary_preferences": list(self.dietary_preferences),
            "price_preference": self.price_preference,
            "cuisine_preferences": list(self.cuisine_preferences),
            "distance_preference": self.distance_preference,
            "sort_preference": self.sort_preference,
            "recent_searches": list(self.recent_searches),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserPreferences":
        sort = data.get("sort_preference") or "distance"
        if sort not in SORT_OPTIONS:
            sort = "distance"
        return cls(
            favorite_restaurants=list(data.get("favorite_restaurants") or []),
            dietary_preferences=list(data.get("dietary_preferences") or []),
            price_preference=data.get("price_preference"),
            cuisine_preferences=list(data.get("cuisine_preferences") or []),
            distance_preference=data.get("distance_preference", 5000.0),
            sort_preference=sort,
            recent_searches=list(data.get("recent_searches") or []),
        )

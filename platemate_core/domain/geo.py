"""Coordinates, location fixes and great-circle distance."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict

EARTH_RADIUS_METERS = 6_371_008.8


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Coordinate":
        return cls(latitude=float(data["latitude"]), longitude=float(data["longitude"]))


# 没有定位时实体坐标的兜底（旧金山市中心）
DEFAULT_COORDINATE = Coordinate(latitude=37.7749, longitude=-122.4194)


@dataclass(frozen=True)
class LocationFix:
    """一次带时间戳的定位读数。每次更新整体替换，不做局部修改。"""

    latitude: float
    longitude: float
    accuracy: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


def great_circle_distance(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance in meters."""

    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(h)))

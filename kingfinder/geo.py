"""Geospatial helpers and search grid generation."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Tuple

KM_PER_LAT_DEGREE = 111.0
_EPSILON = 1e-9


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float


@dataclass(frozen=True)
class Bounds:
    lat_min: float
    lat_max: float
    lng_min: float
    lng_max: float

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "Bounds":
        return cls(
            lat_min=float(data["lat_min"]),
            lat_max=float(data["lat_max"]),
            lng_min=float(data["lng_min"]),
            lng_max=float(data["lng_max"]),
        )

    def contains(self, coord: Coordinate) -> bool:
        return self.lat_min <= coord.lat <= self.lat_max and self.lng_min <= coord.lng <= self.lng_max


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    r = 6371.0
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return r * c


def _axis_count(lo: float, hi: float, step: float) -> int:
    return int(math.floor((hi - lo) / step + _EPSILON)) + 1


def _axis_values(lo: float, hi: float, step: float, precision: int) -> List[float]:
    values = []
    for i in range(_axis_count(lo, hi, step)):
        value = round(lo + i * step, precision)
        values.append(min(max(value, lo), hi))
    return values


def generate_grid(
    bounds: Bounds,
    lat_step: float,
    lng_step: float,
    precision: int = 2,
) -> List[Coordinate]:
    """Row-major search centers from (lat_min, lng_min) up to the bounds.

    Every latitude row holds all longitudes before the next row starts, so a
    sweep can restart from any index and visit the same coordinates.
    """
    if lat_step <= 0 or lng_step <= 0:
        raise ValueError("Grid steps must be positive")
    if bounds.lat_min > bounds.lat_max or bounds.lng_min > bounds.lng_max:
        raise ValueError("Grid bounds are inverted")

    lats = _axis_values(bounds.lat_min, bounds.lat_max, lat_step, precision)
    lngs = _axis_values(bounds.lng_min, bounds.lng_max, lng_step, precision)
    return [Coordinate(lat=lat, lng=lng) for lat in lats for lng in lngs]


def km_per_lng_degree(lat: float) -> float:
    cos_lat = math.cos(math.radians(lat))
    if abs(cos_lat) < 1e-3:
        cos_lat = 1e-3
    return KM_PER_LAT_DEGREE * cos_lat


def widest_latitude(bounds: Bounds) -> float:
    # Longitude degrees are widest nearest the equator.
    if bounds.lat_min <= 0.0 <= bounds.lat_max:
        return 0.0
    return min(bounds.lat_min, bounds.lat_max, key=abs)


def steps_for_radius(radius_m: float, reference_lat: float, precision: int = 2) -> Tuple[float, float]:
    """Largest (lat_step, lng_step) whose grid cells are covered by the radius.

    A square cell of side s is covered when its half-diagonal s / sqrt(2) is
    within the radius. Steps are floored to the grid precision.
    """
    if radius_m <= 0:
        raise ValueError("radius_m must be positive")
    side_km = (radius_m / 1000.0) * math.sqrt(2)
    scale = 10 ** precision
    lat_step = math.floor(side_km / KM_PER_LAT_DEGREE * scale) / scale
    lng_step = math.floor(side_km / km_per_lng_degree(reference_lat) * scale) / scale
    if lat_step <= 0 or lng_step <= 0:
        raise ValueError("radius_m is too small for the grid precision")
    return lat_step, lng_step


def max_coverage_gap_km(bounds: Bounds, lat_step: float, lng_step: float, radius_m: float) -> float:
    """Distance by which the farthest point of the box misses every window.

    Zero means every point inside the bounds is within radius of a center.
    Interior points are at most half a step from a center on each axis; the
    strip between the last row/column and the bounds can be wider.
    """
    lat_rows = _axis_count(bounds.lat_min, bounds.lat_max, lat_step)
    lng_cols = _axis_count(bounds.lng_min, bounds.lng_max, lng_step)
    lat_rest = bounds.lat_max - (bounds.lat_min + (lat_rows - 1) * lat_step)
    lng_rest = bounds.lng_max - (bounds.lng_min + (lng_cols - 1) * lng_step)

    dlat_deg = max(lat_step / 2 if lat_rows > 1 else 0.0, lat_rest)
    dlng_deg = max(lng_step / 2 if lng_cols > 1 else 0.0, lng_rest)

    # Worst corner: on the equator-side edge, its center half a cell poleward.
    edge_lat = widest_latitude(bounds)
    poleward = 1.0 if edge_lat >= 0 else -1.0
    reach_km = haversine_km(edge_lat, 0.0, edge_lat + poleward * dlat_deg, dlng_deg)
    return max(0.0, reach_km - radius_m / 1000.0)

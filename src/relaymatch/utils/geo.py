"""
Great-circle geometry helpers.

Distances are in kilometres throughout the engine; ``KM_PER_MILE`` converts
for anything reported in miles (deadhead miles in particular).
"""

import math
from datetime import timedelta

import numpy as np

from relaymatch.core_types import GeoPoint

EARTH_RADIUS_KM = 6371.0
KM_PER_MILE = 1.609344


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    lat1, lon1 = math.radians(a.latitude), math.radians(a.longitude)
    lat2, lon2 = math.radians(b.latitude), math.radians(b.longitude)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def haversine_matrix(coords: np.ndarray) -> np.ndarray:
    """Pairwise great-circle distances (km) for an ``(n, 2)`` array of lat/lon degrees."""
    coords = np.radians(np.asarray(coords, dtype=np.float64))
    if coords.size == 0:
        return np.zeros((0, 0))
    lat = coords[:, 0][:, None]
    lon = coords[:, 1][:, None]
    dlat = lat - lat.T
    dlon = lon - lon.T
    h = np.sin(dlat / 2) ** 2 + np.cos(lat) * np.cos(lat.T) * np.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(h, 0.0, 1.0)))


def km_to_miles(km: float) -> float:
    return km / KM_PER_MILE


def travel_hours(distance_km: float, avg_speed_kmh: float, road_factor: float = 1.0) -> float:
    """Drive time for a great-circle distance, inflated by a road circuity factor."""
    if avg_speed_kmh <= 0:
        raise ValueError("avg_speed_kmh must be positive")
    return distance_km * road_factor / avg_speed_kmh


def travel_delta(distance_km: float, avg_speed_kmh: float, road_factor: float = 1.0) -> timedelta:
    return timedelta(hours=travel_hours(distance_km, avg_speed_kmh, road_factor))


def detour_km(origin: GeoPoint, via: GeoPoint, destination: GeoPoint) -> float:
    """Extra distance of routing ``origin -> via -> destination`` over the straight path."""
    return (
        haversine_km(origin, via)
        + haversine_km(via, destination)
        - haversine_km(origin, destination)
    )


def route_progress(origin: GeoPoint, destination: GeoPoint, point: GeoPoint) -> float:
    """Fraction (0..1) of the way from origin to destination that ``point`` represents."""
    to_point = haversine_km(origin, point)
    from_point = haversine_km(point, destination)
    total = to_point + from_point
    if total == 0:
        return 0.0
    return to_point / total


def centroid(points: list[GeoPoint]) -> GeoPoint:
    if not points:
        raise ValueError("centroid of an empty point set")
    return GeoPoint(
        latitude=float(np.mean([p.latitude for p in points])),
        longitude=float(np.mean([p.longitude for p in points])),
    )


def cell_for(point: GeoPoint, cell_size_deg: float) -> str:
    """Grid cell id used by the demand forecaster, e.g. ``r83_c-176``."""
    row = math.floor(point.latitude / cell_size_deg)
    col = math.floor(point.longitude / cell_size_deg)
    return f"r{row}_c{col}"

import math
from curbflow.domain.models import Coordinate
from curbflow.domain import config

EARTH_RADIUS_KM = 6371.0

def planar_distance(a: Coordinate, b: Coordinate) -> float:
    """Euclidean distance in degrees. Good enough for grid lookups."""
    return math.hypot(b.lat - a.lat, b.lng - a.lng)

def haversine_km(a: Coordinate, b: Coordinate) -> float:
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

def degrees_to_km(degrees: float) -> float:
    return degrees * config.KM_PER_DEGREE

def km_to_degrees(km: float) -> float:
    return km / config.KM_PER_DEGREE

# Reference locations around the Sejong government district
from typing import Dict, List, Tuple
from curbflow.domain.models import Coordinate

def _c(lat: float, lng: float) -> Coordinate:
    return Coordinate(lat=lat, lng=lng)

CITY_CENTER = _c(36.4800, 127.2890)

GOVERNMENT_COMPLEX: List[Coordinate] = [
    _c(36.5040, 127.2650),
    _c(36.5020, 127.2670),
    _c(36.5000, 127.2690),
    _c(36.4980, 127.2710),
    _c(36.4960, 127.2730),
]

RESIDENTIAL_AREAS: List[Coordinate] = [
    _c(36.4790, 127.2600),  # Hansol-dong
    _c(36.4850, 127.2750),  # Naseong-dong
    _c(36.4920, 127.2820),  # Dodam-dong
    _c(36.5100, 127.2440),  # Areum-dong
    _c(36.5200, 127.2900),  # Jongchon-dong
    _c(36.4650, 127.2980),  # Goun-dong
]

# BRT stops double as pickup/drop-off zones
PICKUP_ZONES: List[Coordinate] = [
    _c(36.5060, 127.2640),
    _c(36.4800, 127.2890),
    _c(36.4780, 127.2590),
    _c(36.4870, 127.2760),
    _c(36.4940, 127.2830),
    _c(36.5120, 127.2450),
]

COMMERCIAL_AREAS: List[Coordinate] = [
    _c(36.5070, 127.2820),
    _c(36.4920, 127.2640),
    _c(36.4990, 127.2590),
    _c(36.4810, 127.2900),
    _c(36.4770, 127.2910),
]

ALL_LOCATIONS: List[Coordinate] = GOVERNMENT_COMPLEX + RESIDENTIAL_AREAS + PICKUP_ZONES + COMMERCIAL_AREAS

# Arterials used to classify grid nodes: (name, road type, axis, coordinate)
ARTERIALS: List[Tuple[str, str, str, float]] = [
    ("Hannuri-daero", "highway", "lat", 36.4800),
    ("Doum-ro", "main", "lng", 127.2890),
    ("Dalbit-ro", "main", "lng", 127.2650),
    ("Eojin-ro", "sub", "lng", 127.2750),
]

# Road section labels by latitude/longitude band
ROAD_SECTIONS: Dict[str, str] = {
    "north": "Hannuri-daero",
    "center": "Sicheong-daero",
    "east": "Dalbit-ro",
    "south": "Boram-dong-ro",
}

def road_section_for(position: Coordinate) -> str:
    if position.lat > 36.50:
        return ROAD_SECTIONS["north"]
    if position.lat > 36.48:
        return ROAD_SECTIONS["center"]
    if position.lng > 127.28:
        return ROAD_SECTIONS["east"]
    return ROAD_SECTIONS["south"]

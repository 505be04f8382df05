import math
from typing import Dict, List, Optional
from curbflow.domain.models import CongestionLevel

def _level(level: str, multiplier: float, speed_factor: float, description: str) -> CongestionLevel:
    return CongestionLevel(level=level, multiplier=multiplier, speedFactor=speed_factor, description=description)

# Hour of day -> congestion descriptor
DEFAULT_PATTERNS: List[CongestionLevel] = [
    _level("low", 0.3, 1.2, "Late night"),
    _level("low", 0.2, 1.3, "Late night"),
    _level("low", 0.2, 1.3, "Late night"),
    _level("low", 0.2, 1.3, "Late night"),
    _level("low", 0.3, 1.2, "Early morning"),
    _level("low", 0.4, 1.1, "Early morning"),
    _level("medium", 0.7, 0.9, "Commute build-up"),
    _level("high", 1.2, 0.7, "Morning rush"),
    _level("extreme", 1.5, 0.5, "Morning peak"),
    _level("high", 1.1, 0.8, "Morning rush tail"),
    _level("medium", 0.8, 1.0, "Office hours"),
    _level("medium", 0.9, 0.95, "Before lunch"),
    _level("high", 1.1, 0.8, "Lunch"),
    _level("medium", 0.9, 0.9, "Lunch"),
    _level("medium", 0.8, 1.0, "Office hours"),
    _level("medium", 0.8, 1.0, "Office hours"),
    _level("medium", 0.9, 0.9, "Commute build-up"),
    _level("high", 1.2, 0.7, "Evening rush"),
    _level("extreme", 1.4, 0.6, "Evening peak"),
    _level("high", 1.1, 0.8, "Evening rush tail"),
    _level("medium", 0.8, 0.9, "Evening"),
    _level("medium", 0.7, 1.0, "Evening"),
    _level("low", 0.6, 1.1, "Night"),
    _level("low", 0.5, 1.2, "Night"),
]

PARKING_DEMAND: Dict[str, float] = {
    "extreme": 0.9,
    "high": 0.75,
    "medium": 0.5,
    "low": 0.3,
}

RUSH_PERIODS = [
    {"start": 7, "end": 9, "type": "morning"},
    {"start": 17, "end": 19, "type": "evening"},
    {"start": 12, "end": 13, "type": "lunch"},
]

class TimePatternTable:
    def __init__(self, patterns: Optional[List[CongestionLevel]] = None):
        self.patterns = list(patterns or DEFAULT_PATTERNS)
        if len(self.patterns) != 24:
            raise ValueError("time pattern table needs exactly 24 hourly entries")

    def lookup(self, hour: int) -> CongestionLevel:
        return self.patterns[hour % 24]

    def get_next_congestion(self, hour: int) -> CongestionLevel:
        return self.lookup(hour + 1)

    def calculate_vehicle_count(self, base_count: int, hour: int) -> int:
        # Half-up rounding
        return int(math.floor(base_count * self.lookup(hour).multiplier + 0.5))

    def adjust_speed_for_congestion(self, base_speed: float, hour: int) -> float:
        return base_speed * self.lookup(hour).speedFactor

    def is_rush_hour(self, hour: int) -> bool:
        return self.lookup(hour).level in ("high", "extreme")

    def get_parking_demand(self, hour: int) -> float:
        return PARKING_DEMAND.get(self.lookup(hour).level, 0.5)

    def get_rush_hour_info(self, hour: int) -> Optional[dict]:
        for period in RUSH_PERIODS:
            if period["start"] <= hour % 24 <= period["end"]:
                return dict(period)
        return None

    def get_traffic_chart(self) -> List[dict]:
        return [
            {"hour": hour, "congestion": p.multiplier, "level": p.level, "description": p.description}
            for hour, p in enumerate(self.patterns)
        ]

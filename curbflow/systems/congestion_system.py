import logging
import time
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, Iterable, List, Optional

from curbflow.domain import config
from curbflow.domain.models import (
    Bounds, CongestionAlert, CongestionRecord, Coordinate, ParkingSlot, RoadSegment, SlotStatus, Vehicle
)

logger = logging.getLogger(__name__)

def _band(x1: float, x2: float) -> Bounds:
    return Bounds(x1=x1, y1=config.ROAD_TOP, x2=x2, y2=config.ROAD_TOP + config.LANES * config.LANE_WIDTH)

DEFAULT_SEGMENTS = [
    RoadSegment(id="section-west", position=_band(50.0, 230.0), maxCapacity=20),
    RoadSegment(id="section-center-west", position=_band(230.0, 410.0), maxCapacity=20),
    RoadSegment(id="section-center-east", position=_band(410.0, 590.0), maxCapacity=20),
    RoadSegment(id="section-east", position=_band(590.0, 650.0), maxCapacity=8),
    RoadSegment(id="intersection", position=_band(650.0, 755.0), maxCapacity=8),
]

# Geographic extent mapped onto the road section frame
SECTION_LNG_RANGE = (127.2500, 127.3200)
SECTION_LAT_RANGE = (36.4730, 36.4870)

def project_to_section(position: Coordinate) -> tuple:
    lng0, lng1 = SECTION_LNG_RANGE
    lat0, lat1 = SECTION_LAT_RANGE
    x = config.ROAD_START + (position.lng - lng0) / (lng1 - lng0) * (config.ROAD_END - config.ROAD_START)
    y = config.ROAD_TOP + (lat1 - position.lat) / (lat1 - lat0) * config.LANES * config.LANE_WIDTH
    return x, y

class CongestionAnalyzer:
    def __init__(self, segments: Optional[Iterable[RoadSegment]] = None,
                 update_interval: float = config.CONGESTION_INTERVAL,
                 occupancy_weight: float = config.OCCUPANCY_WEIGHT,
                 speed_weight: float = config.SPEED_WEIGHT,
                 rush_hour_factor: float = config.RUSH_HOUR_FACTOR,
                 lunch_factor: float = config.LUNCH_FACTOR,
                 late_night_factor: float = config.LATE_NIGHT_FACTOR,
                 clock: Callable[[], float] = time.monotonic):
        self._initial_segments = list(segments if segments is not None else DEFAULT_SEGMENTS)
        self.road_segments: Dict[str, RoadSegment] = {}
        self.congestion_history: Deque[CongestionRecord] = deque(maxlen=config.GLOBAL_HISTORY_LIMIT)
        self.update_interval = update_interval
        self.occupancy_weight = occupancy_weight
        self.speed_weight = speed_weight
        self.rush_hour_factor = rush_hour_factor
        self.lunch_factor = lunch_factor
        self.late_night_factor = late_night_factor
        self.clock = clock
        self.last_update: Optional[float] = None
        self.update_count = 0
        self.reset()

    def reset(self):
        self.road_segments = {s.id: s.model_copy(deep=True) for s in self._initial_segments}
        self.congestion_history.clear()
        self.last_update = None
        self.update_count = 0

    # Scoring

    def score(self, occupancy_rate: float, speed_factor: float) -> float:
        return min(100.0, occupancy_rate * self.occupancy_weight + speed_factor * self.speed_weight)

    def segment_score(self, segment: RoadSegment) -> float:
        occupancy_rate = segment.currentVehicles / segment.maxCapacity * 100.0
        speed_factor = max(0.0, 1.0 - segment.avgSpeed / config.REFERENCE_SPEED)
        return self.score(occupancy_rate, speed_factor)

    def time_factor(self, hour: int) -> float:
        if 7 <= hour <= 9 or 18 <= hour <= 20:
            return self.rush_hour_factor
        if 12 <= hour <= 13:
            return self.lunch_factor
        if 0 <= hour <= 5:
            return self.late_night_factor
        return 1.0

    # Analysis

    def analyze_congestion(self, vehicles: List[Vehicle], now: datetime) -> Dict[str, float]:
        tick = self.clock()
        if self.last_update is not None and tick - self.last_update < self.update_interval:
            return self.get_current_congestion_map()

        self.last_update = tick
        self.update_count += 1
        congestion_map: Dict[str, float] = {}

        for segment_id, segment in self.road_segments.items():
            inside = [v for v in vehicles if segment.position.contains(v.x, v.y)]
            segment.currentVehicles = len(inside)
            # Nothing observed: no speed credit
            segment.avgSpeed = sum(v.speed for v in inside) / len(inside) if inside else 0.0

            level = self.segment_score(segment)
            congestion_map[segment_id] = level

            record = CongestionRecord(
                timestamp=now,
                roadSection=segment_id,
                vehicleCount=segment.currentVehicles,
                averageSpeed=segment.avgSpeed,
                congestionLevel=level,
                predictedCongestion=self.predict_future_congestion(segment_id, now),
            )
            segment.congestionHistory.append(record)
            if len(segment.congestionHistory) > config.SEGMENT_HISTORY_LIMIT:
                segment.congestionHistory.pop(0)
            self.congestion_history.append(record)

        logger.debug("Congestion recomputed for %d segments", len(congestion_map))
        return congestion_map

    def predict_future_congestion(self, segment_id: str, now: datetime) -> float:
        segment = self.road_segments.get(segment_id)
        if not segment or len(segment.congestionHistory) < config.PREDICTION_WINDOW:
            return config.PREDICTION_DEFAULT

        recent = segment.congestionHistory[-config.PREDICTION_WINDOW:]
        average = sum(r.congestionLevel for r in recent) / len(recent)
        return min(100.0, average * self.time_factor(now.hour))

    def get_current_congestion_map(self) -> Dict[str, float]:
        return {sid: self.segment_score(s) for sid, s in self.road_segments.items()}

    def score_at(self, x: float, y: float) -> float:
        for segment in self.road_segments.values():
            if segment.position.contains(x, y):
                return self.segment_score(segment)
        return 0.0

    # Queries

    def get_segment_details(self, segment_id: str) -> Optional[RoadSegment]:
        segment = self.road_segments.get(segment_id)
        return segment.model_copy(deep=True) if segment else None

    def get_average_congestion(self) -> float:
        scores = list(self.get_current_congestion_map().values())
        return sum(scores) / len(scores) if scores else 0.0

    def get_most_congested_segment(self) -> Optional[dict]:
        best_id, best = None, 0.0
        for segment_id, level in self.get_current_congestion_map().items():
            if level > best:
                best_id, best = segment_id, level
        return {"id": best_id, "congestion": best} if best_id else None

    def get_history(self, segment_id: Optional[str] = None, limit: int = 20) -> List[CongestionRecord]:
        if limit <= 0:
            return []
        if segment_id is not None:
            segment = self.road_segments.get(segment_id)
            return list(segment.congestionHistory[-limit:]) if segment else []
        return list(self.congestion_history)[-limit:]

    def check_congestion_alerts(self) -> List[CongestionAlert]:
        alerts = []
        for segment_id, level in self.get_current_congestion_map().items():
            for threshold, name in config.ALERT_THRESHOLDS:
                if level >= threshold:
                    alerts.append(CongestionAlert(segmentId=segment_id, level=name))
                    break
        return alerts

    def recommend_optimal_route(self, start: Optional[Coordinate] = None,
                                end: Optional[Coordinate] = None) -> List[str]:
        # Greedy: least congested passable segments, endpoints are not consulted
        congestion_map = self.get_current_congestion_map()
        passable = [sid for sid, level in congestion_map.items() if level < config.ROUTE_CONGESTION_LIMIT]
        passable.sort(key=lambda sid: congestion_map[sid])
        return passable[:3]

    def analyze_slot_impact(self, slots: List[ParkingSlot]) -> Dict[str, float]:
        impact: Dict[str, float] = {}
        projected = [(project_to_section(s.position), s) for s in slots]
        for segment_id, segment in self.road_segments.items():
            inside = [s for (x, y), s in projected if segment.position.contains(x, y)]
            occupied = sum(1 for s in inside if s.status == SlotStatus.OCCUPIED)
            impact[segment_id] = occupied / len(inside) * 20.0 if inside else 0.0
        return impact

import math
import random
from typing import Callable, List, Optional

from curbflow.domain import config
from curbflow.domain.models import Vehicle, VehicleStatus

CongestionLookup = Callable[[float, float], float]

class MotionModel:
    """Car-following and lane changes on a straight multi-lane road section.

    Positions are in pixels; speeds stay in km/h. Each step reads the
    pre-step fleet and returns new vehicle records.
    """

    def __init__(self, rng: random.Random, lane_change_chance: float = config.LANE_CHANGE_CHANCE,
                 lanes: int = config.LANES, lane_width: float = config.LANE_WIDTH,
                 road_start: float = config.ROAD_START, road_end: float = config.ROAD_END):
        self.rng = rng
        self.lane_change_chance = lane_change_chance
        self.lanes = lanes
        self.lane_width = lane_width
        self.road_start = road_start
        self.road_end = road_end

    def lane_center(self, lane: int) -> float:
        return config.ROAD_TOP + lane * self.lane_width + self.lane_width / 2

    def random_base_speed(self, speed_factor: float = 1.0) -> float:
        return self.rng.uniform(config.BASE_SPEED_MIN, config.BASE_SPEED_MAX) * speed_factor

    def place(self, vehicle: Vehicle) -> Vehicle:
        lane = self.rng.randrange(self.lanes)
        margin = config.BOUNDARY_MARGIN
        return vehicle.model_copy(update={
            "lane": lane,
            "targetLane": lane,
            "x": self.rng.uniform(self.road_start + margin, self.road_end - margin),
            "y": self.lane_center(lane),
            "heading": self.rng.choice(["forward", "backward"]),
            "speed": self.rng.uniform(30.0, 50.0),
            "isChangingLane": False,
        })

    def headway(self, vehicle: Vehicle, vehicles: List[Vehicle]) -> float:
        tolerance = self.lane_width * 0.5
        nearest = math.inf
        for other in vehicles:
            if other.id == vehicle.id or abs(other.y - vehicle.y) > tolerance:
                continue
            nearest = min(nearest, abs(other.x - vehicle.x))
        return nearest

    def target_speed(self, vehicle: Vehicle, vehicles: List[Vehicle], base_speed: float) -> float:
        gap = self.headway(vehicle, vehicles)
        if gap < config.CLOSE_HEADWAY:
            return max(config.CLOSE_SPEED_FLOOR, base_speed * config.CLOSE_SPEED_RATIO)
        if gap < config.NEAR_HEADWAY:
            return base_speed * config.NEAR_SPEED_RATIO
        return base_speed

    def safe_lanes(self, vehicle: Vehicle, vehicles: List[Vehicle]) -> List[int]:
        lanes = []
        for lane in (vehicle.lane - 1, vehicle.lane + 1):
            if lane < 0 or lane >= self.lanes:
                continue
            target_y = self.lane_center(lane)
            blocked = any(
                other.id != vehicle.id
                and abs(other.y - target_y) < self.lane_width * 0.8
                and abs(other.x - vehicle.x) < config.LANE_CHANGE_GAP
                for other in vehicles
            )
            if not blocked:
                lanes.append(lane)
        return lanes

    def step(self, vehicles: List[Vehicle], dt: float, speed_factor: float = 1.0,
             congestion_at: Optional[CongestionLookup] = None) -> List[Vehicle]:
        return [self._advance(v, vehicles, dt, speed_factor, congestion_at) for v in vehicles]

    def _advance(self, v: Vehicle, vehicles: List[Vehicle], dt: float, speed_factor: float,
                 congestion_at: Optional[CongestionLookup]) -> Vehicle:
        if v.status == VehicleStatus.PARKED:
            return v.model_copy(update={"speed": 0.0, "targetSpeed": 0.0})

        # A. Target speed
        base = self.random_base_speed(speed_factor)
        if congestion_at is not None:
            score = congestion_at(v.x, v.y)
            base *= 1.0 - config.CONGESTION_SPEED_PENALTY * min(100.0, max(0.0, score)) / 100.0
        target = self.target_speed(v, vehicles, base)

        # B. Bounded acceleration
        diff = target - v.speed
        change = math.copysign(min(abs(diff), config.MAX_ACCELERATION * dt), diff)
        speed = max(config.MIN_CRUISE_SPEED, v.speed + change)

        # C. Move along the road
        px_per_second = speed / 3.6 * config.PIXELS_PER_METER
        sign = 1.0 if v.heading == "forward" else -1.0
        x = v.x + sign * px_per_second * dt
        heading = v.heading

        # D. Reflect at the ends
        upper = self.road_end - config.BOUNDARY_MARGIN
        lower = self.road_start + config.BOUNDARY_MARGIN
        if x > upper:
            x = upper
            heading = "backward"
        elif x < lower:
            x = lower
            heading = "forward"

        # E. Lane change
        y, lane, target_lane, changing = v.y, v.lane, v.targetLane, v.isChangingLane
        if changing:
            target_y = self.lane_center(target_lane)
            y_diff = target_y - y
            y += math.copysign(min(abs(y_diff), config.LANE_CHANGE_RATE * dt), y_diff)
            if abs(target_y - y) < config.LANE_SNAP_DISTANCE:
                y = target_y
                lane = target_lane
                changing = False
        elif self.rng.random() < self.lane_change_chance:
            options = self.safe_lanes(v, vehicles)
            if options:
                target_lane = self.rng.choice(options)
                changing = True

        return v.model_copy(update={
            "x": x,
            "y": y,
            "lane": lane,
            "targetLane": target_lane,
            "isChangingLane": changing,
            "heading": heading,
            "speed": speed,
            "targetSpeed": target,
        })

# Simulation Configuration
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator

# Clock
TICK_INTERVAL = 0.1             # Wall-clock seconds between ticks
ALLOWED_SPEEDS = (1, 2, 5, 10, 30)
FAST_FORWARD_STEP = 5.0         # Simulated seconds per fast-forward tick
FAST_FORWARD_BATCH = 60         # Ticks between yields while fast-forwarding
MAX_EVENT_LOG = 100

# Fleet / Slots
VEHICLE_COUNT = 50
SLOT_COUNT = 120
LOW_BATTERY_THRESHOLD = 20.0
BATTERY_DRAIN_PER_KM = 0.5      # Percent
BATTERY_RECHARGE_RATE = 0.01    # Percent per simulated second
HAIL_RATES = (                  # (first hour, last hour, chance per simulated second)
    (7, 9, 0.08),
    (12, 13, 0.05),
    (17, 19, 0.10),
)
HAIL_RATE_DEFAULT = 0.02
PICKUP_RATE = 0.3
DROPOFF_RATE = 0.5
EVACUATION_FACTOR = 1.5
MAX_DYNAMIC_SLOTS = 80

# Road Network (degrees, ~200m grid)
GRID_STEP = 0.0020
GRID_LAT_MIN = 36.4600
GRID_LAT_ROWS = 27
GRID_LNG_MIN = 127.2500
GRID_LNG_COLS = 36
ARTERIAL_BAND = 0.002
COORD_EPSILON = 0.0001
KM_PER_DEGREE = 111.0

SPEED_LIMITS = {
    "highway": 60.0,
    "main": 50.0,
    "sub": 40.0,
    "local": 30.0,
}

# Road Section (pixels)
ROAD_START = 50.0
ROAD_END = 750.0
ROAD_TOP = 80.0
LANES = 4
LANE_WIDTH = 35.0
BOUNDARY_MARGIN = 20.0

# Vehicle Physics
BASE_SPEED_MIN = 40.0           # km/h
BASE_SPEED_MAX = 60.0
MIN_CRUISE_SPEED = 5.0
MAX_ACCELERATION = 5.0          # km/h per simulated second
PIXELS_PER_METER = 2.0
CLOSE_HEADWAY = 40.0            # px
NEAR_HEADWAY = 80.0
CLOSE_SPEED_RATIO = 0.3
NEAR_SPEED_RATIO = 0.7
CLOSE_SPEED_FLOOR = 10.0
LANE_CHANGE_CHANCE = 0.001
LANE_CHANGE_GAP = 60.0          # px longitudinal window
LANE_CHANGE_RATE = 30.0         # px per simulated second
LANE_SNAP_DISTANCE = 2.0
CONGESTION_SPEED_PENALTY = 0.5

# Congestion
CONGESTION_INTERVAL = 5.0       # Wall-clock seconds between recomputes
REFERENCE_SPEED = 60.0
OCCUPANCY_WEIGHT = 0.7
SPEED_WEIGHT = 30.0
SEGMENT_HISTORY_LIMIT = 100
GLOBAL_HISTORY_LIMIT = 1000
PREDICTION_WINDOW = 5
PREDICTION_DEFAULT = 50.0
RUSH_HOUR_FACTOR = 1.5
LUNCH_FACTOR = 1.2
LATE_NIGHT_FACTOR = 0.3
ROUTE_CONGESTION_LIMIT = 70.0
ALERT_THRESHOLDS = (
    (90.0, "critical"),
    (70.0, "high"),
    (50.0, "medium"),
    (30.0, "low"),
)

# Slot Allocation
SLOT_ALLOCATION_CHANCE = 0.1    # Per tick
DEMAND_THRESHOLD = 0.7
REACTIVATE_CHANCE = 0.3
DEACTIVATE_CHANCE = 0.1
PROTECTED_PRIORITY = 7
NEARBY_RESERVATION_METERS = 100.0
RESERVE_TO_OCCUPIED_RATE = 0.3  # Per simulated second
RELEASE_RATE = 0.1
ARRIVAL_RATE = 0.05
SLOT_EVENT_LIMIT = 1000
VEHICLE_EVENT_LIMIT = 1000
OCCUPANCY_SAMPLE_LIMIT = 1000
SLOT_OFFSET_DEGREES = 0.01       # Random offset around a reference location
NEW_SLOT_OFFSET_DEGREES = 0.0005 # Offset of a slot spawned next to a busy one
GOVERNMENT_DEMAND_KM = 1.0

# Emergency
EMERGENCY_CENTER = (36.4800, 127.2890)
EMERGENCY_RADIUS_KM = 2.0


class SimulationConfig(BaseModel):
    seed: int = 42
    vehicle_count: int = Field(default=VEHICLE_COUNT, ge=1)
    slot_count: int = Field(default=SLOT_COUNT, ge=0)
    start_time: Optional[datetime] = None
    speed: int = 1
    tick_interval: float = Field(default=TICK_INTERVAL, gt=0)
    fast_forward_step: float = Field(default=FAST_FORWARD_STEP, gt=0)
    fast_forward_batch: int = Field(default=FAST_FORWARD_BATCH, ge=1)
    occupancy_weight: float = OCCUPANCY_WEIGHT
    speed_weight: float = SPEED_WEIGHT
    congestion_interval: float = Field(default=CONGESTION_INTERVAL, ge=0)
    rush_hour_factor: float = RUSH_HOUR_FACTOR
    lunch_factor: float = LUNCH_FACTOR
    late_night_factor: float = LATE_NIGHT_FACTOR
    slot_allocation_chance: float = Field(default=SLOT_ALLOCATION_CHANCE, ge=0, le=1)
    lane_change_chance: float = Field(default=LANE_CHANGE_CHANCE, ge=0, le=1)
    max_dynamic_slots: int = Field(default=MAX_DYNAMIC_SLOTS, ge=0)

    @field_validator("speed")
    @classmethod
    def _check_speed(cls, value: int) -> int:
        if value not in ALLOWED_SPEEDS:
            raise ValueError(f"speed must be one of {ALLOWED_SPEEDS}")
        return value

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field

class VehicleStatus(str, Enum):
    IDLE = "idle"
    MOVING = "moving"
    PARKED = "parked"
    PICKING = "picking"
    DROPPING = "dropping"

class SlotStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    DISABLED = "disabled"
    MAINTENANCE = "maintenance"

class SlotType(str, Enum):
    DYNAMIC = "dynamic"
    STATIC = "static"
    EMERGENCY = "emergency"

class Direction(str, Enum):
    NORTH = "north"
    SOUTH = "south"
    EAST = "east"
    WEST = "west"

class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

class EventType(str, Enum):
    VEHICLE_EVENT = "vehicle_event"
    SLOT_EVENT = "slot_event"
    TRAFFIC_INCIDENT = "traffic_incident"
    EMERGENCY_ALERT = "emergency_alert"
    SYSTEM_ALERT = "system_alert"
    USER_ACTION = "user_action"

class EnginePhase(str, Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    FAST_FORWARDING = "FAST_FORWARDING"

class Coordinate(BaseModel):
    lat: float
    lng: float

class Vehicle(BaseModel):
    id: str
    position: Coordinate
    status: VehicleStatus = VehicleStatus.IDLE
    battery: float = Field(default=100.0, ge=0.0, le=100.0)
    speed: float = Field(default=0.0, ge=0.0)  # km/h
    destination: Optional[Coordinate] = None
    route: Optional[List[Coordinate]] = None
    passenger: bool = False
    totalDistance: float = Field(default=0.0, ge=0.0)  # km
    tripCount: int = Field(default=0, ge=0)
    efficiency: float = 100.0
    lastUpdate: Optional[datetime] = None

    # Road section kinematics (pixels)
    lane: int = 0
    targetLane: int = 0
    x: float = 0.0
    y: float = 0.0
    heading: Literal["forward", "backward"] = "forward"
    targetSpeed: float = 0.0
    isChangingLane: bool = False

class ParkingSlot(BaseModel):
    id: str
    position: Coordinate
    status: SlotStatus = SlotStatus.AVAILABLE
    type: SlotType = SlotType.DYNAMIC
    vehicleId: Optional[str] = None
    priority: int = Field(default=5, ge=1, le=10)
    capacity: int = Field(default=2, ge=1)
    occupiedCount: int = Field(default=0, ge=0)
    roadSection: str = ""
    direction: Direction = Direction.NORTH
    utilizationRate: float = Field(default=0.0, ge=0.0, le=100.0)
    createdAt: Optional[datetime] = None
    lastUsed: Optional[datetime] = None

class SlotReservation(BaseModel):
    id: str
    slotId: str
    vehicleId: str
    startTime: datetime
    estimatedDuration: float  # minutes
    status: Literal["pending", "active", "completed", "cancelled"] = "pending"
    priority: float

class SlotEvent(BaseModel):
    id: str
    slotId: str
    type: str  # created, occupied, vacated, reserved, cancelled, disabled, ...
    timestamp: datetime
    vehicleId: Optional[str] = None
    duration: Optional[float] = None
    reason: Optional[str] = None
    automated: bool = False

class VehicleEvent(BaseModel):
    id: str
    vehicleId: str
    type: str  # trip_start, trip_end, battery_low, maintenance, ...
    timestamp: datetime
    location: Coordinate
    severity: Literal["low", "medium", "high", "critical"]
    description: str
    resolved: bool

class SimulationEvent(BaseModel):
    id: str
    type: EventType
    timestamp: datetime
    severity: Severity
    title: str
    description: str
    location: Optional[Coordinate] = None
    data: Optional[Dict[str, Any]] = None
    acknowledged: bool = False
    autoResolved: bool = False

class CongestionLevel(BaseModel):
    level: Literal["low", "medium", "high", "extreme"]
    multiplier: float
    speedFactor: float
    description: str

class CongestionRecord(BaseModel):
    timestamp: datetime
    roadSection: str
    vehicleCount: int
    averageSpeed: float
    congestionLevel: float
    predictedCongestion: float

class Bounds(BaseModel):
    x1: float
    y1: float
    x2: float
    y2: float

    def contains(self, x: float, y: float) -> bool:
        return self.x1 <= x <= self.x2 and self.y1 <= y <= self.y2

class RoadSegment(BaseModel):
    id: str
    position: Bounds
    maxCapacity: int = Field(ge=1)
    currentVehicles: int = 0
    avgSpeed: float = 60.0
    congestionHistory: List[CongestionRecord] = []

class CongestionAlert(BaseModel):
    segmentId: str
    level: Literal["low", "medium", "high", "critical"]

# Stats

class VehicleStats(BaseModel):
    total: int
    active: int
    idle: int
    parked: int
    moving: int
    picking: int
    dropping: int
    averageBattery: float
    averageSpeed: float
    totalDistance: float
    totalTrips: int
    averageEfficiency: float

class PeakHours(BaseModel):
    morning: float
    afternoon: float
    evening: float

class SlotStats(BaseModel):
    total: int
    available: int
    occupied: int
    reserved: int
    disabled: int
    maintenance: int
    dynamicSlots: int
    staticSlots: int
    emergencySlots: int
    utilizationRate: float
    averageOccupancyTime: float
    activeReservations: int
    pendingReservations: int
    peakHours: PeakHours
    totalCapacity: int
    currentOccupancy: int

class SimulationStats(BaseModel):
    vehicleStats: VehicleStats
    slotStats: SlotStats
    averageCongestion: float
    trafficFlowIndex: float

# API/Response Models

class SimulationSnapshot(BaseModel):
    tick: int
    currentTime: datetime
    vehicles: List[Vehicle]
    slots: List[ParkingSlot]
    events: List[SimulationEvent]

class InitialState(BaseModel):
    vehicles: List[Vehicle]
    slots: List[ParkingSlot]

class SpeedUpdate(BaseModel):
    speed: Literal[1, 2, 5, 10, 30]

class FastForwardRequest(BaseModel):
    hours: float = Field(gt=0, le=24 * 7)

class SlotCreate(BaseModel):
    position: Coordinate
    type: SlotType = SlotType.DYNAMIC

class EmergencyRequest(BaseModel):
    center: Optional[Coordinate] = None
    radiusKm: Optional[float] = Field(default=None, gt=0)

class EvacuationRequest(BaseModel):
    center: Coordinate
    radiusKm: float = Field(gt=0)

class EmergencyReport(BaseModel):
    active: bool
    disabledSlots: List[str]
    evacuatedVehicles: List[str]
    restoredSlots: List[str] = []

class EngineStatus(BaseModel):
    phase: EnginePhase
    speed: int
    currentTime: datetime
    tick: int

class SlotAllocationConfig(BaseModel):
    algorithm: Literal["nearest", "balanced", "predictive"] = "predictive"
    maxWalkingDistance: float = Field(default=300.0, gt=0)  # meters
    trafficFlowWeight: float = Field(default=0.4, ge=0, le=1)
    utilizationWeight: float = Field(default=0.3, ge=0, le=1)
    emergencyReserveRatio: float = Field(default=0.15, ge=0, le=1)
    dynamicAdjustment: bool = True

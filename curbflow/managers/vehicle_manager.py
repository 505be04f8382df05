import itertools
import logging
import random
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, Iterable, List, Optional

from curbflow.domain import config
from curbflow.domain.geo import haversine_km, km_to_degrees
from curbflow.domain.graph import RoadNetwork
from curbflow.domain.models import (
    Coordinate, ParkingSlot, SlotStatus, Vehicle, VehicleEvent, VehicleStats, VehicleStatus
)
from curbflow.domain.transitions import with_vehicle_status

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (VehicleStatus.MOVING, VehicleStatus.PICKING, VehicleStatus.DROPPING)

class VehicleManager:
    """Registry of fleet vehicles keyed by id.

    Records are immutable pydantic models; every update swaps the stored
    record for a new one.
    """

    def __init__(self, rng: Optional[random.Random] = None, road_network: Optional[RoadNetwork] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.vehicles: Dict[str, Vehicle] = {}
        self.events: Deque[VehicleEvent] = deque(maxlen=config.VEHICLE_EVENT_LIMIT)
        self.rng = rng or random.Random()
        self.road_network = road_network
        self.clock = clock
        self._event_seq = itertools.count(1)

    # Registry

    def register_vehicle(self, vehicle: Vehicle):
        self.vehicles[vehicle.id] = vehicle

    def remove_vehicle(self, vehicle_id: str) -> bool:
        return self.vehicles.pop(vehicle_id, None) is not None

    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        return self.vehicles.get(vehicle_id)

    def get_all_vehicles(self) -> List[Vehicle]:
        return list(self.vehicles.values())

    def get_vehicle_count(self) -> int:
        return len(self.vehicles)

    def replace_all(self, vehicles: Iterable[Vehicle]):
        self.vehicles = {v.id: v for v in vehicles}

    def clear(self):
        self.vehicles.clear()
        self.events.clear()
        self._event_seq = itertools.count(1)

    # Updates

    def update_vehicle_status(self, vehicle_id: str, status: VehicleStatus) -> bool:
        vehicle = self.vehicles.get(vehicle_id)
        if not vehicle:
            return False
        now = self.clock()
        self.vehicles[vehicle_id] = with_vehicle_status(vehicle, status, now)
        self._add_event(vehicle_id, self._event_type(status), vehicle.position, "low",
                        f"Vehicle status changed from {vehicle.status.value} to {status.value}", resolved=True)
        return True

    def update_vehicle_position(self, vehicle_id: str, position: Coordinate) -> bool:
        vehicle = self.vehicles.get(vehicle_id)
        if not vehicle:
            return False
        self.vehicles[vehicle_id] = vehicle.model_copy(update={"position": position, "lastUpdate": self.clock()})
        return True

    def set_destination(self, vehicle_id: str, destination: Coordinate) -> bool:
        vehicle = self.vehicles.get(vehicle_id)
        if not vehicle:
            return False
        route = self.road_network.find_path(vehicle.position, destination) if self.road_network else [destination]
        self.vehicles[vehicle_id] = with_vehicle_status(
            vehicle, VehicleStatus.MOVING, self.clock(),
            destination=destination, route=route, speed=self.rng.uniform(30.0, 50.0),
        )
        return True

    # Queries

    def find_nearest_vehicle(self, position: Coordinate, status: Optional[VehicleStatus] = None,
                             candidates: Optional[Iterable[Vehicle]] = None) -> Optional[Vehicle]:
        nearest = None
        best = float("inf")
        for vehicle in (self.vehicles.values() if candidates is None else candidates):
            if status is not None and vehicle.status != status:
                continue
            distance = haversine_km(position, vehicle.position)
            if distance < best:
                best = distance
                nearest = vehicle
        return nearest

    def find_vehicles_in_radius(self, center: Coordinate, radius_km: float) -> List[Vehicle]:
        return [v for v in self.vehicles.values() if haversine_km(center, v.position) <= radius_km]

    def find_low_battery_vehicles(self, threshold: float = config.LOW_BATTERY_THRESHOLD) -> List[Vehicle]:
        return [v for v in self.vehicles.values() if v.battery < threshold]

    def calculate_vehicle_efficiency(self, vehicle_id: str) -> float:
        vehicle = self.vehicles.get(vehicle_id)
        if not vehicle:
            return 0.0
        trip_efficiency = min(vehicle.tripCount / 10.0, 1.0)
        battery_efficiency = vehicle.battery / 100.0
        distance_efficiency = min(100.0 / vehicle.totalDistance, 1.0) if vehicle.totalDistance > 0 else 1.0
        return (trip_efficiency + battery_efficiency + distance_efficiency) / 3.0 * 100.0

    def optimize_vehicle_distribution(self, slots: List[ParkingSlot]) -> Dict[str, str]:
        """Pairs idle vehicles with free slots, highest priority slot first. Returns vehicle id -> slot id."""
        assignments: Dict[str, str] = {}
        free = [s for s in slots if s.status == SlotStatus.AVAILABLE and s.occupiedCount < s.capacity]
        idle = [v for v in self.vehicles.values() if v.status == VehicleStatus.IDLE]

        for slot in sorted(free, key=lambda s: s.priority, reverse=True):
            if not idle:
                break
            nearest = self.find_nearest_vehicle(slot.position, candidates=idle)
            assignments[nearest.id] = slot.id
            idle.remove(nearest)
        return assignments

    # Emergency

    def evacuate_area(self, center: Coordinate, radius_km: float) -> List[Vehicle]:
        """Sends every vehicle inside the radius to a point 1.5 radii from the center."""
        evacuated = []
        for vehicle in self.find_vehicles_in_radius(center, radius_km):
            destination = self.evacuation_destination(vehicle.position, center, radius_km)
            self.set_destination(vehicle.id, destination)
            self._add_event(vehicle.id, "evacuation", vehicle.position, "high",
                            "Vehicle evacuated from emergency area", resolved=False)
            evacuated.append(self.vehicles[vehicle.id])

        logger.info("Evacuated %d vehicles within %.2f km of (%.4f, %.4f)",
                    len(evacuated), radius_km, center.lat, center.lng)
        return evacuated

    @staticmethod
    def evacuation_destination(position: Coordinate, center: Coordinate, radius_km: float) -> Coordinate:
        safe_distance = km_to_degrees(radius_km * config.EVACUATION_FACTOR)
        d_lat = position.lat - center.lat
        d_lng = position.lng - center.lng
        norm = (d_lat ** 2 + d_lng ** 2) ** 0.5
        if norm == 0:
            # No bearing at the exact center, head east
            return Coordinate(lat=center.lat, lng=center.lng + safe_distance)
        return Coordinate(lat=center.lat + d_lat / norm * safe_distance,
                          lng=center.lng + d_lng / norm * safe_distance)

    # Stats and events

    def generate_vehicle_stats(self) -> VehicleStats:
        vehicles = list(self.vehicles.values())
        count = len(vehicles)

        def with_status(status: VehicleStatus) -> int:
            return sum(1 for v in vehicles if v.status == status)

        return VehicleStats(
            total=count,
            active=sum(1 for v in vehicles if v.status in ACTIVE_STATUSES),
            idle=with_status(VehicleStatus.IDLE),
            parked=with_status(VehicleStatus.PARKED),
            moving=with_status(VehicleStatus.MOVING),
            picking=with_status(VehicleStatus.PICKING),
            dropping=with_status(VehicleStatus.DROPPING),
            averageBattery=sum(v.battery for v in vehicles) / count if count else 0.0,
            averageSpeed=sum(v.speed for v in vehicles) / count if count else 0.0,
            totalDistance=sum(v.totalDistance for v in vehicles),
            totalTrips=sum(v.tripCount for v in vehicles),
            averageEfficiency=(sum(self.calculate_vehicle_efficiency(v.id) for v in vehicles) / count
                               if count else 0.0),
        )

    def get_recent_events(self, limit: int = 50) -> List[VehicleEvent]:
        ordered = sorted(self.events, key=lambda e: e.timestamp, reverse=True)
        return ordered[:max(0, limit)]

    def get_unresolved_events(self) -> List[VehicleEvent]:
        return [e for e in self.events if not e.resolved]

    def _add_event(self, vehicle_id: str, type: str, location: Coordinate, severity: str,
                   description: str, resolved: bool):
        self.events.append(VehicleEvent(
            id=f"vehicle-event-{next(self._event_seq)}",
            vehicleId=vehicle_id,
            type=type,
            timestamp=self.clock(),
            location=location,
            severity=severity,
            description=description,
            resolved=resolved,
        ))

    @staticmethod
    def _event_type(status: VehicleStatus) -> str:
        if status == VehicleStatus.MOVING:
            return "trip_start"
        if status == VehicleStatus.IDLE:
            return "trip_end"
        return "maintenance"

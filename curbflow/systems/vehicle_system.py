import logging
import random
from datetime import datetime
from typing import List, Tuple

from curbflow.domain import config
from curbflow.domain.events import EventFactory
from curbflow.domain.geo import km_to_degrees, degrees_to_km, planar_distance
from curbflow.domain.graph import RoadNetwork
from curbflow.domain.locations import ALL_LOCATIONS, GOVERNMENT_COMPLEX, RESIDENTIAL_AREAS
from curbflow.domain.models import Coordinate, EventType, Severity, SimulationEvent, Vehicle, VehicleStatus
from curbflow.domain.transitions import adjust_battery, with_vehicle_status

logger = logging.getLogger(__name__)

def chance(rate: float, dt: float) -> float:
    """Per-second rate turned into a probability for a step of dt seconds."""
    return min(1.0, rate * dt)

class VehicleSystem:
    """Fleet dispatch: hailing, route following and the trip state machine."""

    def __init__(self, road_network: RoadNetwork, rng: random.Random, events: EventFactory,
                 low_battery_threshold: float = config.LOW_BATTERY_THRESHOLD):
        self.road_network = road_network
        self.rng = rng
        self.events = events
        self.low_battery_threshold = low_battery_threshold

    def hail_rate(self, hour: int) -> float:
        for first, last, rate in config.HAIL_RATES:
            if first <= hour <= last:
                return rate
        return config.HAIL_RATE_DEFAULT

    def random_location(self) -> Coordinate:
        return self.rng.choice(ALL_LOCATIONS).model_copy()

    def destination_for(self, hour: int) -> Coordinate:
        if 7 <= hour <= 9:
            return self.rng.choice(GOVERNMENT_COMPLEX).model_copy()
        if 17 <= hour <= 19:
            return self.rng.choice(RESIDENTIAL_AREAS).model_copy()
        return self.random_location()

    def route(self, start: Coordinate, end: Coordinate) -> List[Coordinate]:
        return self.road_network.find_path(start, end)

    def update(self, vehicles: List[Vehicle], dt: float, now: datetime) -> Tuple[List[Vehicle], List[SimulationEvent]]:
        updated = []
        emitted: List[SimulationEvent] = []
        for v in vehicles:
            nv = self._update_vehicle(v, dt, now)
            if v.battery >= self.low_battery_threshold > nv.battery:
                emitted.append(self.events.make(
                    EventType.VEHICLE_EVENT, Severity.WARNING, "Low battery",
                    f"Vehicle {nv.id} battery dropped below {self.low_battery_threshold:.0f}%",
                    now, location=nv.position, data={"vehicleId": nv.id, "battery": round(nv.battery, 1)},
                ))
            updated.append(nv)
        return updated, emitted

    def _update_vehicle(self, v: Vehicle, dt: float, now: datetime) -> Vehicle:
        if v.status == VehicleStatus.MOVING:
            return self._drive(v, dt, now)
        if v.status == VehicleStatus.PICKING:
            if self.rng.random() < chance(config.PICKUP_RATE, dt):
                destination = self.random_location()
                return with_vehicle_status(v, VehicleStatus.MOVING, now, passenger=True,
                                           destination=destination, route=self.route(v.position, destination))
            return v
        if v.status == VehicleStatus.DROPPING:
            if self.rng.random() < chance(config.DROPOFF_RATE, dt):
                return with_vehicle_status(v, VehicleStatus.IDLE, now, passenger=False,
                                           destination=None, route=None, tripCount=v.tripCount + 1)
            return v

        # Idle and parked vehicles charge
        v = adjust_battery(v, config.BATTERY_RECHARGE_RATE * dt)
        if v.status == VehicleStatus.IDLE and v.battery >= self.low_battery_threshold:
            if self.rng.random() < chance(self.hail_rate(now.hour), dt):
                destination = self.destination_for(now.hour)
                return with_vehicle_status(v, VehicleStatus.MOVING, now,
                                           destination=destination, route=self.route(v.position, destination))
        return v

    def _drive(self, v: Vehicle, dt: float, now: datetime) -> Vehicle:
        if not v.route:
            return self._arrive(v, now)

        route = list(v.route)
        position = v.position
        speed = min(v.speed, self.road_network.get_speed_limit(position))
        reach = km_to_degrees(speed / 3600.0 * dt)
        travelled = 0.0

        while route and reach > 0:
            target = route[0]
            gap = planar_distance(position, target)
            if gap <= reach:
                position = target
                reach -= gap
                travelled += gap
                route.pop(0)
            else:
                ratio = reach / gap
                position = Coordinate(lat=position.lat + (target.lat - position.lat) * ratio,
                                      lng=position.lng + (target.lng - position.lng) * ratio)
                travelled += reach
                reach = 0.0

        distance_km = degrees_to_km(travelled)
        v = adjust_battery(v, -config.BATTERY_DRAIN_PER_KM * distance_km)
        v = v.model_copy(update={
            "position": position,
            "route": route,
            "totalDistance": v.totalDistance + distance_km,
            "lastUpdate": now,
        })

        if v.battery <= 0:
            logger.info("Vehicle %s ran out of battery", v.id)
            return with_vehicle_status(v, VehicleStatus.IDLE, now, destination=None, route=None, passenger=False)
        if not route:
            return self._arrive(v, now)
        return v

    def _arrive(self, v: Vehicle, now: datetime) -> Vehicle:
        update = {"position": v.destination or v.position, "route": None}
        if v.passenger:
            return with_vehicle_status(v, VehicleStatus.DROPPING, now, **update)
        return with_vehicle_status(v, VehicleStatus.PICKING, now, destination=None, **update)


import itertools
import logging
import random
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set

from curbflow.domain import config
from curbflow.domain.geo import haversine_km
from curbflow.domain.locations import GOVERNMENT_COMPLEX, road_section_for
from curbflow.domain.models import (
    Coordinate, PeakHours, ParkingSlot, SlotAllocationConfig, SlotEvent, SlotReservation, SlotStats,
    SlotStatus, SlotType
)
from curbflow.domain import transitions

logger = logging.getLogger(__name__)

STATUS_EVENTS = {
    SlotStatus.OCCUPIED: "occupied",
    SlotStatus.AVAILABLE: "vacated",
    SlotStatus.RESERVED: "reserved",
    SlotStatus.DISABLED: "disabled",
    SlotStatus.MAINTENANCE: "maintenance_start",
}

class SlotManager:
    """Registry of curbside slots keyed by id.

    Owns reservations, the slot event log and emergency mode. Slots that
    emergency mode disabled are locked: dynamic reallocation leaves them
    alone until ``deactivate_emergency_mode`` restores them.
    """

    def __init__(self, rng: Optional[random.Random] = None, clock: Callable[[], datetime] = datetime.now,
                 allocation: Optional[SlotAllocationConfig] = None,
                 max_dynamic_slots: int = config.MAX_DYNAMIC_SLOTS):
        self.slots: Dict[str, ParkingSlot] = {}
        self.reservations: Dict[str, SlotReservation] = {}
        self.events: Deque[SlotEvent] = deque(maxlen=config.SLOT_EVENT_LIMIT)
        self.occupancy_minutes: Deque[float] = deque(maxlen=config.OCCUPANCY_SAMPLE_LIMIT)
        self.config = allocation or SlotAllocationConfig()
        self.rng = rng or random.Random()
        self.clock = clock
        self.max_dynamic_slots = max_dynamic_slots
        self.emergency_active = False
        self.locked: Set[str] = set()
        self._event_seq = itertools.count(1)
        self._reservation_seq = itertools.count(1)
        self._slot_seq = itertools.count(1)

    # Registry

    def register_slot(self, slot: ParkingSlot, automated: bool = False):
        self.slots[slot.id] = slot
        self._add_event(slot.id, "created", automated=automated)

    def remove_slot(self, slot_id: str) -> bool:
        if self.slots.pop(slot_id, None) is None:
            return False
        for reservation_id in [r.id for r in self.reservations.values() if r.slotId == slot_id]:
            del self.reservations[reservation_id]
        self.locked.discard(slot_id)
        self._add_event(slot_id, "removed")
        return True

    def get_slot(self, slot_id: str) -> Optional[ParkingSlot]:
        return self.slots.get(slot_id)

    def get_all_slots(self) -> List[ParkingSlot]:
        return list(self.slots.values())

    def clear(self):
        self.slots.clear()
        self.reservations.clear()
        self.events.clear()
        self.occupancy_minutes.clear()
        self.locked.clear()
        self.emergency_active = False
        self._event_seq = itertools.count(1)
        self._reservation_seq = itertools.count(1)
        self._slot_seq = itertools.count(1)

    def new_slot_id(self, prefix: str = "slot-dyn") -> str:
        while True:
            slot_id = f"{prefix}-{next(self._slot_seq)}"
            if slot_id not in self.slots:
                return slot_id

    # Occupancy

    def update_slot_status(self, slot_id: str, status: SlotStatus, reason: Optional[str] = None) -> bool:
        slot = self.slots.get(slot_id)
        if not slot:
            return False
        self._store(transitions.set_slot_status(slot, status, self.clock()))
        self._add_event(slot_id, STATUS_EVENTS.get(status, "vacated"), reason=reason)
        return True

    def occupy_slot(self, slot_id: str, vehicle_id: Optional[str] = None) -> bool:
        slot = self.slots.get(slot_id)
        if not slot or not transitions.has_free_capacity(slot):
            return False
        self._store(transitions.occupy_slot(slot, self.clock(), vehicle_id))
        self._add_event(slot_id, "occupied", vehicle_id=vehicle_id)
        return True

    def release_slot(self, slot_id: str) -> bool:
        slot = self.slots.get(slot_id)
        if not slot or not transitions.is_in_service(slot) or slot.occupiedCount == 0:
            return False
        self._store(transitions.release_slot(slot))
        self._add_event(slot_id, "vacated", vehicle_id=slot.vehicleId)
        return True

    def apply_changes(self, changes: Iterable[tuple]):
        """Stores slot records produced by the occupancy dynamics and logs them as automated events."""
        for slot, event_type in changes:
            if slot.id not in self.slots:
                continue
            previous = self.slots[slot.id]
            self._store(slot)
            if previous.status == SlotStatus.RESERVED and slot.status == SlotStatus.OCCUPIED:
                for reservation in self.reservations.values():
                    if reservation.slotId == slot.id and reservation.status == "pending":
                        reservation.status = "active"
            self._add_event(slot.id, event_type, automated=True)

    def _store(self, slot: ParkingSlot):
        previous = self.slots.get(slot.id)
        if previous and previous.lastUsed and slot.occupiedCount < previous.occupiedCount:
            minutes = (self.clock() - previous.lastUsed).total_seconds() / 60.0
            self.occupancy_minutes.append(max(0.0, minutes))
        self.slots[slot.id] = slot

    # Reservations

    def reserve_slot(self, slot_id: str, vehicle_id: str, duration: float) -> Optional[SlotReservation]:
        slot = self.slots.get(slot_id)
        if not slot or slot.status != SlotStatus.AVAILABLE or not transitions.has_free_capacity(slot):
            return None

        reservation = SlotReservation(
            id=f"reservation-{next(self._reservation_seq)}",
            slotId=slot_id,
            vehicleId=vehicle_id,
            startTime=self.clock(),
            estimatedDuration=duration,
            priority=slot.priority + self.rng.random() * 2,
        )
        self.reservations[reservation.id] = reservation
        self._store(transitions.reserve_slot(slot))
        self._add_event(slot_id, "reserved", vehicle_id=vehicle_id, duration=duration, automated=True)
        return reservation

    def cancel_reservation(self, reservation_id: str) -> bool:
        reservation = self.reservations.pop(reservation_id, None)
        if not reservation:
            return False

        slot = self.slots.get(reservation.slotId)
        if slot and slot.status == SlotStatus.RESERVED:
            self._store(transitions.release_slot(slot))
        reservation.status = "cancelled"
        self._add_event(reservation.slotId, "cancelled", vehicle_id=reservation.vehicleId)
        return True

    def get_reservations(self) -> List[SlotReservation]:
        return list(self.reservations.values())

    # Slot search

    def find_optimal_slot(self, position: Coordinate, max_distance: Optional[float] = None,
                          preferred_type: Optional[SlotType] = None, urgency: str = "normal",
                          hour: Optional[int] = None) -> Optional[ParkingSlot]:
        candidates = [s for s in self.slots.values()
                      if s.status == SlotStatus.AVAILABLE and s.occupiedCount < s.capacity]
        if not candidates:
            return None

        limit = max_distance or self.config.maxWalkingDistance
        nearby = [s for s in candidates if self._meters(position, s.position) <= limit]
        if not nearby:
            return self._nearest(position, candidates)

        if preferred_type is not None:
            nearby = [s for s in nearby if s.type == preferred_type] or nearby

        algorithm = self.config.algorithm
        if algorithm == "balanced":
            return max(nearby, key=lambda s: self._balanced_score(position, s))
        if algorithm == "predictive":
            hour = self.clock().hour if hour is None else hour
            return max(nearby, key=lambda s: self._predictive_score(position, s, hour, urgency))
        return self._nearest(position, nearby)

    def _nearest(self, position: Coordinate, slots: List[ParkingSlot]) -> ParkingSlot:
        return min(slots, key=lambda s: self._meters(position, s.position))

    def _balanced_score(self, position: Coordinate, slot: ParkingSlot) -> float:
        distance_score = max(0.0, 1.0 - self._meters(position, slot.position) / self.config.maxWalkingDistance)
        utilization_score = 1.0 - slot.utilizationRate / 100.0
        priority_score = slot.priority / 10.0
        return distance_score * 0.5 + utilization_score * 0.3 + priority_score * 0.2

    def _predictive_score(self, position: Coordinate, slot: ParkingSlot, hour: int, urgency: str) -> float:
        urgency_multiplier = 1.2 if urgency == "high" else 1.0
        return self._balanced_score(position, slot) * self._demand_multiplier(slot, hour) * urgency_multiplier

    def _demand_multiplier(self, slot: ParkingSlot, hour: int) -> float:
        near_government = any(haversine_km(slot.position, g) <= config.GOVERNMENT_DEMAND_KM
                              for g in GOVERNMENT_COMPLEX)
        if near_government:
            if 8 <= hour <= 9:
                return 1.3
            if 17 <= hour <= 18:
                return 1.2
            if 12 <= hour <= 13:
                return 1.1
        return 1.0

    @staticmethod
    def _meters(a: Coordinate, b: Coordinate) -> float:
        return haversine_km(a, b) * 1000.0

    # Dynamic allocation

    def allocate_dynamic_slots(self, demand: float, hour: int) -> List[str]:
        """Re-enables, creates or disables dynamic slots to follow demand. Returns the ids touched."""
        touched: List[str] = []
        dynamic = [s for s in self.slots.values() if s.type == SlotType.DYNAMIC and s.id not in self.locked]
        high_demand = demand > config.DEMAND_THRESHOLD
        reason = f"demand {demand:.2f} at {hour:02d}:00"

        for slot in dynamic:
            if high_demand and slot.status == SlotStatus.DISABLED:
                if self.rng.random() < config.REACTIVATE_CHANCE:
                    self._store(transitions.clear_slot(slot))
                    self._add_event(slot.id, "enabled", reason=reason, automated=True)
                    touched.append(slot.id)
            elif not high_demand and slot.status == SlotStatus.AVAILABLE and slot.occupiedCount == 0:
                if self.rng.random() < config.DEACTIVATE_CHANCE and self._can_deactivate(slot):
                    self._store(transitions.clear_slot(slot, SlotStatus.DISABLED))
                    self._add_event(slot.id, "disabled", reason=reason, automated=True)
                    touched.append(slot.id)

        if high_demand and self.config.dynamicAdjustment:
            created = self._expand_dynamic_capacity(dynamic, demand, reason)
            if created:
                touched.append(created)
        return touched

    def _expand_dynamic_capacity(self, dynamic: List[ParkingSlot], demand: float, reason: str) -> Optional[str]:
        if any(s.status == SlotStatus.DISABLED for s in dynamic):
            return None
        all_dynamic = sum(1 for s in self.slots.values() if s.type == SlotType.DYNAMIC)
        if all_dynamic >= self.max_dynamic_slots:
            return None

        in_service = [s for s in dynamic if transitions.is_in_service(s)]
        capacity = sum(s.capacity for s in in_service)
        free = sum(s.capacity - s.occupiedCount for s in in_service)
        if capacity and free / capacity >= demand:
            return None

        busiest = max(in_service, key=lambda s: s.utilizationRate, default=None)
        if busiest is None:
            return None
        offset = config.NEW_SLOT_OFFSET_DEGREES
        position = Coordinate(lat=busiest.position.lat + self.rng.uniform(-offset, offset),
                              lng=busiest.position.lng + self.rng.uniform(-offset, offset))
        slot = ParkingSlot(
            id=self.new_slot_id(),
            position=position,
            type=SlotType.DYNAMIC,
            priority=busiest.priority,
            capacity=busiest.capacity,
            roadSection=road_section_for(position),
            direction=busiest.direction,
            createdAt=self.clock(),
        )
        self.slots[slot.id] = slot
        self._add_event(slot.id, "created", reason=reason, automated=True)
        logger.debug("Dynamic slot %s created next to %s", slot.id, busiest.id)
        return slot.id

    def _can_deactivate(self, slot: ParkingSlot) -> bool:
        return (slot.occupiedCount == 0
                and slot.priority < config.PROTECTED_PRIORITY
                and not self._has_nearby_reservations(slot))

    def _has_nearby_reservations(self, slot: ParkingSlot) -> bool:
        return any(
            other.id != slot.id and other.status == SlotStatus.RESERVED
            and self._meters(slot.position, other.position) < config.NEARBY_RESERVATION_METERS
            for other in self.slots.values()
        )

    # Emergency mode

    def activate_emergency_mode(self, center: Optional[Coordinate] = None,
                                radius_km: Optional[float] = None) -> List[str]:
        """Disables dynamic slots inside the area. Returns the ids this call disabled, in registry order."""
        if self.emergency_active:
            return [s for s in self.slots if s in self.locked]

        if center is None:
            center = Coordinate(lat=config.EMERGENCY_CENTER[0], lng=config.EMERGENCY_CENTER[1])
        radius_km = config.EMERGENCY_RADIUS_KM if radius_km is None else radius_km

        affected = [
            s for s in self.slots.values()
            if s.type == SlotType.DYNAMIC and s.status != SlotStatus.DISABLED
            and haversine_km(center, s.position) <= radius_km
        ]
        affected_ids = {s.id for s in affected}

        for reservation in list(self.reservations.values()):
            if reservation.slotId in affected_ids:
                self.cancel_reservation(reservation.id)

        for slot in affected:
            self._store(transitions.clear_slot(self.slots[slot.id], SlotStatus.DISABLED))
            self._add_event(slot.id, "disabled", reason="emergency")

        self.locked = affected_ids
        self.emergency_active = True
        logger.info("Emergency mode on: %d dynamic slots disabled", len(affected))
        return [s.id for s in affected]

    def deactivate_emergency_mode(self) -> List[str]:
        """Re-enables exactly the slots the emergency disabled and that still exist."""
        if not self.emergency_active:
            return []

        restored = []
        for slot_id in list(self.slots):
            if slot_id in self.locked:
                self._store(transitions.clear_slot(self.slots[slot_id]))
                self._add_event(slot_id, "enabled", reason="emergency cleared")
                restored.append(slot_id)

        self.locked = set()
        self.emergency_active = False
        logger.info("Emergency mode off: %d slots restored", len(restored))
        return restored

    # Stats

    def generate_slot_stats(self) -> SlotStats:
        slots = list(self.slots.values())
        reservations = list(self.reservations.values())

        def count(**match) -> int:
            return sum(1 for s in slots if all(getattr(s, k) == v for k, v in match.items()))

        return SlotStats(
            total=len(slots),
            available=count(status=SlotStatus.AVAILABLE),
            occupied=count(status=SlotStatus.OCCUPIED),
            reserved=count(status=SlotStatus.RESERVED),
            disabled=count(status=SlotStatus.DISABLED),
            maintenance=count(status=SlotStatus.MAINTENANCE),
            dynamicSlots=count(type=SlotType.DYNAMIC),
            staticSlots=count(type=SlotType.STATIC),
            emergencySlots=count(type=SlotType.EMERGENCY),
            utilizationRate=sum(s.utilizationRate for s in slots) / len(slots) if slots else 0.0,
            averageOccupancyTime=(sum(self.occupancy_minutes) / len(self.occupancy_minutes)
                                  if self.occupancy_minutes else 0.0),
            activeReservations=sum(1 for r in reservations if r.status == "active"),
            pendingReservations=sum(1 for r in reservations if r.status == "pending"),
            peakHours=self._peak_hours(),
            totalCapacity=sum(s.capacity for s in slots),
            currentOccupancy=sum(s.occupiedCount for s in slots),
        )

    def _peak_hours(self) -> PeakHours:
        # Share of logged arrivals per part of the day
        arrivals = [e.timestamp.hour for e in self.events if e.type == "occupied"]
        if not arrivals:
            return PeakHours(morning=0.0, afternoon=0.0, evening=0.0)
        total = len(arrivals)
        return PeakHours(
            morning=sum(1 for h in arrivals if 6 <= h < 12) / total * 100.0,
            afternoon=sum(1 for h in arrivals if 12 <= h < 18) / total * 100.0,
            evening=sum(1 for h in arrivals if h >= 18) / total * 100.0,
        )

    def analyze_slot_efficiency(self, now: Optional[datetime] = None) -> Dict[str, float]:
        now = now or self.clock()
        efficiency: Dict[str, float] = {}
        for slot in self.slots.values():
            utilization_score = slot.utilizationRate / 100.0 * 0.4
            location_score = slot.priority / 10.0 * 0.3
            recent_usage_score = 0.0
            if slot.lastUsed:
                idle_days = (now - slot.lastUsed).total_seconds() / 86400.0
                recent_usage_score = min(max(idle_days, 0.0), 1.0) * 0.2
            capacity_score = slot.occupiedCount / slot.capacity * 0.1
            efficiency[slot.id] = (utilization_score + location_score + recent_usage_score + capacity_score) * 100.0
        return efficiency

    # Config and events

    def update_config(self, **changes) -> SlotAllocationConfig:
        self.config = SlotAllocationConfig.model_validate({**self.config.model_dump(), **changes})
        return self.config

    def get_config(self) -> SlotAllocationConfig:
        return self.config.model_copy()

    def get_recent_events(self, limit: int = 50) -> List[SlotEvent]:
        ordered = sorted(self.events, key=lambda e: e.timestamp, reverse=True)
        return ordered[:max(0, limit)]

    def _add_event(self, slot_id: str, type: str, vehicle_id: Optional[str] = None,
                   duration: Optional[float] = None, reason: Optional[str] = None, automated: bool = False):
        self.events.append(SlotEvent(
            id=f"slot-event-{next(self._event_seq)}",
            slotId=slot_id,
            type=type,
            timestamp=self.clock(),
            vehicleId=vehicle_id,
            duration=duration,
            reason=reason,
            automated=automated,
        ))

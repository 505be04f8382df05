import random
from datetime import datetime
from typing import List, Tuple

from curbflow.domain import config
from curbflow.domain.models import ParkingSlot, SlotStatus
from curbflow.domain.transitions import confirm_reservation, has_free_capacity, occupy_slot, release_slot
from curbflow.systems.vehicle_system import chance

SlotChange = Tuple[ParkingSlot, str]

class SlotSystem:
    """Curbside occupancy dynamics: reservations turning into stops, stops ending, new arrivals."""

    def __init__(self, rng: random.Random,
                 confirm_rate: float = config.RESERVE_TO_OCCUPIED_RATE,
                 release_rate: float = config.RELEASE_RATE,
                 arrival_rate: float = config.ARRIVAL_RATE):
        self.rng = rng
        self.confirm_rate = confirm_rate
        self.release_rate = release_rate
        self.arrival_rate = arrival_rate

    def step(self, slots: List[ParkingSlot], dt: float, demand: float, now: datetime) -> List[SlotChange]:
        """Returns only the slots that changed, each with the event type it produced."""
        changes: List[SlotChange] = []
        for slot in slots:
            if slot.status == SlotStatus.RESERVED:
                if self.rng.random() < chance(self.confirm_rate, dt):
                    changes.append((confirm_reservation(slot, now), "occupied"))
                continue

            if slot.status == SlotStatus.OCCUPIED and self.rng.random() < chance(self.release_rate, dt):
                changes.append((release_slot(slot), "vacated"))
                continue

            if has_free_capacity(slot) and self.rng.random() < chance(self.arrival_rate * demand, dt):
                changes.append((occupy_slot(slot, now), "occupied"))
        return changes

from abc import ABC, abstractmethod
from typing import Any, Optional

from curbflow.domain.models import Coordinate, ParkingSlot

class Command(ABC):
    @abstractmethod
    def execute(self, engine: Any):
        pass

class SetSpeedCommand(Command):
    def __init__(self, speed: int):
        self.speed = speed

    def execute(self, engine: Any):
        engine.set_speed(self.speed)
        return self.speed

class CreateSlotCommand(Command):
    """Registers a slot built ahead of time so callers know its id before the next tick."""

    def __init__(self, slot: ParkingSlot):
        self.slot = slot

    def execute(self, engine: Any):
        engine.slot_manager.register_slot(self.slot)
        return self.slot

class RemoveSlotCommand(Command):
    def __init__(self, slot_id: str):
        self.slot_id = slot_id

    def execute(self, engine: Any):
        return engine.remove_slot(self.slot_id)

class EvacuateAreaCommand(Command):
    def __init__(self, center: Coordinate, radius_km: float):
        self.center = center
        self.radius_km = radius_km

    def execute(self, engine: Any):
        return engine.evacuate_area(self.center, self.radius_km)

class ActivateEmergencyCommand(Command):
    def __init__(self, center: Optional[Coordinate] = None, radius_km: Optional[float] = None):
        self.center = center
        self.radius_km = radius_km

    def execute(self, engine: Any):
        return engine.activate_emergency_mode(self.center, self.radius_km)

class DeactivateEmergencyCommand(Command):
    def execute(self, engine: Any):
        return engine.deactivate_emergency_mode()

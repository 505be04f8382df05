import logging
from typing import List, Optional

from curbflow.domain import config
from curbflow.domain.models import Coordinate, EmergencyReport
from curbflow.managers.slot_manager import SlotManager
from curbflow.managers.vehicle_manager import VehicleManager

logger = logging.getLogger(__name__)

class EmergencyArbitrator:
    """Coordinates slot lockdown and vehicle evacuation for one emergency area at a time."""

    def __init__(self, slot_manager: SlotManager, vehicle_manager: VehicleManager):
        self.slot_manager = slot_manager
        self.vehicle_manager = vehicle_manager
        self.center: Optional[Coordinate] = None
        self.radius_km: Optional[float] = None
        self.evacuated: List[str] = []

    @property
    def active(self) -> bool:
        return self.slot_manager.emergency_active

    def activate(self, center: Optional[Coordinate] = None, radius_km: Optional[float] = None) -> EmergencyReport:
        if self.active:
            return self.report()

        self.center = center or Coordinate(lat=config.EMERGENCY_CENTER[0], lng=config.EMERGENCY_CENTER[1])
        self.radius_km = config.EMERGENCY_RADIUS_KM if radius_km is None else radius_km
        disabled = self.slot_manager.activate_emergency_mode(self.center, self.radius_km)
        self.evacuated = [v.id for v in self.vehicle_manager.evacuate_area(self.center, self.radius_km)]
        logger.info("Emergency at (%.4f, %.4f) r=%.2fkm: %d slots, %d vehicles",
                    self.center.lat, self.center.lng, self.radius_km, len(disabled), len(self.evacuated))
        return EmergencyReport(active=True, disabledSlots=disabled, evacuatedVehicles=list(self.evacuated))

    def deactivate(self) -> EmergencyReport:
        restored = self.slot_manager.deactivate_emergency_mode()
        self.center = None
        self.radius_km = None
        self.evacuated = []
        return EmergencyReport(active=False, disabledSlots=[], evacuatedVehicles=[], restoredSlots=restored)

    def reset(self):
        """Forgets the area without touching slots; the slot manager is cleared separately."""
        self.center = None
        self.radius_km = None
        self.evacuated = []

    def report(self) -> EmergencyReport:
        locked = [s.id for s in self.slot_manager.get_all_slots() if s.id in self.slot_manager.locked]
        return EmergencyReport(active=self.active, disabledSlots=locked, evacuatedVehicles=list(self.evacuated))

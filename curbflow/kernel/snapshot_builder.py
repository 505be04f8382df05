from typing import List
from curbflow.domain.models import ParkingSlot, SimulationEvent, SimulationSnapshot, Vehicle
from curbflow.domain.state import SimulationState

class SnapshotBuilder:
    def build(self, state: SimulationState, vehicles: List[Vehicle], slots: List[ParkingSlot],
              events: List[SimulationEvent]) -> SimulationSnapshot:
        # Records are replaced, never mutated, so copying the lists is enough
        return SimulationSnapshot(
            tick=state.tick_id,
            currentTime=state.current_time,
            vehicles=list(vehicles),
            slots=list(slots),
            events=list(events),
        )

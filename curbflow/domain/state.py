from datetime import datetime
from pydantic import BaseModel
from curbflow.domain.models import EnginePhase

class SimulationState(BaseModel):
    """Clock and lifecycle of one engine. Only the engine writes to it."""

    tick_id: int = 0
    current_time: datetime
    speed: int = 1
    phase: EnginePhase = EnginePhase.STOPPED

    @property
    def running(self) -> bool:
        return self.phase == EnginePhase.RUNNING

import itertools
from datetime import datetime
from typing import Any, Dict, Optional

from curbflow.domain.models import Coordinate, EventType, Severity, SimulationEvent

class EventFactory:
    """Builds SimulationEvents with ids unique to one engine."""

    def __init__(self, prefix: str = "event"):
        self.prefix = prefix
        self._seq = itertools.count(1)

    def make(self, type: EventType, severity: Severity, title: str, description: str,
             timestamp: datetime, location: Optional[Coordinate] = None,
             data: Optional[Dict[str, Any]] = None) -> SimulationEvent:
        return SimulationEvent(
            id=f"{self.prefix}-{next(self._seq)}",
            type=type,
            timestamp=timestamp,
            severity=severity,
            title=title,
            description=description,
            location=location,
            data=data,
            autoResolved=severity == Severity.INFO,
        )

    def reset(self):
        self._seq = itertools.count(1)

    def system_alert(self, severity: Severity, title: str, description: str, timestamp: datetime,
                     data: Optional[Dict[str, Any]] = None) -> SimulationEvent:
        return self.make(EventType.SYSTEM_ALERT, severity, title, description, timestamp, data=data)

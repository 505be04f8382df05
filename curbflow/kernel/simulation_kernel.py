import asyncio
import logging
import math
import random
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional

from curbflow.application.commands import Command
from curbflow.arbitration.emergency_arbitrator import EmergencyArbitrator
from curbflow.domain import config, transitions
from curbflow.domain.config import SimulationConfig
from curbflow.domain.events import EventFactory
from curbflow.domain.graph import RoadNetwork
from curbflow.domain.locations import (
    ALL_LOCATIONS, COMMERCIAL_AREAS, GOVERNMENT_COMPLEX, PICKUP_ZONES, RESIDENTIAL_AREAS, road_section_for
)
from curbflow.domain.models import (
    Coordinate, Direction, EmergencyReport, EnginePhase, EngineStatus, EventType, InitialState, ParkingSlot,
    Severity, SimulationEvent, SimulationSnapshot, SimulationStats, SlotStatus, SlotType, Vehicle, VehicleStatus
)
from curbflow.domain.state import SimulationState
from curbflow.domain.time_patterns import TimePatternTable
from curbflow.kernel.command_queue import CommandQueue
from curbflow.kernel.scheduler import AsyncioScheduler, Scheduler
from curbflow.kernel.snapshot_builder import SnapshotBuilder
from curbflow.managers.slot_manager import SlotManager
from curbflow.managers.vehicle_manager import VehicleManager
from curbflow.systems.congestion_system import CongestionAnalyzer
from curbflow.systems.motion_system import MotionModel
from curbflow.systems.slot_system import SlotSystem
from curbflow.systems.vehicle_system import VehicleSystem

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[SimulationSnapshot], None]
ProgressCallback = Callable[[datetime, float], None]

class SimulationEngine:
    """Owns the simulated clock and runs the tick pipeline.

    Each tick runs motion, fleet dispatch, congestion and slot dynamics
    in that order. A failing stage becomes an ``error`` system alert and
    the remaining stages still run.
    """

    def __init__(self, sim_config: Optional[SimulationConfig] = None, scheduler: Optional[Scheduler] = None,
                 road_network: Optional[RoadNetwork] = None,
                 congestion_clock: Optional[Callable[[], float]] = None):
        self.config = sim_config or SimulationConfig()
        self.rng = random.Random(self.config.seed)
        self.scheduler = scheduler or AsyncioScheduler(self.config.tick_interval)
        self.state = SimulationState(
            current_time=self.config.start_time or datetime.now().replace(microsecond=0),
            speed=self.config.speed,
        )
        self.events = EventFactory()
        self.event_log: Deque[SimulationEvent] = deque(maxlen=config.MAX_EVENT_LOG)
        self.command_queue = CommandQueue()
        self.snapshot_builder = SnapshotBuilder()

        self.road_network = road_network or RoadNetwork()
        self.time_patterns = TimePatternTable()
        self.motion = MotionModel(self.rng, lane_change_chance=self.config.lane_change_chance)
        self.fleet = VehicleSystem(self.road_network, self.rng, self.events)
        self.slot_dynamics = SlotSystem(self.rng)
        analyzer_args = dict(
            update_interval=self.config.congestion_interval,
            occupancy_weight=self.config.occupancy_weight,
            speed_weight=self.config.speed_weight,
            rush_hour_factor=self.config.rush_hour_factor,
            lunch_factor=self.config.lunch_factor,
            late_night_factor=self.config.late_night_factor,
        )
        if congestion_clock is not None:
            analyzer_args["clock"] = congestion_clock
        self.congestion = CongestionAnalyzer(**analyzer_args)
        self.vehicle_manager = VehicleManager(self.rng, self.road_network, clock=self.get_current_time)
        self.slot_manager = SlotManager(self.rng, clock=self.get_current_time,
                                        max_dynamic_slots=self.config.max_dynamic_slots)
        self.emergency = EmergencyArbitrator(self.slot_manager, self.vehicle_manager)

        self.congestion_map: Dict[str, float] = {}
        self.initialized = False
        self._callback: Optional[UpdateCallback] = None
        self._tick_events: List[SimulationEvent] = []
        self._alert_levels: Dict[str, str] = {}
        self._in_tick = False
        # Bumped by every fast-forward and by stop(); a run only ticks while its own generation is current
        self._ff_generation = 0
        self._resume_phase = EnginePhase.STOPPED

    # Setup

    def initialize(self) -> InitialState:
        self.rng.seed(self.config.seed)
        self.state.tick_id = 0
        self.state.current_time = self.config.start_time or self.state.current_time
        self.vehicle_manager.clear()
        self.slot_manager.clear()
        self.event_log.clear()
        self.command_queue.clear()
        self.events.reset()
        self.congestion.reset()
        self.emergency.reset()
        self.congestion_map = {}
        self._alert_levels = {}
        self._tick_events = []

        for vehicle in self._generate_vehicles(self.config.vehicle_count):
            self.vehicle_manager.register_vehicle(vehicle)
        for slot in self._generate_slots(self.config.slot_count):
            self.slot_manager.register_slot(slot)

        self.initialized = True
        logger.info("Engine initialized (seed=%d): %d vehicles, %d slots",
                    self.config.seed, self.vehicle_manager.get_vehicle_count(), len(self.slot_manager.slots))
        return InitialState(vehicles=self.get_vehicles(), slots=self.get_slots())

    def _random_location(self) -> Coordinate:
        return self.rng.choice(ALL_LOCATIONS).model_copy()

    def _offset(self, location: Coordinate) -> Coordinate:
        spread = config.SLOT_OFFSET_DEGREES
        return Coordinate(lat=location.lat + self.rng.uniform(-spread, spread),
                          lng=location.lng + self.rng.uniform(-spread, spread))

    def _generate_vehicles(self, count: int) -> List[Vehicle]:
        now = self.state.current_time
        vehicles = []
        for i in range(1, count + 1):
            vehicle = Vehicle(
                id=f"vehicle-{i}",
                position=self._random_location(),
                status=VehicleStatus.MOVING if self.rng.random() > 0.7 else VehicleStatus.IDLE,
                battery=self.rng.uniform(70.0, 100.0),
                totalDistance=self.rng.uniform(0.0, 500.0),
                tripCount=self.rng.randrange(50),
                efficiency=self.rng.uniform(80.0, 100.0),
                lastUpdate=now,
            )
            vehicle = self.motion.place(vehicle)
            if vehicle.status == VehicleStatus.MOVING:
                destination = self._random_location()
                vehicle = vehicle.model_copy(update={
                    "destination": destination,
                    "route": self.road_network.find_path(vehicle.position, destination),
                    "speed": self.rng.uniform(20.0, 60.0),
                })
            vehicles.append(vehicle)
        return vehicles

    def _generate_slots(self, count: int) -> List[ParkingSlot]:
        government = min(count, math.ceil(count * 0.3))
        residential = min(count - government, math.ceil(count * 0.4))
        curbside = PICKUP_ZONES + COMMERCIAL_AREAS

        slots = []
        for i in range(government):
            base = GOVERNMENT_COMPLEX[i % len(GOVERNMENT_COMPLEX)]
            slots.append(self.build_slot(self._offset(base), SlotType.STATIC, f"slot-gov-{i}", seed_status=True))
        for i in range(residential):
            base = RESIDENTIAL_AREAS[i % len(RESIDENTIAL_AREAS)]
            slots.append(self.build_slot(self._offset(base), SlotType.DYNAMIC, f"slot-res-{i}", seed_status=True))
        for i in range(count - government - residential):
            base = curbside[i % len(curbside)]
            slots.append(self.build_slot(self._offset(base), SlotType.DYNAMIC, f"slot-pickup-{i}", seed_status=True))
        return slots

    def build_slot(self, position: Coordinate, slot_type: SlotType = SlotType.DYNAMIC,
                   slot_id: Optional[str] = None, seed_status: bool = False) -> ParkingSlot:
        now = self.state.current_time
        if slot_type == SlotType.STATIC:
            priority = self.rng.randint(1, 3)
        else:
            priority = self.rng.randint(3, 7)
        slot = ParkingSlot(
            id=slot_id or self.slot_manager.new_slot_id("slot-user"),
            position=position,
            type=slot_type,
            priority=priority,
            capacity=self.rng.randint(2, 4),
            roadSection=road_section_for(position),
            direction=self.rng.choice(list(Direction)),
            createdAt=now,
        )
        if not seed_status:
            return slot

        if self.rng.random() > 0.3:
            slot = slot.model_copy(update={"lastUsed": now - timedelta(seconds=self.rng.uniform(0, 86400))})
        weights = (0.6, 0.3, 0.1) if slot_type == SlotType.DYNAMIC else (0.7, 0.2, 0.1)
        status = self.rng.choices((SlotStatus.AVAILABLE, SlotStatus.OCCUPIED, SlotStatus.RESERVED), weights)[0]
        if status == SlotStatus.OCCUPIED:
            return transitions.occupy_slot(slot, slot.lastUsed or now)
        if status == SlotStatus.RESERVED:
            return transitions.reserve_slot(slot)
        return slot

    # Lifecycle

    def start(self, callback: Optional[UpdateCallback] = None):
        if not self.initialized:
            self.initialize()
        if self.state.phase == EnginePhase.RUNNING:
            return

        self._callback = callback
        if self.state.phase == EnginePhase.FAST_FORWARDING:
            self._resume_phase = EnginePhase.RUNNING
        else:
            self.state.phase = EnginePhase.RUNNING
        self.scheduler.start(self._on_scheduled_tick)
        logger.info("Simulation started at speed x%d", self.state.speed)

    def stop(self):
        if self.state.phase == EnginePhase.FAST_FORWARDING:
            self._ff_generation += 1
        was_stopped = self.state.phase == EnginePhase.STOPPED
        self.scheduler.stop()
        self.state.phase = EnginePhase.STOPPED
        self._resume_phase = EnginePhase.STOPPED
        self._callback = None
        if not was_stopped:
            logger.info("Simulation stopped at tick %d", self.state.tick_id)

    def set_speed(self, speed: int):
        if speed not in config.ALLOWED_SPEEDS:
            raise ValueError(f"speed must be one of {config.ALLOWED_SPEEDS}, got {speed}")
        self.state.speed = speed
        logger.info("Speed set to x%d", speed)

    def is_running(self) -> bool:
        return self.state.running

    def submit(self, command: Command):
        """Queues a command for the next tick while ticking, otherwise runs it right away."""
        if self.state.phase == EnginePhase.STOPPED:
            return command.execute(self)
        self.command_queue.add(command)
        return None

    # Tick pipeline

    @property
    def tick_dt(self) -> float:
        return self.config.tick_interval * self.state.speed

    def _on_scheduled_tick(self):
        if self.state.phase != EnginePhase.RUNNING or self._in_tick:
            return
        snapshot = self.run_tick()
        if self._callback is not None:
            try:
                self._callback(snapshot)
            except Exception:
                logger.exception("Update callback failed at tick %d", snapshot.tick)

    def run_tick(self, dt: Optional[float] = None) -> SimulationSnapshot:
        if self._in_tick:
            raise RuntimeError("tick already in progress")
        if not self.initialized:
            self.initialize()

        self._in_tick = True
        self._tick_events = []
        try:
            for cmd in self.command_queue.drain():
                self._run_stage("command", cmd.execute, self)

            step = self.tick_dt if dt is None else dt
            self.state.current_time += timedelta(seconds=step)
            self.state.tick_id += 1
            now = self.state.current_time

            self._run_stage("motion", self._motion_stage, step, now)
            self._run_stage("fleet", self._fleet_stage, step, now)
            self._run_stage("congestion", self._congestion_stage, now)
            self._run_stage("slots", self._slot_stage, step, now)

            return self.snapshot_builder.build(self.state, self.get_vehicles(), self.get_slots(), self._tick_events)
        finally:
            self._in_tick = False

    def _run_stage(self, name: str, stage: Callable, *args) -> bool:
        try:
            stage(*args)
            return True
        except Exception as exc:
            logger.exception("%s stage failed at tick %d", name, self.state.tick_id)
            self._record(self.events.system_alert(
                Severity.ERROR, f"{name.capitalize()} stage failed", f"{type(exc).__name__}: {exc}",
                self.state.current_time, data={"stage": name, "tick": self.state.tick_id},
            ))
            return False

    def _motion_stage(self, dt: float, now: datetime):
        speed_factor = self.time_patterns.lookup(now.hour).speedFactor
        vehicles = self.motion.step(self.vehicle_manager.get_all_vehicles(), dt, speed_factor,
                                    congestion_at=self.congestion.score_at)
        self.vehicle_manager.replace_all(vehicles)

    def _fleet_stage(self, dt: float, now: datetime):
        vehicles, emitted = self.fleet.update(self.vehicle_manager.get_all_vehicles(), dt, now)
        self.vehicle_manager.replace_all(vehicles)
        for event in emitted:
            self._record(event)

    def _congestion_stage(self, now: datetime):
        self.congestion_map = self.congestion.analyze_congestion(self.vehicle_manager.get_all_vehicles(), now)
        levels = {a.segmentId: a.level for a in self.congestion.check_congestion_alerts()}
        for segment_id, level in levels.items():
            if level in ("high", "critical") and self._alert_levels.get(segment_id) != level:
                self._record(self.events.make(
                    EventType.TRAFFIC_INCIDENT,
                    Severity.CRITICAL if level == "critical" else Severity.WARNING,
                    "Congestion rising",
                    f"Segment {segment_id} congestion is {level} ({self.congestion_map.get(segment_id, 0.0):.0f})",
                    now, data={"segmentId": segment_id, "level": level},
                ))
        self._alert_levels = levels

    def _slot_stage(self, dt: float, now: datetime):
        demand = self.time_patterns.get_parking_demand(now.hour)
        changes = self.slot_dynamics.step(self.slot_manager.get_all_slots(), dt, demand, now)
        self.slot_manager.apply_changes(changes)
        if self.rng.random() < self.config.slot_allocation_chance:
            touched = self.slot_manager.allocate_dynamic_slots(demand, now.hour)
            if touched:
                logger.debug("Reallocated %d dynamic slots (demand %.2f)", len(touched), demand)

    def _record(self, event: SimulationEvent):
        self.event_log.append(event)
        self._tick_events.append(event)

    # Fast-forward

    async def fast_forward(self, hours: float, on_progress: Optional[ProgressCallback] = None):
        """Runs every intermediate tick until the clock has advanced by ``hours``.

        Yields to the event loop after each batch so ``stop()`` can cancel
        between ticks. Faults inside the run become one critical system
        alert and stop the engine instead of propagating.

        Raises ``ValueError`` for non-positive hours and ``RuntimeError``
        when another fast-forward is running. Both are caller errors and
        are raised before any tick runs or any state changes.
        """
        if hours <= 0:
            raise ValueError("hours must be positive")
        if self.state.phase == EnginePhase.FAST_FORWARDING:
            raise RuntimeError("fast-forward already in progress")
        if not self.initialized:
            self.initialize()

        self._resume_phase = self.state.phase
        self._ff_generation += 1
        generation = self._ff_generation
        self.state.phase = EnginePhase.FAST_FORWARDING

        start = self.state.current_time
        target = start + timedelta(hours=hours)
        total = (target - start).total_seconds()
        ticks = 0
        logger.info("Fast-forward %.2fh from %s", hours, start.isoformat())

        try:
            while self.state.current_time < target:
                if generation != self._ff_generation:
                    logger.info("Fast-forward cancelled at %s", self.state.current_time.isoformat())
                    return
                remaining = (target - self.state.current_time).total_seconds()
                self.run_tick(min(self.config.fast_forward_step, remaining))
                ticks += 1
                if ticks % self.config.fast_forward_batch == 0 or self.state.current_time >= target:
                    elapsed = (self.state.current_time - start).total_seconds()
                    self._report_progress(on_progress, elapsed / total * 100.0)
                    await asyncio.sleep(0)
        except Exception as exc:
            logger.exception("Fast-forward aborted at %s", self.state.current_time.isoformat())
            self.event_log.append(self.events.system_alert(
                Severity.CRITICAL, "Fast-forward aborted", f"{type(exc).__name__}: {exc}",
                self.state.current_time, data={"tick": self.state.tick_id},
            ))
            self.stop()
            return

        if generation != self._ff_generation:
            return
        self.state.phase = self._resume_phase
        logger.info("Fast-forward finished after %d ticks at %s", ticks, self.state.current_time.isoformat())

    def _report_progress(self, on_progress: Optional[ProgressCallback], percent: float):
        if on_progress is None:
            return
        try:
            on_progress(self.state.current_time, min(100.0, percent))
        except Exception:
            logger.exception("Progress callback failed")

    # Queries

    def get_vehicles(self) -> List[Vehicle]:
        return self.vehicle_manager.get_all_vehicles()

    def get_slots(self) -> List[ParkingSlot]:
        return self.slot_manager.get_all_slots()

    def get_current_time(self) -> datetime:
        return self.state.current_time

    def get_events(self, limit: int = config.MAX_EVENT_LOG) -> List[SimulationEvent]:
        return list(self.event_log)[-limit:] if limit > 0 else []

    def get_snapshot(self) -> SimulationSnapshot:
        return self.snapshot_builder.build(self.state, self.get_vehicles(), self.get_slots(), self.get_events())

    def get_status(self) -> EngineStatus:
        return EngineStatus(phase=self.state.phase, speed=self.state.speed,
                            currentTime=self.state.current_time, tick=self.state.tick_id)

    def get_stats(self) -> SimulationStats:
        slot_stats = self.slot_manager.generate_slot_stats()
        return SimulationStats(
            vehicleStats=self.vehicle_manager.generate_vehicle_stats(),
            slotStats=slot_stats,
            averageCongestion=self.congestion.get_average_congestion(),
            trafficFlowIndex=max(20.0, 100.0 - slot_stats.utilizationRate * 0.5),
        )

    # Control operations

    def create_slot(self, position: Coordinate, slot_type: SlotType = SlotType.DYNAMIC) -> ParkingSlot:
        slot = self.build_slot(position, slot_type)
        self.slot_manager.register_slot(slot)
        return slot

    def remove_slot(self, slot_id: str) -> bool:
        return self.slot_manager.remove_slot(slot_id)

    def evacuate_area(self, center: Coordinate, radius_km: float) -> List[Vehicle]:
        return self.vehicle_manager.evacuate_area(center, radius_km)

    def activate_emergency_mode(self, center: Optional[Coordinate] = None,
                                radius_km: Optional[float] = None) -> EmergencyReport:
        was_active = self.emergency.active
        report = self.emergency.activate(center, radius_km)
        if not was_active:
            self.event_log.append(self.events.make(
                EventType.EMERGENCY_ALERT, Severity.CRITICAL, "Emergency mode activated",
                f"{len(report.disabledSlots)} slots disabled, {len(report.evacuatedVehicles)} vehicles evacuated",
                self.state.current_time, location=self.emergency.center,
                data={"radiusKm": self.emergency.radius_km},
            ))
        return report

    def deactivate_emergency_mode(self) -> EmergencyReport:
        was_active = self.emergency.active
        report = self.emergency.deactivate()
        if was_active:
            self.event_log.append(self.events.make(
                EventType.EMERGENCY_ALERT, Severity.INFO, "Emergency mode cleared",
                f"{len(report.restoredSlots)} slots restored", self.state.current_time,
            ))
        return report

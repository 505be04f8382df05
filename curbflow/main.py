import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from curbflow.application.commands import (
    ActivateEmergencyCommand, CreateSlotCommand, DeactivateEmergencyCommand, EvacuateAreaCommand, RemoveSlotCommand
)
from curbflow.domain.models import (
    CongestionAlert, CongestionRecord, EmergencyReport, EmergencyRequest, EnginePhase, EngineStatus, EvacuationRequest,
    FastForwardRequest, ParkingSlot, RoadSegment, SimulationEvent, SimulationSnapshot, SimulationStats,
    SlotCreate, SlotStats, SpeedUpdate, Vehicle, VehicleStats
)
from curbflow.kernel.simulation_kernel import SimulationEngine

logger = logging.getLogger(__name__)

def get_engine(request: Request) -> SimulationEngine:
    return request.app.state.engine

def create_app(engine: Optional[SimulationEngine] = None, autostart: bool = True) -> FastAPI:
    """Composition root: one engine per app, reachable through ``app.state.engine``."""
    engine = engine or SimulationEngine()
    if not engine.initialized:
        engine.initialize()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: begin real-time ticking
        if autostart:
            engine.start()
        yield
        # Shutdown
        engine.stop()
        task = app.state.fast_forward_task
        if task is not None and not task.done():
            task.cancel()

    app = FastAPI(title="Curbflow Simulation", lifespan=lifespan)
    app.state.engine = engine
    app.state.fast_forward_task = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def read_root():
        return {"status": "Curbflow simulation backend running"}

    # Simulation control

    @app.get("/api/snapshot", response_model=SimulationSnapshot)
    async def get_snapshot(request: Request):
        """Returns vehicles, slots and recent events at the current simulated time"""
        return get_engine(request).get_snapshot()

    @app.get("/api/simulation/status", response_model=EngineStatus)
    async def get_status(request: Request):
        return get_engine(request).get_status()

    @app.post("/api/simulation/start", response_model=EngineStatus)
    async def start_simulation(request: Request):
        sim = get_engine(request)
        sim.start()
        return sim.get_status()

    @app.post("/api/simulation/stop", response_model=EngineStatus)
    async def stop_simulation(request: Request):
        sim = get_engine(request)
        sim.stop()
        return sim.get_status()

    @app.post("/api/simulation/speed", response_model=EngineStatus)
    async def set_speed(update: SpeedUpdate, request: Request):
        sim = get_engine(request)
        sim.set_speed(update.speed)
        return sim.get_status()

    @app.post("/api/simulation/fast-forward", status_code=202)
    async def fast_forward(ff: FastForwardRequest, request: Request):
        """Starts a fast-forward in the background; poll the status endpoint for progress"""
        sim = get_engine(request)
        if sim.state.phase == EnginePhase.FAST_FORWARDING:
            raise HTTPException(status_code=409, detail="Fast-forward already in progress")
        request.app.state.fast_forward_task = asyncio.create_task(sim.fast_forward(ff.hours))
        return {"status": "Fast-forward started", "hours": ff.hours, "from": sim.get_current_time()}

    @app.get("/api/stats", response_model=SimulationStats)
    async def get_stats(request: Request):
        return get_engine(request).get_stats()

    @app.get("/api/events", response_model=List[SimulationEvent])
    async def get_events(request: Request, limit: int = 50):
        return get_engine(request).get_events(limit)

    # Slots

    @app.get("/api/slots", response_model=List[ParkingSlot])
    async def get_slots(request: Request):
        return get_engine(request).get_slots()

    @app.post("/api/slots", response_model=ParkingSlot, status_code=201)
    async def create_slot(payload: SlotCreate, request: Request):
        """Creates a slot; while ticking it is registered on the next tick"""
        sim = get_engine(request)
        slot = sim.build_slot(payload.position, payload.type)
        sim.submit(CreateSlotCommand(slot))
        return slot

    @app.get("/api/slots/stats", response_model=SlotStats)
    async def get_slot_stats(request: Request):
        return get_engine(request).slot_manager.generate_slot_stats()

    @app.get("/api/slots/efficiency", response_model=Dict[str, float])
    async def get_slot_efficiency(request: Request):
        return get_engine(request).slot_manager.analyze_slot_efficiency()

    @app.get("/api/slots/{slot_id}", response_model=ParkingSlot)
    async def get_slot(slot_id: str, request: Request):
        slot = get_engine(request).slot_manager.get_slot(slot_id)
        if not slot:
            raise HTTPException(status_code=404, detail="Slot not found")
        return slot

    @app.delete("/api/slots/{slot_id}")
    async def delete_slot(slot_id: str, request: Request):
        sim = get_engine(request)
        if not sim.slot_manager.get_slot(slot_id):
            raise HTTPException(status_code=404, detail="Slot not found")
        sim.submit(RemoveSlotCommand(slot_id))
        return {"status": "Slot removed", "slotId": slot_id}

    # Vehicles

    @app.get("/api/vehicles", response_model=List[Vehicle])
    async def get_vehicles(request: Request):
        return get_engine(request).get_vehicles()

    @app.get("/api/vehicles/stats", response_model=VehicleStats)
    async def get_vehicle_stats(request: Request):
        return get_engine(request).vehicle_manager.generate_vehicle_stats()

    @app.get("/api/vehicles/{vehicle_id}", response_model=Vehicle)
    async def get_vehicle(vehicle_id: str, request: Request):
        vehicle = get_engine(request).vehicle_manager.get_vehicle(vehicle_id)
        if not vehicle:
            raise HTTPException(status_code=404, detail="Vehicle not found")
        return vehicle

    @app.post("/api/vehicles/evacuate")
    async def evacuate_vehicles(payload: EvacuationRequest, request: Request):
        sim = get_engine(request)
        evacuated = sim.submit(EvacuateAreaCommand(payload.center, payload.radiusKm))
        if evacuated is None:
            return {"status": "Evacuation queued", "vehicleIds": []}
        return {"status": "Evacuated", "vehicleIds": [v.id for v in evacuated]}

    # Emergency

    @app.post("/api/emergency/activate", response_model=EmergencyReport)
    async def activate_emergency(request: Request, payload: Optional[EmergencyRequest] = None):
        sim = get_engine(request)
        payload = payload or EmergencyRequest()
        report = sim.submit(ActivateEmergencyCommand(payload.center, payload.radiusKm))
        # Queued while ticking: report the current state, the change lands next tick
        return report or sim.emergency.report()

    @app.post("/api/emergency/deactivate", response_model=EmergencyReport)
    async def deactivate_emergency(request: Request):
        sim = get_engine(request)
        report = sim.submit(DeactivateEmergencyCommand())
        return report or sim.emergency.report()

    @app.get("/api/emergency/state", response_model=EmergencyReport)
    async def get_emergency_state(request: Request):
        return get_engine(request).emergency.report()

    # Congestion

    @app.get("/api/congestion")
    async def get_congestion(request: Request):
        analyzer = get_engine(request).congestion
        return {
            "segments": analyzer.get_current_congestion_map(),
            "average": analyzer.get_average_congestion(),
            "mostCongested": analyzer.get_most_congested_segment(),
            "recommendedRoute": analyzer.recommend_optimal_route(),
        }

    @app.get("/api/congestion/alerts", response_model=List[CongestionAlert])
    async def get_congestion_alerts(request: Request):
        return get_engine(request).congestion.check_congestion_alerts()

    @app.get("/api/congestion/segments/{segment_id}", response_model=RoadSegment)
    async def get_segment(segment_id: str, request: Request):
        segment = get_engine(request).congestion.get_segment_details(segment_id)
        if not segment:
            raise HTTPException(status_code=404, detail="Segment not found")
        return segment

    @app.get("/api/congestion/history", response_model=List[CongestionRecord])
    async def get_congestion_history(request: Request, segment_id: Optional[str] = None, limit: int = 20):
        return get_engine(request).congestion.get_history(segment_id, limit)

    @app.get("/api/traffic/patterns")
    async def get_traffic_patterns(request: Request):
        """Hourly congestion profile used to scale speeds and parking demand"""
        return get_engine(request).time_patterns.get_traffic_chart()

    return app

logging.basicConfig(level=logging.INFO)
app = create_app()

import asyncio
import unittest
from datetime import datetime, timedelta
from unittest.mock import patch

from curbflow.application.commands import SetSpeedCommand
from curbflow.domain.config import SimulationConfig
from curbflow.domain.models import (
    Coordinate, EnginePhase, EventType, Severity, SlotStatus, SlotType, VehicleStatus
)
from curbflow.kernel.scheduler import VirtualScheduler
from curbflow.kernel.simulation_kernel import SimulationEngine

START = datetime(2024, 3, 4, 10, 0)

def make_engine(seed: int = 7, **overrides) -> SimulationEngine:
    sim_config = SimulationConfig(seed=seed, start_time=START, congestion_interval=0, **overrides)
    engine = SimulationEngine(sim_config, scheduler=VirtualScheduler())
    engine.initialize()
    return engine

def assert_slot_invariants(test: unittest.TestCase, engine: SimulationEngine):
    for slot in engine.get_slots():
        test.assertTrue(0 <= slot.occupiedCount <= slot.capacity, slot.id)
        if slot.status not in (SlotStatus.DISABLED, SlotStatus.MAINTENANCE):
            test.assertEqual(slot.status == SlotStatus.AVAILABLE, slot.occupiedCount == 0, slot.id)

class TestInitialization(unittest.TestCase):
    def test_population(self):
        engine = SimulationEngine(SimulationConfig(seed=7, start_time=START), scheduler=VirtualScheduler())
        initial = engine.initialize()
        self.assertEqual(len(initial.vehicles), 50)
        self.assertEqual(len(initial.slots), 120)
        self.assertEqual(sum(1 for s in initial.slots if s.type == SlotType.STATIC), 36)
        self.assertEqual(sum(1 for s in initial.slots if s.id.startswith("slot-res-")), 48)
        self.assertEqual(engine.state.tick_id, 0)
        self.assertEqual(engine.state.phase, EnginePhase.STOPPED)

    def test_moving_vehicles_have_routes(self):
        engine = make_engine()
        for vehicle in engine.get_vehicles():
            if vehicle.status == VehicleStatus.MOVING:
                self.assertIsNotNone(vehicle.destination)
                self.assertTrue(vehicle.route)
            self.assertTrue(70.0 <= vehicle.battery <= 100.0)

    def test_seeded_slots_respect_occupancy_rule(self):
        assert_slot_invariants(self, make_engine())

class TestTick(unittest.TestCase):
    def setUp(self):
        self.engine = make_engine()

    def test_tick_advances_clock(self):
        snapshot = self.engine.run_tick()
        self.assertEqual(snapshot.tick, 1)
        self.assertEqual(snapshot.currentTime, START + timedelta(seconds=0.1))

        self.engine.set_speed(10)
        snapshot = self.engine.run_tick()
        self.assertEqual(snapshot.currentTime, START + timedelta(seconds=1.1))

    def test_explicit_step(self):
        self.engine.run_tick(5.0)
        self.assertEqual(self.engine.get_current_time(), START + timedelta(seconds=5))

    def test_invalid_speed(self):
        with self.assertRaises(ValueError):
            self.engine.set_speed(3)
        self.assertEqual(self.engine.state.speed, 1)

    def test_invariants_hold_over_many_ticks(self):
        for _ in range(200):
            self.engine.run_tick(1.0)
        assert_slot_invariants(self, self.engine)
        for vehicle in self.engine.get_vehicles():
            self.assertTrue(0.0 <= vehicle.battery <= 100.0)
            self.assertGreaterEqual(vehicle.speed, 0.0)

    def test_failing_stage_is_isolated(self):
        with patch.object(self.engine.congestion, "analyze_congestion", side_effect=ValueError("boom")):
            snapshot = self.engine.run_tick()

        self.assertEqual(snapshot.tick, 1)
        alerts = [e for e in snapshot.events if e.type == EventType.SYSTEM_ALERT]
        self.assertEqual(len(alerts), 1)
        self.assertEqual(alerts[0].severity, Severity.ERROR)
        self.assertEqual(alerts[0].data["stage"], "congestion")

        # Next tick is clean again
        snapshot = self.engine.run_tick()
        self.assertFalse([e for e in snapshot.events if e.type == EventType.SYSTEM_ALERT])

    def test_tick_is_not_reentrant(self):
        def reenter(*args):
            self.engine.run_tick()

        with patch.object(self.engine, "_fleet_stage", side_effect=reenter):
            snapshot = self.engine.run_tick()
        self.assertEqual(snapshot.tick, 1)
        self.assertEqual(snapshot.events[0].data["stage"], "fleet")
        self.assertIn("RuntimeError", snapshot.events[0].description)

class TestLifecycle(unittest.TestCase):
    def setUp(self):
        self.engine = make_engine()
        self.scheduler = self.engine.scheduler

    def test_scheduled_ticks_reach_callback(self):
        seen = []
        self.engine.start(seen.append)
        self.assertTrue(self.engine.is_running())
        self.scheduler.advance(3)
        self.assertEqual([s.tick for s in seen], [1, 2, 3])

        self.engine.stop()
        self.scheduler.advance(3)
        self.assertEqual(len(seen), 3)
        self.assertEqual(self.engine.state.phase, EnginePhase.STOPPED)

    def test_stop_is_idempotent(self):
        self.engine.stop()
        self.engine.stop()
        self.assertEqual(self.engine.state.phase, EnginePhase.STOPPED)

    def test_failing_callback_does_not_stop_ticking(self):
        def explode(snapshot):
            raise RuntimeError("listener gone")

        self.engine.start(explode)
        self.scheduler.advance(2)
        self.assertEqual(self.engine.state.tick_id, 2)
        self.assertTrue(self.engine.is_running())

    def test_submit_runs_immediately_when_stopped(self):
        self.assertEqual(self.engine.submit(SetSpeedCommand(5)), 5)
        self.assertEqual(self.engine.state.speed, 5)

    def test_submit_queues_while_running(self):
        self.engine.start()
        self.assertIsNone(self.engine.submit(SetSpeedCommand(30)))
        self.assertEqual(len(self.engine.command_queue), 1)
        self.assertEqual(self.engine.state.speed, 1)

        self.scheduler.advance(1)
        self.assertEqual(self.engine.state.speed, 30)
        self.assertEqual(len(self.engine.command_queue), 0)
        # The command lands before the clock moves
        self.assertEqual(self.engine.get_current_time(), START + timedelta(seconds=3))

class TestFastForward(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.engine = make_engine()

    async def test_one_hour(self):
        progress = []
        await self.engine.fast_forward(1, lambda now, percent: progress.append(percent))

        self.assertEqual(self.engine.get_current_time(), START + timedelta(hours=1))
        self.assertEqual(self.engine.state.tick_id, 720)
        self.assertEqual(progress[-1], 100.0)
        self.assertEqual(len(progress), 12)
        self.assertEqual(self.engine.state.phase, EnginePhase.STOPPED)
        assert_slot_invariants(self, self.engine)

    async def test_fractional_hours_land_on_target(self):
        await self.engine.fast_forward(0.0042)
        self.assertEqual(self.engine.get_current_time(), START + timedelta(hours=0.0042))

    async def test_rejects_non_positive_hours(self):
        with self.assertRaises(ValueError):
            await self.engine.fast_forward(0)
        self.assertEqual(self.engine.state.tick_id, 0)

    async def test_rejects_concurrent_run(self):
        self.engine.state.phase = EnginePhase.FAST_FORWARDING
        with self.assertRaises(RuntimeError):
            await self.engine.fast_forward(1)
        self.assertEqual(self.engine.state.tick_id, 0)

    async def test_stop_cancels(self):
        calls = []

        def on_progress(now, percent):
            calls.append(percent)
            self.engine.stop()

        await self.engine.fast_forward(1, on_progress)

        self.assertEqual(len(calls), 1)
        self.assertEqual(self.engine.state.phase, EnginePhase.STOPPED)
        self.assertLess(self.engine.get_current_time(), START + timedelta(hours=1))
        self.assertEqual(self.engine.state.tick_id, 60)
        assert_slot_invariants(self, self.engine)

    async def test_restart_after_stop_is_not_cancelled_by_old_run(self):
        first = asyncio.ensure_future(self.engine.fast_forward(1))
        while self.engine.state.tick_id == 0:
            await asyncio.sleep(0)
        self.engine.stop()
        self.engine.start()

        before = self.engine.get_current_time()
        await self.engine.fast_forward(0.5)
        await first

        self.assertEqual(self.engine.get_current_time() - before, timedelta(minutes=30))
        self.assertEqual(self.engine.state.phase, EnginePhase.RUNNING)

    async def test_fault_stops_engine(self):
        with patch.object(self.engine, "run_tick", side_effect=RuntimeError("boom")):
            await self.engine.fast_forward(1)

        self.assertEqual(self.engine.state.phase, EnginePhase.STOPPED)
        last = self.engine.get_events(1)[0]
        self.assertEqual(last.type, EventType.SYSTEM_ALERT)
        self.assertEqual(last.severity, Severity.CRITICAL)

    async def test_resumes_running(self):
        self.engine.start()
        await self.engine.fast_forward(0.01)
        self.assertEqual(self.engine.state.phase, EnginePhase.RUNNING)
        self.engine.scheduler.advance(1)
        self.assertEqual(self.engine.state.tick_id, 9)

    async def test_scheduler_ticks_are_skipped_during_fast_forward(self):
        self.engine.start()

        def on_progress(now, percent):
            self.engine.scheduler.advance(5)

        await self.engine.fast_forward(0.1, on_progress)
        # 0.1h in 5s steps
        self.assertEqual(self.engine.state.tick_id, 72)

class TestControlOperations(unittest.TestCase):
    def setUp(self):
        self.engine = make_engine()

    def test_create_and_remove_slot(self):
        slot = self.engine.create_slot(Coordinate(lat=36.49, lng=127.27))
        self.assertTrue(slot.id.startswith("slot-user-"))
        self.assertEqual(slot.status, SlotStatus.AVAILABLE)
        self.assertEqual(len(self.engine.get_slots()), 121)

        self.assertTrue(self.engine.remove_slot(slot.id))
        self.assertFalse(self.engine.remove_slot(slot.id))
        self.assertEqual(len(self.engine.get_slots()), 120)

    def test_emergency_round_trip(self):
        report = self.engine.activate_emergency_mode()
        self.assertTrue(report.active)
        self.assertTrue(report.disabledSlots)
        for slot_id in report.disabledSlots:
            self.assertEqual(self.engine.slot_manager.get_slot(slot_id).status, SlotStatus.DISABLED)
        for vehicle_id in report.evacuatedVehicles:
            self.assertEqual(self.engine.vehicle_manager.get_vehicle(vehicle_id).status, VehicleStatus.MOVING)

        for _ in range(20):
            self.engine.run_tick(1.0)
        for slot_id in report.disabledSlots:
            self.assertEqual(self.engine.slot_manager.get_slot(slot_id).status, SlotStatus.DISABLED)

        cleared = self.engine.deactivate_emergency_mode()
        self.assertFalse(cleared.active)
        self.assertEqual(set(cleared.restoredSlots), set(report.disabledSlots))
        assert_slot_invariants(self, self.engine)

        alerts = [e for e in self.engine.get_events() if e.type == EventType.EMERGENCY_ALERT]
        self.assertEqual([e.severity for e in alerts], [Severity.CRITICAL, Severity.INFO])

    def test_repeated_activation_reports_same_slots(self):
        first = self.engine.activate_emergency_mode()
        second = self.engine.activate_emergency_mode()
        self.assertEqual(first.disabledSlots, second.disabledSlots)
        self.assertEqual(len([e for e in self.engine.get_events() if e.type == EventType.EMERGENCY_ALERT]), 1)

    def test_deactivate_without_emergency(self):
        report = self.engine.deactivate_emergency_mode()
        self.assertEqual(report.restoredSlots, [])
        self.assertEqual(self.engine.get_events(), [])

    def test_stats(self):
        stats = self.engine.get_stats()
        self.assertEqual(stats.vehicleStats.total, 50)
        self.assertEqual(stats.slotStats.total, 120)
        self.assertGreaterEqual(stats.trafficFlowIndex, 20.0)

if __name__ == '__main__':
    unittest.main()

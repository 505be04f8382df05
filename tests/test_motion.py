import random
import unittest

from curbflow.domain import config
from curbflow.domain.models import Coordinate, Vehicle, VehicleStatus
from curbflow.systems.motion_system import MotionModel

def on_lane(model: MotionModel, vehicle_id: str, lane: int, x: float, speed: float = 40.0,
            status: VehicleStatus = VehicleStatus.MOVING, **extra) -> Vehicle:
    return Vehicle(id=vehicle_id, position=Coordinate(lat=36.48, lng=127.28), status=status,
                   lane=lane, targetLane=lane, x=x, y=model.lane_center(lane), speed=speed, **extra)

class TestMotionModel(unittest.TestCase):
    def setUp(self):
        self.model = MotionModel(random.Random(1), lane_change_chance=0.0)

    def test_close_follower_slows_to_thirty_percent(self):
        trailing = on_lane(self.model, "t", 0, 100.0)
        leading = on_lane(self.model, "l", 0, 130.0)
        target = self.model.target_speed(trailing, [trailing, leading], 50.0)
        self.assertLessEqual(target, 0.3 * 50.0 + 1e-9)
        self.assertGreaterEqual(target, config.CLOSE_SPEED_FLOOR)

    def test_near_follower_slows_to_seventy_percent(self):
        trailing = on_lane(self.model, "t", 0, 100.0)
        leading = on_lane(self.model, "l", 0, 160.0)
        self.assertAlmostEqual(self.model.target_speed(trailing, [trailing, leading], 50.0), 35.0)

    def test_other_lanes_do_not_count(self):
        trailing = on_lane(self.model, "t", 0, 100.0)
        beside = on_lane(self.model, "b", 2, 105.0)
        self.assertEqual(self.model.target_speed(trailing, [trailing, beside], 50.0), 50.0)

    def test_acceleration_is_bounded(self):
        vehicle = on_lane(self.model, "v", 1, 300.0, speed=10.0)
        moved = self.model.step([vehicle], 1.0)[0]
        self.assertLessEqual(moved.speed, 10.0 + config.MAX_ACCELERATION)
        self.assertGreater(moved.speed, 10.0)

    def test_reflects_at_road_end(self):
        vehicle = on_lane(self.model, "v", 1, 725.0, speed=50.0)
        moved = self.model.step([vehicle], 1.0)[0]
        self.assertEqual(moved.x, config.ROAD_END - config.BOUNDARY_MARGIN)
        self.assertEqual(moved.heading, "backward")

    def test_parked_vehicles_stay_put(self):
        vehicle = on_lane(self.model, "p", 0, 200.0, status=VehicleStatus.PARKED)
        moved = self.model.step([vehicle], 1.0)[0]
        self.assertEqual(moved.x, 200.0)
        self.assertEqual(moved.speed, 0.0)

    def test_lane_change_completes_atomically(self):
        vehicle = on_lane(self.model, "v", 0, 300.0, isChangingLane=True)
        vehicle = vehicle.model_copy(update={"targetLane": 1})

        halfway = self.model.step([vehicle], 1.0)[0]
        self.assertTrue(halfway.isChangingLane)
        self.assertEqual(halfway.lane, 0)

        done = self.model.step([halfway], 1.0)[0]
        self.assertFalse(done.isChangingLane)
        self.assertEqual(done.lane, 1)
        self.assertEqual(done.y, self.model.lane_center(1))

    def test_lane_change_needs_a_gap(self):
        model = MotionModel(random.Random(1), lane_change_chance=1.0)
        vehicle = on_lane(model, "v", 0, 300.0)
        blocker = on_lane(model, "b", 1, 320.0)
        self.assertEqual(model.safe_lanes(vehicle, [vehicle, blocker]), [])
        self.assertEqual(model.safe_lanes(vehicle, [vehicle]), [1])

    def test_step_leaves_input_untouched(self):
        vehicle = on_lane(self.model, "v", 1, 300.0)
        self.model.step([vehicle], 1.0)
        self.assertEqual(vehicle.x, 300.0)

    def test_speed_never_negative(self):
        rng = random.Random(3)
        model = MotionModel(rng, lane_change_chance=0.05)
        fleet = [model.place(on_lane(model, f"v{i}", 0, 100.0)) for i in range(30)]
        for _ in range(200):
            fleet = model.step(fleet, 0.5, speed_factor=0.5, congestion_at=lambda x, y: 80.0)
        for vehicle in fleet:
            self.assertGreaterEqual(vehicle.speed, 0.0)
            self.assertTrue(0 <= vehicle.lane < config.LANES)

if __name__ == '__main__':
    unittest.main()

import random
import unittest
from datetime import datetime

from curbflow.domain.geo import haversine_km
from curbflow.domain.locations import CITY_CENTER
from curbflow.domain.models import Coordinate, ParkingSlot, SlotStatus, Vehicle, VehicleStatus
from curbflow.managers.vehicle_manager import VehicleManager

NOW = datetime(2024, 3, 4, 8, 30)

def vehicle(vehicle_id: str, lat: float = 36.48, lng: float = 127.289, **fields) -> Vehicle:
    return Vehicle(id=vehicle_id, position=Coordinate(lat=lat, lng=lng), **fields)

class TestVehicleQueries(unittest.TestCase):
    def setUp(self):
        self.manager = VehicleManager(random.Random(3), clock=lambda: NOW)
        self.manager.register_vehicle(vehicle("v1", lat=36.481, status=VehicleStatus.IDLE))
        self.manager.register_vehicle(vehicle("v2", lat=36.4801, status=VehicleStatus.MOVING))
        self.manager.register_vehicle(vehicle("v3", lat=36.52, status=VehicleStatus.IDLE, battery=12.0))

    def test_nearest(self):
        self.assertEqual(self.manager.find_nearest_vehicle(CITY_CENTER).id, "v2")
        self.assertEqual(self.manager.find_nearest_vehicle(CITY_CENTER, VehicleStatus.IDLE).id, "v1")
        self.assertIsNone(self.manager.find_nearest_vehicle(CITY_CENTER, VehicleStatus.DROPPING))

    def test_radius(self):
        ids = sorted(v.id for v in self.manager.find_vehicles_in_radius(CITY_CENTER, 1.0))
        self.assertEqual(ids, ["v1", "v2"])

    def test_low_battery(self):
        self.assertEqual([v.id for v in self.manager.find_low_battery_vehicles()], ["v3"])
        self.assertEqual(len(self.manager.find_low_battery_vehicles(101)), 3)

    def test_remove(self):
        self.assertTrue(self.manager.remove_vehicle("v3"))
        self.assertFalse(self.manager.remove_vehicle("v3"))
        self.assertEqual(self.manager.get_vehicle_count(), 2)

class TestVehicleUpdates(unittest.TestCase):
    def setUp(self):
        self.manager = VehicleManager(random.Random(3), clock=lambda: NOW)
        self.manager.register_vehicle(vehicle("v1"))

    def test_status_change_logs_event(self):
        self.assertTrue(self.manager.update_vehicle_status("v1", VehicleStatus.MOVING))
        self.assertEqual(self.manager.get_vehicle("v1").status, VehicleStatus.MOVING)
        self.assertEqual(self.manager.get_vehicle("v1").lastUpdate, NOW)
        event = self.manager.get_recent_events(1)[0]
        self.assertEqual(event.type, "trip_start")
        self.assertTrue(event.resolved)
        self.assertFalse(self.manager.update_vehicle_status("missing", VehicleStatus.IDLE))

    def test_position_update(self):
        moved = Coordinate(lat=36.5, lng=127.26)
        self.assertTrue(self.manager.update_vehicle_position("v1", moved))
        self.assertEqual(self.manager.get_vehicle("v1").position, moved)
        self.assertFalse(self.manager.update_vehicle_position("missing", moved))

    def test_set_destination_without_network(self):
        target = Coordinate(lat=36.49, lng=127.28)
        self.manager.set_destination("v1", target)
        updated = self.manager.get_vehicle("v1")
        self.assertEqual(updated.status, VehicleStatus.MOVING)
        self.assertEqual(updated.route, [target])
        self.assertTrue(30.0 <= updated.speed <= 50.0)

    def test_efficiency(self):
        self.manager.register_vehicle(vehicle("v2", tripCount=5, battery=80.0, totalDistance=200.0))
        self.assertAlmostEqual(self.manager.calculate_vehicle_efficiency("v2"), 60.0)
        self.assertEqual(self.manager.calculate_vehicle_efficiency("missing"), 0.0)

    def test_stats(self):
        self.manager.register_vehicle(vehicle("v2", status=VehicleStatus.PICKING, battery=50.0, tripCount=3))
        self.manager.register_vehicle(vehicle("v3", status=VehicleStatus.PARKED, battery=90.0))
        stats = self.manager.generate_vehicle_stats()
        self.assertEqual(stats.total, 3)
        self.assertEqual(stats.active, 1)
        self.assertEqual(stats.idle, 1)
        self.assertEqual(stats.parked, 1)
        self.assertAlmostEqual(stats.averageBattery, 80.0)
        self.assertEqual(stats.totalTrips, 3)

    def test_empty_stats(self):
        stats = VehicleManager(clock=lambda: NOW).generate_vehicle_stats()
        self.assertEqual(stats.total, 0)
        self.assertEqual(stats.averageBattery, 0.0)

class TestDistribution(unittest.TestCase):
    def test_high_priority_slot_gets_nearest_idle_vehicle(self):
        manager = VehicleManager(random.Random(3), clock=lambda: NOW)
        manager.register_vehicle(vehicle("near", lat=36.4801))
        manager.register_vehicle(vehicle("far", lat=36.49))
        manager.register_vehicle(vehicle("busy", lat=36.48, status=VehicleStatus.MOVING))
        slots = [
            ParkingSlot(id="low", position=Coordinate(lat=36.48, lng=127.289), priority=2),
            ParkingSlot(id="high", position=Coordinate(lat=36.48, lng=127.289), priority=9),
            ParkingSlot(id="off", position=Coordinate(lat=36.48, lng=127.289), priority=10,
                        status=SlotStatus.DISABLED),
        ]
        self.assertEqual(manager.optimize_vehicle_distribution(slots), {"near": "high", "far": "low"})

class TestEvacuation(unittest.TestCase):
    def setUp(self):
        self.manager = VehicleManager(random.Random(3), clock=lambda: NOW)

    def test_destination_is_one_and_a_half_radii_out(self):
        position = Coordinate(lat=36.485, lng=127.289)
        destination = VehicleManager.evacuation_destination(position, CITY_CENTER, 1.0)
        self.assertAlmostEqual(haversine_km(CITY_CENTER, destination), 1.5, places=1)
        # Same bearing as the vehicle: due north
        self.assertGreater(destination.lat, CITY_CENTER.lat)
        self.assertAlmostEqual(destination.lng, CITY_CENTER.lng)

    def test_vehicle_at_center_heads_east(self):
        destination = VehicleManager.evacuation_destination(CITY_CENTER, CITY_CENTER, 2.0)
        self.assertEqual(destination.lat, CITY_CENTER.lat)
        self.assertGreater(destination.lng, CITY_CENTER.lng)

    def test_evacuate_area(self):
        self.manager.register_vehicle(vehicle("inside", lat=36.482, status=VehicleStatus.IDLE))
        self.manager.register_vehicle(vehicle("outside", lat=36.60))

        evacuated = self.manager.evacuate_area(CITY_CENTER, 1.0)
        self.assertEqual([v.id for v in evacuated], ["inside"])
        moved = self.manager.get_vehicle("inside")
        self.assertEqual(moved.status, VehicleStatus.MOVING)
        self.assertGreater(haversine_km(CITY_CENTER, moved.destination), 1.0)
        self.assertEqual(self.manager.get_vehicle("outside").status, VehicleStatus.IDLE)

        unresolved = self.manager.get_unresolved_events()
        self.assertEqual([e.type for e in unresolved], ["evacuation"])
        self.assertEqual(unresolved[0].severity, "high")

if __name__ == '__main__':
    unittest.main()

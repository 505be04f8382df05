import unittest
from curbflow.domain import config
from curbflow.domain.graph import RoadNetwork
from curbflow.domain.models import Coordinate

class TestRoadNetwork(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.network = RoadNetwork()

    def test_grid_size(self):
        self.assertEqual(self.network.graph.number_of_nodes(), config.GRID_LAT_ROWS * config.GRID_LNG_COLS)
        # Four-neighbour grid
        expected_edges = (config.GRID_LAT_ROWS * (config.GRID_LNG_COLS - 1)
                          + config.GRID_LNG_COLS * (config.GRID_LAT_ROWS - 1))
        self.assertEqual(self.network.graph.number_of_edges(), expected_edges)

    def test_nearest_intersection(self):
        node = self.network.find_nearest_intersection(Coordinate(lat=36.48012, lng=127.27009))
        self.assertAlmostEqual(node.lat, 36.48, places=6)
        self.assertAlmostEqual(node.lng, 127.27, places=6)

    def test_empty_network_returns_input(self):
        empty = RoadNetwork(latitudes=[], longitudes=[])
        point = Coordinate(lat=36.5, lng=127.3)
        self.assertTrue(empty.is_empty())
        self.assertEqual(empty.find_nearest_intersection(point), point)
        self.assertEqual(empty.get_speed_limit(point), config.SPEED_LIMITS["local"])

    def test_manhattan_path_goes_east_west_first(self):
        start = Coordinate(lat=36.46, lng=127.25)
        end = Coordinate(lat=36.466, lng=127.256)
        path = self.network.find_path(start, end)

        # Collinear points are dropped, leaving start, corner and end
        self.assertEqual(len(path), 3)
        self.assertEqual(path[0], start)
        self.assertAlmostEqual(path[1].lat, 36.46, places=6)
        self.assertAlmostEqual(path[1].lng, 127.256, places=6)
        self.assertAlmostEqual(path[2].lat, 36.466, places=6)
        self.assertAlmostEqual(path[2].lng, 127.256, places=6)

    def test_path_appends_off_grid_endpoints(self):
        start = Coordinate(lat=36.4603, lng=127.2503)
        end = Coordinate(lat=36.4641, lng=127.2519)
        path = self.network.find_path(start, end)
        self.assertEqual(path[0], start)
        self.assertEqual(path[-1], end)

    def test_speed_limits_follow_road_type(self):
        self.assertEqual(self.network.get_speed_limit(Coordinate(lat=36.48, lng=127.25)), 60.0)
        self.assertEqual(self.network.get_speed_limit(Coordinate(lat=36.46, lng=127.266)), 50.0)
        self.assertEqual(self.network.get_speed_limit(Coordinate(lat=36.46, lng=127.276)), 40.0)
        self.assertEqual(self.network.get_speed_limit(Coordinate(lat=36.46, lng=127.25)), 30.0)

    def test_speed_limit_near_node_boundary(self):
        # Both positions round to the same 4-decimal key but sit either side of the midpoint
        network = RoadNetwork(latitudes=[36.46], longitudes=[127.290, 127.293])
        self.assertEqual(network.get_speed_limit(Coordinate(lat=36.46, lng=127.29149)), 50.0)
        self.assertEqual(network.get_speed_limit(Coordinate(lat=36.46, lng=127.29151)), 30.0)
        self.assertEqual(network.get_speed_limit(Coordinate(lat=36.46, lng=127.29149)), 50.0)

    def test_path_distance(self):
        path = [Coordinate(lat=36.46, lng=127.25), Coordinate(lat=36.462, lng=127.25)]
        self.assertAlmostEqual(self.network.path_distance_km(path), 0.222, places=6)

if __name__ == '__main__':
    unittest.main()

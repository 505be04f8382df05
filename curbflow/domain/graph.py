import logging
from typing import List, Optional, Sequence
import networkx as nx

from curbflow.domain import config
from curbflow.domain.geo import degrees_to_km, planar_distance
from curbflow.domain.locations import ARTERIALS
from curbflow.domain.models import Coordinate

logger = logging.getLogger(__name__)

def default_latitudes() -> List[float]:
    return [round(config.GRID_LAT_MIN + i * config.GRID_STEP, 4) for i in range(config.GRID_LAT_ROWS)]

def default_longitudes() -> List[float]:
    return [round(config.GRID_LNG_MIN + i * config.GRID_STEP, 4) for i in range(config.GRID_LNG_COLS)]

class RoadNetwork:
    """Grid of intersections roughly 200m apart, classified by nearby arterials."""

    def __init__(self, latitudes: Optional[Sequence[float]] = None, longitudes: Optional[Sequence[float]] = None):
        self.graph = nx.Graph()
        self.latitudes = list(default_latitudes() if latitudes is None else latitudes)
        self.longitudes = list(default_longitudes() if longitudes is None else longitudes)
        self._build()

    @staticmethod
    def node_key(lat: float, lng: float) -> str:
        return f"{lat:.4f}_{lng:.4f}"

    def _build(self):
        for lat in self.latitudes:
            for lng in self.longitudes:
                self.add_intersection(lat, lng, self._classify(lat, lng))

        for row, lat in enumerate(self.latitudes):
            for col, lng in enumerate(self.longitudes):
                key = self.node_key(lat, lng)
                if col + 1 < len(self.longitudes):
                    self.add_road(key, self.node_key(lat, self.longitudes[col + 1]))
                if row + 1 < len(self.latitudes):
                    self.add_road(key, self.node_key(self.latitudes[row + 1], lng))

        logger.info("Road network built: %d intersections, %d roads",
                    self.graph.number_of_nodes(), self.graph.number_of_edges())

    def _classify(self, lat: float, lng: float) -> str:
        for _name, road_type, axis, value in ARTERIALS:
            coord = lat if axis == "lat" else lng
            if abs(coord - value) < config.ARTERIAL_BAND:
                return road_type
        return "local"

    def add_intersection(self, lat: float, lng: float, road_type: str = "local"):
        self.graph.add_node(self.node_key(lat, lng), pos=Coordinate(lat=lat, lng=lng), road_type=road_type)

    def add_road(self, u: str, v: str):
        length = degrees_to_km(planar_distance(self.get_node_pos(u), self.get_node_pos(v)))
        self.graph.add_edge(u, v, length=length)

    def get_node_pos(self, u: str) -> Coordinate:
        return self.graph.nodes[u]["pos"]

    def get_road_type(self, u: str) -> str:
        return self.graph.nodes[u].get("road_type", "local")

    def neighbors(self, u: str) -> List[str]:
        return list(self.graph.neighbors(u))

    def is_empty(self) -> bool:
        return self.graph.number_of_nodes() == 0

    def _nearest_key(self, position: Coordinate) -> Optional[str]:
        # Linear scan, first-found wins on ties
        best_key = None
        best_dist = float("inf")
        for key, data in self.graph.nodes(data=True):
            d = planar_distance(position, data["pos"])
            if d < best_dist:
                best_dist = d
                best_key = key
        return best_key

    def find_nearest_intersection(self, position: Coordinate) -> Coordinate:
        key = self._nearest_key(position)
        if key is None:
            return position
        return self.get_node_pos(key)

    def find_path(self, start: Coordinate, end: Coordinate) -> List[Coordinate]:
        """Manhattan route: east-west leg first, then north-south, in grid steps."""
        eps = config.COORD_EPSILON
        step = config.GRID_STEP
        path = [start]

        start_node = self.find_nearest_intersection(start)
        end_node = self.find_nearest_intersection(end)

        if planar_distance(start, start_node) > eps:
            path.append(start_node)

        lat, lng = start_node.lat, start_node.lng

        if abs(end_node.lng - lng) > eps:
            target = end_node.lng
            delta = step if lng < target else -step
            while abs(lng - target) > eps:
                lng = min(lng + delta, target) if delta > 0 else max(lng + delta, target)
                path.append(Coordinate(lat=lat, lng=lng))

        if abs(end_node.lat - lat) > eps:
            target = end_node.lat
            delta = step if lat < target else -step
            while abs(lat - target) > eps:
                lat = min(lat + delta, target) if delta > 0 else max(lat + delta, target)
                path.append(Coordinate(lat=lat, lng=lng))

        if planar_distance(end, end_node) > eps:
            path.append(end)

        return self._optimize_path(path)

    def _optimize_path(self, path: List[Coordinate]) -> List[Coordinate]:
        if len(path) <= 2:
            return path

        eps = config.COORD_EPSILON
        optimized = [path[0]]
        for prev, current, nxt in zip(path, path[1:], path[2:]):
            same_lat = abs(prev.lat - current.lat) < eps and abs(current.lat - nxt.lat) < eps
            same_lng = abs(prev.lng - current.lng) < eps and abs(current.lng - nxt.lng) < eps
            if not same_lat and not same_lng:
                optimized.append(current)
        optimized.append(path[-1])
        return optimized

    def get_speed_limit(self, position: Coordinate) -> float:
        key = self._nearest_key(position)
        road_type = self.get_road_type(key) if key is not None else "local"
        return config.SPEED_LIMITS.get(road_type, config.SPEED_LIMITS["local"])

    def path_distance_km(self, path: Sequence[Coordinate]) -> float:
        return sum(degrees_to_km(planar_distance(a, b)) for a, b in zip(path, path[1:]))

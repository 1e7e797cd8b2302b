"""
TerraOrbit - Space Mesh

Inter-satellite link (ISL) routing for orbital node communication.

The mesh is distance-based: any two satellites within ISL range of each other
that can see past the Earth get a link, rather than the fixed four-neighbour
pattern a real Walker shell would use.

Every rebuild produces a new immutable _MeshSnapshot which is swapped in by
reference, so find_route() always sees either the old graph or the new one,
never a half-built one. Links go stale between rebuilds; callers pick the
rebuild cadence.

Dijkstra is fine up to ~1000 nodes. Past that, set max_route_expansions (or
Config.max_route_expansions) to bound each query.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, List, Tuple, Any, Mapping
import heapq
import logging
import math
import threading

from .config import Config, get_default_config
from .core import EARTH_RADIUS_KM, SPEED_OF_LIGHT_KM_S, NodeConfig, Topology
from .errors import InvalidReferenceError, ValidationError

logger = logging.getLogger(__name__)

_LinkKey = Tuple[int, int]


class LinkType(Enum):
    """Type of communication link."""
    OPTICAL = "optical"  # Laser inter-satellite link
    RF = "rf"  # Radio frequency link
    HYBRID = "hybrid"


class RouteMetric(Enum):
    """Edge weight used by find_route()."""
    LATENCY = "latency"
    BANDWIDTH = "bandwidth"  # weight = 1 / bandwidth, favours fat links


@dataclass(frozen=True)
class OrbitalNode:
    """An orbital compute node in the mesh.

    Attributes:
        node_id: Unique identifier
        orbit_altitude_km: Orbital altitude
        orbit_inclination_deg: Orbital inclination
        raan_deg: Right ascension of ascending node
        mean_anomaly_deg: Mean anomaly (position in orbit)
        isl_range_km: Maximum ISL range
        isl_bandwidth_gbps: ISL bandwidth capacity
        compute_tflops: Compute capacity
    """
    node_id: str
    orbit_altitude_km: float = 550.0
    orbit_inclination_deg: float = 51.6
    raan_deg: float = 0.0
    mean_anomaly_deg: float = 0.0
    isl_range_km: float = 5000.0
    isl_bandwidth_gbps: float = 10.0
    compute_tflops: float = 10.0

    def __post_init__(self):
        if not self.node_id:
            raise ValidationError("node_id", "Must be a non-empty string")
        if self.orbit_altitude_km <= 0:
            raise ValidationError("orbit_altitude_km", "Must be positive")
        if not 0 <= self.orbit_inclination_deg <= 180:
            raise ValidationError("orbit_inclination_deg", "Must be between 0 and 180 degrees")
        if self.isl_range_km <= 0:
            raise ValidationError("isl_range_km", "Must be positive")
        if self.isl_bandwidth_gbps <= 0:
            raise ValidationError("isl_bandwidth_gbps", "Must be positive")

    @classmethod
    def from_config(
        cls,
        config: NodeConfig,
        inclination_deg: float = 51.6,
        raan_deg: float = 0.0,
        mean_anomaly_deg: float = 0.0,
        isl_range_km: float = 5000.0,
        isl_bandwidth_gbps: float = 10.0,
    ) -> "OrbitalNode":
        """Place an orbital NodeConfig on an orbit."""
        if not config.is_orbital:
            raise ValidationError("node_type", f"{config.node_id} is not an orbital node")
        return cls(
            node_id=config.node_id,
            orbit_altitude_km=config.orbit_altitude_km,
            orbit_inclination_deg=inclination_deg,
            raan_deg=raan_deg,
            mean_anomaly_deg=mean_anomaly_deg,
            isl_range_km=isl_range_km,
            isl_bandwidth_gbps=isl_bandwidth_gbps,
            compute_tflops=config.compute_tflops,
        )

    def position_eci(self) -> Tuple[float, float, float]:
        """Inertial-frame position (km) on a circular orbit.

        The mean anomaly is used as the argument of latitude, which holds for
        circular orbits with the periapsis at the ascending node.
        """
        r = EARTH_RADIUS_KM + self.orbit_altitude_km
        u = math.radians(self.mean_anomaly_deg)
        inc = math.radians(self.orbit_inclination_deg)
        raan = math.radians(self.raan_deg)

        x = r * (math.cos(raan) * math.cos(u) - math.sin(raan) * math.sin(u) * math.cos(inc))
        y = r * (math.sin(raan) * math.cos(u) + math.cos(raan) * math.sin(u) * math.cos(inc))
        z = r * math.sin(u) * math.sin(inc)
        return x, y, z


@dataclass(frozen=True)
class ISLLink:
    """Inter-satellite link between two nodes.

    Attributes:
        source_id: Source node ID
        target_id: Target node ID
        distance_km: Current distance
        bandwidth_gbps: Available bandwidth
        latency_ms: One-way latency
        link_type: Type of link (optical/RF)
        active: Whether link is currently active
    """
    source_id: str
    target_id: str
    distance_km: float
    bandwidth_gbps: float
    latency_ms: float
    link_type: LinkType = LinkType.OPTICAL
    active: bool = True

    def reversed(self) -> "ISLLink":
        return ISLLink(
            source_id=self.target_id,
            target_id=self.source_id,
            distance_km=self.distance_km,
            bandwidth_gbps=self.bandwidth_gbps,
            latency_ms=self.latency_ms,
            link_type=self.link_type,
            active=self.active,
        )


@dataclass
class Route:
    """A route through the mesh between two nodes.

    An empty path means the destination is unreachable in the current
    snapshot. A one-element path is the zero-hop route from a node to itself.

    Attributes:
        source_id: Starting node
        destination_id: Ending node
        path: List of node IDs in the path
        total_distance_km: Total distance
        total_latency_ms: Total latency
        min_bandwidth_gbps: Bottleneck bandwidth
        num_hops: Number of ISL hops
    """
    source_id: str
    destination_id: str
    path: List[str] = field(default_factory=list)
    total_distance_km: float = 0.0
    total_latency_ms: float = 0.0
    min_bandwidth_gbps: float = 0.0
    num_hops: int = 0

    @classmethod
    def unreachable(cls, source_id: str, destination_id: str) -> "Route":
        return cls(source_id, destination_id)

    @classmethod
    def local(cls, node_id: str) -> "Route":
        return cls(node_id, node_id, [node_id], 0.0, 0.0, float('inf'), 0)

    @property
    def is_valid(self) -> bool:
        """Check if route is valid (has path)."""
        return len(self.path) >= 2

    @property
    def is_local(self) -> bool:
        """Source and destination are the same node."""
        return len(self.path) == 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "source_id": self.source_id,
            "destination_id": self.destination_id,
            "path": list(self.path),
            "total_distance_km": self.total_distance_km,
            "total_latency_ms": self.total_latency_ms,
            "min_bandwidth_gbps": self.min_bandwidth_gbps,
            "num_hops": self.num_hops,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Route":
        """Create Route from dictionary."""
        return cls(
            source_id=data["source_id"],
            destination_id=data["destination_id"],
            path=list(data.get("path", [])),
            total_distance_km=data.get("total_distance_km", 0.0),
            total_latency_ms=data.get("total_latency_ms", 0.0),
            min_bandwidth_gbps=data.get("min_bandwidth_gbps", 0.0),
            num_hops=data.get("num_hops", 0),
        )


@dataclass(frozen=True)
class _MeshSnapshot:
    """One immutable build of the link graph."""
    handles: Mapping[str, int]
    links: Mapping[_LinkKey, ISLLink]
    adjacency: Mapping[int, Tuple[int, ...]]
    generation: int = 0

    @classmethod
    def empty(cls) -> "_MeshSnapshot":
        return cls(handles={}, links={}, adjacency={})


class SpaceMesh:
    """ISL routing mesh for orbital node communication.

    Manages the mesh network topology and provides routing between
    orbital nodes using Dijkstra's algorithm for optimal paths.

    Example:
        >>> mesh = SpaceMesh()
        >>> mesh.add_node(OrbitalNode("sat-1", mean_anomaly_deg=0))
        >>> mesh.add_node(OrbitalNode("sat-2", mean_anomaly_deg=10))
        >>> mesh.add_node(OrbitalNode("sat-3", mean_anomaly_deg=20))
        >>> mesh.update_topology()
        >>> route = mesh.find_route("sat-1", "sat-3")
        >>> print(f"Route: {route.path}, Latency: {route.total_latency_ms:.1f}ms")
    """

    SPEED_OF_LIGHT_KM_S = SPEED_OF_LIGHT_KM_S
    EARTH_RADIUS_KM = EARTH_RADIUS_KM

    def __init__(
        self,
        default_isl_range_km: Optional[float] = None,
        max_route_expansions: Optional[int] = None,
        config: Optional[Config] = None,
    ):
        config = config or get_default_config()
        self.default_isl_range_km = default_isl_range_km or config.default_isl_range_km
        self.max_route_expansions = (
            max_route_expansions if max_route_expansions is not None
            else config.max_route_expansions
        )
        self.nodes: Dict[str, OrbitalNode] = {}
        self._handles: Dict[str, int] = {}
        self._next_handle = 0
        self._write_lock = threading.Lock()
        self._snapshot = _MeshSnapshot.empty()

    @classmethod
    def from_topology(
        cls,
        topology: Topology,
        elements: Optional[Dict[str, Dict[str, float]]] = None,
        isl_range_km: Optional[float] = None,
        config: Optional[Config] = None,
    ) -> "SpaceMesh":
        """Build a mesh from a topology's orbital nodes.

        Args:
            topology: Node registry
            elements: Per-node keyword overrides for OrbitalNode.from_config
                (inclination_deg, raan_deg, mean_anomaly_deg, ...)
            isl_range_km: ISL range for nodes without an explicit one
        """
        mesh = cls(default_isl_range_km=isl_range_km, config=config)
        elements = elements or {}
        for node_config in topology.get_orbital_nodes():
            kwargs = {"isl_range_km": mesh.default_isl_range_km}
            kwargs.update(elements.get(node_config.node_id, {}))
            mesh.add_node(OrbitalNode.from_config(node_config, **kwargs))
        mesh.update_topology()
        return mesh

    # -- registry ----------------------------------------------------------

    def add_node(self, node: OrbitalNode) -> None:
        """Add an orbital node to the mesh.

        No links are created until the next update_topology().
        """
        with self._write_lock:
            if node.node_id not in self._handles:
                self._handles[node.node_id] = self._next_handle
                self._next_handle += 1
            self.nodes[node.node_id] = node

    def remove_node(self, node_id: str) -> OrbitalNode:
        """Remove a node and all links involving it."""
        with self._write_lock:
            if node_id not in self.nodes:
                raise InvalidReferenceError("OrbitalNode", node_id)
            node = self.nodes.pop(node_id)
            handle = self._handles.pop(node_id)

            old = self._snapshot
            links = {k: v for k, v in old.links.items() if handle not in k}
            adjacency = {
                h: tuple(n for n in neighbors if n != handle)
                for h, neighbors in old.adjacency.items()
                if h != handle
            }
            handles = {k: v for k, v in old.handles.items() if k != node_id}
            self._snapshot = _MeshSnapshot(handles, links, adjacency, old.generation)
        logger.debug("Removed %s from mesh", node_id)
        return node

    # -- topology ----------------------------------------------------------

    def update_topology(self) -> None:
        """Rebuild the mesh topology from current node positions.

        Recalculates which nodes can communicate via ISL based on
        distance and line-of-sight constraints. O(V^2).
        """
        with self._write_lock:
            handles = dict(self._handles)
            nodes = list(self.nodes.values())
            positions = {node.node_id: node.position_eci() for node in nodes}

            links: Dict[_LinkKey, ISLLink] = {}
            adjacency: Dict[int, List[int]] = {handles[n.node_id]: [] for n in nodes}

            for i, node1 in enumerate(nodes):
                h1 = handles[node1.node_id]
                for node2 in nodes[i + 1:]:
                    h2 = handles[node2.node_id]
                    distance = math.dist(positions[node1.node_id], positions[node2.node_id])
                    max_range = min(node1.isl_range_km, node2.isl_range_km)

                    if distance > max_range or not self._has_line_of_sight(node1, node2, distance):
                        continue

                    link = ISLLink(
                        source_id=node1.node_id,
                        target_id=node2.node_id,
                        distance_km=distance,
                        bandwidth_gbps=min(node1.isl_bandwidth_gbps, node2.isl_bandwidth_gbps),
                        latency_ms=(distance / self.SPEED_OF_LIGHT_KM_S) * 1000,
                    )
                    links[(h1, h2)] = link
                    links[(h2, h1)] = link.reversed()
                    adjacency[h1].append(h2)
                    adjacency[h2].append(h1)

            snapshot = _MeshSnapshot(
                handles=handles,
                links=links,
                adjacency={h: tuple(n) for h, n in adjacency.items()},
                generation=self._snapshot.generation + 1,
            )
            self._snapshot = snapshot

        logger.debug(
            "Mesh rebuilt (generation %d): %d nodes, %d links",
            snapshot.generation, len(nodes), len(links) // 2,
        )

    @property
    def generation(self) -> int:
        """Number of completed topology rebuilds."""
        return self._snapshot.generation

    def get_link(self, source_id: str, target_id: str) -> Optional[ISLLink]:
        """Directed link between two nodes in the current snapshot, if any."""
        snapshot = self._snapshot
        h1 = snapshot.handles.get(source_id)
        h2 = snapshot.handles.get(target_id)
        if h1 is None or h2 is None:
            return None
        return snapshot.links.get((h1, h2))

    def get_links(self, node_id: str) -> List[ISLLink]:
        """Outgoing links of a node in the current snapshot."""
        snapshot = self._snapshot
        handle = snapshot.handles.get(node_id)
        if handle is None:
            if node_id in self.nodes:
                return []
            raise InvalidReferenceError("OrbitalNode", node_id)
        return [snapshot.links[(handle, n)] for n in snapshot.adjacency.get(handle, ())]

    # -- routing -----------------------------------------------------------

    def find_route(
        self,
        source_id: str,
        destination_id: str,
        optimize_for: RouteMetric = RouteMetric.LATENCY,
    ) -> Route:
        """Find optimal route between two nodes using Dijkstra's algorithm.

        Unknown nodes and disconnected pairs yield an invalid (empty) route;
        in an intermittently connected mesh that is a normal answer.

        Args:
            source_id: Starting node
            destination_id: Destination node
            optimize_for: Edge weight to minimize

        Returns:
            Route object with path and metrics
        """
        snapshot = self._snapshot

        if source_id not in self.nodes or destination_id not in self.nodes:
            return Route.unreachable(source_id, destination_id)

        if source_id == destination_id:
            return Route.local(source_id)

        source = snapshot.handles.get(source_id)
        destination = snapshot.handles.get(destination_id)
        if source is None or destination is None:
            return Route.unreachable(source_id, destination_id)

        distances: Dict[int, float] = {source: 0.0}
        predecessors: Dict[int, int] = {}
        pq: List[Tuple[float, int]] = [(0.0, source)]
        visited = set()

        while pq:
            current_dist, current = heapq.heappop(pq)
            if current in visited:
                continue
            visited.add(current)

            if current == destination:
                break

            if self.max_route_expansions is not None and len(visited) > self.max_route_expansions:
                logger.warning(
                    "Route search %s -> %s abandoned after %d expansions",
                    source_id, destination_id, self.max_route_expansions,
                )
                return Route.unreachable(source_id, destination_id)

            for neighbor in snapshot.adjacency.get(current, ()):
                if neighbor in visited:
                    continue
                link = snapshot.links[(current, neighbor)]
                if not link.active:
                    continue

                if optimize_for == RouteMetric.LATENCY:
                    weight = link.latency_ms
                elif optimize_for == RouteMetric.BANDWIDTH:
                    weight = 1.0 / link.bandwidth_gbps
                else:
                    raise ValidationError("optimize_for", f"Unknown route metric {optimize_for!r}")

                new_dist = current_dist + weight
                if new_dist < distances.get(neighbor, float('inf')):
                    distances[neighbor] = new_dist
                    predecessors[neighbor] = current
                    heapq.heappush(pq, (new_dist, neighbor))

        if destination not in visited:
            return Route.unreachable(source_id, destination_id)

        handle_path = [destination]
        while handle_path[-1] != source:
            handle_path.append(predecessors[handle_path[-1]])
        handle_path.reverse()

        total_distance = 0.0
        total_latency = 0.0
        min_bandwidth = float('inf')
        path = []
        for a, b in zip(handle_path, handle_path[1:]):
            link = snapshot.links[(a, b)]
            path.append(link.source_id)
            total_distance += link.distance_km
            total_latency += link.latency_ms
            min_bandwidth = min(min_bandwidth, link.bandwidth_gbps)
        path.append(destination_id)

        return Route(
            source_id=source_id,
            destination_id=destination_id,
            path=path,
            total_distance_km=round(total_distance, 2),
            total_latency_ms=round(total_latency, 3),
            min_bandwidth_gbps=min_bandwidth,
            num_hops=len(path) - 1,
        )

    def get_all_routes_from(self, source_id: str) -> Dict[str, Route]:
        """Get optimal routes from a node to all other nodes."""
        return {
            dest_id: self.find_route(source_id, dest_id)
            for dest_id in list(self.nodes)
            if dest_id != source_id
        }

    def get_mesh_stats(self) -> Dict[str, Any]:
        """Get statistics about the mesh network."""
        snapshot = self._snapshot
        active = [link for link in snapshot.links.values() if link.active]
        active_links = len(active) // 2
        num_nodes = len(self.nodes)

        avg_links_per_node = (2 * active_links / num_nodes) if num_nodes else 0
        total_bandwidth = sum(link.bandwidth_gbps for link in active) / 2
        avg_distance = (
            sum(link.distance_km for link in active) / len(active) if active else 0
        )

        return {
            "total_nodes": num_nodes,
            "active_links": active_links,
            "avg_links_per_node": round(avg_links_per_node, 2),
            "total_bandwidth_gbps": round(total_bandwidth, 2),
            "avg_link_distance_km": round(avg_distance, 2),
            "generation": snapshot.generation,
        }

    def _has_line_of_sight(self, node1: OrbitalNode, node2: OrbitalNode, distance: float) -> bool:
        """Check if two nodes have unobstructed line of sight (Earth not blocking).

        Horizon test from the lower of the two shells: the chord may be at
        most twice the horizon distance of that altitude. Good enough for
        single-shell Walker constellations; multi-shell meshes want a proper
        ray-sphere intersection.
        """
        min_altitude = min(node1.orbit_altitude_km, node2.orbit_altitude_km)
        max_los_distance = 2 * math.sqrt(
            (self.EARTH_RADIUS_KM + min_altitude) ** 2 - self.EARTH_RADIUS_KM ** 2
        )
        return distance <= max_los_distance


def create_constellation(
    name: str,
    num_planes: int,
    sats_per_plane: int,
    altitude_km: float = 550.0,
    inclination_deg: float = 53.0,
    isl_range_km: Optional[float] = None,
    config: Optional[Config] = None,
) -> SpaceMesh:
    """Create a Walker-Delta constellation mesh.

    RAANs are spread evenly over the planes, satellites evenly within a
    plane, and each plane is phased by 360 / (planes * sats) degrees so
    neighbouring planes do not line up.

    Example:
        >>> mesh = create_constellation("test", num_planes=4, sats_per_plane=10)
        >>> print(mesh.get_mesh_stats())
    """
    if num_planes < 1 or sats_per_plane < 1:
        raise ValidationError("num_planes", "Constellation needs at least one plane and one satellite")

    mesh = SpaceMesh(default_isl_range_km=isl_range_km, config=config)
    total = num_planes * sats_per_plane

    for plane in range(num_planes):
        raan = (360.0 / num_planes) * plane

        for sat in range(sats_per_plane):
            mean_anomaly = (360.0 / sats_per_plane) * sat + (360.0 / total) * plane

            mesh.add_node(OrbitalNode(
                node_id=f"{name}_P{plane}_S{sat}",
                orbit_altitude_km=altitude_km,
                orbit_inclination_deg=inclination_deg,
                raan_deg=raan,
                mean_anomaly_deg=mean_anomaly,
                isl_range_km=mesh.default_isl_range_km,
            ))

    mesh.update_topology()
    logger.info("Created constellation %s: %d planes x %d sats", name, num_planes, sats_per_plane)
    return mesh

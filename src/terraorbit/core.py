"""
TerraOrbit - Core Types

Node and topology registry for Earth-space distributed compute coordination.

Node configurations are frozen: once a node is placed in a topology snapshot
its capacity and location cannot drift underneath the partition optimizer or
the mesh. Build a new NodeConfig (dataclasses.replace) to change one.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, List, Any, Tuple
import logging
import time

from .errors import InvalidReferenceError, ValidationError

logger = logging.getLogger(__name__)

# Mean Earth radius; the mesh and scheduler math is spherical, not WGS84.
EARTH_RADIUS_KM = 6371.0
# Standard gravitational parameter (GM) for Earth
EARTH_MU = 398600.4418  # km^3/s^2
SPEED_OF_LIGHT_KM_S = 299792.458

DEFAULT_ORBIT_ALTITUDE_KM = 550.0


class NodeType(Enum):
    """Type of compute node in the Earth-space infrastructure."""
    GROUND = "ground"
    ORBITAL = "orbital"


@dataclass(frozen=True)
class NodeConfig:
    """Configuration for a compute node.

    Attributes:
        node_id: Unique identifier for the node
        node_type: Type of node (ground or orbital)
        compute_tflops: Compute capacity in TFLOPS
        memory_gb: Memory capacity in GB
        bandwidth_mbps: Network bandwidth in Mbps
        orbit_altitude_km: Orbital altitude (for orbital nodes)
        location: Ground location tuple (lat, lon) for ground nodes
    """
    node_id: str
    node_type: NodeType
    compute_tflops: float = 10.0
    memory_gb: float = 32.0
    bandwidth_mbps: float = 100.0
    orbit_altitude_km: Optional[float] = None
    location: Optional[Tuple[float, float]] = None

    def __post_init__(self):
        if not self.node_id:
            raise ValidationError("node_id", "Must be a non-empty string")
        if self.compute_tflops < 0:
            raise ValidationError("compute_tflops", "Must be non-negative")
        if self.bandwidth_mbps <= 0:
            raise ValidationError("bandwidth_mbps", "Must be positive")
        if self.node_type == NodeType.ORBITAL and self.orbit_altitude_km is None:
            object.__setattr__(self, "orbit_altitude_km", DEFAULT_ORBIT_ALTITUDE_KM)
        if self.location is not None:
            lat, lon = self.location
            if not -90 <= lat <= 90:
                raise ValidationError("location", "Latitude must be between -90 and 90 degrees")
            if not -180 <= lon <= 180:
                raise ValidationError("location", "Longitude must be between -180 and 180 degrees")
            object.__setattr__(self, "location", (float(lat), float(lon)))

    @property
    def is_orbital(self) -> bool:
        return self.node_type == NodeType.ORBITAL

    @classmethod
    def orbital(cls, node_id: str, altitude_km: float = DEFAULT_ORBIT_ALTITUDE_KM,
                compute_tflops: float = 10.0, memory_gb: float = 32.0,
                bandwidth_mbps: float = 100.0) -> "NodeConfig":
        """Create an orbital node configuration."""
        return cls(
            node_id=node_id,
            node_type=NodeType.ORBITAL,
            compute_tflops=compute_tflops,
            memory_gb=memory_gb,
            bandwidth_mbps=bandwidth_mbps,
            orbit_altitude_km=altitude_km,
        )

    @classmethod
    def ground(cls, node_id: str, lat: float, lon: float,
               compute_tflops: float = 100.0, memory_gb: float = 256.0,
               bandwidth_mbps: float = 1000.0) -> "NodeConfig":
        """Create a ground node configuration."""
        return cls(
            node_id=node_id,
            node_type=NodeType.GROUND,
            compute_tflops=compute_tflops,
            memory_gb=memory_gb,
            bandwidth_mbps=bandwidth_mbps,
            location=(lat, lon),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result: Dict[str, Any] = {
            "id": self.node_id,
            "kind": self.node_type.value,
            "compute_tflops": self.compute_tflops,
            "memory_gb": self.memory_gb,
            "bandwidth_mbps": self.bandwidth_mbps,
        }
        if self.orbit_altitude_km is not None:
            result["altitude_km"] = self.orbit_altitude_km
        if self.location is not None:
            result["lat"], result["lon"] = self.location
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeConfig":
        """Create NodeConfig from dictionary."""
        location = None
        if data.get("lat") is not None and data.get("lon") is not None:
            location = (data["lat"], data["lon"])
        return cls(
            node_id=data["id"],
            node_type=NodeType(data["kind"]),
            compute_tflops=data.get("compute_tflops", 10.0),
            memory_gb=data.get("memory_gb", 32.0),
            bandwidth_mbps=data.get("bandwidth_mbps", 100.0),
            orbit_altitude_km=data.get("altitude_km"),
            location=location,
        )


@dataclass
class Topology:
    """Topology of Earth-space compute infrastructure.

    Manages the collection of ground and orbital nodes and their connections.
    """
    nodes: Dict[str, NodeConfig] = field(default_factory=dict)
    connections: List[Tuple[str, str, float]] = field(default_factory=list)  # (node1, node2, bandwidth)

    def add_node(self, node: NodeConfig) -> None:
        """Add a node to the topology, replacing any node with the same id."""
        self.nodes[node.node_id] = node

    def remove_node(self, node_id: str) -> NodeConfig:
        """Remove a node and every connection touching it."""
        if node_id not in self.nodes:
            raise InvalidReferenceError("Node", node_id)
        before = len(self.connections)
        self.connections = [
            c for c in self.connections if node_id not in (c[0], c[1])
        ]
        logger.debug("Removed node %s and %d connection(s)",
                     node_id, before - len(self.connections))
        return self.nodes.pop(node_id)

    def get_node(self, node_id: str) -> NodeConfig:
        """Look up a node by id."""
        try:
            return self.nodes[node_id]
        except KeyError:
            raise InvalidReferenceError("Node", node_id) from None

    def add_connection(self, node1_id: str, node2_id: str, bandwidth_mbps: float) -> None:
        """Add a connection between two nodes."""
        for node_id in (node1_id, node2_id):
            if node_id not in self.nodes:
                raise InvalidReferenceError("Node", node_id)
        if bandwidth_mbps <= 0:
            raise ValidationError("bandwidth_mbps", "Must be positive")
        self.connections.append((node1_id, node2_id, bandwidth_mbps))

    def get_connections(self, node_id: str) -> List[Tuple[str, str, float]]:
        """Connections touching a node."""
        self.get_node(node_id)
        return [c for c in self.connections if node_id in (c[0], c[1])]

    def get_ground_nodes(self) -> List[NodeConfig]:
        """Get all ground nodes."""
        return [n for n in self.nodes.values() if n.node_type == NodeType.GROUND]

    def get_orbital_nodes(self) -> List[NodeConfig]:
        """Get all orbital nodes."""
        return [n for n in self.nodes.values() if n.node_type == NodeType.ORBITAL]

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def total_compute_tflops(self) -> float:
        """Total compute capacity across all nodes."""
        return sum(n.compute_tflops for n in self.nodes.values())

    @property
    def ground_compute_tflops(self) -> float:
        """Total ground compute capacity."""
        return sum(n.compute_tflops for n in self.get_ground_nodes())

    @property
    def orbital_compute_tflops(self) -> float:
        """Total orbital compute capacity."""
        return sum(n.compute_tflops for n in self.get_orbital_nodes())

    def summary(self) -> Dict[str, Any]:
        """Aggregate compute-capacity view."""
        return {
            "total_nodes": self.node_count,
            "ground_nodes": len(self.get_ground_nodes()),
            "orbital_nodes": len(self.get_orbital_nodes()),
            "connections": len(self.connections),
            "total_compute_tflops": round(self.total_compute_tflops, 2),
            "ground_compute_tflops": round(self.ground_compute_tflops, 2),
            "orbital_compute_tflops": round(self.orbital_compute_tflops, 2),
        }


@dataclass
class TrainingMetrics:
    """Metrics for distributed training across Earth-space infrastructure.

    Tracks training progress, communication costs, and compression efficiency.
    """
    total_steps: int = 0
    total_samples: int = 0

    # Communication metrics
    bytes_uploaded: int = 0
    bytes_downloaded: int = 0
    sync_count: int = 0

    # Timing metrics
    compute_time_s: float = 0.0
    communication_time_s: float = 0.0
    idle_time_s: float = 0.0

    loss_history: List[float] = field(default_factory=list)

    # Compression metrics (latest round)
    compression_ratio: float = 1.0
    sparsity_achieved: float = 0.0

    _start_time: Optional[float] = field(default=None, repr=False)

    def start_step(self) -> None:
        """Mark the start of a training step."""
        self._start_time = time.monotonic()

    def end_step(self, loss: Optional[float] = None, samples: int = 0,
                 duration_s: Optional[float] = None) -> None:
        """Mark the end of a training step.

        An explicit duration wins over the start_step() timer.
        """
        if duration_s is not None:
            self.compute_time_s += duration_s
        elif self._start_time is not None:
            self.compute_time_s += time.monotonic() - self._start_time
        self.total_steps += 1
        self.total_samples += samples
        if loss is not None:
            self.loss_history.append(loss)
        self._start_time = None

    def record_sync(self, bytes_up: int, bytes_down: int, duration_s: float) -> None:
        """Record a synchronization event."""
        self.bytes_uploaded += bytes_up
        self.bytes_downloaded += bytes_down
        self.communication_time_s += duration_s
        self.sync_count += 1

    def record_compression(self, compression_ratio: float, sparsity: float) -> None:
        self.compression_ratio = compression_ratio
        self.sparsity_achieved = sparsity

    @property
    def total_bytes_transferred(self) -> int:
        return self.bytes_uploaded + self.bytes_downloaded

    @property
    def compute_efficiency(self) -> float:
        """Ratio of compute time to total time."""
        total = self.compute_time_s + self.communication_time_s + self.idle_time_s
        if total == 0:
            return 0.0
        return self.compute_time_s / total

    @property
    def communication_overhead(self) -> float:
        """Ratio of communication time to compute time."""
        if self.compute_time_s == 0:
            return float('inf')
        return self.communication_time_s / self.compute_time_s

    @property
    def average_loss(self) -> Optional[float]:
        if not self.loss_history:
            return None
        return sum(self.loss_history) / len(self.loss_history)

    @property
    def latest_loss(self) -> Optional[float]:
        return self.loss_history[-1] if self.loss_history else None

    def summary(self) -> Dict[str, Any]:
        """Get a summary of training metrics."""
        return {
            "total_steps": self.total_steps,
            "total_samples": self.total_samples,
            "compute_time_s": round(self.compute_time_s, 2),
            "communication_time_s": round(self.communication_time_s, 2),
            "compute_efficiency": round(self.compute_efficiency, 4),
            "total_bytes_transferred": self.total_bytes_transferred,
            "sync_count": self.sync_count,
            "compression_ratio": round(self.compression_ratio, 4),
            "sparsity_achieved": round(self.sparsity_achieved, 4),
            "latest_loss": self.latest_loss,
        }

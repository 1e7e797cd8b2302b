"""
TerraOrbit - Earth-Space Distributed Coordination

Coordinate ML training across ground stations and orbiting compute nodes:
ISL mesh routing, compressed federated gradients, ground/orbit model
partitioning and priority-ordered transfer scheduling.

Example:
    >>> from terraorbit import (
    ...     FederatedClient, CompressionConfig, GradientAggregator,
    ...     ModelProfile, PartitionOptimizer,
    ...     SyncScheduler, Priority,
    ...     create_constellation,
    ... )
    >>>
    >>> # Federated learning with gradient compression
    >>> client = FederatedClient("orbital-1", CompressionConfig.balanced())
    >>> gradients = client.compute_gradients([0.0] * 1000)
    >>> compressed = client.compress(gradients)
    >>>
    >>> # Model partitioning
    >>> model = ModelProfile.create_transformer(num_layers=12)
    >>> plan = PartitionOptimizer().optimize(model)
    >>>
    >>> # Sync scheduling
    >>> scheduler = SyncScheduler()
    >>> scheduler.schedule_sync("node-1", 1024*1024, Priority.HIGH)
    >>>
    >>> # Space mesh routing
    >>> mesh = create_constellation("test", num_planes=4, sats_per_plane=12)
    >>> route = mesh.find_route("test_P0_S0", "test_P2_S5")
"""

__version__ = "0.1.0"

from .config import Config, get_default_config, set_default_config, configure_logging
from .errors import (
    TerraOrbitError,
    ValidationError,
    UnsupportedParameterError,
    InvalidReferenceError,
    NoPendingDataError,
)

# Core types
from .core import (
    NodeType,
    NodeConfig,
    Topology,
    TrainingMetrics,
)

# Federated learning
from .federated import (
    CompressionMethod,
    CompressionConfig,
    CompressedGradient,
    GradientCompressor,
    FederatedClient,
    AggregationStrategy,
    GradientAggregator,
)

# Model partitioning
from .partitioning import (
    LayerType,
    LayerProfile,
    ModelProfile,
    PlacementLocation,
    LayerPlacement,
    PartitionPlan,
    OptimizationObjective,
    LatencyEstimator,
    PartitionOptimizer,
)

# Sync scheduling
from .sync import (
    Priority,
    GroundStation,
    ContactWindow,
    SyncTask,
    PriorityQueue,
    SyncScheduler,
)

# Space mesh
from .mesh import (
    LinkType,
    RouteMetric,
    OrbitalNode,
    ISLLink,
    Route,
    SpaceMesh,
    create_constellation,
)

from .coordinator import EarthSpaceCoordinator

__all__ = [
    "__version__",
    # Config
    "Config",
    "get_default_config",
    "set_default_config",
    "configure_logging",
    # Errors
    "TerraOrbitError",
    "ValidationError",
    "UnsupportedParameterError",
    "InvalidReferenceError",
    "NoPendingDataError",
    # Core
    "NodeType",
    "NodeConfig",
    "Topology",
    "TrainingMetrics",
    # Federated
    "CompressionMethod",
    "CompressionConfig",
    "CompressedGradient",
    "GradientCompressor",
    "FederatedClient",
    "AggregationStrategy",
    "GradientAggregator",
    # Partitioning
    "LayerType",
    "LayerProfile",
    "ModelProfile",
    "PlacementLocation",
    "LayerPlacement",
    "PartitionPlan",
    "OptimizationObjective",
    "LatencyEstimator",
    "PartitionOptimizer",
    # Sync
    "Priority",
    "GroundStation",
    "ContactWindow",
    "SyncTask",
    "PriorityQueue",
    "SyncScheduler",
    # Mesh
    "LinkType",
    "RouteMetric",
    "OrbitalNode",
    "ISLLink",
    "Route",
    "SpaceMesh",
    "create_constellation",
    # Coordination
    "EarthSpaceCoordinator",
]

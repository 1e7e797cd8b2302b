"""
TerraOrbit - Model Partitioning

Split a layered model between ground and orbital execution.

A plan is one cut index: layers before it run on the ground, layers from it
onward run in orbit, and the activation entering the first orbital layer is
the only tensor that crosses the uplink. Crossing costs tens of
milliseconds (propagation plus serialization at uplink rates), versus ~0.1 ms
between racks in a datacenter, which is why a second cut is never worth it.

Background: PipeDream (2019) and GPipe (2019) on pipeline-parallel stage
boundaries.
"""

from dataclasses import dataclass, field
from enum import Enum
from itertools import accumulate
from typing import Optional, Dict, List, Any
import logging

from .core import SPEED_OF_LIGHT_KM_S, DEFAULT_ORBIT_ALTITUDE_KM, Topology
from .errors import ValidationError

logger = logging.getLogger(__name__)


class LayerType(Enum):
    LINEAR = "linear"
    CONV2D = "conv2d"
    ATTENTION = "attention"
    EMBEDDING = "embedding"
    NORMALIZATION = "normalization"
    ACTIVATION = "activation"
    POOLING = "pooling"
    OTHER = "other"


class PlacementLocation(Enum):
    """Side of the uplink a layer executes on."""
    GROUND = "ground"
    ORBITAL = "orbital"


class OptimizationObjective(Enum):
    """What the cut index is chosen to minimize."""
    MINIMIZE_LATENCY = "minimize_latency"
    MINIMIZE_BANDWIDTH = "minimize_bandwidth"
    BALANCE = "balance"


@dataclass
class LayerProfile:
    """Cost profile of one layer.

    Attributes:
        name: Layer name
        layer_type: Kind of layer
        params: Parameter count
        flops: Forward-pass FLOPs
        input_size: Bytes of the activation entering the layer
        output_size: Bytes of the activation leaving the layer
        activation_memory: Bytes held for the backward pass
    """
    name: str
    layer_type: LayerType
    params: int
    flops: int
    input_size: int
    output_size: int
    activation_memory: int = 0

    def __post_init__(self):
        for attr in ("params", "flops", "input_size", "output_size", "activation_memory"):
            if getattr(self, attr) < 0:
                raise ValidationError(attr, "Must be non-negative")

    @property
    def compute_intensity(self) -> float:
        """Arithmetic intensity (FLOPs per activation byte moved)."""
        traffic = self.input_size + self.output_size
        return self.flops / traffic if traffic else 0.0


@dataclass
class ModelProfile:
    """A model as an ordered list of layer profiles.

    Example:
        >>> model = ModelProfile.from_layers([
        ...     LayerProfile("stem", LayerType.CONV2D, 9408, 118013952, 602112, 3211264),
        ...     LayerProfile("pool", LayerType.POOLING, 0, 802816, 3211264, 802816),
        ... ], name="resnet-stem")
        >>> model.num_layers
        2
    """
    layers: List[LayerProfile] = field(default_factory=list)
    name: str = "model"

    @classmethod
    def from_layers(cls, layers: List[LayerProfile], name: str = "model") -> "ModelProfile":
        return cls(layers=list(layers), name=name)

    def add_layer(self, layer: LayerProfile) -> None:
        self.layers.append(layer)

    @classmethod
    def create_transformer(
        cls,
        num_layers: int = 12,
        hidden_size: int = 768,
        vocab_size: int = 50000,
        seq_length: int = 512,
        name: str = "transformer"
    ) -> "ModelProfile":
        """GPT-style profile: embedding, (attention, FFN) x num_layers, LM head.

        FLOP counts are the usual analytic estimates, not measurements.
        Activations are fp32, so every hidden-state tensor is
        seq_length * hidden_size * 4 bytes.
        """
        s, h, v = seq_length, hidden_size, vocab_size
        hidden_bytes = s * h * 4

        def block(block_name: str, kind: LayerType, params: int, flops: int) -> LayerProfile:
            return LayerProfile(block_name, kind, params, flops, hidden_bytes, hidden_bytes)

        layers = [LayerProfile("embedding", LayerType.EMBEDDING, v * h, s * h, s * 4, hidden_bytes)]
        for i in range(num_layers):
            # QKV + output projections, plus the two s x s score matmuls
            layers.append(block(f"layer_{i}_attention", LayerType.ATTENTION,
                                4 * h * h, 4 * s * h * h + 2 * s * s * h))
            # h -> 4h -> h
            layers.append(block(f"layer_{i}_ffn", LayerType.LINEAR,
                                8 * h * h, 8 * s * h * h))
        layers.append(LayerProfile("output", LayerType.LINEAR, h * v, s * h * v,
                                   hidden_bytes, s * v * 4))
        return cls(layers=layers, name=name)

    @property
    def total_params(self) -> int:
        return sum(layer.params for layer in self.layers)

    @property
    def total_flops(self) -> int:
        return sum(layer.flops for layer in self.layers)

    @property
    def num_layers(self) -> int:
        return len(self.layers)

    def summary(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "num_layers": self.num_layers,
            "params_millions": round(self.total_params / 1e6, 2),
            "gflops": round(self.total_flops / 1e9, 2),
        }


@dataclass
class LayerPlacement:
    """Where one layer runs and what it costs there.

    ``estimated_latency_ms`` includes the uplink for the first orbital layer
    of a split plan; ``data_transfer_bytes`` is non-zero only on that layer.
    """
    layer_name: str
    location: PlacementLocation
    node_id: Optional[str] = None
    estimated_latency_ms: float = 0.0
    data_transfer_bytes: int = 0


@dataclass
class PartitionPlan:
    """A ground prefix / orbital suffix assignment of a model's layers.

    Attributes:
        model_name: Model the plan was made for
        split_index: Index of the first orbital layer (0 = all orbital, n = all ground)
        placements: One placement per layer, in model order
        total_latency_ms: Sum of per-layer latencies
        ground_orbital_transfers: 1 if the plan crosses the uplink, else 0
        total_transfer_bytes: Bytes sent across the cut
        objective: Objective the cut was chosen for
    """
    model_name: str
    split_index: int
    placements: List[LayerPlacement]
    total_latency_ms: float
    ground_orbital_transfers: int
    total_transfer_bytes: int
    objective: OptimizationObjective

    def __post_init__(self):
        if not 0 <= self.split_index <= len(self.placements):
            raise ValidationError("split_index", "Must be within 0..len(placements)")
        for i, placement in enumerate(self.placements):
            expected = PlacementLocation.GROUND if i < self.split_index else PlacementLocation.ORBITAL
            if placement.location != expected:
                raise ValidationError(
                    "placements", f"{placement.layer_name} breaks the ground/orbital split"
                )

    @property
    def ground_layers(self) -> List[LayerPlacement]:
        return self.placements[:self.split_index]

    @property
    def orbital_layers(self) -> List[LayerPlacement]:
        return self.placements[self.split_index:]

    @property
    def crosses_uplink(self) -> bool:
        return self.ground_orbital_transfers > 0

    def summary(self) -> Dict[str, Any]:
        return {
            "model_name": self.model_name,
            "objective": self.objective.value,
            "split_index": self.split_index,
            "ground_layers": self.split_index,
            "orbital_layers": len(self.placements) - self.split_index,
            "latency_ms": round(self.total_latency_ms, 2),
            "transfer_mb": round(self.total_transfer_bytes / 1e6, 2),
        }


class LatencyEstimator:
    """Ground <-> orbit link timing: light time plus serialization.

    Example:
        >>> link = LatencyEstimator(orbit_altitude_km=550.0, uplink_bandwidth_mbps=100.0)
        >>> round(link.transfer_ms(1_000_000), 1)
        80.0
    """

    def __init__(
        self,
        orbit_altitude_km: float = DEFAULT_ORBIT_ALTITUDE_KM,
        uplink_bandwidth_mbps: float = 100.0,
        downlink_bandwidth_mbps: float = 200.0,
        processing_overhead_ms: float = 5.0
    ):
        if uplink_bandwidth_mbps <= 0 or downlink_bandwidth_mbps <= 0:
            raise ValidationError("bandwidth_mbps", "Must be positive")
        if orbit_altitude_km <= 0:
            raise ValidationError("orbit_altitude_km", "Must be positive")
        self.orbit_altitude_km = orbit_altitude_km
        self.uplink_bandwidth_mbps = uplink_bandwidth_mbps
        self.downlink_bandwidth_mbps = downlink_bandwidth_mbps
        self.processing_overhead_ms = processing_overhead_ms

    @property
    def propagation_ms(self) -> float:
        """One-way light time straight up to the shell."""
        return self.orbit_altitude_km / SPEED_OF_LIGHT_KM_S * 1000

    def transfer_ms(self, num_bytes: int, uplink: bool = True) -> float:
        """Serialization time for ``num_bytes`` on one direction of the link."""
        mbps = self.uplink_bandwidth_mbps if uplink else self.downlink_bandwidth_mbps
        return num_bytes * 8 / (mbps * 1e6) * 1000

    def cut_ms(self, num_bytes: int) -> float:
        """Cost of pushing an activation up across a ground/orbit cut."""
        return self.transfer_ms(num_bytes) + self.propagation_ms

    def round_trip_ms(self, uplink_bytes: int, downlink_bytes: int) -> float:
        """Request up, response down, with processing at both ends."""
        return (
            self.transfer_ms(uplink_bytes)
            + self.transfer_ms(downlink_bytes, uplink=False)
            + 2 * (self.propagation_ms + self.processing_overhead_ms)
        )


class PartitionOptimizer:
    """Choose the ground/orbit cut for a model.

    Example:
        >>> optimizer = PartitionOptimizer(ground_compute_tflops=100.0, orbital_compute_tflops=10.0)
        >>> plan = optimizer.optimize(ModelProfile.create_transformer(num_layers=12),
        ...                           OptimizationObjective.MINIMIZE_LATENCY)
        >>> plan.split_index
        26
    """

    def __init__(
        self,
        ground_compute_tflops: float = 100.0,
        orbital_compute_tflops: float = 10.0,
        orbit_altitude_km: float = DEFAULT_ORBIT_ALTITUDE_KM,
        uplink_bandwidth_mbps: float = 100.0,
        downlink_bandwidth_mbps: float = 200.0
    ):
        if ground_compute_tflops <= 0 or orbital_compute_tflops <= 0:
            raise ValidationError("compute_tflops", "Ground and orbital compute must be positive")
        self.ground_compute_tflops = ground_compute_tflops
        self.orbital_compute_tflops = orbital_compute_tflops
        self.latency_estimator = LatencyEstimator(
            orbit_altitude_km=orbit_altitude_km,
            uplink_bandwidth_mbps=uplink_bandwidth_mbps,
            downlink_bandwidth_mbps=downlink_bandwidth_mbps,
        )

    @classmethod
    def from_topology(cls, topology: Topology) -> "PartitionOptimizer":
        """Size the two sides from a topology.

        Compute is summed per side. The uplink runs at the slowest orbital
        node's rate and the altitude is the mean of the orbital shells.
        """
        orbital = topology.get_orbital_nodes()
        if not orbital or not topology.get_ground_nodes():
            raise ValidationError("topology", "Needs at least one ground and one orbital node")

        return cls(
            ground_compute_tflops=topology.ground_compute_tflops,
            orbital_compute_tflops=topology.orbital_compute_tflops,
            orbit_altitude_km=sum(n.orbit_altitude_km for n in orbital) / len(orbital),
            uplink_bandwidth_mbps=min(n.bandwidth_mbps for n in orbital),
        )

    @property
    def ground_share(self) -> float:
        """Fraction of the FLOPs BALANCE assigns to the ground."""
        return self.ground_compute_tflops / (self.ground_compute_tflops + self.orbital_compute_tflops)

    def optimize(
        self,
        model: ModelProfile,
        objective: OptimizationObjective = OptimizationObjective.BALANCE
    ) -> PartitionPlan:
        if objective == OptimizationObjective.MINIMIZE_LATENCY:
            split = self._latency_split(model)
        elif objective == OptimizationObjective.MINIMIZE_BANDWIDTH:
            split = self._bandwidth_split(model)
        elif objective == OptimizationObjective.BALANCE:
            split = self._balanced_split(model)
        else:
            raise ValidationError("objective", f"Unknown objective {objective!r}")

        plan = self._create_plan(model, split, objective)
        logger.debug(
            "Partitioned %s at layer %d/%d (%s, %.2f ms)",
            model.name, split, model.num_layers, objective.value, plan.total_latency_ms,
        )
        return plan

    def compare_strategies(self, model: ModelProfile) -> Dict[str, PartitionPlan]:
        """One plan per objective, keyed by objective value."""
        return {objective.value: self.optimize(model, objective) for objective in OptimizationObjective}

    def _compute_ms(self, layer: LayerProfile, location: PlacementLocation) -> float:
        if location == PlacementLocation.GROUND:
            tflops = self.ground_compute_tflops
        else:
            tflops = self.orbital_compute_tflops
        return layer.flops / (tflops * 1e12) * 1000

    def _latency_split(self, model: ModelProfile) -> int:
        """Exhaustive over the n + 1 cuts, O(n) with prefix sums; first minimum wins."""
        n = model.num_layers
        ground = [0.0] + list(accumulate(
            self._compute_ms(layer, PlacementLocation.GROUND) for layer in model.layers
        ))
        orbital = [0.0] + list(accumulate(
            self._compute_ms(layer, PlacementLocation.ORBITAL) for layer in model.layers
        ))

        best_split, best_ms = 0, float('inf')
        for split in range(n + 1):
            total = ground[split] + (orbital[n] - orbital[split])
            if 0 < split < n:
                total += self.latency_estimator.cut_ms(model.layers[split].input_size)
            if total < best_ms:
                best_split, best_ms = split, total
        return best_split

    def _bandwidth_split(self, model: ModelProfile) -> int:
        """Cut right after the first layer with the smallest output.

        Greedy on outputs only, so an all-ground or all-orbital plan (which
        sends nothing) is never chosen here.
        """
        if not model.layers:
            return 0
        smallest = min(range(model.num_layers), key=lambda i: model.layers[i].output_size)
        return smallest + 1

    def _balanced_split(self, model: ModelProfile) -> int:
        """Shortest ground prefix carrying at least the ground share of FLOPs."""
        target = model.total_flops * self.ground_share
        if target <= 0:
            return 0
        for split, cumulative in enumerate(accumulate(l.flops for l in model.layers), start=1):
            if cumulative >= target:
                return split
        return model.num_layers

    def _create_plan(
        self,
        model: ModelProfile,
        split: int,
        objective: OptimizationObjective
    ) -> PartitionPlan:
        crosses = 0 < split < model.num_layers
        placements = []

        for i, layer in enumerate(model.layers):
            location = PlacementLocation.GROUND if i < split else PlacementLocation.ORBITAL
            latency_ms = self._compute_ms(layer, location)
            uplinked = 0
            if crosses and i == split:
                uplinked = layer.input_size
                latency_ms += self.latency_estimator.cut_ms(uplinked)
            placements.append(LayerPlacement(
                layer_name=layer.name,
                location=location,
                estimated_latency_ms=latency_ms,
                data_transfer_bytes=uplinked,
            ))

        return PartitionPlan(
            model_name=model.name,
            split_index=split,
            placements=placements,
            total_latency_ms=sum(p.estimated_latency_ms for p in placements),
            ground_orbital_transfers=1 if crosses else 0,
            total_transfer_bytes=sum(p.data_transfer_bytes for p in placements),
            objective=objective,
        )

"""
TerraOrbit - Federated Learning

Gradient compression and aggregation for Earth-space distributed training.

LEO uplinks are often 10-50 Mbps with 20-40 ms latency, an order of magnitude
below what standard federated learning assumes, so the default preset keeps
only the top 1% of gradient entries and quantizes them to 8 bits. Error
feedback carries what was dropped into the next round.

References:
- "Communication-Efficient Learning" (McMahan et al., 2017)
- "Deep Gradient Compression" (Lin et al., 2018)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, List, Any, Sequence, Tuple
import logging
import math
import random
import threading

from .config import get_default_config
from .core import TrainingMetrics
from .errors import NoPendingDataError, UnsupportedParameterError, ValidationError

logger = logging.getLogger(__name__)

SUPPORTED_QUANTIZATION_BITS = (2, 4, 8, 16, 32)
INDEX_BITS = 32
FLOAT_BYTES = 4


class CompressionMethod(Enum):
    """Gradient compression method."""
    NONE = "none"
    TOP_K = "topk"
    TOP_K_QUANTIZED = "topk_quantized"
    RANDOM_K = "random_k"
    QUANTIZATION = "quantization"


class AggregationStrategy(Enum):
    """Strategy for aggregating gradients from multiple nodes."""
    FEDAVG = "fedavg"
    ASYNC_FEDAVG = "async_fedavg"
    WEIGHTED_AVG = "weighted_avg"


@dataclass(frozen=True)
class CompressionConfig:
    """Configuration for gradient compression.

    Attributes:
        method: Compression method to use
        k_ratio: For sparsifying methods, fraction of entries to keep (0.01 = top 1%)
        quantization_bits: Bits per quantized value (2, 4, 8, 16 or 32)
        error_feedback: Whether to carry compression error into the next round
        seed: Seed for the Random-K index sampler
    """
    method: CompressionMethod = CompressionMethod.TOP_K_QUANTIZED
    k_ratio: float = 0.01
    quantization_bits: int = 8
    error_feedback: bool = True
    seed: Optional[int] = None

    def __post_init__(self):
        if not 0 < self.k_ratio <= 1.0:
            raise ValidationError("k_ratio", "Must be in (0, 1]")
        if self.quantization_bits not in SUPPORTED_QUANTIZATION_BITS:
            raise UnsupportedParameterError(
                "quantization_bits", self.quantization_bits, SUPPORTED_QUANTIZATION_BITS
            )

    @property
    def is_quantized(self) -> bool:
        return self.method in (CompressionMethod.TOP_K_QUANTIZED, CompressionMethod.QUANTIZATION)

    @property
    def theoretical_compression_ratio(self) -> float:
        """Theoretical compression ratio (smaller = more compression).

        Ignores metadata headers and wire-format overhead, and assumes 32-bit
        indices for the sparse methods.
        """
        if self.method == CompressionMethod.NONE:
            return 1.0
        elif self.method == CompressionMethod.TOP_K:
            # 32-bit value + 32-bit index per kept entry
            return self.k_ratio * (1 + INDEX_BITS / 32)
        elif self.method == CompressionMethod.TOP_K_QUANTIZED:
            return self.k_ratio * (self.quantization_bits / 32 + INDEX_BITS / 32)
        elif self.method == CompressionMethod.QUANTIZATION:
            return self.quantization_bits / 32
        elif self.method == CompressionMethod.RANDOM_K:
            return self.k_ratio
        raise ValidationError("method", f"Unknown compression method {self.method!r}")

    @classmethod
    def high_compression(cls) -> "CompressionConfig":
        """Configuration for maximum compression (1000x+)."""
        return cls(
            method=CompressionMethod.TOP_K_QUANTIZED,
            k_ratio=0.001,
            quantization_bits=4,
            error_feedback=True
        )

    @classmethod
    def balanced(cls) -> "CompressionConfig":
        """Balanced compression and accuracy."""
        return cls(
            method=CompressionMethod.TOP_K_QUANTIZED,
            k_ratio=0.01,
            quantization_bits=8,
            error_feedback=True
        )

    @classmethod
    def low_compression(cls) -> "CompressionConfig":
        """Minimal compression for high-bandwidth links."""
        return cls(
            method=CompressionMethod.QUANTIZATION,
            k_ratio=1.0,
            quantization_bits=16,
            error_feedback=False
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "method": self.method.value,
            "k_ratio": self.k_ratio,
            "quantization_bits": self.quantization_bits,
            "error_feedback": self.error_feedback,
            "seed": self.seed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompressionConfig":
        """Create CompressionConfig from dictionary."""
        return cls(
            method=CompressionMethod(data.get("method", CompressionMethod.TOP_K_QUANTIZED.value)),
            k_ratio=data.get("k_ratio", 0.01),
            quantization_bits=data.get("quantization_bits", 8),
            error_feedback=data.get("error_feedback", True),
            seed=data.get("seed"),
        )


@dataclass
class CompressedGradient:
    """Compressed gradient representation.

    Stores sparse gradients with indices and optionally quantized values.
    """
    indices: List[int]
    values: List[float]
    shape: Tuple[int, ...]
    original_size: int
    compressed_size: int
    compression_ratio: float
    quantization_bits: Optional[int] = None

    def __post_init__(self):
        if len(self.indices) != len(self.values):
            raise ValidationError("values", "Must have one value per index")
        if len(set(self.indices)) != len(self.indices):
            raise ValidationError("indices", "Indices must be unique")
        if any(not 0 <= i < self.original_size for i in self.indices):
            raise ValidationError("indices", f"Indices must lie in [0, {self.original_size})")

    @property
    def sparsity(self) -> float:
        """Fraction of zero values after compression."""
        if self.original_size == 0:
            return 0.0
        return 1.0 - len(self.indices) / self.original_size

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "indices": list(self.indices),
            "values": list(self.values),
            "shape": list(self.shape),
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "compression_ratio": self.compression_ratio,
            "quantization_bits": self.quantization_bits,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompressedGradient":
        """Create CompressedGradient from dictionary."""
        return cls(
            indices=[int(i) for i in data["indices"]],
            values=[float(v) for v in data["values"]],
            shape=tuple(data.get("shape", (data["original_size"],))),
            original_size=data["original_size"],
            compressed_size=data["compressed_size"],
            compression_ratio=data["compression_ratio"],
            quantization_bits=data.get("quantization_bits"),
        )


class GradientCompressor:
    """Compress gradients for bandwidth-efficient synchronization.

    The error-feedback residual lives on the compressor instance. It is
    cleared by reset() and whenever a new config is assigned, since a
    residual computed under one sparsity setting is meaningless under another.

    Example:
        >>> config = CompressionConfig(method=CompressionMethod.TOP_K, k_ratio=0.5)
        >>> compressor = GradientCompressor(config)
        >>> gradients = [0.1, 0.001, 0.5, -0.2, 0.002, 0.8]
        >>> compressed = compressor.compress(gradients)
        >>> compressed.indices
        [5, 2, 3]
    """

    def __init__(self, config: CompressionConfig, rng: Optional[random.Random] = None):
        self._config = config
        self._rng = rng or random.Random(config.seed)
        self._residual: Optional[List[float]] = None

    @property
    def config(self) -> CompressionConfig:
        return self._config

    @config.setter
    def config(self, config: CompressionConfig) -> None:
        if config != self._config:
            self._config = config
            if self._residual is not None:
                logger.debug("Compression config changed, residual cleared")
            self.reset()

    @property
    def residual(self) -> Optional[List[float]]:
        """Error carried into the next compress() call (copy)."""
        return list(self._residual) if self._residual is not None else None

    def reset(self) -> None:
        """Drop the error-feedback residual."""
        self._residual = None

    def compress(self, gradients: Sequence[float]) -> CompressedGradient:
        """Compress gradients using the configured method."""
        config = self._config
        original_size = len(gradients)
        if original_size == 0:
            raise ValidationError("gradients", "Cannot compress an empty gradient")

        working = [float(g) for g in gradients]
        if config.error_feedback and self._residual is not None:
            if len(self._residual) == original_size:
                working = [g + e for g, e in zip(working, self._residual)]
            else:
                logger.warning(
                    "Discarding residual of length %d for gradient of length %d",
                    len(self._residual), original_size,
                )
                self._residual = None

        if config.method == CompressionMethod.NONE:
            if config.error_feedback:
                self._residual = [0.0] * original_size
            return CompressedGradient(
                indices=list(range(original_size)),
                values=working,
                shape=(original_size,),
                original_size=original_size,
                compressed_size=original_size * FLOAT_BYTES,
                compression_ratio=1.0,
            )

        indices, values = self._select(working, config)

        if config.is_quantized:
            values = self._quantize(values, config.quantization_bits)

        if config.error_feedback:
            reconstructed = [0.0] * original_size
            for i, v in zip(indices, values):
                reconstructed[i] = v
            self._residual = [w - r for w, r in zip(working, reconstructed)]

        if config.method == CompressionMethod.QUANTIZATION:
            # dense: positions are implicit, only values go on the wire
            compressed_size = original_size * config.quantization_bits // 8
        else:
            bits_per_value = config.quantization_bits if config.is_quantized else 32
            compressed_size = len(indices) * (INDEX_BITS + bits_per_value) // 8

        compressed = CompressedGradient(
            indices=indices,
            values=values,
            shape=(original_size,),
            original_size=original_size,
            compressed_size=compressed_size,
            compression_ratio=compressed_size / (original_size * FLOAT_BYTES),
            quantization_bits=config.quantization_bits if config.is_quantized else None,
        )
        logger.debug(
            "Compressed %d -> %d entries (%s, ratio %.4f)",
            original_size, len(indices), config.method.value, compressed.compression_ratio,
        )
        return compressed

    def decompress(self, compressed: CompressedGradient) -> List[float]:
        """Decompress gradients back to dense representation."""
        result = [0.0] * compressed.original_size
        for i, v in zip(compressed.indices, compressed.values):
            result[i] = v
        return result

    def _select(self, working: List[float], config: CompressionConfig) -> Tuple[List[int], List[float]]:
        n = len(working)

        if config.method == CompressionMethod.QUANTIZATION:
            return list(range(n)), list(working)

        k = min(n, max(1, math.ceil(config.k_ratio * n)))

        if config.method in (CompressionMethod.TOP_K, CompressionMethod.TOP_K_QUANTIZED):
            # sort is stable: equal magnitudes keep index order
            order = sorted(range(n), key=lambda i: -abs(working[i]))
            indices = order[:k]
        elif config.method == CompressionMethod.RANDOM_K:
            indices = sorted(self._rng.sample(range(n), k))
        else:
            raise ValidationError("method", f"Unknown compression method {config.method!r}")

        return indices, [working[i] for i in indices]

    @staticmethod
    def _quantize(values: List[float], bits: int) -> List[float]:
        """Quantize values onto 2**bits uniform levels over [min, max].

        Linear quantization; no stochastic rounding.
        """
        if not values:
            return values

        min_val = min(values)
        max_val = max(values)
        range_val = max_val - min_val

        if range_val == 0:
            return list(values)

        scale = range_val / (2 ** bits - 1)
        return [min_val + round((v - min_val) / scale) * scale for v in values]


class FederatedClient:
    """Client for federated learning on Earth or orbital nodes.

    Handles local training, gradient compression, and bookkeeping of what
    was sent to the aggregator.

    Example:
        >>> client = FederatedClient("orbital-1", CompressionConfig.balanced())
        >>> gradients = client.compute_gradients([0.0] * 1000)
        >>> compressed = client.compress(gradients)
    """

    def __init__(
        self,
        node_id: str,
        compression: Optional[CompressionConfig] = None,
        node_type: str = "orbital",
        rng: Optional[random.Random] = None,
    ):
        if compression is None:
            compression = get_default_config().compression_config()
        self.node_id = node_id
        self.node_type = node_type
        self.metrics = TrainingMetrics()
        self._compressor = GradientCompressor(compression, rng=rng)
        self._local_steps = 0
        self._sync_round = 0

    @classmethod
    def orbital(cls, node_id: str) -> "FederatedClient":
        """Orbital client with aggressive compression."""
        return cls(node_id, CompressionConfig.balanced(), "orbital")

    @classmethod
    def ground(cls, node_id: str) -> "FederatedClient":
        """Ground client with light compression."""
        return cls(node_id, CompressionConfig.low_compression(), "ground")

    @property
    def compressor(self) -> GradientCompressor:
        return self._compressor

    @property
    def compression(self) -> CompressionConfig:
        return self._compressor.config

    @compression.setter
    def compression(self, config: CompressionConfig) -> None:
        self._compressor.config = config

    def compute_gradients(self, model_params: Sequence[float],
                          local_data: Optional[Sequence[Any]] = None) -> List[float]:
        """Compute gradients from local data (simulation).

        Deterministic stand-in for a framework backward pass: the same step
        count and parameter count always produce the same gradient.
        """
        self._local_steps += 1
        self.metrics.end_step(samples=len(local_data) if local_data else 0, duration_s=0.0)
        return [math.sin(self._local_steps * 1000.0 + i) * 0.1 for i in range(len(model_params))]

    def compress(self, gradients: Sequence[float]) -> CompressedGradient:
        """Compress gradients for transmission."""
        compressed = self._compressor.compress(gradients)
        self.metrics.record_compression(compressed.compression_ratio, compressed.sparsity)
        return compressed

    def record_sync(self, compressed: CompressedGradient, duration_s: float = 0.0) -> None:
        """Account for a delivered upload."""
        self._sync_round += 1
        self.metrics.record_sync(compressed.compressed_size, 0, duration_s)

    def apply_update(self, model_params: Sequence[float], update: Sequence[float],
                     lr: float = 0.01) -> List[float]:
        """Apply aggregated update to local model."""
        if len(model_params) != len(update):
            raise ValidationError("update", "Length must match model parameters")
        return [p - u * lr for p, u in zip(model_params, update)]

    def get_stats(self) -> Dict[str, Any]:
        """Get client statistics."""
        return {
            "node_id": self.node_id,
            "node_type": self.node_type,
            "local_steps": self._local_steps,
            "sync_rounds": self._sync_round,
            "compression_method": self.compression.method.value,
            "compression_ratio": self.compression.theoretical_compression_ratio,
        }


class GradientAggregator:
    """Central aggregator for gradient synchronization.

    Collects compressed gradients from distributed nodes and computes
    the global model update using FedAvg or other strategies.

    Submissions are upserted per node. aggregate() snapshots and clears the
    pending map and advances the round under one lock, so a submission that
    races an aggregation is counted in the next round instead of being lost.

    Example:
        >>> aggregator = GradientAggregator(strategy=AggregationStrategy.FEDAVG)
        >>> aggregator.receive_gradients("node-1", compressed_grads_1, samples=1000)
        >>> aggregator.receive_gradients("node-2", compressed_grads_2, samples=500)
        >>> global_update = aggregator.aggregate()
    """

    def __init__(
        self,
        strategy: AggregationStrategy = AggregationStrategy.FEDAVG,
        min_participants: Optional[int] = None,
        model_size: Optional[int] = None
    ):
        if min_participants is None:
            min_participants = get_default_config().default_min_participants
        if min_participants < 1:
            raise ValidationError("min_participants", "Must be at least 1")
        self.strategy = strategy
        self.min_participants = min_participants
        self.model_size = model_size
        self._pending: Dict[str, Tuple[CompressedGradient, int]] = {}
        self._round = 0
        self._lock = threading.Lock()

    def receive_gradients(
        self,
        node_id: str,
        gradients: CompressedGradient,
        samples: int = 1
    ) -> int:
        """Receive (or replace) a node's gradients; returns the round they count toward."""
        if samples < 0:
            raise ValidationError("samples", "Must be non-negative")
        with self._lock:
            replaced = node_id in self._pending
            self._pending[node_id] = (gradients, samples)
            round_number = self._round
        logger.debug(
            "%s gradients from %s for round %d (%d samples)",
            "Replaced" if replaced else "Received", node_id, round_number, samples,
        )
        return round_number

    @property
    def num_participants(self) -> int:
        """Number of nodes that have submitted gradients."""
        return len(self._pending)

    @property
    def round(self) -> int:
        """Number of completed aggregation rounds."""
        return self._round

    def ready_to_aggregate(self) -> bool:
        """Check if enough participants for aggregation."""
        return self.num_participants >= self.min_participants

    def aggregate(self) -> List[float]:
        """Aggregate pending gradients using the configured strategy.

        Pending submissions are only cleared once the round validates; on
        error they stay queued for a retry.
        """
        with self._lock:
            if not self._pending:
                raise NoPendingDataError(self._round)
            pending = self._pending
            model_size = self._resolve_model_size(pending)
            for node_id, (grad, _) in pending.items():
                if grad.indices and max(grad.indices) >= model_size:
                    raise ValidationError(
                        "indices",
                        f"Index {max(grad.indices)} from {node_id} outside model of size {model_size}",
                    )
            self._pending = {}
            round_number = self._round
            self._round += 1

        if self.strategy in (AggregationStrategy.FEDAVG, AggregationStrategy.WEIGHTED_AVG):
            weights = self._sample_weights(pending)
        else:
            weights = {node_id: 1.0 / len(pending) for node_id in pending}

        aggregated = [0.0] * model_size
        for node_id, (grad, _) in pending.items():
            weight = weights[node_id]
            for i, v in zip(grad.indices, grad.values):
                aggregated[i] += v * weight

        logger.info(
            "Aggregated round %d from %d participant(s) (%s)",
            round_number, len(pending), self.strategy.value,
        )
        return aggregated

    def _resolve_model_size(self, pending: Dict[str, Tuple[CompressedGradient, int]]) -> int:
        if self.model_size is not None:
            return self.model_size
        return max(grad.original_size for grad, _ in pending.values())

    @staticmethod
    def _sample_weights(pending: Dict[str, Tuple[CompressedGradient, int]]) -> Dict[str, float]:
        total_samples = sum(samples for _, samples in pending.values())
        if total_samples == 0:
            return {node_id: 1.0 / len(pending) for node_id in pending}
        return {node_id: samples / total_samples for node_id, (_, samples) in pending.items()}

    def get_stats(self) -> Dict[str, Any]:
        """Get aggregator statistics."""
        return {
            "strategy": self.strategy.value,
            "round": self._round,
            "pending_participants": self.num_participants,
            "min_participants": self.min_participants,
            "model_size": self.model_size,
        }

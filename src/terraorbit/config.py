"""
TerraOrbit - Configuration

Package-wide defaults, overridable from the environment.
"""

from dataclasses import dataclass
from typing import Optional
import logging
import os

from .errors import ValidationError, UnsupportedParameterError


COMPRESSION_PRESETS = ("high", "balanced", "low")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class Config:
    """Engine configuration settings.

    Attributes:
        default_isl_range_km: ISL range used by meshes built without an explicit one
        default_min_participants: Quorum for new gradient aggregators
        compression_preset: Preset name used when a client gets no compression config
        max_route_expansions: Upper bound on Dijkstra node expansions (None = unbounded)
        log_level: Level applied to the package logger by configure_logging()
        debug: Force DEBUG logging

    Example:
        >>> config = Config(max_route_expansions=2000)
        >>> config.compression_config().method
        <CompressionMethod.TOP_K_QUANTIZED: 'topk_quantized'>
    """

    default_isl_range_km: float = 5000.0
    default_min_participants: int = 1
    compression_preset: str = "balanced"
    max_route_expansions: Optional[int] = None
    log_level: str = "WARNING"
    debug: bool = False

    def __post_init__(self):
        env = os.environ

        if env.get("TERRAORBIT_ISL_RANGE_KM"):
            self.default_isl_range_km = _parse_float(
                "TERRAORBIT_ISL_RANGE_KM", env["TERRAORBIT_ISL_RANGE_KM"]
            )
        if env.get("TERRAORBIT_MIN_PARTICIPANTS"):
            self.default_min_participants = _parse_int(
                "TERRAORBIT_MIN_PARTICIPANTS", env["TERRAORBIT_MIN_PARTICIPANTS"]
            )
        if env.get("TERRAORBIT_COMPRESSION"):
            self.compression_preset = env["TERRAORBIT_COMPRESSION"].strip().lower()
        if env.get("TERRAORBIT_MAX_ROUTE_EXPANSIONS"):
            self.max_route_expansions = _parse_int(
                "TERRAORBIT_MAX_ROUTE_EXPANSIONS", env["TERRAORBIT_MAX_ROUTE_EXPANSIONS"]
            )
        if env.get("TERRAORBIT_LOG_LEVEL"):
            self.log_level = env["TERRAORBIT_LOG_LEVEL"].strip().upper()

        # Debug mode from environment
        if env.get("TERRAORBIT_DEBUG", "").lower() in ("1", "true", "yes"):
            self.debug = True

        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        if self.default_isl_range_km <= 0:
            raise ValidationError("default_isl_range_km", "Must be positive")
        if self.default_min_participants < 1:
            raise ValidationError("default_min_participants", "Must be at least 1")
        if self.compression_preset not in COMPRESSION_PRESETS:
            raise UnsupportedParameterError(
                "compression_preset", self.compression_preset, COMPRESSION_PRESETS
            )
        if self.max_route_expansions is not None and self.max_route_expansions < 1:
            raise ValidationError("max_route_expansions", "Must be at least 1")
        if self.log_level not in LOG_LEVELS:
            raise UnsupportedParameterError("log_level", self.log_level, LOG_LEVELS)

    @property
    def effective_log_level(self) -> int:
        """Logging level to apply, honoring the debug flag."""
        if self.debug:
            return logging.DEBUG
        return getattr(logging, self.log_level)

    def compression_config(self):
        """Build the CompressionConfig named by compression_preset."""
        from .federated import CompressionConfig

        if self.compression_preset == "high":
            return CompressionConfig.high_compression()
        elif self.compression_preset == "low":
            return CompressionConfig.low_compression()
        return CompressionConfig.balanced()


def _parse_float(name: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(name, f"Expected a number, got {raw!r}") from None


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(name, f"Expected an integer, got {raw!r}") from None


# Default configuration
_default_config: Optional[Config] = None


def get_default_config() -> Config:
    """Get the default engine configuration."""
    global _default_config
    if _default_config is None:
        _default_config = Config()
    return _default_config


def set_default_config(config: Optional[Config]) -> None:
    """Set the default engine configuration (None resets to lazy defaults)."""
    global _default_config
    _default_config = config


def configure_logging(config: Optional[Config] = None) -> logging.Logger:
    """Apply the configured level to the ``terraorbit`` logger.

    Handlers are left to the application; this only sets the level.
    """
    config = config or get_default_config()
    logger = logging.getLogger("terraorbit")
    logger.setLevel(config.effective_log_level)
    return logger

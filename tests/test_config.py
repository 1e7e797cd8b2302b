"""Tests for configuration, environment overrides and logging setup."""

import logging

import pytest

from terraorbit.config import (
    Config,
    configure_logging,
    get_default_config,
    set_default_config,
)
from terraorbit.errors import UnsupportedParameterError, ValidationError
from terraorbit.federated import CompressionConfig
from terraorbit.mesh import create_constellation


def test_defaults() -> None:
    config = Config()
    assert config.default_isl_range_km == 5000.0
    assert config.default_min_participants == 1
    assert config.max_route_expansions is None
    assert config.compression_config() == CompressionConfig.balanced()


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TERRAORBIT_ISL_RANGE_KM", "2500")
    monkeypatch.setenv("TERRAORBIT_MIN_PARTICIPANTS", "4")
    monkeypatch.setenv("TERRAORBIT_COMPRESSION", "Low")
    monkeypatch.setenv("TERRAORBIT_MAX_ROUTE_EXPANSIONS", "500")

    config = Config()

    assert config.default_isl_range_km == 2500.0
    assert config.default_min_participants == 4
    assert config.compression_config() == CompressionConfig.low_compression()
    assert config.max_route_expansions == 500


def test_bad_env_value(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TERRAORBIT_MIN_PARTICIPANTS", "many")
    with pytest.raises(ValidationError) as exc_info:
        Config()
    assert exc_info.value.field == "TERRAORBIT_MIN_PARTICIPANTS"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"default_isl_range_km": 0.0},
        {"default_min_participants": 0},
        {"max_route_expansions": 0},
    ],
)
def test_rejects_bad_values(kwargs) -> None:
    with pytest.raises(ValidationError):
        Config(**kwargs)


def test_rejects_unknown_preset() -> None:
    with pytest.raises(UnsupportedParameterError):
        Config(compression_preset="extreme")


def test_default_config_is_shared() -> None:
    assert get_default_config() is get_default_config()

    custom = Config(default_min_participants=5)
    set_default_config(custom)
    assert get_default_config() is custom


def test_configure_logging_levels(monkeypatch: pytest.MonkeyPatch) -> None:
    logger = configure_logging(Config(log_level="INFO"))
    assert logger.name == "terraorbit"
    assert logger.level == logging.INFO

    monkeypatch.setenv("TERRAORBIT_DEBUG", "true")
    assert configure_logging(Config()).level == logging.DEBUG
    logger.setLevel(logging.NOTSET)


def test_route_search_warning_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    mesh = create_constellation(
        "walker", 4, 12, isl_range_km=5000.0, config=Config(max_route_expansions=1)
    )
    with caplog.at_level(logging.WARNING, logger="terraorbit"):
        mesh.find_route("walker_P0_S0", "walker_P0_S6")

    assert any("abandoned" in r.getMessage() for r in caplog.records)

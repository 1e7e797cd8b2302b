"""Shared fixtures for the TerraOrbit test suite."""

import pytest

from terraorbit.config import set_default_config
from terraorbit.core import NodeConfig, Topology
from terraorbit.mesh import OrbitalNode, SpaceMesh

_ENV_VARS = (
    "TERRAORBIT_ISL_RANGE_KM",
    "TERRAORBIT_MIN_PARTICIPANTS",
    "TERRAORBIT_COMPRESSION",
    "TERRAORBIT_MAX_ROUTE_EXPANSIONS",
    "TERRAORBIT_LOG_LEVEL",
    "TERRAORBIT_DEBUG",
)


@pytest.fixture(autouse=True)
def clean_config(monkeypatch: pytest.MonkeyPatch):
    """Every test starts from built-in defaults, not the caller's environment."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    set_default_config(None)
    yield
    set_default_config(None)


@pytest.fixture
def triangle_mesh() -> SpaceMesh:
    """Three satellites 10 degrees apart in one plane; all pairwise in range."""
    mesh = SpaceMesh(default_isl_range_km=5000.0)
    for i, anomaly in enumerate((0.0, 10.0, 20.0)):
        mesh.add_node(OrbitalNode(f"sat-{i}", mean_anomaly_deg=anomaly, isl_range_km=5000.0))
    mesh.update_topology()
    return mesh


@pytest.fixture
def mixed_topology() -> Topology:
    topology = Topology()
    topology.add_node(NodeConfig.ground("ground-1", 37.77, -122.42))
    topology.add_node(NodeConfig.orbital("sat-0", compute_tflops=10.0, bandwidth_mbps=100.0))
    topology.add_node(NodeConfig.orbital("sat-1", compute_tflops=10.0, bandwidth_mbps=50.0))
    topology.add_node(NodeConfig.orbital("sat-2", compute_tflops=10.0, bandwidth_mbps=100.0))
    return topology

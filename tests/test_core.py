"""Tests for node configuration, topology registry and training metrics."""

import dataclasses

import pytest

from terraorbit.core import (
    DEFAULT_ORBIT_ALTITUDE_KM,
    NodeConfig,
    NodeType,
    Topology,
    TrainingMetrics,
)
from terraorbit.errors import InvalidReferenceError, TerraOrbitError, ValidationError


class TestNodeConfig:
    def test_orbital_defaults_altitude(self) -> None:
        node = NodeConfig("sat-1", NodeType.ORBITAL)
        assert node.orbit_altitude_km == DEFAULT_ORBIT_ALTITUDE_KM
        assert node.is_orbital

    def test_ground_factory(self) -> None:
        node = NodeConfig.ground("gs-1", 78.23, 15.39)
        assert node.node_type == NodeType.GROUND
        assert node.location == (78.23, 15.39)
        assert node.orbit_altitude_km is None
        assert node.compute_tflops == 100.0

    def test_frozen(self) -> None:
        node = NodeConfig.orbital("sat-1")
        with pytest.raises(dataclasses.FrozenInstanceError):
            node.compute_tflops = 99.0  # type: ignore[misc]
        updated = dataclasses.replace(node, compute_tflops=99.0)
        assert updated.compute_tflops == 99.0

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"node_id": ""}, "node_id"),
            ({"compute_tflops": -1.0}, "compute_tflops"),
            ({"bandwidth_mbps": 0.0}, "bandwidth_mbps"),
            ({"location": (91.0, 0.0)}, "location"),
            ({"location": (0.0, 181.0)}, "location"),
        ],
    )
    def test_rejects_bad_values(self, kwargs, field) -> None:
        base = {"node_id": "n", "node_type": NodeType.GROUND}
        base.update(kwargs)
        with pytest.raises(ValidationError) as exc_info:
            NodeConfig(**base)
        assert exc_info.value.field == field

    def test_dict_form(self) -> None:
        node = NodeConfig.ground("gs-1", 10.0, 20.0)
        data = node.to_dict()
        assert data["id"] == "gs-1"
        assert data["kind"] == "ground"
        assert data["lat"] == 10.0 and data["lon"] == 20.0
        assert "altitude_km" not in data
        assert NodeConfig.from_dict(data) == node

    def test_orbital_dict_form(self) -> None:
        node = NodeConfig.orbital("sat-1", altitude_km=600.0)
        data = node.to_dict()
        assert data["altitude_km"] == 600.0
        assert "lat" not in data
        assert NodeConfig.from_dict(data) == node


class TestTopology:
    def test_compute_totals(self, mixed_topology: Topology) -> None:
        assert mixed_topology.node_count == 4
        assert mixed_topology.ground_compute_tflops == 100.0
        assert mixed_topology.orbital_compute_tflops == 30.0
        assert mixed_topology.total_compute_tflops == 130.0

        summary = mixed_topology.summary()
        assert summary["ground_nodes"] == 1
        assert summary["orbital_nodes"] == 3

    def test_add_connection_unknown_node(self, mixed_topology: Topology) -> None:
        with pytest.raises(InvalidReferenceError) as exc_info:
            mixed_topology.add_connection("ground-1", "missing", 100.0)
        assert exc_info.value.resource_id == "missing"
        assert isinstance(exc_info.value, TerraOrbitError)

    def test_add_connection_bad_bandwidth(self, mixed_topology: Topology) -> None:
        with pytest.raises(ValidationError):
            mixed_topology.add_connection("ground-1", "sat-0", 0.0)

    def test_remove_node_drops_connections(self, mixed_topology: Topology) -> None:
        mixed_topology.add_connection("ground-1", "sat-0", 100.0)
        mixed_topology.add_connection("sat-1", "sat-2", 100.0)

        removed = mixed_topology.remove_node("sat-0")

        assert removed.node_id == "sat-0"
        assert mixed_topology.connections == [("sat-1", "sat-2", 100.0)]
        assert mixed_topology.get_connections("ground-1") == []

    def test_remove_unknown_node(self) -> None:
        with pytest.raises(InvalidReferenceError):
            Topology().remove_node("ghost")

    def test_get_node(self, mixed_topology: Topology) -> None:
        assert mixed_topology.get_node("sat-1").bandwidth_mbps == 50.0
        with pytest.raises(InvalidReferenceError):
            mixed_topology.get_node("ghost")


class TestTrainingMetrics:
    def test_explicit_duration(self) -> None:
        metrics = TrainingMetrics()
        metrics.end_step(loss=0.5, samples=32, duration_s=2.0)
        metrics.end_step(loss=0.3, samples=32, duration_s=2.0)

        assert metrics.total_steps == 2
        assert metrics.total_samples == 64
        assert metrics.compute_time_s == 4.0
        assert metrics.average_loss == pytest.approx(0.4)
        assert metrics.latest_loss == 0.3

    def test_sync_accounting(self) -> None:
        metrics = TrainingMetrics()
        metrics.end_step(duration_s=3.0)
        metrics.record_sync(bytes_up=1000, bytes_down=500, duration_s=1.0)

        assert metrics.total_bytes_transferred == 1500
        assert metrics.sync_count == 1
        assert metrics.compute_efficiency == pytest.approx(0.75)
        assert metrics.communication_overhead == pytest.approx(1 / 3)

    def test_empty_metrics(self) -> None:
        metrics = TrainingMetrics()
        assert metrics.compute_efficiency == 0.0
        assert metrics.communication_overhead == float("inf")
        assert metrics.average_loss is None
        assert metrics.summary()["latest_loss"] is None

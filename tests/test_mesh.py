"""Tests for ISL mesh construction and routing."""

import math
import threading

import pytest

from terraorbit.config import Config
from terraorbit.core import EARTH_RADIUS_KM, NodeConfig, Topology
from terraorbit.errors import InvalidReferenceError, ValidationError
from terraorbit.mesh import (
    ISLLink,
    OrbitalNode,
    Route,
    RouteMetric,
    SpaceMesh,
    create_constellation,
)


def _chain_mesh() -> SpaceMesh:
    """Neighbours (10 deg apart) link; the 20 deg pair is out of range."""
    mesh = SpaceMesh(default_isl_range_km=2000.0)
    for i, anomaly in enumerate((0.0, 10.0, 20.0)):
        mesh.add_node(OrbitalNode(f"sat-{i}", mean_anomaly_deg=anomaly, isl_range_km=2000.0))
    mesh.update_topology()
    return mesh


class TestOrbitalNode:
    def test_position_radius(self) -> None:
        node = OrbitalNode("sat", orbit_altitude_km=550.0, raan_deg=40.0, mean_anomaly_deg=73.0)
        assert math.dist((0, 0, 0), node.position_eci()) == pytest.approx(EARTH_RADIUS_KM + 550.0)

    def test_rejects_bad_values(self) -> None:
        with pytest.raises(ValidationError):
            OrbitalNode("sat", orbit_altitude_km=0.0)
        with pytest.raises(ValidationError):
            OrbitalNode("sat", isl_range_km=-1.0)

    def test_from_config(self) -> None:
        config = NodeConfig.orbital("sat-9", altitude_km=600.0, compute_tflops=12.0)
        node = OrbitalNode.from_config(config, mean_anomaly_deg=45.0)
        assert node.orbit_altitude_km == 600.0
        assert node.compute_tflops == 12.0
        assert node.mean_anomaly_deg == 45.0

    def test_from_config_rejects_ground(self) -> None:
        with pytest.raises(ValidationError):
            OrbitalNode.from_config(NodeConfig.ground("gs", 0.0, 0.0))


class TestTopologyRebuild:
    def test_links_are_symmetric(self, triangle_mesh: SpaceMesh) -> None:
        for node_id in triangle_mesh.nodes:
            for link in triangle_mesh.get_links(node_id):
                back = triangle_mesh.get_link(link.target_id, link.source_id)
                assert back is not None
                assert back.distance_km == link.distance_km
                assert back.latency_ms == link.latency_ms

    def test_links_respect_range_and_horizon(self) -> None:
        mesh = create_constellation("walker", 4, 12, isl_range_km=5000.0)
        r = EARTH_RADIUS_KM + 550.0
        max_los = 2 * math.sqrt(r ** 2 - EARTH_RADIUS_KM ** 2)
        for node_id in mesh.nodes:
            links = mesh.get_links(node_id)
            assert len(links) >= 2
            for link in links:
                assert link.distance_km <= 5000.0
                assert link.distance_km <= max_los

    def test_latency_is_light_time(self, triangle_mesh: SpaceMesh) -> None:
        link = triangle_mesh.get_link("sat-0", "sat-1")
        assert isinstance(link, ISLLink)
        assert link.latency_ms == pytest.approx(link.distance_km / 299792.458 * 1000)

    def test_out_of_range_pair_has_no_link(self) -> None:
        mesh = _chain_mesh()
        assert mesh.get_link("sat-0", "sat-2") is None
        assert mesh.get_link("sat-0", "sat-1") is not None

    def test_rebuild_replaces_links(self) -> None:
        mesh = _chain_mesh()
        generation = mesh.generation
        mesh.add_node(OrbitalNode("sat-3", mean_anomaly_deg=30.0, isl_range_km=2000.0))

        # new node invisible until the next rebuild
        assert mesh.get_links("sat-3") == []
        mesh.update_topology()

        assert mesh.generation == generation + 1
        assert [l.target_id for l in mesh.get_links("sat-3")] == ["sat-2"]

    def test_remove_node(self, triangle_mesh: SpaceMesh) -> None:
        triangle_mesh.remove_node("sat-1")
        assert "sat-1" not in triangle_mesh.nodes
        assert all(l.target_id != "sat-1" for l in triangle_mesh.get_links("sat-0"))
        with pytest.raises(InvalidReferenceError):
            triangle_mesh.remove_node("sat-1")

    def test_get_links_unknown_node(self, triangle_mesh: SpaceMesh) -> None:
        with pytest.raises(InvalidReferenceError):
            triangle_mesh.get_links("ghost")

    def test_from_topology(self, mixed_topology: Topology) -> None:
        elements = {
            "sat-0": {"mean_anomaly_deg": 0.0},
            "sat-1": {"mean_anomaly_deg": 10.0},
            "sat-2": {"mean_anomaly_deg": 20.0},
        }
        mesh = SpaceMesh.from_topology(mixed_topology, elements, isl_range_km=5000.0)
        assert set(mesh.nodes) == {"sat-0", "sat-1", "sat-2"}
        assert mesh.get_mesh_stats()["active_links"] == 3

    def test_concurrent_reads_during_rebuild(self) -> None:
        mesh = create_constellation("walker", 4, 12, isl_range_km=5000.0)
        errors = []

        def reader() -> None:
            for _ in range(50):
                route = mesh.find_route("walker_P0_S0", "walker_P0_S6")
                if not route.is_valid:
                    errors.append(route)

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for _ in range(5):
            mesh.update_topology()
        for t in threads:
            t.join()

        assert errors == []


class TestFindRoute:
    def test_direct_route(self, triangle_mesh: SpaceMesh) -> None:
        route = triangle_mesh.find_route("sat-0", "sat-2")
        assert route.is_valid
        assert route.path == ["sat-0", "sat-2"]
        assert route.num_hops == 1

    def test_multi_hop_route(self) -> None:
        mesh = _chain_mesh()
        route = mesh.find_route("sat-0", "sat-2")

        assert route.path == ["sat-0", "sat-1", "sat-2"]
        assert route.num_hops == 2
        expected_latency = sum(
            mesh.get_link(a, b).latency_ms for a, b in zip(route.path, route.path[1:])
        )
        assert route.total_latency_ms == pytest.approx(expected_latency, abs=1e-3)
        assert route.min_bandwidth_gbps == 10.0

    def test_route_to_self(self, triangle_mesh: SpaceMesh) -> None:
        route = triangle_mesh.find_route("sat-1", "sat-1")
        assert route.path == ["sat-1"]
        assert route.is_local
        assert not route.is_valid
        assert route.total_latency_ms == 0.0
        assert route.min_bandwidth_gbps == float("inf")

    def test_unknown_node_is_unreachable(self, triangle_mesh: SpaceMesh) -> None:
        route = triangle_mesh.find_route("sat-0", "ghost")
        assert route.path == []
        assert not route.is_valid

    def test_disconnected_is_unreachable(self) -> None:
        mesh = SpaceMesh(default_isl_range_km=5000.0)
        mesh.add_node(OrbitalNode("a", mean_anomaly_deg=0.0))
        mesh.add_node(OrbitalNode("b", mean_anomaly_deg=180.0))
        mesh.update_topology()

        assert mesh.get_links("a") == []
        assert not mesh.find_route("a", "b").is_valid

    def test_bandwidth_metric(self) -> None:
        mesh = SpaceMesh()
        mesh.add_node(OrbitalNode("a", mean_anomaly_deg=0.0, isl_bandwidth_gbps=10.0))
        mesh.add_node(OrbitalNode("b", mean_anomaly_deg=10.0, isl_bandwidth_gbps=100.0))
        mesh.add_node(OrbitalNode("c", mean_anomaly_deg=20.0, isl_bandwidth_gbps=100.0))
        mesh.update_topology()

        by_latency = mesh.find_route("b", "c")
        assert by_latency.path == ["b", "c"]
        by_bandwidth = mesh.find_route("a", "c", optimize_for=RouteMetric.BANDWIDTH)
        assert by_bandwidth.path == ["a", "c"]
        assert by_bandwidth.min_bandwidth_gbps == 10.0

    def test_expansion_bound(self) -> None:
        mesh = create_constellation(
            "walker", 4, 12, isl_range_km=5000.0, config=Config(max_route_expansions=1)
        )
        assert mesh.max_route_expansions == 1
        assert not mesh.find_route("walker_P0_S0", "walker_P0_S6").is_valid

    def test_all_routes_from(self, triangle_mesh: SpaceMesh) -> None:
        routes = triangle_mesh.get_all_routes_from("sat-0")
        assert set(routes) == {"sat-1", "sat-2"}
        assert all(r.is_valid for r in routes.values())

    def test_route_dict_form(self) -> None:
        route = _chain_mesh().find_route("sat-0", "sat-2")
        assert Route.from_dict(route.to_dict()) == route


class TestConstellation:
    def test_node_count_and_names(self) -> None:
        mesh = create_constellation("test", num_planes=2, sats_per_plane=4, isl_range_km=10000.0)
        assert len(mesh.nodes) == 8
        assert "test_P1_S3" in mesh.nodes
        assert mesh.get_mesh_stats()["active_links"] > 0

    def test_uses_config_range(self) -> None:
        mesh = create_constellation("test", 1, 4, config=Config(default_isl_range_km=1234.0))
        assert mesh.default_isl_range_km == 1234.0
        assert all(n.isl_range_km == 1234.0 for n in mesh.nodes.values())

    def test_rejects_empty(self) -> None:
        with pytest.raises(ValidationError):
            create_constellation("test", 0, 4)

    def test_stats(self) -> None:
        mesh = create_constellation("walker", 4, 12, isl_range_km=5000.0)
        stats = mesh.get_mesh_stats()
        assert stats["total_nodes"] == 48
        assert stats["avg_links_per_node"] == pytest.approx(2 * stats["active_links"] / 48, abs=0.01)
        assert stats["generation"] == 1


def test_evenly_spaced_triangle_is_fully_connected(triangle_mesh: SpaceMesh) -> None:
    for node_id in triangle_mesh.nodes:
        assert len(triangle_mesh.get_links(node_id)) == 2


def test_small_walker_node_count() -> None:
    mesh = create_constellation("test", 2, 4, 550.0, 53.0, 5000.0)
    assert mesh.get_mesh_stats()["total_nodes"] == 8

"""
TerraOrbit - Coordinator

Run one federated round across Earth and orbit:

    client computes + compresses -> queued as a SyncTask
    contact opportunity          -> tasks routed over ISLs to the gateway
    gateway                      -> aggregator -> global update

The coordinator owns no state of its own beyond the client registry; the
queue, the mesh snapshot and the aggregation round all live in the
collaborators passed in.
"""

from typing import Any, Dict, List, Optional, Sequence
import logging

from .core import NodeType, Topology
from .federated import CompressedGradient, FederatedClient, GradientAggregator
from .errors import InvalidReferenceError, ValidationError
from .mesh import Route, SpaceMesh
from .partitioning import ModelProfile, OptimizationObjective, PartitionOptimizer, PartitionPlan
from .sync import ContactWindow, Priority, SyncScheduler, SyncTask

logger = logging.getLogger(__name__)


class EarthSpaceCoordinator:
    """Glue between clients, the sync queue, the mesh and the aggregator.

    Example:
        >>> coordinator = EarthSpaceCoordinator(topology, mesh, SyncScheduler(),
        ...                                     GradientAggregator(min_participants=2),
        ...                                     gateway_id="sat-0")
        >>> coordinator.submit_update(client, gradients, samples=1000)
        >>> coordinator.deliver(capacity_bytes=10_000_000)
        >>> update = coordinator.run_round()
    """

    def __init__(
        self,
        topology: Topology,
        mesh: SpaceMesh,
        scheduler: SyncScheduler,
        aggregator: GradientAggregator,
        gateway_id: str,
    ):
        if gateway_id not in mesh.nodes and gateway_id not in topology.nodes:
            raise InvalidReferenceError("Node", gateway_id)
        self.topology = topology
        self.mesh = mesh
        self.scheduler = scheduler
        self.aggregator = aggregator
        self.gateway_id = gateway_id
        self._clients: Dict[str, FederatedClient] = {}

    def submit_update(
        self,
        client: FederatedClient,
        gradients: Sequence[float],
        samples: int,
        priority: Priority = Priority.NORMAL,
    ) -> str:
        """Compress a client's gradients and queue them for the next contact."""
        if samples < 0:
            raise ValidationError("samples", "Must be non-negative")
        compressed = client.compress(gradients)
        self._clients[client.node_id] = client
        return self.scheduler.schedule_sync(
            node_id=client.node_id,
            data_size_bytes=compressed.compressed_size,
            priority=priority,
            description=f"gradients for round {self.aggregator.round}",
            payload=(compressed, samples),
        )

    def route_to_gateway(self, node_id: str) -> Route:
        """Current mesh route from a node to the gateway."""
        return self.mesh.find_route(node_id, self.gateway_id)

    def deliver(self, capacity_bytes: int) -> List[SyncTask]:
        """Hand everything that fits in ``capacity_bytes`` to the aggregator.

        Tasks whose node cannot reach the gateway in the current mesh go back
        in the queue for the next opportunity.
        """
        tasks = self.scheduler.queue.get_tasks_for_window(capacity_bytes)
        return self._route(tasks)

    def on_contact(self, window: ContactWindow) -> List[SyncTask]:
        """Deliver through a contact window supplied by a pass planner."""
        return self.scheduler.dispatch(window, self._route)

    def run_round(self) -> Optional[List[float]]:
        """Aggregate if the quorum is met; None means wait for more nodes."""
        if not self.aggregator.ready_to_aggregate():
            logger.debug(
                "Round %d waiting: %d of %d participant(s)",
                self.aggregator.round, self.aggregator.num_participants,
                self.aggregator.min_participants,
            )
            return None
        return self.aggregator.aggregate()

    def plan_partition(
        self,
        model: ModelProfile,
        objective: OptimizationObjective = OptimizationObjective.BALANCE,
    ) -> PartitionPlan:
        """Split a model across this topology's ground and orbital compute."""
        return PartitionOptimizer.from_topology(self.topology).optimize(model, objective)

    def get_status(self) -> Dict[str, Any]:
        return {
            "gateway_id": self.gateway_id,
            "registered_clients": len(self._clients),
            "aggregator": self.aggregator.get_stats(),
            "schedule": self.scheduler.get_schedule_summary(),
            "mesh": self.mesh.get_mesh_stats(),
        }

    def _reachable(self, node_id: str) -> Optional[Route]:
        if node_id == self.gateway_id:
            return Route.local(node_id)
        node = self.topology.nodes.get(node_id)
        if node is not None and node.node_type == NodeType.GROUND:
            # ground nodes hand off terrestrially
            return Route.local(node_id)
        route = self.route_to_gateway(node_id)
        return route if route.is_valid else None

    def _route(self, tasks: List[SyncTask]) -> List[SyncTask]:
        delivered = []
        requeued = 0
        # any task still here when the loop exits goes back to the queue
        remaining = list(reversed(tasks))
        try:
            while remaining:
                task = remaining[-1]
                route = self._reachable(task.node_id)
                if route is None:
                    self.scheduler.queue.requeue(task)
                    requeued += 1
                elif _is_gradient_payload(task.payload):
                    compressed, samples = task.payload
                    self.aggregator.receive_gradients(task.node_id, compressed, samples)
                    client = self._clients.get(task.node_id)
                    if client is not None:
                        client.record_sync(compressed, duration_s=route.total_latency_ms / 1000)
                    delivered.append(task)
                else:
                    logger.debug("Task %s from %s carries no gradients, delivered as data",
                                 task.task_id, task.node_id)
                    delivered.append(task)
                remaining.pop()
        finally:
            for task in remaining:
                self.scheduler.queue.requeue(task)

        if requeued:
            logger.info(
                "%d task(s) unreachable from gateway %s, requeued",
                requeued, self.gateway_id,
            )
        return delivered


def _is_gradient_payload(payload: Any) -> bool:
    return (
        isinstance(payload, tuple)
        and len(payload) == 2
        and isinstance(payload[0], CompressedGradient)
        and isinstance(payload[1], int)
    )

"""
TerraOrbit - Sync Scheduler

Queue data transfers until the next transmission opportunity.

LEO nodes see a given ground station for 10-15 minutes a pass, a handful of
times a day. Everything produced in between waits here, ordered by priority
tier and then by arrival, and is drained in one go when a contact window is
handed to the scheduler.

Pass prediction is not done here. ``predict_passes`` always answers "no
passes"; contact windows come from an external planner and are fed to
``SyncScheduler.dispatch``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
import heapq
import logging
import math
import threading

from .core import EARTH_MU, EARTH_RADIUS_KM, DEFAULT_ORBIT_ALTITUDE_KM
from .errors import ValidationError

logger = logging.getLogger(__name__)


class Priority(Enum):
    """Priority level for sync operations."""
    CRITICAL = 0  # Must sync in next pass
    HIGH = 1
    NORMAL = 2
    LOW = 3


@dataclass(frozen=True)
class GroundStation:
    """A ground station that can open contact windows.

    Attributes:
        name: Station name/identifier
        latitude: Latitude in degrees
        longitude: Longitude in degrees
        elevation_m: Elevation above sea level in meters
        bandwidth_mbps: Available bandwidth in Mbps
        min_elevation_deg: Minimum elevation angle for contact
    """
    name: str
    latitude: float
    longitude: float
    elevation_m: float = 0.0
    bandwidth_mbps: float = 100.0
    min_elevation_deg: float = 5.0

    def __post_init__(self):
        if not -90 <= self.latitude <= 90:
            raise ValidationError("latitude", "Must be between -90 and 90 degrees")
        if not -180 <= self.longitude <= 180:
            raise ValidationError("longitude", "Must be between -180 and 180 degrees")
        if self.bandwidth_mbps <= 0:
            raise ValidationError("bandwidth_mbps", "Must be positive")

    @classmethod
    def svalbard(cls) -> "GroundStation":
        """Svalbard Satellite Station (high Arctic)."""
        return cls("Svalbard", 78.2306, 15.3894)

    @classmethod
    def kourou(cls) -> "GroundStation":
        """Kourou, French Guiana (equatorial)."""
        return cls("Kourou", 5.2378, -52.7683)

    @classmethod
    def default_network(cls) -> List["GroundStation"]:
        return [cls.svalbard(), cls.kourou()]


@dataclass(frozen=True)
class ContactWindow:
    """A contact window with a ground station, as supplied by a pass planner.

    Attributes:
        station: Ground station for this contact
        start_time: Start of contact window
        end_time: End of contact window
        available_bandwidth_mbps: Link rate during the window (station rate if omitted)
        max_elevation_deg: Maximum elevation during the pass
    """
    station: GroundStation
    start_time: datetime
    end_time: datetime
    available_bandwidth_mbps: Optional[float] = None
    max_elevation_deg: float = 90.0

    def __post_init__(self):
        if self.end_time < self.start_time:
            raise ValidationError("end_time", "Contact window ends before it starts")
        if self.available_bandwidth_mbps is None:
            object.__setattr__(self, "available_bandwidth_mbps", self.station.bandwidth_mbps)
        elif self.available_bandwidth_mbps <= 0:
            raise ValidationError("available_bandwidth_mbps", "Must be positive")

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def duration_minutes(self) -> float:
        return self.duration_seconds / 60.0

    @property
    def capacity_bytes(self) -> int:
        """Bytes that fit through the link for the whole window."""
        return int(self.available_bandwidth_mbps * 1e6 / 8 * self.duration_seconds)


@dataclass
class SyncTask:
    """A transfer waiting for a transmission opportunity.

    ``sequence`` is the arrival order; it breaks ties within a priority tier.
    ``payload`` is carried opaquely and is not serialized.
    """
    task_id: str
    node_id: str
    data_size_bytes: int
    priority: Priority = Priority.NORMAL
    description: str = ""
    sequence: int = 0
    payload: Any = field(default=None, repr=False, compare=False)
    created_at: datetime = field(default_factory=datetime.now, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "node_id": self.node_id,
            "data_size_bytes": self.data_size_bytes,
            "priority": self.priority.name.lower(),
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncTask":
        return cls(
            task_id=data["task_id"],
            node_id=data["node_id"],
            data_size_bytes=data["data_size_bytes"],
            priority=Priority[data.get("priority", "normal").upper()],
            description=data.get("description", ""),
        )


class PriorityQueue:
    """Priority queue of pending sync tasks.

    CRITICAL drains before HIGH before NORMAL before LOW; within a tier tasks
    leave in the order they were added. Safe to share between producer
    threads and the consumer.

    Example:
        >>> queue = PriorityQueue()
        >>> queue.add_task("node-1", 1024*1024, Priority.HIGH, "Upload gradients")
        'task_1'
        >>> queue.add_task("node-2", 512*1024, Priority.NORMAL, "Sync checkpoints")
        'task_2'
        >>> queue.pop_task().description
        'Upload gradients'
    """

    def __init__(self):
        self._heap: List[Tuple[int, int, SyncTask]] = []
        self._task_counter = 0
        self._lock = threading.Lock()

    def add_task(
        self,
        node_id: str,
        data_size_bytes: int,
        priority: Priority = Priority.NORMAL,
        description: str = "",
        payload: Any = None
    ) -> str:
        """Queue a transfer and return its task id."""
        if data_size_bytes < 0:
            raise ValidationError("data_size_bytes", "Must be non-negative")

        with self._lock:
            self._task_counter += 1
            task = SyncTask(
                task_id=f"task_{self._task_counter}",
                node_id=node_id,
                data_size_bytes=data_size_bytes,
                priority=priority,
                description=description,
                sequence=self._task_counter,
                payload=payload,
            )
            heapq.heappush(self._heap, (priority.value, task.sequence, task))
        return task.task_id

    def requeue(self, task: SyncTask) -> None:
        """Put a popped task back; it keeps its place in arrival order."""
        with self._lock:
            heapq.heappush(self._heap, (task.priority.value, task.sequence, task))

    def pop_task(self) -> Optional[SyncTask]:
        """Get and remove the highest priority task."""
        with self._lock:
            if self._heap:
                return heapq.heappop(self._heap)[2]
            return None

    def peek_task(self) -> Optional[SyncTask]:
        with self._lock:
            if self._heap:
                return self._heap[0][2]
            return None

    def is_empty(self) -> bool:
        return len(self._heap) == 0

    @property
    def size(self) -> int:
        """Number of tasks in queue."""
        return len(self._heap)

    def __len__(self) -> int:
        return len(self._heap)

    @property
    def total_bytes_pending(self) -> int:
        """Total bytes across all pending tasks."""
        with self._lock:
            return sum(entry[2].data_size_bytes for entry in self._heap)

    def get_tasks_for_window(self, capacity_bytes: int) -> List[SyncTask]:
        """Remove and return the tasks that fit in ``capacity_bytes``.

        Walks the queue in order; a task too big for what is left is skipped,
        not a stopping point, so smaller tasks behind it can still go.
        """
        if capacity_bytes < 0:
            raise ValidationError("capacity_bytes", "Must be non-negative")

        taken = []
        remaining = capacity_bytes
        with self._lock:
            kept = []
            for entry in sorted(self._heap):
                task = entry[2]
                if task.data_size_bytes <= remaining:
                    taken.append(task)
                    remaining -= task.data_size_bytes
                else:
                    kept.append(entry)
            # sorted list is already a valid heap
            self._heap = kept
        return taken


class SyncScheduler:
    """Schedule data synchronization across ground station passes.

    Example:
        >>> scheduler = SyncScheduler(orbit_altitude_km=550.0)
        >>> scheduler.schedule_sync("orbital-1", 10_000_000, Priority.HIGH)
        'task_1'
        >>> round(scheduler.orbital_period_minutes, 1)
        95.5
    """

    def __init__(
        self,
        ground_stations: Optional[List[GroundStation]] = None,
        orbit_altitude_km: float = DEFAULT_ORBIT_ALTITUDE_KM,
        orbit_inclination_deg: float = 51.6
    ):
        if orbit_altitude_km <= 0:
            raise ValidationError("orbit_altitude_km", "Must be positive")
        self.ground_stations = ground_stations or GroundStation.default_network()
        self.orbit_altitude_km = orbit_altitude_km
        self.orbit_inclination_deg = orbit_inclination_deg
        self.queue = PriorityQueue()
        self._schedule: List[Tuple[ContactWindow, List[SyncTask]]] = []

    @property
    def orbital_period_minutes(self) -> float:
        """Orbital period in minutes (circular orbit)."""
        a = EARTH_RADIUS_KM + self.orbit_altitude_km
        period_s = 2 * math.pi * math.sqrt(a**3 / EARTH_MU)
        return period_s / 60.0

    @property
    def orbits_per_day(self) -> float:
        return (24.0 * 60.0) / self.orbital_period_minutes

    def predict_passes(
        self,
        start_time: Optional[datetime] = None,
        hours: int = 24
    ) -> List[ContactWindow]:
        """Predicted contact windows. Always empty; windows come from outside."""
        logger.debug("Pass prediction not available; %d station(s) configured",
                     len(self.ground_stations))
        return []

    def schedule_sync(
        self,
        node_id: str,
        data_size_bytes: int,
        priority: Priority = Priority.NORMAL,
        description: str = "",
        payload: Any = None
    ) -> str:
        """Schedule a sync operation."""
        return self.queue.add_task(
            node_id=node_id,
            data_size_bytes=data_size_bytes,
            priority=priority,
            description=description,
            payload=payload,
        )

    def dispatch(
        self,
        window: ContactWindow,
        handler: Optional[Callable[[List[SyncTask]], List[SyncTask]]] = None,
    ) -> List[SyncTask]:
        """Drain the tasks that fit in a contact window and record the pass.

        ``handler`` receives the drained tasks and returns the ones it actually
        delivered; only those are recorded against the window.
        """
        tasks = self.queue.get_tasks_for_window(window.capacity_bytes)
        delivered = handler(tasks) if handler is not None else tasks
        if delivered:
            self._schedule.append((window, list(delivered)))
        logger.info(
            "Contact with %s: %d task(s) dispatched, %d pending",
            window.station.name, len(delivered), self.queue.size,
        )
        return delivered

    def get_schedule_summary(self) -> Dict[str, Any]:
        """Get summary of dispatched and pending work."""
        total_data = sum(
            sum(t.data_size_bytes for t in tasks)
            for _, tasks in self._schedule
        )
        total_tasks = sum(len(tasks) for _, tasks in self._schedule)

        return {
            "scheduled_windows": len(self._schedule),
            "total_tasks_scheduled": total_tasks,
            "total_data_mb": round(total_data / (1024 * 1024), 2),
            "pending_tasks": self.queue.size,
            "pending_data_mb": round(self.queue.total_bytes_pending / (1024 * 1024), 2),
            "orbital_period_min": round(self.orbital_period_minutes, 2),
        }

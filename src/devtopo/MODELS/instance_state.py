"""
Runtime state of container instances and the log lines they produce.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class InstanceState(str, Enum):
    """
    Lifecycle of one container instance.

    CREATED -> PREPARING -> STARTING -> RUNNING -> HEALTHY | UNHEALTHY
    -> STOPPING -> STOPPED -> REMOVED, with FAILED reachable from
    PREPARING, STARTING or a health wait that timed out.
    """
    CREATED = "created"
    PREPARING = "preparing"
    STARTING = "starting"
    RUNNING = "running"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    STOPPING = "stopping"
    STOPPED = "stopped"
    REMOVED = "removed"
    FAILED = "failed"


@dataclass
class InstanceStatus:
    """Point-in-time view of an instance as reported by the engine."""

    instance: str
    group: str
    state: str
    container_id: Optional[str] = None
    health: Optional[str] = None
    restart_count: int = 0
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    ports: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class LogLine:
    """One line of container output, tagged with the service it came from."""

    service: str
    label: str
    message: str
    timestamp: Optional[str] = None

    def render(self) -> str:
        if self.timestamp:
            return f"{self.label} {self.timestamp} {self.message}"
        return f"{self.label} {self.message}"

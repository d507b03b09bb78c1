"""
Models for declaring service groups, including restart policies, health checks,
ports, mounts and dependency edges.
"""
import re
import shlex
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..UTILS.durations import parse_duration

CONTAINER_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")

# Compose spellings accepted for dependency conditions.
_CONDITION_ALIASES = {
    "service_started": "started",
    "service_healthy": "healthy",
}


class _ConfigModel(BaseModel):
    """
    Shared configuration: immutable, and accepts both ``snake_case`` field names
    and the ``camelCase`` keys upstream topology builders emit.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


class DependencyCondition(str, Enum):
    """
    State a dependency group must reach before a dependent group starts.
    """
    STARTED = "started"
    HEALTHY = "healthy"


class DependsOn(_ConfigModel):
    """
    One dependency edge.
    """
    condition: DependencyCondition = DependencyCondition.STARTED

    @field_validator("condition", mode="before")
    @classmethod
    def _normalize_condition(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _CONDITION_ALIASES.get(value, value)
        return value


class RestartPolicy(_ConfigModel):
    """
    Defines how the engine restarts a container once it exits. The condition is
    kept verbatim; it is mapped onto engine names when the container is created.
    """
    condition: str = "no"
    max_attempts: Optional[int] = None
    delay: Optional[float] = None

    @field_validator("delay", mode="before")
    @classmethod
    def _parse_delay(cls, value: Any) -> Any:
        return None if value is None else parse_duration(value)


class HealthCheck(_ConfigModel):
    """
    Defines a command the engine runs to check the health of a container.
    Durations accept strings like ``30s`` or ``1m30s`` and are stored in seconds.
    """
    test: List[str]
    interval: Optional[float] = None
    timeout: Optional[float] = None
    retries: Optional[int] = None
    start_period: Optional[float] = None

    @field_validator("test", mode="before")
    @classmethod
    def _normalize_test(cls, value: Any) -> Any:
        if isinstance(value, str):
            return ["CMD-SHELL", value]
        if isinstance(value, (list, tuple)) and value and value[0] not in ("CMD", "CMD-SHELL", "NONE"):
            return ["CMD", *value]
        return value

    @field_validator("interval", "timeout", "start_period", mode="before")
    @classmethod
    def _parse_durations(cls, value: Any) -> Any:
        return None if value is None else parse_duration(value)

    @property
    def disabled(self) -> bool:
        return not self.test or self.test[0] == "NONE"


class PortMapping(_ConfigModel):
    """
    Publishes a container port on the host. ``published=None`` lets the
    engine pick a free host port.
    """
    target: int
    published: Optional[Union[int, str]] = None
    protocol: str = "tcp"
    host_ip: Optional[str] = None


class VolumeMount(_ConfigModel):
    """
    Long-form mount definition. Short-form bind strings (``src:dst[:mode]``) are
    passed to the engine unchanged.
    """
    type: Literal["bind", "volume", "tmpfs"] = "volume"
    source: Optional[str] = None
    target: str
    read_only: bool = False
    tmpfs_size: Optional[int] = None


class BuildConfig(_ConfigModel):
    """
    Build context for services whose image is built locally.
    """
    context: str
    dockerfile: str = "Dockerfile"
    args: Dict[str, str] = {}
    target: Optional[str] = None
    pull: bool = False
    labels: Dict[str, str] = {}


class ResourceLimits(_ConfigModel):
    cpus: Optional[float] = None
    memory: Optional[str] = None
    pids: Optional[int] = None


class ServiceGroupConfig(_ConfigModel):
    """
    The declarative description of one logical service. A group expands into
    ``replicas`` container instances when the topology starts.
    """
    name: str
    image: Optional[str] = None
    build: Optional[BuildConfig] = None
    platform: Optional[str] = None

    # Execution
    command: List[str] = []
    entrypoint: List[str] = []
    working_dir: Optional[str] = None
    user: Optional[str] = None
    hostname: Optional[str] = None

    # Environment
    environment: Dict[str, str] = {}
    env_files: List[str] = []

    # Networking and storage
    ports: List[PortMapping] = []
    volumes: List[Union[str, VolumeMount]] = []
    tmpfs: List[str] = []

    # Lifecycle
    health_check: Optional[HealthCheck] = None
    restart_policy: Optional[RestartPolicy] = None
    depends_on: Dict[str, DependsOn] = {}
    replicas: int = Field(default=1, ge=1)
    stop_grace_period: Optional[float] = None
    stop_signal: Optional[str] = None

    # Resources and metadata
    resources: Optional[ResourceLimits] = None
    labels: Dict[str, str] = {}

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not CONTAINER_NAME_RE.match(value):
            raise ValueError(
                f"Invalid service name {value!r}: use letters, digits, '_', '.' or '-', "
                "starting with a letter or digit"
            )
        return value

    @field_validator("command", "entrypoint", mode="before")
    @classmethod
    def _split_command(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return shlex.split(value)
        return value

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_environment(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, (list, tuple)):
            env = {}
            for item in value:
                key, _, val = str(item).partition("=")
                env[key] = val
            return env
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    @field_validator("env_files", "tmpfs", mode="before")
    @classmethod
    def _to_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("depends_on", mode="before")
    @classmethod
    def _normalize_depends_on(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, (list, tuple)):
            return {name: {"condition": DependencyCondition.STARTED.value} for name in value}
        if isinstance(value, dict):
            return {name: ({} if spec is None else spec) for name, spec in value.items()}
        return value

    @field_validator("stop_grace_period", mode="before")
    @classmethod
    def _parse_grace_period(cls, value: Any) -> Any:
        return None if value is None else parse_duration(value)

    @model_validator(mode="after")
    def _check_image_source(self) -> "ServiceGroupConfig":
        if not self.image and not self.build:
            raise ValueError(f"Service '{self.name}' must declare either an image or a build context")
        return self

    @property
    def image_tag(self) -> str:
        """
        The image reference containers of this group run. Locally built images
        without an explicit name are tagged ``<name>:latest``.
        """
        return self.image or f"{self.name}:latest"

    def instance_names(self) -> List[str]:
        """
        Names of the container instances this group expands into: the bare group
        name for a single replica, otherwise ``<name>-1 .. <name>-N``.
        """
        if self.replicas == 1:
            return [self.name]
        return [f"{self.name}-{n}" for n in range(1, self.replicas + 1)]

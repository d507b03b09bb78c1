"""
Shared fixtures: an in-memory container engine and fast settings.
"""
import asyncio
import itertools
from typing import Any, Dict, List, Optional, Tuple

import pytest

from devtopo.ENGINE.engine import ContainerEngine, LogStream
from devtopo.errors import EngineError, NotModified, ResourceNotFound
from devtopo.MODELS.service_definition import ServiceGroupConfig
from devtopo.settings import Settings


class FakeLogStream(LogStream):
    """Yields canned chunks, then ends; or blocks until closed when ``follow`` is set."""

    def __init__(self, chunks: List[bytes], follow: bool = False):
        self.chunks = list(chunks)
        self.follow = follow
        self.closed = False
        self._closed_event = asyncio.Event()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self.chunks:
            if self.closed:
                return
            yield chunk
            await asyncio.sleep(0)
        if self.follow:
            await self._closed_event.wait()

    def close(self) -> None:
        self.closed = True
        self._closed_event.set()


class FakeEngine(ContainerEngine):
    """
    In-memory engine. Every call is recorded in ``calls`` as ``(op, target)``;
    ``fail(op, exc, target)`` makes the next matching calls raise ``exc``.
    Containers with a health check report ``health[name]`` (default healthy).
    """

    def __init__(self, images: Tuple[str, ...] = ()):
        self.containers: Dict[str, Dict[str, Any]] = {}
        self.images = set(images)
        self.networks: Dict[str, Dict[str, Any]] = {}
        self.volumes: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.failures: Dict[Tuple[str, Optional[str]], Exception] = {}
        self.health: Dict[str, str] = {}
        self.logs: Dict[str, bytes] = {}
        self.follow_logs = False
        self.streams: List[FakeLogStream] = []
        self.built: List[Dict[str, Any]] = []
        self.closed = False
        self._ids = itertools.count(1)

    # ---------- helpers ----------

    def fail(self, op: str, exc: Exception, target: Optional[str] = None) -> None:
        self.failures[(op, target)] = exc

    def calls_for(self, op: str) -> List[str]:
        return [target for name, target in self.calls if name == op]

    def add_container(self, name: str, running: bool = True, config: Optional[Dict[str, Any]] = None) -> str:
        container_id = f"{next(self._ids):064x}"
        self.containers[container_id] = {
            "Id": container_id,
            "Name": name,
            "Config": config or {"Image": "alpine:3"},
            "Running": running,
            "Status": "running" if running else "exited",
        }
        return container_id

    def container_named(self, name: str) -> Optional[Dict[str, Any]]:
        for container in self.containers.values():
            if container["Name"] == name:
                return container
        return None

    def _record(self, op: str, target: str) -> None:
        self.calls.append((op, target))
        exc = self.failures.get((op, target)) or self.failures.get((op, None))
        if exc is not None:
            raise exc

    def _find(self, op: str, ref: str) -> Dict[str, Any]:
        for container in self.containers.values():
            if ref in (container["Id"], container["Name"]):
                return container
        raise ResourceNotFound(op, ref, "No such container", status_code=404)

    def _network(self, op: str, ref: str) -> Dict[str, Any]:
        for network in self.networks.values():
            if ref in (network["Id"], network["Name"]):
                return network
        raise ResourceNotFound(op, ref, "No such network", status_code=404)

    # ---------- containers ----------

    async def ping(self) -> None:
        self._record("ping", "")

    async def inspect_container(self, ref: str) -> Dict[str, Any]:
        self._record("inspect_container", ref)
        container = self._find("inspect_container", ref)
        config = container["Config"]
        state: Dict[str, Any] = {
            "Running": container["Running"],
            "Status": container["Status"],
            "StartedAt": "2024-01-01T00:00:00Z",
            "FinishedAt": "0001-01-01T00:00:00Z",
        }
        healthcheck = config.get("Healthcheck")
        if healthcheck and healthcheck.get("Test") and healthcheck["Test"][0] != "NONE":
            status = self.health.get(container["Name"], "healthy") if container["Running"] else "unhealthy"
            state["Health"] = {"Status": status, "Log": [{"Output": f"probe said {status}\n"}]}
        ports = {}
        if container["Running"]:
            for key, bindings in (config.get("HostConfig") or {}).get("PortBindings", {}).items():
                ports[key] = [{"HostIp": "0.0.0.0", "HostPort": b["HostPort"] or "49153"} for b in bindings]
        return {
            "Id": container["Id"],
            "Name": "/" + container["Name"],
            "State": state,
            "RestartCount": 0,
            "Config": config,
            "NetworkSettings": {"Ports": ports},
        }

    async def create_container(self, name: str, config: Dict[str, Any],
                               platform: Optional[str] = None) -> str:
        self._record("create_container", name)
        if self.container_named(name):
            raise EngineError("create_container", name, "Conflict", status_code=409)
        container_id = self.add_container(name, running=False, config=config)
        self.containers[container_id]["Status"] = "created"
        network = self.networks.get((config.get("HostConfig") or {}).get("NetworkMode"))
        if network is not None:
            network["Containers"][container_id] = {"Name": name}
        return container_id

    async def start_container(self, ref: str) -> None:
        self._record("start_container", ref)
        container = self._find("start_container", ref)
        container["Running"] = True
        container["Status"] = "running"

    async def stop_container(self, ref: str, timeout: int) -> None:
        self._record("stop_container", ref)
        container = self._find("stop_container", ref)
        if not container["Running"]:
            raise NotModified("stop_container", ref, status_code=304)
        container["Running"] = False
        container["Status"] = "exited"

    async def kill_container(self, ref: str) -> None:
        self._record("kill_container", ref)
        container = self._find("kill_container", ref)
        container["Running"] = False
        container["Status"] = "exited"

    async def remove_container(self, ref: str, force: bool = True) -> None:
        self._record("remove_container", ref)
        container = self._find("remove_container", ref)
        if container["Running"] and not force:
            raise EngineError("remove_container", ref, "container is running", status_code=409)
        del self.containers[container["Id"]]
        for network in self.networks.values():
            network["Containers"].pop(container["Id"], None)

    async def container_logs(self, ref: str, tail: Optional[int] = None) -> bytes:
        self._record("container_logs", ref)
        container = self._find("container_logs", ref)
        data = self.logs.get(container["Name"], b"")
        if tail is None:
            return data
        lines = data.splitlines(keepends=True)
        return b"".join(lines[-tail:]) if tail else b""

    async def open_log_stream(self, ref: str) -> LogStream:
        self._record("open_log_stream", ref)
        container = self._find("open_log_stream", ref)
        data = self.logs.get(container["Name"], b"")
        # split mid-line to exercise reassembly
        chunks = [data[i:i + 7] for i in range(0, len(data), 7)]
        stream = FakeLogStream(chunks, follow=self.follow_logs)
        self.streams.append(stream)
        return stream

    # ---------- images ----------

    async def inspect_image(self, name: str) -> Dict[str, Any]:
        self._record("inspect_image", name)
        if name not in self.images:
            raise ResourceNotFound("inspect_image", name, "No such image", status_code=404)
        return {"Id": f"sha256:{name}", "RepoTags": [name]}

    async def pull_image(self, name: str, platform: Optional[str] = None, progress=None) -> None:
        self._record("pull_image", name)
        if progress:
            progress({"status": "Pulling from library", "id": name})
        self.images.add(name)

    async def build_image(self, context, tag: str, dockerfile: str = "Dockerfile",
                          buildargs=None, target=None, pull=False, labels=None,
                          platform=None, progress=None) -> None:
        self._record("build_image", tag)
        self.built.append({
            "tag": tag,
            "dockerfile": dockerfile,
            "buildargs": buildargs,
            "target": target,
            "archive": context.read(),
        })
        if progress:
            progress({"stream": "Step 1/1 : FROM scratch\n"})
        self.images.add(tag)

    # ---------- networks and volumes ----------

    async def inspect_network(self, ref: str) -> Dict[str, Any]:
        self._record("inspect_network", ref)
        network = self._network("inspect_network", ref)
        return {"Id": network["Id"], "Name": network["Name"], "Containers": dict(network["Containers"])}

    async def create_network(self, name: str, driver: str = "bridge", labels=None) -> str:
        self._record("create_network", name)
        if name in self.networks:
            raise EngineError("create_network", name, "already exists", status_code=409)
        network_id = f"net{next(self._ids):061x}"
        self.networks[name] = {"Id": network_id, "Name": name, "Driver": driver,
                               "Labels": labels or {}, "Containers": {}}
        return network_id

    async def remove_network(self, ref: str) -> None:
        self._record("remove_network", ref)
        network = self._network("remove_network", ref)
        if network["Containers"]:
            raise EngineError("remove_network", ref, "network has active endpoints", status_code=403)
        del self.networks[network["Name"]]

    async def inspect_volume(self, name: str) -> Dict[str, Any]:
        self._record("inspect_volume", name)
        if name not in self.volumes:
            raise ResourceNotFound("inspect_volume", name, "No such volume", status_code=404)
        return self.volumes[name]

    async def create_volume(self, name: str, driver: str = "local", labels=None) -> None:
        self._record("create_volume", name)
        self.volumes[name] = {"Name": name, "Driver": driver, "Labels": labels or {}}

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def engine():
    return FakeEngine(images=("alpine:3", "postgres:16", "redis:7"))


@pytest.fixture
def settings():
    return Settings(
        network_name="devtopo-test",
        health_timeout_s=0.3,
        health_interval_s=0.01,
        stop_grace_period_s=1,
        color=False,
    )


@pytest.fixture
def make_service():
    """Factory for service groups; ``image`` defaults to ``alpine:3``."""
    def factory(name: str, **kwargs) -> ServiceGroupConfig:
        if "build" not in kwargs:
            kwargs.setdefault("image", "alpine:3")
        return ServiceGroupConfig(name=name, **kwargs)
    return factory


@pytest.fixture
def log_lines():
    return []

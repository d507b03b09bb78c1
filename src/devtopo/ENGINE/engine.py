"""
The boundary between the orchestration core and the container engine.

Everything above this module talks to an abstract :class:`ContainerEngine`;
the real daemon is reached through :class:`devtopo.ENGINE.docker_engine.DockerEngine`.
Payloads are plain dictionaries in the engine's remote-API wire format.
"""
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, BinaryIO, Callable, Dict, Optional

ProgressCallback = Callable[[Dict[str, Any]], None]


class LogStream(ABC):
    """
    A followed container log stream yielding raw byte chunks.
    Closing the stream detaches from the container without stopping it.
    """

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[bytes]:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class ContainerEngine(ABC):
    """
    Asynchronous container engine operations used by the orchestrator.

    Failures are reported as :class:`devtopo.errors.EngineError`;
    a missing resource raises :class:`devtopo.errors.ResourceNotFound` and an
    operation that changed nothing raises :class:`devtopo.errors.NotModified`.
    """

    @abstractmethod
    async def ping(self) -> None:
        ...

    # containers

    @abstractmethod
    async def inspect_container(self, ref: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def create_container(self, name: str, config: Dict[str, Any],
                               platform: Optional[str] = None) -> str:
        """Creates a container and returns its id."""

    @abstractmethod
    async def start_container(self, ref: str) -> None:
        ...

    @abstractmethod
    async def stop_container(self, ref: str, timeout: int) -> None:
        ...

    @abstractmethod
    async def kill_container(self, ref: str) -> None:
        ...

    @abstractmethod
    async def remove_container(self, ref: str, force: bool = True) -> None:
        ...

    @abstractmethod
    async def container_logs(self, ref: str, tail: Optional[int] = None) -> bytes:
        """Returns the combined stdout/stderr output with timestamps."""

    @abstractmethod
    async def open_log_stream(self, ref: str) -> LogStream:
        """Follows the combined stdout/stderr output with timestamps."""

    # images

    @abstractmethod
    async def inspect_image(self, name: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def pull_image(self, name: str, platform: Optional[str] = None,
                         progress: Optional[ProgressCallback] = None) -> None:
        ...

    @abstractmethod
    async def build_image(self, context: BinaryIO, tag: str, dockerfile: str = "Dockerfile",
                          buildargs: Optional[Dict[str, str]] = None,
                          target: Optional[str] = None, pull: bool = False,
                          labels: Optional[Dict[str, str]] = None,
                          platform: Optional[str] = None,
                          progress: Optional[ProgressCallback] = None) -> None:
        """Builds an image from a gzip-compressed tar build context."""

    # networks and volumes

    @abstractmethod
    async def inspect_network(self, ref: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def create_network(self, name: str, driver: str = "bridge",
                             labels: Optional[Dict[str, str]] = None) -> str:
        """Creates a network and returns its id."""

    @abstractmethod
    async def remove_network(self, ref: str) -> None:
        ...

    @abstractmethod
    async def inspect_volume(self, name: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def create_volume(self, name: str, driver: str = "local",
                            labels: Optional[Dict[str, str]] = None) -> None:
        ...

    async def close(self) -> None:
        """Releases client resources. The default does nothing."""

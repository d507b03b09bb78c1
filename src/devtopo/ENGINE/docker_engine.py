"""
Container engine adapter backed by the docker SDK's low-level API client.

The SDK is blocking, so every call runs on the event loop's default executor.
"""

from __future__ import annotations

import asyncio
from typing import Any, BinaryIO, Callable, Dict, Optional

import docker
from docker.errors import APIError, DockerException, NotFound
from docker.utils import parse_repository_tag

from ..errors import EngineError, NotModified, ResourceNotFound
from ..UTILS.logger import get_logger
from .engine import ContainerEngine, LogStream, ProgressCallback

logger = get_logger(__name__)


def _translate(op: str, target: str, exc: Exception) -> EngineError:
    if isinstance(exc, NotFound):
        return ResourceNotFound(op, target, exc.explanation or exc, 404)
    if isinstance(exc, APIError):
        if exc.status_code == 304:
            return NotModified(op, target, exc.explanation or exc, 304)
        return EngineError(op, target, exc.explanation or exc, exc.status_code)
    return EngineError(op, target, exc)


def _stream_error(event: Dict[str, Any]) -> Optional[str]:
    if "errorDetail" in event:
        detail = event["errorDetail"] or {}
        return detail.get("message") or event.get("error") or "unknown error"
    return event.get("error")


class DockerLogStream(LogStream):
    """
    Async view over the SDK's blocking, cancellable log stream.
    """

    def __init__(self, ref: str, stream: Any):
        self.ref = ref
        self._stream = stream
        self._closed = False

    def __aiter__(self) -> "DockerLogStream":
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration
        loop = asyncio.get_running_loop()
        try:
            chunk = await loop.run_in_executor(None, next, self._stream, None)
        except (DockerException, OSError, ValueError) as e:
            # Reads fail once close() shuts the socket from under the worker thread.
            if self._closed:
                raise StopAsyncIteration
            raise _translate("logs", self.ref, e) from e
        if chunk is None:
            self._closed = True
            raise StopAsyncIteration
        return chunk

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stream.close()


class DockerEngine(ContainerEngine):
    """
    :class:`ContainerEngine` talking to a docker-compatible daemon.

    :param base_url: Daemon URL such as ``unix:///var/run/docker.sock``.
        Defaults to the ``DOCKER_HOST`` environment configuration.
    :param timeout: Per-request timeout in seconds.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: int = 120,
                 api: Optional[docker.APIClient] = None):
        self.base_url = base_url
        self.timeout = timeout
        self._api = api

    @property
    def api(self) -> docker.APIClient:
        if self._api is None:
            if self.base_url:
                self._api = docker.APIClient(base_url=self.base_url, timeout=self.timeout)
            else:
                self._api = docker.from_env(timeout=self.timeout).api
        return self._api

    async def _call(self, op: str, target: str, fn: Callable[..., Any]) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except EngineError:
            raise
        except (DockerException, OSError) as e:
            raise _translate(op, target, e) from e

    def _api_call(self, op: str, target: str, method: str, *args: Any, **kwargs: Any):
        return self._call(op, target, lambda: getattr(self.api, method)(*args, **kwargs))

    async def ping(self) -> None:
        await self._api_call("ping", "engine", "ping")

    async def inspect_container(self, ref: str) -> Dict[str, Any]:
        return await self._api_call("inspect_container", ref, "inspect_container", ref)

    async def create_container(self, name: str, config: Dict[str, Any],
                               platform: Optional[str] = None) -> str:
        result = await self._api_call(
            "create_container", name, "create_container_from_config", config, name=name, platform=platform
        )
        for warning in result.get("Warnings") or []:
            logger.warning("Engine warning creating '%s': %s", name, warning)
        return result["Id"]

    async def start_container(self, ref: str) -> None:
        await self._api_call("start_container", ref, "start", ref)

    async def stop_container(self, ref: str, timeout: int) -> None:
        await self._api_call("stop_container", ref, "stop", ref, timeout=timeout)

    async def kill_container(self, ref: str) -> None:
        await self._api_call("kill_container", ref, "kill", ref)

    async def remove_container(self, ref: str, force: bool = True) -> None:
        await self._api_call("remove_container", ref, "remove_container", ref, force=force)

    async def container_logs(self, ref: str, tail: Optional[int] = None) -> bytes:
        return await self._api_call(
            "logs", ref, "logs", ref, stdout=True, stderr=True, timestamps=True,
            tail=tail if tail is not None else "all",
        )

    async def open_log_stream(self, ref: str) -> LogStream:
        stream = await self._api_call(
            "logs", ref, "logs", ref, stdout=True, stderr=True, timestamps=True, stream=True, follow=True
        )
        return DockerLogStream(ref, stream)

    async def inspect_image(self, name: str) -> Dict[str, Any]:
        return await self._api_call("inspect_image", name, "inspect_image", name)

    async def pull_image(self, name: str, platform: Optional[str] = None,
                         progress: Optional[ProgressCallback] = None) -> None:
        repository, tag = parse_repository_tag(name)

        def _pull():
            events = self.api.pull(repository, tag=tag or "latest", stream=True, decode=True, platform=platform)
            for event in events:
                error = _stream_error(event)
                if error:
                    raise EngineError("pull_image", name, error)
                if progress:
                    progress(event)

        await self._call("pull_image", name, _pull)

    async def build_image(self, context: BinaryIO, tag: str, dockerfile: str = "Dockerfile",
                          buildargs: Optional[Dict[str, str]] = None,
                          target: Optional[str] = None, pull: bool = False,
                          labels: Optional[Dict[str, str]] = None,
                          platform: Optional[str] = None,
                          progress: Optional[ProgressCallback] = None) -> None:
        def _build():
            events = self.api.build(
                fileobj=context,
                custom_context=True,
                encoding="gzip",
                tag=tag,
                dockerfile=dockerfile,
                buildargs=buildargs or None,
                target=target,
                pull=pull,
                labels=labels or None,
                platform=platform,
                rm=True,
                decode=True,
            )
            for event in events:
                error = _stream_error(event)
                if error:
                    raise EngineError("build_image", tag, error)
                if progress:
                    progress(event)

        await self._call("build_image", tag, _build)

    async def inspect_network(self, ref: str) -> Dict[str, Any]:
        return await self._api_call("inspect_network", ref, "inspect_network", ref)

    async def create_network(self, name: str, driver: str = "bridge",
                             labels: Optional[Dict[str, str]] = None) -> str:
        result = await self._api_call("create_network", name, "create_network", name, driver=driver, labels=labels)
        return result["Id"]

    async def remove_network(self, ref: str) -> None:
        await self._api_call("remove_network", ref, "remove_network", ref)

    async def inspect_volume(self, name: str) -> Dict[str, Any]:
        return await self._api_call("inspect_volume", name, "inspect_volume", name)

    async def create_volume(self, name: str, driver: str = "local",
                            labels: Optional[Dict[str, str]] = None) -> None:
        await self._api_call("create_volume", name, "create_volume", name=name, driver=driver, labels=labels)

    async def close(self) -> None:
        if self._api is not None:
            self._api.close()
            self._api = None

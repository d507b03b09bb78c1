"""
Lifecycle management for a single container instance of a service group.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from ..BUILDERS.container_spec import build_container_config
from ..BUILDERS.image_builder import ImageBuilder
from ..ENGINE.engine import ContainerEngine, LogStream
from ..errors import (
    EngineError,
    HealthCheckTimeout,
    ImageBuildFailed,
    NotModified,
    ResourceNotFound,
)
from ..MODELS.instance_state import InstanceState, InstanceStatus, LogLine
from ..MODELS.service_definition import ServiceGroupConfig
from ..settings import Settings
from ..UTILS.logger import get_logger
from .environment_manager import EnvironmentManager
from .health_monitor import HealthStatus, health_status, last_health_output, wait_until_healthy
from .log_aggregator import LineSplitter, LogAggregator, split_timestamp


class _InstanceLogger(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[{self.extra['instance']}] {msg}", kwargs


class ContainerInstance:
    """
    Owns exactly one container: image resolution, create/start/stop/remove,
    health polling and log streaming.
    """
    def __init__(self,
                 config: ServiceGroupConfig,
                 engine: ContainerEngine,
                 instance_name: Optional[str] = None,
                 network_name: Optional[str] = None,
                 settings: Optional[Settings] = None,
                 label: Optional[str] = None,
                 base_dir: str = "."):
        """
        :param config: Definition of the owning service group.
        :param engine: Container engine to talk to.
        :param instance_name: Container name; defaults to the group name.
        :param network_name: Shared network the container joins.
        :param settings: Runtime settings (timeouts, grace periods).
        :param label: Tag prefixed to every log line of this instance.
        :param base_dir: Base directory for build contexts and env files.
        """
        self.config = config
        self.group = config.name
        self.instance_name = instance_name or config.name
        self.engine = engine
        self.network_name = network_name
        self.settings = settings or Settings()
        self.label = label or f"{self.instance_name} |"
        self.env_manager = EnvironmentManager(base_dir)
        self.image_builder = ImageBuilder(base_dir)

        self.container_id: Optional[str] = None
        self.state = InstanceState.CREATED
        self._log_stream: Optional[LogStream] = None
        self._log_task: Optional[asyncio.Task] = None
        self.logger = _InstanceLogger(get_logger(__name__), {"instance": self.instance_name})

    def __repr__(self) -> str:
        return f"ContainerInstance({self.instance_name!r}, state={self.state.value})"

    @property
    def ref(self) -> str:
        """Engine reference: the container id once created, else the name."""
        return self.container_id or self.instance_name

    @property
    def stop_grace_period(self) -> int:
        if self.config.stop_grace_period is not None:
            return int(self.config.stop_grace_period)
        return self.settings.stop_grace_period_s

    @property
    def has_health_check(self) -> bool:
        return self.config.health_check is not None and not self.config.health_check.disabled

    # ---------- image ----------

    async def prepare_image(self) -> None:
        """
        Builds the image when a build context is declared, otherwise makes sure
        the image is present locally, pulling it if needed.

        :raises ImageBuildFailed: If the build fails.
        :raises EngineError: If inspecting or pulling the image fails.
        """
        self.state = InstanceState.PREPARING
        try:
            if self.config.build:
                await self._build_image()
            else:
                await self._pull_image()
        except Exception:
            self.state = InstanceState.FAILED
            raise

    async def _build_image(self) -> None:
        build = self.config.build
        tag = self.config.image_tag
        self.logger.info("Building image '%s' from context '%s'...", tag, build.context)
        loop = asyncio.get_running_loop()
        try:
            context = await loop.run_in_executor(None, self.image_builder.package_context, build)
        except OSError as e:
            raise ImageBuildFailed(tag, e) from e
        try:
            await self.engine.build_image(
                context,
                tag,
                dockerfile=build.dockerfile,
                buildargs=build.args,
                target=build.target,
                pull=build.pull,
                labels=build.labels,
                platform=self.config.platform,
                progress=self._log_progress,
            )
        except EngineError as e:
            self.logger.error("Error building image '%s': %s", tag, e)
            raise ImageBuildFailed(tag, e.cause if e.cause is not None else e) from e
        finally:
            context.close()
        self.logger.info("Image '%s' built successfully.", tag)

    async def _pull_image(self) -> None:
        image = self.config.image_tag
        try:
            await self.engine.inspect_image(image)
            return
        except ResourceNotFound:
            pass
        self.logger.info("Pulling image '%s'...", image)
        await self.engine.pull_image(image, platform=self.config.platform, progress=self._log_progress)
        self.logger.info("Image '%s' pulled successfully.", image)

    def _log_progress(self, event: Dict[str, Any]) -> None:
        if event.get("stream"):
            self.logger.debug(event["stream"].strip())
        elif event.get("status"):
            self.logger.debug("%s %s", event["status"], event.get("progress") or "")

    # ---------- lifecycle ----------

    async def start(self) -> None:
        """
        Creates and starts the container. A container already holding the
        target name is stopped and removed first. Creation is not retried.

        :raises EngineError: If creating or starting the container fails.
        """
        self.state = InstanceState.STARTING
        self.logger.info("Starting service instance...")
        try:
            await self._remove_existing()
            environment = self.env_manager.get_merged_environment(
                self.config.environment, self.config.env_files
            )
            payload = build_container_config(
                self.config,
                self.instance_name,
                self.network_name,
                environment=environment,
                stop_grace_period=self.settings.stop_grace_period_s,
            )
            self.logger.debug("Creating container with image '%s'...", self.config.image_tag)
            self.container_id = await self.engine.create_container(
                self.instance_name, payload, platform=self.config.platform
            )
            await self.engine.start_container(self.container_id)
        except Exception as e:
            self.state = InstanceState.FAILED
            self.logger.error("Error starting service: %s", e)
            raise
        self.state = InstanceState.RUNNING
        self.logger.info("Service started (container %s).", self.container_id[:12])

    async def _remove_existing(self) -> None:
        try:
            info = await self.engine.inspect_container(self.instance_name)
        except ResourceNotFound:
            return
        state = info.get("State") or {}
        self.logger.warning("Container already exists (State: %s). Removing it.", state.get("Status"))
        if state.get("Running"):
            try:
                await self.engine.stop_container(self.instance_name, timeout=self.stop_grace_period)
            except EngineError as e:
                self.logger.warning("Could not stop existing container: %s", e)
        try:
            await self.engine.remove_container(self.instance_name, force=True)
        except ResourceNotFound:
            pass
        except EngineError as e:
            self.logger.warning("Could not remove existing container: %s", e)

    async def stop(self) -> None:
        """
        Stops the container gracefully, escalating to kill if the graceful stop
        fails. Never raises: an absent or already stopped container counts as
        stopped and every other failure is logged.
        """
        ref = self.ref
        try:
            info = await self.engine.inspect_container(ref)
        except ResourceNotFound:
            self.logger.debug("Container not found for stopping.")
            self.state = InstanceState.STOPPED
            return
        except EngineError as e:
            self.logger.warning("Error inspecting container before stop: %s", e)
            return

        if not (info.get("State") or {}).get("Running"):
            self.logger.debug("Container is not running (Status: %s).", (info.get("State") or {}).get("Status"))
            self.state = InstanceState.STOPPED
            return

        self.state = InstanceState.STOPPING
        self.logger.info("Stopping container...")
        try:
            await self.engine.stop_container(ref, timeout=self.stop_grace_period)
        except (NotModified, ResourceNotFound):
            self.logger.debug("Container was already stopped.")
        except EngineError as e:
            self.logger.warning("Graceful stop failed (%s), attempting force kill...", e)
            try:
                await self.engine.kill_container(ref)
            except (NotModified, ResourceNotFound):
                pass
            except EngineError as kill_error:
                self.logger.warning("Error stopping container: %s", kill_error)
                return
        self.state = InstanceState.STOPPED
        self.logger.info("Container stopped.")

    async def remove(self) -> None:
        """
        Force-removes the container. Never raises; a missing container counts
        as removed.
        """
        try:
            await self.engine.remove_container(self.ref, force=True)
        except ResourceNotFound:
            self.logger.debug("Container was already removed.")
        except EngineError as e:
            self.logger.warning("Error removing container: %s", e)
            return
        self.state = InstanceState.REMOVED
        self.logger.debug("Container removed.")

    # ---------- health ----------

    async def is_healthy(self) -> bool:
        """
        Single inspect of the container's health status. Containers without a
        health check report their running state; absent containers are unhealthy.
        """
        try:
            data = await self.engine.inspect_container(self.ref)
        except ResourceNotFound:
            return False
        status = health_status(data)
        if status is HealthStatus.NONE:
            return bool((data.get("State") or {}).get("Running"))
        if status is HealthStatus.HEALTHY:
            self.state = InstanceState.HEALTHY
            return True
        if status is HealthStatus.UNHEALTHY:
            self.state = InstanceState.UNHEALTHY
            output = last_health_output(data)
            if output:
                self.logger.debug("Last health check output: %s", output)
        return False

    async def wait_for_healthy(self, timeout: Optional[float] = None, interval: Optional[float] = None) -> None:
        """
        Waits until the container reports healthy. Returns at once, without
        touching the engine, when the service declares no health check.

        :param timeout: Seconds to wait; defaults to the configured health timeout.
        :param interval: Seconds between polls; defaults to the configured interval.
        :raises HealthCheckTimeout: If the container is not healthy in time.
        """
        if not self.has_health_check:
            self.logger.debug("No health check defined. Assuming healthy.")
            return
        timeout = self.settings.health_timeout_s if timeout is None else timeout
        interval = self.settings.health_interval_s if interval is None else interval
        self.logger.info("Waiting to become healthy (timeout: %gs, interval: %gs)...", timeout, interval)
        try:
            await wait_until_healthy(self.is_healthy, self.instance_name, timeout, interval)
        except HealthCheckTimeout:
            self.state = InstanceState.FAILED
            self.logger.error("Timed out after %gs waiting to become healthy.", timeout)
            raise
        self.state = InstanceState.HEALTHY
        self.logger.debug("Container is healthy.")

    # ---------- logs ----------

    @property
    def streaming(self) -> bool:
        return self._log_task is not None and not self._log_task.done()

    async def stream_logs(self, aggregator: LogAggregator) -> None:
        """
        Attaches to the container's output and forwards each line to the
        aggregator until :meth:`stop_log_stream` is called or the stream ends.

        :raises EngineError: If attaching to the logs fails.
        """
        if self.streaming:
            return
        try:
            info = await self.engine.inspect_container(self.ref)
        except ResourceNotFound:
            self.logger.warning("Container not found. Cannot stream logs.")
            return
        if not (info.get("State") or {}).get("Running"):
            self.logger.warning("Container is not running. Cannot stream logs.")
            return

        self.logger.debug("Attaching to logs...")
        stream = await self.engine.open_log_stream(self.ref)
        self._log_stream = stream
        self._log_task = asyncio.get_running_loop().create_task(self._pump_logs(stream, aggregator))

    async def _pump_logs(self, stream: LogStream, aggregator: LogAggregator) -> None:
        splitter = LineSplitter()
        try:
            async for chunk in stream:
                for line in splitter.feed(chunk):
                    await aggregator.publish(self._log_line(line))
            for line in splitter.flush():
                await aggregator.publish(self._log_line(line))
            self.logger.debug("Log stream ended.")
        except EngineError as e:
            self.logger.warning("Error in log stream: %s", e)
        finally:
            stream.close()
            if self._log_stream is stream:
                self._log_stream = None

    def _log_line(self, line: str) -> LogLine:
        timestamp, message = split_timestamp(line)
        return LogLine(service=self.instance_name, label=self.label, message=message, timestamp=timestamp)

    def stop_log_stream(self) -> None:
        """
        Detaches from the container's output. The container keeps running.
        """
        if self._log_stream is None and not self.streaming:
            return
        self.logger.debug("Detaching from logs.")
        if self._log_stream is not None:
            try:
                self._log_stream.close()
            except (EngineError, OSError) as e:
                self.logger.warning("Error closing log stream: %s", e)
            self._log_stream = None
        if self._log_task is not None:
            if not self._log_task.done():
                self._log_task.cancel()
            self._log_task = None

    async def get_logs(self, tail: Optional[int] = 100) -> List[str]:
        """
        Returns the last ``tail`` cleaned log lines of the container.
        """
        try:
            raw = await self.engine.container_logs(self.ref, tail=tail)
        except ResourceNotFound:
            return []
        splitter = LineSplitter()
        return splitter.feed(raw) + splitter.flush()

    # ---------- inspection ----------

    async def get_state(self) -> InstanceStatus:
        """
        Snapshot of the container as currently reported by the engine.
        """
        status = InstanceStatus(instance=self.instance_name, group=self.group, state=self.state.value)
        try:
            data = await self.engine.inspect_container(self.ref)
        except ResourceNotFound:
            status.state = "missing"
            return status
        except EngineError as e:
            status.state = InstanceState.FAILED.value
            status.error = str(e)
            return status

        state = data.get("State") or {}
        if state.get("Running"):
            status.state = InstanceState.RUNNING.value
        elif state.get("Status") == "created":
            status.state = InstanceState.CREATED.value
        else:
            status.state = InstanceState.STOPPED.value
        health = health_status(data)
        if health is not HealthStatus.NONE:
            status.health = health.value
            if health in (HealthStatus.HEALTHY, HealthStatus.UNHEALTHY) and state.get("Running"):
                status.state = health.value

        status.container_id = data.get("Id")
        status.restart_count = data.get("RestartCount") or 0
        status.started_at = state.get("StartedAt")
        status.finished_at = state.get("FinishedAt")
        ports = (data.get("NetworkSettings") or {}).get("Ports") or {}
        for container_port, bindings in sorted(ports.items()):
            for binding in bindings or []:
                if binding.get("HostPort"):
                    status.ports.append(f"{binding['HostPort']}->{container_port}")
        return status

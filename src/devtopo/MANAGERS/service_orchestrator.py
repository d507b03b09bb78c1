# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Orchestration for multiple service groups, managing dependencies and health.
"""
import asyncio
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..BUILDERS.container_spec import LABEL_NETWORK
from ..ENGINE.engine import ContainerEngine
from ..errors import DependencyNotStarted, DependencyUnhealthy
from ..MODELS.instance_state import InstanceStatus, LogLine
from ..MODELS.orchestration_config import TopologyConfig
from ..MODELS.service_definition import DependencyCondition, ServiceGroupConfig
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..settings import Settings
from ..UTILS.labels import ServiceLabeler
from ..UTILS.logger import get_logger
from .container_manager import ContainerInstance
from .log_aggregator import LogAggregator
from .network_manager import NetworkManager
from .volume_manager import VolumeManager

logger = get_logger(__name__)


class ServiceOrchestrator:
    """
    Starts a batch of service groups in dependency order on one shared network,
    gates dependents on the health of their dependencies and tears everything
    down in reverse order.

    The registry of running groups preserves insertion order, which is the
    order groups were started in.
    """
    def __init__(self,
                 engine: Optional[ContainerEngine] = None,
                 settings: Optional[Settings] = None,
                 network_name: Optional[str] = None,
                 volumes: Iterable[str] = (),
                 base_dir: str = ".",
                 log_sink: Optional[Callable[[LogLine], None]] = None):
        """
        Initializes the orchestrator.

        :param engine: Container engine; defaults to the local docker daemon.
        :param settings: Runtime settings; defaults to values from the environment.
        :param network_name: Shared network name; overrides the settings.
        :param volumes: Named volumes to create before any service starts.
        :param base_dir: Directory build contexts and env files are relative to.
        :param log_sink: Receives aggregated log lines; defaults to stdout.
        """
        if engine is None:
            from ..ENGINE.docker_engine import DockerEngine
            engine = DockerEngine()
        self.engine = engine
        self.settings = settings or Settings.from_env(load_env_file=False)
        self.network_name = network_name or self.settings.network_name
        self.volumes = list(volumes)
        self.base_dir = base_dir

        self.resolver = DependencyResolver()
        self.network_manager = NetworkManager(
            engine, self.network_name, labels={LABEL_NETWORK: self.network_name}
        )
        self.volume_manager = VolumeManager(engine, labels={LABEL_NETWORK: self.network_name})
        self.labeler = ServiceLabeler(color=self.settings.use_color)
        self.log_aggregator = LogAggregator(sink=log_sink, max_queue=self.settings.log_queue_size)
        self._running: Dict[str, List[ContainerInstance]] = {}

    @classmethod
    def from_topology(cls, topology: TopologyConfig, **kwargs) -> "ServiceOrchestrator":
        """
        Builds an orchestrator for a parsed topology file. An explicit
        ``network_name`` keyword wins over the network declared in the file.
        """
        if not kwargs.get("network_name"):
            kwargs["network_name"] = topology.network_name
        kwargs.setdefault("volumes", topology.volumes)
        return cls(**kwargs)

    async def __aenter__(self) -> "ServiceOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop_all_services()
        await self.close()

    # ---------- registry ----------

    @property
    def running_services(self) -> Dict[str, List[ContainerInstance]]:
        """Snapshot of the registry: group name to its instances, in start order."""
        return {group: list(instances) for group, instances in self._running.items()}

    @property
    def start_order(self) -> List[str]:
        return list(self._running)

    def instances(self, groups: Optional[Sequence[str]] = None) -> List[ContainerInstance]:
        """
        Flattened registered instances, in start order.

        :param groups: Restrict to these groups; unknown names are ignored.
        """
        selected = []
        for group, instances in self._running.items():
            if groups and group not in groups:
                continue
            selected.extend(instances)
        return selected

    def _create_instances(self, config: ServiceGroupConfig) -> List[ContainerInstance]:
        return [
            ContainerInstance(
                config,
                self.engine,
                instance_name=name,
                network_name=self.network_name,
                settings=self.settings,
                label=self.labeler.label(name),
                base_dir=self.base_dir,
            )
            for name in config.instance_names()
        ]

    def _fit_labels(self, configs: Sequence[ServiceGroupConfig]) -> None:
        names = [name for config in configs for name in config.instance_names()]
        names.extend(instance.instance_name for instance in self.instances())
        self.labeler.width = max((len(name) for name in names), default=0) or None

    # ---------- shared resources ----------

    async def get_or_create_network(self) -> str:
        """
        Returns the id of the shared network, creating it on first use.

        :raises EngineError: If the network cannot be inspected or created.
        """
        return await self.network_manager.get_or_create()

    async def ensure_volumes(self) -> List[str]:
        """
        Creates the named volumes of the topology that do not exist yet.

        :return: Names of the volumes created.
        """
        if not self.volumes:
            return []
        return await self.volume_manager.ensure(self.volumes)

    # ---------- lifecycle ----------

    async def start_services(self, configs: Sequence[ServiceGroupConfig]) -> None:
        """
        Starts every group in dependency order. Before a group starts, every
        instance of each dependency with a ``healthy`` condition must report
        healthy. Replicas of a group start one after another.

        A failure aborts the call; instances started so far stay registered and
        running, so the caller is expected to call :meth:`stop_all_services`.

        :param configs: The service groups of one batch.
        :raises CircularDependency: If the dependency graph has a cycle.
        :raises MissingDependency: If a group depends on an undefined group.
        :raises DependencyUnhealthy: If a dependency does not become healthy in time.
        :raises ImageBuildFailed: If an image build fails.
        :raises EngineError: If the engine rejects a call.
        """
        configs = list(configs)
        await self.get_or_create_network()
        await self.ensure_volumes()

        order = self.resolver.resolve_order(configs)
        logger.info("Starting services in order: %s", ", ".join(order))
        self._fit_labels(configs)

        by_name = {config.name: config for config in configs}
        for group in order:
            config = by_name[group]
            await self._await_dependencies(config)

            instances = self._create_instances(config)
            if group in self._running:
                logger.warning("Service group '%s' is already running. Replacing it.", group)
                await self._teardown_group(self._running.pop(group))
            # re-inserted at the end so reverse teardown follows the new start order
            self._running[group] = []

            logger.info("Starting service group '%s' (%d instance(s))...", group, len(instances))
            await instances[0].prepare_image()
            for instance in instances:
                # registered before start so a half-created container is still torn down
                self._running[group].append(instance)
                await instance.start()
        logger.info("All services started.")

    async def _await_dependencies(self, config: ServiceGroupConfig) -> None:
        for dependency, edge in config.depends_on.items():
            instances = self._running.get(dependency)
            if not instances:
                raise DependencyNotStarted(config.name, dependency)
            if edge.condition is not DependencyCondition.HEALTHY:
                continue

            logger.info("'%s' waiting for all instances of '%s' to be healthy...", config.name, dependency)
            results = await asyncio.gather(
                *(instance.wait_for_healthy() for instance in instances),
                return_exceptions=True,
            )
            failures = [result for result in results if isinstance(result, Exception)]
            if failures:
                logger.error("Dependency '%s' for '%s' failed to become healthy.", dependency, config.name)
                raise DependencyUnhealthy(config.name, dependency) from failures[0]
            logger.info("Dependency '%s' for '%s' is healthy.", dependency, config.name)

    async def stop_all_services(self) -> None:
        """
        Stops and removes every registered instance in reverse start order,
        then removes the shared network if nothing else uses it. Instances of
        one group are torn down concurrently. Never raises; the registry is
        empty afterwards.

        The network is also released when nothing was registered, e.g. after
        a start that failed on an invalid dependency graph.
        """
        logger.info("Gracefully shutting down all services...")
        try:
            self.stop_all_log_streams()
            await self.log_aggregator.stop()

            for group in reversed(list(self._running)):
                logger.info("Stopping service group '%s'...", group)
                await self._teardown_group(self._running[group])

            await self.network_manager.remove_if_unused()
        except Exception as e:
            logger.error("Error during shutdown: %s", e)
        finally:
            self._running.clear()
        logger.info("All services shut down.")

    @staticmethod
    async def _teardown(instance: ContainerInstance) -> None:
        await instance.stop()
        await instance.remove()

    async def _teardown_group(self, instances: List[ContainerInstance]) -> None:
        for instance in instances:
            instance.stop_log_stream()
        results = await asyncio.gather(
            *(self._teardown(instance) for instance in instances),
            return_exceptions=True,
        )
        for instance, result in zip(instances, results):
            if isinstance(result, Exception):
                logger.warning("Error tearing down '%s': %s", instance.instance_name, result)

    async def attach(self, configs: Sequence[ServiceGroupConfig]) -> None:
        """
        Registers the instances a previous run started for ``configs`` without
        touching them, so they can be inspected or torn down from a new process.
        """
        configs = list(configs)
        order = self.resolver.resolve_order(configs)
        self._fit_labels(configs)
        by_name = {config.name: config for config in configs}
        for group in order:
            self._running[group] = self._create_instances(by_name[group])
        await self.network_manager.lookup()

    # ---------- logs ----------

    async def stream_all_logs(self) -> None:
        """
        Attaches to the output of every registered instance and forwards it to
        the log sink. An instance that cannot be attached is logged and skipped.
        """
        self.log_aggregator.start()
        instances = self.instances()
        results = await asyncio.gather(
            *(instance.stream_logs(self.log_aggregator) for instance in instances),
            return_exceptions=True,
        )
        for instance, result in zip(instances, results):
            if isinstance(result, Exception):
                logger.error("Error starting log stream for '%s': %s", instance.instance_name, result)

    def stop_all_log_streams(self) -> None:
        """Detaches every log stream; containers keep running."""
        for instance in self.instances():
            instance.stop_log_stream()

    async def get_logs(self, groups: Optional[Sequence[str]] = None,
                       tail: Optional[int] = 100) -> Dict[str, List[str]]:
        """
        Recent log lines per instance.

        :param groups: Restrict to these groups.
        :param tail: Number of lines per instance.
        """
        instances = self.instances(groups)
        results = await asyncio.gather(*(instance.get_logs(tail=tail) for instance in instances))
        return {instance.instance_name: lines for instance, lines in zip(instances, results)}

    # ---------- inspection ----------

    async def status(self) -> List[InstanceStatus]:
        """
        Engine-reported state of every registered instance, in start order.
        """
        return list(await asyncio.gather(*(instance.get_state() for instance in self.instances())))

    async def close(self) -> None:
        await self.engine.close()

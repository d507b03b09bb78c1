"""
Dependency resolution for service groups to determine startup and shutdown order.
"""
from typing import Dict, List, Sequence

from ..errors import CircularDependency, ConfigurationError, MissingDependency
from ..MODELS.service_definition import ServiceGroupConfig

_UNVISITED, _IN_PROGRESS, _DONE = 0, 1, 2


class DependencyResolver:
    """
    Resolves the startup and shutdown order of service groups based on their
    ``depends_on`` edges.
    """
    def resolve_order(self, configs: Sequence[ServiceGroupConfig]) -> List[str]:
        """
        Determines the order to start groups in using a depth-first topological
        sort. Groups without an ordering constraint between them keep their
        input order.

        :param configs: The service groups of one batch.
        :return: Group names in the order they should be started.
        :raises ConfigurationError: If a group name appears twice.
        :raises MissingDependency: If a group depends on a group outside the batch.
        :raises CircularDependency: If the dependency graph has a cycle.
        """
        dependencies: Dict[str, List[str]] = {}
        for config in configs:
            if config.name in dependencies:
                raise ConfigurationError(f"Service group '{config.name}' is defined more than once")
            dependencies[config.name] = list(config.depends_on)

        for name, deps in dependencies.items():
            for dep in deps:
                if dep not in dependencies:
                    raise MissingDependency(name, dep)

        ordered: List[str] = []
        marks = dict.fromkeys(dependencies, _UNVISITED)

        def visit(name: str) -> None:
            if marks[name] == _DONE:
                return
            if marks[name] == _IN_PROGRESS:
                raise CircularDependency(name)
            marks[name] = _IN_PROGRESS
            for dep in dependencies[name]:
                visit(dep)
            marks[name] = _DONE
            ordered.append(name)

        for name in dependencies:
            visit(name)

        return ordered

    def shutdown_order(self, configs: Sequence[ServiceGroupConfig]) -> List[str]:
        """
        The exact reverse of :meth:`resolve_order`.
        """
        return list(reversed(self.resolve_order(configs)))

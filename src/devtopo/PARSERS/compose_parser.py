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
Parser for compose-style topology YAML files.
"""
import os
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError

from ..errors import ConfigurationError
from ..MODELS.orchestration_config import TopologyConfig
from ..MODELS.service_definition import ServiceGroupConfig
from ..UTILS.logger import get_logger
from ..UTILS.string_interpolation import EnvironmentInterpolator

logger = get_logger(__name__)


class TopologyParser:
    """
    Parser for topology files written in the docker-compose format. Relative
    build contexts, env files and bind-mount sources resolve against the
    directory of the file.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: Variables for ``${VAR}`` interpolation; defaults to the process environment.
        """
        self.context = dict(os.environ) if context is None else context

    def parse(self, path: str) -> TopologyConfig:
        """
        Parses a topology file from a path.

        :param path: Path to the topology file.
        :return: Parsed configuration.
        :raises ConfigurationError: If the file is missing or invalid.
        """
        try:
            with open(path, "r") as f:
                content = f.read()
        except FileNotFoundError:
            raise ConfigurationError(f"Topology file not found: {path}")
        except OSError as e:
            raise ConfigurationError(f"Cannot read topology file {path}: {e}") from e
        return self.parse_from_string(content, base_dir=os.path.dirname(os.path.abspath(path)))

    def parse_from_string(self, content: str, base_dir: str = ".") -> TopologyConfig:
        """
        Parses a topology from YAML content.

        :param content: YAML content of the topology file.
        :param base_dir: Directory relative paths are resolved against.
        :return: Parsed configuration.
        :raises ConfigurationError: If the content is not a valid topology.
        """
        interpolator = EnvironmentInterpolator(self.context)
        try:
            content = interpolator.interpolate(content)
        except KeyError as e:
            raise ConfigurationError(f"Interpolation failed: {e.args[0]}") from e
        for name in interpolator.missing:
            logger.warning("The '%s' variable is not set. Defaulting to a blank string.", name)

        try:
            data = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError("Topology file must be a mapping")

        services_spec = data.get("services") or {}
        if not isinstance(services_spec, dict) or not services_spec:
            raise ConfigurationError("Topology file declares no services")

        base_dir = os.path.abspath(base_dir)
        services = []
        for name, spec in services_spec.items():
            if spec is None:
                spec = {}
            if not isinstance(spec, dict):
                raise ConfigurationError(f"Service '{name}' must be a mapping")
            try:
                services.append(ServiceGroupConfig(**self._parse_service(str(name), spec, base_dir)))
            except (ValidationError, ValueError) as e:
                raise ConfigurationError(f"Invalid service '{name}': {e}") from e

        return TopologyConfig(
            services=services,
            network_name=self._network_name(data.get("networks")),
            volumes=self._volume_names(data.get("volumes")),
        )

    def _parse_service(self, name: str, spec: Dict[str, Any], base_dir: str) -> Dict[str, Any]:
        """
        Maps a single compose service onto the fields of :class:`ServiceGroupConfig`.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :param base_dir: Directory relative paths are resolved against.
        :return: Keyword arguments for the service model.
        """
        deploy = spec.get("deploy") or {}
        fields: Dict[str, Any] = {
            "name": name,
            "image": spec.get("image"),
            "platform": spec.get("platform"),
            "command": spec.get("command"),
            "entrypoint": spec.get("entrypoint"),
            "working_dir": spec.get("working_dir"),
            "user": spec.get("user"),
            "hostname": spec.get("hostname"),
            "environment": spec.get("environment"),
            "env_files": self._env_files(spec.get("env_file"), base_dir),
            "ports": [self._parse_port(p) for p in spec.get("ports") or []],
            "volumes": [self._parse_volume(v, base_dir) for v in spec.get("volumes") or []],
            "tmpfs": spec.get("tmpfs"),
            "depends_on": spec.get("depends_on"),
            "stop_grace_period": spec.get("stop_grace_period"),
            "stop_signal": spec.get("stop_signal"),
            "labels": self._labels(spec.get("labels")),
        }

        if spec.get("build") is not None:
            fields["build"] = self._parse_build(spec["build"], base_dir)

        healthcheck = spec.get("healthcheck")
        if healthcheck:
            fields["health_check"] = self._parse_healthcheck(healthcheck)

        # deploy.restart_policy wins over the short restart key
        if deploy.get("restart_policy"):
            fields["restart_policy"] = dict(deploy["restart_policy"])
        elif spec.get("restart") is not None:
            fields["restart_policy"] = {"condition": str(spec["restart"])}

        replicas = deploy.get("replicas", spec.get("scale"))
        if replicas is not None:
            fields["replicas"] = replicas

        limits = (deploy.get("resources") or {}).get("limits")
        if limits:
            fields["resources"] = {
                "cpus": limits.get("cpus"),
                "memory": None if limits.get("memory") is None else str(limits["memory"]),
                "pids": limits.get("pids"),
            }

        return {key: value for key, value in fields.items() if value is not None}

    @staticmethod
    def _resolve(path: str, base_dir: str) -> str:
        path = os.path.expanduser(path)
        if os.path.isabs(path):
            return path
        return os.path.normpath(os.path.join(base_dir, path))

    def _parse_build(self, build: Union[str, Dict[str, Any]], base_dir: str) -> Dict[str, Any]:
        if isinstance(build, str):
            return {"context": self._resolve(build, base_dir)}
        result = {
            "context": self._resolve(build.get("context", "."), base_dir),
            "args": self._labels(build.get("args")),
            "labels": self._labels(build.get("labels")),
            "pull": bool(build.get("pull", False)),
        }
        if build.get("dockerfile"):
            result["dockerfile"] = build["dockerfile"]
        if build.get("target"):
            result["target"] = build["target"]
        return {key: value for key, value in result.items() if value is not None}

    def _parse_healthcheck(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        if spec.get("disable"):
            return {"test": ["NONE"]}
        if "test" not in spec:
            raise ConfigurationError("healthcheck requires a 'test'")
        keys = ("test", "interval", "timeout", "retries", "start_period")
        return {key: spec[key] for key in keys if spec.get(key) is not None}

    def _parse_port(self, port: Union[int, str, Dict[str, Any]]) -> Dict[str, Any]:
        """
        Parses ``target``, ``published:target`` or ``ip:published:target``,
        each with an optional ``/protocol`` suffix, or the long mapping form.
        """
        if isinstance(port, dict):
            return {k: port[k] for k in ("target", "published", "protocol", "host_ip") if port.get(k) is not None}
        text, _, protocol = str(port).partition("/")
        parts = text.rsplit(":", 2)
        if any("-" in part for part in parts[-2:]):
            raise ConfigurationError(f"Port ranges are not supported: {port}")
        result: Dict[str, Any] = {"target": parts[-1], "protocol": protocol or "tcp"}
        if len(parts) >= 2 and parts[-2]:
            result["published"] = parts[-2]
        if len(parts) == 3 and parts[0]:
            result["host_ip"] = parts[0]
        return result

    def _parse_volume(self, volume: Union[str, Dict[str, Any]], base_dir: str) -> Union[str, Dict[str, Any]]:
        """
        Short-form strings stay strings; a relative bind source (``./data``)
        becomes absolute. Long-form mappings become mount definitions.
        """
        if isinstance(volume, dict):
            mount = {
                "type": volume.get("type", "volume"),
                "source": volume.get("source"),
                "target": volume.get("target"),
                "read_only": bool(volume.get("read_only", False)),
            }
            if mount["type"] == "bind" and mount["source"]:
                mount["source"] = self._resolve(mount["source"], base_dir)
            size = (volume.get("tmpfs") or {}).get("size")
            if size is not None:
                mount["tmpfs_size"] = size
            return {k: v for k, v in mount.items() if v is not None}

        source, sep, rest = str(volume).partition(":")
        if sep and source.startswith((".", "~", "/")):
            return f"{self._resolve(source, base_dir)}:{rest}"
        return str(volume)

    def _env_files(self, value: Any, base_dir: str) -> List[str]:
        if value is None:
            return []
        entries = [value] if isinstance(value, (str, dict)) else list(value)
        paths = []
        for entry in entries:
            path = entry.get("path") if isinstance(entry, dict) else entry
            if path:
                paths.append(self._resolve(str(path), base_dir))
        return paths

    @staticmethod
    def _labels(value: Any) -> Optional[Dict[str, str]]:
        """Accepts both the ``KEY=value`` list form and the mapping form."""
        if value is None:
            return None
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        labels = {}
        for item in value:
            key, _, val = str(item).partition("=")
            labels[key] = val
        return labels

    @staticmethod
    def _network_name(networks: Any) -> Optional[str]:
        if not networks or not isinstance(networks, dict):
            return None
        key, spec = next(iter(networks.items()))
        if isinstance(spec, dict) and spec.get("name"):
            return str(spec["name"])
        return str(key)

    @staticmethod
    def _volume_names(volumes: Any) -> List[str]:
        """Named volumes to create; external volumes are expected to exist."""
        if not volumes or not isinstance(volumes, dict):
            return []
        names = []
        for key, spec in volumes.items():
            spec = spec or {}
            if spec.get("external"):
                continue
            names.append(str(spec.get("name") or key))
        return names

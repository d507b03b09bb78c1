"""
Volume management for topologies, creating the named volumes services share.
"""
from typing import Dict, Iterable, List, Optional

from ..ENGINE.engine import ContainerEngine
from ..errors import ResourceNotFound
from ..UTILS.logger import get_logger

logger = get_logger(__name__)


class VolumeManager:
    """
    Idempotent get-or-create of named volumes. Volumes outlive the topology
    and are never removed on shutdown.
    """
    def __init__(self, engine: ContainerEngine, driver: str = "local",
                 labels: Optional[Dict[str, str]] = None):
        self.engine = engine
        self.driver = driver
        self.labels = labels or {}
        self.created: List[str] = []

    async def ensure(self, names: Iterable[str]) -> List[str]:
        """
        Makes sure every named volume exists.

        :param names: Volume names.
        :return: Names of the volumes created by this call.
        :raises EngineError: If inspecting or creating a volume fails.
        """
        created = []
        for name in names:
            try:
                await self.engine.inspect_volume(name)
                continue
            except ResourceNotFound:
                pass
            logger.info("Creating volume '%s'...", name)
            await self.engine.create_volume(name, driver=self.driver, labels=self.labels)
            created.append(name)
        self.created.extend(created)
        return created

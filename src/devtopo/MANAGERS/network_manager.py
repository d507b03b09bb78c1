"""
Management of the shared network every instance of a topology joins.
"""
from typing import Dict, Optional

from ..ENGINE.engine import ContainerEngine
from ..errors import EngineError, ResourceNotFound
from ..UTILS.logger import get_logger

logger = get_logger(__name__)


class NetworkManager:
    """
    Get-or-create handling of one named bridge network, caching its id for
    the session. There is no locking: two orchestrators targeting the same
    network name concurrently can race.
    """
    def __init__(self, engine: ContainerEngine, network_name: str, driver: str = "bridge",
                 labels: Optional[Dict[str, str]] = None):
        """
        :param engine: Container engine to talk to.
        :param network_name: Name of the shared network.
        :param driver: Network driver used when the network has to be created.
        :param labels: Labels applied to a newly created network.
        """
        self.engine = engine
        self.network_name = network_name
        self.driver = driver
        self.labels = labels or {}
        self.network_id: Optional[str] = None

    async def get_or_create(self) -> str:
        """
        Returns the id of the network, creating it if it does not exist yet.

        :raises EngineError: If inspecting or creating the network fails.
        """
        if self.network_id:
            return self.network_id
        try:
            info = await self.engine.inspect_network(self.network_name)
            self.network_id = info["Id"]
            logger.debug("Reusing network '%s' (ID: %s).", self.network_name, self.network_id)
        except ResourceNotFound:
            logger.info("Creating network '%s'...", self.network_name)
            self.network_id = await self.engine.create_network(
                self.network_name, driver=self.driver, labels=self.labels
            )
            logger.info("Network '%s' created (ID: %s).", self.network_name, self.network_id)
        return self.network_id

    async def lookup(self) -> Optional[str]:
        """
        Resolves the id of an existing network without creating it.

        :return: The network id, or None if the network does not exist.
        """
        if self.network_id:
            return self.network_id
        try:
            info = await self.engine.inspect_network(self.network_name)
        except ResourceNotFound:
            return None
        self.network_id = info["Id"]
        return self.network_id

    async def remove_if_unused(self) -> bool:
        """
        Removes the network unless containers are still attached to it.
        Never raises; failures are logged.

        :return: True if the network is gone afterwards.
        """
        if not self.network_id:
            return True
        network_id, self.network_id = self.network_id, None
        try:
            info = await self.engine.inspect_network(network_id)
        except ResourceNotFound:
            logger.info("Network '%s' was already removed.", self.network_name)
            return True
        except EngineError as e:
            logger.warning("Error inspecting network '%s': %s", self.network_name, e)
            return False

        attached = info.get("Containers") or {}
        if attached:
            names = ", ".join(sorted(c.get("Name", cid) for cid, c in attached.items()))
            logger.warning("Network '%s' still has containers: %s. Manual cleanup may be required.",
                           self.network_name, names)
            return False
        try:
            await self.engine.remove_network(network_id)
        except ResourceNotFound:
            return True
        except EngineError as e:
            logger.warning("Error removing network '%s': %s", self.network_name, e)
            return False
        logger.info("Network '%s' removed.", self.network_name)
        return True

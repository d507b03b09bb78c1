"""
Models for overall topology configuration.
"""
from typing import List, Optional

from pydantic import BaseModel

from .service_definition import ServiceGroupConfig


class TopologyConfig(BaseModel):
    """
    Complete configuration for one development topology: the service groups,
    the shared network they join and the named volumes they use.
    """
    services: List[ServiceGroupConfig]
    network_name: Optional[str] = None
    volumes: List[str] = []

    def get(self, name: str) -> Optional[ServiceGroupConfig]:
        for service in self.services:
            if service.name == name:
                return service
        return None

from __future__ import annotations

import os
import sys
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict


def _env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class Settings(BaseModel):
    """
    Runtime knobs of the orchestrator. Read from ``DEVTOPO_*`` variables by
    :meth:`from_env`; a ``.env`` file in the working directory is loaded first.
    """
    model_config = ConfigDict(frozen=True)

    network_name: str = "devtopo"
    health_timeout_s: float = 120.0
    health_interval_s: float = 1.0
    stop_grace_period_s: int = 10
    log_queue_size: int = 1000
    log_level: str = "INFO"
    # None means "colour when stdout is a terminal"
    color: Optional[bool] = None

    @property
    def use_color(self) -> bool:
        if self.color is None:
            return sys.stdout.isatty()
        return self.color

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "Settings":
        if load_env_file:
            load_dotenv(find_dotenv(usecwd=True), override=False)
        return cls(
            network_name=os.getenv("DEVTOPO_NETWORK", "devtopo"),
            health_timeout_s=_env_float("DEVTOPO_HEALTH_TIMEOUT_S", 120.0),
            health_interval_s=_env_float("DEVTOPO_HEALTH_INTERVAL_S", 1.0),
            stop_grace_period_s=_env_int("DEVTOPO_STOP_GRACE_PERIOD_S", 10),
            log_queue_size=_env_int("DEVTOPO_LOG_QUEUE_SIZE", 1000),
            log_level=os.getenv("DEVTOPO_LOG_LEVEL", "INFO").upper(),
            color=_env_bool("DEVTOPO_COLOR"),
        )

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
Health status interpretation and polling for container instances.
"""
import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    retry_if_result,
    stop_after_delay,
    wait_fixed,
)

from ..errors import EngineError, HealthCheckTimeout
from ..UTILS.logger import get_logger

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    """Health status of a container as reported by the engine."""

    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    NONE = "none"  # No health check configured


def health_status(inspect_data: Dict[str, Any]) -> HealthStatus:
    """
    Reads the health status out of a container inspect payload.

    Args:
        inspect_data: Result of inspecting the container.

    Returns:
        HealthStatus, ``NONE`` when the container has no health check.
    """
    health = (inspect_data.get("State") or {}).get("Health")
    if not health:
        return HealthStatus.NONE
    try:
        return HealthStatus(health.get("Status", "starting"))
    except ValueError:
        return HealthStatus.STARTING


def last_health_output(inspect_data: Dict[str, Any]) -> Optional[str]:
    """Output of the most recent health check probe, if any."""
    log = ((inspect_data.get("State") or {}).get("Health") or {}).get("Log") or []
    if not log:
        return None
    return (log[-1].get("Output") or "").strip() or None


async def wait_until_healthy(
    probe: Callable[[], Awaitable[bool]],
    name: str,
    timeout: float,
    interval: float,
) -> None:
    """
    Polls ``probe`` on a fixed interval until it returns True.

    Engine errors raised by the probe are logged and retried like an
    unhealthy answer. The timeout is a hard deadline: it also cuts short
    a pending sleep or a probe that hangs.

    Args:
        probe: Coroutine function answering "is it healthy now?".
        name: Instance name used in logs and errors.
        timeout: Seconds after which polling gives up.
        interval: Seconds between polls.

    Raises:
        HealthCheckTimeout: If the probe never succeeds within ``timeout``.
    """
    def _before_sleep(state: RetryCallState) -> None:
        if state.outcome is not None and state.outcome.failed:
            logger.warning("Health check attempt %d failed for '%s': %s",
                           state.attempt_number, name, state.outcome.exception())
        else:
            logger.debug("'%s' not healthy yet (attempt %d)", name, state.attempt_number)

    retrying = AsyncRetrying(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda healthy: not healthy) | retry_if_exception_type(EngineError),
        before_sleep=_before_sleep,
    )
    try:
        await asyncio.wait_for(retrying(probe), timeout)
    except (RetryError, asyncio.TimeoutError) as e:
        raise HealthCheckTimeout(name, timeout) from e

"""
Error types raised by the orchestration core.
"""
from typing import Optional


class DevtopoError(Exception):
    """
    Base class for every error raised by devtopo.
    """


class ConfigurationError(DevtopoError):
    """
    The topology description is malformed.
    """


class CircularDependency(DevtopoError):
    """
    Raised when the dependency graph of a topology contains a cycle.
    """
    def __init__(self, group: str):
        self.group = group
        super().__init__(f"Circular dependency detected involving '{group}'")


class MissingDependency(DevtopoError):
    """
    Raised when a group depends on a group that is not part of the batch.
    """
    def __init__(self, group: str, ref: str):
        self.group = group
        self.ref = ref
        super().__init__(f"Service group '{group}' depends on '{ref}', which is not defined")


class HealthCheckTimeout(DevtopoError):
    """
    Raised when an instance does not report healthy before the deadline.
    """
    def __init__(self, instance: str, timeout: Optional[float] = None):
        self.instance = instance
        self.timeout = timeout
        suffix = f" after {timeout:g}s" if timeout is not None else ""
        super().__init__(f"Timed out waiting for '{instance}' to become healthy{suffix}")


class DependencyUnhealthy(DevtopoError):
    """
    Raised by the orchestrator when a dependency group fails its health gate.
    """
    def __init__(self, group: str, dependency: str):
        self.group = group
        self.dependency = dependency
        super().__init__(
            f"Dependency group '{dependency}' for '{group}' failed to become healthy"
        )


class EngineError(DevtopoError):
    """
    Wraps a failure reported by the container engine.

    :param op: The engine operation that failed (e.g. ``create_container``).
    :param target: The container, image, network or volume the call addressed.
    :param cause: The underlying error or message.
    :param status_code: HTTP status code reported by the engine, if any.
    """
    def __init__(self, op: str, target: str, cause: object = None, status_code: Optional[int] = None):
        self.op = op
        self.target = target
        self.cause = cause
        self.status_code = status_code
        message = f"{op} failed for '{target}'"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class ResourceNotFound(EngineError):
    """The engine answered 404 for the addressed resource."""


class NotModified(EngineError):
    """The engine answered 304 (e.g. stopping an already stopped container)."""


class ImageBuildFailed(DevtopoError):
    """
    Raised when building an image from a build context fails.
    """
    def __init__(self, image: str, cause: object):
        self.image = image
        self.cause = cause
        super().__init__(f"Failed to build image '{image}': {cause}")


class DependencyNotStarted(DevtopoError):
    """
    Raised when a group is about to start but a group it depends on has no
    registered instances.
    """
    def __init__(self, group: str, dependency: str):
        self.group = group
        self.dependency = dependency
        super().__init__(f"Dependency group '{dependency}' for '{group}' not started or has no instances")

"""Exception hierarchy for aumai-devbox."""

from __future__ import annotations


class DevboxError(Exception):
    """Base class for every error raised by aumai-devbox."""


class SchemaError(DevboxError):
    """Raised when a configuration document has a missing or unsupported version."""


class ParseError(DevboxError):
    """Raised when a configuration document is malformed."""


class NotFoundError(DevboxError):
    """Raised when a profile, path or reference does not exist."""


class ContainerNotFound(NotFoundError):
    """Raised when the engine reports that a container does not exist."""

    def __init__(self, container: str) -> None:
        super().__init__(f"container {container!r} does not exist")
        self.container = container


class ImageNotFound(NotFoundError):
    """Raised when an image is not present in the engine's local storage."""

    def __init__(self, image: str) -> None:
        super().__init__(f"image {image!r} does not exist")
        self.image = image


class ResourceUnavailable(DevboxError):
    """Raised when a requested passthrough cannot be satisfied on the host.

    A requested resource is never silently skipped; the whole start operation
    is aborted instead.
    """


class MountConflictError(DevboxError):
    """Raised when two workspace mounts would land on the same container path."""


class EngineError(DevboxError):
    """Raised when the container engine exits with a non-zero code.

    Attributes:
        exit_code: Exit code reported by the engine process.
        stderr: Captured standard error, stripped (may be empty).
    """

    def __init__(self, message: str, exit_code: int = 1, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class UnownedContainer(DevboxError):
    """Raised when an operation targets a container not created by aumai-devbox."""

    def __init__(self, container: str) -> None:
        super().__init__(f"container {container!r} is not owned by aumai-devbox")
        self.container = container


__all__ = [
    "ContainerNotFound",
    "DevboxError",
    "EngineError",
    "ImageNotFound",
    "MountConflictError",
    "NotFoundError",
    "ParseError",
    "ResourceUnavailable",
    "SchemaError",
    "UnownedContainer",
]

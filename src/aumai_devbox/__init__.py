"""AumAI Devbox: isolated development containers with explicit host passthrough.

Public API::

    from aumai_devbox import (
        ConfigResolver,
        Engine,
        HostContext,
        InvocationComposer,
        Launcher,
        OwnershipTracker,
        PassthroughNegotiator,
        ResourceFlags,
        SandboxConfig,
        StartRequest,
        render_dry_run,
        resolve_capabilities,
    )
"""

from aumai_devbox.capabilities import resolve_capabilities
from aumai_devbox.composer import InvocationComposer, render_dry_run
from aumai_devbox.config import ConfigResolver, parse_document
from aumai_devbox.context import HostContext
from aumai_devbox.engine import Engine
from aumai_devbox.errors import (
    ContainerNotFound,
    DevboxError,
    EngineError,
    ImageNotFound,
    MountConflictError,
    NotFoundError,
    ParseError,
    ResourceUnavailable,
    SchemaError,
    UnownedContainer,
)
from aumai_devbox.launcher import Launcher, StartRequest
from aumai_devbox.models import (
    CapabilityDecision,
    ContainerIdentity,
    ContainerStatus,
    InvocationPlan,
    ResourceFlags,
    SandboxConfig,
)
from aumai_devbox.ownership import OwnershipTracker
from aumai_devbox.passthrough import PassthroughNegotiator
from aumai_devbox.settings import APP_VERSION, DevboxSettings

__version__ = APP_VERSION

__all__ = [
    # models
    "CapabilityDecision",
    "ContainerIdentity",
    "ContainerStatus",
    "InvocationPlan",
    "ResourceFlags",
    "SandboxConfig",
    # errors
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
    # components
    "ConfigResolver",
    "DevboxSettings",
    "Engine",
    "HostContext",
    "InvocationComposer",
    "Launcher",
    "OwnershipTracker",
    "PassthroughNegotiator",
    "StartRequest",
    "parse_document",
    "render_dry_run",
    "resolve_capabilities",
]

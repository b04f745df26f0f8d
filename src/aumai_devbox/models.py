"""Pydantic models for aumai-devbox."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Canonical profile
# ---------------------------------------------------------------------------


def _pairs(value: Any) -> Any:
    """Accept ``{key: value}`` mappings wherever a list of pairs is expected."""
    if isinstance(value, Mapping):
        return [[key, item] for key, item in value.items()]
    return value


class SandboxConfig(BaseModel):
    """Canonical container profile every schema version resolves into.

    Resource flags are tri-state: ``None`` means the profile does not say,
    which lets a command-line override or the default decide.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Profile name, unique within a loaded set")
    image: str = Field(..., description="Image reference used for the container")
    path: str | None = Field(default=None, description="Document the profile came from")

    skel: str | None = Field(default=None, description="Directory mounted as /etc/skel")
    shell: str | None = Field(default=None, description="Default user shell")
    network: bool | None = Field(default=None)

    wayland: bool | None = Field(default=None)
    pipewire: bool | None = Field(default=None)
    pulseaudio: bool | None = Field(default=None)
    ssh_agent: bool | None = Field(default=None)
    session_bus: bool | None = Field(default=None)
    gpus: list[int] = Field(
        default_factory=list, description="Logical GPU indices; 0 selects every GPU"
    )

    persist: list[tuple[str, str]] = Field(default_factory=list)
    persist_user: list[tuple[str, str]] = Field(
        default_factory=list, description="Like persist but chowned to the user on init"
    )
    on_init_pre: str | None = Field(default=None)
    on_init_post: str | None = Field(default=None)
    host_pre_init: str | None = Field(default=None)

    ports: list[tuple[int, int]] = Field(
        default_factory=list, description="(container, host) port pairs"
    )
    env: list[tuple[str, str]] = Field(default_factory=list)
    capabilities: list[str] = Field(default_factory=list)
    engine_args: list[str] = Field(default_factory=list)

    @field_validator("image")
    @classmethod
    def image_not_empty(cls, value: str) -> str:
        """Reject blank image references."""
        stripped = value.strip()
        if not stripped:
            raise ValueError("image must not be blank")
        return stripped

    @field_validator("persist", "persist_user", "env", mode="before")
    @classmethod
    def mapping_to_pairs(cls, value: Any) -> Any:
        return _pairs(value)

    @field_validator("gpus")
    @classmethod
    def gpus_not_negative(cls, values: list[int]) -> list[int]:
        for index in values:
            if index < 0:
                raise ValueError(f"gpu index {index} must not be negative")
        return values

    @field_validator("ports")
    @classmethod
    def ports_in_range(cls, values: list[tuple[int, int]]) -> list[tuple[int, int]]:
        """Validate each port number is in the valid TCP/UDP range."""
        for pair in values:
            for port in pair:
                if not (1 <= port <= 65535):
                    raise ValueError(f"port {port} is outside the valid range 1-65535")
        return values


# ---------------------------------------------------------------------------
# Versioned document schemas
# ---------------------------------------------------------------------------


class ProfileV1(BaseModel):
    """A single profile as written in a version 1 document."""

    model_config = ConfigDict(extra="forbid")

    image: str
    skel: str | None = None
    shell: str | None = None
    network: bool | None = None
    wayland: bool | None = None
    pipewire: bool | None = None
    pulseaudio: bool | None = None
    ssh_agent: bool | None = None
    session_bus: bool | None = None
    gpus: list[int] = Field(default_factory=list)
    persist: list[tuple[str, str]] = Field(default_factory=list)
    persist_user: list[tuple[str, str]] = Field(default_factory=list)
    on_init_pre: str | None = None
    on_init_post: str | None = None
    host_pre_init: str | None = None
    ports: list[tuple[int, int]] = Field(default_factory=list)
    env: list[tuple[str, str]] = Field(default_factory=list)
    capabilities: list[str] = Field(default_factory=list)
    engine_args: list[str] = Field(default_factory=list)

    @field_validator("persist", "persist_user", "env", mode="before")
    @classmethod
    def mapping_to_pairs(cls, value: Any) -> Any:
        return _pairs(value)


class ConfigDocumentV1(BaseModel):
    """Version 1 configuration document: named profiles keyed by name."""

    model_config = ConfigDict(extra="forbid")

    version: Literal[1]
    profiles: dict[str, ProfileV1] = Field(default_factory=dict)

    def to_profiles(self, path: str | None = None) -> list[SandboxConfig]:
        """Convert every profile into its canonical form, in document order."""
        return [
            SandboxConfig(name=name, path=path, **profile.model_dump())
            for name, profile in self.profiles.items()
        ]


# ---------------------------------------------------------------------------
# Resource flags
# ---------------------------------------------------------------------------


RESOURCE_FLAGS: tuple[str, ...] = (
    "network",
    "wayland",
    "pipewire",
    "pulseaudio",
    "ssh_agent",
    "session_bus",
)


def resolve_flag(
    cli: bool | None, profile: bool | None, default: bool = False
) -> bool:
    """Resolve one tri-state flag: command line over profile over default."""
    if cli is not None:
        return cli
    if profile is not None:
        return profile
    return default


class ResourceFlags(BaseModel):
    """Effective on/off state of every passthrough toggle for one start."""

    model_config = ConfigDict(frozen=True)

    network: bool = False
    wayland: bool = False
    pipewire: bool = False
    pulseaudio: bool = False
    ssh_agent: bool = False
    session_bus: bool = False

    @classmethod
    def resolve(
        cls,
        profile: SandboxConfig,
        overrides: Mapping[str, bool | None] | None = None,
    ) -> ResourceFlags:
        """Merge command-line *overrides* over *profile*.

        Raises:
            ValueError: If *overrides* names an unknown flag.
        """
        overrides = dict(overrides or {})
        unknown = set(overrides) - set(RESOURCE_FLAGS)
        if unknown:
            raise ValueError(f"unknown resource flags: {sorted(unknown)}")
        return cls(
            **{
                flag: resolve_flag(overrides.get(flag), getattr(profile, flag))
                for flag in RESOURCE_FLAGS
            }
        )


# ---------------------------------------------------------------------------
# Directives
# ---------------------------------------------------------------------------


class VolumeMount(BaseModel):
    """Bind mount of a host path into the container."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["volume"] = "volume"
    host_path: str
    container_path: str
    read_only: bool = False

    def render(self) -> str:
        suffix = ":ro" if self.read_only else ""
        return f"--volume={self.host_path}:{self.container_path}{suffix}"


class EnvVar(BaseModel):
    """Environment variable set inside the container."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["env"] = "env"
    key: str
    value: str

    def render(self) -> str:
        return f"--env={self.key}={self.value}"


class DeviceMount(BaseModel):
    """Host device node exposed to the container."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["device"] = "device"
    path: str

    def render(self) -> str:
        return f"--device={self.path}"


class CapabilityChange(BaseModel):
    """Request to add or drop one Linux capability."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["capability"] = "capability"
    name: str
    add: bool = True

    def as_entry(self) -> str:
        """Return the ``name`` / ``!name`` form used by capability lists."""
        return self.name if self.add else f"!{self.name}"


Directive = Annotated[
    Union[VolumeMount, EnvVar, DeviceMount, CapabilityChange],
    Field(discriminator="kind"),
]


class CapabilityDecision(BaseModel):
    """Final, name-sorted capability add and drop lists."""

    model_config = ConfigDict(frozen=True)

    add: tuple[str, ...] = ()
    drop: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Invocation plan
# ---------------------------------------------------------------------------


class InvocationPlan(BaseModel):
    """The one artifact composition produces: an ordered engine argument vector."""

    model_config = ConfigDict(frozen=True)

    program: str
    args: tuple[str, ...]

    @property
    def tokens(self) -> list[str]:
        """Full argument vector including the engine executable."""
        return [self.program, *self.args]


# ---------------------------------------------------------------------------
# Container identity
# ---------------------------------------------------------------------------


class EngineKind(str, enum.Enum):
    """Supported container engines."""

    podman = "podman"
    docker = "docker"


class ContainerStatus(str, enum.Enum):
    """Lifecycle state reported by the engine."""

    created = "created"
    exited = "exited"
    paused = "paused"
    running = "running"
    unknown = "unknown"

    @classmethod
    def parse(cls, value: str) -> ContainerStatus:
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.unknown


class ContainerIdentity(BaseModel):
    """Identity labels of an owned container, as read back from the engine."""

    model_config = ConfigDict(frozen=True)

    name: str
    app_version: str = Field(..., description="Value of the app-marker label")
    host_dir: str | None = None
    container_dir: str | None = None
    default_shell: str | None = None
    created: datetime | None = None
    status: ContainerStatus = ContainerStatus.unknown


__all__ = [
    "CapabilityChange",
    "CapabilityDecision",
    "ConfigDocumentV1",
    "ContainerIdentity",
    "ContainerStatus",
    "DeviceMount",
    "Directive",
    "EngineKind",
    "EnvVar",
    "InvocationPlan",
    "ProfileV1",
    "RESOURCE_FLAGS",
    "ResourceFlags",
    "SandboxConfig",
    "VolumeMount",
    "resolve_flag",
]

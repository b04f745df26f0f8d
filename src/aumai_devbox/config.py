"""Versioned configuration loading and profile resolution for aumai-devbox."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError

from aumai_devbox.context import HostContext
from aumai_devbox.errors import NotFoundError, ParseError, SchemaError
from aumai_devbox.models import ConfigDocumentV1, ProfileV1, SandboxConfig

logger = logging.getLogger(__name__)

# Every supported schema version maps to the document model that parses it.
SCHEMAS: dict[int, type[ConfigDocumentV1]] = {1: ConfigDocumentV1}
LATEST_VERSION = max(SCHEMAS)

PROFILE_SUFFIXES: tuple[str, ...] = (".yaml", ".yml")

_VARIABLE_RE = re.compile(r"\$(?:\{(?P<braced>\w+)\}|(?P<bare>\w+))")


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


def parse_document(
    text: str, source: str = "<string>", default_name: str = "default"
) -> list[SandboxConfig]:
    """Parse one YAML configuration document into canonical profiles.

    Two shapes are accepted::

        # single profile, named after the file
        version: 1
        image: fedora
        wayland: true

        # several named profiles
        version: 1
        profiles:
          rust:
            image: rust:latest

    Args:
        text: Raw YAML content.
        source: Human-readable origin used in error messages.
        default_name: Profile name for the single-profile shape.

    Returns:
        Profiles in document order.

    Raises:
        ParseError: If the YAML is malformed or fails validation.
        SchemaError: If ``version`` is missing or not a supported integer.
    """
    try:
        data: Any = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ParseError(f"{source}: YAML parse error: {exc}") from exc

    if not isinstance(data, dict):
        raise ParseError(
            f"{source}: configuration must be a YAML mapping, got {type(data).__name__}"
        )

    version = data.get("version")
    if version is None:
        raise SchemaError(f"{source}: missing configuration 'version'")
    # bool is an int subclass and "1" is not 1; neither is accepted
    if type(version) is not int or version not in SCHEMAS:
        supported = ", ".join(str(v) for v in sorted(SCHEMAS))
        raise SchemaError(
            f"{source}: unsupported configuration version {version!r} (supported: {supported})"
        )

    if "profiles" not in data:
        fields = {key: value for key, value in data.items() if key != "version"}
        name = fields.pop("name", None) or default_name
        data = {"version": version, "profiles": {str(name): fields}}

    try:
        document = SCHEMAS[version].model_validate(data)
        return document.to_profiles(path=None if source.startswith("<") else source)
    except ValidationError as exc:
        raise ParseError(f"{source}: configuration validation error: {exc}") from exc


def load_file(path: str | Path) -> list[SandboxConfig]:
    """Load every profile from the document at *path*.

    Raises:
        NotFoundError: If the file does not exist or cannot be read.
        ParseError: If the document is malformed.
        SchemaError: If the version is missing or unsupported.
    """
    file_path = Path(path).expanduser()
    if not file_path.is_file():
        raise NotFoundError(f"configuration file not found: {file_path}")

    try:
        raw_text = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise NotFoundError(f"cannot read configuration file {file_path}: {exc}") from exc

    logger.debug("loading configuration file %s", file_path)
    return parse_document(raw_text, source=str(file_path), default_name=file_path.stem)


def load(paths: Iterable[str | Path]) -> dict[str, SandboxConfig]:
    """Load and merge profiles from several documents.

    When two documents define the same profile name the first one loaded
    wins and a warning is logged.
    """
    profiles: dict[str, SandboxConfig] = {}
    for path in paths:
        for profile in load_file(path):
            existing = profiles.get(profile.name)
            if existing is not None:
                logger.warning(
                    "duplicate profile %r in %s ignored, already loaded from %s",
                    profile.name,
                    profile.path,
                    existing.path,
                )
                continue
            profiles[profile.name] = profile
    return profiles


# ---------------------------------------------------------------------------
# ConfigResolver
# ---------------------------------------------------------------------------


class ConfigResolver:
    """Turn a profile reference into a :class:`SandboxConfig`.

    A reference is one of:

    - ``@name``: a profile from the documents in *profiles_dir*;
    - a path (``/``, ``./``, ``../``, ``~`` prefix, or a YAML suffix);
    - anything else: a bare image reference.
    """

    def __init__(self, profiles_dir: Path | None = None) -> None:
        self._profiles_dir = profiles_dir
        self._profiles: dict[str, SandboxConfig] | None = None

    def profiles(self) -> dict[str, SandboxConfig]:
        """Return every named profile, loading the profiles directory once."""
        if self._profiles is None:
            self._profiles = load(self._profile_files())
        return self._profiles

    def resolve_profile(self, reference: str) -> SandboxConfig:
        """Resolve *reference* into a canonical profile.

        Raises:
            NotFoundError: If a named profile or path does not exist.
            ParseError: If the referenced document is malformed.
            SchemaError: If the referenced document has an unsupported version.
        """
        if reference.startswith("@"):
            name = reference[1:]
            profile = self.profiles().get(name)
            if profile is None:
                raise NotFoundError(f"profile {name!r} not found in {self._profiles_dir}")
            return profile

        if is_path_reference(reference):
            profiles = load_file(reference)
            if not profiles:
                raise NotFoundError(f"no profiles defined in {reference}")
            return profiles[0]

        return SandboxConfig(name=reference, image=reference)

    def _profile_files(self) -> list[Path]:
        if self._profiles_dir is None or not self._profiles_dir.is_dir():
            return []
        return sorted(
            path
            for path in self._profiles_dir.iterdir()
            if path.is_file() and path.suffix in PROFILE_SUFFIXES
        )


def is_path_reference(reference: str) -> bool:
    """Return True when *reference* names a configuration file rather than an image."""
    return reference.startswith(("/", "./", "../", "~")) or reference.endswith(PROFILE_SUFFIXES)


# ---------------------------------------------------------------------------
# Variable expansion
# ---------------------------------------------------------------------------


def expand_variables(
    config: SandboxConfig, ctx: HostContext, container_name: str
) -> SandboxConfig:
    """Expand ``$VAR`` and ``${VAR}`` in ``skel``, ``env`` values, ``engine_args``
    and ``persist``/``persist_user`` paths.

    Built-ins ``USER``, ``PWD``/``CWD``, ``HOME`` and ``CONTAINER``/
    ``CONTAINER_NAME`` take precedence over the host environment.  Unknown
    variables are left untouched.

    A leading ``~`` in a persist path becomes the user home, which is the same
    path inside the container.
    """
    builtins = {
        "USER": ctx.user,
        "PWD": str(ctx.cwd),
        "CWD": str(ctx.cwd),
        "HOME": str(ctx.home),
        "CONTAINER": container_name,
        "CONTAINER_NAME": container_name,
    }

    def lookup(match: re.Match[str]) -> str:
        name = match.group("braced") or match.group("bare")
        if name in builtins:
            return builtins[name]
        value = ctx.env.get(name)
        if value is None:
            logger.warning("could not expand %r in profile %r", match.group(0), config.name)
            return match.group(0)
        return value

    def expand(text: str) -> str:
        return _VARIABLE_RE.sub(lookup, text)

    def container_path(text: str) -> str:
        expanded = expand(text)
        if expanded == "~" or expanded.startswith("~/"):
            return f"{ctx.home}{expanded[1:]}"
        return expanded

    return config.model_copy(
        update={
            "skel": expand(config.skel) if config.skel else config.skel,
            "env": [(key, expand(value)) for key, value in config.env],
            "engine_args": [expand(arg) for arg in config.engine_args],
            "persist": [(volume, container_path(path)) for volume, path in config.persist],
            "persist_user": [
                (volume, container_path(path)) for volume, path in config.persist_user
            ],
        }
    )


# ---------------------------------------------------------------------------
# Presentation helpers
# ---------------------------------------------------------------------------


def dump_profile(config: SandboxConfig) -> str:
    """Render *config* back into a version-latest YAML document."""
    fields = config.model_dump(mode="json", exclude={"name", "path"}, exclude_defaults=True)
    fields["image"] = config.image
    document = {"version": LATEST_VERSION, "profiles": {config.name: fields}}
    return yaml.safe_dump(document, sort_keys=False)


def profile_options() -> list[tuple[str, str]]:
    """Return ``(field, description)`` for every option a profile accepts."""
    return [
        (name, _describe(SandboxConfig, name))
        for name in ProfileV1.model_fields
    ]


def _describe(model: type[BaseModel], name: str) -> str:
    field = model.model_fields.get(name)
    return (field.description or "") if field is not None else ""


__all__ = [
    "ConfigResolver",
    "LATEST_VERSION",
    "SCHEMAS",
    "dump_profile",
    "expand_variables",
    "is_path_reference",
    "load",
    "load_file",
    "parse_document",
    "profile_options",
]

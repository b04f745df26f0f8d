"""Container ownership and identity, tracked through engine labels."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any

from aumai_devbox.engine import Engine
from aumai_devbox.errors import ContainerNotFound, UnownedContainer
from aumai_devbox.models import ContainerIdentity, ContainerStatus
from aumai_devbox.settings import APP_NAME

logger = logging.getLogger(__name__)

# The app-marker key alone decides ownership; its value is the app version.
LABEL_APP = APP_NAME
LABEL_HOST_DIR = f"{APP_NAME}.host_dir"
LABEL_CONTAINER_DIR = f"{APP_NAME}.container_dir"
LABEL_DEFAULT_SHELL = f"{APP_NAME}.default_shell"

# Engines report up to nanoseconds with trailing zeros trimmed; datetime wants six digits.
_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_created(value: str | None) -> datetime | None:
    """Parse an engine ``Created`` timestamp, returning ``None`` when unparseable."""
    if not value:
        return None
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value.strip(), count=1)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug("cannot parse container timestamp %r", value)
        return None


def identity_from_labels(
    name: str,
    labels: dict[str, str],
    created: datetime | None = None,
    status: ContainerStatus = ContainerStatus.unknown,
) -> ContainerIdentity:
    return ContainerIdentity(
        name=name,
        app_version=labels.get(LABEL_APP, ""),
        host_dir=labels.get(LABEL_HOST_DIR) or None,
        container_dir=labels.get(LABEL_CONTAINER_DIR) or None,
        default_shell=labels.get(LABEL_DEFAULT_SHELL) or None,
        created=created,
        status=status,
    )


class OwnershipTracker:
    """Answer "is this ours?" and related questions about containers.

    Ownership is the presence of the app-marker label key; containers started
    by anything else are never touched.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def list_owned(self, host_dir: str | None = None) -> list[ContainerIdentity]:
        """Return every owned container, newest first.

        Args:
            host_dir: Only return containers started from this host directory.
        """
        filters = [LABEL_APP]
        if host_dir is not None:
            filters.append(f"{LABEL_HOST_DIR}={host_dir}")

        ids = self._engine.list_containers(filters)
        identities = [self._from_inspect(doc) for doc in self._engine.inspect(ids)]
        identities.sort(key=_created_key, reverse=True)
        return identities

    def exists(self, container: str) -> bool:
        return self._engine.container_exists(container)

    def is_owned(self, container: str) -> bool:
        """Return True if *container* exists and carries the app-marker label."""
        labels = self._engine.labels(container)
        if labels is None:
            return False
        return LABEL_APP in labels

    def require_owned(self, container: str) -> ContainerIdentity:
        """Return the identity of *container*.

        Raises:
            ContainerNotFound: If the container does not exist.
            UnownedContainer: If it exists but was not started by aumai-devbox.
        """
        labels = self._engine.labels(container)
        if labels is None:
            raise ContainerNotFound(container)
        if LABEL_APP not in labels:
            raise UnownedContainer(container)
        return identity_from_labels(container, labels)

    def get_workspace(self, container: str) -> str | None:
        """Return the in-container project directory recorded at start."""
        labels = self._engine.labels(container)
        if labels is None:
            return None
        return labels.get(LABEL_CONTAINER_DIR) or None

    def default_shell(self, container: str) -> str | None:
        labels = self._engine.labels(container)
        if labels is None:
            return None
        return labels.get(LABEL_DEFAULT_SHELL) or None

    def status(self, container: str) -> ContainerStatus:
        """Return the lifecycle state of *container*.

        Raises:
            ContainerNotFound: If the container does not exist.
        """
        output = self._engine.inspect_format(container, "{{.State.Status}}")
        if output is None:
            raise ContainerNotFound(container)
        return ContainerStatus.parse(output)

    def _from_inspect(self, doc: dict[str, Any]) -> ContainerIdentity:
        name = str(doc.get("Name") or doc.get("Id") or "").lstrip("/")
        config = doc.get("Config") or {}
        labels = {str(k): str(v) for k, v in (config.get("Labels") or {}).items()}
        state = doc.get("State") or {}
        return identity_from_labels(
            name,
            labels,
            created=parse_created(doc.get("Created")),
            status=ContainerStatus.parse(str(state.get("Status") or "")),
        )


def _created_key(identity: ContainerIdentity) -> float:
    # containers without a timestamp sort last
    return identity.created.timestamp() if identity.created else float("-inf")


__all__ = [
    "LABEL_APP",
    "LABEL_CONTAINER_DIR",
    "LABEL_DEFAULT_SHELL",
    "LABEL_HOST_DIR",
    "OwnershipTracker",
    "identity_from_labels",
    "parse_created",
]

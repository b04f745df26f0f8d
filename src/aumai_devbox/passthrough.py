"""Resource passthrough negotiation: turn enabled resources into directives."""

from __future__ import annotations

import hashlib
import logging
import subprocess
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from aumai_devbox import probes
from aumai_devbox.context import HostContext
from aumai_devbox.errors import MountConflictError, ResourceUnavailable
from aumai_devbox.models import DeviceMount, Directive, EnvVar, ResourceFlags, VolumeMount

logger = logging.getLogger(__name__)

TERMINFO_MOUNT_PREFIX = "/host/terminfo-"


@dataclass(frozen=True)
class Negotiation:
    """Outcome of negotiating every requested resource for one start."""

    directives: tuple[Directive, ...]
    user_mounts: tuple[VolumeMount, ...]


class PassthroughNegotiator:
    """Invoke the matching probe for each enabled resource and emit directives.

    Requested resources fail closed: if a probe cannot satisfy an explicit
    request, :class:`~aumai_devbox.errors.ResourceUnavailable` propagates and
    nothing is started.  Fonts and terminfo are best-effort and never fail.

    Example::

        negotiator = PassthroughNegotiator(HostContext.from_process())
        result = negotiator.negotiate(ResourceFlags(wayland=True))
    """

    def __init__(
        self,
        ctx: HostContext,
        *,
        dev_dir: Path = probes.DEV_DRI_DIR,
        system_fonts_dir: Path = probes.SYSTEM_FONTS_DIR,
        standard_terminfo_dirs: Sequence[str] = probes.STANDARD_TERMINFO_DIRS,
        command_runner: probes.CommandRunner = subprocess.run,
    ) -> None:
        self._ctx = ctx
        self._dev_dir = dev_dir
        self._system_fonts_dir = system_fonts_dir
        self._standard_terminfo_dirs = tuple(standard_terminfo_dirs)
        self._run = command_runner

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def negotiate(
        self,
        flags: ResourceFlags,
        gpus: Iterable[int] = (),
        mounts: Iterable[str | Path] = (),
    ) -> Negotiation:
        """Negotiate every resource enabled in *flags*, plus GPUs and mounts.

        Raises:
            ResourceUnavailable: If any requested resource is unavailable.
            MountConflictError: If two mounts share a final path segment.
        """
        directives: list[Directive] = []
        if flags.wayland:
            directives.extend(self.wayland())
        if flags.pipewire:
            directives.extend(self.pipewire())
        if flags.pulseaudio:
            directives.extend(self.pulseaudio())
        if flags.ssh_agent:
            directives.extend(self.ssh_agent())
        if flags.session_bus:
            directives.extend(self.session_bus())
        gpu_indices = set(gpus)
        if gpu_indices:
            directives.extend(self.gpus(gpu_indices))
        directives.extend(self.terminfo())

        return Negotiation(
            directives=tuple(directives),
            user_mounts=tuple(self.additional_mounts(mounts)),
        )

    # ------------------------------------------------------------------
    # Per-resource negotiation
    # ------------------------------------------------------------------

    def wayland(self) -> list[Directive]:
        display, socket_path = probes.find_wayland_socket(self._ctx)
        if Path(display).is_absolute():
            # clients connect to an absolute display directly
            target = display
        else:
            # relative names resolve against the container XDG_RUNTIME_DIR, /run/user/<uid>
            target = f"{self._ctx.container_runtime_dir}/{display}"
        directives: list[Directive] = [
            VolumeMount(host_path=str(socket_path), container_path=target),
            EnvVar(key="WAYLAND_DISPLAY", value=display),
        ]
        for host_dir, container_dir in probes.find_font_dirs(self._ctx, self._system_fonts_dir):
            directives.append(
                VolumeMount(host_path=str(host_dir), container_path=container_dir, read_only=True)
            )
        return directives

    def pipewire(self) -> list[Directive]:
        socket_path = probes.find_pipewire_socket(self._ctx)
        target = f"{self._ctx.container_runtime_dir}/pipewire-0"
        return [
            VolumeMount(host_path=str(socket_path), container_path=target),
            EnvVar(key="PIPEWIRE_REMOTE", value=target),
        ]

    def pulseaudio(self) -> list[Directive]:
        socket_path = probes.find_pulseaudio_socket(self._ctx)
        target = f"{self._ctx.container_runtime_dir}/pulse/native"
        return [
            VolumeMount(host_path=str(socket_path), container_path=target),
            EnvVar(key="PULSE_SERVER", value=f"unix:{target}"),
        ]

    def ssh_agent(self) -> list[Directive]:
        socket_path = probes.find_ssh_agent_socket(self._ctx)
        target = f"{self._ctx.container_runtime_dir}/ssh-auth"
        return [
            VolumeMount(host_path=str(socket_path), container_path=target),
            EnvVar(key="SSH_AUTH_SOCK", value=target),
        ]

    def session_bus(self) -> list[Directive]:
        socket_path = probes.find_session_bus_socket(self._ctx)
        target = f"{self._ctx.container_runtime_dir}/bus"
        return [
            VolumeMount(host_path=str(socket_path), container_path=target),
            EnvVar(key="DBUS_SESSION_BUS_ADDRESS", value=f"unix:path={target}"),
        ]

    def gpus(self, indices: Iterable[int]) -> list[Directive]:
        return [
            DeviceMount(path=str(device))
            for device in probes.find_gpu_devices(indices, self._dev_dir)
        ]

    def terminfo(self) -> list[Directive]:
        """Mount host terminfo directories read-only and point ``TERMINFO_DIRS`` at them.

        When nothing is found the variable still lists the standard
        in-container paths so the image's own database keeps working.
        """
        found = probes.find_terminfo_dirs(
            self._ctx, runner=self._run, standard_dirs=self._standard_terminfo_dirs
        )
        if not found:
            logger.warning("no terminfo directories found on host, using container defaults")

        directives: list[Directive] = []
        mounted: list[str] = []
        for host_dir in found:
            target = terminfo_mount_path(host_dir)
            directives.append(
                VolumeMount(host_path=str(host_dir), container_path=target, read_only=True)
            )
            mounted.append(target)

        search_path = ":".join([*mounted, *probes.STANDARD_TERMINFO_DIRS])
        directives.append(EnvVar(key="TERMINFO_DIRS", value=search_path))
        return directives

    def additional_mounts(self, mounts: Iterable[str | Path]) -> list[VolumeMount]:
        """Mount extra host directories next to the project in the workspace.

        Raises:
            ResourceUnavailable: If a mount does not exist or is not a directory.
            MountConflictError: If two mounts (or a mount and the project
                directory) share a final path segment.
        """
        taken = {self._ctx.cwd.name: str(self._ctx.cwd)}
        result: list[VolumeMount] = []
        for mount in mounts:
            path = Path(mount).expanduser()
            if not path.exists():
                raise ResourceUnavailable(f"mountpoint {str(path)!r} does not exist")
            if not path.is_dir():
                raise ResourceUnavailable(f"mountpoint {str(path)!r} is not a directory")

            path = path.resolve()
            previous = taken.get(path.name)
            if previous is not None:
                raise MountConflictError(
                    f"mountpoint {str(path)!r} conflicts with {previous!r}: "
                    f"both would be mounted at {self._ctx.workspace_dir}/{path.name}"
                )
            taken[path.name] = str(path)

            logger.debug("mounting additional directory %s", path)
            result.append(
                VolumeMount(
                    host_path=str(path),
                    container_path=f"{self._ctx.workspace_dir}/{path.name}",
                )
            )
        return result


def terminfo_mount_path(host_dir: Path) -> str:
    """Return a short, unique in-container path for a host terminfo directory."""
    digest = hashlib.sha1(str(host_dir).encode("utf-8")).hexdigest()[:8]
    return f"{TERMINFO_MOUNT_PREFIX}{digest}"


__all__ = ["Negotiation", "PassthroughNegotiator", "TERMINFO_MOUNT_PREFIX", "terminfo_mount_path"]

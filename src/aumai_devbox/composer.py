"""Invocation composition: one ordered engine argument vector per start.

Execution and dry-run share :meth:`InvocationComposer.compose`; the dry-run
projection is a pure rendering of the same :class:`InvocationPlan`.
"""

from __future__ import annotations

import base64
import logging
import shlex
from collections.abc import Iterable

from aumai_devbox.capabilities import render_capabilities, resolve_capabilities
from aumai_devbox.context import HostContext
from aumai_devbox.engine import Engine
from aumai_devbox.errors import EngineError, ParseError
from aumai_devbox.models import (
    CapabilityChange,
    DeviceMount,
    EnvVar,
    InvocationPlan,
    ResourceFlags,
    SandboxConfig,
    VolumeMount,
)
from aumai_devbox.ownership import (
    LABEL_APP,
    LABEL_CONTAINER_DIR,
    LABEL_DEFAULT_SHELL,
    LABEL_HOST_DIR,
)
from aumai_devbox.passthrough import Negotiation
from aumai_devbox.settings import APP_VERSION, DevboxSettings

logger = logging.getLogger(__name__)

ENTRYPOINT = "/bin/sh"
SKEL_DIR = "/etc/skel"
DRY_RUN_INDENT = "    "


class InvocationComposer:
    """Assemble profile, negotiated directives and capabilities into a plan.

    Example::

        composer = InvocationComposer(engine, ctx, settings)
        plan = composer.compose(config, "brave-devbox", flags, negotiation)
        print(render_dry_run(plan))
    """

    def __init__(self, engine: Engine, ctx: HostContext, settings: DevboxSettings) -> None:
        self._engine = engine
        self._ctx = ctx
        self._settings = settings

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def compose(
        self,
        config: SandboxConfig,
        container_name: str,
        flags: ResourceFlags,
        negotiation: Negotiation,
        cli_capabilities: Iterable[str] = (),
    ) -> InvocationPlan:
        """Build the ``run`` invocation for *config*.

        Capability tiers are applied as defaults, negotiated changes,
        profile, then *cli_capabilities*; later tiers win per name.

        Raises:
            ParseError: If a capability entry is blank.
        """
        args: list[str] = []
        self._add_baseline(args, container_name)
        self._add_labels(args, config)
        self._add_env(args, config, container_name, negotiation)
        self._add_mounts(args, config, negotiation)
        self._add_capabilities(args, config, negotiation, cli_capabilities)
        self._add_network(args, flags)
        self._add_ports(args, config)
        args.extend(config.engine_args)
        self._add_entrypoint_and_cmd(args, config)

        plan = InvocationPlan(program=self._engine.path, args=tuple(args))
        logger.debug(
            "composed invocation for %s",
            container_name,
            extra={"data": {"container": container_name, "image": config.image}},
        )
        return plan

    def _add_baseline(self, args: list[str], container_name: str) -> None:
        args.extend(
            [
                "run",
                "--detach",
                "--rm",
                "--init",
                "--user=root",
                "--security-opt=label=disable",
                "--security-opt=no-new-privileges",
                "--detach-keys=",
                f"--name={container_name}",
                f"--hostname={container_name}",
            ]
        )
        if self._engine.is_podman:
            args.extend(["--userns=keep-id", "--group-add=keep-groups", "--tz=local"])

    def _add_labels(self, args: list[str], config: SandboxConfig) -> None:
        args.extend(
            [
                f"--label={LABEL_APP}={APP_VERSION}",
                f"--label={LABEL_HOST_DIR}={self._ctx.cwd}",
                f"--label={LABEL_CONTAINER_DIR}={self._ctx.project_dir}",
                f"--label={LABEL_DEFAULT_SHELL}={config.shell or ''}",
            ]
        )

    def _add_env(
        self,
        args: list[str],
        config: SandboxConfig,
        container_name: str,
        negotiation: Negotiation,
    ) -> None:
        ctx = self._ctx
        identity = [
            ("AUMAI_DEVBOX", "1"),
            ("AUMAI_DEVBOX_VERSION", APP_VERSION),
            ("CONTAINER_ENGINE", self._engine.kind.value),
            ("CONTAINER_NAME", container_name),
            ("HOST_USER", ctx.user),
            ("HOST_USER_UID", str(ctx.uid)),
            ("HOST_USER_GID", str(ctx.gid)),
            ("XDG_RUNTIME_DIR", ctx.container_runtime_dir),
        ]
        args.extend(EnvVar(key=key, value=value).render() for key, value in identity)
        args.extend(
            directive.render()
            for directive in negotiation.directives
            if isinstance(directive, EnvVar)
        )
        args.extend(EnvVar(key=key, value=value).render() for key, value in config.env)

    def _add_mounts(
        self, args: list[str], config: SandboxConfig, negotiation: Negotiation
    ) -> None:
        if self._settings.data_volume_enabled:
            args.append(
                volume_mount(self._settings.data_volume, self._settings.data_volume_path)
            )

        args.extend(
            directive.render()
            for directive in negotiation.directives
            if isinstance(directive, (VolumeMount, DeviceMount))
        )

        # user mounts: project, additional mounts, persistent volumes, skel
        project = VolumeMount(host_path=str(self._ctx.cwd), container_path=self._ctx.project_dir)
        args.append(project.render())
        args.extend(mount.render() for mount in negotiation.user_mounts)
        for volume, path in [*config.persist, *config.persist_user]:
            args.append(volume_mount(volume, path))
        if config.skel:
            skel = VolumeMount(host_path=config.skel, container_path=SKEL_DIR, read_only=True)
            args.append(skel.render())

    def _add_capabilities(
        self,
        args: list[str],
        config: SandboxConfig,
        negotiation: Negotiation,
        cli_capabilities: Iterable[str],
    ) -> None:
        negotiated = [
            directive.as_entry()
            for directive in negotiation.directives
            if isinstance(directive, CapabilityChange)
        ]
        try:
            decision = resolve_capabilities(
                self._settings.default_capabilities,
                negotiated,
                config.capabilities,
                cli_capabilities,
            )
        except ValueError as exc:
            raise ParseError(str(exc)) from exc
        args.extend(render_capabilities(decision))

    def _add_network(self, args: list[str], flags: ResourceFlags) -> None:
        if not flags.network:
            args.append("--network=none")

    def _add_ports(self, args: list[str], config: SandboxConfig) -> None:
        for container_port, host_port in config.ports:
            args.append(f"--publish={host_port}:{container_port}/tcp")
            args.append(f"--publish={host_port}:{container_port}/udp")

    def _add_entrypoint_and_cmd(self, args: list[str], config: SandboxConfig) -> None:
        encoded = base64.b64encode(self.init_script(config).encode("utf-8")).decode("ascii")
        args.extend(
            [
                f"--entrypoint={ENTRYPOINT}",
                config.image,
                "-c",
                f"printf '%s' {encoded} | base64 -d | {ENTRYPOINT}",
            ]
        )

    def init_script(self, config: SandboxConfig) -> str:
        """Return the shell script run as the container's main process.

        Runs the pre hook, hands ``persist_user`` paths to the host user,
        runs the post hook, then keeps the container alive.
        """
        lines = ["set -e"]
        if config.on_init_pre:
            lines.append(config.on_init_pre)
        owner = f"{self._ctx.uid}:{self._ctx.gid}"
        for _, path in config.persist_user:
            lines.append(f"chown {owner} {shlex.quote(path)}")
        if config.on_init_post:
            lines.append(config.on_init_post)
        lines.append("while :; do sleep 3600; done")
        return "\n".join(lines) + "\n"

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def ensure_data_volume(self) -> None:
        """Create the shared data volume unless it exists or is disabled.

        Raises:
            EngineError: If the volume is missing and cannot be created.
        """
        if not self._settings.data_volume_enabled:
            return
        name = self._settings.data_volume
        if self._engine.volume_exists(name):
            return
        logger.info("creating data volume %s", name)
        try:
            self._engine.volume_create(name)
        except EngineError as exc:
            raise EngineError(
                f"cannot create data volume {name!r}: {exc}",
                exit_code=exc.exit_code,
                stderr=exc.stderr,
            ) from exc

    def execute(self, plan: InvocationPlan) -> str:
        """Ensure prerequisites, then hand *plan* to the engine.

        Returns:
            The container ID printed by the engine.
        """
        self.ensure_data_volume()
        result = self._engine.run(plan.args)
        return (result.stdout or "").strip()


def volume_mount(volume: str, destination: str) -> str:
    """Render a named-volume mount flag."""
    return f"--mount=type=volume,source={volume},destination={destination}"


def render_dry_run(plan: InvocationPlan) -> str:
    """Render *plan* as a shell-copyable command, one token per line."""
    quoted = [shlex.quote(token) for token in plan.tokens]
    return f" \\\n{DRY_RUN_INDENT}".join(quoted)


__all__ = [
    "ENTRYPOINT",
    "InvocationComposer",
    "render_dry_run",
    "volume_mount",
]

"""High-level operations: start, exec, shell, logs, profile extraction and kill."""

from __future__ import annotations

import logging
import os
import random
import sys
import tempfile
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

from aumai_devbox.composer import InvocationComposer
from aumai_devbox.config import ConfigResolver, expand_variables
from aumai_devbox.context import HostContext
from aumai_devbox.engine import Engine
from aumai_devbox.errors import DevboxError, EngineError, ImageNotFound, NotFoundError
from aumai_devbox.models import (
    ContainerIdentity,
    ContainerStatus,
    InvocationPlan,
    ResourceFlags,
    SandboxConfig,
)
from aumai_devbox.ownership import OwnershipTracker
from aumai_devbox.passthrough import PassthroughNegotiator
from aumai_devbox.settings import ENV_PREFIX, DevboxSettings

logger = logging.getLogger(__name__)

# Set for the re-executed process so host_pre_init runs only once.
EXE_ENV = f"{ENV_PREFIX}EXE"
CONTAINER_ENV = f"{ENV_PREFIX}CONTAINER"
ENGINE_ENV = f"{ENV_PREFIX}ENGINE"
LOG_LEVEL_ENV = f"{ENV_PREFIX}LOG_LEVEL"

PRE_INIT_HEADER = "#!/bin/sh\ntrap 'rm -f \"$0\"' EXIT\n"

DEFAULT_SHELL = "/bin/bash"

# Where an image may ship its own profile.
EMBEDDED_PROFILE_PATH = "/aumai-devbox.yaml"

ADJECTIVES: tuple[str, ...] = (
    "amber", "brave", "calm", "clever", "cozy", "eager", "fancy", "gentle",
    "happy", "jolly", "keen", "lively", "lucky", "mellow", "nimble", "proud",
    "quiet", "rapid", "shiny", "silent", "steady", "sunny", "swift", "tidy",
    "vivid", "witty", "zesty",
)


@dataclass(frozen=True)
class StartRequest:
    """Everything ``start`` needs beyond the host context.

    ``overrides`` holds tri-state resource flags from the command line;
    ``None`` (or a missing key) defers to the profile.
    """

    reference: str
    name: str | None = None
    skel: str | None = None
    shell: str | None = None
    overrides: Mapping[str, bool | None] = field(default_factory=dict)
    capabilities: tuple[str, ...] = ()
    env: tuple[tuple[str, str], ...] = ()
    mounts: tuple[str, ...] = ()
    gpus: tuple[int, ...] = ()
    ports: tuple[tuple[int, int], ...] = ()
    engine_args: tuple[str, ...] = ()
    dry_run: bool = False


@dataclass(frozen=True)
class StartResult:
    container_name: str
    plan: InvocationPlan
    container_id: str | None = None
    host_pre_init: str | None = None


@dataclass(frozen=True)
class SessionResult:
    """An interactive command and, unless dry-run, its exit code."""

    plan: InvocationPlan
    returncode: int | None = None


@dataclass(frozen=True)
class ExtractResult:
    plan: InvocationPlan
    content: str | None = None


class Launcher:
    """Orchestrate the components for each user-facing operation.

    Configuration and negotiation errors are raised before anything on the
    engine is changed.
    """

    def __init__(
        self,
        engine: Engine,
        ctx: HostContext,
        settings: DevboxSettings,
        *,
        resolver: ConfigResolver | None = None,
        negotiator: PassthroughNegotiator | None = None,
        execve: Callable[[str, Sequence[str], Mapping[str, str]], object] = os.execve,
        argv: Sequence[str] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._engine = engine
        self._ctx = ctx
        self._settings = settings
        self._resolver = resolver or ConfigResolver(settings.profiles_dir)
        self._negotiator = negotiator or PassthroughNegotiator(ctx)
        self._composer = InvocationComposer(engine, ctx, settings)
        self._tracker = OwnershipTracker(engine)
        self._execve = execve
        self._argv = list(argv if argv is not None else sys.argv)
        self._rng = rng or random.Random()

    @property
    def tracker(self) -> OwnershipTracker:
        return self._tracker

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    def start(self, request: StartRequest) -> StartResult:
        """Start a new container in the current directory.

        Raises:
            DevboxError: If a container already runs here or the name is taken.
            NotFoundError: If the profile reference cannot be resolved.
            ResourceUnavailable: If a requested passthrough is unavailable.
            MountConflictError: If two workspace mounts collide.
            EngineError: If the engine rejects the invocation.
        """
        config = self._apply_request(self._resolver.resolve_profile(request.reference), request)

        pre_init: str | None = None
        if config.host_pre_init and self._ctx.getenv(EXE_ENV) is None:
            if request.dry_run:
                pre_init = config.host_pre_init
            else:
                self._exec_host_pre_init(config.host_pre_init)

        name = self.container_name(request.name)
        logger.debug("container name set to %s", name)

        if not request.dry_run:
            self._check_can_start(name)

        config = expand_variables(config, self._ctx, name)
        flags = ResourceFlags.resolve(config, request.overrides)
        negotiation = self._negotiator.negotiate(flags, config.gpus, request.mounts)
        plan = self._composer.compose(config, name, flags, negotiation, request.capabilities)

        if request.dry_run:
            return StartResult(container_name=name, plan=plan, host_pre_init=pre_init)

        container_id = self._composer.execute(plan)
        logger.info("started container %s from %s", name, config.image)
        return StartResult(container_name=name, plan=plan, container_id=container_id)

    def container_name(self, explicit: str | None = None) -> str:
        """Return *explicit*, the environment override, or a random name."""
        if explicit:
            return explicit
        from_env = self._ctx.getenv(CONTAINER_ENV)
        if from_env:
            return from_env
        return f"{self._rng.choice(ADJECTIVES)}-{self._settings.container_suffix}"

    def _apply_request(self, config: SandboxConfig, request: StartRequest) -> SandboxConfig:
        return config.model_copy(
            update={
                "skel": request.skel or config.skel,
                "shell": request.shell or config.shell or DEFAULT_SHELL,
                "env": [*config.env, *request.env],
                "gpus": [*config.gpus, *request.gpus],
                "ports": [*config.ports, *request.ports],
                "engine_args": [*config.engine_args, *request.engine_args],
            }
        )

    def _check_can_start(self, name: str) -> None:
        running = [
            identity.name
            for identity in self._tracker.list_owned(host_dir=str(self._ctx.cwd))
            if identity.status is ContainerStatus.running
        ]
        if running:
            raise DevboxError(
                f"there are containers running in the current directory: {' '.join(running)}"
            )
        if self._engine.container_exists(name):
            raise DevboxError(f"container with name {name!r} already exists")

    def _exec_host_pre_init(self, script: str) -> None:
        """Replace this process with ``/bin/sh <script> <start args...>``.

        The script receives the original arguments after ``start`` and
        finds this executable in ``$AUMAI_DEVBOX_EXE``.  Global options
        given before ``start`` reach the re-run through their
        ``AUMAI_DEVBOX_*`` variables.  The script deletes itself on exit.
        """
        fd, path = tempfile.mkstemp(prefix="aumai-devbox-pre-init-", suffix=".sh")
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(PRE_INIT_HEADER)
            handle.write(script)
            handle.write("\n")

        env = dict(self._ctx.env)
        env[EXE_ENV] = self._argv[0] if self._argv else "aumai-devbox"
        env[ENGINE_ENV] = self._engine.kind.value
        env[LOG_LEVEL_ENV] = self._settings.log_level
        args = ["/bin/sh", path, *self._start_args()]
        logger.info("running host pre-init script %s", path)
        self._execve("/bin/sh", args, env)

    def _start_args(self) -> list[str]:
        # no global option takes "start" as its value, so the first one is the command
        try:
            index = self._argv.index("start", 1)
        except ValueError:
            return []
        return self._argv[index + 1 :]

    # ------------------------------------------------------------------
    # exec / shell
    # ------------------------------------------------------------------

    def exec_command(
        self,
        container: str | None,
        command: Sequence[str],
        *,
        shell: str | None = None,
        login: bool = False,
        dry_run: bool = False,
    ) -> SessionResult:
        """Run *command* as the host user in the container workspace.

        With *shell*, the command is joined into one string and run through
        ``<shell> [-l] -c``; otherwise it is executed verbatim.
        """
        identity = self._target(container)
        args = self._exec_prefix(identity)
        if shell:
            args.append(f"--env=SHELL={shell}")
            args.extend([identity.name, shell])
            if login:
                args.append("-l")
            args.extend(["-c", " ".join(command)])
        else:
            args.append(identity.name)
            args.extend(command)
        return self._interactive(args, dry_run)

    def open_shell(
        self, container: str | None, *, shell: str | None = None, dry_run: bool = False
    ) -> SessionResult:
        """Open a login shell in the container workspace."""
        identity = self._target(container)
        user_shell = shell or identity.default_shell
        if not user_shell:
            raise DevboxError(f"container {identity.name!r} has no default shell recorded")

        args = self._exec_prefix(identity)
        args.extend(
            [
                f"--env=HOME={self._ctx.home}",
                f"--env=SHELL={user_shell}",
                identity.name,
                # sh -l sources ~/.profile even when the user shell is not POSIX
                "sh",
                "-l",
                "-c",
                f"exec {user_shell}",
            ]
        )
        return self._interactive(args, dry_run)

    def _target(self, container: str | None) -> ContainerIdentity:
        if container:
            return self._tracker.require_owned(container)

        for identity in self._tracker.list_owned(host_dir=str(self._ctx.cwd)):
            if identity.status is ContainerStatus.running:
                return self._tracker.require_owned(identity.name)
        raise NotFoundError("could not find a running container in the current directory")

    def _exec_prefix(self, identity: ContainerIdentity) -> list[str]:
        args = ["exec", "-it"]
        if identity.container_dir:
            args.append(f"--workdir={identity.container_dir}")
        args.extend(
            [
                f"--user={self._ctx.user}",
                f"--env=TERM={self._ctx.getenv('TERM', 'xterm')}",
            ]
        )
        return args

    def _interactive(self, args: list[str], dry_run: bool) -> SessionResult:
        plan = InvocationPlan(program=self._engine.path, args=tuple(args))
        if dry_run:
            return SessionResult(plan=plan)
        result = self._engine.run(plan.args, check=False, capture=False)
        return SessionResult(plan=plan, returncode=result.returncode)

    # ------------------------------------------------------------------
    # logs
    # ------------------------------------------------------------------

    def logs(
        self, container: str | None, *, follow: bool = False, dry_run: bool = False
    ) -> SessionResult:
        """Show the engine logs of *container*, by default the one running here."""
        identity = self._target(container)
        args = ["container", "logs"]
        if follow:
            args.append("--follow")
        args.append(identity.name)
        return self._interactive(args, dry_run)

    # ------------------------------------------------------------------
    # embedded profiles
    # ------------------------------------------------------------------

    def extract_profile(self, image: str, *, dry_run: bool = False) -> ExtractResult:
        """Read the profile an image ships at :data:`EMBEDDED_PROFILE_PATH`.

        The image is not checked in dry-run mode.

        Raises:
            ImageNotFound: If the image is not available locally.
            DevboxError: If the profile cannot be read from the image.
        """
        args = ("run", "--rm", "--entrypoint", "cat", image, EMBEDDED_PROFILE_PATH)
        plan = InvocationPlan(program=self._engine.path, args=args)
        if dry_run:
            return ExtractResult(plan=plan)

        if not self._engine.image_exists(image):
            raise ImageNotFound(image)
        try:
            result = self._engine.run(plan.args)
        except EngineError as exc:
            raise DevboxError(f"failed to extract profile from image {image!r}: {exc}") from exc
        return ExtractResult(plan=plan, content=result.stdout or "")

    # ------------------------------------------------------------------
    # kill
    # ------------------------------------------------------------------

    def kill(self, container: str, timeout: int = 10, *, dry_run: bool = False) -> InvocationPlan:
        """Stop an owned container, waiting *timeout* seconds before killing it.

        Raises:
            ContainerNotFound: If the container does not exist.
            UnownedContainer: If it was not started by aumai-devbox.
            EngineError: If the engine fails to stop it.
        """
        self._tracker.require_owned(container)
        args = ("container", "stop", "--time", str(timeout), container)
        plan = InvocationPlan(program=self._engine.path, args=args)
        if not dry_run:
            self._engine.stop(container, timeout)
            logger.info("stopped container %s", container)
        return plan


__all__ = [
    "ADJECTIVES",
    "CONTAINER_ENV",
    "DEFAULT_SHELL",
    "EMBEDDED_PROFILE_PATH",
    "ENGINE_ENV",
    "EXE_ENV",
    "ExtractResult",
    "LOG_LEVEL_ENV",
    "PRE_INIT_HEADER",
    "Launcher",
    "SessionResult",
    "StartRequest",
    "StartResult",
]

"""CLI entry point for aumai-devbox."""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from typing import Any, Callable, NoReturn

import click

from aumai_devbox.composer import render_dry_run
from aumai_devbox.config import ConfigResolver, dump_profile, profile_options
from aumai_devbox.context import HostContext
from aumai_devbox.engine import Engine
from aumai_devbox.errors import DevboxError, EngineError, ImageNotFound
from aumai_devbox.launcher import Launcher, StartRequest
from aumai_devbox.logs import configure_logging
from aumai_devbox.models import RESOURCE_FLAGS, ContainerStatus
from aumai_devbox.ownership import OwnershipTracker
from aumai_devbox.settings import DevboxSettings


@dataclass
class AppState:
    """Objects shared by every sub-command; tests pass one in as ``obj``."""

    settings: DevboxSettings
    host: HostContext
    engine: Engine | None = None
    dry_run: bool = False

    def require_engine(self) -> Engine:
        if self.engine is None:
            self.engine = Engine.find_available(self.settings.engine)
        return self.engine

    def launcher(self) -> Launcher:
        return Launcher(self.require_engine(), self.host, self.settings)

    def tracker(self) -> OwnershipTracker:
        return OwnershipTracker(self.require_engine())


@click.group()
@click.version_option(package_name="aumai-devbox")
@click.option(
    "--engine",
    "engine_choice",
    type=click.Choice(["auto", "podman", "docker"]),
    default=None,
    help="Container engine to use (default: $AUMAI_DEVBOX_ENGINE or auto).",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Print the engine commands instead of running them.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging verbosity (default: $AUMAI_DEVBOX_LOG_LEVEL or WARNING).",
)
@click.pass_context
def main(
    ctx: click.Context, engine_choice: str | None, dry_run: bool, log_level: str | None
) -> None:
    """AumAI Devbox: isolated development containers with explicit host passthrough.

    Start a container in the current directory, then enter it with 'shell' or
    'exec'.  Use 'aumai-devbox <command> --help' for details.
    """
    if not isinstance(ctx.obj, AppState):
        settings = DevboxSettings()
        if engine_choice is not None:
            settings = settings.model_copy(update={"engine": engine_choice})
        ctx.obj = AppState(settings=settings, host=HostContext.from_process())

    state: AppState = ctx.obj
    state.dry_run = state.dry_run or dry_run
    if log_level is not None:
        state.settings = state.settings.model_copy(update={"log_level": log_level.upper()})
    configure_logging(state.settings.log_level)


def _fail(exc: DevboxError, exit_code: int | None = None) -> NoReturn:
    """Print *exc* in red on stderr and exit with *exit_code* or the matching code."""
    click.echo(click.style(f"error: {exc}", fg="red"), err=True)
    if exit_code is None:
        exit_code = exc.exit_code if isinstance(exc, EngineError) else 1
    sys.exit(exit_code)


def _parse_env(entries: tuple[str, ...]) -> tuple[tuple[str, str], ...]:
    pairs = []
    for entry in entries:
        key, sep, value = entry.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {entry!r}", param_hint="--env")
        pairs.append((key, value))
    return tuple(pairs)


def _parse_ports(entries: tuple[str, ...]) -> tuple[tuple[int, int], ...]:
    pairs = []
    for entry in entries:
        container, _, host = entry.partition(":")
        try:
            pairs.append((int(container), int(host or container)))
        except ValueError:
            raise click.BadParameter(
                f"expected CONTAINER[:HOST], got {entry!r}", param_hint="--port"
            ) from None
    return tuple(pairs)


# ---------------------------------------------------------------------------
# start
# ---------------------------------------------------------------------------


def _flag_options(func: Callable[..., Any]) -> Callable[..., Any]:
    for flag in reversed(RESOURCE_FLAGS):
        option = flag.replace("_", "-")
        func = click.option(
            f"--{option}/--no-{option}",
            flag,
            default=None,
            help=f"Enable or disable {option} passthrough (default: from profile).",
        )(func)
    return func


@main.command("start")
@click.option("--name", default=None, help="Container name (default: random).")
@click.option("--skel", default=None, help="Directory mounted as /etc/skel.")
@click.option("--shell", default=None, help="Default user shell (default: /bin/bash).")
@_flag_options
@click.option(
    "--cap",
    "capabilities",
    multiple=True,
    help="Add a capability, or drop it with a '!' prefix. Repeatable.",
)
@click.option("--env", "-e", "env", multiple=True, help="KEY=VALUE to set. Repeatable.")
@click.option(
    "--mount",
    "mounts",
    multiple=True,
    type=click.Path(file_okay=False),
    help="Extra host directory mounted next to the project. Repeatable.",
)
@click.option(
    "--gpu", "gpus", multiple=True, type=click.IntRange(min=0), help="GPU index (0 = all)."
)
@click.option("--port", "ports", multiple=True, help="CONTAINER[:HOST] port to publish.")
@click.argument("reference")
@click.argument("engine_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_obj
def start_command(
    state: AppState,
    name: str | None,
    skel: str | None,
    shell: str | None,
    capabilities: tuple[str, ...],
    env: tuple[str, ...],
    mounts: tuple[str, ...],
    gpus: tuple[int, ...],
    ports: tuple[str, ...],
    reference: str,
    engine_args: tuple[str, ...],
    **flags: bool | None,
) -> None:
    """Start a container in the current directory.

    REFERENCE is an image, a profile file path, or @name of a saved profile.
    Arguments after '--' are passed to the engine verbatim.

    \b
    Example:
        aumai-devbox start --wayland --ssh-agent @rust -- --memory=4g
    """
    request = StartRequest(
        reference=reference,
        name=name,
        skel=skel,
        shell=shell,
        overrides=flags,
        capabilities=capabilities,
        env=_parse_env(env),
        mounts=mounts,
        gpus=gpus,
        ports=_parse_ports(ports),
        engine_args=engine_args,
        dry_run=state.dry_run,
    )
    try:
        result = state.launcher().start(request)
    except DevboxError as exc:
        _fail(exc)

    if state.dry_run:
        if result.host_pre_init:
            click.echo(click.style("# host pre-init script:", fg="cyan"))
            click.echo(result.host_pre_init)
        click.echo(render_dry_run(result.plan))
        return
    click.echo(result.container_name)


# ---------------------------------------------------------------------------
# exec / shell
# ---------------------------------------------------------------------------


@main.command("exec", context_settings={"ignore_unknown_options": True})
@click.option("--name", default=None, help="Container (default: the one running here).")
@click.option("--shell", default=None, help="Run the command through this shell with -c.")
@click.option("--login", is_flag=True, default=False, help="Pass -l to --shell.")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_obj
def exec_command(
    state: AppState, name: str | None, shell: str | None, login: bool, command: tuple[str, ...]
) -> None:
    """Execute a command inside a running container."""
    try:
        result = state.launcher().exec_command(
            name, command, shell=shell, login=login, dry_run=state.dry_run
        )
    except DevboxError as exc:
        _fail(exc)

    if result.returncode is None:
        click.echo(render_dry_run(result.plan))
        return
    sys.exit(result.returncode)


@main.command("shell")
@click.option("--shell", default=None, help="Use this shell instead of the container default.")
@click.argument("name", required=False)
@click.pass_obj
def shell_command(state: AppState, shell: str | None, name: str | None) -> None:
    """Open an interactive shell inside a running container."""
    try:
        result = state.launcher().open_shell(name, shell=shell, dry_run=state.dry_run)
    except DevboxError as exc:
        _fail(exc)

    if result.returncode is None:
        click.echo(render_dry_run(result.plan))
        return
    sys.exit(result.returncode)


# ---------------------------------------------------------------------------
# exists / status / list
# ---------------------------------------------------------------------------


@main.command("exists")
@click.argument("container")
@click.pass_obj
def exists_command(state: AppState, container: str) -> None:
    """Check whether an owned container exists.

    Exits with code 0 when it exists and is owned, 1 when it does not exist,
    and 2 when it exists but was not started by aumai-devbox.
    """
    try:
        tracker = state.tracker()
        if not tracker.exists(container):
            sys.exit(1)
        if not tracker.is_owned(container):
            sys.exit(2)
    except DevboxError as exc:
        _fail(exc)


@main.command("status")
@click.argument("container")
@click.pass_obj
def status_command(state: AppState, container: str) -> None:
    """Print the lifecycle state of a container."""
    try:
        container_status = state.tracker().status(container)
    except DevboxError as exc:
        _fail(exc)
    click.echo(container_status.value)


@main.command("list")
@click.option("--here", is_flag=True, default=False, help="Only containers started here.")
@click.option(
    "--output",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
    help="Output format.",
)
@click.pass_obj
def list_command(state: AppState, here: bool, output_format: str) -> None:
    """List containers owned by aumai-devbox, newest first."""
    host_dir = str(state.host.cwd) if here else None
    try:
        identities = state.tracker().list_owned(host_dir=host_dir)
    except DevboxError as exc:
        _fail(exc)

    if output_format == "json":
        click.echo(
            json.dumps([identity.model_dump(mode="json") for identity in identities], indent=2)
        )
        return

    for identity in identities:
        colour = "green" if identity.status is ContainerStatus.running else "yellow"
        click.echo(
            f"{identity.name:<24} "
            + click.style(f"{identity.status.value:<8}", fg=colour)
            + f" {identity.host_dir or '-'}"
        )


# ---------------------------------------------------------------------------
# logs
# ---------------------------------------------------------------------------


@main.command("logs")
@click.option("--follow", "-f", is_flag=True, default=False, help="Keep streaming new output.")
@click.argument("name", required=False)
@click.pass_obj
def logs_command(state: AppState, follow: bool, name: str | None) -> None:
    """Show the logs of a container, by default the one running here."""
    try:
        result = state.launcher().logs(name, follow=follow, dry_run=state.dry_run)
    except DevboxError as exc:
        _fail(exc)

    if result.returncode is None:
        click.echo(render_dry_run(result.plan))
        return
    sys.exit(result.returncode)


# ---------------------------------------------------------------------------
# kill
# ---------------------------------------------------------------------------


@main.command("kill")
@click.option("--yes", "-y", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.option(
    "--timeout",
    "-t",
    default=10,
    show_default=True,
    type=click.IntRange(min=0),
    help="Seconds to wait before killing the container forcibly.",
)
@click.argument("container")
@click.pass_obj
def kill_command(state: AppState, yes: bool, timeout: int, container: str) -> None:
    """Stop a container started by aumai-devbox."""
    if not (yes or state.dry_run):
        click.confirm(f"Stop container {container!r}?", abort=True)

    try:
        plan = state.launcher().kill(container, timeout, dry_run=state.dry_run)
    except DevboxError as exc:
        _fail(exc)

    if state.dry_run:
        click.echo(render_dry_run(plan))


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


@main.group("config")
def config_group() -> None:
    """Inspect profiles and read the ones shipped inside images."""


@config_group.command("inspect")
@click.argument("reference")
@click.pass_obj
def config_inspect_command(state: AppState, reference: str) -> None:
    """Print the resolved profile for REFERENCE as YAML."""
    try:
        profile = ConfigResolver(state.settings.profiles_dir).resolve_profile(reference)
    except DevboxError as exc:
        _fail(exc)
    if profile.path:
        click.echo(click.style(f"# {profile.path}", fg="cyan"))
    click.echo(dump_profile(profile), nl=False)


@config_group.command("extract")
@click.argument("image")
@click.pass_obj
def config_extract_command(state: AppState, image: str) -> None:
    """Print the profile embedded in IMAGE at /aumai-devbox.yaml.

    Exits with code 2 when the image is not available locally.
    """
    try:
        result = state.launcher().extract_profile(image, dry_run=state.dry_run)
    except ImageNotFound as exc:
        _fail(exc, exit_code=2)
    except DevboxError as exc:
        _fail(exc)

    if result.content is None:
        click.echo(render_dry_run(result.plan))
        return
    click.echo(result.content, nl=False)


@config_group.command("options")
def config_options_command() -> None:
    """List every option a profile accepts."""
    for name, description in profile_options():
        click.echo(f"  {name:<14} : {description or '-'}")


if __name__ == "__main__":
    main()

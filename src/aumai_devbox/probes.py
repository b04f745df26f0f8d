"""Host resource probes: locate and validate host-side sockets, devices and directories.

Every probe is a plain function of a :class:`~aumai_devbox.context.HostContext`
and returns host paths.  Probes for explicitly requested resources raise
:class:`~aumai_devbox.errors.ResourceUnavailable`; best-effort probes return
an empty result instead.
"""

from __future__ import annotations

import logging
import re
import subprocess
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

from aumai_devbox.context import HostContext
from aumai_devbox.errors import ResourceUnavailable

logger = logging.getLogger(__name__)

CommandRunner = Callable[..., "subprocess.CompletedProcess[str]"]

WAYLAND_DISPLAY_OVERRIDE = "AUMAI_DEVBOX_WAYLAND_DISPLAY"

DEV_DRI_DIR = Path("/dev/dri")
SYSTEM_FONTS_DIR = Path("/usr/share/fonts")

# Render nodes are numbered from 128 upwards, paired with cardN by offset.
RENDER_NODE_OFFSET = 128

STANDARD_TERMINFO_DIRS: tuple[str, ...] = (
    "/usr/share/terminfo",
    "/usr/lib/terminfo",
    "/lib/terminfo",
    "/etc/terminfo",
)

_CARD_RE = re.compile(r"^card(\d+)$")


# ---------------------------------------------------------------------------
# Sockets
# ---------------------------------------------------------------------------


def find_wayland_socket(ctx: HostContext) -> tuple[str, Path]:
    """Return ``(display_name, socket_path)`` of the compositor socket.

    Raises:
        ResourceUnavailable: If no display is configured or the socket is missing.
    """
    display = ctx.getenv(WAYLAND_DISPLAY_OVERRIDE) or ctx.getenv("WAYLAND_DISPLAY")
    if display is None:
        raise ResourceUnavailable(
            "cannot pass through wayland: WAYLAND_DISPLAY is not defined"
        )

    socket_path = Path(display)
    if not socket_path.is_absolute():
        socket_path = ctx.host_runtime_dir / display

    if not socket_path.exists():
        raise ResourceUnavailable(f"wayland socket not found at {str(socket_path)!r}")

    logger.debug("found wayland socket at %s", socket_path)
    return display, socket_path


def find_pipewire_socket(ctx: HostContext) -> Path:
    """Return the pipewire socket path.

    ``PIPEWIRE_REMOTE`` may name an absolute socket or one relative to the
    runtime directory; otherwise ``pipewire-0`` in the runtime directory is used.

    Raises:
        ResourceUnavailable: If the socket does not exist.
    """
    remote = ctx.getenv("PIPEWIRE_REMOTE")
    if remote is None:
        socket_path = ctx.host_runtime_dir / "pipewire-0"
    else:
        socket_path = Path(remote)
        if not socket_path.is_absolute():
            socket_path = ctx.host_runtime_dir / remote

    if not socket_path.exists():
        raise ResourceUnavailable(f"pipewire socket not found at {str(socket_path)!r}")

    logger.debug("found pipewire socket at %s", socket_path)
    return socket_path


def find_pulseaudio_socket(ctx: HostContext) -> Path:
    """Return the pulseaudio native socket path.

    Raises:
        ResourceUnavailable: If ``PULSE_SERVER`` uses anything but ``unix:``
            or the socket does not exist.
    """
    server = ctx.getenv("PULSE_SERVER")
    if server is None:
        socket_path = ctx.host_runtime_dir / "pulse" / "native"
    else:
        if not server.startswith("unix:") or not server[len("unix:"):]:
            raise ResourceUnavailable(
                f"unsupported PULSE_SERVER={server!r}, only 'unix:' sockets can be passed through"
            )
        socket_path = Path(server[len("unix:"):])

    if not socket_path.exists():
        raise ResourceUnavailable(f"pulseaudio socket not found at {str(socket_path)!r}")

    logger.debug("found pulseaudio socket at %s", socket_path)
    return socket_path


def find_ssh_agent_socket(ctx: HostContext) -> Path:
    """Return the ssh-agent socket from ``SSH_AUTH_SOCK``.

    Raises:
        ResourceUnavailable: If the variable is unset or the socket is missing.
    """
    sock = ctx.getenv("SSH_AUTH_SOCK")
    if sock is None:
        raise ResourceUnavailable(
            "cannot pass through ssh-agent: SSH_AUTH_SOCK is not defined"
        )

    socket_path = Path(sock)
    if not socket_path.exists():
        raise ResourceUnavailable(f"ssh-agent socket not found at {sock!r}")

    logger.debug("found ssh-agent socket at %s", socket_path)
    return socket_path


def find_session_bus_socket(ctx: HostContext) -> Path:
    """Return the D-Bus session bus socket parsed from ``DBUS_SESSION_BUS_ADDRESS``.

    Only the ``unix:path=`` form is accepted; trailing ``,key=value`` options
    are ignored.

    Raises:
        ResourceUnavailable: If the variable is unset, uses another transport
            or the socket is missing.
    """
    address = ctx.getenv("DBUS_SESSION_BUS_ADDRESS")
    if address is None:
        raise ResourceUnavailable(
            "cannot pass through session bus: DBUS_SESSION_BUS_ADDRESS is not defined"
        )

    prefix = "unix:path="
    if not address.startswith(prefix):
        raise ResourceUnavailable(
            f"invalid format for DBUS_SESSION_BUS_ADDRESS={address!r}, expected 'unix:path=...'"
        )

    socket_path = Path(address[len(prefix):].split(",", 1)[0])
    if not socket_path.is_absolute() or not socket_path.exists():
        raise ResourceUnavailable(f"session bus socket not found at {str(socket_path)!r}")

    logger.debug("found session bus socket at %s", socket_path)
    return socket_path


# ---------------------------------------------------------------------------
# Devices
# ---------------------------------------------------------------------------


def find_gpu_devices(indices: Iterable[int], dev_dir: Path = DEV_DRI_DIR) -> list[Path]:
    """Map logical GPU indices to card and render device nodes.

    Index ``0`` selects every ``cardN`` under *dev_dir*; index ``i`` selects
    ``card(i-1)``.  Each card brings its paired ``renderD(128+N)`` node when
    present.

    Returns:
        De-duplicated device paths, sorted.

    Raises:
        ResourceUnavailable: If a requested card node does not exist.
    """
    requested = set(indices)
    cards: set[int] = set()

    if 0 in requested:
        found = _enumerate_cards(dev_dir)
        if not found:
            raise ResourceUnavailable(f"no GPU devices found in {str(dev_dir)!r}")
        cards.update(found)

    for index in sorted(requested - {0}):
        card = index - 1
        if not (dev_dir / f"card{card}").exists():
            raise ResourceUnavailable(
                f"GPU {index} not found (missing {str(dev_dir / f'card{card}')!r})"
            )
        cards.add(card)

    devices: set[Path] = set()
    for card in cards:
        devices.add(dev_dir / f"card{card}")
        render = dev_dir / f"renderD{RENDER_NODE_OFFSET + card}"
        if render.exists():
            devices.add(render)
        else:
            logger.debug("no render node %s for card%d", render, card)

    return sorted(devices, key=str)


def _enumerate_cards(dev_dir: Path) -> set[int]:
    if not dev_dir.is_dir():
        return set()
    cards: set[int] = set()
    for entry in dev_dir.iterdir():
        match = _CARD_RE.match(entry.name)
        if match:
            cards.add(int(match.group(1)))
    return cards


# ---------------------------------------------------------------------------
# Best-effort directories
# ---------------------------------------------------------------------------


def find_font_dirs(
    ctx: HostContext, system_fonts_dir: Path = SYSTEM_FONTS_DIR
) -> list[tuple[Path, str]]:
    """Return ``(host_dir, container_dir)`` for each font directory that exists."""
    candidates = [
        (system_fonts_dir, "/usr/share/fonts/host"),
        (ctx.home / ".fonts", "/usr/share/fonts/host_dot"),
        (ctx.home / ".local" / "share" / "fonts", "/usr/share/fonts/host_local"),
    ]
    found = []
    for host_dir, container_dir in candidates:
        if host_dir.is_dir():
            found.append((host_dir, container_dir))
        else:
            logger.debug("font directory %s not present, skipping", host_dir)
    return found


def find_terminfo_dirs(
    ctx: HostContext,
    runner: CommandRunner = subprocess.run,
    standard_dirs: Sequence[str] = STANDARD_TERMINFO_DIRS,
) -> list[Path]:
    """Locate host terminfo directories.

    Sources are tried in order and the first one that yields at least one
    existing directory wins: ``infocmp -D``, then ``TERMINFO`` and
    ``TERMINFO_DIRS``, then *standard_dirs*.  Never raises.
    """
    sources: list[tuple[str, Callable[[], list[str]]]] = [
        ("infocmp", lambda: _infocmp_dirs(runner)),
        ("environment", lambda: _environment_terminfo_dirs(ctx)),
        ("standard paths", lambda: list(standard_dirs)),
    ]
    for label, source in sources:
        found = _existing_unique(source())
        if found:
            logger.debug("terminfo directories from %s: %s", label, found)
            return found
    return []


def _infocmp_dirs(runner: CommandRunner) -> list[str]:
    try:
        result = runner(["infocmp", "-D"], capture_output=True, text=True, check=False)
    except OSError as exc:
        logger.debug("infocmp unavailable: %s", exc)
        return []
    if result.returncode != 0:
        return []
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def _environment_terminfo_dirs(ctx: HostContext) -> list[str]:
    dirs: list[str] = []
    terminfo = ctx.getenv("TERMINFO")
    if terminfo:
        dirs.append(terminfo)
    # an empty entry in TERMINFO_DIRS means "the compiled-in default"
    dirs.extend(item for item in (ctx.getenv("TERMINFO_DIRS") or "").split(":") if item)
    return dirs


def _existing_unique(candidates: Iterable[str]) -> list[Path]:
    seen: set[Path] = set()
    found: list[Path] = []
    for candidate in candidates:
        path = Path(candidate)
        if not path.is_absolute() or not path.is_dir():
            continue
        key = path.resolve()
        if key in seen:
            continue
        seen.add(key)
        found.append(path)
    return found


__all__ = [
    "CommandRunner",
    "DEV_DRI_DIR",
    "RENDER_NODE_OFFSET",
    "STANDARD_TERMINFO_DIRS",
    "SYSTEM_FONTS_DIR",
    "WAYLAND_DISPLAY_OVERRIDE",
    "find_font_dirs",
    "find_gpu_devices",
    "find_pipewire_socket",
    "find_pulseaudio_socket",
    "find_session_bus_socket",
    "find_ssh_agent_socket",
    "find_terminfo_dirs",
    "find_wayland_socket",
]

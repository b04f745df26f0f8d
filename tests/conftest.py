"""Shared test fixtures for aumai-devbox test suite."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

import pytest

from aumai_devbox.context import HostContext
from aumai_devbox.engine import Engine
from aumai_devbox.models import EngineKind
from aumai_devbox.passthrough import PassthroughNegotiator
from aumai_devbox.settings import DevboxSettings

# ---------------------------------------------------------------------------
# Fake command runner
# ---------------------------------------------------------------------------


class RecordingRunner:
    """Stand-in for :func:`subprocess.run` that records every call.

    Responses are matched on a prefix of the arguments after the executable;
    the most recently registered match wins.  Unmatched calls succeed with
    empty output.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.kwargs: list[dict[str, object]] = []
        self._responses: list[tuple[tuple[str, ...], int, str, str]] = []

    def respond(
        self, *prefix: str, stdout: str = "", returncode: int = 0, stderr: str = ""
    ) -> None:
        self._responses.append((prefix, returncode, stdout, stderr))

    def __call__(self, argv: Sequence[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        args = list(argv)
        self.calls.append(args)
        self.kwargs.append(dict(kwargs))
        for prefix, returncode, stdout, stderr in reversed(self._responses):
            if tuple(args[1 : len(prefix) + 1]) == prefix:
                return subprocess.CompletedProcess(args, returncode, stdout, stderr)
        return subprocess.CompletedProcess(args, 0, "", "")

    @property
    def commands(self) -> list[list[str]]:
        """Recorded calls without the executable."""
        return [call[1:] for call in self.calls]

    def ran(self, *prefix: str) -> bool:
        return any(tuple(cmd[: len(prefix)]) == prefix for cmd in self.commands)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """Undo configure_logging so caplog sees records in every test."""
    yield
    package_logger = logging.getLogger("aumai_devbox")
    package_logger.handlers.clear()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Host fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def runtime_dir(tmp_path: Path) -> Path:
    path = tmp_path / "run"
    path.mkdir()
    return path


@pytest.fixture()
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture()
def host(tmp_path: Path, runtime_dir: Path, project_dir: Path) -> HostContext:
    """A synthetic host with no sockets, devices or terminfo available."""
    home = tmp_path / "home"
    home.mkdir()
    return HostContext(
        user="alice",
        uid=1000,
        gid=1000,
        home=home,
        cwd=project_dir,
        env={},
        runtime_dir=runtime_dir,
    )


@pytest.fixture()
def wayland_host(host: HostContext, runtime_dir: Path) -> HostContext:
    """A host with a compositor socket at ``$XDG_RUNTIME_DIR/wayland-0``."""
    (runtime_dir / "wayland-0").touch()
    return replace(host, env={**host.env, "WAYLAND_DISPLAY": "wayland-0"})


@pytest.fixture()
def dev_dir(tmp_path: Path) -> Path:
    """A fake ``/dev/dri`` with two cards, only the first with a render node."""
    path = tmp_path / "dri"
    path.mkdir()
    for name in ("card0", "card1", "renderD128"):
        (path / name).touch()
    return path


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def runner() -> RecordingRunner:
    fake = RecordingRunner()
    # infocmp finds nothing unless a test says otherwise
    fake.respond("-D", returncode=1)
    return fake


@pytest.fixture()
def engine(runner: RecordingRunner) -> Engine:
    return Engine(EngineKind.podman, "/usr/bin/podman", command_runner=runner)


@pytest.fixture()
def settings(tmp_path: Path) -> DevboxSettings:
    return DevboxSettings(app_dir=tmp_path / "app", engine="podman")


@pytest.fixture()
def negotiator_factory(tmp_path: Path, dev_dir: Path, runner: RecordingRunner):
    """Build negotiators that never look at the real host."""

    def factory(ctx: HostContext) -> PassthroughNegotiator:
        return PassthroughNegotiator(
            ctx,
            dev_dir=dev_dir,
            system_fonts_dir=tmp_path / "no-system-fonts",
            standard_terminfo_dirs=(),
            command_runner=runner,
        )

    return factory

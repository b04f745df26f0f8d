"""Tests for aumai_devbox.probes: host resource discovery."""

from __future__ import annotations

import tempfile
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from aumai_devbox.context import HostContext
from aumai_devbox.errors import ResourceUnavailable
from aumai_devbox.probes import (
    find_font_dirs,
    find_gpu_devices,
    find_pipewire_socket,
    find_pulseaudio_socket,
    find_session_bus_socket,
    find_ssh_agent_socket,
    find_terminfo_dirs,
    find_wayland_socket,
)

if TYPE_CHECKING:
    from conftest import RecordingRunner


def _env(ctx: HostContext, **env: str) -> HostContext:
    return replace(ctx, env={**ctx.env, **env})


# ---------------------------------------------------------------------------
# Sockets
# ---------------------------------------------------------------------------


class TestRuntimeDir:
    def test_explicit(self, host: HostContext, runtime_dir: Path) -> None:
        assert host.host_runtime_dir == runtime_dir

    def test_defaults_to_uid_path(self, host: HostContext) -> None:
        ctx = replace(host, uid=4242424, runtime_dir=None)
        assert ctx.host_runtime_dir == Path("/run/user/4242424")
        with pytest.raises(ResourceUnavailable, match="/run/user/4242424/pipewire-0"):
            find_pipewire_socket(ctx)


class TestWayland:
    def test_relative_display(self, wayland_host: HostContext, runtime_dir: Path) -> None:
        display, path = find_wayland_socket(wayland_host)
        assert display == "wayland-0"
        assert path == runtime_dir / "wayland-0"

    def test_override_variable_wins(self, host: HostContext, runtime_dir: Path) -> None:
        (runtime_dir / "wayland-1").touch()
        ctx = _env(host, WAYLAND_DISPLAY="wayland-0", AUMAI_DEVBOX_WAYLAND_DISPLAY="wayland-1")
        assert find_wayland_socket(ctx)[0] == "wayland-1"

    def test_absolute_display(self, host: HostContext, tmp_path: Path) -> None:
        socket = tmp_path / "compositor.sock"
        socket.touch()
        _, path = find_wayland_socket(_env(host, WAYLAND_DISPLAY=str(socket)))
        assert path == socket

    def test_unset(self, host: HostContext) -> None:
        with pytest.raises(ResourceUnavailable, match="WAYLAND_DISPLAY"):
            find_wayland_socket(host)

    def test_missing_socket(self, host: HostContext) -> None:
        with pytest.raises(ResourceUnavailable, match="not found"):
            find_wayland_socket(_env(host, WAYLAND_DISPLAY="wayland-9"))


class TestAudio:
    def test_pipewire_default(self, host: HostContext, runtime_dir: Path) -> None:
        (runtime_dir / "pipewire-0").touch()
        assert find_pipewire_socket(host) == runtime_dir / "pipewire-0"

    def test_pipewire_remote(self, host: HostContext, runtime_dir: Path) -> None:
        (runtime_dir / "pw-custom").touch()
        ctx = _env(host, PIPEWIRE_REMOTE="pw-custom")
        assert find_pipewire_socket(ctx) == runtime_dir / "pw-custom"

    def test_pipewire_missing(self, host: HostContext) -> None:
        with pytest.raises(ResourceUnavailable):
            find_pipewire_socket(host)

    def test_pulse_default(self, host: HostContext, runtime_dir: Path) -> None:
        (runtime_dir / "pulse").mkdir()
        (runtime_dir / "pulse" / "native").touch()
        assert find_pulseaudio_socket(host) == runtime_dir / "pulse" / "native"

    def test_pulse_server_unix(self, host: HostContext, tmp_path: Path) -> None:
        socket = tmp_path / "pulse.sock"
        socket.touch()
        ctx = _env(host, PULSE_SERVER=f"unix:{socket}")
        assert find_pulseaudio_socket(ctx) == socket

    @pytest.mark.parametrize("server", ["tcp:localhost:4713", "unix:"])
    def test_pulse_server_unsupported(self, host: HostContext, server: str) -> None:
        with pytest.raises(ResourceUnavailable, match="PULSE_SERVER"):
            find_pulseaudio_socket(_env(host, PULSE_SERVER=server))


class TestSshAgent:
    def test_found(self, host: HostContext, tmp_path: Path) -> None:
        socket = tmp_path / "agent.sock"
        socket.touch()
        assert find_ssh_agent_socket(_env(host, SSH_AUTH_SOCK=str(socket))) == socket

    def test_unset(self, host: HostContext) -> None:
        with pytest.raises(ResourceUnavailable, match="SSH_AUTH_SOCK"):
            find_ssh_agent_socket(host)


class TestSessionBus:
    def test_with_options(self, host: HostContext, tmp_path: Path) -> None:
        socket = tmp_path / "bus"
        socket.touch()
        ctx = _env(host, DBUS_SESSION_BUS_ADDRESS=f"unix:path={socket},guid=abc")
        assert find_session_bus_socket(ctx) == socket

    def test_abstract_socket_rejected(self, host: HostContext) -> None:
        ctx = _env(host, DBUS_SESSION_BUS_ADDRESS="unix:abstract=/tmp/dbus-xyz")
        with pytest.raises(ResourceUnavailable, match="invalid format"):
            find_session_bus_socket(ctx)

    def test_unset(self, host: HostContext) -> None:
        with pytest.raises(ResourceUnavailable):
            find_session_bus_socket(host)


# ---------------------------------------------------------------------------
# GPUs
# ---------------------------------------------------------------------------


class TestGpuDevices:
    def test_index_zero_selects_all(self, dev_dir: Path) -> None:
        assert find_gpu_devices([0], dev_dir) == [
            dev_dir / "card0",
            dev_dir / "card1",
            dev_dir / "renderD128",
        ]

    def test_specific_index(self, dev_dir: Path) -> None:
        assert find_gpu_devices([2], dev_dir) == [dev_dir / "card1"]

    def test_zero_with_specific_has_no_duplicates(self, dev_dir: Path) -> None:
        devices = find_gpu_devices([1, 0, 1], dev_dir)
        assert len(devices) == len(set(devices)) == 3

    def test_missing_card(self, dev_dir: Path) -> None:
        with pytest.raises(ResourceUnavailable, match="GPU 5"):
            find_gpu_devices([5], dev_dir)

    def test_no_cards_at_all(self, tmp_path: Path) -> None:
        with pytest.raises(ResourceUnavailable):
            find_gpu_devices([0], tmp_path / "missing")

    @given(indices=st.lists(st.integers(min_value=0, max_value=2), min_size=1, max_size=6))
    @settings(max_examples=50)
    def test_order_independent(self, indices: list[int]) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            dev = Path(tmp)
            for name in ("card0", "card1", "renderD128"):
                (dev / name).touch()
            forward = find_gpu_devices(indices, dev)
            backward = find_gpu_devices(list(reversed(indices)), dev)
            assert forward == backward
            assert len(forward) == len(set(forward))


# ---------------------------------------------------------------------------
# Best-effort directories
# ---------------------------------------------------------------------------


class TestFontDirs:
    def test_only_existing(self, host: HostContext, tmp_path: Path) -> None:
        (host.home / ".local" / "share" / "fonts").mkdir(parents=True)
        local_fonts = host.home / ".local" / "share" / "fonts"
        found = find_font_dirs(host, tmp_path / "no-system-fonts")
        assert found == [(local_fonts, "/usr/share/fonts/host_local")]


class TestTerminfoDirs:
    def test_infocmp_wins(
        self, host: HostContext, runner: RecordingRunner, tmp_path: Path
    ) -> None:
        first = tmp_path / "ti-a"
        first.mkdir()
        runner.respond("-D", stdout=f"{first}\n{tmp_path / 'missing'}\n")
        ctx = _env(host, TERMINFO=str(tmp_path))
        assert find_terminfo_dirs(ctx, runner=runner, standard_dirs=()) == [first]

    def test_environment_fallback(
        self, host: HostContext, runner: RecordingRunner, tmp_path: Path
    ) -> None:
        a = tmp_path / "ti-a"
        b = tmp_path / "ti-b"
        a.mkdir()
        b.mkdir()
        ctx = _env(host, TERMINFO=str(a), TERMINFO_DIRS=f"{b}::{a}")
        assert find_terminfo_dirs(ctx, runner=runner, standard_dirs=()) == [a, b]

    def test_standard_fallback(
        self, host: HostContext, runner: RecordingRunner, tmp_path: Path
    ) -> None:
        std = tmp_path / "share-terminfo"
        std.mkdir()
        result = find_terminfo_dirs(host, runner=runner, standard_dirs=(str(std), "/nope"))
        assert result == [std]

    def test_nothing_found(self, host: HostContext, runner: RecordingRunner) -> None:
        assert find_terminfo_dirs(host, runner=runner, standard_dirs=()) == []

    def test_infocmp_not_installed(self, host: HostContext) -> None:
        def missing(*args: object, **kwargs: object) -> None:
            raise FileNotFoundError("infocmp")

        assert find_terminfo_dirs(host, runner=missing, standard_dirs=()) == []

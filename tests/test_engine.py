"""Tests for aumai_devbox.engine."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from aumai_devbox.engine import Engine
from aumai_devbox.errors import EngineError, NotFoundError
from aumai_devbox.models import EngineKind

if TYPE_CHECKING:
    from conftest import RecordingRunner


class TestFindAvailable:
    def test_auto_prefers_podman(self) -> None:
        paths = {"podman": "/usr/bin/podman", "docker": "/usr/bin/docker"}
        engine = Engine.find_available("auto", which=paths.get)
        assert engine.kind is EngineKind.podman
        assert engine.path == "/usr/bin/podman"

    def test_auto_falls_back_to_docker(self) -> None:
        engine = Engine.find_available("auto", which={"docker": "/bin/docker"}.get)
        assert engine.kind is EngineKind.docker

    def test_explicit_choice(self) -> None:
        paths = {"podman": "/usr/bin/podman", "docker": "/usr/bin/docker"}
        assert Engine.find_available("docker", which=paths.get).kind is EngineKind.docker

    def test_none_installed(self) -> None:
        with pytest.raises(NotFoundError, match="podman or docker"):
            Engine.find_available("auto", which=lambda name: None)


class TestRun:
    def test_success_captures_output(self, engine: Engine, runner: RecordingRunner) -> None:
        runner.respond("version", stdout="5.0\n")
        result = engine.run(["version"])
        assert result.stdout == "5.0\n"
        assert runner.calls[-1] == ["/usr/bin/podman", "version"]
        assert runner.kwargs[-1] == {"capture_output": True, "text": True, "check": False}

    def test_failure_raises_with_exit_code(
        self, engine: Engine, runner: RecordingRunner
    ) -> None:
        runner.respond("volume", "create", returncode=125, stderr="permission denied\n")
        with pytest.raises(EngineError) as excinfo:
            engine.volume_create("data")
        assert excinfo.value.exit_code == 125
        assert excinfo.value.stderr == "permission denied"

    def test_interactive_does_not_capture(
        self, engine: Engine, runner: RecordingRunner
    ) -> None:
        runner.respond("exec", returncode=3)
        result = engine.run(["exec", "-it", "box", "sh"], check=False, capture=False)
        assert result.returncode == 3
        assert runner.kwargs[-1] == {"check": False}

    def test_missing_executable(self) -> None:
        def missing(*args: object, **kwargs: object) -> None:
            raise FileNotFoundError("podman")

        engine = Engine(EngineKind.podman, command_runner=missing)
        with pytest.raises(EngineError) as excinfo:
            engine.run(["ps"])
        assert excinfo.value.exit_code == 127


class TestQueries:
    def test_query_returns_none_on_failure(
        self, engine: Engine, runner: RecordingRunner
    ) -> None:
        runner.respond("container", "inspect", returncode=125)
        assert engine.container_exists("ghost") is False
        assert engine.labels("ghost") is None

    def test_labels(self, engine: Engine, runner: RecordingRunner) -> None:
        runner.respond("container", "inspect", stdout=json.dumps({"a": "1"}) + "\n")
        assert engine.labels("box") == {"a": "1"}

    def test_labels_null(self, engine: Engine, runner: RecordingRunner) -> None:
        runner.respond("container", "inspect", stdout="null\n")
        assert engine.labels("box") == {}

    def test_list_containers_filters(self, engine: Engine, runner: RecordingRunner) -> None:
        runner.respond("container", "ls", stdout="abc\ndef\n")
        assert engine.list_containers(["x", "y=z"]) == ["abc", "def"]
        assert runner.commands[-1] == [
            "container", "ls", "--all", "--quiet",
            "--filter", "label=x", "--filter", "label=y=z",
        ]

    def test_inspect_empty_skips_engine(self, engine: Engine, runner: RecordingRunner) -> None:
        assert engine.inspect([]) == []
        assert runner.calls == []

    def test_stop(self, engine: Engine, runner: RecordingRunner) -> None:
        engine.stop("box", 5)
        assert runner.commands[-1] == ["container", "stop", "--time", "5", "box"]

    def test_volume_exists(self, engine: Engine, runner: RecordingRunner) -> None:
        assert engine.volume_exists("data") is True
        runner.respond("volume", "inspect", returncode=1)
        assert engine.volume_exists("data") is False

    def test_image_exists(self, engine: Engine, runner: RecordingRunner) -> None:
        runner.respond("image", "inspect", stdout="sha256:abc\n")
        assert engine.image_exists("alpine") is True
        assert runner.commands[-1] == ["image", "inspect", "--format", "{{.Id}}", "alpine"]
        runner.respond("image", "inspect", returncode=125)
        assert engine.image_exists("ghost") is False

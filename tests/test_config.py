"""Tests for aumai_devbox.config: documents, resolution and expansion."""

from __future__ import annotations

import logging
import textwrap
from dataclasses import replace
from pathlib import Path

import pytest
import yaml

from aumai_devbox.config import (
    ConfigResolver,
    dump_profile,
    expand_variables,
    is_path_reference,
    load,
    load_file,
    parse_document,
    profile_options,
)
from aumai_devbox.context import HostContext
from aumai_devbox.errors import NotFoundError, ParseError, SchemaError
from aumai_devbox.models import SandboxConfig

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write(path: Path, content: str) -> Path:
    path.write_text(textwrap.dedent(content), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# parse_document
# ---------------------------------------------------------------------------


class TestParseDocument:
    def test_single_profile_shape(self) -> None:
        profiles = parse_document("version: 1\nimage: fedora\nwayland: true\n", default_name="dev")
        assert len(profiles) == 1
        assert profiles[0].name == "dev"
        assert profiles[0].image == "fedora"
        assert profiles[0].wayland is True

    def test_single_profile_explicit_name(self) -> None:
        profiles = parse_document("version: 1\nname: rusty\nimage: rust\n")
        assert profiles[0].name == "rusty"

    def test_named_profiles_keep_order(self) -> None:
        text = """
        version: 1
        profiles:
          rust:
            image: rust:latest
            env:
              CARGO_HOME: /devbox/cargo
          python:
            image: python:3.12
            capabilities: ["!net_raw"]
        """
        profiles = parse_document(textwrap.dedent(text))
        assert [p.name for p in profiles] == ["rust", "python"]
        assert profiles[0].env == [("CARGO_HOME", "/devbox/cargo")]
        assert profiles[1].capabilities == ["!net_raw"]

    def test_missing_version(self) -> None:
        with pytest.raises(SchemaError, match="missing"):
            parse_document("image: fedora\n")

    def test_version_two_rejected(self) -> None:
        with pytest.raises(SchemaError, match="unsupported"):
            parse_document("version: 2\nimage: fedora\n")

    @pytest.mark.parametrize("version", ['"1"', "true", "1.0"])
    def test_version_must_be_exact_integer(self, version: str) -> None:
        with pytest.raises(SchemaError):
            parse_document(f"version: {version}\nimage: fedora\n")

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ParseError, match="validation"):
            parse_document("version: 1\nimage: fedora\nx11: true\n")

    def test_malformed_yaml(self) -> None:
        with pytest.raises(ParseError, match="YAML"):
            parse_document("version: 1\nimage: [unterminated\n")

    def test_non_mapping(self) -> None:
        with pytest.raises(ParseError, match="mapping"):
            parse_document("- just\n- a list\n")


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


class TestLoadFile:
    def test_name_defaults_to_stem(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "work.yaml", "version: 1\nimage: fedora\n")
        profiles = load_file(path)
        assert profiles[0].name == "work"
        assert profiles[0].path == str(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(NotFoundError):
            load_file(tmp_path / "absent.yaml")

    def test_duplicate_first_wins(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        first = _write(tmp_path / "a.yaml", "version: 1\nname: box\nimage: fedora\n")
        second = _write(tmp_path / "b.yaml", "version: 1\nname: box\nimage: alpine\n")
        with caplog.at_level(logging.WARNING, logger="aumai_devbox.config"):
            profiles = load([first, second])
        assert profiles["box"].image == "fedora"
        assert "duplicate profile" in caplog.text


# ---------------------------------------------------------------------------
# ConfigResolver
# ---------------------------------------------------------------------------


class TestConfigResolver:
    def test_named_profile(self, tmp_path: Path) -> None:
        profiles_dir = tmp_path / "profiles"
        profiles_dir.mkdir()
        _write(profiles_dir / "dev.yaml", "version: 1\nimage: fedora\n")
        _write(profiles_dir / "notes.txt", "ignored")
        resolver = ConfigResolver(profiles_dir)
        assert resolver.resolve_profile("@dev").image == "fedora"
        assert list(resolver.profiles()) == ["dev"]

    def test_unknown_named_profile(self, tmp_path: Path) -> None:
        with pytest.raises(NotFoundError, match="'nope'"):
            ConfigResolver(tmp_path).resolve_profile("@nope")

    def test_path_reference(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "box.yml", "version: 1\nimage: debian\n")
        assert ConfigResolver().resolve_profile(str(path)).image == "debian"

    def test_bare_image(self) -> None:
        config = ConfigResolver().resolve_profile("docker.io/library/alpine:3")
        assert config.image == "docker.io/library/alpine:3"
        assert config.name == "docker.io/library/alpine:3"

    @pytest.mark.parametrize(
        ("reference", "expected"),
        [
            ("./box.yaml", True),
            ("/etc/box", True),
            ("~/box", True),
            ("profile.yml", True),
            ("fedora:40", False),
            ("ghcr.io/org/img", False),
        ],
    )
    def test_is_path_reference(self, reference: str, expected: bool) -> None:
        assert is_path_reference(reference) is expected


# ---------------------------------------------------------------------------
# Variable expansion
# ---------------------------------------------------------------------------


class TestExpandVariables:
    def test_builtins_and_environment(self, host: HostContext) -> None:
        ctx = replace(host, env={"EDITOR": "vim"})
        config = SandboxConfig(
            name="box",
            image="alpine",
            skel="$HOME/dotfiles",
            env=[("EDITOR", "${EDITOR}"), ("NAME", "$CONTAINER_NAME")],
            engine_args=["--label=owner=$USER"],
        )
        expanded = expand_variables(config, ctx, "brave-devbox")
        assert expanded.skel == f"{host.home}/dotfiles"
        assert expanded.env == [("EDITOR", "vim"), ("NAME", "brave-devbox")]
        assert expanded.engine_args == ["--label=owner=alice"]

    def test_unknown_kept_verbatim(
        self, host: HostContext, caplog: pytest.LogCaptureFixture
    ) -> None:
        config = SandboxConfig(name="box", image="alpine", env=[("X", "$MISSING")])
        with caplog.at_level(logging.WARNING, logger="aumai_devbox.config"):
            expanded = expand_variables(config, host, "c")
        assert expanded.env == [("X", "$MISSING")]
        assert "could not expand" in caplog.text

    def test_persist_paths_resolve_to_container_home(self, host: HostContext) -> None:
        config = SandboxConfig(
            name="box",
            image="alpine",
            persist=[("cargo", "~/.cargo"), ("cache", "/var/cache/app")],
            persist_user=[("history", "$HOME/.history"), ("root", "~")],
        )
        expanded = expand_variables(config, host, "c")
        assert expanded.persist == [
            ("cargo", f"{host.home}/.cargo"),
            ("cache", "/var/cache/app"),
        ]
        assert expanded.persist_user == [
            ("history", f"{host.home}/.history"),
            ("root", str(host.home)),
        ]


# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------


class TestPresentation:
    def test_dump_round_trips_through_parser(self) -> None:
        config = SandboxConfig(name="box", image="fedora", wayland=True, gpus=[0])
        dumped = dump_profile(config)
        assert yaml.safe_load(dumped)["version"] == 1
        (reparsed,) = parse_document(dumped)
        assert reparsed == config

    def test_profile_options_lists_fields(self) -> None:
        names = [name for name, _ in profile_options()]
        assert "image" in names
        assert "host_pre_init" in names
        assert "name" not in names

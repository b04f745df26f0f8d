"""Thin wrapper over the podman / docker command line."""

from __future__ import annotations

import json
import logging
import shlex
import shutil
import subprocess
from collections.abc import Callable, Sequence
from typing import Any

from aumai_devbox.errors import EngineError, NotFoundError
from aumai_devbox.models import EngineKind
from aumai_devbox.settings import EngineChoice

logger = logging.getLogger(__name__)

CommandRunner = Callable[..., "subprocess.CompletedProcess[str]"]

# Preference order when the engine is chosen automatically.
ENGINE_PREFERENCE: tuple[EngineKind, ...] = (EngineKind.podman, EngineKind.docker)


class Engine:
    """A container engine executable and the handful of subcommands used on it.

    Every call goes through *command_runner*, a :func:`subprocess.run`
    compatible callable, so tests can substitute a recording fake.

    Example::

        engine = Engine.find_available("auto")
        if not engine.volume_exists("aumai-devbox-data"):
            engine.volume_create("aumai-devbox-data")
    """

    def __init__(
        self,
        kind: EngineKind,
        path: str | None = None,
        *,
        command_runner: CommandRunner | None = None,
    ) -> None:
        self.kind = kind
        self.path = path or kind.value
        self._run = command_runner or subprocess.run

    def __repr__(self) -> str:
        return f"Engine(kind={self.kind.value!r}, path={self.path!r})"

    @property
    def is_podman(self) -> bool:
        return self.kind is EngineKind.podman

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    @classmethod
    def find_available(
        cls,
        choice: EngineChoice = "auto",
        *,
        which: Callable[[str], str | None] = shutil.which,
        command_runner: CommandRunner | None = None,
    ) -> Engine:
        """Locate an engine executable on ``PATH``.

        Args:
            choice: ``"podman"``, ``"docker"`` or ``"auto"`` (podman first).
            which: Lookup function, :func:`shutil.which` by default.
            command_runner: Passed through to the new :class:`Engine`.

        Raises:
            NotFoundError: If no matching executable is installed.
        """
        candidates = ENGINE_PREFERENCE if choice == "auto" else (EngineKind(choice),)
        for kind in candidates:
            path = which(kind.value)
            if path:
                logger.debug("using container engine %s at %s", kind.value, path)
                return cls(kind, path, command_runner=command_runner)

        names = " or ".join(kind.value for kind in candidates)
        raise NotFoundError(f"no container engine found, install {names}")

    # ------------------------------------------------------------------
    # Low-level execution
    # ------------------------------------------------------------------

    def command(self, *args: str) -> list[str]:
        """Return the full argument vector for ``<engine> <args...>``."""
        return [self.path, *args]

    def run(
        self, args: Sequence[str], *, check: bool = True, capture: bool = True
    ) -> subprocess.CompletedProcess[str]:
        """Run the engine with *args*.

        Args:
            args: Arguments after the engine executable.
            check: Raise :class:`EngineError` on a non-zero exit code.
            capture: Capture output; pass ``False`` for interactive commands
                that must own the terminal.

        Raises:
            EngineError: If *check* is set and the engine fails, or the
                executable cannot be started.
        """
        argv = self.command(*args)
        logger.debug("running %s", shlex.join(argv))
        try:
            if capture:
                result = self._run(argv, capture_output=True, text=True, check=False)
            else:
                result = self._run(argv, check=False)
        except OSError as exc:
            raise EngineError(f"failed to execute {self.path}: {exc}", exit_code=127) from exc

        if check and result.returncode != 0:
            stderr = (result.stderr or "").strip() if capture else ""
            detail = f": {stderr}" if stderr else ""
            raise EngineError(
                f"{self.kind.value} {args[0] if args else ''} failed "
                f"(returncode={result.returncode}){detail}",
                exit_code=result.returncode,
                stderr=stderr,
            )
        return result

    def query(self, *args: str) -> str | None:
        """Run a read-only command and return its stripped stdout, or ``None`` on failure."""
        result = self.run(args, check=False)
        if result.returncode != 0:
            return None
        return (result.stdout or "").strip()

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def container_exists(self, name: str) -> bool:
        return self.query("container", "inspect", "--format", "{{.Id}}", name) is not None

    def inspect_format(self, name: str, template: str) -> str | None:
        """Evaluate a Go *template* against a container; ``None`` if it does not exist."""
        return self.query("container", "inspect", "--format", template, name)

    def labels(self, name: str) -> dict[str, str] | None:
        """Return the labels of *name*, or ``None`` if the container does not exist."""
        output = self.inspect_format(name, "{{json .Config.Labels}}")
        if output is None:
            return None
        if not output or output == "null":
            return {}
        try:
            data = json.loads(output)
        except json.JSONDecodeError as exc:
            raise EngineError(f"cannot parse labels of container {name!r}: {exc}") from exc
        return {str(key): str(value) for key, value in (data or {}).items()}

    def list_containers(self, label_filters: Sequence[str] = ()) -> list[str]:
        """Return the IDs of all containers, running or not, matching every filter."""
        args = ["container", "ls", "--all", "--quiet"]
        for label in label_filters:
            args.extend(["--filter", f"label={label}"])
        output = self.run(args).stdout or ""
        return [line.strip() for line in output.splitlines() if line.strip()]

    def inspect(self, names: Sequence[str]) -> list[dict[str, Any]]:
        """Return the full ``container inspect`` documents for *names*."""
        if not names:
            return []
        output = self.run(["container", "inspect", *names]).stdout or ""
        try:
            data = json.loads(output or "[]")
        except json.JSONDecodeError as exc:
            raise EngineError(f"cannot parse container inspect output: {exc}") from exc
        return list(data or [])

    def stop(self, name: str, timeout: int) -> None:
        self.run(["container", "stop", "--time", str(timeout), name])

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def image_exists(self, image: str) -> bool:
        return self.query("image", "inspect", "--format", "{{.Id}}", image) is not None

    # ------------------------------------------------------------------
    # Volumes
    # ------------------------------------------------------------------

    def volume_exists(self, name: str) -> bool:
        return self.query("volume", "inspect", name) is not None

    def volume_create(self, name: str) -> None:
        self.run(["volume", "create", name])


__all__ = ["CommandRunner", "ENGINE_PREFERENCE", "Engine"]

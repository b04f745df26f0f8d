"""Ambient host state, gathered once and passed to every component."""

from __future__ import annotations

import os
import pwd
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class HostContext:
    """Snapshot of who and where the tool is running.

    Probes and the composer never read ``os.environ`` or the current
    directory themselves; they receive this value instead, which lets tests
    build a synthetic host on top of ``tmp_path``.
    """

    user: str
    uid: int
    gid: int
    home: Path
    cwd: Path
    env: Mapping[str, str] = field(default_factory=dict)
    runtime_dir: Path | None = None

    @classmethod
    def from_process(cls) -> HostContext:
        """Build a context for the current process and user."""
        uid = os.getuid()
        entry = pwd.getpwuid(uid)
        env = dict(os.environ)
        runtime_dir = env.get("XDG_RUNTIME_DIR")
        return cls(
            user=entry.pw_name,
            uid=uid,
            gid=entry.pw_gid,
            home=Path(entry.pw_dir),
            cwd=Path.cwd(),
            env=env,
            runtime_dir=Path(runtime_dir) if runtime_dir else None,
        )

    def getenv(self, key: str, default: str | None = None) -> str | None:
        """Return a host environment variable, treating empty values as unset."""
        value = self.env.get(key)
        return value if value else default

    @property
    def host_runtime_dir(self) -> Path:
        """Host ``XDG_RUNTIME_DIR``, defaulting to ``/run/user/<uid>``."""
        return self.runtime_dir or Path(f"/run/user/{self.uid}")

    @property
    def container_runtime_dir(self) -> str:
        """``XDG_RUNTIME_DIR`` as seen from inside the container."""
        return f"/run/user/{self.uid}"

    @property
    def workspace_dir(self) -> str:
        """Container directory that holds the project and additional mounts."""
        return f"{self.home}/ws"

    @property
    def project_dir(self) -> str:
        """Container path where the current directory is mounted."""
        return f"{self.workspace_dir}/{self.cwd.name}"


__all__ = ["HostContext"]

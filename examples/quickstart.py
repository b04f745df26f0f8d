"""aumai-devbox quickstart example.

Demonstrates:
- Parsing a profile from a YAML string.
- Resolving capability tiers.
- Composing a start invocation in dry-run mode and printing it.

Nothing here talks to a container engine, so it runs without podman or
docker installed::

    python examples/quickstart.py
"""

from __future__ import annotations

import textwrap

from aumai_devbox import (
    DevboxSettings,
    Engine,
    HostContext,
    Launcher,
    StartRequest,
    parse_document,
    render_dry_run,
    resolve_capabilities,
)
from aumai_devbox.models import EngineKind

# ---------------------------------------------------------------------------
# Demo 1: Parsing a profile
# ---------------------------------------------------------------------------


def demo_parse_profile() -> None:
    """Parse a two-profile document and show the canonical form."""
    print("=" * 60)
    print("Demo 1: Parsing a profile document")
    print("=" * 60)

    document = textwrap.dedent(
        """\
        version: 1
        profiles:
          rust:
            image: docker.io/library/rust:latest
            network: true
            persist:
              cargo: ~/.cargo
          gui:
            image: registry.fedoraproject.org/fedora:40
            wayland: true
            pipewire: true
        """
    )
    for profile in parse_document(document, source="<quickstart>"):
        print(f"  {profile.name:<6} image={profile.image}")
        print(f"         network={profile.network} wayland={profile.wayland}")
        if profile.persist:
            print(f"         persist={profile.persist}")
    print()


# ---------------------------------------------------------------------------
# Demo 2: Capability tiers
# ---------------------------------------------------------------------------


def demo_capabilities() -> None:
    """Later tiers override earlier decisions for the same capability."""
    print("=" * 60)
    print("Demo 2: Capability resolution")
    print("=" * 60)

    decision = resolve_capabilities(
        ["net_raw", "mknod"],
        ["CAP_SYS_PTRACE", "!net_raw"],
        ["!mknod"],
    )
    print(f"  add:  {decision.add}")
    print(f"  drop: {decision.drop}")
    print()


# ---------------------------------------------------------------------------
# Demo 3: Dry-run start
# ---------------------------------------------------------------------------


def demo_dry_run() -> None:
    """Build the full engine command for a plain image without running it."""
    print("=" * 60)
    print("Demo 3: Dry-run start")
    print("=" * 60)

    launcher = Launcher(Engine(EngineKind.podman), HostContext.from_process(), DevboxSettings())
    request = StartRequest(
        reference="docker.io/library/alpine:latest",
        name="quickstart-devbox",
        env=(("EDITOR", "vi"),),
        ports=((8000, 8000),),
        dry_run=True,
    )
    result = launcher.start(request)
    print(render_dry_run(result.plan))
    print()


if __name__ == "__main__":
    demo_parse_profile()
    demo_capabilities()
    demo_dry_run()

"""Linux capability resolution across defaults, profile and command line."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from aumai_devbox.models import CapabilityDecision


def normalize_capability(name: str) -> str:
    """Return the canonical spelling of a capability (``CAP_NET_ADMIN`` -> ``net_admin``)."""
    normalized = name.strip().lower()
    if normalized.startswith("cap_"):
        normalized = normalized[len("cap_"):]
    if not normalized:
        raise ValueError(f"invalid capability entry {name!r}")
    return normalized


def parse_entry(entry: str) -> tuple[str, bool]:
    """Split a ``name`` or ``!name`` entry into ``(name, add)``."""
    stripped = entry.strip()
    if stripped.startswith("!"):
        return normalize_capability(stripped[1:]), False
    return normalize_capability(stripped), True


def resolve_capabilities(*tiers: Iterable[str]) -> CapabilityDecision:
    """Merge capability lists from lowest to highest priority.

    Each tier is applied in order; an entry for a name replaces whatever an
    earlier tier (or an earlier entry of the same tier) decided for that
    name.  The usual call is ``resolve_capabilities(defaults, profile, cli)``.

    Args:
        *tiers: Lists of ``name`` (add) or ``!name`` (drop) entries.

    Returns:
        A :class:`~aumai_devbox.models.CapabilityDecision` with both lists
        sorted by name, so equal inputs always give equal output.

    Raises:
        ValueError: If an entry is blank.
    """
    decisions: dict[str, bool] = {}
    for tier in tiers:
        for entry in tier:
            name, add = parse_entry(entry)
            decisions[name] = add

    return CapabilityDecision(
        add=tuple(sorted(name for name, add in decisions.items() if add)),
        drop=tuple(sorted(name for name, add in decisions.items() if not add)),
    )


def render_capabilities(decision: CapabilityDecision) -> Sequence[str]:
    """Render a decision as engine flags, additions first."""
    return [f"--cap-add={name}" for name in decision.add] + [
        f"--cap-drop={name}" for name in decision.drop
    ]


__all__ = [
    "normalize_capability",
    "parse_entry",
    "render_capabilities",
    "resolve_capabilities",
]

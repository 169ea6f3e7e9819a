"""
Deployment planning: diff two unit snapshots and pick a strategy.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from swapdeploy.units.models import CodeUnit


class Strategy(Enum):
    REINSTALL = "reinstall"
    LIVE_SWAP = "live_swap"


@dataclass(frozen=True)
class DeploymentPlan:
    """
    Difference between the deployed snapshot and the new one.

    unchanged, modified, added and removed are disjoint sets of unit names.
    changed_entries holds non-code entries (and whole archives) that were
    added, removed or changed; any of them rules out a live swap.
    """
    unchanged: frozenset = field(default_factory=frozenset)
    modified: frozenset = field(default_factory=frozenset)
    added: frozenset = field(default_factory=frozenset)
    removed: frozenset = field(default_factory=frozenset)
    changed_entries: frozenset = field(default_factory=frozenset)

    @property
    def is_empty(self) -> bool:
        """True when nothing has to reach the device."""
        return not (self.modified or self.added or self.removed or self.changed_entries)

    @property
    def added_or_removed(self) -> bool:
        return bool(self.added or self.removed)

    @property
    def live_swap_eligible(self) -> bool:
        """Structural precondition of a live swap; compatibility is checked separately."""
        return bool(self.modified) and not (self.added_or_removed or self.changed_entries)

    def to_dict(self) -> dict[str, Any]:
        return {
            "unchanged": len(self.unchanged),
            "modified": sorted(self.modified),
            "added": sorted(self.added),
            "removed": sorted(self.removed),
            "changed_entries": sorted(self.changed_entries),
        }


def compute_plan(
    old_units: Iterable[CodeUnit],
    new_units: Iterable[CodeUnit],
    changed_entries: Iterable[str] = ()
) -> DeploymentPlan:
    """
    Diff two unit snapshots by name and checksum.

    Args:
        old_units: Units of the deployed archives
        new_units: Units of the archives being deployed
        changed_entries: Non-code differences found by the caller

    Returns:
        DeploymentPlan; diffing a snapshot with itself gives an empty plan
    """
    old = {unit.name: unit.checksum for unit in old_units}
    new = {unit.name: unit.checksum for unit in new_units}

    common = old.keys() & new.keys()
    modified = frozenset(name for name in common if old[name] != new[name])

    return DeploymentPlan(
        unchanged=frozenset(common - modified),
        modified=modified,
        added=frozenset(new.keys() - old.keys()),
        removed=frozenset(old.keys() - new.keys()),
        changed_entries=frozenset(changed_entries),
    )

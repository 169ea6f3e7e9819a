"""Deployment orchestration with dependency injection.

SwapOrchestrator turns two archive snapshots into the cheapest correct set of
device operations:

    IDLE → INDEXED → DIFFED → PLAN_SELECTED → EXECUTING → DONE
                                                    └──→ FAILED

Indexing, splitting, pushing, installing and redefining all run as tasks of
a TaskGraph, so independent work overlaps while operations that share the
device are chained.
"""

from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

from swapdeploy.archive.index import ArchiveEntry, ArchiveIndex, PackageArchive
from swapdeploy.core.protocols import FileSystemService, Logger
from swapdeploy.exceptions import SwapDeployError
from swapdeploy.tasks.graph import Task, TaskGraph
from swapdeploy.units.compat import AlwaysCompatible, CompatibilityChecker
from swapdeploy.units.models import CodeUnit
from swapdeploy.units.splitter import UnitSplitter, read_entry
from .base import DeviceChannel
from .outcome import DeploymentOutcome, OutcomeKind
from .plan import DeploymentPlan, Strategy, compute_plan
from .redefiner import LiveRedefiner

# Constants
DEFAULT_STAGING_DIR = '/data/local/tmp/swapdeploy'
DEFAULT_INSTALL_OPTIONS = ('-r', '-t')
SIGNING_METADATA_PREFIX = 'META-INF/'

ArchivePath = Union[str, Path]


class DeployState(Enum):
    IDLE = "idle"
    INDEXED = "indexed"
    DIFFED = "diffed"
    PLAN_SELECTED = "plan_selected"
    EXECUTING = "executing"
    DONE = "done"
    FAILED = "failed"


class SwapOrchestrator:
    """Plans and executes one deployment at a time.

    Args:
        channel: Device the package is deployed to
        splitter: Cache-backed unit splitter
        filesystem: Reads local archives before pushing them
        logger: User-facing log output
        redefiner: Live code replacement; None disables live swaps
        checker: Decides whether a modified unit can be swapped
        index: Archive indexer
        staging_dir: Device directory archives are pushed to
        install_options: Flags passed to the package manager
        max_workers: Size of the task worker pool
    """

    def __init__(
        self,
        channel: DeviceChannel,
        splitter: UnitSplitter,
        filesystem: FileSystemService,
        logger: Logger,
        redefiner: Optional[LiveRedefiner] = None,
        checker: Optional[CompatibilityChecker] = None,
        index: Optional[ArchiveIndex] = None,
        staging_dir: str = DEFAULT_STAGING_DIR,
        install_options: Sequence[str] = DEFAULT_INSTALL_OPTIONS,
        max_workers: int = 4
    ):
        self.channel = channel
        self.splitter = splitter
        self.fs = filesystem
        self.log = logger
        self.redefiner = redefiner
        self.checker = checker or AlwaysCompatible()
        self.index = index or ArchiveIndex()
        self.staging_dir = staging_dir.rstrip('/')
        self.install_options = list(install_options)
        self.max_workers = max_workers

        self.state = DeployState.IDLE
        self._plan: Optional[DeploymentPlan] = None
        self._strategy: Optional[Strategy] = None

    def _transition(self, state: DeployState) -> None:
        self.log.debug(f"Deployment state: {self.state.value} -> {state.value}")
        self.state = state

    def deploy(
        self,
        package_id: str,
        archives: Sequence[ArchivePath],
        previous: Optional[Sequence[ArchivePath]] = None,
        force_reinstall: bool = False
    ) -> DeploymentOutcome:
        """Deploy archives, diffing against the previously deployed ones.

        Args:
            package_id: Application package name
            archives: Base archive first, then additional split archives
            previous: Archives currently on the device (None if unknown)
            force_reinstall: Skip the diff and reinstall everything

        Returns:
            DeploymentOutcome; engine errors are reported as FAILED outcomes

        Raises:
            ValueError: If archives is empty or two archives share a file name
        """
        _check_names(archives, "archives")
        if previous:
            _check_names(previous, "previous archives")

        self.state = DeployState.IDLE
        self._plan = None
        self._strategy = None

        graph = TaskGraph(max_workers=self.max_workers)
        try:
            with graph:
                outcome = self._deploy(graph, package_id, archives, previous, force_reinstall)
            self._transition(DeployState.DONE if outcome.succeeded else DeployState.FAILED)
        except SwapDeployError as e:
            self._transition(DeployState.FAILED)
            self.log.error(e.message)
            outcome = DeploymentOutcome.failed(e.message, e, self._strategy, self._plan)
        except Exception as e:
            # Bugs below the engine still end the deployment as FAILED
            self._transition(DeployState.FAILED)
            error = SwapDeployError(f"Unexpected {type(e).__name__}: {e}")
            error.__cause__ = e
            self.log.error(error.message)
            outcome = DeploymentOutcome.failed(error.message, error, self._strategy, self._plan)

        outcome.metrics = graph.metrics()
        return outcome

    def _deploy(
        self,
        graph: TaskGraph,
        package_id: str,
        archives: Sequence[ArchivePath],
        previous: Optional[Sequence[ArchivePath]],
        force_reinstall: bool
    ) -> DeploymentOutcome:
        new = self._index_all(graph, archives, "new")
        old = self._index_all(graph, previous, "old") if previous else []
        self._transition(DeployState.INDEXED)

        if force_reinstall or not old:
            reason = "reinstall forced" if force_reinstall else "no previous deployment"
            self._transition(DeployState.DIFFED)
            self._select(Strategy.REINSTALL, reason)
            return self._reinstall(graph, package_id, new, reason)

        if _same_digests(old, new):
            self._transition(DeployState.DIFFED)
            self.log.info("Archives identical to the deployed ones, nothing to do")
            return DeploymentOutcome.skipped("archives unchanged")

        old_units = self._split_all(graph, old)
        new_units = self._split_all(graph, new, reuse=old_units)
        plan = compute_plan(
            [unit for units in old_units.values() for unit in units],
            [unit for units in new_units.values() for unit in units],
            self._changed_entries(old, new)
        )
        self._plan = plan
        self._transition(DeployState.DIFFED)
        self.log.info(
            f"Plan: {len(plan.modified)} modified, {len(plan.added)} added, "
            f"{len(plan.removed)} removed, {len(plan.changed_entries)} other change(s)"
        )

        if plan.is_empty:
            return DeploymentOutcome.skipped("no code or resource changes", plan)

        if not plan.live_swap_eligible:
            reason = "classes added or removed" if plan.added_or_removed else "non-code entries changed"
            self._select(Strategy.REINSTALL, reason)
            return self._reinstall(graph, package_id, new, reason)

        if self.redefiner is None:
            self._select(Strategy.REINSTALL, "live swap not configured")
            return self._reinstall(graph, package_id, new, "live swap not configured")

        containers, swap_units, old_swap_units = self._load_modified(graph, plan, old, new, new_units, old_units)
        rejected = sorted(
            name for name in plan.modified
            if name not in swap_units or name not in old_swap_units
            or not self.checker.is_swap_compatible(old_swap_units[name], swap_units[name])
        )
        if rejected:
            reason = f"incompatible change in {', '.join(rejected)}"
            self._select(Strategy.REINSTALL, reason)
            return self._reinstall(graph, package_id, new, reason)

        self._select(Strategy.LIVE_SWAP, f"{len(plan.modified)} unit(s) modified")
        return self._live_swap(graph, package_id, plan, containers, swap_units)

    def _select(self, strategy: Strategy, reason: str) -> None:
        self._strategy = strategy
        self._transition(DeployState.PLAN_SELECTED)
        self.log.info(f"Strategy: {strategy.value} ({reason})")

    def _index_all(self, graph: TaskGraph, paths: Sequence[ArchivePath], label: str) -> list[PackageArchive]:
        tasks = [
            graph.submit(f"index:{label}:{Path(p).name}", self.index.index, graph.value(str(p)))
            for p in paths
        ]
        graph.join()
        return [task.result() for task in tasks]

    def _split_all(
        self,
        graph: TaskGraph,
        archives: list[PackageArchive],
        reuse: Optional[dict[tuple, list[CodeUnit]]] = None
    ) -> dict[tuple, list[CodeUnit]]:
        """Split every container entry. Keys are (archive name, entry name, crc)."""
        reuse = reuse or {}
        tasks: dict[tuple, Task] = {}
        units: dict[tuple, list[CodeUnit]] = {}
        for archive in archives:
            for entry in archive.entries:
                if not self.splitter.handles(entry):
                    continue
                key = (archive.name, entry.name, entry.crc)
                if key in reuse:
                    units[key] = reuse[key]
                else:
                    tasks[key] = graph.submit(f"split:{entry.name}", self.splitter.split, graph.value(entry))
        graph.join()
        for key, task in tasks.items():
            units[key] = task.result()
        return units

    def _changed_entries(self, old: list[PackageArchive], new: list[PackageArchive]) -> set[str]:
        """Archives added or removed, plus differing entries the splitter cannot diff."""
        old_by_name = {archive.name: archive for archive in old}
        new_by_name = {archive.name: archive for archive in new}
        changed = set(old_by_name.keys() ^ new_by_name.keys())

        for name in old_by_name.keys() & new_by_name.keys():
            old_crcs = old_by_name[name].crcs()
            new_crcs = new_by_name[name].crcs()
            for entry_name in old_crcs.keys() | new_crcs.keys():
                if entry_name.startswith(SIGNING_METADATA_PREFIX):
                    continue
                old_crc = old_crcs.get(entry_name)
                new_crc = new_crcs.get(entry_name)
                if old_crc == new_crc:
                    continue
                entry = new_by_name[name].entry(entry_name) or old_by_name[name].entry(entry_name)
                if old_crc is None or new_crc is None or not self.splitter.handles(entry):
                    changed.add(f"{name}!/{entry_name}")
        return changed

    def _load_modified(
        self,
        graph: TaskGraph,
        plan: DeploymentPlan,
        old: list[PackageArchive],
        new: list[PackageArchive],
        new_units: dict[tuple, list[CodeUnit]],
        old_units: dict[tuple, list[CodeUnit]]
    ) -> tuple[list[ArchiveEntry], dict[str, CodeUnit], dict[str, CodeUnit]]:
        """Re-split the containers owning modified units, keeping their code.

        Returns:
            (new containers, new modified units, previous modified units)
        """
        def keep(unit: CodeUnit) -> bool:
            return unit.name in plan.modified

        def owners(archives, units_by_key) -> list[ArchiveEntry]:
            by_name = {archive.name: archive for archive in archives}
            entries = []
            for (archive_name, entry_name, _), units in units_by_key.items():
                if any(keep(unit) for unit in units):
                    entries.append(by_name[archive_name].entry(entry_name))
            return entries

        containers = owners(new, new_units)
        new_tasks = [graph.submit(f"load:{e.name}", self.splitter.split, graph.value(e), graph.value(keep))
                     for e in containers]
        old_tasks = [graph.submit(f"load-previous:{e.name}", self.splitter.split, graph.value(e), graph.value(keep))
                     for e in owners(old, old_units)]
        graph.join()
        return containers, _kept(new_tasks), _kept(old_tasks)

    def _reinstall(
        self,
        graph: TaskGraph,
        package_id: str,
        archives: list[PackageArchive],
        reason: str
    ) -> DeploymentOutcome:
        self._transition(DeployState.EXECUTING)
        remote_dir = f"{self.staging_dir}/{package_id}"
        remote_paths = [f"{remote_dir}/{archive.name}" for archive in archives]

        pushes = self._push_serialised(graph, [
            (f"push:{archive.name}", remote_path, lambda path=archive.path: self.fs.read_bytes(path))
            for archive, remote_path in zip(archives, remote_paths)
        ])
        install = graph.submit(
            "install",
            lambda *_: self.channel.install(remote_paths, self.install_options),
            *pushes
        )
        graph.join()
        result = install.result()

        if not result.succeeded:
            self.log.error(f"Install failed: {result.status.value} ({result.reason})")
            return DeploymentOutcome.failed(
                f"install failed: {result.reason or result.status.value}",
                strategy=Strategy.REINSTALL,
                plan=self._plan,
                install_status=result.status
            )

        self.log.info(f"Installed {package_id} ({reason})")
        return DeploymentOutcome(
            OutcomeKind.INSTALLED, reason, Strategy.REINSTALL, self._plan, result.status
        )

    def _live_swap(
        self,
        graph: TaskGraph,
        package_id: str,
        plan: DeploymentPlan,
        containers: list[ArchiveEntry],
        swap_units: dict[str, CodeUnit]
    ) -> DeploymentOutcome:
        self._transition(DeployState.EXECUTING)
        remote_dir = f"{self.staging_dir}/{package_id}/swap"
        pushes = self._push_serialised(graph, [
            (f"push:{entry.name}", f"{remote_dir}/{entry.name}", lambda e=entry: read_entry(e))
            for entry in containers
        ])
        units = [swap_units[name] for name in sorted(plan.modified)]
        redefine = graph.submit("redefine", lambda *_: self.redefiner.redefine(units), *pushes)
        graph.join()
        result = redefine.result()

        self.log.info(f"Swapped {len(result.redefined)} unit(s) in {package_id}")
        return DeploymentOutcome(
            OutcomeKind.SWAPPED, f"{len(result.redefined)} unit(s) redefined", Strategy.LIVE_SWAP, plan
        )

    def _push_serialised(
        self,
        graph: TaskGraph,
        items: list[tuple[str, str, Callable[[], bytes]]]
    ) -> list[Task]:
        """Read each payload in parallel; push one at a time in list order."""
        pushes: list[Task] = []
        for name, remote_path, load in items:
            data = graph.submit(f"read:{name.split(':', 1)[1]}", load)
            if pushes:
                data = graph.block_on(data, pushes[-1])
            pushes.append(graph.submit(
                name,
                lambda payload, path=remote_path: self.channel.push(payload, path),
                data
            ))
        return pushes


def _kept(tasks: list[Task]) -> dict[str, CodeUnit]:
    return {
        unit.name: unit
        for task in tasks
        for unit in task.result()
        if unit.payload is not None
    }


def _same_digests(old: list[PackageArchive], new: list[PackageArchive]) -> bool:
    old_digests = {archive.name: archive.digest for archive in old}
    new_digests = {archive.name: archive.digest for archive in new}
    return old_digests == new_digests


def _check_names(paths: Sequence[ArchivePath], label: str) -> None:
    if not paths:
        raise ValueError(f"No {label} given")
    names = [Path(p).name for p in paths]
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate file names in {label}: {names}")

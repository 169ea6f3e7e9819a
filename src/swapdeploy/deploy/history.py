"""
Deployment history - local snapshots of the archives last deployed per package.

The snapshot is what the next deployment diffs against. Layout:

    <root>/<package_id>/0/base.apk
    <root>/<package_id>/1/split_feature.apk

One numbered directory per archive keeps both the install order and the
archive file names, which the orchestrator matches archives by.
"""

from pathlib import Path
from typing import Optional, Sequence, Union

from swapdeploy.core.protocols import FileSystemService


class DeploymentHistory:
    def __init__(self, root: Union[str, Path], filesystem: FileSystemService):
        self.root = Path(root)
        self.filesystem = filesystem

    def _package_dir(self, package_id: str) -> Path:
        if not package_id or '/' in package_id or package_id in ('.', '..'):
            raise ValueError(f"Invalid package id: {package_id!r}")
        return self.root / package_id

    def record(self, package_id: str, archives: Sequence[Union[str, Path]]) -> list[Path]:
        """
        Replace the snapshot of package_id with copies of archives.

        Returns:
            Paths of the copies, in archive order
        """
        package_dir = self._package_dir(package_id)
        if self.filesystem.exists(package_dir):
            self.filesystem.rmtree(package_dir)

        copies = []
        for position, archive in enumerate(archives):
            slot = package_dir / str(position)
            self.filesystem.mkdir(slot, parents=True, exist_ok=True)
            destination = slot / Path(archive).name
            self.filesystem.copy_file(archive, destination)
            copies.append(destination)
        return copies

    def previous(self, package_id: str) -> Optional[list[Path]]:
        """Return the recorded archives of package_id, or None if never deployed."""
        package_dir = self._package_dir(package_id)
        if not self.filesystem.is_dir(package_dir):
            return None

        slots = sorted(
            (p for p in self.filesystem.iterdir(package_dir) if p.name.isdigit()),
            key=lambda p: int(p.name)
        )
        archives = []
        for slot in slots:
            archives.extend(sorted(p for p in self.filesystem.iterdir(slot) if not p.name.startswith('.')))
        return archives or None

    def forget(self, package_id: str) -> bool:
        """Drop the snapshot of package_id. Returns True if one existed."""
        package_dir = self._package_dir(package_id)
        if not self.filesystem.exists(package_dir):
            return False
        self.filesystem.rmtree(package_dir)
        return True

    def forget_all(self) -> int:
        """Drop every snapshot. Returns the number of packages forgotten."""
        if not self.filesystem.is_dir(self.root):
            return 0
        count = 0
        for package_dir in list(self.filesystem.iterdir(self.root)):
            if self.filesystem.is_dir(package_dir):
                self.filesystem.rmtree(package_dir)
                count += 1
        return count
